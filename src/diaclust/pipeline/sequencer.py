"""Cross-source speaker clustering for a batch of audio sources.

Sources are processed strictly in the order given.  Each one runs against a
working copy of the session store; once it completes, its deduplicated
cluster updates are folded into the owned store before the next source
starts, so a speaker heard in source *i* is recognised in source *i + 1*.
A source that fails is recorded and its working copy dropped.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..clustering import (
    ClusterStore,
    ClusterUpdate,
    PromptRequest,
    SpeakerCluster,
    deduplicate_cluster_updates,
    select_prompt,
)
from .audio import AudioProcessingResult, process_audio_source
from .config import ClusteringConfig, build_clustering_config, ensure_dependencies
from .errors import ConcurrentSessionError, PipelineError
from .logging_utils import RunStats, make_json_safe
from .sources import EmbeddingSource, MediaSource, Transcriber

logger = logging.getLogger(__name__)


@dataclass
class SourceFailure:
    """A source whose processing aborted; nothing from it reached the store."""

    index: int
    source: MediaSource
    error: PipelineError

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "source": self.source.display_name,
            "stage": self.error.stage,
            "error": str(self.error),
            "context": make_json_safe(dict(self.error.context)),
        }


@dataclass
class BatchResult:
    owner: str
    results: list[AudioProcessingResult] = field(default_factory=list)
    failures: list[SourceFailure] = field(default_factory=list)
    skipped: list[MediaSource] = field(default_factory=list)
    cluster_updates: list[ClusterUpdate] = field(default_factory=list)
    removed_cluster_ids: list[str] = field(default_factory=list)
    clusters: list[SpeakerCluster] = field(default_factory=list)
    prompt: PromptRequest | None = None
    cancelled: bool = False
    stats: RunStats | None = None

    @property
    def unknown_speaker_detected(self) -> bool:
        return self.prompt is not None

    def to_dict(self) -> dict[str, Any]:
        return make_json_safe(
            {
                "owner": self.owner,
                "results": [
                    {
                        "source": r.source.display_name,
                        "status": r.status,
                        "segments": [s.to_dict() for s in r.segments],
                        "failures": [f.to_dict() for f in r.failures],
                        "removed_cluster_ids": r.removed_cluster_ids,
                        "prompt": r.prompt.to_dict() if r.prompt else None,
                        "transcription": r.transcription,
                        "duration": r.duration,
                        "processing_time_ms": r.processing_time_ms,
                    }
                    for r in self.results
                ],
                "failures": [f.to_dict() for f in self.failures],
                "skipped": [s.display_name for s in self.skipped],
                "cluster_updates": [u.to_dict() for u in self.cluster_updates],
                "removed_cluster_ids": self.removed_cluster_ids,
                "clusters": [c.to_dict() for c in self.clusters],
                "prompt": self.prompt.to_dict() if self.prompt else None,
                "cancelled": self.cancelled,
                "stats": self.stats.to_dict() if self.stats else None,
            }
        )


class AudioBatchSequencer:
    """Single writer of one user's cluster store across batches of sources."""

    def __init__(
        self,
        owner: str,
        *,
        transcriber: Transcriber,
        embedding_source: EmbeddingSource,
        config: ClusteringConfig | dict[str, Any] | None = None,
        existing_clusters: Iterable[SpeakerCluster] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        ensure_dependencies()
        self.owner = owner
        self.transcriber = transcriber
        self.embedding_source = embedding_source
        self.config = build_clustering_config(config)
        self._store = ClusterStore(
            owner,
            existing_clusters,
            id_prefix=self.config.cluster_id_prefix,
            clock=clock,
        )
        self._lock = threading.Lock()
        self._cancel = threading.Event()

    @property
    def store(self) -> ClusterStore:
        return self._store

    def cancel(self) -> None:
        """Stop the running batch at the next source boundary."""

        self._cancel.set()

    def _process_source(
        self,
        source: MediaSource,
        stats: RunStats | None = None,
    ) -> AudioProcessingResult:
        """Process one source and commit its updates to the owned store.

        Pipeline errors propagate and leave the owned store untouched.
        """

        working = self._store.copy()
        result = process_audio_source(
            source,
            self.owner,
            working,
            transcriber=self.transcriber,
            embedding_source=self.embedding_source,
            config=self.config,
            stats=stats,
        )
        self._store.apply_updates(result.cluster_updates, result.removed_cluster_ids)
        return result

    def process_batch(self, sources: Sequence[MediaSource]) -> BatchResult:
        """Cluster ``sources`` in order into the session store.

        Pipeline errors of one source are recorded in ``BatchResult.failures``
        and the batch moves on.  Programming errors such as
        :class:`~diaclust.clustering.DimensionMismatchError` propagate instead,
        and no :class:`BatchResult` is returned: sources folded before the
        failing one stay committed to :attr:`store`, which callers should
        re-read (or rebuild) before persisting anything.  Raises
        :class:`ConcurrentSessionError` if a batch is already running.
        """

        if not self._lock.acquire(blocking=False):
            raise ConcurrentSessionError(
                message=f"A batch is already running for {self.owner}",
                stage="sequencer",
                context={"owner": self.owner},
            )
        try:
            self._cancel.clear()
            return self._run(list(sources))
        finally:
            self._lock.release()

    def _run(self, sources: list[MediaSource]) -> BatchResult:
        stats = RunStats(run_id=uuid.uuid4().hex[:12], owner=self.owner)
        stats.config_snapshot = self.config.model_dump()
        batch = BatchResult(owner=self.owner, stats=stats)
        all_updates: list[ClusterUpdate] = []
        removed_ids: dict[str, None] = {}
        texts_by_cluster: dict[str, str] = {}

        logger.info("Processing %d audio source(s) for %s", len(sources), self.owner)
        for index, source in enumerate(sources):
            if self._cancel.is_set():
                batch.cancelled = True
                batch.skipped = sources[index:]
                logger.warning(
                    "Batch cancelled; skipping %d remaining source(s)", len(batch.skipped)
                )
                break
            try:
                result = self._process_source(source, stats)
            except PipelineError as exc:
                logger.error("Source %s failed: %s", source.display_name, exc)
                stats.warnings.append(f"{source.display_name}: {exc}")
                batch.failures.append(SourceFailure(index, source, exc))
                continue
            batch.results.append(result)
            all_updates.extend(result.cluster_updates)
            removed_ids.update(dict.fromkeys(result.removed_cluster_ids))
            for cluster_id, text in result.texts_by_cluster().items():
                texts_by_cluster.setdefault(cluster_id, text)
            for failure in result.failures:
                stats.warnings.append(f"{source.display_name}: {failure.error}")

        batch.removed_cluster_ids = list(removed_ids)
        batch.cluster_updates = [
            update
            for update in deduplicate_cluster_updates(all_updates)
            if update.cluster_id not in removed_ids
        ]
        batch.clusters = self._store.clusters()
        batch.prompt = select_prompt(
            self._store,
            texts_by_cluster,
            occurrence_threshold=self.config.occurrence_threshold,
            high_priority_occurrences=self.config.high_priority_occurrences,
            snippet_chars=self.config.prompt_snippet_chars,
        )
        logger.info(
            "Batch done for %s: %d ok, %d failed, %d skipped, %d clusters",
            self.owner,
            len(batch.results),
            len(batch.failures),
            len(batch.skipped),
            len(batch.clusters),
        )
        return batch


def process_audio_batch(
    sources: Sequence[MediaSource],
    owner: str,
    *,
    transcriber: Transcriber,
    embedding_source: EmbeddingSource,
    existing_clusters: Iterable[SpeakerCluster] = (),
    config: ClusteringConfig | dict[str, Any] | None = None,
) -> BatchResult:
    """Cluster the speakers of ``sources`` in order, starting from ``existing_clusters``."""

    sequencer = AudioBatchSequencer(
        owner,
        transcriber=transcriber,
        embedding_source=embedding_source,
        config=config,
        existing_clusters=existing_clusters,
    )
    return sequencer.process_batch(sources)


__all__ = [
    "AudioBatchSequencer",
    "BatchResult",
    "SourceFailure",
    "process_audio_batch",
]
