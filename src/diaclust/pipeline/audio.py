"""Per-source audio processing: transcription, embeddings, speaker clustering.

One call handles one audio source against a caller-owned
:class:`~diaclust.clustering.store.ClusterStore`:

1. transcribe the source into diarized segments;
2. fetch one speaker embedding per segment (before anything reaches the
   clustering core); a failed segment is recorded and skipped;
3. assign every embedded segment in upstream order;
4. optionally merge near-duplicate clusters;
5. query the store for a speaker that needs a human label;
6. reduce the cluster updates to the latest state per cluster.

The store passed in is mutated.  The sequencer hands in a working copy so a
failed source leaves the session state untouched.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from ..clustering import (
    ClusterAction,
    ClusterStore,
    ClusterUpdate,
    PromptRequest,
    absorbed_cluster_ids,
    assign,
    clusters_needing_prompt,
    deduplicate_cluster_updates,
    merge_similar_clusters,
    select_prompt,
)
from .config import ClusteringConfig, build_clustering_config
from .errors import EmbeddingSourceError, PipelineError, attach_context, coerce_stage_error
from .logging_utils import RunStats, StageGuard
from .sources import EmbeddingSource, MediaSource, Transcriber, Transcription, TranscriptSegment

logger = logging.getLogger(__name__)


def generate_segment_id() -> str:
    return f"seg_{uuid.uuid4().hex[:12]}"


class SourceStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class ProcessedSegment:
    """A transcript segment attributed to a speaker cluster."""

    id: str
    start: float
    end: float
    text: str
    confidence: float
    speaker_label: str
    speaker_cluster_id: str
    embedding: np.ndarray
    similarity: float | None = None
    # Set by callers once the cluster has been labeled by a human.
    speaker_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "confidence": self.confidence,
            "speaker_label": self.speaker_label,
            "speaker_cluster_id": self.speaker_cluster_id,
            "speaker_id": self.speaker_id,
            "similarity": self.similarity,
            "embedding_dimensions": int(self.embedding.shape[0]),
        }


@dataclass
class SegmentFailure:
    """A segment that never reached the clustering core."""

    index: int
    start: float
    end: float
    error: PipelineError

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "start": self.start,
            "end": self.end,
            "error": str(self.error),
            "context": dict(self.error.context),
        }


@dataclass
class AudioProcessingResult:
    source: MediaSource
    owner: str
    segments: list[ProcessedSegment] = field(default_factory=list)
    cluster_updates: list[ClusterUpdate] = field(default_factory=list)
    # Every cluster absorbed during the pass, including ones whose merge
    # record did not survive deduplication.
    removed_cluster_ids: list[str] = field(default_factory=list)
    failures: list[SegmentFailure] = field(default_factory=list)
    unknown_speaker_detected: bool = False
    prompt: PromptRequest | None = None
    transcription: str = ""
    duration: float = 0.0
    processing_time_ms: float = 0.0

    @property
    def status(self) -> SourceStatus:
        if self.failures and not self.segments:
            return SourceStatus.FAILED
        if self.failures:
            return SourceStatus.PARTIAL
        return SourceStatus.COMPLETED

    def texts_by_cluster(self) -> dict[str, str]:
        """First non-empty transcript text seen for each cluster."""

        texts: dict[str, str] = {}
        for segment in self.segments:
            if segment.text.strip():
                texts.setdefault(segment.speaker_cluster_id, segment.text)
        return texts


def normalize_segments(
    transcription: Transcription,
    config: ClusteringConfig,
) -> list[TranscriptSegment]:
    """Fill in upstream defaults, keeping the transcriber's segment order.

    A transcription without segments but with text becomes a single segment
    spanning the whole recording.
    """

    if not transcription.segments:
        if not transcription.text.strip():
            return []
        return [
            TranscriptSegment(
                start=0.0,
                end=float(transcription.duration or 0.0),
                text=transcription.text,
                speaker=config.unknown_speaker_label,
                confidence=config.fallback_segment_confidence,
            )
        ]
    normalized: list[TranscriptSegment] = []
    for seg in transcription.segments:
        normalized.append(
            TranscriptSegment(
                start=float(seg.start),
                end=float(seg.end),
                text=seg.text or "",
                speaker=seg.speaker or config.unknown_speaker_label,
                confidence=(
                    config.default_segment_confidence
                    if seg.confidence is None
                    else float(seg.confidence)
                ),
            )
        )
    return normalized


def _transcribe(source: MediaSource, transcriber: Transcriber) -> Transcription:
    try:
        return transcriber.transcribe(source)
    except PipelineError as exc:
        raise attach_context(exc, {"source": source.display_name})
    except Exception as exc:
        raise coerce_stage_error(
            "transcribe",
            f"Transcription failed for {source.display_name}",
            context={"source": source.display_name},
            cause=exc,
        ) from exc


def embed_segments(
    segments: list[TranscriptSegment],
    embedding_source: EmbeddingSource,
) -> tuple[list[tuple[TranscriptSegment, np.ndarray]], list[SegmentFailure]]:
    """Fetch one embedding per segment; failures are collected, not raised."""

    embedded: list[tuple[TranscriptSegment, np.ndarray]] = []
    failures: list[SegmentFailure] = []
    for index, segment in enumerate(segments):
        context = {"segment_index": index, "start": segment.start, "end": segment.end}
        try:
            raw = embedding_source.generate_embedding(segment)
            vector = np.asarray(raw, dtype=np.float64)
        except Exception as exc:
            error = EmbeddingSourceError(
                message=f"Embedding generation failed: {exc}",
                stage="embed",
                context={**context, "cause": repr(exc)},
                cause=exc,
            )
            logger.warning("Segment %d skipped: %s", index, error)
            failures.append(SegmentFailure(index, segment.start, segment.end, error))
            continue
        if vector.ndim != 1 or vector.size == 0 or not np.all(np.isfinite(vector)):
            error = EmbeddingSourceError(
                message="Embedding source returned an empty or non-finite vector",
                stage="embed",
                context={**context, "shape": list(vector.shape)},
            )
            logger.warning("Segment %d skipped: %s", index, error)
            failures.append(SegmentFailure(index, segment.start, segment.end, error))
            continue
        embedded.append((segment, vector))
    return embedded, failures


def _resolve_merges(updates: list[ClusterUpdate]) -> dict[str, str]:
    redirects: dict[str, str] = {}
    for update in updates:
        if update.action is ClusterAction.MERGE and update.merged_with_id:
            redirects[update.merged_with_id] = update.cluster_id

    def _final(cluster_id: str) -> str:
        seen = set()
        while cluster_id in redirects and cluster_id not in seen:
            seen.add(cluster_id)
            cluster_id = redirects[cluster_id]
        return cluster_id

    return {absorbed: _final(absorbed) for absorbed in redirects}


def process_audio_source(
    source: MediaSource,
    owner: str,
    store: ClusterStore,
    *,
    transcriber: Transcriber,
    embedding_source: EmbeddingSource,
    config: ClusteringConfig | dict[str, Any] | None = None,
    stats: RunStats | None = None,
) -> AudioProcessingResult:
    """Cluster the speakers of one audio source into ``store``.

    Raises :class:`~diaclust.pipeline.errors.StageExecutionError` when the
    source cannot be transcribed; embedding failures only affect their
    segment and are reported in ``result.failures``.
    """

    cfg = build_clustering_config(config)
    run_stats = stats or RunStats(run_id=uuid.uuid4().hex[:12], owner=owner)
    started = time.perf_counter()
    context = {"source": source.display_name}

    with StageGuard(logger, run_stats, "transcribe", **context) as guard:
        transcription = _transcribe(source, transcriber)
        segments = normalize_segments(transcription, cfg)
        guard.done(segments=len(segments))

    with StageGuard(logger, run_stats, "embed", **context) as guard:
        embedded, failures = embed_segments(segments, embedding_source)
        guard.done(embedded=len(embedded), failed=len(failures))

    updates: list[ClusterUpdate] = []
    processed: list[ProcessedSegment] = []
    with StageGuard(logger, run_stats, "cluster", **context) as guard:
        for segment, vector in embedded:
            assignment = assign(store, vector, owner, cfg.similarity_threshold)
            updates.append(assignment.update)
            processed.append(
                ProcessedSegment(
                    id=generate_segment_id(),
                    start=segment.start,
                    end=segment.end,
                    text=segment.text,
                    confidence=float(segment.confidence or 0.0),
                    speaker_label=segment.speaker or cfg.unknown_speaker_label,
                    speaker_cluster_id=assignment.cluster_id,
                    embedding=vector,
                    similarity=assignment.similarity,
                )
            )
        if cfg.merge_similarity_threshold is not None:
            merges = merge_similar_clusters(store, cfg.merge_similarity_threshold)
            updates.extend(merges)
            redirects = _resolve_merges(merges)
            for item in processed:
                item.speaker_cluster_id = redirects.get(
                    item.speaker_cluster_id, item.speaker_cluster_id
                )
        created = sum(1 for u in updates if u.action is ClusterAction.CREATE)
        guard.done(assigned=len(processed), created=created)

    result = AudioProcessingResult(
        source=source,
        owner=owner,
        segments=processed,
        failures=failures,
        transcription=" ".join(s.text for s in processed),
        duration=float(transcription.duration or 0.0),
    )

    with StageGuard(logger, run_stats, "escalate", **context):
        result.unknown_speaker_detected = bool(
            clusters_needing_prompt(store, cfg.occurrence_threshold)
        )
        result.prompt = select_prompt(
            store,
            result.texts_by_cluster(),
            occurrence_threshold=cfg.occurrence_threshold,
            high_priority_occurrences=cfg.high_priority_occurrences,
            snippet_chars=cfg.prompt_snippet_chars,
        )

    result.removed_cluster_ids = absorbed_cluster_ids(updates)
    result.cluster_updates = deduplicate_cluster_updates(updates)
    result.processing_time_ms = (time.perf_counter() - started) * 1000.0
    if result.prompt is not None:
        logger.info(
            "Unlabeled speaker %s needs a label (%s priority)",
            result.prompt.cluster_id,
            result.prompt.priority.value,
        )
    logger.info(
        "Processed %s: %d segments, %d failed, %d cluster updates",
        source.display_name,
        len(processed),
        len(failures),
        len(result.cluster_updates),
    )
    return result


__all__ = [
    "AudioProcessingResult",
    "ProcessedSegment",
    "SegmentFailure",
    "SourceStatus",
    "embed_segments",
    "normalize_segments",
    "process_audio_source",
]
