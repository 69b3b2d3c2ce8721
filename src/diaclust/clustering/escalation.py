"""Escalation of recurring unlabeled speakers to a human labeling workflow.

Escalation is a pure query over the store state after a batch has been
clustered; it never fires mid-batch, so there is no question of which
segment "caused" a prompt.  At most one prompt is raised per batch.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .models import PromptPriority, PromptRequest, SpeakerCluster
from .store import ClusterStore

DEFAULT_OCCURRENCE_THRESHOLD = 5
DEFAULT_HIGH_PRIORITY_OCCURRENCES = 10
DEFAULT_SNIPPET_CHARS = 100


def clusters_needing_prompt(
    clusters: ClusterStore | Iterable[SpeakerCluster],
    occurrence_threshold: int = DEFAULT_OCCURRENCE_THRESHOLD,
) -> list[SpeakerCluster]:
    """Unlabeled clusters seen at least ``occurrence_threshold`` times, in store order."""

    return [
        cluster
        for cluster in clusters
        if not cluster.is_labeled and cluster.occurrence_count >= occurrence_threshold
    ]


def prompt_priority(
    occurrence_count: int,
    high_threshold: int = DEFAULT_HIGH_PRIORITY_OCCURRENCES,
) -> PromptPriority:
    if occurrence_count >= high_threshold:
        return PromptPriority.HIGH
    return PromptPriority.MEDIUM


def _quote_snippet(text: str | None, max_chars: int) -> str:
    cleaned = " ".join((text or "").split())
    if not cleaned:
        return '""'
    if len(cleaned) > max_chars:
        return f'"{cleaned[:max_chars]}..."'
    return f'"{cleaned}"'


def build_prompt_request(
    cluster: SpeakerCluster,
    sample_text: str | None = None,
    *,
    high_priority_occurrences: int = DEFAULT_HIGH_PRIORITY_OCCURRENCES,
    snippet_chars: int = DEFAULT_SNIPPET_CHARS,
) -> PromptRequest:
    """Build the labeling prompt for ``cluster``.

    Missing transcript text degrades the context to an empty quotation; the
    prompt itself is always produced.
    """

    context = (
        f"A speaker has been detected {cluster.occurrence_count} times but has not been "
        f"labeled. Sample transcript: {_quote_snippet(sample_text, snippet_chars)}"
    )
    return PromptRequest(
        cluster_id=cluster.id,
        context=context,
        priority=prompt_priority(cluster.occurrence_count, high_priority_occurrences),
    )


def select_prompt(
    clusters: ClusterStore | Iterable[SpeakerCluster],
    texts_by_cluster: Mapping[str, str] | None = None,
    *,
    occurrence_threshold: int = DEFAULT_OCCURRENCE_THRESHOLD,
    high_priority_occurrences: int = DEFAULT_HIGH_PRIORITY_OCCURRENCES,
    snippet_chars: int = DEFAULT_SNIPPET_CHARS,
) -> PromptRequest | None:
    """Return the prompt for the first cluster needing one, if any."""

    candidates = clusters_needing_prompt(clusters, occurrence_threshold)
    if not candidates:
        return None
    chosen = candidates[0]
    sample = (texts_by_cluster or {}).get(chosen.id)
    return build_prompt_request(
        chosen,
        sample,
        high_priority_occurrences=high_priority_occurrences,
        snippet_chars=snippet_chars,
    )


__all__ = [
    "DEFAULT_HIGH_PRIORITY_OCCURRENCES",
    "DEFAULT_OCCURRENCE_THRESHOLD",
    "DEFAULT_SNIPPET_CHARS",
    "build_prompt_request",
    "clusters_needing_prompt",
    "prompt_priority",
    "select_prompt",
]
