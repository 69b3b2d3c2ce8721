from __future__ import annotations

from .logger import logger
from .models import ClusterUpdate, SpeakerCluster
from .store import ClusterStore
from .vector_math import cosine_similarity


def _can_merge(a: SpeakerCluster, b: SpeakerCluster) -> bool:
    if a.is_labeled and b.is_labeled:
        return a.label == b.label
    return True


def _target_and_source(a: SpeakerCluster, b: SpeakerCluster) -> tuple[str, str]:
    # ``a`` was created first; it stays the target unless only ``b`` is labeled.
    if b.is_labeled and not a.is_labeled:
        return b.id, a.id
    return a.id, b.id


def merge_similar_clusters(
    store: ClusterStore,
    merge_threshold: float,
    *,
    min_clusters: int = 1,
) -> list[ClusterUpdate]:
    """Merge the most similar pair of clusters until none reaches ``merge_threshold``.

    Pairs are compared on centroid cosine similarity and scanned in creation
    order, so ties resolve to the earliest pair.  Clusters labeled with
    different names are never merged.
    """

    updates: list[ClusterUpdate] = []
    while len(store) > max(1, min_clusters):
        clusters = store.clusters()
        best_pair: tuple[SpeakerCluster, SpeakerCluster] | None = None
        best_sim = -2.0
        for i in range(len(clusters)):
            for j in range(i + 1, len(clusters)):
                a, b = clusters[i], clusters[j]
                if not _can_merge(a, b):
                    continue
                sim = cosine_similarity(a.centroid, b.centroid)
                if sim > best_sim:
                    best_sim = sim
                    best_pair = (a, b)
        if best_pair is None or best_sim < merge_threshold:
            break
        target_id, source_id = _target_and_source(*best_pair)
        update = store.merge(target_id, source_id)
        if update is None:  # pragma: no cover - both ids come from the store
            break
        logger.info(
            "Post-merge: %s absorbed %s (similarity=%.3f)", target_id, source_id, best_sim
        )
        updates.append(update)
    return updates


__all__ = ["merge_similar_clusters"]
