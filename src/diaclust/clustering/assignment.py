from __future__ import annotations

from dataclasses import dataclass

from .models import ClusterUpdate
from .store import ClusterStore, OwnerMismatchError
from .vector_math import Vector

DEFAULT_SIMILARITY_THRESHOLD = 0.85


@dataclass(frozen=True)
class Assignment:
    """Outcome of attributing one embedding to a speaker cluster."""

    cluster_id: str
    is_new: bool
    similarity: float | None
    update: ClusterUpdate


def assign(
    store: ClusterStore,
    embedding: Vector,
    owner: str | None = None,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> Assignment:
    """Attribute ``embedding`` to the best matching cluster or open a new one.

    The threshold is inclusive: a best similarity equal to
    ``similarity_threshold`` joins the matched cluster.  Every call scans all
    clusters of the store, so the cost is linear in the cluster count.
    """

    if owner is not None and owner != store.owner:
        raise OwnerMismatchError(f"Store for {store.owner!r} cannot assign audio of {owner!r}")
    match = store.best_match(embedding)
    if match is None or match.similarity < similarity_threshold:
        update = store.create_cluster(embedding, owner)
        return Assignment(
            cluster_id=update.cluster_id,
            is_new=True,
            similarity=None if match is None else match.similarity,
            update=update,
        )
    update = store.fold_into(match.cluster_id, embedding)
    return Assignment(
        cluster_id=match.cluster_id,
        is_new=False,
        similarity=match.similarity,
        update=update,
    )


__all__ = ["Assignment", "DEFAULT_SIMILARITY_THRESHOLD", "assign"]
