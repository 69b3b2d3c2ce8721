"""In-memory cluster store for one user's clustering session.

The store is an insertion-ordered mapping from cluster id to cluster state.
Iteration order is creation order and is part of the contract:
:meth:`ClusterStore.best_match` scans clusters in that order and keeps the
first cluster that reaches the maximum similarity, so replaying the same
embedding sequence through a fresh store always yields the same ids.

Centroids are maintained from a running embedding sum rather than by
re-blending the previous centroid on every fold.  The blended form
``(c * n + e) / (n + 1)`` multiplies the rounding error of ``c`` by ``n`` at
every step; the running sum accumulates one rounding error per addition and
divides once, so long-lived clusters drift less.  Seeded clusters only carry
a centroid, so their sum is reconstructed as ``centroid * member_count``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, replace
from datetime import datetime
from typing import NamedTuple

import numpy as np

from .logger import logger
from .models import ClusterAction, ClusterUpdate, SpeakerCluster, utc_now
from .vector_math import DimensionMismatchError, Vector, as_embedding, as_vector, cosine_similarity

DEFAULT_ID_PREFIX = "spk"


class ClusterNotFoundError(KeyError):
    """Raised when an operation references a cluster id the store does not hold."""

    def __init__(self, cluster_id: str) -> None:
        super().__init__(cluster_id)
        self.cluster_id = cluster_id

    def __str__(self) -> str:
        return f"Unknown speaker cluster: {self.cluster_id}"


class OwnerMismatchError(ValueError):
    """Raised when a cluster belonging to another user reaches this store."""


class BestMatch(NamedTuple):
    cluster_id: str
    similarity: float


@dataclass(slots=True)
class _Entry:
    cluster: SpeakerCluster
    embedding_sum: np.ndarray


class ClusterStore:
    """Owns every speaker cluster of a single user and all of their mutations."""

    def __init__(
        self,
        owner: str,
        clusters: Iterable[SpeakerCluster] = (),
        *,
        id_prefix: str = DEFAULT_ID_PREFIX,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.owner = owner
        self.id_prefix = id_prefix
        self._clock = clock or utc_now
        self._entries: dict[str, _Entry] = {}
        self._next_index = 0
        self._dimensions: int | None = None
        for cluster in clusters:
            self.add_cluster(cluster)

    # --- read access ------------------------------------------------------
    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, cluster_id: object) -> bool:
        return cluster_id in self._entries

    def __iter__(self) -> Iterator[SpeakerCluster]:
        for entry in list(self._entries.values()):
            yield self._snapshot(entry)

    def ids(self) -> list[str]:
        return list(self._entries)

    def get(self, cluster_id: str) -> SpeakerCluster | None:
        entry = self._entries.get(cluster_id)
        if entry is None:
            return None
        return self._snapshot(entry)

    def clusters(self) -> list[SpeakerCluster]:
        return list(self)

    def copy(self) -> ClusterStore:
        """Return an independent working copy sharing no mutable state."""

        clone = ClusterStore(self.owner, id_prefix=self.id_prefix, clock=self._clock)
        for cluster_id, entry in self._entries.items():
            clone._entries[cluster_id] = _Entry(
                cluster=self._snapshot(entry),
                embedding_sum=entry.embedding_sum.copy(),
            )
        clone._next_index = self._next_index
        clone._dimensions = self._dimensions
        return clone

    # --- seeding ----------------------------------------------------------
    def add_cluster(self, cluster: SpeakerCluster) -> None:
        """Seed the store with a pre-existing cluster (e.g. loaded from storage)."""

        if cluster.owner != self.owner:
            raise OwnerMismatchError(
                f"Cluster {cluster.id!r} belongs to {cluster.owner!r}, not {self.owner!r}"
            )
        if cluster.id in self._entries:
            raise ValueError(f"Duplicate speaker cluster id: {cluster.id}")
        self._check_dimensions(cluster.centroid)
        snapshot = replace(cluster)
        self._entries[cluster.id] = _Entry(
            cluster=snapshot,
            embedding_sum=np.array(snapshot.centroid, dtype=np.float64) * snapshot.member_count,
        )
        self._reserve_id(cluster.id)

    # --- clustering operations --------------------------------------------
    def best_match(self, embedding: Vector) -> BestMatch | None:
        """Return the most similar cluster, or ``None`` when the store is empty.

        Cosine similarity is scale invariant so neither the query nor the
        centroids need explicit normalisation.  Ties keep the earliest
        created cluster.
        """

        query = as_vector(embedding)
        best: BestMatch | None = None
        for cluster_id, entry in self._entries.items():
            similarity = cosine_similarity(query, entry.cluster.centroid)
            if best is None or similarity > best.similarity:
                best = BestMatch(cluster_id, similarity)
        return best

    def create_cluster(self, embedding: Vector, owner: str | None = None) -> ClusterUpdate:
        if owner is not None and owner != self.owner:
            raise OwnerMismatchError(
                f"Store for {self.owner!r} cannot create a cluster for {owner!r}"
            )
        vector = as_vector(embedding)
        self._check_dimensions(vector)
        cluster_id = self._next_id()
        now = self._clock()
        cluster = SpeakerCluster(
            id=cluster_id,
            owner=self.owner,
            centroid=vector,
            member_count=1,
            occurrence_count=1,
            created_at=now,
            last_updated=now,
        )
        self._entries[cluster_id] = _Entry(cluster=cluster, embedding_sum=vector.copy())
        logger.debug("Created speaker cluster %s for %s", cluster_id, self.owner)
        return self._record(cluster, ClusterAction.CREATE)

    def fold_into(self, cluster_id: str, embedding: Vector) -> ClusterUpdate:
        entry = self._entries.get(cluster_id)
        if entry is None:
            raise ClusterNotFoundError(cluster_id)
        vector = as_vector(embedding)
        self._check_dimensions(vector)
        entry.embedding_sum += vector
        cluster = entry.cluster
        cluster.member_count += 1
        cluster.occurrence_count += 1
        cluster.centroid = as_embedding(entry.embedding_sum / cluster.member_count)
        cluster.last_updated = self._clock()
        return self._record(cluster, ClusterAction.UPDATE)

    def merge(self, target_id: str, source_id: str) -> ClusterUpdate | None:
        """Absorb ``source_id`` into ``target_id``.

        The resulting centroid is the member-weighted mean of both centroids
        and the counters are summed.  Returns ``None`` when either cluster is
        missing; the store is left untouched in that case.
        """

        if target_id == source_id:
            raise ValueError(f"Cannot merge speaker cluster {target_id!r} into itself")
        target = self._entries.get(target_id)
        source = self._entries.get(source_id)
        if target is None or source is None:
            missing = target_id if target is None else source_id
            logger.warning("Merge skipped: speaker cluster %s not found", missing)
            return None

        target.embedding_sum += source.embedding_sum
        merged = target.cluster
        absorbed = source.cluster
        merged.member_count += absorbed.member_count
        merged.occurrence_count += absorbed.occurrence_count
        merged.centroid = as_embedding(target.embedding_sum / merged.member_count)
        if not merged.is_labeled and absorbed.is_labeled:
            merged.label = absorbed.label
            merged.is_labeled = True
        merged.created_at = min(merged.created_at, absorbed.created_at)
        merged.last_updated = self._clock()
        del self._entries[source_id]
        logger.info(
            "Merged speaker cluster %s into %s (%d members)",
            source_id,
            target_id,
            merged.member_count,
        )
        return self._record(merged, ClusterAction.MERGE, merged_with_id=source_id)

    # --- replaying updates ------------------------------------------------
    def apply_update(self, update: ClusterUpdate) -> None:
        """Fold one :class:`ClusterUpdate` into the store.

        ``create`` and ``update`` records both upsert the cluster state: after
        deduplication a cluster created during a pass may only be represented
        by its latest ``update`` record.  ``merge`` records also drop the
        absorbed cluster.
        """

        if update.action is ClusterAction.MERGE and update.merged_with_id:
            self._entries.pop(update.merged_with_id, None)
            # Absorbed ids are never handed out again.
            self._reserve_id(update.merged_with_id)
        self._check_dimensions(update.centroid)
        now = self._clock()
        entry = self._entries.get(update.cluster_id)
        if entry is None:
            cluster = SpeakerCluster(
                id=update.cluster_id,
                owner=self.owner,
                centroid=update.centroid,
                member_count=max(1, update.member_count),
                occurrence_count=update.occurrence_count,
                label=update.label,
                created_at=now,
                last_updated=now,
            )
            self._entries[update.cluster_id] = _Entry(
                cluster=cluster,
                embedding_sum=np.array(cluster.centroid, dtype=np.float64) * cluster.member_count,
            )
            self._reserve_id(update.cluster_id)
            return
        cluster = entry.cluster
        cluster.centroid = update.centroid
        cluster.member_count = max(1, update.member_count)
        cluster.occurrence_count = update.occurrence_count
        if update.label is not None:
            cluster.label = update.label
            cluster.is_labeled = True
        cluster.last_updated = now
        entry.embedding_sum = np.array(cluster.centroid, dtype=np.float64) * cluster.member_count

    def apply_updates(
        self,
        updates: Iterable[ClusterUpdate],
        removed_ids: Iterable[str] = (),
    ) -> None:
        """Drop ``removed_ids`` then replay ``updates`` in order.

        A deduplicated pass keeps one record per surviving cluster, so merge
        records for clusters absorbed earlier in the pass may be gone;
        ``removed_ids`` names every cluster the pass absorbed.
        """

        self.remove_clusters(removed_ids)
        for update in updates:
            self.apply_update(update)

    def remove_clusters(self, cluster_ids: Iterable[str]) -> list[str]:
        """Drop absorbed clusters; unknown ids are ignored. Returns the ids dropped."""

        dropped: list[str] = []
        for cluster_id in cluster_ids:
            self._reserve_id(cluster_id)
            if self._entries.pop(cluster_id, None) is not None:
                dropped.append(cluster_id)
        if dropped:
            logger.debug("Removed absorbed speaker clusters %s", ", ".join(dropped))
        return dropped

    # --- internal helpers -------------------------------------------------
    def _check_dimensions(self, vector: np.ndarray) -> None:
        size = int(np.asarray(vector).shape[0])
        if self._dimensions is None:
            self._dimensions = size
        elif size != self._dimensions:
            raise DimensionMismatchError(self._dimensions, size)

    def _next_id(self) -> str:
        while True:
            candidate = f"{self.id_prefix}_{self._next_index}"
            self._next_index += 1
            if candidate not in self._entries:
                return candidate

    def _reserve_id(self, cluster_id: str) -> None:
        head, sep, tail = cluster_id.rpartition("_")
        if sep and head == self.id_prefix and tail.isdigit():
            self._next_index = max(self._next_index, int(tail) + 1)

    @staticmethod
    def _snapshot(entry: _Entry) -> SpeakerCluster:
        return replace(entry.cluster)

    @staticmethod
    def _record(
        cluster: SpeakerCluster,
        action: ClusterAction,
        *,
        merged_with_id: str | None = None,
    ) -> ClusterUpdate:
        return ClusterUpdate(
            cluster_id=cluster.id,
            action=action,
            centroid=cluster.centroid,
            member_count=cluster.member_count,
            occurrence_count=cluster.occurrence_count,
            merged_with_id=merged_with_id,
            label=cluster.label,
        )


__all__ = [
    "BestMatch",
    "ClusterNotFoundError",
    "ClusterStore",
    "DEFAULT_ID_PREFIX",
    "OwnerMismatchError",
]
