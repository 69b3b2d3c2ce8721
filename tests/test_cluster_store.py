"""Tests for the in-memory cluster store."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import numpy as np
import pytest

from diaclust.clustering import (
    ClusterAction,
    ClusterNotFoundError,
    ClusterStore,
    ClusterUpdate,
    DimensionMismatchError,
    OwnerMismatchError,
    SpeakerCluster,
)


class _Clock:
    """Deterministic clock advancing one second per call."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _seed(cluster_id: str, centroid, members: int, **kwargs) -> SpeakerCluster:
    return SpeakerCluster(
        id=cluster_id,
        owner="alice",
        centroid=centroid,
        member_count=members,
        occurrence_count=kwargs.pop("occurrences", members),
        **kwargs,
    )


def test_create_cluster_starts_with_single_member():
    store = ClusterStore("alice", clock=_Clock())
    update = store.create_cluster([1.0, 0.0, 0.0])

    assert update.action is ClusterAction.CREATE
    assert update.cluster_id == "spk_0"
    cluster = store.get("spk_0")
    assert cluster is not None
    assert cluster.member_count == 1
    assert cluster.occurrence_count == 1
    assert not cluster.is_labeled
    assert cluster.created_at == cluster.last_updated
    np.testing.assert_array_equal(cluster.centroid, [1.0, 0.0, 0.0])
    assert store.dimensions == 3


def test_ids_are_sequential_and_skip_seeded_ids():
    store = ClusterStore("alice", [_seed("spk_4", [1.0, 0.0], 1)])

    assert store.create_cluster([0.0, 1.0]).cluster_id == "spk_5"
    assert store.create_cluster([1.0, 1.0]).cluster_id == "spk_6"
    assert store.ids() == ["spk_4", "spk_5", "spk_6"]


def test_fold_into_updates_running_mean_and_counters():
    clock = _Clock()
    store = ClusterStore("alice", clock=clock)
    cluster_id = store.create_cluster([1.0, 0.0]).cluster_id
    created = store.get(cluster_id).last_updated

    store.fold_into(cluster_id, [0.0, 1.0])
    update = store.fold_into(cluster_id, [0.5, 0.5])

    assert update.action is ClusterAction.UPDATE
    assert update.member_count == 3
    assert update.occurrence_count == 3
    np.testing.assert_allclose(update.centroid, [0.5, 0.5])
    assert store.get(cluster_id).last_updated > created


def test_identity_mean_stays_exact():
    store = ClusterStore("alice")
    vector = [0.3, -0.7, 0.1, 0.9]
    cluster_id = store.create_cluster(vector).cluster_id
    for _ in range(49):
        store.fold_into(cluster_id, vector)

    cluster = store.get(cluster_id)
    assert cluster.member_count == 50
    np.testing.assert_allclose(cluster.centroid, vector, rtol=1e-12)


def test_fold_into_unknown_cluster_raises():
    store = ClusterStore("alice")
    store.create_cluster([1.0, 0.0])

    with pytest.raises(ClusterNotFoundError) as excinfo:
        store.fold_into("spk_99", [1.0, 0.0])
    assert isinstance(excinfo.value, KeyError)
    assert "spk_99" in str(excinfo.value)


def test_dimension_mismatch_fails_fast():
    store = ClusterStore("alice")
    cluster_id = store.create_cluster([1.0, 0.0, 0.0]).cluster_id

    with pytest.raises(DimensionMismatchError):
        store.create_cluster([1.0, 0.0])
    with pytest.raises(DimensionMismatchError):
        store.fold_into(cluster_id, [1.0, 0.0, 0.0, 0.0])
    with pytest.raises(DimensionMismatchError):
        store.best_match([1.0, 0.0])
    assert len(store) == 1


def test_best_match_prefers_first_cluster_on_ties():
    store = ClusterStore(
        "alice",
        [_seed("spk_0", [1.0, 0.0], 1), _seed("spk_1", [2.0, 0.0], 1)],
    )

    match = store.best_match([5.0, 0.0])
    assert match is not None
    assert match.cluster_id == "spk_0"
    assert match.similarity == pytest.approx(1.0)
    assert ClusterStore("alice").best_match([1.0, 0.0]) is None


def test_merge_weights_centroids_by_member_count():
    c_a = np.array([1.0, 0.0, 2.0])
    c_b = np.array([0.0, 1.0, 4.0])
    store = ClusterStore(
        "alice",
        [_seed("spk_a", c_a, 3), _seed("spk_b", c_b, 2)],
    )

    update = store.merge("spk_b", "spk_a")

    assert update is not None
    assert update.action is ClusterAction.MERGE
    assert update.cluster_id == "spk_b"
    assert update.merged_with_id == "spk_a"
    assert update.member_count == 5
    assert update.occurrence_count == 5
    np.testing.assert_allclose(update.centroid, (3 * c_a + 2 * c_b) / 5)
    assert "spk_a" not in store
    assert store.get("spk_a") is None
    assert len(store) == 1


def test_merge_keeps_label_and_earliest_creation_time():
    early = datetime(2023, 5, 1, tzinfo=UTC)
    late = datetime(2023, 6, 1, tzinfo=UTC)
    store = ClusterStore(
        "alice",
        [
            _seed("spk_0", [1.0, 0.0], 1, label="Bob", created_at=late),
            _seed("spk_1", [0.9, 0.1], 1, created_at=early),
        ],
    )

    store.merge("spk_1", "spk_0")
    merged = store.get("spk_1")

    assert merged.label == "Bob"
    assert merged.is_labeled
    assert merged.created_at == early


def test_merge_with_missing_cluster_returns_none():
    store = ClusterStore("alice", [_seed("spk_0", [1.0, 0.0], 2)])

    assert store.merge("spk_0", "spk_9") is None
    assert store.merge("spk_9", "spk_0") is None
    assert store.get("spk_0").member_count == 2
    with pytest.raises(ValueError):
        store.merge("spk_0", "spk_0")


def test_seeding_validates_owner_and_duplicates():
    with pytest.raises(OwnerMismatchError):
        ClusterStore(
            "alice",
            [SpeakerCluster(id="spk_0", owner="mallory", centroid=[1.0, 0.0])],
        )
    with pytest.raises(ValueError):
        ClusterStore("alice", [_seed("spk_0", [1.0], 1), _seed("spk_0", [1.0], 1)])
    with pytest.raises(DimensionMismatchError):
        ClusterStore("alice", [_seed("spk_0", [1.0], 1), _seed("spk_1", [1.0, 0.0], 1)])
    with pytest.raises(OwnerMismatchError):
        ClusterStore("alice").create_cluster([1.0], owner="mallory")


def test_seeded_cluster_running_sum_is_reconstructed():
    store = ClusterStore("alice", [_seed("spk_0", [1.0, 0.0], 3)])

    update = store.fold_into("spk_0", [0.0, 1.0])

    np.testing.assert_allclose(update.centroid, [0.75, 0.25])
    assert update.member_count == 4


def test_snapshots_do_not_leak_mutations():
    store = ClusterStore("alice")
    cluster_id = store.create_cluster([1.0, 0.0]).cluster_id

    snapshot = store.get(cluster_id)
    snapshot.member_count = 42
    snapshot.label = "changed"

    fresh = store.get(cluster_id)
    assert fresh.member_count == 1
    assert fresh.label is None


def test_copy_is_independent():
    store = ClusterStore("alice")
    cluster_id = store.create_cluster([1.0, 0.0]).cluster_id
    working = store.copy()

    working.fold_into(cluster_id, [0.0, 1.0])
    working.create_cluster([0.0, 1.0])

    assert len(store) == 1
    assert store.get(cluster_id).member_count == 1
    assert len(working) == 2


def test_apply_updates_replays_into_another_store():
    working = ClusterStore("alice")
    first = working.create_cluster([1.0, 0.0])
    second = working.fold_into(first.cluster_id, [0.8, 0.2])
    third = working.create_cluster([0.0, 1.0])

    target = ClusterStore("alice")
    # Only the latest record of spk_0 survives deduplication.
    target.apply_updates([second, third])

    assert target.ids() == ["spk_0", "spk_1"]
    np.testing.assert_allclose(target.get("spk_0").centroid, working.get("spk_0").centroid)
    assert target.get("spk_0").member_count == 2
    assert target.create_cluster([1.0, 1.0]).cluster_id == "spk_2"


def test_apply_merge_update_removes_absorbed_cluster():
    store = ClusterStore(
        "alice",
        [_seed("spk_0", [1.0, 0.0], 1), _seed("spk_1", [0.9, 0.1], 1)],
    )
    update = ClusterUpdate(
        cluster_id="spk_0",
        action="merge",
        centroid=[0.95, 0.05],
        member_count=2,
        occurrence_count=2,
        merged_with_id="spk_1",
    )

    store.apply_update(update)

    assert store.ids() == ["spk_0"]
    assert store.get("spk_0").member_count == 2
    assert store.create_cluster([0.0, 1.0]).cluster_id == "spk_2"


def test_cluster_update_requires_absorbed_id_for_merge():
    with pytest.raises(ValueError):
        ClusterUpdate(
            cluster_id="spk_0",
            action=ClusterAction.MERGE,
            centroid=[1.0],
            member_count=2,
            occurrence_count=2,
        )


def test_apply_updates_drops_clusters_absorbed_earlier_in_the_pass():
    seeds = [
        _seed("spk_0", [1.0, 0.0], 2),
        _seed("spk_1", [0.99, 0.05], 2),
        _seed("spk_2", [0.98, 0.1], 2),
    ]
    working = ClusterStore("alice", seeds)
    first = working.merge("spk_0", "spk_1")
    second = working.merge("spk_0", "spk_2")
    assert first is not None and second is not None

    owned = ClusterStore("alice", seeds)
    # Deduplication keeps only the last merge into spk_0.
    owned.apply_updates([second], removed_ids=["spk_1", "spk_2"])

    assert owned.ids() == working.ids() == ["spk_0"]
    assert owned.get("spk_0").member_count == 6
    np.testing.assert_allclose(owned.get("spk_0").centroid, working.get("spk_0").centroid)


def test_remove_clusters_reserves_ids():
    store = ClusterStore("alice", [_seed("spk_0", [1.0, 0.0], 1)])

    assert store.remove_clusters(["spk_0", "spk_5"]) == ["spk_0"]
    assert len(store) == 0
    assert store.create_cluster([0.0, 1.0]).cluster_id == "spk_6"
