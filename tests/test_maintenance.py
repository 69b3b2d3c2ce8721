"""Tests for the post-batch merge of near-duplicate clusters."""

from __future__ import annotations

import numpy as np

from diaclust.clustering import ClusterAction, ClusterStore, SpeakerCluster, merge_similar_clusters


def _seed(cluster_id: str, centroid, label: str | None = None) -> SpeakerCluster:
    return SpeakerCluster(id=cluster_id, owner="alice", centroid=centroid, label=label)


def test_merges_near_duplicates_into_earliest_cluster():
    store = ClusterStore(
        "alice",
        [
            _seed("spk_0", [1.0, 0.0, 0.0]),
            _seed("spk_1", [0.0, 1.0, 0.0]),
            _seed("spk_2", [0.98, 0.05, 0.0]),
        ],
    )

    updates = merge_similar_clusters(store, 0.95)

    assert len(updates) == 1
    assert updates[0].action is ClusterAction.MERGE
    assert updates[0].cluster_id == "spk_0"
    assert updates[0].merged_with_id == "spk_2"
    assert store.ids() == ["spk_0", "spk_1"]
    np.testing.assert_allclose(store.get("spk_0").centroid, [0.99, 0.025, 0.0])


def test_labeled_cluster_becomes_merge_target():
    store = ClusterStore(
        "alice",
        [_seed("spk_0", [1.0, 0.0]), _seed("spk_1", [1.0, 0.01], label="Erin")],
    )

    updates = merge_similar_clusters(store, 0.9)

    assert [(u.cluster_id, u.merged_with_id) for u in updates] == [("spk_1", "spk_0")]
    assert store.get("spk_1").label == "Erin"


def test_differently_labeled_clusters_are_kept_apart():
    store = ClusterStore(
        "alice",
        [_seed("spk_0", [1.0, 0.0], label="Ann"), _seed("spk_1", [1.0, 0.0], label="Ben")],
    )

    assert merge_similar_clusters(store, 0.5) == []
    assert len(store) == 2


def test_nothing_to_merge_below_threshold():
    store = ClusterStore("alice", [_seed("spk_0", [1.0, 0.0]), _seed("spk_1", [0.0, 1.0])])

    assert merge_similar_clusters(store, 0.5) == []
    assert merge_similar_clusters(ClusterStore("alice"), 0.5) == []
