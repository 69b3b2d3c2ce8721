from __future__ import annotations

from collections.abc import Iterable

from .models import ClusterAction, ClusterUpdate


def deduplicate_cluster_updates(updates: Iterable[ClusterUpdate]) -> list[ClusterUpdate]:
    """Reduce a pass's updates to the latest state per cluster id.

    Records keep the position at which their cluster id was first seen.  A
    record replaces the one held for its id when it is a ``create`` or when
    its occurrence count is strictly higher.  A ``merge`` record also drops
    whatever was held for the absorbed cluster, and later records for that id
    are ignored since it no longer exists.
    """

    latest: dict[str, ClusterUpdate] = {}
    absorbed: set[str] = set()
    for update in updates:
        if update.cluster_id in absorbed:
            continue
        if update.action is ClusterAction.MERGE and update.merged_with_id:
            absorbed.add(update.merged_with_id)
            latest.pop(update.merged_with_id, None)
        existing = latest.get(update.cluster_id)
        if (
            existing is None
            or update.action is ClusterAction.CREATE
            or update.occurrence_count > existing.occurrence_count
        ):
            latest[update.cluster_id] = update
    return list(latest.values())


def absorbed_cluster_ids(updates: Iterable[ClusterUpdate]) -> list[str]:
    """Ids removed by merges in ``updates``, in the order they were absorbed."""

    seen: dict[str, None] = {}
    for update in updates:
        if update.action is ClusterAction.MERGE and update.merged_with_id:
            seen.setdefault(update.merged_with_id, None)
    return list(seen)


__all__ = ["absorbed_cluster_ids", "deduplicate_cluster_updates"]
