from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import numpy as np

from .vector_math import as_embedding


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class ClusterAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    MERGE = "merge"


class PromptPriority(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return utc_now()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as emitted by the capture clients.
        return datetime.fromtimestamp(float(value) / 1000.0, tz=UTC)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(eq=False)
class SpeakerCluster:
    """A persistent speaker identity owned by a single user.

    ``centroid`` is the arithmetic mean of every embedding folded into the
    cluster, merged-in members included.  ``member_count`` counts those
    embeddings; ``occurrence_count`` counts clustering events and drives the
    labeling escalation.  Both start at one because clusters are only ever
    created from a first assignment.
    """

    id: str
    owner: str
    centroid: np.ndarray
    member_count: int = 1
    occurrence_count: int = 1
    is_labeled: bool = False
    label: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    last_updated: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.centroid = as_embedding(self.centroid)
        if self.centroid.size == 0:
            raise ValueError(f"Cluster {self.id!r} has an empty centroid")
        self.member_count = int(self.member_count)
        self.occurrence_count = int(self.occurrence_count)
        if self.member_count < 1:
            raise ValueError(f"Cluster {self.id!r} must have member_count >= 1")
        if self.occurrence_count < 0:
            raise ValueError(f"Cluster {self.id!r} must have occurrence_count >= 0")
        if self.label is not None:
            self.is_labeled = True
        self.is_labeled = bool(self.is_labeled)

    @property
    def dimensions(self) -> int:
        return int(self.centroid.shape[0])

    def with_label(self, label: str) -> SpeakerCluster:
        """Return a labeled copy, as fed back by the human labeling workflow."""

        return replace(self, label=label, is_labeled=True, last_updated=utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "centroid": self.centroid.tolist(),
            "member_count": self.member_count,
            "occurrence_count": self.occurrence_count,
            "is_labeled": self.is_labeled,
            "label": self.label,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SpeakerCluster:
        if not isinstance(data, Mapping):
            raise ValueError("SpeakerCluster.from_dict expects a mapping")
        try:
            cluster_id = str(data["id"])
            owner = str(data["owner"])
            centroid = data["centroid"]
        except KeyError as exc:
            raise ValueError(f"Speaker cluster payload missing field {exc.args[0]!r}") from exc
        return cls(
            id=cluster_id,
            owner=owner,
            centroid=centroid,
            member_count=int(data.get("member_count", 1)),
            occurrence_count=int(data.get("occurrence_count", 1)),
            is_labeled=bool(data.get("is_labeled", False)),
            label=data.get("label"),
            created_at=_parse_timestamp(data.get("created_at")),
            last_updated=_parse_timestamp(data.get("last_updated")),
        )


@dataclass(frozen=True, eq=False)
class ClusterUpdate:
    """One cluster mutation, emitted so callers can replay or persist it."""

    cluster_id: str
    action: ClusterAction
    centroid: np.ndarray
    member_count: int
    occurrence_count: int
    merged_with_id: str | None = None
    label: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", ClusterAction(self.action))
        object.__setattr__(self, "centroid", as_embedding(self.centroid))
        if self.action is ClusterAction.MERGE and not self.merged_with_id:
            raise ValueError("merge updates must name the absorbed cluster")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "cluster_id": self.cluster_id,
            "action": self.action.value,
            "centroid": self.centroid.tolist(),
            "member_count": self.member_count,
            "occurrence_count": self.occurrence_count,
        }
        if self.merged_with_id is not None:
            payload["merged_with_id"] = self.merged_with_id
        if self.label is not None:
            payload["label"] = self.label
        return payload


@dataclass(frozen=True)
class PromptRequest:
    """Request for a human to label a recurring, unidentified speaker."""

    cluster_id: str
    context: str
    priority: PromptPriority
    type: str = "speaker_label"
    suggested_label: str | None = None
    expires_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type,
            "cluster_id": self.cluster_id,
            "context": self.context,
            "priority": PromptPriority(self.priority).value,
        }
        if self.suggested_label is not None:
            payload["suggested_label"] = self.suggested_label
        if self.expires_at is not None:
            payload["expires_at"] = self.expires_at.isoformat()
        return payload


__all__ = [
    "ClusterAction",
    "ClusterUpdate",
    "PromptPriority",
    "PromptRequest",
    "SpeakerCluster",
    "utc_now",
]
