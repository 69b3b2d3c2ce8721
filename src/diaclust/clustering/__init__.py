from __future__ import annotations

from .assignment import DEFAULT_SIMILARITY_THRESHOLD, Assignment, assign
from .escalation import (
    DEFAULT_HIGH_PRIORITY_OCCURRENCES,
    DEFAULT_OCCURRENCE_THRESHOLD,
    DEFAULT_SNIPPET_CHARS,
    build_prompt_request,
    clusters_needing_prompt,
    prompt_priority,
    select_prompt,
)
from .maintenance import merge_similar_clusters
from .models import ClusterAction, ClusterUpdate, PromptPriority, PromptRequest, SpeakerCluster
from .store import BestMatch, ClusterNotFoundError, ClusterStore, OwnerMismatchError
from .updates import absorbed_cluster_ids, deduplicate_cluster_updates
from .vector_math import DimensionMismatchError

__all__ = [
    "Assignment",
    "BestMatch",
    "ClusterAction",
    "ClusterNotFoundError",
    "ClusterStore",
    "ClusterUpdate",
    "DEFAULT_HIGH_PRIORITY_OCCURRENCES",
    "DEFAULT_OCCURRENCE_THRESHOLD",
    "DEFAULT_SIMILARITY_THRESHOLD",
    "DEFAULT_SNIPPET_CHARS",
    "DimensionMismatchError",
    "OwnerMismatchError",
    "PromptPriority",
    "PromptRequest",
    "SpeakerCluster",
    "absorbed_cluster_ids",
    "assign",
    "build_prompt_request",
    "clusters_needing_prompt",
    "deduplicate_cluster_updates",
    "merge_similar_clusters",
    "prompt_priority",
    "select_prompt",
]
