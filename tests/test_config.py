"""Tests for clustering configuration and dependency checks."""

from __future__ import annotations

import pytest

from diaclust.pipeline.config import (
    DEFAULT_CLUSTERING_CONFIG,
    ClusteringConfig,
    build_clustering_config,
    dependency_health_summary,
    verify_dependencies,
)
from diaclust.pipeline.errors import ConfigurationError


def test_defaults_match_documented_values():
    cfg = ClusteringConfig()

    assert cfg.similarity_threshold == 0.85
    assert cfg.occurrence_threshold == 5
    assert cfg.high_priority_occurrences == 10
    assert cfg.merge_similarity_threshold is None
    assert cfg.prompt_snippet_chars == 100
    assert cfg.unknown_speaker_label == "SPEAKER_UNKNOWN"
    assert DEFAULT_CLUSTERING_CONFIG == cfg.model_dump()


def test_build_config_applies_overrides():
    cfg = build_clustering_config({"similarity_threshold": 0.7, "occurrence_threshold": None})

    assert cfg.similarity_threshold == pytest.approx(0.7)
    assert cfg.occurrence_threshold == 5
    assert build_clustering_config(cfg) is cfg


@pytest.mark.parametrize(
    "overrides",
    [
        {"similarity_threshold": 1.5},
        {"similarity_threshold": True},
        {"occurrence_threshold": 0},
        {"occurrence_threshold": 12},
        {"merge_similarity_threshold": -3},
        {"cluster_id_prefix": "  "},
        {"default_segment_confidence": 2.0},
    ],
)
def test_invalid_values_raise_configuration_error(overrides):
    with pytest.raises(ConfigurationError):
        build_clustering_config(overrides)


def test_unknown_key_is_rejected():
    with pytest.raises(ConfigurationError) as excinfo:
        build_clustering_config({"similarity": 0.9})
    assert excinfo.value.context["field"] == "similarity"


def test_direct_construction_raises_value_error():
    with pytest.raises(ValueError):
        ClusteringConfig(high_priority_occurrences=3)


def test_from_env_reads_prefixed_variables():
    env = {
        "DIACLUST_SIMILARITY_THRESHOLD": "0.9",
        "DIACLUST_OCCURRENCE_THRESHOLD": "3",
        "DIACLUST_MERGE_SIMILARITY_THRESHOLD": "0.97",
        "DIACLUST_CLUSTER_ID_PREFIX": "speaker",
        "UNRELATED": "1",
    }

    cfg = ClusteringConfig.from_env(env)

    assert cfg.similarity_threshold == pytest.approx(0.9)
    assert cfg.occurrence_threshold == 3
    assert cfg.merge_similarity_threshold == pytest.approx(0.97)
    assert cfg.cluster_id_prefix == "speaker"


def test_from_env_disables_merge_and_rejects_garbage():
    assert ClusteringConfig.from_env(
        {"DIACLUST_MERGE_SIMILARITY_THRESHOLD": "off"}
    ).merge_similarity_threshold is None
    with pytest.raises(ConfigurationError):
        ClusteringConfig.from_env({"DIACLUST_OCCURRENCE_THRESHOLD": "five"})


def test_dependency_summary_reports_numpy():
    summary = dependency_health_summary()

    assert summary["numpy"]["status"] in {"ok", "warn"}
    ok, issues = verify_dependencies()
    assert ok, issues


def test_ensure_dependencies_raises_on_missing_module(monkeypatch):
    from diaclust.pipeline import config as config_module
    from diaclust.pipeline.config import ensure_dependencies
    from diaclust.pipeline.errors import DependencyError

    ensure_dependencies()
    monkeypatch.setitem(
        config_module.CORE_DEPENDENCY_REQUIREMENTS, "definitely-not-installed-pkg", "1.0"
    )

    with pytest.raises(DependencyError) as excinfo:
        ensure_dependencies()
    assert excinfo.value.stage == "dependency_check"
    assert "definitely-not-installed-pkg" in str(excinfo.value)
