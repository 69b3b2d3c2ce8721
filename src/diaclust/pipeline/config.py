"""Configuration defaults and dependency helpers for the diaclust pipeline."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import fields as dataclass_fields
from importlib import metadata as importlib_metadata
from typing import Any

from packaging.version import InvalidVersion, Version

from ..clustering.assignment import DEFAULT_SIMILARITY_THRESHOLD
from ..clustering.escalation import (
    DEFAULT_HIGH_PRIORITY_OCCURRENCES,
    DEFAULT_OCCURRENCE_THRESHOLD,
    DEFAULT_SNIPPET_CHARS,
)
from ..clustering.store import DEFAULT_ID_PREFIX
from .errors import ConfigurationError, DependencyError

ENV_PREFIX = "DIACLUST_"


def _ensure_numeric_range(
    name: str,
    value: float,
    *,
    ge: float | None = None,
    gt: float | None = None,
    le: float | None = None,
    lt: float | None = None,
) -> None:
    """Validate numeric range constraints for configuration fields."""

    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    if ge is not None and value < ge:
        raise ValueError(f"{name} must be >= {ge}")
    if gt is not None and value <= gt:
        raise ValueError(f"{name} must be > {gt}")
    if le is not None and value > le:
        raise ValueError(f"{name} must be <= {le}")
    if lt is not None and value >= lt:
        raise ValueError(f"{name} must be < {lt}")


@dataclass(slots=True)
class ClusteringConfig:
    """Validated configuration for speaker clustering and escalation."""

    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    occurrence_threshold: int = DEFAULT_OCCURRENCE_THRESHOLD
    high_priority_occurrences: int = DEFAULT_HIGH_PRIORITY_OCCURRENCES
    # Post-source merge of near-duplicate clusters; None disables the pass.
    merge_similarity_threshold: float | None = None
    prompt_snippet_chars: int = DEFAULT_SNIPPET_CHARS
    cluster_id_prefix: str = DEFAULT_ID_PREFIX
    unknown_speaker_label: str = "SPEAKER_UNKNOWN"
    default_segment_confidence: float = 0.8
    fallback_segment_confidence: float = 0.7

    def __post_init__(self) -> None:  # noqa: D401 - dataclass validation helper
        """Validate and normalise configuration fields."""

        _ensure_numeric_range(
            "similarity_threshold", self.similarity_threshold, ge=-1.0, le=1.0
        )
        self.similarity_threshold = float(self.similarity_threshold)
        self._validate_positive_int("occurrence_threshold", self.occurrence_threshold)
        self._validate_positive_int("high_priority_occurrences", self.high_priority_occurrences)
        if self.high_priority_occurrences < self.occurrence_threshold:
            raise ValueError("high_priority_occurrences must be >= occurrence_threshold")
        if self.merge_similarity_threshold is not None:
            _ensure_numeric_range(
                "merge_similarity_threshold", self.merge_similarity_threshold, ge=-1.0, le=1.0
            )
            self.merge_similarity_threshold = float(self.merge_similarity_threshold)
        self._validate_positive_int("prompt_snippet_chars", self.prompt_snippet_chars)
        if not isinstance(self.cluster_id_prefix, str) or not self.cluster_id_prefix.strip():
            raise ValueError("cluster_id_prefix must be a non-empty string")
        self.cluster_id_prefix = self.cluster_id_prefix.strip()
        if not isinstance(self.unknown_speaker_label, str) or not self.unknown_speaker_label:
            raise ValueError("unknown_speaker_label must be a non-empty string")
        _ensure_numeric_range(
            "default_segment_confidence", self.default_segment_confidence, ge=0.0, le=1.0
        )
        _ensure_numeric_range(
            "fallback_segment_confidence", self.fallback_segment_confidence, ge=0.0, le=1.0
        )

    @staticmethod
    def _validate_positive_int(name: str, value: int) -> None:
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ValueError(f"{name} must be an integer > 0")

    def model_dump(self) -> dict[str, Any]:
        """Return the configuration as a dictionary."""

        return {field.name: getattr(self, field.name) for field in dataclass_fields(self)}

    @classmethod
    def model_validate(cls, data: Mapping[str, Any] | ClusteringConfig) -> ClusteringConfig:
        """Validate a mapping and construct a configuration instance."""

        if isinstance(data, ClusteringConfig):
            return data
        if not isinstance(data, Mapping):
            raise ValueError("ClusteringConfig.model_validate expects a mapping")
        return cls(**dict(data))

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        prefix: str = ENV_PREFIX,
    ) -> ClusteringConfig:
        """Build a configuration from ``DIACLUST_*`` environment variables.

        ``DIACLUST_SIMILARITY_THRESHOLD=0.8`` overrides ``similarity_threshold``
        and so on; an empty ``DIACLUST_MERGE_SIMILARITY_THRESHOLD`` disables the
        merge pass.
        """

        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for field in dataclass_fields(cls):
            raw = env.get(f"{prefix}{field.name.upper()}")
            if raw is None:
                continue
            overrides[field.name] = _coerce_env_value(field.name, raw)
        return build_clustering_config(overrides)


_INT_FIELDS = {"occurrence_threshold", "high_priority_occurrences", "prompt_snippet_chars"}
_FLOAT_FIELDS = {
    "similarity_threshold",
    "merge_similarity_threshold",
    "default_segment_confidence",
    "fallback_segment_confidence",
}


def _coerce_env_value(name: str, raw: str) -> Any:
    text = raw.strip()
    if name == "merge_similarity_threshold" and text.lower() in {"", "none", "off"}:
        return None
    try:
        if name in _INT_FIELDS:
            return int(text)
        if name in _FLOAT_FIELDS:
            return float(text)
    except ValueError as exc:
        raise ConfigurationError(
            message=f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}",
            context={"field": name, "value": raw},
            cause=exc,
        ) from exc
    return text


DEFAULT_CLUSTERING_CONFIG: dict[str, Any] = ClusteringConfig().model_dump()


def build_clustering_config(
    overrides: Mapping[str, Any] | ClusteringConfig | None = None,
) -> ClusteringConfig:
    """Return a validated configuration merged with ``overrides``.

    Unknown keys and invalid values raise :class:`ConfigurationError`.
    ``None`` values keep the default, except for the merge threshold where
    ``None`` is the meaningful "disabled" setting.
    """

    if isinstance(overrides, ClusteringConfig):
        return overrides

    merged: dict[str, Any] = dict(DEFAULT_CLUSTERING_CONFIG)
    for key, value in (overrides or {}).items():
        if key not in merged:
            raise ConfigurationError(
                message=f"Unknown configuration key: {key}", context={"field": key}
            )
        if value is None and key != "merge_similarity_threshold":
            continue
        merged[key] = value

    try:
        return ClusteringConfig.model_validate(merged)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(message=str(exc), cause=exc) from exc


CORE_DEPENDENCY_REQUIREMENTS: dict[str, str] = {
    "numpy": "1.24",
}


def _collect_dependency_status(mod: str) -> tuple[Any, str | None, Exception | None]:
    module = None
    import_error: Exception | None = None
    try:
        module = __import__(mod.replace("-", "_"))
    except Exception as exc:  # pragma: no cover - defensive import guard
        import_error = exc
    version: str | None = None
    if module is not None:
        try:
            version = importlib_metadata.version(mod)
        except importlib_metadata.PackageNotFoundError:
            version = getattr(module, "__version__", None)
    return module, version, import_error


def dependency_health_summary() -> dict[str, dict[str, Any]]:
    """Status of each core runtime dependency: ``ok``, ``warn`` or ``error``."""

    summary: dict[str, dict[str, Any]] = {}
    for mod, min_ver in CORE_DEPENDENCY_REQUIREMENTS.items():
        entry: dict[str, Any] = {"required_min": min_ver}
        module, version, import_error = _collect_dependency_status(mod)
        if module is None:
            entry["status"] = "error"
            entry["issue"] = str(import_error)
            summary[mod] = entry
            continue
        entry["status"] = "ok"
        if version is None:
            entry["issue"] = "version metadata unavailable"
        else:
            entry["version"] = str(version)
            try:
                too_old = Version(str(version)) < Version(min_ver)
            except InvalidVersion:
                too_old = False
                entry["issue"] = f"unparseable version {version!r}"
            if too_old:
                entry["status"] = "warn"
                entry["issue"] = f"version {version} < required {min_ver}"
        summary[mod] = entry
    return summary


def verify_dependencies(strict: bool = False) -> tuple[bool, list[str]]:
    """Return ``(ok, issues)``; ``strict`` also treats old versions as failures."""

    issues: list[str] = []
    for mod, entry in dependency_health_summary().items():
        if entry["status"] == "error":
            issues.append(f"Missing or failed to import: {mod} ({entry.get('issue')})")
        elif strict and entry["status"] == "warn":
            issues.append(f"{mod} {entry.get('issue')}")
    return (len(issues) == 0), issues


def ensure_dependencies(strict: bool = False) -> None:
    """Raise :class:`DependencyError` when the runtime stack is unusable."""

    ok, issues = verify_dependencies(strict)
    if not ok:
        raise DependencyError(
            message="; ".join(issues), stage="dependency_check", context={"issues": issues}
        )


__all__ = [
    "CORE_DEPENDENCY_REQUIREMENTS",
    "DEFAULT_CLUSTERING_CONFIG",
    "ClusteringConfig",
    "build_clustering_config",
    "dependency_health_summary",
    "ensure_dependencies",
    "verify_dependencies",
]
