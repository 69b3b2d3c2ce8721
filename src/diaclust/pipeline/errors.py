"""Failures raised while turning audio sources into speaker clusters.

Each error names the step that broke (``transcribe``, ``embed``,
``sequencer`` ...) and carries a JSON-friendly ``context`` with the source
and segment involved, so a job runner can mark a single source or segment as
failed and keep going.  Programming errors from the clustering core
(dimension mismatches, unknown cluster ids) are not part of this hierarchy
and are never caught by the pipeline.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "PipelineError",
    "StageExecutionError",
    "ConfigurationError",
    "DependencyError",
    "EmbeddingSourceError",
    "ConcurrentSessionError",
    "attach_context",
    "coerce_stage_error",
]


@dataclass(slots=True, eq=False)
class PipelineError(RuntimeError):
    """Recoverable failure of one step of speaker clustering.

    Attributes
    ----------
    message:
        What went wrong, phrased for the person reading the batch report.
    stage:
        Step that failed; ``None`` when the problem is the configuration or
        environment rather than a source.
    context:
        Source name, segment index and similar identifiers, safe to put in
        ``BatchResult.to_dict()``.
    cause:
        Exception raised by the collaborator, if any.  Not rendered by
        ``__str__``.
    """

    message: str
    stage: str | None = None
    context: MutableMapping[str, Any] = field(default_factory=dict)
    cause: Exception | None = None

    def __post_init__(self) -> None:
        if self.context is None:
            self.context = {}

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class StageExecutionError(PipelineError):
    """A source could not get through one step (usually transcription)."""


class ConfigurationError(PipelineError):
    """Clustering settings were unknown or out of range."""


class DependencyError(PipelineError):
    """numpy (or another runtime requirement) is missing or too old."""


class EmbeddingSourceError(StageExecutionError):
    """The embedding collaborator failed or returned an unusable vector."""


class ConcurrentSessionError(PipelineError):
    """A second batch tried to mutate a cluster store already owned by a running batch."""


def attach_context(
    error: PipelineError,
    context: Mapping[str, Any] | None,
) -> PipelineError:
    """Add identifiers to ``error.context`` without overwriting ones already set."""

    if not context:
        return error
    for key, value in context.items():
        error.context.setdefault(key, value)
    return error


def coerce_stage_error(
    stage: str,
    message: str,
    *,
    context: Mapping[str, Any] | None = None,
    cause: Exception | None = None,
) -> StageExecutionError:
    """Wrap a collaborator exception as the failure of ``stage``.

    The ``repr`` of ``cause`` is recorded under ``context["cause"]`` so it
    survives serialisation.
    """

    payload: MutableMapping[str, Any] = dict(context or {})
    if cause is not None:
        payload.setdefault("cause", repr(cause))
    return StageExecutionError(message=message, stage=stage, context=payload, cause=cause)
