"""Collaborator contracts consumed by the audio pipeline.

Transcription and speaker-embedding extraction live outside this package.
The pipeline only relies on the two protocols below; any object with a
matching method works (HTTP clients, local models, test stubs).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class MediaSource:
    """An uploaded audio file to process."""

    url: str
    mime_type: str = "audio/wav"
    size: int = 0
    filename: str | None = None
    storage_id: str | None = None

    @property
    def display_name(self) -> str:
        return self.filename or self.url


@dataclass
class TranscriptSegment:
    """One diarized span of speech returned by the transcriber.

    ``speaker`` and ``confidence`` are optional upstream; the pipeline fills
    in configured defaults when they are missing.
    """

    start: float
    end: float
    text: str
    speaker: str | None = None
    confidence: float | None = None


@dataclass
class Transcription:
    text: str = ""
    segments: list[TranscriptSegment] = field(default_factory=list)
    duration: float | None = None
    language: str | None = None


@runtime_checkable
class Transcriber(Protocol):
    def transcribe(self, source: MediaSource) -> Transcription: ...


@runtime_checkable
class EmbeddingSource(Protocol):
    """Produces a fixed-length speaker embedding for a transcript segment.

    The dimensionality must be the same for every call within a session.
    """

    def generate_embedding(self, segment: TranscriptSegment) -> Sequence[float]: ...


__all__ = [
    "EmbeddingSource",
    "MediaSource",
    "Transcriber",
    "Transcription",
    "TranscriptSegment",
]
