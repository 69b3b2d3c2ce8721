"""
diaclust: incremental speaker clustering for diarized audio.
Cluster core lives in ``diaclust.clustering``; orchestration in ``diaclust.pipeline``.
"""

__version__ = "0.1.0"

import importlib
from typing import Any

_LAZY_EXPORTS = {
    "AudioBatchSequencer": "diaclust.pipeline.sequencer",
    "BatchResult": "diaclust.pipeline.sequencer",
    "process_audio_batch": "diaclust.pipeline.sequencer",
    "process_audio_source": "diaclust.pipeline.audio",
    "ClusteringConfig": "diaclust.pipeline.config",
    "MediaSource": "diaclust.pipeline.sources",
    "Transcription": "diaclust.pipeline.sources",
    "TranscriptSegment": "diaclust.pipeline.sources",
    "ClusterStore": "diaclust.clustering.store",
    "SpeakerCluster": "diaclust.clustering.models",
    "ClusterUpdate": "diaclust.clustering.models",
    "PromptRequest": "diaclust.clustering.models",
    "assign": "diaclust.clustering.assignment",
}

__all__ = ["__version__", *_LAZY_EXPORTS]


def __getattr__(name: str) -> Any:
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    value = getattr(importlib.import_module(module_name), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_LAZY_EXPORTS.keys()))
