"""Audio pipeline orchestration around the speaker clustering core."""

from __future__ import annotations

from importlib import import_module
from types import ModuleType

_SUBMODULES: dict[str, str] = {
    "audio": "diaclust.pipeline.audio",
    "config": "diaclust.pipeline.config",
    "errors": "diaclust.pipeline.errors",
    "logging_utils": "diaclust.pipeline.logging_utils",
    "sequencer": "diaclust.pipeline.sequencer",
    "sources": "diaclust.pipeline.sources",
}

__all__ = list(_SUBMODULES)


def __getattr__(name: str) -> ModuleType:
    if name in _SUBMODULES:
        module = import_module(_SUBMODULES[name])
        globals()[name] = module
        return module
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_SUBMODULES.keys()))
