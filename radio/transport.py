"""
Transport adapter contract and the events adapters report back.

The controller drives any object satisfying ``TransportAdapter``. Adapters never
change controller state directly: everything they observe is delivered as one of
the event dataclasses below to the listener bound with ``attach()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable

from radio.errors import ErrorKind


@dataclass(frozen=True)
class TransportEvent:
    """Marker base for adapter-originated events."""


@dataclass(frozen=True)
class Ready(TransportEvent):
    """Media is loaded and can start; duration is None for live or unknown."""

    duration: Optional[float] = None


@dataclass(frozen=True)
class TimeUpdate(TransportEvent):
    position: float


@dataclass(frozen=True)
class Stalled(TransportEvent):
    """Buffering stall or other recoverable hiccup."""


@dataclass(frozen=True)
class FatalError(TransportEvent):
    kind: ErrorKind = ErrorKind.UNKNOWN
    message: str = ""


@dataclass(frozen=True)
class Ended(TransportEvent):
    """Natural end of media (never sent for detach)."""


EventListener = Callable[[TransportEvent], None]


@runtime_checkable
class TransportAdapter(Protocol):
    """Something that can play one stream URL at a time into the output sink."""

    @property
    def supports_segmented(self) -> bool: ...

    def attach(self, listener: EventListener) -> None:
        """Bind to the output sink; events go to ``listener`` until detach()."""
        ...

    def detach(self) -> None:
        """Stop network activity, release decoder resources and drop the listener."""
        ...

    def load(self, url: str, seek_hint: Optional[float] = None) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def set_volume(self, level: float) -> None:
        """Output volume, 0-100. May be called while unbound; applies to later loads."""
        ...


def usable_duration(duration: Optional[float]) -> bool:
    """True when a reported duration is a finite positive number."""
    if duration is None:
        return False
    try:
        value = float(duration)
    except (TypeError, ValueError):
        return False
    return value > 0 and value != float("inf") and value == value
