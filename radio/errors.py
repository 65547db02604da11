"""
Error taxonomy shared by the resolver, the playback controller and transports.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Where a fatal playback failure came from."""

    NETWORK = "network"
    DECODE = "decode"
    UNKNOWN = "unknown"


FAILURE_MESSAGES = {
    ErrorKind.NETWORK: "Unable to reach the stream. Check your connection and try again.",
    ErrorKind.DECODE: "The stream could not be played. The recording may be unavailable.",
    ErrorKind.UNKNOWN: "Playback failed for an unknown reason.",
}


class PlaybackError(Exception):
    """Base class for playback errors."""

    kind = ErrorKind.UNKNOWN


class InvalidRequest(PlaybackError, ValueError):
    """Raised when a playback request is malformed. Never retried."""


class NetworkError(PlaybackError):
    """A mirror was unreachable or timed out."""

    kind = ErrorKind.NETWORK


class MediaDecodeError(PlaybackError):
    """The transport rejected the stream content."""

    kind = ErrorKind.DECODE


class Exhausted(PlaybackError):
    """All mirrors and retries were consumed."""

    def __init__(self, kind: ErrorKind = ErrorKind.UNKNOWN) -> None:
        self.kind = kind
        super().__init__(FAILURE_MESSAGES[kind])


def kind_for_exception(exc: BaseException) -> ErrorKind:
    """Classify an exception raised by a transport call."""
    if isinstance(exc, PlaybackError):
        return exc.kind
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN
