"""
Playback requests, session state and the read-only snapshot handed to clients.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from radio.errors import ErrorKind

CandidateList = Tuple[str, ...]


class Status(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    RECOVERING = "recovering"
    FAILED = "failed"


@dataclass(frozen=True)
class LiveRequest:
    """Play a channel at its live edge."""

    channel_id: str


@dataclass(frozen=True)
class EpisodeRequest:
    """Play an archived episode, optionally starting part way through."""

    channel_id: str
    program_id: str
    date: str  # YYYY-MM-DD
    start_offset_seconds: float = 0.0
    known_duration_seconds: Optional[float] = None
    title: Optional[str] = None

    @property
    def episode_id(self) -> str:
        return f"{self.program_id}-{self.date}"


PlaybackRequest = Union[LiveRequest, EpisodeRequest]


@dataclass
class PlaybackSession:
    """Mutable state of the request currently being played.

    Only the controller writes to this; everything else sees a PlaybackSnapshot.
    """

    request: PlaybackRequest
    candidates: CandidateList
    candidate_index: int = 0
    retry_count: int = 0
    status: Status = Status.IDLE
    position_seconds: float = 0.0
    duration_seconds: Optional[float] = None
    stall_count: int = 0
    position_observed: bool = False
    ended: bool = False
    last_error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    title: str = ""
    subtitle: str = ""

    @property
    def is_live(self) -> bool:
        return isinstance(self.request, LiveRequest)

    @property
    def current_url(self) -> str:
        return self.candidates[self.candidate_index]

    def resume_offset(self) -> Optional[float]:
        """Where a reload of this session should start, None for the live edge."""
        if self.is_live:
            return None
        if self.position_observed:
            return self.position_seconds
        return self.request.start_offset_seconds


@dataclass(frozen=True)
class PlaybackSnapshot:
    status: Status = Status.IDLE
    position_seconds: float = 0.0
    duration_seconds: Optional[float] = None
    title: str = ""
    subtitle: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    kind: Optional[str] = None
    channel_id: Optional[str] = None
    program_id: Optional[str] = None
    episode_id: Optional[str] = None
    current_url: Optional[str] = None
    candidate_index: int = 0
    candidate_count: int = 0
    retry_count: int = 0
    volume: float = 100.0

    @classmethod
    def from_session(
        cls, session: Optional[PlaybackSession], volume: float = 100.0
    ) -> "PlaybackSnapshot":
        if session is None:
            return cls(volume=volume)

        request = session.request
        episode = request if isinstance(request, EpisodeRequest) else None
        return cls(
            status=session.status,
            position_seconds=session.position_seconds,
            duration_seconds=session.duration_seconds,
            title=session.title,
            subtitle=session.subtitle,
            error=session.error_message,
            error_kind=session.last_error_kind if session.error_message else None,
            kind="live" if session.is_live else "episode",
            channel_id=request.channel_id,
            program_id=episode.program_id if episode else None,
            episode_id=episode.episode_id if episode else None,
            current_url=session.current_url,
            candidate_index=session.candidate_index,
            candidate_count=len(session.candidates),
            retry_count=session.retry_count,
            volume=volume,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "position_seconds": self.position_seconds,
            "duration_seconds": self.duration_seconds,
            "title": self.title,
            "subtitle": self.subtitle,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "kind": self.kind,
            "channel_id": self.channel_id,
            "program_id": self.program_id,
            "episode_id": self.episode_id,
            "current_url": self.current_url,
            "candidate_index": self.candidate_index,
            "candidate_count": self.candidate_count,
            "retry_count": self.retry_count,
            "volume": self.volume,
        }
