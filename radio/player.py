"""
Playback session controller.

State machine: Idle -> Loading -> Playing/Paused <-> Recovering -> Loading | Failed.

Every command and every transport event goes through one queue and is applied by
a single transition function, one at a time. Each transport binding gets a
generation number; events tagged with an older generation are dropped, so a slow
error from a torn-down stream can never touch the session that replaced it.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from radio.api.settings_service import playback_settings
from radio.errors import ErrorKind, Exhausted, kind_for_exception
from radio.models import (
    CandidateList,
    EpisodeRequest,
    LiveRequest,
    PlaybackRequest,
    PlaybackSession,
    PlaybackSnapshot,
    Status,
)
from radio.source_resolver import SourceResolver
from radio.transport import (
    Ended,
    FatalError,
    Ready,
    Stalled,
    TimeUpdate,
    TransportAdapter,
    TransportEvent,
    usable_duration,
)

LOGGER = logging.getLogger(__name__)

MAX_RETRIES = 2
BACKOFF_SECONDS = 1.0
STALL_THRESHOLD = 3
DEFAULT_VOLUME = 100.0

ACTIVE_STATUSES = (Status.PLAYING, Status.PAUSED)

Scheduler = Callable[[float, Callable[[], None]], Any]
SnapshotListener = Callable[[PlaybackSnapshot], None]


def _clamp_volume(level: float) -> float:
    return max(0.0, min(float(level), 100.0))


def timer_scheduler(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Run ``callback`` after ``delay`` seconds on a daemon timer thread."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


# Queue items. Commands carry what the transition needs; adapter events carry
# the generation of the binding that produced them.


@dataclass(frozen=True)
class _Start:
    request: PlaybackRequest
    candidates: CandidateList


@dataclass(frozen=True)
class _Stop:
    pass


@dataclass(frozen=True)
class _Pause:
    pass


@dataclass(frozen=True)
class _Resume:
    pass


@dataclass(frozen=True)
class _Seek:
    offset: float


@dataclass(frozen=True)
class _Volume:
    level: float


@dataclass(frozen=True)
class _RetryDue:
    generation: int


@dataclass(frozen=True)
class _BindingEvent:
    generation: int
    event: TransportEvent


class PlaybackController:
    """Owns the single active PlaybackSession and drives the transport."""

    def __init__(
        self,
        transport: TransportAdapter,
        resolver: Optional[SourceResolver] = None,
        max_retries: int = MAX_RETRIES,
        backoff_seconds: float = BACKOFF_SECONDS,
        stall_threshold: int = STALL_THRESHOLD,
        scheduler: Optional[Scheduler] = None,
        volume: float = DEFAULT_VOLUME,
    ):
        self._transport = transport
        self._resolver = resolver or SourceResolver.from_settings(
            supports_segmented=transport.supports_segmented
        )
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._stall_threshold = stall_threshold
        self._scheduler = scheduler or timer_scheduler
        self._volume = _clamp_volume(volume)

        self._session: Optional[PlaybackSession] = None
        self._generation = 0
        self._attached = False
        self._pending_retry: Any = None

        self._events: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._draining_thread: Optional[int] = None

        self._listeners: List[SnapshotListener] = []
        self._snapshot = PlaybackSnapshot(volume=self._volume)

        self._handlers = {
            _Start: self._on_start,
            _Stop: self._on_stop,
            _Pause: self._on_pause,
            _Resume: self._on_resume,
            _Seek: self._on_seek,
            _Volume: self._on_volume,
            _RetryDue: self._on_retry_due,
            _BindingEvent: self._on_binding_event,
        }

    @classmethod
    def from_settings(
        cls, transport: TransportAdapter, scheduler: Optional[Scheduler] = None
    ) -> "PlaybackController":
        playback = playback_settings()
        return cls(
            transport,
            max_retries=playback["max_retries"],
            backoff_seconds=playback["backoff_seconds"],
            stall_threshold=playback["stall_threshold"],
            scheduler=scheduler,
            volume=playback["volume"],
        )

    # ------------------------------------------------------------------
    # Command surface
    # ------------------------------------------------------------------

    @property
    def resolver(self) -> SourceResolver:
        return self._resolver

    @property
    def generation(self) -> int:
        return self._generation

    def snapshot(self) -> PlaybackSnapshot:
        return self._snapshot

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every transition."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def start(self, request: PlaybackRequest) -> PlaybackSnapshot:
        """Begin playing ``request``; raises InvalidRequest if it is malformed."""
        candidates = self._resolver.resolve(request)
        self._post(_Start(request, candidates))
        return self._snapshot

    def supersede(self, request: PlaybackRequest) -> PlaybackSnapshot:
        """Replace whatever is playing with ``request``."""
        return self.start(request)

    def stop(self) -> PlaybackSnapshot:
        self._post(_Stop())
        return self._snapshot

    def pause(self) -> PlaybackSnapshot:
        self._post(_Pause())
        return self._snapshot

    def resume(self) -> PlaybackSnapshot:
        self._post(_Resume())
        return self._snapshot

    def seek(self, offset_seconds: float) -> PlaybackSnapshot:
        self._post(_Seek(float(offset_seconds)))
        return self._snapshot

    def set_volume(self, level: float) -> PlaybackSnapshot:
        """Set output volume, 0-100. Kept across requests."""
        self._post(_Volume(float(level)))
        return self._snapshot

    # ------------------------------------------------------------------
    # Event queue
    # ------------------------------------------------------------------

    def _post(self, item: Any) -> None:
        self._events.put(item)
        if self._draining_thread == threading.get_ident():
            # Posted from inside a transition; picked up once it finishes.
            return

        with self._lock:
            self._draining_thread = threading.get_ident()
            try:
                while True:
                    try:
                        next_item = self._events.get_nowait()
                    except queue.Empty:
                        break
                    self._apply(next_item)
            finally:
                self._draining_thread = None

    def _apply(self, item: Any) -> None:
        handler = self._handlers[type(item)]
        try:
            handler(item)
        except Exception:
            LOGGER.exception("Playback transition failed while handling %s", type(item).__name__)
            self._fail(ErrorKind.UNKNOWN)

    # ------------------------------------------------------------------
    # Transport binding
    # ------------------------------------------------------------------

    def _call_transport(self, action: str, *args: Any) -> bool:
        """Invoke a transport method, turning exceptions into a fatal event."""
        try:
            getattr(self._transport, action)(*args)
        except Exception as exc:
            kind = kind_for_exception(exc)
            LOGGER.warning("Transport %s failed (%s): %s", action, kind.value, exc)
            self._events.put(_BindingEvent(self._generation, FatalError(kind, str(exc))))
            return False
        return True

    def _bind(self, url: str, seek_hint: Optional[float]) -> None:
        self._release_binding()
        self._generation += 1
        generation = self._generation

        def listener(event: TransportEvent) -> None:
            self._post(_BindingEvent(generation, event))

        if not self._call_transport("attach", listener):
            return
        self._attached = True
        self._apply_volume()
        LOGGER.info("Loading %s (binding %d, seek=%s)", url, generation, seek_hint)
        self._call_transport("load", url, seek_hint)

    def _release_binding(self) -> None:
        self._cancel_retry()
        if self._attached:
            self._attached = False
            try:
                self._transport.detach()
            except Exception as exc:
                LOGGER.warning("Transport detach failed: %s", exc)
        # Anything still in flight from the old binding is now stale.
        self._generation += 1

    def _apply_volume(self) -> None:
        # A volume failure is not a stream failure; never feed it to failover.
        try:
            self._transport.set_volume(self._volume)
        except Exception as exc:
            LOGGER.warning("Transport set_volume failed: %s", exc)

    def _cancel_retry(self) -> None:
        pending, self._pending_retry = self._pending_retry, None
        if pending is not None and hasattr(pending, "cancel"):
            pending.cancel()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _set_status(self, status: Status) -> None:
        session = self._session
        if session is None:
            return
        if session.status != status:
            LOGGER.info("Playback %s -> %s", session.status.value, status.value)
        session.status = status
        self._publish()

    def _publish(self) -> None:
        snapshot = PlaybackSnapshot.from_session(self._session, self._volume)
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                LOGGER.exception("Snapshot listener failed")

    def _load_current(self) -> None:
        session = self._session
        offset = session.resume_offset()
        if session.is_live:
            session.position_seconds = 0.0
        else:
            session.position_seconds = offset or 0.0
        session.stall_count = 0
        self._set_status(Status.LOADING)
        self._bind(session.current_url, offset or None)

    def _fail(self, kind: ErrorKind) -> None:
        self._release_binding()
        session = self._session
        if session is None:
            return
        error = Exhausted(kind)
        session.last_error_kind = kind
        session.error_message = str(error)
        LOGGER.error(
            "Playback failed after %d candidate(s) and %d retries: %s",
            len(session.candidates),
            session.retry_count,
            error,
        )
        self._set_status(Status.FAILED)

    def _describe(self, request: PlaybackRequest) -> tuple:
        if isinstance(request, LiveRequest):
            channel = self._resolver.channel(request.channel_id) or {}
            return channel.get("name") or request.channel_id, channel.get("description", "")
        title = request.title or f"{request.program_id} {request.date}"
        return title, request.date

    def _on_start(self, command: _Start) -> None:
        self._release_binding()
        request = command.request
        title, subtitle = self._describe(request)
        session = PlaybackSession(
            request=request,
            candidates=command.candidates,
            title=title,
            subtitle=subtitle,
        )
        if isinstance(request, EpisodeRequest):
            session.position_seconds = request.start_offset_seconds
            session.duration_seconds = request.known_duration_seconds or None
        self._session = session
        LOGGER.info("Starting %s with %d candidate(s)", request, len(command.candidates))
        self._load_current()

    def _on_stop(self, _command: _Stop) -> None:
        self._release_binding()
        if self._session is not None:
            LOGGER.info("Playback stopped")
        self._session = None
        self._publish()

    def _on_pause(self, _command: _Pause) -> None:
        session = self._session
        if session is None or session.status != Status.PLAYING:
            LOGGER.debug("Ignoring pause while %s", session.status.value if session else "idle")
            return
        self._call_transport("pause")
        self._set_status(Status.PAUSED)

    def _on_resume(self, _command: _Resume) -> None:
        session = self._session
        if session is None or session.status != Status.PAUSED:
            LOGGER.debug("Ignoring resume while %s", session.status.value if session else "idle")
            return
        if session.ended:
            # The finished media has no live binding; reload it where the listener left off.
            session.ended = False
            duration = session.duration_seconds
            if duration is not None and session.position_seconds >= duration:
                session.position_seconds = 0.0
            LOGGER.info("Reloading finished episode at %.1fs", session.position_seconds)
            self._load_current()
            return
        self._call_transport("play")
        self._set_status(Status.PLAYING)

    def _on_volume(self, command: _Volume) -> None:
        self._volume = _clamp_volume(command.level)
        LOGGER.info("Volume set to %.0f", self._volume)
        self._apply_volume()
        self._publish()

    def _on_seek(self, command: _Seek) -> None:
        session = self._session
        if session is None or session.status not in ACTIVE_STATUSES or session.is_live:
            LOGGER.debug("Ignoring seek to %.1fs", command.offset)
            return

        offset = max(0.0, command.offset)
        if session.duration_seconds is not None:
            offset = min(offset, session.duration_seconds)
        # Optimistic: the UI sees the new position before the transport confirms.
        session.position_seconds = offset
        session.position_observed = True
        if not session.ended:
            self._call_transport("seek", offset)
        self._publish()

    def _on_retry_due(self, command: _RetryDue) -> None:
        session = self._session
        if (
            session is None
            or command.generation != self._generation
            or session.status != Status.RECOVERING
        ):
            LOGGER.debug("Ignoring stale retry timer")
            return
        self._pending_retry = None
        self._load_current()

    def _on_binding_event(self, item: _BindingEvent) -> None:
        if item.generation != self._generation or self._session is None:
            LOGGER.debug(
                "Dropping %s from stale binding %d (current %d)",
                type(item.event).__name__,
                item.generation,
                self._generation,
            )
            return

        event = item.event
        if isinstance(event, Ready):
            self._on_ready(event)
        elif isinstance(event, TimeUpdate):
            self._on_time_update(event)
        elif isinstance(event, Stalled):
            self._on_stalled()
        elif isinstance(event, FatalError):
            self._on_fatal_error(event.kind, event.message)
        elif isinstance(event, Ended):
            self._on_ended()

    def _on_ready(self, event: Ready) -> None:
        session = self._session
        if usable_duration(event.duration) and not session.is_live:
            # The transport's measurement beats metadata, which is often wrong.
            session.duration_seconds = float(event.duration)
        if session.status != Status.LOADING:
            return
        self._set_status(Status.PLAYING)
        self._call_transport("play")

    def _on_time_update(self, event: TimeUpdate) -> None:
        session = self._session
        if session.status not in ACTIVE_STATUSES:
            return
        session.position_seconds = max(0.0, float(event.position))
        session.position_observed = True
        self._publish()

    def _on_stalled(self) -> None:
        session = self._session
        if session.status not in (Status.LOADING,) + ACTIVE_STATUSES:
            return
        session.stall_count += 1
        LOGGER.debug("Stream stalled (%d/%d)", session.stall_count, self._stall_threshold)
        if session.stall_count > self._stall_threshold:
            LOGGER.warning("Stream stalled %d times, treating as failure", session.stall_count)
            self._on_fatal_error(ErrorKind.NETWORK, "stalled")

    def _on_fatal_error(self, kind: ErrorKind, message: str = "") -> None:
        session = self._session
        if session.status in (Status.IDLE, Status.FAILED):
            return

        session.last_error_kind = kind
        self._release_binding()
        failed_url = session.current_url

        if session.candidate_index + 1 < len(session.candidates):
            session.candidate_index += 1
            LOGGER.warning(
                "Candidate %s failed (%s%s), switching to %d/%d",
                failed_url,
                kind.value,
                f": {message}" if message else "",
                session.candidate_index + 1,
                len(session.candidates),
            )
            self._set_status(Status.RECOVERING)
            self._load_current()
            return

        if session.retry_count < self._max_retries:
            session.retry_count += 1
            session.candidate_index = 0
            delay = session.retry_count * self._backoff_seconds
            LOGGER.warning(
                "All %d candidate(s) failed (%s), retry %d/%d in %.1fs",
                len(session.candidates),
                kind.value,
                session.retry_count,
                self._max_retries,
                delay,
            )
            self._set_status(Status.RECOVERING)
            generation = self._generation
            self._pending_retry = self._scheduler(
                delay, lambda: self._post(_RetryDue(generation))
            )
            return

        self._fail(kind)

    def _on_ended(self) -> None:
        session = self._session
        if session.is_live:
            # A live stream has no end; the connection was dropped.
            self._on_fatal_error(ErrorKind.NETWORK, "live stream ended")
            return
        if session.status not in ACTIVE_STATUSES:
            return
        # mpv exits at end of file, so the binding is gone either way.
        self._release_binding()
        session.ended = True
        if session.duration_seconds is not None:
            session.position_seconds = session.duration_seconds
        session.position_observed = True
        self._set_status(Status.PAUSED)
