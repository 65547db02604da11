"""
Transport adapter backed by an ``mpv`` subprocess controlled over its JSON IPC socket.

One mpv process per load. mpv starts paused so the controller decides when audio
begins; IPC events are read on a background thread and translated into
transport events for the attached listener.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import socket
import subprocess
import tempfile
import threading
import time
import uuid
from typing import Any, Dict, List, Optional

from radio.errors import ErrorKind
from radio.transport import (
    Ended,
    EventListener,
    FatalError,
    Ready,
    Stalled,
    TimeUpdate,
    TransportEvent,
    usable_duration,
)

LOGGER = logging.getLogger(__name__)

MPV_BINARY_ENV = "RADIO_MPV_BINARY"
SOCKET_WAIT_SECONDS = 10.0
TERMINATE_TIMEOUT_SECONDS = 5.0

OBSERVED_PROPERTIES = ("time-pos", "duration", "paused-for-cache")

NETWORK_ERROR_HINTS = ("loading failed", "network", "timed out", "timeout", "connection", "http")
DECODE_ERROR_HINTS = ("unrecognized file format", "no audio or video data", "demux", "decod", "format")


def classify_file_error(text: Optional[str]) -> ErrorKind:
    """Map mpv's ``file_error`` string to an error kind."""
    token = (text or "").lower()
    if any(hint in token for hint in DECODE_ERROR_HINTS):
        return ErrorKind.DECODE
    if any(hint in token for hint in NETWORK_ERROR_HINTS):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def build_command(
    binary: str,
    url: str,
    socket_path: str,
    seek_hint: Optional[float] = None,
    volume: Optional[float] = None,
) -> List[str]:
    cmd = [
        binary,
        "--no-video",
        "--no-terminal",
        "--idle=no",
        "--pause",
        "--cache=yes",
        f"--input-ipc-server={socket_path}",
    ]
    if seek_hint:
        cmd.append(f"--start={float(seek_hint):.3f}")
    if volume is not None:
        cmd.append(f"--volume={float(volume):g}")
    cmd.append(url)
    return cmd


class IpcTranslator:
    """Turns the IPC messages of one mpv process into transport events."""

    def __init__(self) -> None:
        self.duration: Optional[float] = None
        self.ready = False

    def translate(self, message: Dict[str, Any]) -> Optional[TransportEvent]:
        event = message.get("event")

        if event == "property-change":
            name = message.get("name")
            data = message.get("data")
            if name == "duration":
                self.duration = float(data) if usable_duration(data) else None
            elif name == "time-pos" and self.ready and data is not None:
                return TimeUpdate(float(data))
            elif name == "paused-for-cache" and data is True:
                return Stalled()
            return None

        if event == "playback-restart" and not self.ready:
            self.ready = True
            return Ready(self.duration)

        if event == "end-file":
            reason = message.get("reason")
            if reason == "eof":
                return Ended()
            if reason == "error":
                detail = str(message.get("file_error") or "")
                return FatalError(classify_file_error(detail), detail)

        return None


class MpvTransport:
    """Plays one URL at a time through mpv."""

    supports_segmented = True

    def __init__(
        self,
        binary: Optional[str] = None,
        socket_dir: Optional[str] = None,
        socket_wait: float = SOCKET_WAIT_SECONDS,
    ):
        self._binary = binary or os.environ.get(MPV_BINARY_ENV) or shutil.which("mpv") or "mpv"
        self._socket_dir = socket_dir or tempfile.gettempdir()
        self._socket_wait = socket_wait
        self._listener: Optional[EventListener] = None
        self._process: Optional[subprocess.Popen] = None
        self._socket: Optional[socket.socket] = None
        self._socket_path: Optional[str] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._request_id = 0
        self._volume: Optional[float] = None

    # Binding ----------------------------------------------------------

    def attach(self, listener: EventListener) -> None:
        if self._listener is not None:
            raise RuntimeError("mpv transport is already attached")
        self._listener = listener
        self._stop = threading.Event()

    def detach(self) -> None:
        self._listener = None
        self._shutdown()

    # Commands ---------------------------------------------------------

    def load(self, url: str, seek_hint: Optional[float] = None) -> None:
        listener = self._listener
        if listener is None:
            raise RuntimeError("attach() must be called before load()")

        self._shutdown()
        stop = threading.Event()
        self._stop = stop

        socket_path = os.path.join(
            self._socket_dir, f"radio-mpv-{os.getpid()}-{uuid.uuid4().hex[:8]}.sock"
        )
        self._socket_path = socket_path
        cmd = build_command(self._binary, url, socket_path, seek_hint, self._volume)
        LOGGER.info("Starting mpv for %s", url)
        LOGGER.debug("mpv command: %s", " ".join(cmd))
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        self._process = process

        reader = threading.Thread(
            target=self._read_events,
            args=(process, socket_path, stop, listener),
            name="mpv-ipc-reader",
            daemon=True,
        )
        reader.start()

    def play(self) -> None:
        self._send(["set_property", "pause", False])

    def pause(self) -> None:
        self._send(["set_property", "pause", True])

    def seek(self, seconds: float) -> None:
        self._send(["seek", float(seconds), "absolute"])

    def set_volume(self, level: float) -> None:
        self._volume = float(level)
        with self._lock:
            connected = self._socket is not None
        if connected:
            self._send(["set_property", "volume", self._volume])

    # Internals --------------------------------------------------------

    def _send(self, command: List[Any]) -> None:
        with self._lock:
            if self._socket is None:
                raise RuntimeError("mpv IPC socket is not connected")
            self._request_id += 1
            payload = {"command": command, "request_id": self._request_id}
            self._socket.sendall((json.dumps(payload) + "\n").encode("utf-8"))

    def _connect(
        self, process: subprocess.Popen, socket_path: str, stop: threading.Event
    ) -> Optional[socket.socket]:
        deadline = time.monotonic() + self._socket_wait
        while time.monotonic() < deadline and not stop.is_set():
            if process.poll() is not None:
                return None
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.connect(socket_path)
                return sock
            except OSError:
                sock.close()
                time.sleep(0.1)
        return None

    def _read_events(
        self,
        process: subprocess.Popen,
        socket_path: str,
        stop: threading.Event,
        listener: EventListener,
    ) -> None:
        def emit(event: TransportEvent) -> None:
            if not stop.is_set():
                listener(event)

        sock = self._connect(process, socket_path, stop)
        if sock is None:
            if not stop.is_set():
                LOGGER.warning("Could not connect to mpv IPC at %s", socket_path)
                emit(FatalError(ErrorKind.UNKNOWN, "mpv IPC socket unavailable"))
            return

        with self._lock:
            if stop.is_set():
                sock.close()
                return
            self._socket = sock

        translator = IpcTranslator()
        try:
            for index, name in enumerate(OBSERVED_PROPERTIES, start=1):
                self._send(["observe_property", index, name])

            for raw in sock.makefile("rb"):
                if stop.is_set():
                    return
                try:
                    message = json.loads(raw)
                except ValueError:
                    continue
                event = translator.translate(message)
                if event is None:
                    continue
                emit(event)
                if isinstance(event, (Ended, FatalError)):
                    return
        except (OSError, RuntimeError) as exc:
            if not stop.is_set():
                LOGGER.debug("mpv IPC read failed: %s", exc)

        if not stop.is_set():
            returncode = process.poll()
            LOGGER.warning("mpv exited unexpectedly (code %s)", returncode)
            emit(FatalError(ErrorKind.UNKNOWN, f"mpv exited with code {returncode}"))

    def _close_socket(self) -> None:
        with self._lock:
            sock, self._socket = self._socket, None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()

    def _shutdown(self) -> None:
        """Stop the reader, the process and the socket of the current load."""
        self._stop.set()
        self._close_socket()

        process, self._process = self._process, None
        if process is not None and process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=TERMINATE_TIMEOUT_SECONDS)
            except subprocess.TimeoutExpired:
                LOGGER.warning("mpv did not exit after terminate, killing pid %s", process.pid)
                process.kill()
                process.wait()

        socket_path, self._socket_path = self._socket_path, None
        if socket_path and os.path.exists(socket_path):
            try:
                os.remove(socket_path)
            except OSError as exc:
                LOGGER.debug("Failed to remove mpv socket %s: %s", socket_path, exc)
