"""Pytest configuration and shared fixtures."""

import os
import shutil
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Set test environment variables before importing modules
os.environ["RADIO_CONFIG"] = str(FIXTURES_DIR / "test_radio_settings.json")
os.environ["RADIO_FAVORITES_PATH"] = str(FIXTURES_DIR / "test_favorites.json")

from radio.transport import TransportEvent  # noqa: E402


class FakeTransport:
    """Records every call and lets a test push events at the attached listener."""

    supports_segmented = True

    def __init__(self) -> None:
        self.calls: List[Tuple[Any, ...]] = []
        self.listener: Optional[Callable[[TransportEvent], None]] = None
        self.listeners: List[Callable[[TransportEvent], None]] = []
        self.attached = 0
        self.max_attached = 0
        self.failures = {}

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name,) + args)
        error = self.failures.pop(name, None)
        if error is not None:
            raise error

    def attach(self, listener) -> None:
        assert self.listener is None, "attach() while already attached"
        self._record("attach")
        self.listener = listener
        self.listeners.append(listener)
        self.attached += 1
        self.max_attached = max(self.max_attached, self.attached)

    def detach(self) -> None:
        self._record("detach")
        if self.listener is not None:
            self.attached -= 1
        self.listener = None

    def load(self, url: str, seek_hint: Optional[float] = None) -> None:
        self._record("load", url, seek_hint)

    def play(self) -> None:
        self._record("play")

    def pause(self) -> None:
        self._record("pause")

    def seek(self, seconds: float) -> None:
        self._record("seek", seconds)

    def set_volume(self, level: float) -> None:
        self._record("set_volume", level)

    def emit(self, event: TransportEvent) -> None:
        assert self.listener is not None, "no listener attached"
        self.listener(event)

    def fail_next(self, method: str, error: Exception) -> None:
        self.failures[method] = error

    def loads(self) -> List[Tuple[str, Optional[float]]]:
        return [(call[1], call[2]) for call in self.calls if call[0] == "load"]

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class _ScheduledCall:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Collects delayed callbacks so tests decide when backoff timers fire."""

    def __init__(self) -> None:
        self.scheduled: List[_ScheduledCall] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> _ScheduledCall:
        call = _ScheduledCall(delay, callback)
        self.scheduled.append(call)
        return call

    @property
    def delays(self) -> List[float]:
        return [call.delay for call in self.scheduled]

    @property
    def pending(self) -> List[_ScheduledCall]:
        return [call for call in self.scheduled if not call.cancelled]

    def fire(self) -> None:
        """Run the most recently scheduled callback."""
        call = self.scheduled[-1]
        call.callback()


@pytest.fixture(autouse=True)
def isolated_state(tmp_path: Path):
    """Point settings and favorites at per-test copies and reset module caches."""
    import radio.api.settings_service as ss_module
    import radio.favorites_service as fs_module

    config_file = tmp_path / "radio_settings.json"
    shutil.copy(FIXTURES_DIR / "test_radio_settings.json", config_file)

    ss_module._invalidate_settings_cache()
    ss_module._config_path_cache = config_file

    fs_module._favorites_cache = None
    fs_module._favorites_mtime = 0.0
    fs_module._favorites_path_cache = tmp_path / "favorites.json"

    yield

    ss_module._invalidate_settings_cache()
    ss_module._config_path_cache = None
    fs_module._favorites_cache = None
    fs_module._favorites_mtime = 0.0
    fs_module._favorites_path_cache = None


@pytest.fixture
def favorites_file() -> Path:
    import radio.favorites_service as fs_module

    return fs_module._favorites_path_cache


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def controller(transport: FakeTransport, scheduler: FakeScheduler):
    from radio.player import PlaybackController

    return PlaybackController(transport, scheduler=scheduler)


@pytest.fixture
def api_client(controller):
    """Create a test client whose player drives a FakeTransport."""
    from fastapi.testclient import TestClient

    import radio.api.app as app_module
    from radio.api.app import app

    app_module.set_controller(controller)
    yield TestClient(app)
    app_module.set_controller(None)
