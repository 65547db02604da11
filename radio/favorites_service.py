"""
Favorites persistence: one flat JSON blob with mtime-cached reads, file locking
and atomic writes.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

# File locking support (cross-platform)
try:
    import fcntl  # Linux/macOS
except ImportError:
    fcntl = None  # type: ignore

try:
    import msvcrt  # Windows
except ImportError:
    msvcrt = None  # type: ignore

LOGGER = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_FAVORITES_PATH = Path("/app/data/favorites.json")
FALLBACK_FAVORITES_PATH = PACKAGE_DIR / "data" / "favorites.json"

_favorites_path_cache: Optional[Path] = None
_favorites_cache: Optional[Dict[str, Any]] = None
_favorites_mtime: float = 0.0


def _empty_store() -> Dict[str, Any]:
    return {"favorites": [], "updated_at": 0.0}


def resolve_favorites_path() -> Path:
    """Resolve favorites path with caching."""
    global _favorites_path_cache

    if _favorites_path_cache is not None:
        return _favorites_path_cache

    override = os.environ.get("RADIO_FAVORITES_PATH")
    if override:
        _favorites_path_cache = Path(override).expanduser()
    elif DEFAULT_FAVORITES_PATH.exists() or DEFAULT_FAVORITES_PATH.parent.exists():
        _favorites_path_cache = DEFAULT_FAVORITES_PATH
    else:
        FALLBACK_FAVORITES_PATH.parent.mkdir(parents=True, exist_ok=True)
        _favorites_path_cache = FALLBACK_FAVORITES_PATH
    return _favorites_path_cache


def _lock_file(file_handle) -> None:
    """Lock a file handle for exclusive access (cross-platform)."""
    if fcntl:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_EX)
    elif msvcrt:
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_LOCK, 1)


def _unlock_file(file_handle) -> None:
    """Unlock a file handle (cross-platform)."""
    if fcntl:
        fcntl.flock(file_handle.fileno(), fcntl.LOCK_UN)
    elif msvcrt:
        msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)


def load_store() -> Dict[str, Any]:
    """Load the favorites blob, re-reading only when the file changed."""
    global _favorites_cache, _favorites_mtime

    path = resolve_favorites_path()
    if not path.exists():
        _favorites_cache = _empty_store()
        _favorites_mtime = 0.0
        return _favorites_cache

    try:
        current_mtime = path.stat().st_mtime
    except (FileNotFoundError, OSError):
        current_mtime = 0.0

    if _favorites_cache is not None and abs(current_mtime - _favorites_mtime) < 0.001:
        return _favorites_cache

    try:
        with path.open("r", encoding="utf-8") as fh:
            _lock_file(fh)
            try:
                store = json.load(fh)
                if not isinstance(store, dict):
                    store = _empty_store()
                if not isinstance(store.get("favorites"), list):
                    store["favorites"] = []
            except json.JSONDecodeError as e:
                LOGGER.warning("Failed to parse favorites file: %s. Using defaults.", e)
                store = _empty_store()
            finally:
                _unlock_file(fh)
    except (OSError, IOError) as e:
        LOGGER.warning("Failed to read favorites file: %s. Using defaults.", e)
        store = _empty_store()

    _favorites_cache = store
    _favorites_mtime = current_mtime
    return _favorites_cache


def save_store(store: Dict[str, Any]) -> None:
    """Write the favorites blob atomically and refresh the cache."""
    global _favorites_cache, _favorites_mtime

    path = resolve_favorites_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    store["updated_at"] = time.time()

    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=str(path.parent), delete=False
    ) as tmp:
        try:
            _lock_file(tmp)
            try:
                json.dump(store, tmp, indent=2, ensure_ascii=False)
                tmp.flush()
                os.fsync(tmp.fileno())
            finally:
                _unlock_file(tmp)
        except (OSError, IOError) as e:
            LOGGER.error("Failed to write favorites to temp file: %s", e)
            raise
        tmp_path = Path(tmp.name)

    try:
        tmp_path.replace(path)
    except (OSError, IOError) as e:
        LOGGER.error("Failed to replace favorites file: %s", e)
        try:
            tmp_path.unlink()
        except OSError:
            pass
        raise

    try:
        _favorites_mtime = path.stat().st_mtime
    except (FileNotFoundError, OSError):
        _favorites_mtime = time.time()
    _favorites_cache = store


def list_favorites() -> List[Dict[str, Any]]:
    return list(load_store().get("favorites", []))


def get_favorite(episode_id: str) -> Optional[Dict[str, Any]]:
    for favorite in load_store().get("favorites", []):
        if favorite.get("episode_id") == episode_id:
            return favorite
    return None


def is_favorite(episode_id: str) -> bool:
    return get_favorite(episode_id) is not None


def add_favorite(
    episode_id: str,
    program_id: str,
    title: str,
    channel: str,
    last_played_time: Optional[float] = None,
) -> Dict[str, Any]:
    """Add an episode to favorites; an episode already saved is returned as-is."""
    existing = get_favorite(episode_id)
    if existing is not None:
        return existing

    favorite: Dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "episode_id": episode_id,
        "program_id": program_id,
        "title": title,
        "channel": channel,
        "added_at": datetime.now(timezone.utc).isoformat(),
    }
    if last_played_time is not None:
        favorite["last_played_time"] = last_played_time

    store = load_store()
    store["favorites"] = list(store.get("favorites", [])) + [favorite]
    save_store(store)
    LOGGER.info("Added favorite %s (%s)", episode_id, favorite["id"])
    return favorite


def remove_favorite(favorite_id: str) -> bool:
    store = load_store()
    favorites = store.get("favorites", [])
    remaining = [f for f in favorites if f.get("id") != favorite_id]
    if len(remaining) == len(favorites):
        return False
    store["favorites"] = remaining
    save_store(store)
    LOGGER.info("Removed favorite %s", favorite_id)
    return True


def update_progress(episode_id: str, progress: float) -> bool:
    """Remember where playback of a favorited episode got to."""
    store = load_store()
    updated = False
    favorites = []
    for favorite in store.get("favorites", []):
        if favorite.get("episode_id") == episode_id:
            favorite = dict(favorite, last_played_time=float(progress))
            updated = True
        favorites.append(favorite)
    if updated:
        store["favorites"] = favorites
        save_store(store)
    return updated
