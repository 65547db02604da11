"""
Helpers for reading the radio settings (channel and programme catalog, archive
URL templates, playback tunables and relay options).
"""

from __future__ import annotations

import json
import os
import re
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional

CONFIG_PATH = Path(__file__).parent.parent / "config" / "radio_settings.json"
CONTAINER_CONFIG_PATH = Path("/app/config/radio_settings.json")

MIRROR_TIERS = ("primary", "secondary", "tertiary")

DEFAULT_ARCHIVE_HOST = "rthkaod2022.akamaized.net"
DEFAULT_ARCHIVE_TEMPLATES = [
    "https://{host}/m4a/radio/archive/{channel_id}/{program_id}/m4a/{date}.m4a/index_0_a.m3u8",
    "https://{host}/m4a/radio/archive/{channel_id}/{program_id}/m4a/{date}.m4a/master.m3u8",
    "https://{host}/m4a/radio/{channel_id}/{program_id}/{date}.m4a/index_0_a.m3u8",
]
DEFAULT_DURATION_MINUTES = 60

DEFAULT_PLAYBACK = {
    "max_retries": 2,
    "backoff_seconds": 1.0,
    "stall_threshold": 3,
    "remember_progress": True,
    "volume": 100.0,
}

DEFAULT_RELAY = {
    "timeout_seconds": 15.0,
    "timetable_url": "https://www.rthk.hk/radio/getTimetable?d={date}&c={channel}",
    "user_agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}

# Cache for settings and path resolution
_settings_cache: Optional[Dict[str, Any]] = None
_settings_mtime: float = 0.0
_config_path_cache: Optional[Path] = None
_channels_index: Dict[str, Dict[str, Any]] = {}


def _resolve_config_path() -> Path:
    """Resolve config path with caching."""
    global _config_path_cache

    if _config_path_cache is not None:
        return _config_path_cache

    override = os.environ.get("RADIO_CONFIG")
    if override:
        _config_path_cache = Path(override).expanduser()
        return _config_path_cache

    if CONTAINER_CONFIG_PATH.exists():
        _config_path_cache = CONTAINER_CONFIG_PATH
        return _config_path_cache

    _config_path_cache = CONFIG_PATH
    return _config_path_cache


def _invalidate_settings_cache() -> None:
    """Invalidate the settings cache."""
    global _settings_cache, _settings_mtime, _channels_index
    _settings_cache = None
    _settings_mtime = 0.0
    _channels_index = {}


def slugify(text: str, fallback: str = "channel") -> str:
    cleaned = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return cleaned or fallback


def _clamp(value: Any, default: float, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(number, high))


def normalize_channel(channel: Dict[str, Any]) -> Dict[str, Any]:
    normalized = deepcopy(channel) if isinstance(channel, dict) else {}

    name = str(normalized.get("name") or normalized.get("name_en") or "").strip()
    channel_id = str(normalized.get("id") or slugify(name)).strip()

    normalized["id"] = channel_id
    normalized["name"] = name or channel_id
    normalized["name_en"] = str(normalized.get("name_en") or normalized["name"])
    normalized["frequency"] = str(normalized.get("frequency") or "")
    normalized["description"] = str(normalized.get("description") or "")

    hls_url = str(normalized.get("hls_url") or "").strip()
    direct_url = str(normalized.get("direct_url") or "").strip()
    # A channel needs at least one URL; use whichever is present for both.
    normalized["hls_url"] = hls_url or direct_url
    normalized["direct_url"] = direct_url or hls_url

    mirrors = normalized.get("mirrors")
    if not isinstance(mirrors, dict):
        mirrors = {}
    normalized["mirrors"] = {
        tier: str(mirrors.get(tier) or "").strip() for tier in MIRROR_TIERS
    }

    return normalized


def normalize_archive(archive: Any) -> Dict[str, Any]:
    normalized = deepcopy(archive) if isinstance(archive, dict) else {}

    normalized["host"] = str(normalized.get("host") or DEFAULT_ARCHIVE_HOST)

    templates = normalized.get("templates")
    if not isinstance(templates, list):
        templates = []
    templates = [str(t).strip() for t in templates if str(t).strip()]
    normalized["templates"] = templates or list(DEFAULT_ARCHIVE_TEMPLATES)

    normalized["default_duration_minutes"] = int(
        _clamp(normalized.get("default_duration_minutes"), DEFAULT_DURATION_MINUTES, 1, 24 * 60)
    )

    durations = normalized.get("durations")
    if not isinstance(durations, dict):
        durations = {}
    cleaned: Dict[str, int] = {}
    for program_id, minutes in durations.items():
        try:
            cleaned[str(program_id)] = max(1, int(minutes))
        except (TypeError, ValueError):
            continue
    normalized["durations"] = cleaned

    weekend = normalized.get("weekend_programs")
    if not isinstance(weekend, list):
        weekend = []
    normalized["weekend_programs"] = [str(p) for p in weekend]

    return normalized


def normalize_program(program: Any) -> Dict[str, Any]:
    normalized = deepcopy(program) if isinstance(program, dict) else {}

    program_id = str(normalized.get("id") or "").strip()
    normalized["id"] = program_id
    normalized["channel_id"] = str(normalized.get("channel_id") or "").strip()
    normalized["title"] = str(normalized.get("title") or program_id)
    normalized["title_en"] = str(normalized.get("title_en") or "")
    normalized["description"] = str(normalized.get("description") or "")
    normalized["schedule"] = str(normalized.get("schedule") or "")
    return normalized


def normalize_programs(programs: Any, channel_ids: List[str]) -> List[Dict[str, Any]]:
    """Keep programmes with an id on a configured channel, first entry per id wins."""
    if not isinstance(programs, list):
        return []

    seen = set()
    cleaned = []
    for program in programs:
        normalized = normalize_program(program)
        key = (normalized["channel_id"], normalized["id"])
        if not normalized["id"] or normalized["channel_id"] not in channel_ids or key in seen:
            continue
        seen.add(key)
        cleaned.append(normalized)
    return cleaned


def normalize_playback(playback: Any) -> Dict[str, Any]:
    raw = playback if isinstance(playback, dict) else {}
    return {
        "max_retries": int(_clamp(raw.get("max_retries"), DEFAULT_PLAYBACK["max_retries"], 0, 10)),
        "backoff_seconds": _clamp(
            raw.get("backoff_seconds"), DEFAULT_PLAYBACK["backoff_seconds"], 0.0, 60.0
        ),
        "stall_threshold": int(
            _clamp(raw.get("stall_threshold"), DEFAULT_PLAYBACK["stall_threshold"], 0, 100)
        ),
        "remember_progress": bool(raw.get("remember_progress", True)),
        "volume": _clamp(raw.get("volume"), DEFAULT_PLAYBACK["volume"], 0.0, 100.0),
    }


def normalize_relay(relay: Any) -> Dict[str, Any]:
    raw = relay if isinstance(relay, dict) else {}
    return {
        "timeout_seconds": _clamp(
            raw.get("timeout_seconds"), DEFAULT_RELAY["timeout_seconds"], 1.0, 120.0
        ),
        "timetable_url": str(raw.get("timetable_url") or DEFAULT_RELAY["timetable_url"]),
        "user_agent": str(raw.get("user_agent") or DEFAULT_RELAY["user_agent"]),
    }


def normalize_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        data = {}

    channels = data.get("channels")
    if not isinstance(channels, list):
        channels = []

    normalized_channels = []
    for channel in channels:
        if not isinstance(channel, dict):
            continue
        normalized = normalize_channel(channel)
        if normalized["id"] and normalized["hls_url"]:
            normalized_channels.append(normalized)

    normalized = deepcopy(data)
    normalized["channels"] = normalized_channels
    normalized["programs"] = normalize_programs(
        data.get("programs"), [ch["id"] for ch in normalized_channels]
    )
    normalized["archive"] = normalize_archive(data.get("archive"))
    normalized["playback"] = normalize_playback(data.get("playback"))
    normalized["relay"] = normalize_relay(data.get("relay"))
    return normalized


def load_settings() -> Dict[str, Any]:
    """Load settings with mtime-based caching."""
    global _settings_cache, _settings_mtime, _channels_index

    config_path = _resolve_config_path()

    # Check if file exists and get mtime
    if config_path.exists():
        try:
            current_mtime = config_path.stat().st_mtime
        except OSError:
            current_mtime = 0.0
    else:
        current_mtime = 0.0

    # Return cached version if file hasn't changed
    if _settings_cache is not None and abs(current_mtime - _settings_mtime) < 0.001:
        return _settings_cache

    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
    else:
        raw = {}

    normalized = normalize_settings(raw)

    # Update cache
    _settings_cache = normalized
    _settings_mtime = current_mtime

    # Build channel index for O(1) lookups
    _channels_index = {ch.get("id"): ch for ch in normalized.get("channels", [])}

    return normalized


def list_channels() -> List[Dict[str, Any]]:
    """List all channels, using cached settings."""
    return load_settings().get("channels", [])


def get_channel(channel_id: str) -> Optional[Dict[str, Any]]:
    """Get channel by ID with O(1) lookup using cached index."""
    load_settings()
    return _channels_index.get(channel_id)


def channel_index() -> Dict[str, Dict[str, Any]]:
    load_settings()
    return dict(_channels_index)


def archive_settings() -> Dict[str, Any]:
    return load_settings()["archive"]


def playback_settings() -> Dict[str, Any]:
    return load_settings()["playback"]


def relay_settings() -> Dict[str, Any]:
    return load_settings()["relay"]


def list_programs(
    channel_id: Optional[str] = None, query: Optional[str] = None
) -> List[Dict[str, Any]]:
    """List catalog programmes, optionally for one channel and matching ``query``."""
    programs = load_settings().get("programs", [])
    if channel_id is not None:
        programs = [p for p in programs if p["channel_id"] == channel_id]
    if query:
        needle = query.lower()
        programs = [
            p
            for p in programs
            if needle in p["title"].lower()
            or needle in p["title_en"].lower()
            or needle in p["description"].lower()
        ]
    return list(programs)


def get_program(channel_id: str, program_id: str) -> Optional[Dict[str, Any]]:
    for program in list_programs(channel_id):
        if program["id"] == program_id:
            return program
    return None
