"""
Archive episode listing.

The broadcaster keeps roughly a month of programmes on its on-demand host. The
listing is generated from the calendar: one episode per weekday going back from
yesterday, with weekend airings only for the programmes configured to have them.
"""

from __future__ import annotations

import logging
from datetime import date as date_type
from datetime import timedelta
from typing import Any, Dict, List, Optional

from radio.api.settings_service import archive_settings
from radio.models import EpisodeRequest
from radio.source_resolver import SourceResolver

LOGGER = logging.getLogger(__name__)

DEFAULT_DAYS = 30
EPISODE_TITLE_SUFFIX = "足本重溫"
EPISODE_DESCRIPTION = "節目足本重溫"


def program_duration_seconds(program_id: str) -> int:
    archive = archive_settings()
    minutes = archive["durations"].get(program_id, archive["default_duration_minutes"])
    return int(minutes) * 60


def recent_episodes(
    channel_id: str,
    program_id: str,
    days: int = DEFAULT_DAYS,
    today: Optional[date_type] = None,
) -> List[Dict[str, Any]]:
    """List the archived episodes of a programme, newest first."""
    archive = archive_settings()
    resolver = SourceResolver.from_settings()
    airs_weekends = program_id in archive["weekend_programs"]
    duration = program_duration_seconds(program_id)
    anchor = today or date_type.today()

    episodes: List[Dict[str, Any]] = []
    for offset in range(1, max(0, int(days)) + 1):
        day = anchor - timedelta(days=offset)
        if day.weekday() >= 5 and not airs_weekends:
            continue
        date_str = day.isoformat()
        request = EpisodeRequest(channel_id, program_id, date_str, known_duration_seconds=duration)
        episodes.append(
            {
                "id": request.episode_id,
                "program_id": program_id,
                "channel_id": channel_id,
                "title": f"{date_str} {EPISODE_TITLE_SUFFIX}",
                "publish_date": date_str,
                "duration": duration,
                "audio_url": resolver.resolve(request)[0],
                "description": EPISODE_DESCRIPTION,
            }
        )

    LOGGER.debug("Listed %d archived episode(s) for %s/%s", len(episodes), channel_id, program_id)
    return episodes


def episode_request(episode: Dict[str, Any], start_offset: float = 0.0) -> EpisodeRequest:
    """Build the playback request for an entry of ``recent_episodes``."""
    duration = episode.get("duration")
    return EpisodeRequest(
        channel_id=episode["channel_id"],
        program_id=episode["program_id"],
        date=episode["publish_date"],
        start_offset_seconds=float(start_offset),
        known_duration_seconds=float(duration) if duration else None,
        title=episode.get("title"),
    )
