"""
Turn a playback request into the ordered list of stream URLs worth trying.

Resolution is pure: the channel catalog and archive templates are handed in up
front, so the same request always yields the same candidates in the same order.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from radio.api.settings_service import (
    MIRROR_TIERS,
    archive_settings,
    channel_index,
)
from radio.errors import InvalidRequest
from radio.models import CandidateList, EpisodeRequest, LiveRequest, PlaybackRequest

LOGGER = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"


def _dedupe(urls: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for url in urls:
        if url and url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


def compact_date(date: str) -> str:
    """Validate a YYYY-MM-DD date and return it as YYYYMMDD."""
    try:
        parsed = datetime.strptime(date, DATE_FORMAT)
    except (TypeError, ValueError):
        raise InvalidRequest(f"Episode date must be YYYY-MM-DD, got {date!r}") from None
    return parsed.strftime("%Y%m%d")


class SourceResolver:
    """Builds CandidateLists for live channels and archived episodes."""

    def __init__(
        self,
        channels: Mapping[str, Dict[str, Any]],
        templates: Sequence[str],
        archive_host: str,
        supports_segmented: bool = True,
    ):
        self._channels = dict(channels)
        self._templates = tuple(templates)
        self._archive_host = archive_host
        self.supports_segmented = supports_segmented

    @classmethod
    def from_settings(cls, supports_segmented: bool = True) -> "SourceResolver":
        archive = archive_settings()
        return cls(
            channels=channel_index(),
            templates=archive["templates"],
            archive_host=archive["host"],
            supports_segmented=supports_segmented,
        )

    def channel(self, channel_id: str) -> Optional[Dict[str, Any]]:
        return self._channels.get(channel_id)

    def resolve(self, request: PlaybackRequest) -> CandidateList:
        if isinstance(request, LiveRequest):
            candidates = self._resolve_live(request)
        elif isinstance(request, EpisodeRequest):
            candidates = self._resolve_episode(request)
        else:
            raise InvalidRequest(f"Unsupported playback request: {request!r}")

        if not candidates:
            # Normalized settings guarantee a URL per channel and at least one template.
            raise InvalidRequest(f"No stream candidates for {request!r}")
        return tuple(candidates)

    def _resolve_live(self, request: LiveRequest) -> List[str]:
        channel = self._channels.get(request.channel_id)
        if not channel:
            raise InvalidRequest(f"Unknown channel: {request.channel_id!r}")

        if self.supports_segmented:
            primary = channel.get("hls_url") or channel.get("direct_url")
        else:
            primary = channel.get("direct_url") or channel.get("hls_url")

        mirrors = channel.get("mirrors") or {}
        return _dedupe([primary] + [mirrors.get(tier, "") for tier in MIRROR_TIERS])

    def _resolve_episode(self, request: EpisodeRequest) -> List[str]:
        if not request.channel_id:
            raise InvalidRequest("Episode request is missing channel_id")
        if not request.program_id:
            raise InvalidRequest("Episode request is missing program_id")
        if request.start_offset_seconds is None or request.start_offset_seconds < 0:
            raise InvalidRequest("Episode start offset must be zero or positive")
        if request.known_duration_seconds is not None and request.known_duration_seconds < 0:
            raise InvalidRequest("Episode duration must be zero or positive")

        date = compact_date(request.date)
        return _dedupe(
            template.format(
                host=self._archive_host,
                channel_id=request.channel_id,
                program_id=request.program_id,
                date=date,
            )
            for template in self._templates
        )


def archive_url(channel_id: str, program_id: str, date: str) -> str:
    """Primary archive URL for an episode, using the configured templates."""
    resolver = SourceResolver.from_settings()
    return resolver.resolve(EpisodeRequest(channel_id, program_id, date))[0]
