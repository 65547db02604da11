"""
Pass-through fetch used to reach the broadcaster's pages and JSON endpoints from
a browser without tripping CORS. No state, no parsing: upstream status, body and
content type are handed back unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import quote

import requests

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_CONTENT_TYPE = "text/html; charset=utf-8"
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

HK_TIMEZONE = timezone(timedelta(hours=8))


class RelayError(Exception):
    """Relay failure with the HTTP status the caller should report."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(frozen=True)
class RelayResponse:
    status_code: int
    content: bytes
    content_type: str


def _headers(user_agent: str) -> dict:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "zh-HK,zh-TW,zh-CN,en-US,en;q=0.5",
    }


def fetch(
    url: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    user_agent: str = DEFAULT_USER_AGENT,
    session: Optional[requests.Session] = None,
) -> RelayResponse:
    """GET ``url`` and return the upstream response untouched."""
    if not url or not url.lower().startswith(("http://", "https://")):
        raise RelayError(400, "Invalid URL")

    LOGGER.info("Relay fetching: %s", url)
    getter = session.get if session is not None else requests.get
    try:
        response = getter(url, headers=_headers(user_agent), timeout=timeout)
    except requests.exceptions.Timeout:
        LOGGER.error("Relay timeout after %.0fs: %s", timeout, url)
        raise RelayError(504, "Request timeout") from None
    except requests.exceptions.RequestException as exc:
        LOGGER.error("Relay error for %s: %s", url, exc)
        raise RelayError(500, str(exc)) from exc

    LOGGER.info("Relay success: %s, length: %d", response.status_code, len(response.content))
    return RelayResponse(
        status_code=response.status_code,
        content=response.content,
        content_type=response.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE,
    )


def today_hk(now: Optional[datetime] = None) -> str:
    """Today's date in Hong Kong as YYYYMMDD."""
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(HK_TIMEZONE).strftime("%Y%m%d")


def timetable_url(template: str, channel: str, date: Optional[str] = None) -> str:
    return template.format(channel=quote(channel, safe=""), date=quote(date or today_hk(), safe=""))
