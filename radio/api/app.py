"""
FastAPI application: channel catalog, archive listing, player control,
favorites and the CORS relay for the broadcaster's own pages.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from radio import archive_service, favorites_service, relay
from radio.errors import InvalidRequest
from radio.models import EpisodeRequest, LiveRequest, PlaybackSnapshot, Status
from radio.mpv_transport import MpvTransport
from radio.player import PlaybackController

from .settings_service import (
    get_channel,
    get_program,
    list_channels,
    list_programs,
    playback_settings,
    relay_settings,
)

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Radio Player API")

# Browsers on any origin may call the relay; narrow it with CORS_ORIGINS.
cors_origins_str = os.getenv("CORS_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

_controller: Optional[PlaybackController] = None
_controller_lock = threading.Lock()


class ProgressRecorder:
    """Writes the position of a favorited episode whenever playback pauses."""

    def __init__(self) -> None:
        self._last_status = Status.IDLE

    def __call__(self, snapshot: PlaybackSnapshot) -> None:
        previous, self._last_status = self._last_status, snapshot.status
        if snapshot.status != Status.PAUSED or previous == Status.PAUSED:
            return
        if not snapshot.episode_id or not playback_settings()["remember_progress"]:
            return
        try:
            if favorites_service.update_progress(snapshot.episode_id, snapshot.position_seconds):
                LOGGER.info(
                    "Saved progress %.0fs for %s", snapshot.position_seconds, snapshot.episode_id
                )
        except OSError as exc:
            LOGGER.warning("Failed to save progress for %s: %s", snapshot.episode_id, exc)


def _install_controller(controller: Optional[PlaybackController]) -> None:
    """Swap the process-wide controller. Caller holds ``_controller_lock``."""
    global _controller
    if _controller is not None and _controller is not controller:
        _controller.stop()
    _controller = controller
    if controller is not None:
        controller.subscribe(ProgressRecorder())


def set_controller(controller: Optional[PlaybackController]) -> None:
    with _controller_lock:
        _install_controller(controller)


def get_controller() -> PlaybackController:
    """Return the process-wide controller, creating an mpv-backed one on first use."""
    with _controller_lock:
        if _controller is None:
            _install_controller(PlaybackController.from_settings(MpvTransport()))
        return _controller


class LiveBody(BaseModel):
    channel_id: str


class EpisodeBody(BaseModel):
    channel_id: str
    program_id: str
    date: str = Field(..., description="Broadcast date, YYYY-MM-DD.")
    start_offset_seconds: float = Field(default=0.0, ge=0)
    known_duration_seconds: Optional[float] = Field(default=None, ge=0)
    title: Optional[str] = None
    resume: bool = Field(
        default=False, description="Start from the favorite's remembered position."
    )


class SeekBody(BaseModel):
    offset_seconds: float


class VolumeBody(BaseModel):
    level: float = Field(..., ge=0, le=100)


class FavoriteBody(BaseModel):
    episode_id: str
    program_id: str
    title: str
    channel: str
    last_played_time: Optional[float] = None


class ProgressBody(BaseModel):
    progress_seconds: float = Field(..., ge=0)


def _require_channel(channel_id: str) -> Dict[str, Any]:
    channel = get_channel(channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel


def _relay_response(target_url: str) -> Response:
    settings = relay_settings()
    try:
        upstream = relay.fetch(
            target_url,
            timeout=settings["timeout_seconds"],
            user_agent=settings["user_agent"],
        )
    except relay.RelayError as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.content_type,
    )


@app.get("/api/healthz")
def health_check() -> Dict[str, Any]:
    snapshot = _controller.snapshot() if _controller is not None else PlaybackSnapshot()
    return {
        "status": "ok",
        "channels": len(list_channels()),
        "player": snapshot.status.value,
    }


@app.get("/api/channels")
def get_channels() -> List[Dict[str, Any]]:
    return list_channels()


@app.get("/api/channels/{channel_id}")
def get_channel_detail(channel_id: str) -> Dict[str, Any]:
    return _require_channel(channel_id)


@app.get("/api/programs")
def get_programs(
    q: Optional[str] = Query(default=None, description="Match title or description."),
) -> List[Dict[str, Any]]:
    return list_programs(query=q)


@app.get("/api/channels/{channel_id}/programs")
def get_channel_programs(
    channel_id: str,
    q: Optional[str] = Query(default=None, description="Match title or description."),
) -> List[Dict[str, Any]]:
    _require_channel(channel_id)
    return list_programs(channel_id, query=q)


@app.get("/api/channels/{channel_id}/programs/{program_id}")
def get_program_detail(channel_id: str, program_id: str) -> Dict[str, Any]:
    _require_channel(channel_id)
    program = get_program(channel_id, program_id)
    if not program:
        raise HTTPException(status_code=404, detail="Program not found")
    return program


@app.get("/api/channels/{channel_id}/programs/{program_id}/episodes")
def get_program_episodes(
    channel_id: str,
    program_id: str,
    days: int = Query(default=archive_service.DEFAULT_DAYS, ge=1, le=90),
) -> List[Dict[str, Any]]:
    _require_channel(channel_id)
    try:
        return archive_service.recent_episodes(channel_id, program_id, days=days)
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/player")
def get_player_state() -> Dict[str, Any]:
    return get_controller().snapshot().to_dict()


@app.post("/api/player/live")
def play_live(payload: LiveBody) -> Dict[str, Any]:
    _require_channel(payload.channel_id)
    try:
        snapshot = get_controller().start(LiveRequest(payload.channel_id))
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return snapshot.to_dict()


@app.post("/api/player/episode")
def play_episode(payload: EpisodeBody) -> Dict[str, Any]:
    request = EpisodeRequest(
        channel_id=payload.channel_id,
        program_id=payload.program_id,
        date=payload.date,
        start_offset_seconds=payload.start_offset_seconds,
        known_duration_seconds=payload.known_duration_seconds,
        title=payload.title,
    )
    if payload.resume:
        favorite = favorites_service.get_favorite(request.episode_id)
        remembered = (favorite or {}).get("last_played_time")
        if remembered:
            request = replace(request, start_offset_seconds=float(remembered))

    try:
        snapshot = get_controller().start(request)
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return snapshot.to_dict()


@app.post("/api/player/pause")
def pause_player() -> Dict[str, Any]:
    return get_controller().pause().to_dict()


@app.post("/api/player/resume")
def resume_player() -> Dict[str, Any]:
    return get_controller().resume().to_dict()


@app.post("/api/player/seek")
def seek_player(payload: SeekBody) -> Dict[str, Any]:
    return get_controller().seek(payload.offset_seconds).to_dict()


@app.post("/api/player/volume")
def set_player_volume(payload: VolumeBody) -> Dict[str, Any]:
    return get_controller().set_volume(payload.level).to_dict()


@app.post("/api/player/stop")
def stop_player() -> Dict[str, Any]:
    return get_controller().stop().to_dict()


@app.get("/api/favorites")
def get_favorites() -> List[Dict[str, Any]]:
    return favorites_service.list_favorites()


@app.post("/api/favorites", status_code=201)
def create_favorite(payload: FavoriteBody) -> Dict[str, Any]:
    return favorites_service.add_favorite(
        episode_id=payload.episode_id,
        program_id=payload.program_id,
        title=payload.title,
        channel=payload.channel,
        last_played_time=payload.last_played_time,
    )


@app.delete("/api/favorites/{favorite_id}")
def delete_favorite(favorite_id: str) -> Dict[str, Any]:
    if not favorites_service.remove_favorite(favorite_id):
        raise HTTPException(status_code=404, detail="Favorite not found")
    return {"removed": favorite_id}


@app.put("/api/favorites/{episode_id}/progress")
def update_favorite_progress(episode_id: str, payload: ProgressBody) -> Dict[str, Any]:
    if not favorites_service.update_progress(episode_id, payload.progress_seconds):
        raise HTTPException(status_code=404, detail="Favorite not found")
    return favorites_service.get_favorite(episode_id)


@app.get("/api/timetable")
def get_timetable(
    channel: str = Query(default="radio2"),
    date: Optional[str] = Query(default=None, description="YYYYMMDD, defaults to today in Hong Kong."),
) -> Response:
    url = relay.timetable_url(relay_settings()["timetable_url"], channel, date)
    return _relay_response(url)


@app.get("/api/proxy/{target_url:path}")
def proxy(target_url: str, request: Request) -> Response:
    if request.url.query:
        target_url = f"{target_url}?{request.url.query}"
    return _relay_response(target_url)
