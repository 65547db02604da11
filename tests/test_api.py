"""Tests for FastAPI endpoints."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi.testclient import TestClient

from radio.errors import ErrorKind
from radio.relay import RelayResponse
from radio.transport import FatalError, Ready, TimeUpdate


@pytest.mark.api
def test_health_check(api_client: TestClient):
    response = api_client.get("/api/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "channels": 2, "player": "idle"}


@pytest.mark.api
def test_list_and_get_channels(api_client: TestClient):
    response = api_client.get("/api/channels")
    assert response.status_code == 200
    assert [ch["id"] for ch in response.json()] == ["radio1", "radio2"]

    assert api_client.get("/api/channels/radio1").json()["name_en"] == "Radio 1"
    assert api_client.get("/api/channels/radio9").status_code == 404


@pytest.mark.api
def test_channels_are_read_only(api_client: TestClient, transport):
    body = {"name": "Radio Two", "hls_url": "https://new.example.test/radio2.m3u8"}
    assert api_client.put("/api/channels/radio2", json=body).status_code == 405

    api_client.post("/api/player/live", json={"channel_id": "radio2"})
    assert transport.loads()[0][0] == "https://live.example.test/radio2/master.m3u8"


@pytest.mark.api
def test_program_catalog(api_client: TestClient):
    response = api_client.get("/api/programs")
    assert response.status_code == 200
    assert [p["id"] for p in response.json()] == ["millennium", "musiclover"]

    response = api_client.get("/api/programs", params={"q": "經典"})
    assert [p["id"] for p in response.json()] == ["musiclover"]

    response = api_client.get("/api/channels/radio1/programs")
    assert [p["id"] for p in response.json()] == ["millennium"]
    assert api_client.get("/api/channels/radio9/programs").status_code == 404


@pytest.mark.api
def test_program_detail(api_client: TestClient):
    response = api_client.get("/api/channels/radio1/programs/millennium")
    assert response.status_code == 200
    assert response.json()["title_en"] == "Millennium"
    assert response.json()["schedule"] == "星期一至五 08:00-08:30"

    response = api_client.get("/api/channels/radio1/programs/musiclover")
    assert response.status_code == 404
    assert response.json()["detail"] == "Program not found"


@pytest.mark.api
def test_program_episodes(api_client: TestClient):
    response = api_client.get("/api/channels/radio1/programs/sports/episodes?days=3")
    assert response.status_code == 200
    episodes = response.json()
    assert len(episodes) == 3
    assert all(ep["program_id"] == "sports" for ep in episodes)

    assert api_client.get("/api/channels/radio9/programs/sports/episodes").status_code == 404


@pytest.mark.api
def test_play_live_and_control(api_client: TestClient, transport):
    response = api_client.post("/api/player/live", json={"channel_id": "radio2"})
    assert response.status_code == 200
    assert response.json()["status"] == "loading"
    assert response.json()["kind"] == "live"

    transport.emit(Ready())
    assert api_client.get("/api/player").json()["status"] == "playing"
    assert api_client.post("/api/player/pause").json()["status"] == "paused"
    assert api_client.post("/api/player/resume").json()["status"] == "playing"
    assert api_client.post("/api/player/stop").json()["status"] == "idle"


@pytest.mark.api
def test_play_live_unknown_channel(api_client: TestClient):
    response = api_client.post("/api/player/live", json={"channel_id": "radio9"})
    assert response.status_code == 404


@pytest.mark.api
def test_play_episode_and_seek(api_client: TestClient, transport):
    body = {
        "channel_id": "radio1",
        "program_id": "millennium",
        "date": "2026-02-08",
        "start_offset_seconds": 300,
        "known_duration_seconds": 1800,
    }
    response = api_client.post("/api/player/episode", json=body)
    assert response.status_code == 200
    data = response.json()
    assert data["episode_id"] == "millennium-2026-02-08"
    assert data["position_seconds"] == 300
    assert transport.loads()[0][1] == 300

    transport.emit(Ready())
    response = api_client.post("/api/player/seek", json={"offset_seconds": 9999})
    assert response.json()["position_seconds"] == 1800


@pytest.mark.api
def test_play_episode_bad_date(api_client: TestClient):
    body = {"channel_id": "radio1", "program_id": "millennium", "date": "8 Feb 2026"}
    assert api_client.post("/api/player/episode", json=body).status_code == 400


@pytest.mark.api
def test_failed_state_is_reported(api_client: TestClient, transport, scheduler):
    api_client.post("/api/player/live", json={"channel_id": "radio2"})
    for _ in range(3):
        transport.emit(FatalError(ErrorKind.NETWORK))
        if scheduler.pending and transport.listener is None:
            scheduler.fire()

    data = api_client.get("/api/player").json()
    assert data["status"] == "failed"
    assert data["error_kind"] == "network"
    assert data["error"]


@pytest.mark.api
def test_favorites_crud(api_client: TestClient):
    body = {
        "episode_id": "millennium-2026-02-08",
        "program_id": "millennium",
        "title": "2026-02-08 足本重溫",
        "channel": "radio1",
    }
    response = api_client.post("/api/favorites", json=body)
    assert response.status_code == 201
    favorite = response.json()

    assert [f["id"] for f in api_client.get("/api/favorites").json()] == [favorite["id"]]

    response = api_client.put(
        "/api/favorites/millennium-2026-02-08/progress", json={"progress_seconds": 615}
    )
    assert response.status_code == 200
    assert response.json()["last_played_time"] == 615

    assert api_client.put(
        "/api/favorites/unknown/progress", json={"progress_seconds": 1}
    ).status_code == 404
    assert api_client.delete(f"/api/favorites/{favorite['id']}").status_code == 200
    assert api_client.delete(f"/api/favorites/{favorite['id']}").status_code == 404


@pytest.mark.api
def test_pause_records_progress_for_favorite(api_client: TestClient, transport):
    api_client.post(
        "/api/favorites",
        json={
            "episode_id": "millennium-2026-02-08",
            "program_id": "millennium",
            "title": "Millennium",
            "channel": "radio1",
        },
    )
    api_client.post(
        "/api/player/episode",
        json={"channel_id": "radio1", "program_id": "millennium", "date": "2026-02-08"},
    )
    transport.emit(Ready())
    transport.emit(TimeUpdate(742.0))
    api_client.post("/api/player/pause")

    favorites = api_client.get("/api/favorites").json()
    assert favorites[0]["last_played_time"] == 742.0

    # Resuming from the favorite starts at the remembered position
    api_client.post(
        "/api/player/episode",
        json={
            "channel_id": "radio1",
            "program_id": "millennium",
            "date": "2026-02-08",
            "resume": True,
        },
    )
    assert transport.loads()[-1][1] == 742.0


@pytest.mark.api
def test_proxy_passes_through(api_client: TestClient):
    upstream = RelayResponse(200, b'{"ok": true}', "application/json")
    with patch("radio.api.app.relay.fetch", return_value=upstream) as fetch:
        response = api_client.get("/api/proxy/https://www.example.test/radio?p=1")

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert response.headers["content-type"].startswith("application/json")
    assert fetch.call_args[0][0] == "https://www.example.test/radio?p=1"
    assert fetch.call_args.kwargs["timeout"] == 15.0


@pytest.mark.api
def test_proxy_errors(api_client: TestClient):
    response = api_client.get("/api/proxy/not-a-url")
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid URL"}

    with patch("radio.relay.requests.get", side_effect=requests.exceptions.Timeout()):
        response = api_client.get("/api/proxy/https://www.example.test/slow")
    assert response.status_code == 504


@pytest.mark.api
def test_timetable(api_client: TestClient):
    upstream = RelayResponse(200, b"[]", "application/json")
    with patch("radio.api.app.relay.fetch", return_value=upstream) as fetch:
        response = api_client.get("/api/timetable?channel=radio1&date=20260208")

    assert response.status_code == 200
    assert fetch.call_args[0][0] == (
        "https://timetable.example.test/getTimetable?d=20260208&c=radio1"
    )


@pytest.mark.api
def test_cors_headers(api_client: TestClient):
    response = api_client.get("/api/channels", headers={"Origin": "http://localhost:5173"})
    assert response.headers.get("access-control-allow-origin") in ("*", "http://localhost:5173")


@pytest.mark.api
def test_set_volume(api_client: TestClient, transport):
    response = api_client.post("/api/player/volume", json={"level": 30})
    assert response.status_code == 200
    assert response.json()["volume"] == 30
    assert ("set_volume", 30.0) in transport.calls

    assert api_client.post("/api/player/volume", json={"level": 150}).status_code == 422
    assert api_client.get("/api/player").json()["volume"] == 30


@pytest.mark.api
def test_get_controller_creates_a_single_player():
    import radio.api.app as app_module

    app_module.set_controller(None)
    created = []

    def slow_build(transport):
        time.sleep(0.05)
        controller = MagicMock(name=f"controller-{len(created)}")
        created.append(controller)
        return controller

    start = threading.Barrier(8)
    results = []

    def worker():
        start.wait()
        results.append(app_module.get_controller())

    with patch("radio.api.app.MpvTransport"), patch.object(
        app_module.PlaybackController, "from_settings", side_effect=slow_build
    ):
        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    try:
        assert len(created) == 1
        assert len(results) == 8
        assert all(result is created[0] for result in results)
    finally:
        app_module.set_controller(None)
