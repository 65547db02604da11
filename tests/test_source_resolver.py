"""Tests for source_resolver module."""

import pytest

from radio.errors import InvalidRequest
from radio.models import EpisodeRequest, LiveRequest
from radio.source_resolver import SourceResolver, archive_url, compact_date


@pytest.fixture
def resolver() -> SourceResolver:
    return SourceResolver.from_settings()


@pytest.mark.unit
def test_compact_date():
    assert compact_date("2026-02-08") == "20260208"
    for bad in ("20260208", "2026-13-01", "", None):
        with pytest.raises(InvalidRequest):
            compact_date(bad)


@pytest.mark.unit
def test_live_candidates_in_mirror_order(resolver: SourceResolver):
    assert resolver.resolve(LiveRequest("radio1")) == (
        "https://live.example.test/radio1/master.m3u8",
        "https://mirror-a.example.test/radio1/index.m3u8",
        "https://mirror-b.example.test/radio1live.m3u8",
    )


@pytest.mark.unit
def test_live_without_segmented_support_uses_direct_url():
    resolver = SourceResolver.from_settings(supports_segmented=False)
    candidates = resolver.resolve(LiveRequest("radio2"))
    assert candidates == ("https://stream.example.test/radio2live",)


@pytest.mark.unit
def test_duplicate_urls_are_dropped():
    channels = {
        "x": {
            "hls_url": "https://a/live.m3u8",
            "direct_url": "https://a/live",
            "mirrors": {"primary": "https://a/live.m3u8", "secondary": "https://b/live.m3u8"},
        }
    }
    resolver = SourceResolver(channels, ["https://{host}/{date}"], "host")
    assert resolver.resolve(LiveRequest("x")) == ("https://a/live.m3u8", "https://b/live.m3u8")


@pytest.mark.unit
def test_unknown_channel_is_invalid(resolver: SourceResolver):
    with pytest.raises(InvalidRequest):
        resolver.resolve(LiveRequest("radio9"))


@pytest.mark.unit
def test_episode_candidates_follow_template_priority(resolver: SourceResolver):
    request = EpisodeRequest("radio1", "millennium", "2026-02-08", start_offset_seconds=300)
    assert resolver.resolve(request) == (
        "https://aod.example.test/archive/radio1/millennium/m4a/20260208.m4a/index_0_a.m3u8",
        "https://aod.example.test/archive/radio1/millennium/m4a/20260208.m4a/master.m3u8",
        "https://aod.example.test/radio/radio1/millennium/20260208.m4a/index_0_a.m3u8",
    )


@pytest.mark.unit
def test_resolve_is_deterministic(resolver: SourceResolver):
    request = EpisodeRequest("radio2", "musiclover", "2026-01-30")
    assert resolver.resolve(request) == resolver.resolve(request)
    assert resolver.resolve(LiveRequest("radio1")) == resolver.resolve(LiveRequest("radio1"))


@pytest.mark.unit
@pytest.mark.parametrize(
    "request_",
    [
        EpisodeRequest("", "millennium", "2026-02-08"),
        EpisodeRequest("radio1", "", "2026-02-08"),
        EpisodeRequest("radio1", "millennium", "2026-02-30"),
        EpisodeRequest("radio1", "millennium", "2026-02-08", start_offset_seconds=-1),
        EpisodeRequest("radio1", "millennium", "2026-02-08", known_duration_seconds=-5),
    ],
)
def test_malformed_episode_is_invalid(resolver: SourceResolver, request_):
    with pytest.raises(InvalidRequest):
        resolver.resolve(request_)


@pytest.mark.unit
def test_unsupported_request_type(resolver: SourceResolver):
    with pytest.raises(InvalidRequest):
        resolver.resolve("radio1")


@pytest.mark.unit
def test_archive_url_is_first_template():
    assert archive_url("radio5", "culture", "2026-02-02") == (
        "https://aod.example.test/archive/radio5/culture/m4a/20260202.m4a/index_0_a.m3u8"
    )
