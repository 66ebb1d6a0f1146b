#!/usr/bin/env python3
"""Test locator classification."""

import sys

import pytest

from streamplay.models import StreamType
from streamplay.resolver import resolve, resolve_stream_type


def test_stream_type_patterns():
    cases = {
        "https://cdn.example.com/live/master.m3u8": StreamType.SEGMENTED_HTTP,
        "https://cdn.example.com/live/master.M3U8?token=abc": StreamType.SEGMENTED_HTTP,
        "https://cdn.example.com/vod/manifest.mpd": StreamType.DYNAMIC_ADAPTIVE,
        "webrtc://media.example.com/room/42": StreamType.REALTIME_PEER,
        "rtmp://ingest.example.com/app/key": StreamType.REALTIME_PEER,
        "https://cdn.example.com/vod/film.mp4": StreamType.PROGRESSIVE,
        "https://cdn.example.com/vod/film": StreamType.PROGRESSIVE,
        "not a url at all": StreamType.PROGRESSIVE,
    }
    for locator, expected in cases.items():
        assert resolve_stream_type(locator) is expected, locator
    print("✓ Stream type classification test passed")


def test_query_manifest_hint():
    locator = "https://player.example.com/play?src=/streams/event.m3u8"
    assert resolve_stream_type(locator) is StreamType.SEGMENTED_HTTP


def test_segmented_http_wins_over_dynamic_adaptive():
    assert resolve_stream_type("https://cdn.example.com/a.mpd?alt=b.m3u8") is StreamType.SEGMENTED_HTTP
    assert resolve_stream_type("https://cdn.example.com/a.m3u8?alt=b.mpd") is StreamType.SEGMENTED_HTTP
    assert resolve_stream_type("https://cdn.example.com/play?src=b.mpd") is StreamType.DYNAMIC_ADAPTIVE


def test_resolve_marks_seekability():
    vod = resolve("https://cdn.example.com/vod/film.mp4")
    assert vod.seekable and not vod.is_live

    live_dvr = resolve("https://cdn.example.com/live/master.m3u8", is_live=True)
    assert live_dvr.is_live and live_dvr.seekable

    live_no_dvr = resolve("https://cdn.example.com/live/master.m3u8", is_live=True, dvr=False)
    assert not live_no_dvr.seekable

    peer = resolve("webrtc://media.example.com/room/42")
    assert peer.is_live and not peer.seekable
    print("✓ Seekability marking test passed")


def test_resolve_rejects_empty_locator():
    with pytest.raises(ValueError):
        resolve("   ")


if __name__ == "__main__":
    test_stream_type_patterns()
    test_query_manifest_hint()
    test_resolve_marks_seekability()
    sys.exit(0)
