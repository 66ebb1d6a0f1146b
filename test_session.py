#!/usr/bin/env python3
"""Test StreamingSession lifecycle, commands and event forwarding."""

import asyncio
import itertools
import sys

from fakes import HLS_MASTER, FakeSink, FakeTransport, settle, static_fetch
from streamplay import ErrorReason, EventKind, PlaybackState, QualityVariant, SessionConfig, StreamingSession
from streamplay.backends import build_backend

MASTER_URL = "https://cdn.example.com/live/master.m3u8"
FILM_URL = "https://cdn.example.com/vod/film-1080.mp4"
FILM_480 = "https://cdn.example.com/vod/film-480.mp4"
PEER_URL = "webrtc://media.example.com/room/42"


class RecordingFactory:
    """Backend factory that keeps every adapter it builds."""

    def __init__(self):
        self.created = []

    def __call__(self, target, emit, config):
        adapter = build_backend(target, emit, config)
        self.created.append(adapter)
        return adapter


def _collect(session, *kinds):
    events = []
    for kind in kinds:
        session.on(kind, events.append)
    return events


def test_reinitialize_supersedes_pending_load():
    async def scenario():
        factory = RecordingFactory()
        session = StreamingSession(backend_factory=factory)
        sink = FakeSink()

        first = asyncio.ensure_future(session.initialize(sink, FILM_URL))
        await settle()
        second = asyncio.ensure_future(session.initialize(sink, FILM_480))
        await settle()

        assert first.done() and first.result() is False
        assert len(factory.created) == 2
        assert factory.created[0].destroyed
        assert session.adapter is factory.created[1]
        assert sink.detach_count == 1

        sink.fire("loadeddata")
        assert await second is True
        assert session.state is PlaybackState.PAUSED
        assert session.locator == FILM_480

        session.destroy()
        assert sink.detach_count == 2

    asyncio.run(scenario())
    print("✓ Re-initialize test passed")


def test_events_are_forwarded_in_order_with_timestamps():
    async def scenario():
        ticks = itertools.count(100)
        session = StreamingSession(clock=lambda: float(next(ticks)))
        events = _collect(session, EventKind.LOADING, EventKind.LOADED, EventKind.PLAYING, EventKind.PAUSED)
        sink = FakeSink()

        pending = asyncio.ensure_future(session.initialize(sink, FILM_URL))
        await settle()
        sink.fire("loadeddata")
        assert await pending is True

        await session.play()
        session.pause()

        assert [event.kind for event in events] == [
            EventKind.LOADING,
            EventKind.LOADED,
            EventKind.PLAYING,
            EventKind.PAUSED,
        ]
        assert [event.timestamp for event in events] == [100.0, 101.0, 102.0, 103.0]
        assert events[0].data["locator"] == FILM_URL
        assert session.state is PlaybackState.PAUSED
        session.destroy()

    asyncio.run(scenario())


def test_listener_failure_does_not_stop_dispatch():
    async def scenario():
        session = StreamingSession()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        session.on(EventKind.LOADING, broken)
        session.on(EventKind.LOADING, seen.append)
        pending = asyncio.ensure_future(session.initialize(FakeSink(), FILM_URL))
        await settle()

        assert len(seen) == 1
        session.destroy()
        assert await pending is False

    asyncio.run(scenario())


def test_quality_selection_through_session():
    async def scenario():
        variants = [QualityVariant("1080p", locator=FILM_URL), QualityVariant("480p", locator=FILM_480)]
        session = StreamingSession(SessionConfig(variants=variants))
        changes = _collect(session, EventKind.QUALITY_CHANGE)
        sink = FakeSink()

        pending = asyncio.ensure_future(session.initialize(sink, FILM_URL))
        await settle()
        sink.fire("loadeddata")
        await pending

        assert [q.label for q in session.qualities] == ["auto", "1080p", "480p"]
        state_before = session.state

        assert session.set_quality("8k") is False
        assert session.current_quality.label == "auto"
        assert session.state is state_before
        assert changes == []

        assert session.set_quality("480p") is True
        assert session.current_quality.label == "480p"
        assert sink.attached[-1][0] == FILM_480
        assert changes[-1].data == {"quality": "480p", "previous": "auto", "auto": False}
        assert not session.adaptive_bitrate

        assert session.set_adaptive_bitrate(True) is True
        assert session.current_quality.label == "auto"
        assert session.adaptive_bitrate
        session.destroy()

    asyncio.run(scenario())
    print("✓ Session quality test passed")


def test_network_error_then_refresh():
    async def scenario():
        manifests = {}
        fetch = static_fetch(manifests)
        session = StreamingSession(SessionConfig(fetch=fetch))
        errors = _collect(session, EventKind.ERROR)
        sink = FakeSink()

        assert await session.initialize(sink, MASTER_URL) is False
        assert session.state is PlaybackState.ERROR
        assert session.error_reason is ErrorReason.NETWORK
        assert errors[0].data["reason"] is ErrorReason.NETWORK
        assert "unreachable" in session.error_message

        manifests[MASTER_URL] = HLS_MASTER
        assert await session.refresh() is True
        assert fetch.requested == [MASTER_URL, MASTER_URL]
        assert session.state is PlaybackState.PAUSED
        assert session.error_reason is None
        assert session.error_message is None
        assert [q.label for q in session.qualities] == ["auto", "1080p", "720p", "360p"]
        session.destroy()

    asyncio.run(scenario())
    print("✓ Error and refresh test passed")


def test_autoplay_with_preferred_quality():
    async def scenario():
        config = SessionConfig(
            autoplay=True,
            preferred_quality="720p",
            fetch=static_fetch({MASTER_URL: HLS_MASTER}),
        )
        session = StreamingSession(config)
        sink = FakeSink()

        assert await session.initialize(sink, MASTER_URL) is True
        await settle()

        assert session.current_quality.label == "720p"
        assert session.adapter.level == 2
        assert sink.play_calls == 1
        assert session.state is PlaybackState.PLAYING
        session.destroy()

    asyncio.run(scenario())


def test_blocked_autoplay_recovers_on_user_play():
    async def scenario():
        session = StreamingSession(SessionConfig(autoplay=True))
        sink = FakeSink(block_autoplay=True)

        pending = asyncio.ensure_future(session.initialize(sink, FILM_URL))
        await settle()
        sink.fire("loadeddata")
        assert await pending is True
        await settle()

        assert session.state is PlaybackState.ERROR
        assert session.error_reason is ErrorReason.AUTOPLAY_BLOCKED

        sink.block_autoplay = False
        await session.play()
        assert session.state is PlaybackState.PLAYING
        assert session.error_reason is None
        session.destroy()

    asyncio.run(scenario())


def test_live_without_dvr_ignores_seek_and_rate():
    async def scenario():
        session = StreamingSession(SessionConfig(is_live=True, dvr=False))
        pending = asyncio.ensure_future(session.initialize(FakeSink(), FILM_URL))
        await settle()

        assert session.target.seekable is False
        assert session.seek(30.0) is None
        assert session.set_playback_rate(2.0) is False
        session.destroy()
        assert await pending is False

    asyncio.run(scenario())


def test_destroy_is_idempotent():
    async def scenario():
        session = StreamingSession()
        sink = FakeSink()
        pending = asyncio.ensure_future(session.initialize(sink, FILM_URL))
        await settle()
        assert session.collector.running

        session.destroy()
        session.destroy()

        assert await pending is False
        assert session.destroyed
        assert not session.collector.running
        assert sink.detach_count == 1
        assert sink.listener_count() == 0

        # Everything after destroy is a no-op.
        await session.play()
        session.pause()
        assert session.seek(5.0) is None
        assert session.set_quality("auto") is False
        assert await session.initialize(sink, FILM_URL) is False
        assert await session.refresh() is False
        assert sink.play_calls == 0

    asyncio.run(scenario())
    print("✓ Destroy test passed")


def test_sessions_are_independent():
    async def scenario():
        first, second = StreamingSession(), StreamingSession()
        first_sink, second_sink = FakeSink(), FakeSink()

        pending = [
            asyncio.ensure_future(first.initialize(first_sink, FILM_URL)),
            asyncio.ensure_future(second.initialize(second_sink, FILM_480)),
        ]
        await settle()
        first_sink.fire("loadeddata")
        second_sink.fire("loadeddata")
        assert await asyncio.gather(*pending) == [True, True]

        first.destroy()
        await second.play()

        assert first_sink.detach_count == 1
        assert second_sink.detach_count == 0
        assert second.state is PlaybackState.PLAYING
        assert second.collector.running
        second.destroy()

    asyncio.run(scenario())


def test_peer_session_accepts_auto_only():
    async def scenario():
        transport = FakeTransport()
        session = StreamingSession(SessionConfig(transport_factory=lambda: transport))
        assert await session.initialize(FakeSink(), PEER_URL) is True

        assert session.set_quality("auto") is True
        assert session.set_adaptive_bitrate(True) is True
        assert session.current_quality.label == "auto"
        session.destroy()

    asyncio.run(scenario())


def test_progressive_auto_returns_to_original_file():
    async def scenario():
        variants = [QualityVariant("1080p", locator=FILM_URL), QualityVariant("480p", locator=FILM_480)]
        session = StreamingSession(SessionConfig(variants=variants))
        sink = FakeSink()
        pending = asyncio.ensure_future(session.initialize(sink, FILM_URL))
        await settle()
        sink.fire("loadeddata")
        await pending

        assert session.set_quality("480p") is True
        assert session.set_quality("auto") is True

        assert [entry[0] for entry in sink.attached] == [FILM_URL, FILM_480, FILM_URL]
        assert session.current_quality.label == "auto"
        assert session.collector.sample().current_quality == "1080p"
        session.destroy()

    asyncio.run(scenario())


def test_metrics_can_be_disabled():
    async def scenario():
        session = StreamingSession(SessionConfig(enable_metrics=False))
        samples = _collect(session, EventKind.METRICS)
        sink = FakeSink()
        pending = asyncio.ensure_future(session.initialize(sink, FILM_URL))
        await settle()
        sink.fire("loadeddata")
        assert await pending is True

        assert not session.collector.running
        assert session.collector.sample() == session.metrics
        assert samples == []
        session.destroy()

    asyncio.run(scenario())


def test_config_presets():
    live = SessionConfig.for_live()
    assert (live.is_live, live.low_latency, live.max_buffer_length, live.autoplay) == (True, True, 10.0, True)

    vod = SessionConfig.for_vod(autoplay=True)
    assert (vod.is_live, vod.low_latency, vod.max_buffer_length, vod.autoplay) == (False, False, 30.0, True)
    assert SessionConfig.for_live(max_buffer_length=4.0).max_buffer_length == 4.0


if __name__ == "__main__":
    test_reinitialize_supersedes_pending_load()
    test_quality_selection_through_session()
    test_network_error_then_refresh()
    test_destroy_is_idempotent()
    sys.exit(0)
