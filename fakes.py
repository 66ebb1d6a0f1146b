"""Scriptable stand-ins for the sink, peer transport and document host."""

import asyncio
import math
from collections import defaultdict

from streamplay.errors import AutoplayBlocked
from streamplay.manifest import FetchResult
from streamplay.sink import DASH_MIME_TYPE, HLS_MIME_TYPE, PEER_CONNECTED


class FakeSink:
    """Media sink that records commands and fires native events on demand."""

    def __init__(self, *, playable=(HLS_MIME_TYPE, DASH_MIME_TYPE), block_autoplay=False):
        self.current_time = 0.0
        self.duration = math.nan
        self.volume = 1.0
        self.playback_rate = 1.0
        self.bandwidth_estimate = 0.0
        self.ranges = []
        self.frames_dropped = 0
        self.playable = set(playable)
        self.block_autoplay = block_autoplay

        self.attached = []
        self.buffer_options = []
        self.streams = []
        self.detach_count = 0
        self.play_calls = 0
        self.pause_calls = 0
        self._listeners = defaultdict(list)

    def can_play_type(self, mime_type):
        return mime_type in self.playable

    def attach(
        self, locator, *, mime_type=None, start_at=0.0, rendition=None, max_buffer_length=None, low_latency=False
    ):
        self.attached.append((locator, mime_type, start_at, rendition))
        self.buffer_options.append((max_buffer_length, low_latency))
        self.current_time = start_at

    def attach_stream(self, stream):
        self.streams.append(stream)

    def detach(self):
        self.detach_count += 1

    async def play(self):
        self.play_calls += 1
        if self.block_autoplay:
            raise AutoplayBlocked("play() is not allowed without a user gesture")
        self.fire("playing")

    def pause(self):
        self.pause_calls += 1
        self.fire("pause")

    def buffered(self):
        return list(self.ranges)

    def dropped_frames(self):
        return self.frames_dropped

    def add_listener(self, event, callback):
        self._listeners[event].append(callback)

    def remove_listener(self, event, callback):
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)

    def listener_count(self):
        return sum(len(callbacks) for callbacks in self._listeners.values())

    def fire(self, event, *args):
        for callback in list(self._listeners[event]):
            callback(*args)


class FakeTransport:
    """Peer transport whose connection state is driven by the test."""

    def __init__(self, *, connect_state=PEER_CONNECTED, error=None):
        self.round_trip_time = 0.045
        self.bitrate = 2_500_000.0
        self.connect_state = connect_state
        self.error = error
        self.connected_to = None
        self.close_count = 0
        self._listeners = []

    async def connect(self, locator):
        self.connected_to = locator
        if self.error is not None:
            raise self.error
        if self.connect_state:
            self.set_state(self.connect_state)
        return f"stream:{locator}"

    def close(self):
        self.close_count += 1

    def add_state_listener(self, callback):
        self._listeners.append(callback)

    def set_state(self, state):
        for callback in list(self._listeners):
            callback(state)


class FakeDocument:
    """Document host recording key bindings and fullscreen requests."""

    def __init__(self):
        self.is_fullscreen = False
        self.key_listeners = []

    def add_key_listener(self, callback):
        self.key_listeners.append(callback)

    def remove_key_listener(self, callback):
        self.key_listeners.remove(callback)

    def request_fullscreen(self):
        self.is_fullscreen = True

    def exit_fullscreen(self):
        self.is_fullscreen = False

    def press(self, key):
        return [callback(key) for callback in list(self.key_listeners)]


def static_fetch(manifests, *, elapsed_ms=12.0, throughput_bps=8_000_000.0):
    """Return a fetch callable serving manifests from a dict."""
    requested = []

    async def fetch(url):
        requested.append(url)
        if url not in manifests:
            raise OSError(f"unreachable: {url}")
        return FetchResult(text=manifests[url], elapsed_ms=elapsed_ms, throughput_bps=throughput_bps)

    fetch.requested = requested
    return fetch


async def settle(rounds=5):
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


HLS_MASTER = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360,CODECS="avc1.4d401e,mp4a.40.2"
360p/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=5000000,RESOLUTION=1920x1080,CODECS="avc1.640028,mp4a.40.2"
1080p/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=2800000,RESOLUTION=1280x720,CODECS="avc1.4d401f,mp4a.40.2"
720p/index.m3u8
"""

DASH_MPD = """<?xml version="1.0" encoding="utf-8"?>
<MPD xmlns="urn:mpeg:dash:schema:mpd:2011" type="static"
     mediaPresentationDuration="PT0H2M0.000S">
  <Period>
    <AdaptationSet mimeType="video/mp4" segmentAlignment="true">
      <Representation id="v-480" codecs="avc1.4d401e" bandwidth="1500000" width="854" height="480"/>
      <Representation id="v-1080" codecs="avc1.640028" bandwidth="5000000" width="1920" height="1080"/>
    </AdaptationSet>
    <AdaptationSet mimeType="audio/mp4">
      <Representation id="a-128" codecs="mp4a.40.2" bandwidth="128000"/>
    </AdaptationSet>
    <AdaptationSet mimeType="text/vtt">
      <Representation id="subs-en" bandwidth="256"/>
    </AdaptationSet>
  </Period>
</MPD>
"""
