"""Protocol-specific backend adapters behind one control surface."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from . import sink as native
from .errors import (
    AutoplayBlocked,
    InvalidQuality,
    UnsupportedMedia,
    UnsupportedOperation,
    normalize_error,
)
from .manifest import (
    FetchResult,
    Rendition,
    fetch_once,
    parse_manifest,
    renditions_to_variants,
)
from .models import (
    AUTO_LABEL,
    ErrorReason,
    EventKind,
    QualityVariant,
    SessionConfig,
    StreamTarget,
    StreamType,
)
from .sink import MediaSink, PeerTransport

logger = logging.getLogger(__name__)

Emit = Callable[[EventKind, Dict[str, Any]], None]

# Bandwidth assumed before the sink has measured anything.
DEFAULT_BANDWIDTH_ESTIMATE = 500_000


@dataclass(frozen=True)
class AdapterStats:
    """Counters a backend exposes to the metrics collector."""

    bandwidth_bps: float = 0.0
    latency_ms: float = 0.0
    buffer_ahead: float = 0.0
    dropped_frames: int = 0
    playhead: float = 0.0
    live_edge: Optional[float] = None
    rendition: str = AUTO_LABEL


def _finite(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value) and not math.isinf(value)


class BackendAdapter:
    """Base class for protocol backends.

    Subclasses implement :meth:`_load` and override the commands their
    protocol handles differently. Every expected failure is reported as an
    ``error`` event with a normalised reason; nothing raises out of
    :meth:`load` or :meth:`play`.
    """

    stream_type: StreamType
    reports_native_loaded = False

    def __init__(self, target: StreamTarget, emit: Emit, config: Optional[SessionConfig] = None) -> None:
        self.target = target
        self.config = config or SessionConfig()
        self.sink: Optional[MediaSink] = None
        self.destroyed = False

        self._emit = emit
        self._bound: List[Tuple[str, Callable[..., None]]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._loaded = False
        self._playing = False
        self._auto = True
        self._rendition_label = AUTO_LABEL
        self._latency_ms = 0.0
        self._measured_bandwidth = 0.0

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def load(self, sink: MediaSink, locator: str) -> bool:
        """Attach ``locator`` to ``sink``; False when loading failed."""
        if self.destroyed:
            return False

        self.sink = sink
        try:
            return await self._load(sink, locator)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = normalize_error(exc)
            logger.warning("Failed to load %s (%s): %s", locator, reason.value, exc)
            self._fail(reason, str(exc) or exc.__class__.__name__)
            return False

    async def _load(self, sink: MediaSink, locator: str) -> bool:
        raise NotImplementedError

    async def play(self) -> None:
        if self.destroyed or self.sink is None:
            return
        try:
            await self.sink.play()
        except asyncio.CancelledError:
            raise
        except AutoplayBlocked as exc:
            logger.info("Playback start blocked for %s: %s", self.target.locator, exc)
            self._fail(ErrorReason.AUTOPLAY_BLOCKED, str(exc) or "Playback was blocked")
        except Exception as exc:
            reason = normalize_error(exc)
            logger.warning("Playback failed for %s: %s", self.target.locator, exc)
            self._fail(reason, str(exc) or exc.__class__.__name__)

    def pause(self) -> None:
        if self.destroyed or self.sink is None:
            return
        self.sink.pause()

    def seek(self, seconds: float) -> Optional[float]:
        """Move the playhead, clamped to the playable range; returns the target."""
        if not self.target.seekable:
            raise UnsupportedOperation(f"Cannot seek a {self.target.stream_type.value} live stream")
        if self.destroyed or self.sink is None:
            return None

        upper = self.sink.duration if _finite(self.sink.duration) else self._live_edge()
        target = min(max(0.0, seconds), max(0.0, upper or 0.0))
        self.sink.current_time = target
        return target

    def set_volume(self, volume: float) -> None:
        if self.destroyed or self.sink is None:
            return
        self.sink.volume = min(max(0.0, volume), 1.0)

    def set_playback_rate(self, rate: float) -> None:
        if self.target.is_live:
            raise UnsupportedOperation("Playback rate is fixed for live streams")
        if rate <= 0:
            raise ValueError("playback rate must be positive")
        if self.destroyed or self.sink is None:
            return
        self.sink.playback_rate = rate

    def set_quality(self, label: str) -> None:
        raise UnsupportedOperation(f"{self.stream_type.value} sessions cannot switch quality")

    def set_adaptive(self, enabled: bool) -> None:
        self._auto = enabled

    @property
    def qualities(self) -> List[QualityVariant]:
        return []

    @property
    def auto(self) -> bool:
        return self._auto

    def stats(self) -> AdapterStats:
        """Return the counters sampled once per metrics tick."""
        if self.destroyed or self.sink is None:
            return AdapterStats()

        position = self.sink.current_time
        return AdapterStats(
            bandwidth_bps=self._bandwidth(),
            latency_ms=self._latency(),
            buffer_ahead=self._buffer_ahead(position),
            dropped_frames=self.sink.dropped_frames(),
            playhead=position,
            live_edge=self._live_edge(),
            rendition=self._rendition_label,
        )

    def destroy(self) -> None:
        """Release the sink and transport; safe to call more than once."""
        if self.destroyed:
            return
        self.destroyed = True

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        self._release()
        if self.sink is not None:
            for name, callback in self._bound:
                self.sink.remove_listener(name, callback)
            self._bound.clear()
            self.sink.detach()
            self.sink = None
        logger.debug("Destroyed %s adapter for %s", self.stream_type.value, self.target.locator)

    def _release(self) -> None:
        """Free protocol resources; called once from destroy()."""

    # ------------------------------------------------------------------
    # Sink events
    # ------------------------------------------------------------------

    def _bind_sink(self, sink: MediaSink) -> None:
        handlers = {
            native.LOADED_DATA: self._on_loaded_data,
            native.PLAYING: self._on_playing,
            native.PAUSE: self._on_pause,
            native.WAITING: self._on_waiting,
            native.ERROR: self._on_error,
            native.TIME_UPDATE: self._on_time_update,
            native.PROGRESS: self._on_progress,
            native.DURATION_CHANGE: self._on_duration_change,
            native.ENDED: self._on_ended,
        }
        for name, callback in handlers.items():
            sink.add_listener(name, callback)
            self._bound.append((name, callback))

    def _on_loaded_data(self, *args: Any) -> None:
        if self.reports_native_loaded:
            self._mark_loaded()

    def _on_playing(self, *args: Any) -> None:
        self._playing = True
        self._emit_event(EventKind.PLAYING)

    def _on_pause(self, *args: Any) -> None:
        self._playing = False
        self._emit_event(EventKind.PAUSED)

    def _on_waiting(self, *args: Any) -> None:
        self._emit_event(EventKind.BUFFERING)

    def _on_error(self, code: Optional[int] = None, *args: Any) -> None:
        reason = native.media_error_reason(code)
        logger.warning("Media error %s on %s", code, self.target.locator)
        self._fail(reason, f"Media error {code}" if code else "Media error")

    def _on_time_update(self, *args: Any) -> None:
        self._emit_event(EventKind.TIME_UPDATE, **self._position())

    def _on_progress(self, *args: Any) -> None:
        self._emit_event(EventKind.PROGRESS, **self._position())
        self._on_buffer_progress()

    def _on_buffer_progress(self) -> None:
        """Hook for backends that adapt to buffer progress."""

    def _on_duration_change(self, *args: Any) -> None:
        if self.sink is not None:
            self._emit_event(EventKind.DURATION_CHANGE, duration=self.sink.duration)

    def _on_ended(self, *args: Any) -> None:
        self._playing = False
        self._emit_event(EventKind.ENDED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit_event(self, kind: EventKind, **data: Any) -> None:
        if self.destroyed:
            return
        self._emit(kind, data)

    def _fail(self, reason: ErrorReason, message: str) -> None:
        self._emit_event(EventKind.ERROR, reason=reason, message=message)

    def _mark_loaded(self, **extra: Any) -> None:
        if self._loaded:
            return
        self._loaded = True
        self._emit_event(EventKind.LOADED, qualities=self.qualities, **extra)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _reattach(self, locator: str, *, mime_type: Optional[str] = None, rendition: Optional[str] = None) -> None:
        """Swap the sink's source while keeping position and play state."""
        if self.sink is None:
            return
        was_playing = self._playing
        position = self.sink.current_time
        self._attach_source(locator, mime_type=mime_type, start_at=position, rendition=rendition)
        if was_playing:
            self._spawn(self.play())

    def _attach_source(
        self,
        locator: str,
        *,
        mime_type: Optional[str] = None,
        start_at: float = 0.0,
        rendition: Optional[str] = None,
    ) -> None:
        if self.sink is None:
            return
        self.sink.attach(
            locator,
            mime_type=mime_type,
            start_at=start_at,
            rendition=rendition,
            max_buffer_length=self.config.max_buffer_length,
            low_latency=self.config.low_latency,
        )

    def _buffered(self) -> List[Tuple[float, float]]:
        if self.sink is None:
            return []
        return [(float(start), float(end)) for start, end in self.sink.buffered()]

    def _buffer_ahead(self, position: float) -> float:
        for start, end in self._buffered():
            if start <= position <= end:
                return max(0.0, end - position)
        return 0.0

    def _live_edge(self) -> Optional[float]:
        if self.sink is None:
            return None
        if _finite(self.sink.duration):
            return self.sink.duration
        ends = [end for _, end in self._buffered()]
        return max(ends) if ends else self.sink.current_time

    def _position(self) -> Dict[str, Any]:
        if self.sink is None:
            return {}
        return {
            "current_time": self.sink.current_time,
            "duration": self.sink.duration,
            "buffered": self._buffered(),
            "live_edge": self._live_edge(),
        }

    def _bandwidth(self) -> float:
        estimate = getattr(self.sink, "bandwidth_estimate", 0.0) or 0.0
        return float(estimate) or self._measured_bandwidth

    def _latency(self) -> float:
        return self._latency_ms


class ProgressiveAdapter(BackendAdapter):
    """Single-file playback; qualities are separate files from the config."""

    stream_type = StreamType.PROGRESSIVE
    reports_native_loaded = True

    def __init__(self, target: StreamTarget, emit: Emit, config: Optional[SessionConfig] = None) -> None:
        super().__init__(target, emit, config)
        self._locator = target.locator
        self._source = target.locator
        self._source_label = AUTO_LABEL
        self._variants = [variant for variant in self.config.variants if not variant.is_auto]

    async def _load(self, sink: MediaSink, locator: str) -> bool:
        self._locator = self._source = locator
        self._bind_sink(sink)
        self._attach_source(locator)
        self._source_label = next(
            (variant.label for variant in self._variants if variant.locator == locator), AUTO_LABEL
        )
        self._rendition_label = self._source_label
        return True

    @property
    def qualities(self) -> List[QualityVariant]:
        return list(self._variants)

    def set_quality(self, label: str) -> None:
        if label == AUTO_LABEL:
            # Back to the file the session was loaded with.
            self._auto = True
            self._rendition_label = self._source_label
            if self._locator != self._source:
                logger.info("Reloading %s at its original quality", self.target.locator)
                self._locator = self._source
                self._reattach(self._source)
            return

        variant = next((item for item in self._variants if item.label == label), None)
        if variant is None:
            raise InvalidQuality(f"Unknown quality {label!r}")

        self._auto = False
        self._rendition_label = label
        if variant.locator and variant.locator != self._locator:
            logger.info("Reloading %s at quality %s", self.target.locator, label)
            self._locator = variant.locator
            self._reattach(variant.locator)


class _AdaptiveAdapter(BackendAdapter):
    """Shared rendition handling for manifest-driven protocols."""

    mime_type: str

    def __init__(self, target: StreamTarget, emit: Emit, config: Optional[SessionConfig] = None) -> None:
        super().__init__(target, emit, config)
        self._renditions: List[Rendition] = []
        self._level: Optional[int] = None
        self._locator = target.locator

    async def _load(self, sink: MediaSink, locator: str) -> bool:
        if not sink.can_play_type(self.mime_type):
            raise UnsupportedMedia(f"Sink cannot play {self.mime_type}")

        self._locator = locator
        result = await self._fetch(locator)
        if self.destroyed:
            return False

        self._latency_ms = result.elapsed_ms
        self._measured_bandwidth = result.throughput_bps
        info = parse_manifest(self.stream_type, result.text, locator)
        self._renditions = info.renditions

        self._bind_sink(sink)
        if self._renditions:
            self._attach(self._choose(self._estimate() or DEFAULT_BANDWIDTH_ESTIMATE))
        else:
            self._attach_source(locator, mime_type=self.mime_type)

        logger.info(
            "Loaded %s manifest %s with %d renditions",
            self.stream_type.value,
            locator,
            len(self._renditions),
        )
        self._mark_loaded(is_live=info.is_live)
        return True

    async def _fetch(self, locator: str) -> FetchResult:
        if self.config.fetch is not None:
            return await self.config.fetch(locator)
        return await fetch_once(
            locator, headers=self.config.headers, timeout=self.config.request_timeout
        )

    @property
    def qualities(self) -> List[QualityVariant]:
        return renditions_to_variants(self._renditions)

    @property
    def level(self) -> Optional[int]:
        """Index of the active rendition in manifest order."""
        return self._level

    def set_quality(self, label: str) -> None:
        if label == AUTO_LABEL:
            self.set_adaptive(True)
            return

        rendition = next((item for item in self._renditions if item.label == label), None)
        if rendition is None:
            raise InvalidQuality(f"Unknown quality {label!r}")

        self._auto = False
        if rendition.index != self._level:
            self._switch(rendition)

    def set_adaptive(self, enabled: bool) -> None:
        self._auto = enabled
        if enabled:
            self._adapt()

    def _on_buffer_progress(self) -> None:
        if self._auto:
            self._adapt()

    def _adapt(self) -> None:
        estimate = self._estimate()
        if not self._renditions or not estimate:
            return
        chosen = self._choose(estimate)
        if chosen.index != self._level:
            logger.debug("Auto switching %s to %s at %.0f bps", self._locator, chosen.label, estimate)
            self._switch(chosen)
            self._emit_event(EventKind.QUALITY_CHANGE, quality=chosen.label, auto=True)

    def _estimate(self) -> float:
        return float(getattr(self.sink, "bandwidth_estimate", 0.0) or 0.0)

    def _choose(self, estimate: float) -> Rendition:
        budget = estimate * self.config.abr_safety_factor
        fitting = [item for item in self._renditions if item.bandwidth <= budget]
        if fitting:
            return max(fitting, key=lambda item: item.bandwidth)
        return min(self._renditions, key=lambda item: item.bandwidth)

    def _attach(self, rendition: Rendition) -> None:
        if self.sink is None:
            return
        self._level = rendition.index
        self._rendition_label = rendition.label
        self._attach_source(rendition.locator, mime_type=self.mime_type, rendition=rendition.id)

    def _switch(self, rendition: Rendition) -> None:
        self._level = rendition.index
        self._rendition_label = rendition.label
        self._reattach(rendition.locator, mime_type=self.mime_type, rendition=rendition.id)


class SegmentedHttpAdapter(_AdaptiveAdapter):
    """HLS playback; renditions are variant playlists of a master playlist."""

    stream_type = StreamType.SEGMENTED_HTTP
    mime_type = native.HLS_MIME_TYPE


class DynamicAdaptiveAdapter(_AdaptiveAdapter):
    """DASH playback; renditions are representations of one MPD."""

    stream_type = StreamType.DYNAMIC_ADAPTIVE
    mime_type = native.DASH_MIME_TYPE


class RealtimePeerAdapter(BackendAdapter):
    """Peer-to-peer live playback over a pluggable transport."""

    stream_type = StreamType.REALTIME_PEER

    def __init__(self, target: StreamTarget, emit: Emit, config: Optional[SessionConfig] = None) -> None:
        super().__init__(target, emit, config)
        self._transport: Optional[PeerTransport] = None
        self._peer_state: Optional[str] = None
        self._stream_attached = False

    async def _load(self, sink: MediaSink, locator: str) -> bool:
        factory = self.config.transport_factory
        if factory is None:
            raise UnsupportedMedia("No peer transport configured")

        self._transport = factory()
        self._transport.add_state_listener(self._on_peer_state)
        self._bind_sink(sink)

        stream = await self._transport.connect(locator)
        if self.destroyed:
            return False

        sink.attach_stream(stream)
        self._stream_attached = True
        if self._peer_state == native.PEER_CONNECTED:
            self._mark_loaded(is_live=True)
        return True

    def _on_peer_state(self, state: str) -> None:
        if self.destroyed:
            return
        self._peer_state = state
        logger.debug("Peer connection for %s is %s", self.target.locator, state)
        if state == native.PEER_CONNECTED and self._stream_attached:
            self._mark_loaded(is_live=True)
        elif state == native.PEER_FAILED:
            self._fail(ErrorReason.PROTOCOL, "Peer connection failed")
        elif state == native.PEER_DISCONNECTED:
            self._fail(ErrorReason.NETWORK, "Peer connection dropped")

    def set_quality(self, label: str) -> None:
        if label == AUTO_LABEL:
            return
        raise UnsupportedOperation("Peer sessions do not support manual quality switches")

    def _bandwidth(self) -> float:
        if self._transport is not None and self._transport.bitrate:
            return float(self._transport.bitrate)
        return super()._bandwidth()

    def _latency(self) -> float:
        if self._transport is not None and self._transport.round_trip_time:
            return float(self._transport.round_trip_time) * 1000.0
        return 0.0

    def _release(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None


_BACKENDS = {
    StreamType.PROGRESSIVE: ProgressiveAdapter,
    StreamType.SEGMENTED_HTTP: SegmentedHttpAdapter,
    StreamType.DYNAMIC_ADAPTIVE: DynamicAdaptiveAdapter,
    StreamType.REALTIME_PEER: RealtimePeerAdapter,
}


def build_backend(target: StreamTarget, emit: Emit, config: Optional[SessionConfig] = None) -> BackendAdapter:
    """Factory for backend adapters."""
    return _BACKENDS[target.stream_type](target, emit, config)
