"""Streaming session orchestrating one backend adapter."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .backends import BackendAdapter, build_backend
from .errors import InvalidQuality, UnsupportedOperation
from .metrics import MetricsCollector
from .models import (
    AUTO_LABEL,
    ErrorReason,
    EventKind,
    PlaybackState,
    QualityVariant,
    SessionConfig,
    SessionMetrics,
    StreamEvent,
    StreamTarget,
)
from .quality import QualityCatalog
from .resolver import resolve
from .sink import MediaSink
from .state import PlaybackStateMachine

logger = logging.getLogger(__name__)

Listener = Callable[[StreamEvent], None]
BackendFactory = Callable[..., BackendAdapter]

_STATE_FOR_EVENT = {
    EventKind.PLAYING: PlaybackState.PLAYING,
    EventKind.PAUSED: PlaybackState.PAUSED,
    EventKind.BUFFERING: PlaybackState.BUFFERING,
    EventKind.ENDED: PlaybackState.ENDED,
}


class StreamingSession:
    """Manages the lifecycle of one playback session.

    The session picks a backend for each locator, owns the quality catalog
    and the metrics collector, and re-emits backend events to its
    listeners with a timestamp. The hosting page owns the session and must
    call :meth:`destroy` when it goes away.
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        *,
        backend_factory: BackendFactory = build_backend,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or SessionConfig()
        self._backend_factory = backend_factory
        self._clock = clock

        self._listeners: Dict[EventKind, List[Listener]] = {kind: [] for kind in EventKind}
        self._catalog = QualityCatalog()
        self._catalog.add_observer(self._on_quality_selected)
        self._metrics = MetricsCollector(self.config.metrics_interval, on_sample=self._on_metrics)
        self._machine = PlaybackStateMachine()

        self._adapter: Optional[BackendAdapter] = None
        self._sink: Optional[MediaSink] = None
        self._target: Optional[StreamTarget] = None
        self._pending: Optional[asyncio.Future] = None
        self._load_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._error_message: Optional[str] = None
        self._destroyed = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._machine.state

    @property
    def error_reason(self) -> Optional[ErrorReason]:
        return self._machine.reason

    @property
    def error_message(self) -> Optional[str]:
        return self._error_message

    @property
    def target(self) -> Optional[StreamTarget]:
        return self._target

    @property
    def locator(self) -> Optional[str]:
        return self._target.locator if self._target else None

    @property
    def adapter(self) -> Optional[BackendAdapter]:
        return self._adapter

    @property
    def metrics(self) -> SessionMetrics:
        return self._metrics.snapshot

    @property
    def collector(self) -> MetricsCollector:
        return self._metrics

    @property
    def qualities(self) -> Tuple[QualityVariant, ...]:
        return self._catalog.variants

    @property
    def current_quality(self) -> QualityVariant:
        return self._catalog.current()

    @property
    def adaptive_bitrate(self) -> bool:
        return self._adapter.auto if self._adapter else True

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on(self, kind: EventKind, callback: Listener) -> None:
        if self._destroyed:
            return
        self._listeners[EventKind(kind)].append(callback)

    def off(self, kind: EventKind, callback: Listener) -> None:
        listeners = self._listeners.get(EventKind(kind), [])
        if callback in listeners:
            listeners.remove(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, sink: MediaSink, locator: str) -> bool:
        """
        Load ``locator`` into ``sink``, replacing any previous load.

        Args:
            sink: Rendering surface supplied by the hosting page
            locator: Media locator to play

        Returns:
            True once the backend reports ``loaded``, False if it reports
            ``error`` first or the load is superseded
        """
        if self._destroyed:
            logger.warning("initialize() called on a destroyed session")
            return False

        target = resolve(locator, is_live=self.config.is_live, dvr=self.config.dvr)
        self._teardown()

        adapter: Optional[BackendAdapter] = None

        def forward(kind: EventKind, data: Dict[str, Any]) -> None:
            if adapter is not None and adapter is self._adapter:
                self._handle(kind, data)

        adapter = self._backend_factory(target, forward, self.config)
        self._adapter = adapter
        self._sink = sink
        self._target = target
        self._catalog.populate([])
        self._metrics.reset()
        self._error_message = None

        loop = asyncio.get_running_loop()
        pending = loop.create_future()
        self._pending = pending

        logger.info("Initializing %s session for %s", target.stream_type.value, locator)
        self._machine.advance(PlaybackState.LOADING)
        self._dispatch(
            EventKind.LOADING,
            {"locator": locator, "stream_type": target.stream_type, "is_live": target.is_live},
        )

        if self.config.enable_metrics:
            self._metrics.start(adapter)
        self._load_task = loop.create_task(
            self._run_load(adapter, sink, locator, pending), name=f"streamplay-load-{id(adapter):x}"
        )
        return await pending

    async def refresh(self) -> bool:
        """Re-initialize the current locator on the same sink."""
        if self._destroyed or self._sink is None or self._target is None:
            return False
        logger.info("Refreshing session for %s", self._target.locator)
        return await self.initialize(self._sink, self._target.locator)

    def destroy(self) -> None:
        """Stop sampling, release the backend and drop all listeners."""
        if self._destroyed:
            self._metrics.stop()
            return
        self._destroyed = True

        self._teardown()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._catalog.remove_observer(self._on_quality_selected)
        for listeners in self._listeners.values():
            listeners.clear()
        self._sink = None
        logger.debug("Session destroyed")

    # ------------------------------------------------------------------
    # Transport commands
    # ------------------------------------------------------------------

    async def play(self) -> None:
        if self._active():
            await self._adapter.play()

    def pause(self) -> None:
        if self._active():
            self._adapter.pause()

    def seek(self, seconds: float) -> Optional[float]:
        """Seek the backend; returns the clamped position or None when ignored."""
        if not self._active():
            return None
        try:
            return self._adapter.seek(seconds)
        except UnsupportedOperation as exc:
            logger.warning("Ignoring seek to %.2f: %s", seconds, exc)
            return None

    def set_volume(self, volume: float) -> None:
        if self._active():
            self._adapter.set_volume(min(max(0.0, volume), 1.0))

    def set_playback_rate(self, rate: float) -> bool:
        if not self._active():
            return False
        try:
            self._adapter.set_playback_rate(rate)
        except UnsupportedOperation as exc:
            logger.warning("Ignoring playback rate %.2f: %s", rate, exc)
            return False
        return True

    def set_quality(self, label: str) -> bool:
        """Select a quality; unknown or unsupported requests leave the selection as is."""
        if not self._active():
            return False
        try:
            if label not in self._catalog:
                raise InvalidQuality(f"Unknown quality {label!r}")
            self._adapter.set_quality(label)
        except (InvalidQuality, UnsupportedOperation) as exc:
            logger.warning("Quality change to %s rejected: %s", label, exc)
            return False

        self._catalog.select(label)
        return True

    def set_adaptive_bitrate(self, enabled: bool) -> bool:
        """Toggle automatic selection; disabling locks the rendition now playing."""
        if not self._active():
            return False
        if enabled:
            return self.set_quality(AUTO_LABEL)

        self._adapter.set_adaptive(False)
        playing = self._adapter.stats().rendition
        if playing in self._catalog and playing != AUTO_LABEL:
            self._catalog.select(playing)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _active(self) -> bool:
        return not self._destroyed and self._adapter is not None

    async def _run_load(
        self, adapter: BackendAdapter, sink: MediaSink, locator: str, pending: asyncio.Future
    ) -> None:
        ok = await adapter.load(sink, locator)
        if not ok:
            self._settle(pending, False)

    def _teardown(self) -> None:
        if self._load_task is not None:
            self._load_task.cancel()
            self._load_task = None
        self._settle(self._pending, False)
        self._pending = None
        self._metrics.stop()
        if self._adapter is not None:
            adapter, self._adapter = self._adapter, None
            adapter.destroy()

    @staticmethod
    def _settle(pending: Optional[asyncio.Future], result: bool) -> None:
        if pending is not None and not pending.done():
            pending.set_result(result)

    def _handle(self, kind: EventKind, data: Dict[str, Any]) -> None:
        if kind is EventKind.LOADED:
            self._catalog.populate(data.get("qualities") or [])
            self._machine.advance(PlaybackState.PAUSED)
            self._dispatch(kind, data)
            self._settle(self._pending, True)
            self._after_loaded()
            return

        if kind is EventKind.PLAYING:
            self._metrics.note_playing()
        elif kind is EventKind.BUFFERING:
            self._metrics.note_buffering()
        elif kind in (EventKind.PAUSED, EventKind.ENDED):
            self._metrics.note_resumed()

        if kind is EventKind.ERROR:
            reason = ErrorReason(data.get("reason", ErrorReason.PROTOCOL))
            self._error_message = data.get("message")
            self._machine.advance(PlaybackState.ERROR, reason)
            logger.error("Session error (%s): %s", reason.value, self._error_message)
            self._dispatch(kind, data)
            self._settle(self._pending, False)
            return

        state = _STATE_FOR_EVENT.get(kind)
        if state is not None:
            self._machine.advance(state)
        self._dispatch(kind, data)

    def _after_loaded(self) -> None:
        preferred = self.config.preferred_quality
        if preferred and preferred != AUTO_LABEL and preferred in self._catalog:
            self.set_quality(preferred)
        if self.config.autoplay:
            task = asyncio.ensure_future(self.play())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def _on_quality_selected(self, previous: QualityVariant, current: QualityVariant) -> None:
        self._dispatch(
            EventKind.QUALITY_CHANGE,
            {"quality": current.label, "previous": previous.label, "auto": False},
        )

    def _on_metrics(self, snapshot: SessionMetrics) -> None:
        self._dispatch(EventKind.METRICS, {"metrics": snapshot})

    def _dispatch(self, kind: EventKind, data: Dict[str, Any]) -> None:
        event = StreamEvent(kind=kind, data=dict(data), timestamp=self._clock())
        for callback in list(self._listeners[kind]):
            try:
                callback(event)
            except Exception:
                logger.exception("Listener for %s failed", kind.value)
