"""Periodic sampling of playback health."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from .models import SessionMetrics

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Samples the attached backend once per interval.

    The :class:`SessionMetrics` snapshot is replaced only inside
    :meth:`sample`. Rebuffer notifications received between ticks are
    accumulated and folded into the next snapshot.
    """

    def __init__(
        self,
        interval: float = 1.0,
        *,
        on_sample: Optional[Callable[[SessionMetrics], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.on_sample = on_sample
        self._clock = clock
        self._adapter = None
        self._task: Optional[asyncio.Task] = None
        self._snapshot = SessionMetrics()
        self.reset()

    @property
    def snapshot(self) -> SessionMetrics:
        return self._snapshot

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, adapter) -> None:
        """Attach ``adapter`` and begin sampling on the running loop."""
        self.stop()
        self._adapter = adapter
        self._task = asyncio.get_running_loop().create_task(self._run(), name="streamplay-metrics")

    def stop(self) -> None:
        """Cancel the sampling task and detach the adapter."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._adapter = None

    def reset(self) -> None:
        self._snapshot = SessionMetrics()
        self._playback_started = False
        self._rebuffer_started: Optional[float] = None
        self._rebuffer_count = 0
        self._rebuffer_ms = 0.0

    def note_playing(self) -> None:
        self._playback_started = True
        self.note_resumed()

    def note_buffering(self) -> None:
        # Waiting before the first frame is start-up, not a rebuffer.
        if not self._playback_started or self._rebuffer_started is not None:
            return
        self._rebuffer_started = self._clock()
        self._rebuffer_count += 1

    def note_resumed(self) -> None:
        if self._rebuffer_started is None:
            return
        self._rebuffer_ms += (self._clock() - self._rebuffer_started) * 1000.0
        self._rebuffer_started = None

    def sample(self) -> SessionMetrics:
        """Take one sample from the attached backend."""
        adapter = self._adapter
        if adapter is None or adapter.destroyed:
            return self._snapshot

        stats = adapter.stats()
        rebuffer_ms = self._rebuffer_ms
        if self._rebuffer_started is not None:
            rebuffer_ms += (self._clock() - self._rebuffer_started) * 1000.0

        self._snapshot = SessionMetrics(
            current_quality=stats.rendition,
            bandwidth_mbps=max(0.0, stats.bandwidth_bps) / 1_000_000,
            latency_ms=max(0.0, stats.latency_ms),
            buffer_health=max(0.0, stats.buffer_ahead),
            dropped_frames=max(0, int(stats.dropped_frames)),
            rebuffer_count=self._rebuffer_count,
            total_rebuffer_ms=int(rebuffer_ms),
            playhead=stats.playhead,
            live_edge=stats.live_edge,
        )
        if self.on_sample is not None:
            self.on_sample(self._snapshot)
        return self._snapshot

    async def _run(self) -> None:
        while self._adapter is not None:
            await asyncio.sleep(self.interval)
            try:
                self.sample()
            except Exception:
                logger.exception("Metrics sample failed")
