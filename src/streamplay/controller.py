"""UI-facing playback controller driven by session events."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from .models import (
    AUTO_LABEL,
    BufferedSegment,
    ErrorReason,
    EventKind,
    PlaybackState,
    QualityVariant,
    SessionMetrics,
    StreamEvent,
)
from .session import StreamingSession
from .sink import DocumentHost
from .state import PlaybackStateMachine

logger = logging.getLogger(__name__)

LIVE_LABEL = "LIVE"
AUTOPLAY_MESSAGE = "Playback was blocked by the browser. Press play to start."
GENERIC_ERROR_MESSAGE = "Something went wrong while playing this stream."

SPACE_KEYS = {" ", "Space", "Spacebar"}
ARROW_LEFT = "ArrowLeft"
ARROW_RIGHT = "ArrowRight"
ARROW_UP = "ArrowUp"
ARROW_DOWN = "ArrowDown"


def _finite(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value) and not math.isinf(value)


def format_time(seconds: Optional[float]) -> str:
    """Format seconds as ``MM:SS`` or ``H:MM:SS``; unknown/infinite is ``LIVE``."""
    if not _finite(seconds):
        return LIVE_LABEL
    total = int(max(0.0, seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


@dataclass(frozen=True)
class Chapter:
    """A named position in a recorded stream."""

    time: float
    title: str


class PlaybackController:
    """Derives display state from a :class:`StreamingSession` and drives it.

    The controller never polls: every field is updated from session events.
    User gestures (scrubber pointer events, keyboard shortcuts, buttons) are
    translated into session commands, with seeking suppressed for live
    streams.
    """

    def __init__(
        self,
        session: StreamingSession,
        *,
        is_live: Optional[bool] = None,
        host: Optional[DocumentHost] = None,
        catchup_threshold: Optional[float] = None,
        seek_step: float = 10.0,
        volume_step: float = 0.1,
        poster: Optional[str] = None,
        on_record: Optional[Callable[[bool], None]] = None,
    ) -> None:
        config = session.config
        self.session = session
        self.host = host
        self.is_live = config.is_live if is_live is None else is_live
        self.catchup_threshold = (
            config.catchup_threshold if catchup_threshold is None else catchup_threshold
        )
        self.seek_step = seek_step
        self.volume_step = volume_step
        self.poster = poster or config.poster
        self.on_record = on_record

        self.current_time = 0.0
        self.duration = math.inf if self.is_live else 0.0
        self.buffered: List[Tuple[float, float]] = []
        self.live_edge: Optional[float] = None
        self.volume = 1.0
        self.playback_rate = 1.0
        self.playing_quality: Optional[str] = None
        self.metrics = SessionMetrics()
        self.chapters: List[Chapter] = []

        self.dragging = False
        self.is_fullscreen = False
        self.is_recording = False
        self.is_behind_live = False
        self.has_played = False

        self._machine = PlaybackStateMachine()
        self._volume_before_mute = 1.0
        self._drag_time = 0.0
        self._subscriptions: List[Tuple[EventKind, Callable[[StreamEvent], None]]] = []
        self._tasks: Set[asyncio.Task] = set()
        self._mounted = False

    # ------------------------------------------------------------------
    # Mounting
    # ------------------------------------------------------------------

    def mount(self) -> None:
        """Subscribe to the session and bind document-level shortcuts."""
        if self._mounted:
            return
        self._mounted = True
        self._machine.state = self.session.state
        self._machine.reason = self.session.error_reason

        handlers: Dict[EventKind, Callable[[StreamEvent], None]] = {
            EventKind.LOADING: self._on_loading,
            EventKind.LOADED: self._on_loaded,
            EventKind.PLAYING: self._on_playing,
            EventKind.PAUSED: self._on_state_event,
            EventKind.BUFFERING: self._on_state_event,
            EventKind.ENDED: self._on_state_event,
            EventKind.ERROR: self._on_error,
            EventKind.TIME_UPDATE: self._on_position,
            EventKind.PROGRESS: self._on_position,
            EventKind.DURATION_CHANGE: self._on_duration,
            EventKind.QUALITY_CHANGE: self._on_quality,
            EventKind.METRICS: self._on_metrics,
        }
        for kind, handler in handlers.items():
            self.session.on(kind, handler)
            self._subscriptions.append((kind, handler))

        if self.host is not None:
            self.host.add_key_listener(self.handle_key)

    def unmount(self) -> None:
        """Remove listeners and shortcuts bound by :meth:`mount`."""
        if not self._mounted:
            return
        self._mounted = False
        for kind, handler in self._subscriptions:
            self.session.off(kind, handler)
        self._subscriptions.clear()
        if self.host is not None:
            self.host.remove_key_listener(self.handle_key)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    @property
    def mounted(self) -> bool:
        return self._mounted

    # ------------------------------------------------------------------
    # Derived display values
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return self._machine.state

    @property
    def error_reason(self) -> Optional[ErrorReason]:
        return self._machine.reason

    @property
    def is_playing(self) -> bool:
        return self.state in (PlaybackState.PLAYING, PlaybackState.BUFFERING)

    @property
    def muted(self) -> bool:
        return self.volume == 0

    @property
    def seek_enabled(self) -> bool:
        if self.is_live or not _finite(self.duration) or self.duration <= 0:
            return False
        target = self.session.target
        return target is None or target.seekable

    @property
    def display_time(self) -> float:
        return self._drag_time if self.dragging else self.current_time

    @property
    def formatted_time(self) -> str:
        if self.is_live or not _finite(self.duration):
            return LIVE_LABEL
        return format_time(self.display_time)

    @property
    def formatted_duration(self) -> str:
        if self.is_live:
            return LIVE_LABEL
        return format_time(self.duration)

    @property
    def progress_percentage(self) -> float:
        if self.is_live:
            return 100.0
        if not _finite(self.duration) or self.duration <= 0:
            return 0.0
        return min(max(self.display_time / self.duration * 100.0, 0.0), 100.0)

    @property
    def buffered_segments(self) -> List[BufferedSegment]:
        if self.is_live or not _finite(self.duration) or self.duration <= 0:
            return []
        segments = []
        for start, end in self.buffered:
            segments.append(
                BufferedSegment(
                    start=min(max(start / self.duration * 100.0, 0.0), 100.0),
                    end=min(max(end / self.duration * 100.0, 0.0), 100.0),
                )
            )
        return segments

    @property
    def show_poster(self) -> bool:
        return bool(self.poster) and not self.has_played

    @property
    def needs_user_gesture(self) -> bool:
        return self.state is PlaybackState.ERROR and self.error_reason is ErrorReason.AUTOPLAY_BLOCKED

    @property
    def can_retry(self) -> bool:
        return (
            self.state is PlaybackState.ERROR
            and self.error_reason is not None
            and self.error_reason.recoverable
        )

    @property
    def error_message(self) -> Optional[str]:
        if self.state is not PlaybackState.ERROR:
            return None
        if self.error_reason is ErrorReason.AUTOPLAY_BLOCKED:
            return AUTOPLAY_MESSAGE
        return GENERIC_ERROR_MESSAGE

    @property
    def qualities(self) -> Tuple[QualityVariant, ...]:
        return self.session.qualities

    @property
    def selected_quality(self) -> str:
        return self.session.current_quality.label

    @property
    def current_chapter(self) -> Optional[Chapter]:
        position = self.display_time
        current = None
        for chapter in self.chapters:
            if chapter.time <= position:
                current = chapter
        return current

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def play(self) -> None:
        await self.session.play()

    def pause(self) -> None:
        self.session.pause()

    async def toggle_play(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            await self.play()

    async def refresh(self) -> bool:
        """Retry the current locator after an error."""
        self.is_behind_live = False
        return await self.session.refresh()

    def seek(self, seconds: float) -> Optional[float]:
        if not self.seek_enabled:
            logger.debug("Seeking is disabled for this stream")
            return None
        result = self.session.seek(seconds)
        if result is not None:
            self.current_time = result
        return result

    def seek_by(self, delta: float) -> Optional[float]:
        return self.seek(self.current_time + delta)

    def set_volume(self, volume: float) -> None:
        self.volume = min(max(0.0, round(volume, 4)), 1.0)
        self.session.set_volume(self.volume)

    def change_volume(self, delta: float) -> None:
        self.set_volume(self.volume + delta)

    def toggle_mute(self) -> None:
        if self.muted:
            self.set_volume(self._volume_before_mute or 1.0)
        else:
            self._volume_before_mute = self.volume
            self.set_volume(0.0)

    def toggle_fullscreen(self) -> None:
        entering = not self.is_fullscreen
        if self.host is not None:
            try:
                if self.host.is_fullscreen:
                    self.host.exit_fullscreen()
                    entering = False
                else:
                    self.host.request_fullscreen()
                    entering = True
            except Exception as exc:
                logger.warning("Fullscreen toggle failed: %s", exc)
                return
        self.is_fullscreen = entering

    def toggle_recording(self) -> bool:
        """Start or stop recording a live stream; no-op for recorded media."""
        if not self.is_live:
            return False
        self.is_recording = not self.is_recording
        if self.on_record is not None:
            self.on_record(self.is_recording)
        return True

    def go_live(self) -> Optional[float]:
        """Jump to the live edge and clear the behind-live indicator."""
        if _finite(self.duration):
            target = self.duration
        elif self.live_edge is not None:
            target = self.live_edge
        elif self.buffered:
            target = max(end for _, end in self.buffered)
        else:
            return None

        result = self.session.seek(target)
        self.current_time = result if result is not None else target
        self.is_behind_live = False
        return result

    def set_quality(self, label: str) -> bool:
        return self.session.set_quality(label)

    def toggle_adaptive_bitrate(self) -> bool:
        return self.session.set_adaptive_bitrate(not self.session.adaptive_bitrate)

    def set_playback_rate(self, rate: float) -> bool:
        if self.session.set_playback_rate(rate):
            self.playback_rate = rate
            return True
        return False

    def set_chapters(self, chapters: Iterable[Union[Chapter, Tuple[float, str]]]) -> None:
        items = [item if isinstance(item, Chapter) else Chapter(*item) for item in chapters]
        self.chapters = sorted(items, key=lambda chapter: chapter.time)

    def go_to_chapter(self, index: int) -> Optional[float]:
        if not 0 <= index < len(self.chapters):
            return None
        return self.seek(self.chapters[index].time)

    # ------------------------------------------------------------------
    # Scrubber gestures
    # ------------------------------------------------------------------

    def pointer_down(self, fraction: float) -> bool:
        if not self.seek_enabled:
            return False
        self.dragging = True
        self._drag_time = self._time_at(fraction)
        return True

    def pointer_move(self, fraction: float) -> None:
        if self.dragging:
            self._drag_time = self._time_at(fraction)

    def pointer_up(self, fraction: Optional[float] = None) -> Optional[float]:
        if not self.dragging:
            return None
        if fraction is not None:
            self._drag_time = self._time_at(fraction)
        return self._commit_drag()

    def pointer_leave(self) -> Optional[float]:
        # Leaving the scrubber commits like a release.
        if not self.dragging:
            return None
        return self._commit_drag()

    def _time_at(self, fraction: float) -> float:
        return min(max(fraction, 0.0), 1.0) * self.duration

    def _commit_drag(self) -> Optional[float]:
        self.dragging = False
        return self.seek(self._drag_time)

    # ------------------------------------------------------------------
    # Keyboard
    # ------------------------------------------------------------------

    def handle_key(self, key: str) -> bool:
        """Handle a document key-down; returns True when the key was consumed."""
        if key in SPACE_KEYS:
            self._spawn(self.toggle_play())
            return True

        lowered = key.lower()
        if lowered == "m":
            self.toggle_mute()
            return True
        if lowered == "f":
            self.toggle_fullscreen()
            return True
        if key in (ARROW_LEFT, ARROW_RIGHT):
            if not self.seek_enabled:
                return False
            self.seek_by(self.seek_step if key == ARROW_RIGHT else -self.seek_step)
            return True
        if key in (ARROW_UP, ARROW_DOWN):
            self.change_volume(self.volume_step if key == ARROW_UP else -self.volume_step)
            return True
        return False

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def _on_loading(self, event: StreamEvent) -> None:
        self._machine.advance(PlaybackState.LOADING)
        self.dragging = False
        self.is_behind_live = False
        self.buffered = []

    def _on_loaded(self, event: StreamEvent) -> None:
        self._machine.advance(PlaybackState.PAUSED)

    def _on_playing(self, event: StreamEvent) -> None:
        self.has_played = True
        self._machine.advance(PlaybackState.PLAYING)

    def _on_state_event(self, event: StreamEvent) -> None:
        target = {
            EventKind.PAUSED: PlaybackState.PAUSED,
            EventKind.BUFFERING: PlaybackState.BUFFERING,
            EventKind.ENDED: PlaybackState.ENDED,
        }[event.kind]
        self._machine.advance(target)

    def _on_error(self, event: StreamEvent) -> None:
        reason = ErrorReason(event.data.get("reason", ErrorReason.PROTOCOL))
        self._machine.advance(PlaybackState.ERROR, reason)

    def _on_position(self, event: StreamEvent) -> None:
        data = event.data
        if "current_time" in data:
            self.current_time = data["current_time"]
        if "duration" in data and not self.is_live:
            self.duration = data["duration"]
        if "buffered" in data:
            self.buffered = list(data["buffered"])
        if data.get("live_edge") is not None:
            self.live_edge = data["live_edge"]
        self._update_live_lag(self.current_time, self.live_edge)

    def _on_duration(self, event: StreamEvent) -> None:
        if not self.is_live:
            self.duration = event.data.get("duration", self.duration)

    def _on_quality(self, event: StreamEvent) -> None:
        quality = event.data.get("quality")
        # Selecting auto names no rendition; keep the one reported as playing.
        if quality == AUTO_LABEL and not event.data.get("auto"):
            return
        self.playing_quality = quality

    def _on_metrics(self, event: StreamEvent) -> None:
        metrics: SessionMetrics = event.data["metrics"]
        self.metrics = metrics
        self.playing_quality = metrics.current_quality
        if metrics.live_edge is not None:
            self.live_edge = metrics.live_edge
        self._update_live_lag(metrics.playhead, self.live_edge)

    def _update_live_lag(self, playhead: float, live_edge: Optional[float]) -> None:
        if not self.is_live or live_edge is None:
            self.is_behind_live = False
            return
        self.is_behind_live = live_edge - playhead > self.catchup_threshold
