"""Dataclasses and enums for the streamplay runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional


class StreamType(str, Enum):
    """Backend protocol a locator is played with."""

    PROGRESSIVE = "progressive"
    SEGMENTED_HTTP = "segmented-http"
    DYNAMIC_ADAPTIVE = "dynamic-adaptive"
    REALTIME_PEER = "realtime-peer"


class PlaybackState(str, Enum):
    """Lifecycle state of a playback session."""

    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ERROR = "error"
    ENDED = "ended"


class ErrorReason(str, Enum):
    """Normalised reason codes carried by ``error`` events."""

    NETWORK = "network"
    UNSUPPORTED = "unsupported"
    DECODE = "decode"
    PROTOCOL = "protocol"
    AUTOPLAY_BLOCKED = "autoplay-blocked"

    @property
    def recoverable(self) -> bool:
        """Whether a full refresh may recover from this reason."""
        return self in (ErrorReason.NETWORK, ErrorReason.DECODE, ErrorReason.PROTOCOL)


class EventKind(str, Enum):
    """Uniform event kinds delivered to session listeners."""

    LOADING = "loading"
    LOADED = "loaded"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ERROR = "error"
    QUALITY_CHANGE = "quality_change"
    TIME_UPDATE = "time_update"
    PROGRESS = "progress"
    DURATION_CHANGE = "duration_change"
    ENDED = "ended"
    METRICS = "metrics"


AUTO_LABEL = "auto"


@dataclass(frozen=True)
class QualityVariant:
    """One selectable quality level of a session."""

    label: str
    width: int = 0
    height: int = 0
    bandwidth_bps: int = 0
    locator: Optional[str] = None

    @property
    def is_auto(self) -> bool:
        return self.label == AUTO_LABEL

    @property
    def resolution(self) -> str:
        if self.is_auto or not (self.width and self.height):
            return "auto"
        return f"{self.width}x{self.height}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "width": self.width,
            "height": self.height,
            "resolution": self.resolution,
            "bandwidth": self.bandwidth_bps,
            "locator": self.locator,
        }


AUTO_VARIANT = QualityVariant(AUTO_LABEL)


@dataclass(frozen=True)
class SessionMetrics:
    """Read-only snapshot produced by the metrics collector."""

    current_quality: str = AUTO_LABEL
    bandwidth_mbps: float = 0.0
    latency_ms: float = 0.0
    buffer_health: float = 0.0
    dropped_frames: int = 0
    rebuffer_count: int = 0
    total_rebuffer_ms: int = 0
    playhead: float = 0.0
    live_edge: Optional[float] = None


@dataclass(frozen=True)
class StreamEvent:
    """An event forwarded to session listeners."""

    kind: EventKind
    data: Dict[str, Any]
    timestamp: float


@dataclass(frozen=True)
class StreamTarget:
    """Classification of a locator for one session."""

    locator: str
    stream_type: StreamType
    is_live: bool = False
    seekable: bool = True


@dataclass(frozen=True)
class BufferedSegment:
    """A buffered interval expressed as scrubber percentages."""

    start: float
    end: float


@dataclass
class SessionConfig:
    """Configuration for a playback session."""

    is_live: bool = False
    dvr: bool = True
    autoplay: bool = False
    preferred_quality: str = AUTO_LABEL
    variants: List[QualityVariant] = field(default_factory=list)
    poster: Optional[str] = None
    metrics_interval: float = 1.0
    catchup_threshold: float = 10.0
    abr_safety_factor: float = 0.8
    headers: Optional[Dict[str, str]] = None
    request_timeout: float = 15.0
    fetch: Optional[Callable[[str], Awaitable[Any]]] = None
    enable_metrics: bool = True
    max_buffer_length: float = 30.0
    low_latency: bool = False
    transport_factory: Optional[Callable[[], Any]] = None

    @classmethod
    def for_live(cls, **overrides: Any) -> SessionConfig:
        """Live defaults: low latency, a 10 s buffer and autoplay."""
        options: Dict[str, Any] = {
            "is_live": True,
            "low_latency": True,
            "max_buffer_length": 10.0,
            "autoplay": True,
        }
        options.update(overrides)
        return cls(**options)

    @classmethod
    def for_vod(cls, **overrides: Any) -> SessionConfig:
        """Recorded media defaults: a 30 s buffer, no low-latency mode."""
        options: Dict[str, Any] = {"is_live": False, "low_latency": False, "max_buffer_length": 30.0}
        options.update(overrides)
        return cls(**options)
