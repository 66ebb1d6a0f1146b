"""streamplay: adaptive video session and playback control."""

from .controller import PlaybackController
from .models import (
    ErrorReason,
    EventKind,
    PlaybackState,
    QualityVariant,
    SessionConfig,
    SessionMetrics,
    StreamType,
)
from .session import StreamingSession

__all__ = [
    "ErrorReason",
    "EventKind",
    "PlaybackController",
    "PlaybackState",
    "QualityVariant",
    "SessionConfig",
    "SessionMetrics",
    "StreamType",
    "StreamingSession",
]
