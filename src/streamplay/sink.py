"""Interfaces of the collaborators supplied by the hosting page."""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Protocol, Tuple

from .models import ErrorReason

# Native media events a sink reports through ``add_listener``.
LOADED_DATA = "loadeddata"
PLAYING = "playing"
PAUSE = "pause"
WAITING = "waiting"
ERROR = "error"
TIME_UPDATE = "timeupdate"
PROGRESS = "progress"
DURATION_CHANGE = "durationchange"
ENDED = "ended"

NATIVE_EVENTS = (
    LOADED_DATA,
    PLAYING,
    PAUSE,
    WAITING,
    ERROR,
    TIME_UPDATE,
    PROGRESS,
    DURATION_CHANGE,
    ENDED,
)

MEDIA_ERR_ABORTED = 1
MEDIA_ERR_NETWORK = 2
MEDIA_ERR_DECODE = 3
MEDIA_ERR_SRC_NOT_SUPPORTED = 4

_MEDIA_ERROR_REASONS = {
    MEDIA_ERR_NETWORK: ErrorReason.NETWORK,
    MEDIA_ERR_DECODE: ErrorReason.DECODE,
    MEDIA_ERR_SRC_NOT_SUPPORTED: ErrorReason.UNSUPPORTED,
}

HLS_MIME_TYPE = "application/vnd.apple.mpegurl"
DASH_MIME_TYPE = "application/dash+xml"

# Peer transport connection states.
PEER_CONNECTED = "connected"
PEER_DISCONNECTED = "disconnected"
PEER_FAILED = "failed"
PEER_CLOSED = "closed"

NativeListener = Callable[..., None]


def media_error_reason(code: Optional[int]) -> ErrorReason:
    """Translate a native media error code; unknown codes count as decode faults."""
    return _MEDIA_ERROR_REASONS.get(code or 0, ErrorReason.DECODE)


class MediaSink(Protocol):
    """Rendering surface a backend attaches media to."""

    current_time: float
    duration: float
    volume: float
    playback_rate: float
    bandwidth_estimate: float

    def can_play_type(self, mime_type: str) -> bool:
        """Return True when the sink can play ``mime_type`` natively."""

    def attach(
        self,
        locator: str,
        *,
        mime_type: Optional[str] = None,
        start_at: float = 0.0,
        rendition: Optional[str] = None,
        max_buffer_length: Optional[float] = None,
        low_latency: bool = False,
    ) -> None:
        """Start loading ``locator``; report progress through native events.

        ``max_buffer_length`` caps the seconds buffered ahead of the playhead;
        ``low_latency`` asks the sink to stay close to the live edge.
        """

    def attach_stream(self, stream: Any) -> None:
        """Render a live media stream delivered by a peer transport."""

    def detach(self) -> None:
        """Drop the current source and release decoder resources."""

    async def play(self) -> None:
        """Start playback; raise ``AutoplayBlocked`` on policy rejection."""

    def pause(self) -> None:
        """Pause playback."""

    def buffered(self) -> List[Tuple[float, float]]:
        """Return buffered ``(start, end)`` intervals in seconds."""

    def dropped_frames(self) -> int:
        """Return the decoder's dropped-frame counter."""

    def add_listener(self, event: str, callback: NativeListener) -> None:
        """Register ``callback`` for a native event name."""

    def remove_listener(self, event: str, callback: NativeListener) -> None:
        """Unregister a callback added with ``add_listener``."""


class PeerTransport(Protocol):
    """Real-time peer connection delivering a media stream."""

    round_trip_time: Optional[float]
    bitrate: Optional[float]

    async def connect(self, locator: str) -> Any:
        """Negotiate with the remote peer and return its media stream."""

    def close(self) -> None:
        """Tear down the connection."""

    def add_state_listener(self, callback: Callable[[str], None]) -> None:
        """Register ``callback`` for connection state changes."""


class DocumentHost(Protocol):
    """Document-level services used by the playback controller."""

    is_fullscreen: bool

    def add_key_listener(self, callback: Callable[[str], bool]) -> None:
        """Bind ``callback`` to key-down events for the whole document."""

    def remove_key_listener(self, callback: Callable[[str], bool]) -> None:
        """Unbind a callback added with ``add_key_listener``."""

    def request_fullscreen(self) -> None:
        """Enter fullscreen."""

    def exit_fullscreen(self) -> None:
        """Leave fullscreen."""
