"""Classify media locators into backend protocols."""

from __future__ import annotations

from urllib.parse import urlsplit

from .models import StreamTarget, StreamType

PEER_SCHEMES = ("webrtc://", "webrtcs://", "whep://", "rtmp://")
SEGMENTED_HTTP_SUFFIX = ".m3u8"
DYNAMIC_ADAPTIVE_SUFFIX = ".mpd"


def resolve_stream_type(locator: str) -> StreamType:
    """Return the protocol for ``locator``; unknown patterns are progressive."""
    lowered = locator.strip().lower()
    if lowered.startswith(PEER_SCHEMES):
        return StreamType.REALTIME_PEER

    parts = urlsplit(lowered)
    candidates = (parts.path or lowered, parts.query)
    # HLS wins when both suffixes appear anywhere in the locator.
    if any(SEGMENTED_HTTP_SUFFIX in candidate for candidate in candidates):
        return StreamType.SEGMENTED_HTTP
    if any(DYNAMIC_ADAPTIVE_SUFFIX in candidate for candidate in candidates):
        return StreamType.DYNAMIC_ADAPTIVE
    return StreamType.PROGRESSIVE


def resolve(locator: str, *, is_live: bool = False, dvr: bool = True) -> StreamTarget:
    """Classify ``locator`` for a session and mark whether it can seek."""
    if not locator or not locator.strip():
        raise ValueError("locator must be a non-empty string")

    stream_type = resolve_stream_type(locator)
    if stream_type is StreamType.REALTIME_PEER:
        return StreamTarget(locator, stream_type, is_live=True, seekable=False)
    return StreamTarget(locator, stream_type, is_live=is_live, seekable=not is_live or dvr)
