"""Exceptions and error normalisation for streamplay."""

from __future__ import annotations

import asyncio

import aiohttp

from .models import ErrorReason


class StreamplayError(Exception):
    """Base class for streamplay errors."""


class InvalidQuality(StreamplayError, LookupError):
    """Raised when a quality label is not present in the catalog."""


class UnsupportedOperation(StreamplayError):
    """Raised when a backend cannot perform the requested command."""


class AutoplayBlocked(StreamplayError):
    """Raised by a sink when the platform rejects playback start."""


class UnsupportedMedia(StreamplayError):
    """Raised when the runtime cannot play the protocol or codec."""


class ManifestError(StreamplayError, ValueError):
    """Raised when a manifest cannot be parsed."""


def normalize_error(exc: BaseException) -> ErrorReason:
    """Map a backend exception onto one of the ``error`` reason codes."""
    if isinstance(exc, AutoplayBlocked):
        return ErrorReason.AUTOPLAY_BLOCKED
    if isinstance(exc, UnsupportedMedia):
        return ErrorReason.UNSUPPORTED
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, OSError)):
        return ErrorReason.NETWORK
    return ErrorReason.PROTOCOL
