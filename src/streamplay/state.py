"""Playback state transitions shared by the session and the controller."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional

from .models import ErrorReason, PlaybackState

logger = logging.getLogger(__name__)

_S = PlaybackState

TRANSITIONS: Dict[PlaybackState, FrozenSet[PlaybackState]] = {
    _S.IDLE: frozenset({_S.LOADING}),
    _S.LOADING: frozenset({_S.LOADING, _S.PLAYING, _S.PAUSED, _S.BUFFERING, _S.ENDED, _S.ERROR}),
    _S.PLAYING: frozenset({_S.LOADING, _S.PAUSED, _S.BUFFERING, _S.ENDED, _S.ERROR}),
    _S.PAUSED: frozenset({_S.LOADING, _S.PLAYING, _S.BUFFERING, _S.ENDED, _S.ERROR}),
    _S.BUFFERING: frozenset({_S.LOADING, _S.PLAYING, _S.PAUSED, _S.ENDED, _S.ERROR}),
    _S.ERROR: frozenset({_S.LOADING}),
    _S.ENDED: frozenset({_S.LOADING}),
}


class PlaybackStateMachine:
    """Tracks the current :class:`PlaybackState` and rejects illegal moves.

    ``ended`` and ``error`` only lead back to ``loading``. The exception is
    an ``autoplay-blocked`` error, which a user-initiated play recovers
    from directly.
    """

    def __init__(self) -> None:
        self.state = PlaybackState.IDLE
        self.reason: Optional[ErrorReason] = None

    def can_enter(self, target: PlaybackState) -> bool:
        if self.state is _S.ERROR and self.reason is ErrorReason.AUTOPLAY_BLOCKED:
            if target in (_S.PLAYING, _S.PAUSED, _S.BUFFERING):
                return True
        return target in TRANSITIONS[self.state]

    def advance(self, target: PlaybackState, reason: Optional[ErrorReason] = None) -> bool:
        """Move to ``target`` if allowed; returns whether the state changed."""
        if not self.can_enter(target):
            logger.debug("Ignoring transition %s -> %s", self.state.value, target.value)
            return False
        self.state = target
        self.reason = reason if target is _S.ERROR else None
        return True

    def reset(self) -> None:
        self.state = PlaybackState.IDLE
        self.reason = None
