"""Quality catalog for a playback session."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Tuple

from .errors import InvalidQuality
from .models import AUTO_LABEL, AUTO_VARIANT, QualityVariant

logger = logging.getLogger(__name__)

ChangeObserver = Callable[[QualityVariant, QualityVariant], None]


class QualityCatalog:
    """Holds the selectable quality variants and the current selection.

    The synthetic ``auto`` variant is always present and always first.
    Observers are called with ``(previous, current)`` whenever
    :meth:`select` changes the selection.
    """

    def __init__(self, variants: Optional[Iterable[QualityVariant]] = None) -> None:
        self._variants: Tuple[QualityVariant, ...] = (AUTO_VARIANT,)
        self._current: QualityVariant = AUTO_VARIANT
        self._observers: List[ChangeObserver] = []
        if variants:
            self.populate(variants)

    @property
    def variants(self) -> Tuple[QualityVariant, ...]:
        return self._variants

    def populate(self, variants: Iterable[QualityVariant]) -> None:
        """Replace the catalog contents and reset the selection to ``auto``."""
        entries: List[QualityVariant] = [AUTO_VARIANT]
        seen = {AUTO_LABEL}
        for variant in variants:
            if variant.label in seen:
                logger.debug("Skipping duplicate quality label %s", variant.label)
                continue
            seen.add(variant.label)
            entries.append(variant)

        self._variants = tuple(entries)
        self._current = AUTO_VARIANT

    def select(self, label: str) -> QualityVariant:
        """Make ``label`` the current variant."""
        variant = self.get(label)
        if variant is None:
            raise InvalidQuality(f"Unknown quality {label!r}")

        previous = self._current
        self._current = variant
        if variant != previous:
            for observer in list(self._observers):
                observer(previous, variant)
        return variant

    def current(self) -> QualityVariant:
        return self._current

    def get(self, label: str) -> Optional[QualityVariant]:
        for variant in self._variants:
            if variant.label == label:
                return variant
        return None

    def labels(self) -> List[str]:
        return [variant.label for variant in self._variants]

    def add_observer(self, observer: ChangeObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: ChangeObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def __contains__(self, label: object) -> bool:
        return any(variant.label == label for variant in self._variants)

    def __len__(self) -> int:
        return len(self._variants)
