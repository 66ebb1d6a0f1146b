#!/usr/bin/env python3
"""Test the quality catalog."""

import sys

import pytest

from streamplay.errors import InvalidQuality
from streamplay.models import QualityVariant
from streamplay.quality import QualityCatalog

V720 = QualityVariant("720p", 1280, 720, 2_800_000, "https://cdn.example.com/720.mp4")
V360 = QualityVariant("360p", 640, 360, 800_000, "https://cdn.example.com/360.mp4")


def test_populate_prepends_auto():
    catalog = QualityCatalog()
    catalog.populate([])
    assert catalog.labels() == ["auto"]

    catalog.populate([V720, V360])
    assert catalog.labels() == ["auto", "720p", "360p"]
    assert catalog.variants[0].bandwidth_bps == 0
    assert catalog.current().label == "auto"
    print("✓ QualityCatalog populate test passed")


def test_duplicate_labels_keep_first():
    catalog = QualityCatalog([V720, QualityVariant("720p", 1280, 720, 1_000_000), V360])
    assert catalog.labels() == ["auto", "720p", "360p"]
    assert catalog.get("720p").bandwidth_bps == 2_800_000


def test_select_notifies_observers_once():
    catalog = QualityCatalog([V720, V360])
    changes = []
    catalog.add_observer(lambda previous, current: changes.append((previous.label, current.label)))

    catalog.select("360p")
    catalog.select("360p")
    catalog.select("auto")

    assert changes == [("auto", "360p"), ("360p", "auto")]


def test_select_unknown_label_keeps_selection():
    catalog = QualityCatalog([V720])
    catalog.select("720p")
    with pytest.raises(InvalidQuality):
        catalog.select("4k")
    assert catalog.current() == V720
    print("✓ QualityCatalog invalid selection test passed")


def test_populate_resets_selection():
    catalog = QualityCatalog([V720])
    catalog.select("720p")
    catalog.populate([V360])
    assert catalog.current().label == "auto"
    assert "720p" not in catalog
    assert len(catalog) == 2


if __name__ == "__main__":
    test_populate_prepends_auto()
    test_select_unknown_label_keeps_selection()
    sys.exit(0)
