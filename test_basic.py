#!/usr/bin/env python3
"""Basic smoke test for streamplay package imports."""

import sys


def test_imports():
    """Test that all modules can be imported."""
    from streamplay import PlaybackController, SessionConfig, StreamingSession
    from streamplay.backends import build_backend
    from streamplay.cli import cli
    from streamplay.manifest import ManifestFetcher, probe
    from streamplay.metrics import MetricsCollector
    from streamplay.quality import QualityCatalog
    from streamplay.resolver import resolve
    from streamplay.server import app

    assert all([PlaybackController, SessionConfig, StreamingSession, build_backend, cli])
    assert all([ManifestFetcher, probe, MetricsCollector, QualityCatalog, resolve, app])
    print("✓ All imports successful")


def test_basic_creation():
    """Test that basic objects can be created without an event loop."""
    from streamplay import PlaybackController, PlaybackState, SessionConfig, StreamingSession

    session = StreamingSession(SessionConfig(is_live=True))
    controller = PlaybackController(session)

    assert session.state is PlaybackState.IDLE
    assert [variant.label for variant in session.qualities] == ["auto"]
    assert controller.is_live
    assert controller.formatted_time == "LIVE"
    session.destroy()
    print("✓ StreamingSession and PlaybackController created successfully")


if __name__ == "__main__":
    test_imports()
    test_basic_creation()
    sys.exit(0)
