#!/usr/bin/env python3
"""Test the streamplay command line."""

import sys

from click.testing import CliRunner

from streamplay import cli as cli_module
from streamplay.cli import cli
from streamplay.errors import ManifestError
from streamplay.manifest import ProbeResult
from streamplay.models import QualityVariant, StreamType


def test_classify_peer_locator():
    result = CliRunner().invoke(cli, ["classify", "webrtc://media.example.com/room/42"])
    assert result.exit_code == 0
    assert "Type: realtime-peer" in result.output
    assert "Live: True" in result.output
    assert "Seekable: False" in result.output
    print("✓ Classify test passed")


def test_classify_live_manifest_without_dvr():
    result = CliRunner().invoke(
        cli, ["classify", "https://cdn.example.com/live.m3u8?token=abc", "--live", "--no-dvr"]
    )
    assert result.exit_code == 0
    assert "Type: segmented-http" in result.output
    assert "Seekable: False" in result.output


def test_classify_rejects_empty_locator():
    result = CliRunner().invoke(cli, ["classify", ""])
    assert result.exit_code == 2


def test_probe_progressive_lists_auto_only():
    result = CliRunner().invoke(cli, ["probe", "https://cdn.example.com/vod/film.mp4"])
    assert result.exit_code == 0
    assert "Type: progressive" in result.output
    assert "Qualities: auto only" in result.output


def test_probe_lists_manifest_qualities(monkeypatch):
    seen = {}

    async def fake_probe(locator, headers=None, timeout=15.0):
        seen.update(headers=headers, timeout=timeout)
        return ProbeResult(
            locator=locator,
            stream_type=StreamType.DYNAMIC_ADAPTIVE,
            is_live=False,
            variants=[
                QualityVariant("1080p", 1920, 1080, 5_000_000),
                QualityVariant("480p", 854, 480, 1_500_000),
            ],
        )

    monkeypatch.setattr(cli_module, "probe", fake_probe)
    result = CliRunner().invoke(
        cli,
        ["probe", "https://cdn.example.com/vod/manifest.mpd", "--header", "Authorization: Bearer t", "--timeout", "5"],
    )

    assert result.exit_code == 0
    assert seen == {"headers": {"Authorization": "Bearer t"}, "timeout": 5.0}
    lines = result.output.splitlines()
    assert "  auto" in lines
    assert "  1080p  1920x1080  5000000 bps" in lines
    assert "  480p  854x480  1500000 bps" in lines
    print("✓ Probe listing test passed")


def test_probe_reports_manifest_errors(monkeypatch):
    async def fake_probe(locator, headers=None, timeout=15.0):
        raise ManifestError("MPD lists no audio or video representations")

    monkeypatch.setattr(cli_module, "probe", fake_probe)
    result = CliRunner().invoke(cli, ["probe", "https://cdn.example.com/vod/manifest.mpd"])
    assert result.exit_code == 1


def test_probe_rejects_malformed_header():
    result = CliRunner().invoke(cli, ["probe", "https://cdn.example.com/a.mp4", "--header", "nocolon"])
    assert result.exit_code == 2


if __name__ == "__main__":
    test_classify_peer_locator()
    test_classify_live_manifest_without_dvr()
    test_probe_progressive_lists_auto_only()
    sys.exit(0)
