"""Read HLS and DASH manifests far enough to enumerate renditions."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import aiohttp
from lxml import etree

from .errors import ManifestError
from .models import QualityVariant, StreamType
from .resolver import resolve_stream_type

logger = logging.getLogger(__name__)

__all__ = [
    "FetchResult",
    "ManifestError",
    "ManifestFetcher",
    "ManifestInfo",
    "ProbeResult",
    "Rendition",
    "parse_dash_manifest",
    "parse_hls_playlist",
    "probe",
    "renditions_to_variants",
]


@dataclass
class Rendition:
    """One quality/bitrate variant as listed in a manifest."""

    index: int
    id: str
    bandwidth: int
    width: Optional[int]
    height: Optional[int]
    locator: str
    codecs: str = ""
    label: str = ""


@dataclass
class ManifestInfo:
    """Renditions of a manifest, in manifest order."""

    renditions: List[Rendition]
    is_live: Optional[bool]
    is_master: bool = True


@dataclass
class FetchResult:
    """Body of a fetched manifest with timing information."""

    text: str
    elapsed_ms: float = 0.0
    throughput_bps: float = 0.0


@dataclass
class ProbeResult:
    """Classification of a locator plus its quality catalogue."""

    locator: str
    stream_type: StreamType
    is_live: Optional[bool] = None
    variants: List[QualityVariant] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "locator": self.locator,
            "stream_type": self.stream_type.value,
            "is_live": self.is_live,
            "qualities": [variant.to_dict() for variant in self.variants],
        }


Fetch = Callable[[str], Awaitable[FetchResult]]


class ManifestFetcher:
    """Asynchronous manifest downloader."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 15.0,
    ) -> None:
        """
        Initialize fetcher.

        Args:
            session: Optional aiohttp session. If None, a new one will be created.
            headers: Headers sent with every request
            timeout: Total request timeout in seconds
        """
        self.session = session
        self.headers = headers or {}
        self.timeout = timeout
        self._own_session = session is None

    async def __aenter__(self) -> "ManifestFetcher":
        if self._own_session:
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._own_session and self.session:
            await self.session.close()
            self.session = None

    async def fetch(self, url: str) -> FetchResult:
        """
        Download a manifest and measure how long it took.

        Args:
            url: Manifest URL

        Returns:
            FetchResult with the body, round-trip time and throughput
        """
        if self.session is None:
            raise RuntimeError("Session not initialized. Use 'async with' context manager.")

        started = time.monotonic()
        async with self.session.get(url) as response:
            response.raise_for_status()
            body = await response.read()
        elapsed = max(time.monotonic() - started, 1e-6)

        charset = "utf-8"
        if response.charset:
            charset = response.charset
        return FetchResult(
            text=body.decode(charset, errors="replace"),
            elapsed_ms=elapsed * 1000.0,
            throughput_bps=len(body) * 8 / elapsed,
        )


async def fetch_once(
    url: str, *, headers: Optional[Dict[str, str]] = None, timeout: float = 15.0
) -> FetchResult:
    """Fetch a single manifest with a short-lived client session."""
    async with ManifestFetcher(headers=headers, timeout=timeout) as fetcher:
        return await fetcher.fetch(url)


# ----------------------------------------------------------------------
# HLS
# ----------------------------------------------------------------------

_ATTRIBUTE_RE = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')


def _parse_attributes(value: str) -> Dict[str, str]:
    return {key: raw.strip('"') for key, raw in _ATTRIBUTE_RE.findall(value)}


def _parse_resolution(value: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if not value or "x" not in value:
        return None, None
    width, height = value.lower().split("x", 1)
    return _maybe_int(width), _maybe_int(height)


def parse_hls_playlist(text: str, url: str) -> ManifestInfo:
    """Parse a master or media playlist."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines or not lines[0].startswith("#EXTM3U"):
        raise ManifestError("Playlist does not start with #EXTM3U")

    renditions: List[Rendition] = []
    pending: Optional[Dict[str, str]] = None
    is_master = False
    has_endlist = False

    for line in lines[1:]:
        if line.startswith("#EXT-X-STREAM-INF:"):
            pending = _parse_attributes(line.split(":", 1)[1])
            is_master = True
        elif line.startswith("#EXT-X-ENDLIST"):
            has_endlist = True
        elif line.startswith("#"):
            continue
        elif pending is not None:
            width, height = _parse_resolution(pending.get("RESOLUTION"))
            renditions.append(
                Rendition(
                    index=len(renditions),
                    id=str(len(renditions)),
                    bandwidth=_safe_int(pending.get("BANDWIDTH")),
                    width=width,
                    height=height,
                    locator=_resolve_url(url, line),
                    codecs=pending.get("CODECS", ""),
                )
            )
            pending = None

    if is_master and not renditions:
        raise ManifestError("Master playlist lists no variant streams")

    return ManifestInfo(
        renditions=_label_renditions(renditions),
        is_live=None if is_master else not has_endlist,
        is_master=is_master,
    )


# ----------------------------------------------------------------------
# DASH
# ----------------------------------------------------------------------

DASH_NS = {"mpd": "urn:mpeg:dash:schema:mpd:2011"}


def parse_dash_manifest(text: str, url: str) -> ManifestInfo:
    """Parse an MPD and list its video representations."""
    try:
        root = etree.fromstring(text.encode("utf-8"))
    except etree.XMLSyntaxError as exc:
        raise ManifestError(f"Invalid MPD: {exc}") from exc

    is_live = (root.get("type", "static") or "static").lower() == "dynamic"

    video: List[Rendition] = []
    audio: List[Rendition] = []
    for adaptation_set in root.iterfind("./mpd:Period/mpd:AdaptationSet", namespaces=DASH_NS):
        for representation in adaptation_set.iterfind("./mpd:Representation", namespaces=DASH_NS):
            rep_id = representation.get("id") or ""
            if not rep_id:
                continue

            kind = _track_kind(adaptation_set, representation)
            if kind is None:
                continue

            rendition = Rendition(
                index=0,
                id=rep_id,
                bandwidth=_safe_int(representation.get("bandwidth")),
                width=_maybe_int(representation.get("width") or adaptation_set.get("width")),
                height=_maybe_int(representation.get("height") or adaptation_set.get("height")),
                locator=url,
                codecs=representation.get("codecs") or adaptation_set.get("codecs", ""),
            )
            (video if kind == "video" else audio).append(rendition)

    selected = video or audio
    if not selected:
        raise ManifestError("MPD lists no audio or video representations")

    indexed = [replace(rendition, index=index) for index, rendition in enumerate(selected)]
    return ManifestInfo(renditions=_label_renditions(indexed), is_live=is_live)


def _track_kind(adaptation_set: etree._Element, representation: etree._Element) -> Optional[str]:
    mime_types = " ".join(
        (element.get("mimeType") or "").lower() for element in (representation, adaptation_set)
    )
    content_types = {
        (element.get("contentType") or "").lower() for element in (representation, adaptation_set)
    }
    if "video" in mime_types or "video" in content_types:
        return "video"
    if "audio" in mime_types or "audio" in content_types:
        return "audio"
    return None


# ----------------------------------------------------------------------
# Quality labels
# ----------------------------------------------------------------------


def _base_label(rendition: Rendition) -> str:
    if rendition.height:
        return f"{rendition.height}p"
    return f"{rendition.bandwidth // 1000}k"


def _label_renditions(renditions: List[Rendition]) -> List[Rendition]:
    """Assign unique labels; the highest bitrate of a height keeps the plain label."""
    used = set()
    for rendition in sorted(renditions, key=lambda rep: rep.bandwidth, reverse=True):
        label = _base_label(rendition)
        if label in used:
            label = f"{label} {rendition.bandwidth // 1000}k"
        suffix = 2
        candidate = label
        while candidate in used:
            candidate = f"{label} #{suffix}"
            suffix += 1
        used.add(candidate)
        rendition.label = candidate
    return renditions


def renditions_to_variants(renditions: List[Rendition]) -> List[QualityVariant]:
    """Map renditions to catalog entries, sorted by bandwidth for display."""
    ordered = sorted(renditions, key=lambda rep: rep.bandwidth, reverse=True)
    return [
        QualityVariant(
            label=rendition.label or _base_label(rendition),
            width=rendition.width or 0,
            height=rendition.height or 0,
            bandwidth_bps=rendition.bandwidth,
            locator=rendition.locator,
        )
        for rendition in ordered
    ]


def parse_manifest(stream_type: StreamType, text: str, url: str) -> ManifestInfo:
    if stream_type is StreamType.SEGMENTED_HTTP:
        return parse_hls_playlist(text, url)
    if stream_type is StreamType.DYNAMIC_ADAPTIVE:
        return parse_dash_manifest(text, url)
    raise ValueError(f"{stream_type.value} locators have no manifest")


async def probe(
    locator: str,
    *,
    fetch: Optional[Fetch] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 15.0,
) -> ProbeResult:
    """Classify ``locator`` and list its qualities, fetching the manifest if it has one."""
    stream_type = resolve_stream_type(locator)
    if stream_type in (StreamType.PROGRESSIVE, StreamType.REALTIME_PEER):
        return ProbeResult(
            locator=locator,
            stream_type=stream_type,
            is_live=True if stream_type is StreamType.REALTIME_PEER else None,
        )

    if fetch is None:
        result = await fetch_once(locator, headers=headers, timeout=timeout)
    else:
        result = await fetch(locator)

    info = parse_manifest(stream_type, result.text, locator)
    logger.debug("Probed %s: %d renditions", locator, len(info.renditions))
    return ProbeResult(
        locator=locator,
        stream_type=stream_type,
        is_live=info.is_live,
        variants=renditions_to_variants(info.renditions),
    )


# ----------------------------------------------------------------------
# Helper utilities
# ----------------------------------------------------------------------


def _resolve_url(base: str, relative: str) -> str:
    parsed = urlparse(relative)
    if parsed.scheme:
        return relative
    return urljoin(base, relative)


def _safe_int(value: Optional[str], default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _maybe_int(value: Optional[str]) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
