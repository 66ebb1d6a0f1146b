"""HTTP API exposing locator classification and quality probing."""

from __future__ import annotations

import asyncio
import logging

import aiohttp
from quart import Quart, jsonify, request

from .errors import ManifestError
from .manifest import probe
from .resolver import resolve

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = Quart(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _flag(name: str, default: bool) -> bool:
    value = request.args.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


@app.route("/api")
async def api_info():
    """API endpoint with API info."""
    return jsonify({
        "service": "streamplay",
        "version": "0.1.0",
        "endpoints": {
            "probe": "/probe?locator=<url>&live=<bool>&dvr=<bool>",
        },
    })


@app.route("/probe", methods=["GET"])
async def probe_locator():
    """Classify a locator and list the qualities its manifest offers."""
    locator = (request.args.get("locator") or "").strip()
    if not locator:
        return jsonify({"error": "locator is required"}), 400

    target = resolve(locator, is_live=_flag("live", False), dvr=_flag("dvr", True))

    try:
        result = await probe(locator)
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.warning("Could not fetch manifest for %s: %s", locator, exc)
        return jsonify({"error": f"Could not fetch manifest: {exc}"}), 502
    except ManifestError as exc:
        logger.warning("Could not parse manifest for %s: %s", locator, exc)
        return jsonify({"error": f"Could not parse manifest: {exc}"}), 502

    payload = result.to_dict()
    payload["seekable"] = target.seekable
    if result.is_live is None:
        payload["is_live"] = target.is_live
    return jsonify(payload)


def run(host: str = "0.0.0.0", port: int = 8000) -> None:
    app.run(host=host, port=port)


if __name__ == "__main__":
    import sys

    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8000
    run(port=port)
