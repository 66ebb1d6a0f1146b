"""Command-line interface for streamplay."""

from __future__ import annotations

import asyncio
import logging
import sys

import aiohttp
import click

from .errors import ManifestError
from .manifest import ProbeResult, probe
from .resolver import resolve


async def make_request(method: str, url: str, **kwargs):
    """Make an async HTTP request."""
    async with aiohttp.ClientSession() as session:
        async with session.request(method, url, **kwargs) as response:
            response.raise_for_status()
            return await response.json()


def _parse_headers(entries) -> dict:
    headers = {}
    for entry in entries:
        if ":" not in entry:
            raise click.BadParameter("Headers must be in the form Name:Value")
        name, value = entry.split(":", 1)
        headers[name.strip()] = value.strip()
    return headers


def _echo_qualities(qualities) -> None:
    if not qualities:
        click.echo("Qualities: auto only")
        return
    click.echo("Qualities:")
    click.echo("  auto")
    for quality in qualities:
        line = f"  {quality['label']}"
        if quality.get("resolution") and quality["resolution"] != "auto":
            line += f"  {quality['resolution']}"
        if quality.get("bandwidth"):
            line += f"  {quality['bandwidth']} bps"
        click.echo(line)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """Adaptive streaming session tools."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@cli.command()
@click.argument("locator")
@click.option("--live", is_flag=True, help="Treat the locator as a live stream")
@click.option("--no-dvr", is_flag=True, help="Live stream keeps no seekable window")
def classify(locator, live, no_dvr):
    """Print the backend protocol for a locator."""
    try:
        target = resolve(locator, is_live=live, dvr=not no_dvr)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="LOCATOR")

    click.echo(f"Locator: {target.locator}")
    click.echo(f"Type: {target.stream_type.value}")
    click.echo(f"Live: {target.is_live}")
    click.echo(f"Seekable: {target.seekable}")


@cli.command("probe")
@click.argument("locator")
@click.option("--header", multiple=True, help="Additional HTTP header as Name:Value")
@click.option("--timeout", type=float, default=15.0, show_default=True, help="Request timeout (s)")
@click.option("--server", help="Probe through a streamplay server instead of locally")
def probe_command(locator, header, timeout, server):
    """List the qualities a locator offers."""
    headers = _parse_headers(header)

    async def _run():
        if server:
            return await make_request(
                "GET", f"{server}/probe", params={"locator": locator}
            )
        result: ProbeResult = await probe(locator, headers=headers or None, timeout=timeout)
        return result.to_dict()

    try:
        payload = asyncio.run(_run())
    except (aiohttp.ClientError, asyncio.TimeoutError, ManifestError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Locator: {payload['locator']}")
    click.echo(f"Type: {payload['stream_type']}")
    if payload.get("is_live") is not None:
        click.echo(f"Live: {payload['is_live']}")
    _echo_qualities(payload.get("qualities", []))


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Interface to bind")
@click.option("--port", type=int, default=8000, show_default=True, help="Port to listen on")
def serve(host, port):
    """Run the probe HTTP API."""
    from .server import run

    run(host=host, port=port)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
