"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from collections.abc import AsyncIterator
from pathlib import Path

import typer

from hapticctl.core.errors import HapticError
from hapticctl.core.model import DeviceIndex, DeviceName, FirstMatch, Resolution
from hapticctl.core.service import HapticService

app = typer.Typer(help="Haptic device control over the Buttplug WebSocket protocol")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol traffic"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _build_service(**kwargs) -> HapticService:
    service = HapticService(**kwargs)
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _describe(resolution: Resolution) -> str:
    if isinstance(resolution, FirstMatch):
        return "first connected device"
    if isinstance(resolution, DeviceIndex):
        return f"device index {resolution.index}"
    if isinstance(resolution, DeviceName):
        return f"device named '{resolution.name}'"
    raise AssertionError(f"Unhandled resolution {resolution!r}")


async def _stdin_lines() -> AsyncIterator[str]:
    loop = asyncio.get_running_loop()
    lines: asyncio.Queue[str] = asyncio.Queue()

    # daemon thread so a dropped connection does not wait on the terminal
    def _reader() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, "")
        except RuntimeError:
            return

    threading.Thread(target=_reader, name="stdin-reader", daemon=True).start()
    while True:
        line = await lines.get()
        if not line:
            return
        yield line


@app.command("run")
def run_session(
    host: str | None = typer.Option(None, "--host", help="Server host"),
    port: int | None = typer.Option(None, "--port", help="Server port"),
    config: Path | None = typer.Option(None, "--config", help="Config file path"),
) -> None:
    """Connect to the server and run commands read from stdin.

    Commands: STOP, CONNECT <device>, VIBRATE <device> <0.0-1.0>,
    PULSE <device> LOW|MEDIUM|HIGH, HEARTBEAT <device> LOW|MEDIUM|HIGH.
    """
    try:
        service = _build_service(config_path=config, host=host, port=port)
        typer.echo(f"Connecting to {service.settings.url}", err=True)
        asyncio.run(service.run(_stdin_lines()))
    except HapticError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("resolve")
def resolve_device(
    identifier: str,
    config: Path | None = typer.Option(None, "--config", help="Config file path"),
) -> None:
    """Show which device address IDENTIFIER resolves to."""
    try:
        service = _build_service(config_path=config)
        resolution = service.resolve(identifier)
        if resolution is None:
            typer.echo(f"Error: could not resolve '{identifier}'", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"{identifier} -> {resolution} ({_describe(resolution)})")
    except HapticError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("aliases")
def list_aliases(
    config: Path | None = typer.Option(None, "--config", help="Config file path"),
) -> None:
    """List loaded alias rules in evaluation order."""
    try:
        service = _build_service(config_path=config)
        rules = service.list_rules()
        if not rules:
            typer.echo("No aliases configured")
            return
        for rule in rules:
            typer.echo(str(rule))
    except HapticError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
