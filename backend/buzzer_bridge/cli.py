"""Command-line utility for the buzzer coordinator and OSC bridge.

The tool can classify raw protocol lines, watch a coordinator link, send
outbound coordinator commands and launch the bridge service. It reuses the
link abstraction defined in ``coordinator_link``.
"""
from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from typing import List, Optional

import typer

from .coordinator_link import (
    DEFAULT_BAUDRATE,
    DEFAULT_TIMEOUT,
    CoordinatorLink,
    SerialNotFoundError,
    open_coordinator_link,
)
from .line_protocol import describe_event, parse_line

app = typer.Typer(add_completion=False, help="Buzzer coordinator to OSC bridge tools")


def _format_event(line: str, raw: bool) -> str:
    if raw:
        return line
    return json.dumps(describe_event(parse_line(line)), sort_keys=True, default=str)


def _resolve_port(value: Optional[str]) -> Optional[str]:
    if value and value.strip():
        return value.strip()
    env_value = os.getenv("BRIDGE_SERIAL_PORT")
    if env_value and env_value.strip():
        return env_value.strip()
    return None


async def _open_link(port: Optional[str], baudrate: int, timeout: float) -> CoordinatorLink:
    link = await open_coordinator_link(_resolve_port(port), baudrate=baudrate, timeout=timeout)
    if link.simulated:
        typer.secho("No coordinator hardware; using simulation mode", fg=typer.colors.YELLOW, err=True)
    return link


async def _echo_lines(link: CoordinatorLink, deadline: Optional[float], raw: bool) -> None:
    while deadline is None or time.monotonic() < deadline:
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        try:
            line = await asyncio.wait_for(link.read_line(), timeout=remaining)
        except asyncio.TimeoutError:
            return
        if line is None:
            if link.closed:
                return
            continue
        typer.echo(_format_event(line, raw))


@app.command()
def parse(
    lines: List[str] = typer.Argument(..., help="Raw coordinator lines to classify."),
) -> None:
    """Classify coordinator lines and print them as JSON."""

    for line in lines:
        typer.echo(_format_event(line, raw=False))


@app.command()
def listen(
    port: Optional[str] = typer.Option(None, help="Serial port path or pyserial URL."),
    baudrate: int = typer.Option(DEFAULT_BAUDRATE, help="Serial baud rate."),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, help="Serial read timeout in seconds."),
    scan: bool = typer.Option(True, help="Send SCAN after connecting."),
    raw: bool = typer.Option(False, help="Print raw lines instead of JSON."),
) -> None:
    """Print every line received from the coordinator."""

    async def _run() -> None:
        link = await _open_link(port, baudrate, timeout)
        try:
            if scan:
                await link.send_command("SCAN")
            await _echo_lines(link, None, raw)
        finally:
            await link.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:  # pragma: no cover - interactive
        typer.echo("Interrupted", err=True)
    except SerialNotFoundError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc


@app.command()
def command(
    expr: str = typer.Argument(..., help="Coordinator command (STATUS, SCAN, ARM, ARM<suffix>, DISARM)."),
    port: Optional[str] = typer.Option(None, help="Serial port path or pyserial URL."),
    baudrate: int = typer.Option(DEFAULT_BAUDRATE, help="Serial baud rate."),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, help="Serial read timeout in seconds."),
    wait: float = typer.Option(2.0, help="Seconds to keep printing replies."),
    raw: bool = typer.Option(False, help="Print raw replies instead of JSON."),
) -> None:
    """Send a coordinator command and print the replies."""

    async def _run() -> None:
        link = await _open_link(port, baudrate, timeout)
        try:
            await link.send_command(expr)
            await _echo_lines(link, time.monotonic() + max(wait, 0.0), raw)
        finally:
            await link.close()

    try:
        asyncio.run(_run())
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    except SerialNotFoundError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="HTTP bind address."),
    http_port: Optional[int] = typer.Option(None, help="HTTP port (default BRIDGE_HTTP_PORT or 3002)."),
) -> None:  # pragma: no cover - starts a server
    """Run the bridge service with its HTTP/WebSocket surface."""

    from .server import run as run_server

    run_server(host=host, port=http_port)


def main(argv: Optional[list[str]] = None) -> int:
    args = argv if argv is not None else sys.argv[1:]
    try:
        # With standalone_mode=False click returns the Exit code instead of raising.
        exit_code = app(prog_name="osc-buzzer", args=args, standalone_mode=False)
    except typer.Exit as exc:
        return exc.exit_code
    except SerialNotFoundError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        return 2
    except Exception as exc:  # pragma: no cover - safety net
        typer.secho(f"Unexpected error: {exc}", fg=typer.colors.RED)
        return 1
    return exit_code if isinstance(exit_code, int) else 0


if __name__ == "__main__":  # pragma: no cover - manual execution
    sys.exit(main(sys.argv[1:]))


def run() -> None:
    """Entry point for console_scripts."""

    sys.exit(main(sys.argv[1:]))
