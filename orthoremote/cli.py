"""Typer CLI entrypoint."""

from __future__ import annotations

import logging

import typer

from orthoremote.core.config import load_config
from orthoremote.core.errors import OrthoRemoteError
from orthoremote.core.events import RemoteEvent
from orthoremote.core.service import RemoteService

app = typer.Typer(help="Teenage Engineering ortho remote control over Bluetooth LE")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> RemoteService:
    service = RemoteService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _format_event(event: RemoteEvent, args: tuple) -> str:
    if event is RemoteEvent.ROTATE:
        rotation, pressed = args
        held = " (button held)" if pressed else ""
        return f"rotate {rotation:.3f}{held}" if isinstance(rotation, float) else f"rotate {rotation}{held}"
    if event in (RemoteEvent.BATTERY_LEVEL, RemoteEvent.RSSI):
        return f"{event.value} {args[0]}"
    if event is RemoteEvent.MIDI:
        midi, raw = args
        return f"midi {midi.message.name} ch={midi.channel} data={list(midi.data)} raw={raw.hex()}"
    if event is RemoteEvent.ERROR:
        return f"error {args[0]}"
    return event.value


@app.command("scan")
def scan(
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds to scan for"),
) -> None:
    """List ortho remotes seen while scanning."""
    try:
        service = _build_service()
        remotes = service.scan(timeout)
        if not remotes:
            typer.echo("No ortho remotes found")
            return

        for remote in remotes:
            rssi = f"{remote.rssi} dBm" if remote.rssi is not None else "n/a"
            typer.echo(f"{remote.id} {remote.name} rssi={rssi}")
    except OrthoRemoteError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("watch")
def watch(
    device: str | None = typer.Option(None, "--device", help="Device id (address) to connect to"),
    duration: float | None = typer.Option(None, "--duration", help="Seconds to watch; default until disconnect"),
) -> None:
    """Connect to a remote and print its button, rotation and battery events."""

    def on_event(event: RemoteEvent, *args: object) -> None:
        typer.echo(_format_event(event, args))

    try:
        service = _build_service()
        target = service.watch(device_id=device, duration_s=duration, on_event=on_event)
        typer.echo(f"Stopped watching {target.id}")
    except OrthoRemoteError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("set")
def set_rotation(
    value: int = typer.Argument(..., help="Rotation value between 0 and 127"),
    device: str | None = typer.Option(None, "--device", help="Device id (address) to connect to"),
) -> None:
    """Set the rotation (modulation wheel) value on a remote."""
    try:
        service = _build_service()
        result = service.set_rotation(value, device_id=device)
        if not result.written:
            typer.echo(f"Error: {result.target.id} does not expose the MIDI data characteristic", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"Set rotation={result.value} on {result.target.id} ({result.target.name})")
    except OrthoRemoteError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("config")
def show_config() -> None:
    """Show the effective configuration and where it was loaded from."""
    try:
        loaded = load_config()
    except OrthoRemoteError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    config = loaded.config
    typer.echo(f"source: {loaded.source if loaded.source else '<defaults>'}")
    typer.echo(f"connect_timeout_s: {config.connect_timeout_s}")
    typer.echo(f"discovery_timeout_s: {config.discovery_timeout_s}")
    typer.echo(f"long_click_ms: {int(config.long_click_s * 1000)}")
    typer.echo(f"normalize_rotation: {str(config.normalize_rotation).lower()}")
    ids = ", ".join(config.device_ids) if config.device_ids else "<any>"
    typer.echo(f"device_ids: {ids}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
