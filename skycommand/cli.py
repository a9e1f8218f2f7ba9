"""
Command-line interface for SkyCommand ATC.
"""

import asyncio
import logging
import sys
import threading
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="skycommand",
    help="AI air traffic controller for screen-shared flight sims",
    no_args_is_help=True,
)

console = Console()

SENDER_STYLES = {"ATC": "bold green", "PILOT": "cyan", "SYSTEM": "yellow"}
STDIN_POLL_S = 0.5


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(config_file: Optional[Path]):
    """Load a YAML config into the global config, if given."""
    from skycommand.config import Config, get_config, set_config

    if config_file is None:
        return get_config()

    if not config_file.exists():
        console.print(f"[red]Error: Config file not found: {config_file}[/red]")
        raise typer.Exit(1)

    config = Config.from_yaml(config_file)
    set_config(config)
    console.print(f"[dim]Loaded config: {config_file}[/dim]")
    return config


def _mask(api_key: str) -> str:
    return f"****{api_key[-4:]}" if len(api_key) > 4 else "****"


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind to"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Start the ATC server (browser sessions over WebSocket)."""
    _setup_logging(verbose)
    config = _load_config(config_file)

    from skycommand.server.app import run_server

    host = host or config.server.host
    port = port or config.server.port
    console.print(f"[green]Starting server on {host}:{port}[/green]")
    console.print(f"[dim]Session endpoint: ws://{host}:{port}/session[/dim]")

    run_server(host=host, port=port, reload=reload)


@app.command()
def route(
    api_key: str = typer.Argument(..., help="API key to route"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Show which provider and model an API key is routed to."""
    _setup_logging(verbose)
    config = _load_config(config_file)

    from skycommand.atc.gateway import ModelGateway
    from skycommand.atc.routing import supports_vision

    provider_route = ModelGateway(config.model).route_for(api_key)
    vision = supports_vision(provider_route)

    table = Table(title=f"Route for {_mask(api_key)}")
    table.add_column("Property")
    table.add_column("Value")
    table.add_row("Provider", provider_route.label)
    table.add_row("Endpoint", provider_route.base_url)
    table.add_row("Model", provider_route.model)
    table.add_row("Vision", "[green]yes[/green]" if vision else "[yellow]text only[/yellow]")
    console.print(table)

    mode = "Vision" if vision else "Text only"
    console.print(f"[green]✓ {provider_route.label} ({mode})[/green]")


@app.command()
def check(
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key (default: from config)"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Send a short text-only request to the routed provider."""
    _setup_logging(verbose)
    config = _load_config(config_file)

    from skycommand.atc.errors import MissingCredentialError
    from skycommand.atc.gateway import ModelGateway

    key = api_key or config.model.api_key
    gateway = ModelGateway(config.model)

    async def _check() -> str:
        try:
            return await gateway.check(key)
        finally:
            await gateway.close()

    try:
        provider_route = gateway.route_for(key) if key else None
        if provider_route:
            console.print(f"[dim]Testing {provider_route.label} ({provider_route.model})...[/dim]")
        reply = asyncio.run(_check())
    except MissingCredentialError:
        console.print("[red]Error: No API key. Pass --api-key or set SKYCOMMAND_AI_API_KEY[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]Reply:[/bold] {reply}")


def _make_source(source: str, config):
    from skycommand.atc.frames import CameraFrameSource, EncodeConfig, ScreenFrameSource

    encode = EncodeConfig(
        target_width=config.capture.target_width,
        jpeg_quality=config.capture.jpeg_quality,
    )
    if source == "screen":
        return ScreenFrameSource(monitor=config.capture.monitor, encode=encode)
    if source.startswith("camera:"):
        index = source.split(":", 1)[1]
        if not index.isdigit():
            console.print(f"[red]Error: Invalid camera index: {index}[/red]")
            raise typer.Exit(1)
        return CameraFrameSource(int(index), encode=encode)
    return CameraFrameSource(source, encode=encode)


def _print_log(entry) -> None:
    style = SENDER_STYLES.get(entry.sender.value, "")
    stamp = entry.timestamp.astimezone().strftime("%H:%M:%S")
    console.print(f"[dim]{stamp}[/dim] [{style}]{entry.sender.value:>6}[/{style}] {entry.text}")


def _print_telemetry(telemetry) -> None:
    t = telemetry.to_dict()
    console.print(f"[dim]        TELEM ALT {t['alt']} ft | SPD {t['spd']} kts | HDG {t['hdg']}[/dim]")


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
    """Forward stdin lines to the loop from a daemon thread; None marks EOF."""

    def _read() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            # Loop already closed
            return

    threading.Thread(target=_read, name="stdin-reader", daemon=True).start()


async def _run_session(session, recognizer, console_transcripts: bool) -> None:
    """Drive a local session from stdin until /quit, EOF or the source ends."""
    if not await session.start():
        return

    lines: asyncio.Queue = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), lines)

    try:
        while session.is_connected:
            try:
                line = await asyncio.wait_for(lines.get(), timeout=STDIN_POLL_S)
            except asyncio.TimeoutError:
                continue
            if line is None:
                break

            line = line.strip()
            if not line:
                continue
            if line == "/quit":
                break

            if line.startswith(">"):
                session.submit_text(line[1:])
            elif console_transcripts:
                recognizer.feed(line, is_final=True)
            else:
                session.submit_text(line)
    finally:
        await session.close()


@app.command()
def run(
    source: str = typer.Option("screen", "--source", "-s", help="screen, camera:<index>, or a video file/URL"),
    input_mode: str = typer.Option("console", "--input", "-i", help="Pilot input: console or mic"),
    mute: bool = typer.Option(False, "--mute", help="Do not speak replies"),
    callsign: Optional[str] = typer.Option(None, "--callsign", help="Pilot callsign"),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="API key (default: from config)"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Run a local ATC session against your screen or a video source."""
    _setup_logging(verbose)
    config = _load_config(config_file)

    from skycommand.atc.gateway import ModelGateway
    from skycommand.atc.logsink import create_log_sink
    from skycommand.atc.session import ATCSession
    from skycommand.atc.speech import (
        MicrophoneRecognizer,
        NullSpeechOutput,
        ProcessSpeechOutput,
        QueueRecognizer,
        VoiceSettings,
    )

    if input_mode not in ("console", "mic"):
        console.print(f"[red]Error: Unknown input mode: {input_mode} (use console or mic)[/red]")
        raise typer.Exit(1)

    frame_source = _make_source(source, config)

    if input_mode == "mic":
        try:
            recognizer = MicrophoneRecognizer(language=config.speech.language)
        except ImportError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)
    else:
        recognizer = QueueRecognizer()

    voice = VoiceSettings(
        language=config.speech.language,
        rate=config.speech.rate,
        pitch=config.speech.pitch,
        volume=config.speech.volume,
    )
    speech_out = NullSpeechOutput(voice) if mute else ProcessSpeechOutput(config.speech.tts_command, voice)

    key = api_key or config.model.api_key
    if not key:
        console.print("[yellow]Warning: No API key configured, replies will fail[/yellow]")

    async def _main() -> None:
        gateway = ModelGateway(config.model)
        log_sink = create_log_sink(config.log_sink)
        session = ATCSession(
            source=frame_source,
            recognizer=recognizer,
            speech_out=speech_out,
            gateway=gateway,
            log_sink=log_sink,
            config=config,
            callsign=callsign,
            api_key=key,
            on_log=_print_log,
            on_telemetry=_print_telemetry,
        )
        try:
            await _run_session(session, recognizer, console_transcripts=input_mode == "console")
        finally:
            await gateway.close()
            await log_sink.close()

    console.print(f"\n[green]Tower online[/green] [dim](source: {source}, input: {input_mode})[/dim]")
    if input_mode == "console":
        console.print("Type transmissions starting with 'ATC'. Prefix '>' for direct pilot input.")
    else:
        console.print("Say 'ATC' or 'Alpha Tango Charlie' to call the tower. Type '>' lines for direct input.")
    console.print("[dim]/quit or Ctrl+C to stop[/dim]\n")

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
