"""vidyut-timer command line: run the server or drive a running one.

Usage:
    vidyut-timer serve                   # Run the timer service
    vidyut-timer status                  # Current mode and remaining time
    vidyut-timer start --minutes 25      # Start a countdown
    vidyut-timer stop-alarm              # Silence the alarm, begin the break
    vidyut-timer reset                   # Back to idle
    vidyut-timer confirm                 # Keep running through a power disconnect
    vidyut-timer signal inactive         # Push a signal value (push mode)
    vidyut-timer events                  # Recent signal flips
    vidyut-timer logs                    # Recent server log lines
"""

from __future__ import annotations

import sys
from datetime import datetime
from typing import Optional

import click
import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings, default_api_url
from .signals import SignalKind

console = Console()

MODE_STYLES = {
    "idle": "dim",
    "running": "bold green",
    "paused": "yellow",
    "finished": "bold red",
    "break": "cyan",
}


def _request(ctx: click.Context, method: str, path: str, **kwargs) -> dict:
    url = f"{ctx.obj['api_url']}{path}"
    try:
        response = requests.request(method, url, timeout=5, **kwargs)
    except requests.RequestException as e:
        console.print(f"[red]Cannot reach timer service at {ctx.obj['api_url']}: {e}[/red]")
        sys.exit(1)
    if response.status_code >= 400:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        console.print(f"[red]{response.status_code}: {detail}[/red]")
        sys.exit(1)
    return response.json()


def _print_timer(timer: dict) -> None:
    mode = timer["mode"]
    style = MODE_STYLES.get(mode, "white")
    lines = [
        f"[{style}]{mode.upper()}[/{style}]  [bold]{timer['display']}[/bold]",
        f"Progress: {timer['progress'] * 100:.0f}%   Set: {int(timer['last_set_duration'])}s",
    ]
    signal = timer["signal"]
    state = {True: "active", False: "inactive", None: "unknown"}[signal["active"]]
    lines.append(f"Signal: {signal['kind']} ({state})")
    if signal.get("unavailable"):
        lines.append(f"[yellow]Detector unavailable: {signal['unavailable']}[/yellow]")
    confirmation = timer.get("confirmation")
    if confirmation:
        lines.append(
            f"[bold yellow]Power lost: auto-pause in {confirmation['seconds_left']:.0f}s "
            f"(run 'vidyut-timer confirm' to keep going)[/bold yellow]"
        )
    console.print(Panel("\n".join(lines), title="Vidyut Timer", expand=False))


@click.group()
@click.option("--api-url", default=None, help="Timer service URL (default: VIDYUT_API_URL or host/port)")
@click.pass_context
def cli(ctx, api_url: Optional[str]):
    """Vidyut Timer - a countdown that runs only while its signal holds."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = (api_url or default_api_url()).rstrip("/")


@cli.command()
@click.option("--memory", is_flag=True, help="Keep the session in memory instead of SQLite")
@click.option("--signal", "signal_kind", type=click.Choice([k.value for k in SignalKind]), default=None,
              help="Activity signal (default: VIDYUT_SIGNAL or power)")
def serve(memory: bool, signal_kind: Optional[str]):
    """Run the timer service in the foreground."""
    import uvicorn

    from .server import create_app

    settings = Settings.from_env()
    if memory:
        settings.store = "memory"
    if signal_kind:
        settings.signal = SignalKind(signal_kind)
    console.print(f"Serving on [bold]{settings.api_url}[/bold] ({settings.signal.value} signal)")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the timer's mode and remaining time."""
    _print_timer(_request(ctx, "GET", "/api/timer"))


@cli.command()
@click.option("--hours", "-h", default=0, type=click.IntRange(min=0), help="Hours")
@click.option("--minutes", "-m", default=0, type=click.IntRange(min=0), help="Minutes")
@click.option("--seconds", "-s", default=0, type=click.IntRange(min=0), help="Seconds")
@click.pass_context
def start(ctx, hours: int, minutes: int, seconds: int):
    """Start a countdown from idle."""
    data = _request(ctx, "POST", "/api/timer/start", json={
        "hours": hours,
        "minutes": minutes,
        "seconds": seconds,
    })
    _print_timer(data["timer"])


@cli.command("stop-alarm")
@click.pass_context
def stop_alarm(ctx):
    """Silence the alarm and start the two-minute break."""
    _print_timer(_request(ctx, "POST", "/api/timer/stop-alarm")["timer"])


@cli.command()
@click.pass_context
def reset(ctx):
    """Return to idle, keeping the last duration."""
    _print_timer(_request(ctx, "POST", "/api/timer/reset")["timer"])


@cli.command()
@click.pass_context
def confirm(ctx):
    """Confirm a power disconnect so the timer keeps running."""
    _print_timer(_request(ctx, "POST", "/api/timer/confirm-disconnect")["timer"])


@cli.command()
@click.argument("state", type=click.Choice(["active", "inactive"]))
@click.pass_context
def signal(ctx, state: str):
    """Push a signal value to a push-mode service."""
    data = _request(ctx, "POST", "/api/signal", json={"active": state == "active"})
    _print_timer(data["timer"])


@cli.command()
@click.option("--limit", "-n", default=20, type=click.IntRange(min=1), help="Number of events")
@click.pass_context
def events(ctx, limit: int):
    """Show recent signal flips."""
    data = _request(ctx, "GET", "/api/events", params={"limit": limit})
    if not data["events"]:
        console.print("[dim]No signal events recorded[/dim]")
        return
    table = Table(title="Signal events")
    table.add_column("Time", style="dim")
    table.add_column("Source")
    table.add_column("State")
    for event in data["events"]:
        when = datetime.fromtimestamp(event["at"]).strftime("%Y-%m-%d %H:%M:%S")
        state = "[green]active[/green]" if event["active"] else "[yellow]inactive[/yellow]"
        table.add_row(when, event["source"], state)
    console.print(table)


@cli.command()
@click.option("--limit", "-n", default=30, type=click.IntRange(min=1, max=100), help="Number of lines")
@click.pass_context
def logs(ctx, limit: int):
    """Show recent server log lines."""
    data = _request(ctx, "GET", "/api/logs", params={"limit": limit})
    styles = {"ERROR": "bold red", "WARNING": "yellow", "INFO": "green", "DEBUG": "dim"}
    for entry in data["logs"]:
        style = styles.get(entry["level"], "white")
        console.print(f"[dim]{entry['timestamp']}[/dim] [{style}]{entry['level']:<7}[/{style}] {entry['message']}")


if __name__ == "__main__":
    cli()
