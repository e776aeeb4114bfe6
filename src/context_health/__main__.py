"""CLI entry point.

Scores transcripts, builds handoff packets and manages pins from the
command line:
    python -m context_health score transcript.json
"""

import json
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

import click
import yaml

from context_health.config import Config, load_config
from context_health.logging import get_logger, setup_logging, shutdown_logging
from context_health.models import HealthReport
from context_health.session import HealthSession, SessionUpdate
from context_health.storage import StateStore
from context_health.transcript import Transcript, load_transcript
from context_health.watcher import request_shutdown, run_watcher

logger = get_logger("cli")

TIER_COLORS = {
    "stable": "green",
    "degrading": "yellow",
    "unreliable": "bright_red",
    "critical": "red",
}


def open_store(config: Config) -> StateStore:
    return StateStore(
        config.storage.state_db,
        config.storage,
        config.handoff.expiry_seconds * 1000,
    )


@contextmanager
def transcript_session(config: Config, path: Path) -> Iterator[tuple[HealthSession, Transcript, SessionUpdate]]:
    """Open the store, load a transcript and run one update pass."""
    try:
        transcript = load_transcript(path)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Cannot read transcript {path}: {e}") from e

    with open_store(config) as store:
        session = HealthSession(store, config, transcript.conversation_id)
        update = session.update(transcript.elements, transcript.draft, transcript.visible_chars)
        yield session, transcript, update


def print_report(report: HealthReport) -> None:
    """Print a health report for the terminal."""
    color = TIER_COLORS.get(report.tier.value, "white")
    click.echo(click.style(f"{report.health}% {report.tier.value}", fg=color, bold=True))
    stats = report.debug_stats
    click.echo(f"{stats.total_chars} chars | {stats.total_tokens} tokens | {stats.message_count} messages")
    for reason in report.reasons:
        click.echo(f"  - {reason}")


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config.yaml",
)
@click.option("-v", "--verbose", is_flag=True, help="Log detection decisions at DEBUG level")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Estimate conversation health and build handoff packets."""
    try:
        config = load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"Cannot load config: {e}") from e
    level = logging.DEBUG if verbose else logging.INFO
    setup_logging("cli", config.watch.log_dir, level=level, console=False)
    ctx.call_on_close(shutdown_logging)
    ctx.obj = config


@cli.command()
@click.argument("transcript", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_obj
def score(config: Config, transcript: Path, as_json: bool) -> None:
    """Score a transcript file."""
    with transcript_session(config, transcript) as (_, _, update):
        if as_json:
            click.echo(json.dumps(update.report.to_dict(), indent=2))
            return
        print_report(update.report)
        if update.can_refresh:
            click.echo("Consider starting a new chat with a handoff packet.")


@cli.command()
@click.argument("transcript", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--richness",
    type=click.Choice(["compact", "standard", "rich"]),
    help="Override the stored richness preference",
)
@click.option("--save", is_flag=True, help="Store the packet for the next new conversation")
@click.pass_obj
def handoff(config: Config, transcript: Path, richness: str | None, save: bool) -> None:
    """Build a handoff packet from a transcript file."""
    with transcript_session(config, transcript) as (session, _, _):
        if richness:
            session.preferences.handoff_richness = richness
        packet = session.start_handoff() if save else session.copy_handoff()
        if packet is None:
            raise click.ClickException("Transcript has no messages")
        click.echo(packet, nl=False)


@cli.command()
@click.argument("transcript", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("message_id")
@click.pass_obj
def pin(config: Config, transcript: Path, message_id: str) -> None:
    """Pin or unpin a message as a core instruction."""
    with transcript_session(config, transcript) as (session, _, update):
        known_ids = {msg.id for msg in update.snapshot.full_messages}
        if message_id not in known_ids and message_id not in session.pins:
            raise click.ClickException(f"No message with id {message_id}")
        pinned = session.toggle_pin(message_id)
        click.echo(f"{'Pinned' if pinned else 'Unpinned'} {message_id}")


@cli.command()
@click.argument("transcript", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def messages(config: Config, transcript: Path) -> None:
    """List message ids with pin and instruction markers."""
    with transcript_session(config, transcript) as (session, _, update):
        instructions = set(update.instruction_indices)
        for index, msg in enumerate(update.snapshot.messages):
            markers = ("P" if msg.id in session.pins else " ") + ("I" if index in instructions else " ")
            preview = " ".join(msg.text.split())[:60]
            click.echo(f"{markers} {msg.id:<32} {msg.role.value:<9} {preview}")


@cli.command()
@click.option(
    "--richness",
    type=click.Choice(["compact", "standard", "rich"]),
    help="Handoff richness",
)
@click.option("--auto-load/--no-auto-load", default=None, help="Load full history before scoring")
@click.pass_obj
def prefs(config: Config, richness: str | None, auto_load: bool | None) -> None:
    """Show or change preferences."""
    with open_store(config) as store:
        session = HealthSession(store, config)
        if richness is not None or auto_load is not None:
            session.set_preferences(auto_load_history=auto_load, handoff_richness=richness)
        click.echo(json.dumps(session.preferences.to_dict(), indent=2))


@cli.command()
@click.pass_obj
def resume(config: Config) -> None:
    """Print the stored handoff packet and clear it."""
    with open_store(config) as store:
        record = store.load_handoff()
        if record is None:
            raise click.ClickException("No pending handoff")
        store.clear_handoff()
        click.echo(record.packet, nl=False)


def signal_handler(signum: int, frame: FrameType | None) -> None:
    """Handle shutdown signals gracefully."""
    sig_name = signal.Signals(signum).name
    logger.info("Received signal %s, shutting down", sig_name)
    request_shutdown()


@cli.command()
@click.argument("transcript", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def watch(config: Config, transcript: Path) -> None:
    """Re-score a transcript file every time it changes."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    def on_update(update: SessionUpdate) -> None:
        print_report(update.report)
        if update.tier_changed:
            click.echo(f"Tier is now {update.report.tier.value}")

    try:
        run_watcher(config, transcript, on_update)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        request_shutdown()


if __name__ == "__main__":
    cli()
