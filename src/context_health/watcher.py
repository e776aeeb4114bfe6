"""Watcher loop that re-scores a transcript file whenever it changes.

Changes are debounced: a new score is produced only once the file has
stopped changing for the configured quiet period.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from context_health.config import Config
from context_health.logging import get_logger, setup_logging
from context_health.session import HealthSession, SessionUpdate
from context_health.storage import StateStore
from context_health.transcript import load_transcript

logger = get_logger("watch")

# Global flag for graceful shutdown
_shutdown_requested = False


def request_shutdown() -> None:
    """Request graceful shutdown of the watcher."""
    global _shutdown_requested
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown_requested


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    global _shutdown_requested
    _shutdown_requested = False


@dataclass
class WatchState:
    """Change tracking for one watched file."""

    seen_mtime: float | None = None
    scored_mtime: float | None = None
    changed_at: float = 0.0


def run_watch_cycle(
    session: HealthSession,
    path: Path,
    state: WatchState,
    debounce_seconds: float,
    now: float | None = None,
) -> SessionUpdate | None:
    """Run one watch cycle.

    Args:
        session: Session tracking the watched conversation
        path: Transcript file
        state: Change tracking carried between cycles
        debounce_seconds: Quiet period required after a change
        now: Current time (defaults to time.time())

    Returns:
        SessionUpdate if the transcript was re-scored, None otherwise
    """
    if now is None:
        now = time.time()

    try:
        mtime = path.stat().st_mtime
    except OSError:
        logger.warning("Transcript not readable: %s", path)
        return None

    if mtime != state.seen_mtime:
        if state.seen_mtime is not None:
            state.changed_at = now
        state.seen_mtime = mtime

    if mtime == state.scored_mtime:
        return None
    if now - state.changed_at < debounce_seconds:
        logger.debug("Waiting for transcript to settle: %s", path.name)
        return None

    state.scored_mtime = mtime
    try:
        transcript = load_transcript(path)
    except (OSError, ValueError):
        logger.exception("Error loading transcript: %s", path)
        return None

    session.switch_conversation(transcript.conversation_id)
    update = session.update(transcript.elements, transcript.draft, transcript.visible_chars)
    report = update.report
    logger.info(
        "Scored transcript: health=%d tier=%s messages=%d reasons=%s",
        report.health,
        report.tier.value,
        report.debug_stats.message_count,
        "; ".join(report.reasons) or "none",
    )
    return update


def run_watcher(
    config: Config,
    path: Path,
    on_update: Callable[[SessionUpdate], None] | None = None,
) -> None:
    """Watch a transcript file until shutdown is requested.

    Args:
        config: Application configuration
        path: Transcript file to watch
        on_update: Called with every new score
    """
    reset_shutdown()

    setup_logging("watch", config.watch.log_dir)

    interval = config.watch.interval_seconds
    debounce_seconds = config.watch.debounce_ms / 1000

    logger.info(
        "Starting watcher: path=%s state_db=%s interval=%.1fs",
        path,
        config.storage.state_db,
        interval,
    )

    state = WatchState()
    with StateStore(
        config.storage.state_db,
        config.storage,
        config.handoff.expiry_seconds * 1000,
    ) as store:
        session = HealthSession(store, config)
        while not is_shutdown_requested():
            update = run_watch_cycle(session, path, state, debounce_seconds)
            if update is not None and on_update is not None:
                on_update(update)

            if is_shutdown_requested():
                break

            # Sleep in small increments to allow graceful shutdown
            sleep_remaining = interval
            while sleep_remaining > 0 and not is_shutdown_requested():
                sleep_time = min(0.25, sleep_remaining)
                time.sleep(sleep_time)
                sleep_remaining -= sleep_time

    logger.info("Watcher stopped")
