"""Pin, handoff and preference persistence with SQLite.

The three documents are stored as JSON text under fixed keys, mirroring
the browser extension's localStorage layout:

- pins: {conversationId: [messageId, ...]}
- handoff: {createdAt, conversationId, packet}
- settings: {autoLoadHistory, handoffRichness}

Decoding never raises. Malformed or missing documents come back as a
LoadResult carrying a default value and a status saying why.
"""

import json
import math
import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Self

from context_health.config import StorageConfig
from context_health.logging import get_logger
from context_health.models import HandoffRecord, PinSet, Preferences

logger = get_logger("storage")

DEFAULT_HANDOFF_EXPIRY_MS = 2 * 60 * 60 * 1000


class LoadStatus(str, Enum):
    OK = "ok"
    ABSENT = "absent"
    CORRUPT = "corrupt"
    EXPIRED = "expired"


@dataclass(frozen=True)
class LoadResult:
    """Decoded value plus how it was obtained."""

    value: Any
    status: LoadStatus = LoadStatus.OK

    @property
    def recovered(self) -> bool:
        """True when the value is a fallback for a corrupt or expired document."""
        return self.status in (LoadStatus.CORRUPT, LoadStatus.EXPIRED)


def now_ms() -> int:
    return int(time.time() * 1000)


def _loads(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


def decode_pin_table(raw: str | None) -> LoadResult:
    """Decode the conversation -> pinned ids table.

    Entries that are not lists of strings are dropped.
    """
    if raw is None:
        return LoadResult({}, LoadStatus.ABSENT)

    data = _loads(raw)
    if not isinstance(data, dict):
        return LoadResult({}, LoadStatus.CORRUPT)

    table: dict[str, list[str]] = {}
    status = LoadStatus.OK
    for conversation_id, ids in data.items():
        if isinstance(ids, list) and all(isinstance(item, str) for item in ids):
            table[conversation_id] = ids
        else:
            status = LoadStatus.CORRUPT
    return LoadResult(table, status)


def decode_handoff(
    raw: str | None,
    current_ms: int,
    expiry_ms: int = DEFAULT_HANDOFF_EXPIRY_MS,
) -> LoadResult:
    """Decode the stored handoff record, treating expired records as absent."""
    if raw is None:
        return LoadResult(None, LoadStatus.ABSENT)

    data = _loads(raw)
    if not isinstance(data, dict):
        return LoadResult(None, LoadStatus.CORRUPT)

    packet = data.get("packet")
    created_at = data.get("createdAt")
    if not isinstance(packet, str) or not packet:
        return LoadResult(None, LoadStatus.CORRUPT)
    if isinstance(created_at, bool) or not isinstance(created_at, (int, float)) or not created_at:
        return LoadResult(None, LoadStatus.CORRUPT)
    if not math.isfinite(created_at):
        return LoadResult(None, LoadStatus.CORRUPT)

    if current_ms - created_at > expiry_ms:
        return LoadResult(None, LoadStatus.EXPIRED)

    conversation_id = data.get("conversationId")
    return LoadResult(
        HandoffRecord(
            created_at=int(created_at),
            conversation_id=conversation_id if isinstance(conversation_id, str) else "",
            packet=packet,
        )
    )


def decode_preferences(raw: str | None) -> LoadResult:
    """Decode stored preferences, merged over the defaults field by field."""
    defaults = Preferences()
    if raw is None:
        return LoadResult(defaults, LoadStatus.ABSENT)

    data = _loads(raw)
    if not isinstance(data, dict):
        return LoadResult(defaults, LoadStatus.CORRUPT)

    status = LoadStatus.OK
    auto_load = data.get("autoLoadHistory", defaults.auto_load_history)
    if not isinstance(auto_load, bool):
        auto_load = defaults.auto_load_history
        status = LoadStatus.CORRUPT
    richness = data.get("handoffRichness", defaults.handoff_richness)
    if not isinstance(richness, str):
        richness = defaults.handoff_richness
        status = LoadStatus.CORRUPT

    return LoadResult(Preferences(auto_load_history=auto_load, handoff_richness=richness), status)


class StateStore:
    """Manages pins, the pending handoff and preferences in a SQLite database."""

    def __init__(
        self,
        db_path: Path,
        config: StorageConfig | None = None,
        handoff_expiry_ms: int = DEFAULT_HANDOFF_EXPIRY_MS,
    ) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
            config: Storage keys (defaults to the extension's keys)
            handoff_expiry_ms: Age after which a stored handoff is discarded
        """
        self._db_path = db_path
        self._config = config or StorageConfig(state_db=db_path)
        self._handoff_expiry_ms = handoff_expiry_ms
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the entries table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at INTEGER
            )
        """)
        self._conn.commit()

    def get_raw(self, key: str) -> str | None:
        cursor = self._conn.execute("SELECT value FROM entries WHERE key = ?", (key,))
        row = cursor.fetchone()
        return None if row is None else row["value"]

    def set_raw(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO entries (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, int(time.time())),
        )
        self._conn.commit()

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM entries WHERE key = ?", (key,))
        self._conn.commit()

    def _load_pin_table(self) -> dict[str, list[str]]:
        result = decode_pin_table(self.get_raw(self._config.pins_key))
        if result.status is LoadStatus.CORRUPT:
            logger.warning("Discarding malformed pin data")
        return result.value

    def load_pins(self, conversation_id: str) -> PinSet:
        """Load the pin set for a conversation (empty if none or unreadable)."""
        table = self._load_pin_table()
        return PinSet(conversation_id=conversation_id, ids=set(table.get(conversation_id, [])))

    def save_pins(self, pins: PinSet) -> None:
        """Persist a conversation's whole pin set."""
        table = self._load_pin_table()
        table[pins.conversation_id] = pins.to_list()
        self.set_raw(self._config.pins_key, json.dumps(table))
        logger.debug("Saved pins: conversation=%s count=%d", pins.conversation_id, len(pins))

    def toggle_pin(self, pins: PinSet, message_id: str) -> bool:
        """Add or remove one pin, then persist the set.

        Returns:
            True if the message is now pinned
        """
        if message_id in pins:
            pins.discard(message_id)
            pinned = False
        else:
            pins.add(message_id)
            pinned = True
        self.save_pins(pins)
        return pinned

    def save_handoff(
        self,
        packet: str,
        conversation_id: str,
        created_at: int | None = None,
    ) -> HandoffRecord:
        """Store a handoff packet so a new conversation can pick it up."""
        record = HandoffRecord(
            created_at=now_ms() if created_at is None else created_at,
            conversation_id=conversation_id,
            packet=packet,
        )
        self.set_raw(self._config.handoff_key, json.dumps(record.to_dict()))
        return record

    def load_handoff(self, current_ms: int | None = None) -> HandoffRecord | None:
        """Load the pending handoff, deleting it if expired or unreadable."""
        result = decode_handoff(
            self.get_raw(self._config.handoff_key),
            now_ms() if current_ms is None else current_ms,
            self._handoff_expiry_ms,
        )
        if result.recovered:
            if result.status is LoadStatus.CORRUPT:
                logger.warning("Discarding malformed handoff record")
            self.clear_handoff()
        return result.value

    def clear_handoff(self) -> None:
        self.delete(self._config.handoff_key)

    def load_preferences(self) -> Preferences:
        result = decode_preferences(self.get_raw(self._config.settings_key))
        if result.status is LoadStatus.CORRUPT:
            logger.warning("Ignoring malformed preference values")
        return result.value

    def save_preferences(self, preferences: Preferences) -> None:
        self.set_raw(self._config.settings_key, json.dumps(preferences.to_dict()))

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
