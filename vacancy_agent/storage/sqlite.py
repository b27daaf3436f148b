"""SQLite artifact store: one JSON row per (site, slot, key)."""

import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel

from vacancy_agent.ports.storage import ArtifactSlot, ArtifactStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_ARTIFACTS_TABLE = """
CREATE TABLE IF NOT EXISTS artifacts (
    site_id     TEXT NOT NULL,
    slot        TEXT NOT NULL,
    key         TEXT NOT NULL,
    payload     TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (site_id, slot, key)
);
"""


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_ARTIFACTS_TABLE)
    conn.commit()
    return conn


class SqliteArtifactStore(ArtifactStore):
    """Persists artifacts as ``model_dump_json`` payloads.

    A row is always replaced whole; cascades run inside one transaction.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @classmethod
    def open(cls, path: str | Path) -> "SqliteArtifactStore":
        return cls(init_db(path))

    def close(self) -> None:
        self._conn.close()

    def _load(self, site_id: str, slot: ArtifactSlot, key: str, model: type[M]) -> M | None:
        row = self._conn.execute(
            "SELECT payload FROM artifacts WHERE site_id = ? AND slot = ? AND key = ?",
            (site_id, slot.value, key),
        ).fetchone()
        if row is None:
            return None
        return model.model_validate_json(row["payload"])

    def _store(self, site_id: str, slot: ArtifactSlot, key: str, artifact: BaseModel) -> None:
        self._conn.execute(
            """
            INSERT INTO artifacts (site_id, slot, key, payload, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(site_id, slot, key)
            DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
            """,
            (site_id, slot.value, key, artifact.model_dump_json(), datetime.now().isoformat()),
        )
        self._conn.commit()

    def _remove(self, site_id: str, slots: Iterable[ArtifactSlot]) -> None:
        names = [s.value for s in slots]
        if not names:
            return
        placeholders = ", ".join("?" for _ in names)
        with self._conn:
            cursor = self._conn.execute(
                f"DELETE FROM artifacts WHERE site_id = ? AND slot IN ({placeholders})",  # noqa: S608
                (site_id, *names),
            )
        logger.debug("Removed %d artifacts for %s (%s)", cursor.rowcount, site_id, ", ".join(names))
