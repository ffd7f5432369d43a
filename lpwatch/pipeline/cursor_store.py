"""
Cursor Store

Tracks the last fully processed position per tracked program.

Backends:
- MemoryCursorStore: process lifetime only
- SqliteCursorStore: table cursors(program_id, slot, signature, updated_at)
- JsonCursorStore: checkpoint file {program_id: {slot, signature, updated_at}}

Invariant (enforced for every backend): a cursor never moves backward.
"""

import json
import logging
import os
import sqlite3
import time
from pathlib import Path
from threading import RLock
from typing import Dict, Optional

from ..errors import ConfigError, CursorOrderingViolation
from ..types import Position


class CursorStore:
    """
    Base cursor store. Subclasses implement _read/_write.

    Usage:
        store = SqliteCursorStore("data/cursors.db")
        cursor = store.load(program_id)   # None on first run
        store.advance(program_id, Position(slot, signature))
    """

    def __init__(self):
        self._lock = RLock()
        self._logger = logging.getLogger(type(self).__name__)

    def load(self, program_id: str) -> Optional[Position]:
        with self._lock:
            return self._read(program_id)

    def advance(self, program_id: str, new_cursor: Position) -> None:
        """
        Move the cursor forward.

        Raises:
            CursorOrderingViolation: new_cursor is older than the current cursor.
        """
        with self._lock:
            current = self._read(program_id)
            if current is not None:
                if new_cursor.same_point(current):
                    return
                if new_cursor.precedes(current):
                    raise CursorOrderingViolation(
                        f"Cursor for {program_id[:8]} would regress from slot "
                        f"{current.slot} ({current.signature[:8]}) to slot "
                        f"{new_cursor.slot} ({new_cursor.signature[:8]})"
                    )
            self._write(program_id, new_cursor)

    def close(self) -> None:
        pass

    def _read(self, program_id: str) -> Optional[Position]:
        raise NotImplementedError

    def _write(self, program_id: str, position: Position) -> None:
        raise NotImplementedError


class MemoryCursorStore(CursorStore):
    """In-memory cursors (lost on restart)."""

    def __init__(self, initial: Optional[Dict[str, Position]] = None):
        super().__init__()
        self._cursors: Dict[str, Position] = dict(initial or {})

    def _read(self, program_id: str) -> Optional[Position]:
        return self._cursors.get(program_id)

    def _write(self, program_id: str, position: Position) -> None:
        self._cursors[program_id] = position


class SqliteCursorStore(CursorStore):
    """SQLite-backed cursors, one row per program."""

    def __init__(self, db_path: str = "data/cursors.db"):
        super().__init__()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        self._create_schema()

    def _create_schema(self):
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cursors (
                program_id TEXT PRIMARY KEY,
                slot INTEGER NOT NULL,
                signature TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        self.conn.commit()

    def _read(self, program_id: str) -> Optional[Position]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT slot, signature FROM cursors WHERE program_id = ?",
            (program_id,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return Position(slot=row["slot"], signature=row["signature"])

    def _write(self, program_id: str, position: Position) -> None:
        cursor = self.conn.cursor()
        cursor.execute("""
            INSERT INTO cursors (program_id, slot, signature, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(program_id) DO UPDATE SET
                slot = excluded.slot,
                signature = excluded.signature,
                updated_at = excluded.updated_at
        """, (program_id, position.slot, position.signature, time.time()))
        self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()


class JsonCursorStore(CursorStore):
    """Cursors in a JSON checkpoint file, rewritten atomically on every advance."""

    def __init__(self, path: str = "data/cursors.json"):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._checkpoint: Dict[str, dict] = self._load_checkpoint()

    def _load_checkpoint(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Cursor checkpoint {self.path} is corrupt: {e}")
        self._logger.info(f"Loaded checkpoint with {len(data)} cursors from {self.path}")
        return data

    def _read(self, program_id: str) -> Optional[Position]:
        entry = self._checkpoint.get(program_id)
        return Position.from_dict(entry) if entry else None

    def _write(self, program_id: str, position: Position) -> None:
        entry = position.to_dict()
        entry["updated_at"] = time.time()
        checkpoint = dict(self._checkpoint)
        checkpoint[program_id] = entry

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(checkpoint, f)
        os.replace(tmp_path, self.path)
        self._checkpoint = checkpoint


CURSOR_BACKENDS = ("memory", "sqlite", "json")


def create_cursor_store(backend: str, path: str) -> CursorStore:
    """Build the configured cursor store backend."""
    if backend == "memory":
        return MemoryCursorStore()
    if backend == "sqlite":
        return SqliteCursorStore(path)
    if backend == "json":
        return JsonCursorStore(path)
    raise ConfigError(f"Unknown cursor backend '{backend}' (expected one of: {', '.join(CURSOR_BACKENDS)})")
