"""
Durable snapshot stores for the verified-identity ledger.

A snapshot is a flat ``{identity: verified_at}`` map (epoch seconds).
Stores load and save the whole map at once; the ledger decides when.

Two backends are provided:

* :class:`JsonFileSnapshotStore`: one JSON object in a file, replaced
  atomically on every save.
* :class:`SqliteSnapshotStore`: one row per identity in an aiosqlite
  database, rewritten in a single transaction.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Protocol

import aiosqlite

logger = logging.getLogger(__name__)


class SnapshotError(Exception):
    """The snapshot could not be read, parsed or written."""


class SnapshotStore(Protocol):
    async def load(self) -> dict[str, float]: ...

    async def save(self, entries: dict[str, float]) -> None: ...


def _validated(raw: object, source: str) -> dict[str, float]:
    """Check that *raw* is a ``{str: number}`` map and coerce the values."""
    if not isinstance(raw, dict):
        raise SnapshotError(f"{source}: expected an object, got {type(raw).__name__}")
    entries: dict[str, float] = {}
    for identity, ts in raw.items():
        if not isinstance(identity, str) or isinstance(ts, bool) or not isinstance(ts, (int, float)):
            logger.warning("%s: skipping malformed entry %r=%r", source, identity, ts)
            continue
        entries[identity] = float(ts)
    return entries


# ══════════════════════════════════════════════════════════════════════════
#                          JSON FILE BACKEND
# ══════════════════════════════════════════════════════════════════════════


class JsonFileSnapshotStore:
    """Keeps the snapshot as a single JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> dict[str, float]:
        return await asyncio.to_thread(self._read)

    async def save(self, entries: dict[str, float]) -> None:
        await asyncio.to_thread(self._write, dict(entries))

    def _read(self) -> dict[str, float]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            raise SnapshotError(f"cannot read {self._path}: {exc}") from exc
        return _validated(raw, str(self._path))

    def _write(self, entries: dict[str, float]) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(entries, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            raise SnapshotError(f"cannot write {self._path}: {exc}") from exc


# ══════════════════════════════════════════════════════════════════════════
#                           SQLITE BACKEND
# ══════════════════════════════════════════════════════════════════════════

_SCHEMA = """
CREATE TABLE IF NOT EXISTS verified_identities (
    identity    TEXT PRIMARY KEY,
    verified_at REAL NOT NULL
);
"""


class SqliteSnapshotStore:
    """Keeps the snapshot as rows of ``verified_identities``."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        await db.execute("PRAGMA journal_mode=WAL")
        await db.executescript(_SCHEMA)
        return db

    async def load(self) -> dict[str, float]:
        try:
            db = await self._connect()
            try:
                async with db.execute(
                    "SELECT identity, verified_at FROM verified_identities"
                ) as cur:
                    rows = await cur.fetchall()
            finally:
                await db.close()
        except (OSError, aiosqlite.Error) as exc:
            raise SnapshotError(f"cannot read {self._db_path}: {exc}") from exc
        return _validated({identity: ts for identity, ts in rows}, str(self._db_path))

    async def save(self, entries: dict[str, float]) -> None:
        try:
            db = await self._connect()
            try:
                await db.execute("DELETE FROM verified_identities")
                await db.executemany(
                    "INSERT INTO verified_identities (identity, verified_at) VALUES (?, ?)",
                    list(entries.items()),
                )
                await db.commit()
            finally:
                await db.close()
        except (OSError, aiosqlite.Error) as exc:
            raise SnapshotError(f"cannot write {self._db_path}: {exc}") from exc


def build_snapshot_store(backend: str, *, json_path: str | Path, db_path: str | Path) -> SnapshotStore:
    """Pick a snapshot backend by name ("json" or "sqlite")."""
    if backend == "json":
        return JsonFileSnapshotStore(json_path)
    if backend == "sqlite":
        return SqliteSnapshotStore(db_path)
    raise ValueError(f"Unknown snapshot backend: {backend!r}")
