"""An SQLite-backed key-value store with one table per contract."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import List, Union

from .balius import KeyNotFoundError


class SqliteKv:
    """Holds the key-value data of every contract in one database file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._conn = sqlite3.connect(str(path), check_same_thread=False)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SqliteKv":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def table_name(self, contract: str) -> str:
        return f"kv_{contract.encode().hex()}"

    def init(self, contract: str) -> None:
        """Create the contract's table if it does not exist yet."""
        table = self.table_name(contract)
        with self._conn:
            self._conn.execute(
                f'''CREATE TABLE IF NOT EXISTS "{table}" (
                    "key" TEXT NOT NULL PRIMARY KEY,
                    "value" BLOB NOT NULL
                )'''
            )

    def get_value(self, worker_id: str, key: str) -> bytes:
        table = self.table_name(worker_id)
        row = self._conn.execute(
            f'SELECT "value" FROM "{table}" WHERE "key" = ?', (key,)
        ).fetchone()
        if row is None:
            raise KeyNotFoundError(key)
        return bytes(row[0])

    def set_value(self, worker_id: str, key: str, value: bytes) -> None:
        table = self.table_name(worker_id)
        with self._conn:
            self._conn.execute(
                f'''INSERT INTO "{table}" ("key", "value") VALUES (?, ?)
                ON CONFLICT("key") DO UPDATE SET "value" = excluded."value"''',
                (key, sqlite3.Binary(bytes(value))),
            )

    def list_values(self, worker_id: str, prefix: str) -> List[str]:
        """The keys matching prefix (as an SQL LIKE pattern), in order."""
        table = self.table_name(worker_id)
        rows = self._conn.execute(
            f'SELECT "key" FROM "{table}" WHERE "key" LIKE ? ORDER BY "key"',
            (f"{prefix}%",),
        ).fetchall()
        return [row[0] for row in rows]