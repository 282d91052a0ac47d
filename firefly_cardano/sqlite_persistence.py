"""A persistent store backed by an SQLite database file."""

from __future__ import annotations

import json
import sqlite3
from datetime import timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from .chain import BlockInfo
from .operations import Operation, OperationStatus, OperationUpdate
from .persistence import (
    BlockRecord,
    ConflictError,
    EventFilter,
    Listener,
    NotFoundError,
    Persistence,
    Stream,
    StreamCheckpoint,
    _new_update_id,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS streams (
    id TEXT NOT NULL PRIMARY KEY,
    name TEXT NOT NULL,
    batch_size INTEGER NOT NULL,
    batch_timeout TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS listeners (
    id TEXT NOT NULL PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    stream_id TEXT NOT NULL,
    filters TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS stream_checkpoints (
    stream_id TEXT NOT NULL PRIMARY KEY,
    last_operation_id TEXT,
    listeners TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS block_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    listener_id TEXT NOT NULL,
    block_height INTEGER,
    block_slot INTEGER,
    block_hash TEXT NOT NULL,
    parent_hash TEXT,
    transaction_hashes TEXT NOT NULL,
    transactions BLOB NOT NULL,
    rolled_back INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS block_records_listener ON block_records (listener_id);
CREATE TABLE IF NOT EXISTS operations (
    id TEXT NOT NULL PRIMARY KEY,
    status TEXT NOT NULL,
    error_message TEXT,
    tx_id TEXT,
    contract_address TEXT
);
CREATE TABLE IF NOT EXISTS operation_updates (
    update_id TEXT NOT NULL PRIMARY KEY,
    id TEXT NOT NULL,
    status TEXT NOT NULL,
    error_message TEXT,
    tx_id TEXT,
    contract_address TEXT
);
"""

_NO_LIMIT = -1

_STREAM_COLUMNS = "id, name, batch_size, batch_timeout"
_LISTENER_COLUMNS = "id, name, type, stream_id, filters"
_OPERATION_COLUMNS = "id, status, error_message, tx_id, contract_address"


def _cbor_head(major: int, length: int) -> bytes:
    if length < 24:
        return bytes([(major << 5) | length])
    for extra, size in ((24, 1), (25, 2), (26, 4), (27, 8)):
        if length < 1 << (8 * size):
            return bytes([(major << 5) | extra]) + length.to_bytes(size, "big")
    raise ValueError("length too large for CBOR")


def _encode_transactions(transactions: Iterable[bytes]) -> bytes:
    """Encode a list of byte strings as a CBOR array of byte strings."""
    items = [bytes(tx) for tx in transactions]
    parts = [_cbor_head(4, len(items))]
    for item in items:
        parts.append(_cbor_head(2, len(item)))
        parts.append(item)
    return b"".join(parts)


def _read_head(data: bytes, pos: int) -> Tuple[int, int, int]:
    if pos >= len(data):
        raise ValueError("unexpected end of CBOR data")
    initial = data[pos]
    major, info = initial >> 5, initial & 31
    pos += 1
    if info < 24:
        return major, info, pos
    sizes = {24: 1, 25: 2, 26: 4, 27: 8}
    size = sizes.get(info)
    if size is None or pos + size > len(data):
        raise ValueError("malformed CBOR length")
    return major, int.from_bytes(data[pos : pos + size], "big"), pos + size


def _decode_transactions(data: bytes) -> List[bytes]:
    major, count, pos = _read_head(data, 0)
    if major != 4:
        raise ValueError("expected a CBOR array")
    result = []
    for _ in range(count):
        major, length, pos = _read_head(data, pos)
        if major != 2 or pos + length > len(data):
            raise ValueError("expected a CBOR byte string")
        result.append(data[pos : pos + length])
        pos += length
    if pos != len(data):
        raise ValueError("trailing bytes after CBOR array")
    return result


def _duration_to_sql(duration: timedelta) -> str:
    return str(duration // timedelta(milliseconds=1))


def _duration_from_sql(value: str) -> timedelta:
    return timedelta(milliseconds=int(value))


def _filters_to_json(filters: Iterable[EventFilter]) -> str:
    return json.dumps([{"contract": f.contract, "eventPath": f.event_path} for f in filters])


def _filters_from_json(raw: str) -> List[EventFilter]:
    return [EventFilter(contract=f["contract"], event_path=f["eventPath"]) for f in json.loads(raw)]


def _parse_stream(row: sqlite3.Row) -> Stream:
    return Stream(
        id=row["id"],
        name=row["name"],
        batch_size=row["batch_size"],
        batch_timeout=_duration_from_sql(row["batch_timeout"]),
    )


def _parse_listener(row: sqlite3.Row) -> Listener:
    return Listener(
        id=row["id"],
        name=row["name"],
        stream_id=row["stream_id"],
        listener_type=json.loads(row["type"]),
        filters=_filters_from_json(row["filters"]),
    )


def _parse_checkpoint(row: sqlite3.Row) -> StreamCheckpoint:
    return StreamCheckpoint(
        stream_id=row["stream_id"],
        last_operation_id=row["last_operation_id"],
        listeners=json.loads(row["listeners"]),
    )


def _parse_block_record(row: sqlite3.Row) -> BlockRecord:
    block = BlockInfo(
        block_hash=row["block_hash"],
        block_height=row["block_height"],
        block_slot=row["block_slot"],
        parent_hash=row["parent_hash"],
        transaction_hashes=json.loads(row["transaction_hashes"]),
        transactions=_decode_transactions(bytes(row["transactions"])),
    )
    return BlockRecord(block=block, rolled_back=bool(row["rolled_back"]))


def _parse_status(status: str, error_message: Optional[str]) -> OperationStatus:
    if error_message is not None:
        return OperationStatus.failed(error_message)
    if status == "Succeeded":
        return OperationStatus.succeeded()
    if status == "Pending":
        return OperationStatus.pending()
    if status == "Failed":
        return OperationStatus.failed("")
    raise ValueError(f"unrecognized status {status}")


def _parse_operation(row: sqlite3.Row) -> Operation:
    return Operation(
        id=row["id"],
        status=_parse_status(row["status"], row["error_message"]),
        tx_id=row["tx_id"],
        contract_address=row["contract_address"],
    )


class SqlitePersistence(Persistence):
    """Stores everything in one SQLite database."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SqlitePersistence":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def write_stream(self, stream: Stream) -> None:
        with self._conn:
            existing = self._conn.execute(
                "SELECT id FROM streams WHERE name = ?", (stream.name,)
            ).fetchone()
            if existing is not None and existing["id"] != stream.id:
                raise ConflictError("stream with this name already exists")
            self._conn.execute(
                """INSERT INTO streams (id, name, batch_size, batch_timeout)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    batch_size=excluded.batch_size,
                    batch_timeout=excluded.batch_timeout""",
                (stream.id, stream.name, stream.batch_size, _duration_to_sql(stream.batch_timeout)),
            )

    async def read_stream(self, stream_id: str) -> Optional[Stream]:
        row = self._conn.execute(
            f"SELECT {_STREAM_COLUMNS} FROM streams WHERE id = ?", (stream_id,)
        ).fetchone()
        return None if row is None else _parse_stream(row)

    async def delete_stream(self, stream_id: str) -> None:
        with self._conn:
            self._conn.execute("DELETE FROM streams WHERE id = ?", (stream_id,))

    async def list_streams(self, after: Optional[str], limit: Optional[int]) -> List[Stream]:
        rows = self._conn.execute(
            f"""SELECT {_STREAM_COLUMNS} FROM streams
            WHERE id > ? ORDER BY id LIMIT ?""",
            (after or "", _NO_LIMIT if limit is None else limit),
        ).fetchall()
        return [_parse_stream(row) for row in rows]

    async def _require_stream(self, stream_id: str) -> None:
        if await self.read_stream(stream_id) is None:
            raise NotFoundError("No stream found with that ID")

    async def write_listener(self, listener: Listener) -> None:
        await self._require_stream(listener.stream_id)
        with self._conn:
            self._conn.execute(
                """INSERT INTO listeners (id, name, type, stream_id, filters)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    type=excluded.type,
                    stream_id=excluded.stream_id,
                    filters=excluded.filters""",
                (
                    listener.id,
                    listener.name,
                    json.dumps(listener.listener_type),
                    listener.stream_id,
                    _filters_to_json(listener.filters),
                ),
            )

    async def read_listener(self, stream_id: str, listener_id: str) -> Optional[Listener]:
        await self._require_stream(stream_id)
        row = self._conn.execute(
            f"SELECT {_LISTENER_COLUMNS} FROM listeners WHERE id = ?", (listener_id,)
        ).fetchone()
        return None if row is None else _parse_listener(row)

    async def delete_listener(self, stream_id: str, listener_id: str) -> None:
        with self._conn:
            self._conn.execute(
                "DELETE FROM listeners WHERE id = ? AND stream_id = ?", (listener_id, stream_id)
            )
            self._conn.execute("DELETE FROM block_records WHERE listener_id = ?", (listener_id,))

    async def list_listeners(
        self, stream_id: str, after: Optional[str], limit: Optional[int]
    ) -> List[Listener]:
        await self._require_stream(stream_id)
        rows = self._conn.execute(
            f"""SELECT {_LISTENER_COLUMNS} FROM listeners
            WHERE stream_id = ? AND id > ? ORDER BY id LIMIT ?""",
            (stream_id, after or "", _NO_LIMIT if limit is None else limit),
        ).fetchall()
        return [_parse_listener(row) for row in rows]

    async def write_checkpoint(self, checkpoint: StreamCheckpoint) -> None:
        with self._conn:
            self._conn.execute(
                """INSERT INTO stream_checkpoints (stream_id, last_operation_id, listeners)
                VALUES (?, ?, ?)
                ON CONFLICT (stream_id) DO UPDATE SET
                    last_operation_id=excluded.last_operation_id,
                    listeners=excluded.listeners""",
                (
                    checkpoint.stream_id,
                    checkpoint.last_operation_id,
                    json.dumps(checkpoint.listeners),
                ),
            )

    async def read_checkpoint(self, stream_id: str) -> Optional[StreamCheckpoint]:
        row = self._conn.execute(
            """SELECT stream_id, last_operation_id, listeners
            FROM stream_checkpoints WHERE stream_id = ?""",
            (stream_id,),
        ).fetchone()
        return None if row is None else _parse_checkpoint(row)

    async def load_history(self, listener_id: str) -> List[BlockRecord]:
        rows = self._conn.execute(
            """SELECT block_height, block_slot, block_hash, parent_hash,
                transaction_hashes, transactions, rolled_back
            FROM block_records WHERE listener_id = ? ORDER BY id""",
            (listener_id,),
        ).fetchall()
        return [_parse_block_record(row) for row in rows]

    async def save_block_records(self, listener_id: str, new_records: List[BlockRecord]) -> None:
        if not new_records:
            return
        rows = [
            (
                listener_id,
                record.block.block_height,
                record.block.block_slot,
                record.block.block_hash,
                record.block.parent_hash,
                json.dumps(list(record.block.transaction_hashes)),
                _encode_transactions(record.block.transactions),
                record.rolled_back,
            )
            for record in new_records
        ]
        with self._conn:
            self._conn.executemany(
                """INSERT INTO block_records (listener_id, block_height, block_slot, block_hash,
                    parent_hash, transaction_hashes, transactions, rolled_back)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                rows,
            )

    async def write_operation(self, op: Operation) -> str:
        update_id = _new_update_id()
        values = (
            op.id,
            op.status.name(),
            op.status.error_message,
            op.tx_id,
            op.contract_address,
        )
        with self._conn:
            self._conn.execute(
                f"""INSERT INTO operations ({_OPERATION_COLUMNS})
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status=excluded.status,
                    error_message=excluded.error_message,
                    tx_id=excluded.tx_id,
                    contract_address=excluded.contract_address""",
                values,
            )
            self._conn.execute(
                f"""INSERT INTO operation_updates (update_id, {_OPERATION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?)""",
                (update_id, *values),
            )
        return update_id

    async def read_operation(self, op_id: str) -> Optional[Operation]:
        row = self._conn.execute(
            f"SELECT {_OPERATION_COLUMNS} FROM operations WHERE id = ?", (op_id,)
        ).fetchone()
        return None if row is None else _parse_operation(row)

    async def list_operation_updates(
        self, after: Optional[str], limit: int
    ) -> List[OperationUpdate]:
        rows = self._conn.execute(
            f"""SELECT update_id, {_OPERATION_COLUMNS} FROM operation_updates
            WHERE update_id > ? ORDER BY update_id LIMIT ?""",
            (after or "", limit),
        ).fetchall()
        return [OperationUpdate(row["update_id"], _parse_operation(row)) for row in rows]

    async def latest_operation_update(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT max(update_id) AS update_id FROM operation_updates"
        ).fetchone()
        return None if row is None else row["update_id"]