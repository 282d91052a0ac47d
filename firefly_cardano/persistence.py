"""Storage of streams, listeners, checkpoints, block history and operations."""

from __future__ import annotations

import copy
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Union

from .chain import BlockInfo
from .operations import Operation, OperationUpdate


class ApiError(Exception):
    """An error that maps onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


@dataclass
class Stream:
    id: str
    name: str
    batch_size: int
    batch_timeout: timedelta


@dataclass(frozen=True)
class EventFilter:
    """Selects the events with a given signature from one contract."""

    contract: str
    event_path: str


@dataclass
class Listener:
    id: str
    name: str
    stream_id: str
    listener_type: str = "events"
    filters: List[EventFilter] = field(default_factory=list)


@dataclass
class StreamCheckpoint:
    stream_id: str
    last_operation_id: Optional[str] = None
    listeners: Dict[str, object] = field(default_factory=dict)


@dataclass
class BlockRecord:
    block: BlockInfo
    rolled_back: bool = False


_KINDS = ("mock", "sqlite")


@dataclass(frozen=True)
class PersistenceConfig:
    """Which store to use; a sqlite store needs a path."""

    type: str = "mock"
    path: Optional[Union[str, Path]] = None

    def __post_init__(self) -> None:
        if self.type not in _KINDS:
            raise ValueError(f"unknown persistence type {self.type!r}")
        if self.type == "sqlite" and self.path is None:
            raise ValueError("missing field `path`")


_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_last_ulid = 0


def _new_update_id() -> str:
    """A 26-character ULID, strictly increasing within this process."""
    global _last_ulid
    millis = time.time_ns() // 1_000_000
    value = (millis << 80) | int.from_bytes(os.urandom(10), "big")
    if value <= _last_ulid:
        value = _last_ulid + 1
    _last_ulid = value
    chars = []
    for _ in range(26):
        chars.append(_CROCKFORD[value & 31])
        value >>= 5
    return "".join(reversed(chars))


class Persistence(ABC):
    """The operations every store provides."""

    @abstractmethod
    async def write_stream(self, stream: Stream) -> None: ...

    @abstractmethod
    async def read_stream(self, stream_id: str) -> Optional[Stream]: ...

    @abstractmethod
    async def delete_stream(self, stream_id: str) -> None: ...

    @abstractmethod
    async def list_streams(self, after: Optional[str], limit: Optional[int]) -> List[Stream]: ...

    @abstractmethod
    async def write_listener(self, listener: Listener) -> None: ...

    @abstractmethod
    async def read_listener(self, stream_id: str, listener_id: str) -> Optional[Listener]: ...

    @abstractmethod
    async def delete_listener(self, stream_id: str, listener_id: str) -> None: ...

    @abstractmethod
    async def list_listeners(
        self, stream_id: str, after: Optional[str], limit: Optional[int]
    ) -> List[Listener]: ...

    @abstractmethod
    async def write_checkpoint(self, checkpoint: StreamCheckpoint) -> None: ...

    @abstractmethod
    async def read_checkpoint(self, stream_id: str) -> Optional[StreamCheckpoint]: ...

    @abstractmethod
    async def load_history(self, listener_id: str) -> List[BlockRecord]: ...

    @abstractmethod
    async def save_block_records(self, listener_id: str, new_records: List[BlockRecord]) -> None: ...

    @abstractmethod
    async def write_operation(self, op: Operation) -> str: ...

    @abstractmethod
    async def read_operation(self, op_id: str) -> Optional[Operation]: ...

    @abstractmethod
    async def list_operation_updates(
        self, after: Optional[str], limit: int
    ) -> List[OperationUpdate]: ...

    @abstractmethod
    async def latest_operation_update(self) -> Optional[str]: ...


def _page(items, after: Optional[str], limit: Optional[int]) -> list:
    selected = [copy.deepcopy(item) for item in items if after is None or after < item.id]
    return selected if limit is None else selected[:limit]


class MockPersistence(Persistence):
    """An in-memory store."""

    def __init__(self) -> None:
        self._streams: List[Stream] = []
        self._listeners: Dict[str, List[Listener]] = {}
        self._checkpoints: Dict[str, StreamCheckpoint] = {}
        self._blocks: Dict[str, Dict[str, BlockRecord]] = {}
        self._operations: Dict[str, Operation] = {}
        self._updates: List[OperationUpdate] = []

    async def write_stream(self, stream: Stream) -> None:
        if any(s.name == stream.name and s.id != stream.id for s in self._streams):
            raise ConflictError("Stream with that name already exists")
        self._listeners.setdefault(stream.id, [])
        stored = copy.deepcopy(stream)
        for index, old in enumerate(self._streams):
            if old.id == stream.id:
                self._streams[index] = stored
                return
        self._streams.append(stored)

    async def read_stream(self, stream_id: str) -> Optional[Stream]:
        found = next((s for s in self._streams if s.id == stream_id), None)
        return copy.deepcopy(found)

    async def delete_stream(self, stream_id: str) -> None:
        self._streams = [s for s in self._streams if s.id != stream_id]
        self._listeners.pop(stream_id, None)
        self._checkpoints.pop(stream_id, None)

    async def list_streams(self, after: Optional[str], limit: Optional[int]) -> List[Stream]:
        return _page(self._streams, after, limit)

    def _stream_listeners(self, stream_id: str) -> List[Listener]:
        try:
            return self._listeners[stream_id]
        except KeyError:
            raise NotFoundError("No stream found with that ID") from None

    async def write_listener(self, listener: Listener) -> None:
        listeners = self._stream_listeners(listener.stream_id)
        stored = copy.deepcopy(listener)
        for index, old in enumerate(listeners):
            if old.id == listener.id:
                listeners[index] = stored
                return
        listeners.append(stored)

    async def read_listener(self, stream_id: str, listener_id: str) -> Optional[Listener]:
        listeners = self._stream_listeners(stream_id)
        found = next((l for l in listeners if l.id == listener_id), None)
        return copy.deepcopy(found)

    async def delete_listener(self, stream_id: str, listener_id: str) -> None:
        listeners = self._listeners.get(stream_id)
        if listeners is None:
            return
        listeners[:] = [l for l in listeners if l.id != listener_id]
        self._blocks.pop(listener_id, None)

    async def list_listeners(
        self, stream_id: str, after: Optional[str], limit: Optional[int]
    ) -> List[Listener]:
        return _page(self._stream_listeners(stream_id), after, limit)

    async def write_checkpoint(self, checkpoint: StreamCheckpoint) -> None:
        # a stream exists exactly when it has a (possibly empty) listener list
        if checkpoint.stream_id not in self._listeners:
            raise NotFoundError("No stream found with that ID")
        self._checkpoints[checkpoint.stream_id] = copy.deepcopy(checkpoint)

    async def read_checkpoint(self, stream_id: str) -> Optional[StreamCheckpoint]:
        return copy.deepcopy(self._checkpoints.get(stream_id))

    async def load_history(self, listener_id: str) -> List[BlockRecord]:
        records = self._blocks.get(listener_id, {})
        return [copy.deepcopy(record) for record in records.values()]

    async def save_block_records(self, listener_id: str, new_records: List[BlockRecord]) -> None:
        records = self._blocks.setdefault(listener_id, {})
        for record in new_records:
            records[record.block.block_hash] = copy.deepcopy(record)

    async def write_operation(self, op: Operation) -> str:
        self._operations[op.id] = copy.deepcopy(op)
        update_id = _new_update_id()
        self._updates.append(OperationUpdate(update_id, copy.deepcopy(op)))
        return update_id

    async def read_operation(self, op_id: str) -> Optional[Operation]:
        return copy.deepcopy(self._operations.get(op_id))

    async def list_operation_updates(
        self, after: Optional[str], limit: int
    ) -> List[OperationUpdate]:
        newer = [u for u in self._updates if after is None or u.update_id > after]
        return [copy.deepcopy(u) for u in newer[:limit]]

    async def latest_operation_update(self) -> Optional[str]:
        return self._updates[-1].update_id if self._updates else None


async def init_persistence(config: PersistenceConfig) -> Persistence:
    """Open the store the config names."""
    if config.type == "sqlite":
        from .sqlite_persistence import SqlitePersistence

        return SqlitePersistence(config.path)
    return MockPersistence()