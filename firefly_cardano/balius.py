"""Helpers for contracts: key-value access, custom events, monitored transactions and handlers."""

from __future__ import annotations

import dataclasses
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

_EVENTS_PREFIX = "__events_"
_MONITORED_TXS_KEY = "__monitored_txs"
_TX_SUBMITTED_METHOD = "__tx_submitted"


class KeyNotFoundError(KeyError):
    """The key-value store holds no value under the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key


class KvStore(ABC):
    """A byte-valued key-value store seen from inside one contract."""

    @abstractmethod
    def get_value(self, key: str) -> bytes:
        """Return the value for key, or raise KeyNotFoundError."""

    @abstractmethod
    def set_value(self, key: str, value: bytes) -> None:
        """Store value under key, replacing any previous value."""


class MemoryKv(KvStore):
    """A key-value store kept in a dict."""

    def __init__(self) -> None:
        self._values: Dict[str, bytes] = {}

    def get_value(self, key: str) -> bytes:
        try:
            return self._values[key]
        except KeyError:
            raise KeyNotFoundError(key) from None

    def set_value(self, key: str, value: bytes) -> None:
        self._values[key] = bytes(value)


def kv_get(store: KvStore, key: str) -> Any:
    """Read and decode a JSON value; None if the key does not exist."""
    try:
        raw = store.get_value(key)
    except KeyNotFoundError:
        return None
    return json.loads(raw)


def kv_set(store: KvStore, key: str, value: Any) -> None:
    """Encode value as JSON and store it."""
    store.set_value(key, json.dumps(value).encode())


class EventData(ABC):
    """The payload of a custom event.

    The signature follows the event's schema: an event named ``Created`` with a
    string parameter and a number parameter has the signature
    ``Created(string, number)``.
    """

    @abstractmethod
    def signature(self) -> str:
        """The signature FireFly matches listeners against."""

    def to_json(self) -> Any:
        """The JSON form of the payload."""
        if dataclasses.is_dataclass(self) and not isinstance(self, type):
            return dataclasses.asdict(self)
        return dict(vars(self))


@dataclass(frozen=True)
class Event:
    """A custom event raised by the block and transaction that triggered it."""

    block_hash: bytes
    tx_hash: bytes
    signature: str
    data: Any

    @classmethod
    def new(cls, block_hash: bytes, tx_hash: bytes, data: EventData) -> "Event":
        return cls(bytes(block_hash), bytes(tx_hash), data.signature(), data.to_json())

    def to_json(self) -> Dict[str, Any]:
        return {
            "block_hash": list(self.block_hash),
            "tx_hash": list(self.tx_hash),
            "signature": self.signature,
            "data": self.data,
        }


def emit_events(store: KvStore, events: Iterable[Event]) -> None:
    """Append events to the per-block event lists the connector reads."""
    by_block: Dict[str, List[Event]] = {}
    for event in events:
        by_block.setdefault(event.block_hash.hex(), []).append(event)
    for block, block_events in by_block.items():
        key = f"{_EVENTS_PREFIX}{block}"
        stored = kv_get(store, key) or []
        stored.extend(event.to_json() for event in block_events)
        kv_set(store, key, stored)


@dataclass(frozen=True)
class AfterBlocks:
    """A transaction is final once this many blocks have followed it."""

    blocks: int

    def __post_init__(self) -> None:
        if isinstance(self.blocks, bool) or not isinstance(self.blocks, int) or self.blocks < 0:
            raise ValueError("blocks must be a non-negative integer")

    def to_json(self) -> Dict[str, int]:
        return {"AfterBlocks": self.blocks}


class FinalityMonitor:
    """Asks the connector to report on the lifecycle of transactions."""

    def __init__(self, store: KvStore) -> None:
        self.store = store

    def monitor_tx(self, tx_hash: str, condition: AfterBlocks) -> None:
        """Emit accepted, rolled-back and finalized events for tx_hash."""
        monitored = kv_get(self.store, _MONITORED_TXS_KEY) or {}
        monitored[tx_hash] = condition.to_json()
        kv_set(self.store, _MONITORED_TXS_KEY, monitored)


def new_monitored_tx_response(tx_bytes: bytes, condition: AfterBlocks) -> bytes:
    """The JSON response that asks the connector to submit and monitor a transaction."""
    body = {
        "type": "FireFlyCardanoNewTx",
        "bytes": bytes(tx_bytes).hex(),
        "condition": condition.to_json(),
    }
    return json.dumps(body).encode()


@dataclass(frozen=True)
class SubmittedTx:
    """A transaction the connector submitted for this contract."""

    method: str
    hash: str


Handler = Callable[[Any, Any], Any]


class Worker:
    """Routes requests to registered handlers by method name."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def with_request_handler(self, method: str, handler: Handler) -> "Worker":
        self._handlers[method] = handler
        return self

    def with_tx_submitted_handler(self, func: Callable[[Any, SubmittedTx], Any]) -> "Worker":
        """Run func whenever a transaction built by this contract is submitted."""

        def handler(config: Any, params: Any) -> Any:
            if not isinstance(params, Mapping):
                raise ValueError("submitted transaction parameters must be an object")
            try:
                tx = SubmittedTx(method=str(params["method"]), hash=str(params["hash"]))
            except KeyError as missing:
                raise ValueError(f"missing field {missing.args[0]!r}") from None
            return func(config, tx)

        return self.with_request_handler(_TX_SUBMITTED_METHOD, handler)

    def handle_request(
        self, method: str, config: Any, params: Union[bytes, str, Any, None]
    ) -> Any:
        handler: Optional[Handler] = self._handlers.get(method)
        if handler is None:
            raise LookupError(f"no handler for method {method}")
        if isinstance(params, (bytes, bytearray, str)):
            params = json.loads(params)
        return handler(config, params)