"""Contract responses and the lifecycle of transactions a contract monitors."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

from .balius import AfterBlocks, KeyNotFoundError
from .chain import BlockInfo, BlockReference
from .listener import ContractEvent

_MONITORED_TXS_KEY = "__monitored_txs"
_FINALIZATION_HEIGHTS_KEY = "__tx_finalization_heights"
_EVENTS_PREFIX = "__events_"
_TX_SUBMITTED_METHOD = "__tx_submitted"
_NEW_TX_TYPE = "FireFlyCardanoNewTx"

Invoker = Callable[[str, Any], Awaitable[Any]]
ChainHandler = Callable[[List[BlockInfo], BlockInfo], Awaitable[Any]]


@dataclass(frozen=True)
class NewTx:
    """A transaction a contract built, for the connector to sign and submit."""

    bytes: bytes
    method: str
    condition: Optional[AfterBlocks] = None


@dataclass(frozen=True)
class JsonResponse:
    """A plain JSON answer from a contract."""

    value: Any


def _condition_from_json(raw: Any) -> AfterBlocks:
    if not isinstance(raw, Mapping) or set(raw) != {"AfterBlocks"}:
        raise ValueError(f"unrecognized finalization condition {raw!r}")
    return AfterBlocks(raw["AfterBlocks"])


def parse_json_response(method: str, value: Any) -> Union[NewTx, JsonResponse]:
    """Turn a contract's JSON response into a new transaction when it describes one."""
    if isinstance(value, Mapping) and value.get("type") == _NEW_TX_TYPE:
        raw_bytes = value.get("bytes")
        try:
            condition = _condition_from_json(value.get("condition"))
        except ValueError:
            condition = None
        if isinstance(raw_bytes, str) and condition is not None:
            return NewTx(bytes=bytes.fromhex(raw_bytes), method=method, condition=condition)
    return JsonResponse(value)


def _raw_event(tx_hash: bytes, signature: str, transaction_id: str) -> Dict[str, Any]:
    return {
        "tx_hash": list(tx_hash),
        "signature": signature,
        "data": {"transactionId": transaction_id},
    }


class TxLifecycleTracker:
    """Follows the chain for one contract and records events for monitored transactions.

    ``kv`` provides ``get_value(worker_id, key)`` (raising KeyNotFoundError)
    and ``set_value(worker_id, key, value)``. ``invoke`` is awaited as
    ``invoke(method, params)`` and ``handle_chain`` as
    ``handle_chain(undo_blocks, next_block)``.
    """

    def __init__(
        self,
        contract: str,
        kv: Any = None,
        *,
        invoke: Optional[Invoker] = None,
        handle_chain: Optional[ChainHandler] = None,
        head: Optional[BlockReference] = None,
    ) -> None:
        self.contract = contract
        self.kv = kv
        self._invoke = invoke
        self._handle_chain = handle_chain
        self.head = head if head is not None else BlockReference.origin()

    def _get(self, key: str) -> Any:
        if self.kv is None:
            raise RuntimeError("No KV store configured")
        try:
            raw = self.kv.get_value(self.contract, key)
        except KeyNotFoundError:
            return None
        return json.loads(raw)

    def _set(self, key: str, value: Any) -> None:
        if self.kv is None:
            raise RuntimeError("No KV store configured")
        self.kv.set_value(self.contract, key, json.dumps(value).encode())

    async def handle_submit(self, tx_id: str, new_tx: NewTx) -> None:
        """Start monitoring a submitted transaction and tell the contract about it."""
        if new_tx.condition is not None:
            monitored = self._get(_MONITORED_TXS_KEY) or {}
            monitored[tx_id] = new_tx.condition.to_json()
            self._set(_MONITORED_TXS_KEY, monitored)
        if self._invoke is not None:
            try:
                await self._invoke(
                    _TX_SUBMITTED_METHOD, {"method": new_tx.method, "hash": tx_id}
                )
            except Exception:
                # the contract need not handle submissions
                pass

    async def apply(self, rollbacks: Sequence[BlockInfo], block: BlockInfo) -> None:
        """Apply a new block, after undoing rollbacks, unless already past it."""
        if rollbacks and rollbacks[0].as_reference() != self.head:
            # a rollback from a point we are not at
            return
        if block.as_reference() <= self.head:
            return
        if self._handle_chain is not None:
            try:
                await self._handle_chain(list(rollbacks), block)
            except Exception as error:
                raise RuntimeError(f"could not apply blocks: {error}") from error
        self.head = block.as_reference()
        self.check_for_tx_lifecycle_events(rollbacks, block)

    def check_for_tx_lifecycle_events(
        self, rollbacks: Sequence[BlockInfo], block: BlockInfo
    ) -> None:
        """Record accepted, rolled-back and finalized events for monitored transactions."""
        block_height = block.block_height
        if block_height is None:
            return

        monitored: Dict[str, Any] = self._get(_MONITORED_TXS_KEY) or {}
        stored_heights = self._get(_FINALIZATION_HEIGHTS_KEY) or {}
        heights: Dict[int, Set[str]] = {
            int(height): set(hashes) for height, hashes in stored_heights.items()
        }
        new_events: List[Dict[str, Any]] = []
        updated_monitored = False
        updated_heights = False

        for rolled_back in rollbacks:
            for tx_hash in rolled_back.transaction_hashes:
                if tx_hash not in monitored:
                    continue
                new_events.append(
                    _raw_event(bytes.fromhex(tx_hash), "TransactionRolledBack(string)", tx_hash)
                )
                # no finalized event unless it is applied again
                for height in list(heights):
                    hashes = heights[height]
                    if tx_hash in hashes:
                        hashes.discard(tx_hash)
                        updated_heights = True
                    if not hashes:
                        del heights[height]

        for tx_hash in block.transaction_hashes:
            raw_condition = monitored.get(tx_hash)
            if raw_condition is None:
                continue
            new_events.append(
                _raw_event(bytes.fromhex(tx_hash), "TransactionAccepted(string)", tx_hash)
            )
            condition = _condition_from_json(raw_condition)
            heights.setdefault(block_height + condition.blocks, set()).add(tx_hash)
            updated_heights = True

        if block.transaction_hashes:
            finalized_in = bytes.fromhex(block.transaction_hashes[0])
            for height in sorted(h for h in heights if h <= block_height):
                updated_heights = True
                for tx_hash in sorted(heights.pop(height)):
                    if monitored.pop(tx_hash, None) is not None:
                        updated_monitored = True
                    new_events.append(
                        _raw_event(finalized_in, "TransactionFinalized(string)", tx_hash)
                    )

        if new_events:
            key = f"{_EVENTS_PREFIX}{block.block_hash}"
            events = self._get(key) or []
            events.extend(new_events)
            self._set(key, events)

        if updated_heights:
            self._set(
                _FINALIZATION_HEIGHTS_KEY,
                {str(height): sorted(hashes) for height, hashes in sorted(heights.items())},
            )
        if updated_monitored:
            self._set(_MONITORED_TXS_KEY, monitored)

    async def events(self, block_ref: BlockReference) -> List[ContractEvent]:
        """The events recorded for a block, by this contract or by the tracker."""
        if block_ref.is_origin():
            return []
        if self.kv is None:
            raise RuntimeError("No contract directory configured")
        try:
            raw = self.kv.get_value(self.contract, f"{_EVENTS_PREFIX}{block_ref.hash}")
        except KeyNotFoundError:
            return []
        return [
            ContractEvent(
                address=self.contract,
                tx_hash=bytes(event["tx_hash"]).hex(),
                signature=event["signature"],
                data=event["data"],
            )
            for event in json.loads(raw)
        ]