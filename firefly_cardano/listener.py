"""Collects contract events for the blocks an event-stream listener sees."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Set

from .chain import BlockInfo, BlockReference
from .persistence import EventFilter

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContractEvent:
    """An event raised by a contract, as delivered to listeners."""

    address: str
    tx_hash: str
    signature: str
    data: Any


def find_contract_filters(filters: Iterable[Any]) -> Dict[str, Set[str]]:
    """Group the event signatures a listener wants by contract."""
    result: Dict[str, Set[str]] = {}
    for item in filters:
        if isinstance(item, EventFilter):
            result.setdefault(item.contract, set()).add(item.event_path)
    return result


@dataclass
class ListenedContract:
    """A contract runtime and the event signatures wanted from it.

    The runtime provides ``async apply(rollbacks, block)`` and
    ``async events(block_ref)``.
    """

    filters: Set[str]
    runtime: Any


class ContractListener:
    """Feeds blocks to contracts and caches the matching events per block."""

    def __init__(self, contracts: Iterable[ListenedContract]) -> None:
        self.contracts: List[ListenedContract] = list(contracts)
        self._cache: Dict[BlockReference, List[ContractEvent]] = {}

    async def gather_events(self, rollbacks: Sequence[BlockInfo], block: BlockInfo) -> None:
        for contract in self.contracts:
            try:
                await contract.runtime.apply(rollbacks, block)
            except Exception as error:
                log.error("could not gather events for new blocks: %s", error)

    async def events_for(self, block_ref: BlockReference) -> List[ContractEvent]:
        cached = self._cache.get(block_ref)
        if cached is not None:
            return cached
        events: List[ContractEvent] = []
        for contract in self.contracts:
            try:
                contract_events = await contract.runtime.events(block_ref)
            except Exception as error:
                log.error("could not retrieve events for block: %s", error)
                continue
            events.extend(e for e in contract_events if e.signature in contract.filters)
        self._cache[block_ref] = events
        return events