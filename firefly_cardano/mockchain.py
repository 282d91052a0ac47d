"""An in-memory chain that grows on its own, for demos and tests."""

from __future__ import annotations

import asyncio
import random
from typing import Optional, Sequence, Tuple

from .chain import (
    BlockInfo,
    BlockReference,
    ChainSyncClient,
    RequestNextResponse,
    RollBackward,
    RollForward,
)


class MockChain:
    """A deterministic, randomly generated chain of blocks."""

    def __init__(self, initial_height: int = 3000, *, seed: int = 0, interval: float = 1.0) -> None:
        self._rng = random.Random(seed)
        self._chain: list[BlockInfo] = []
        self._indexes: dict[str, int] = {}
        self._rolled_back: dict[BlockReference, BlockReference] = {}
        self._waiters: list[asyncio.Future] = []
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        for _ in range(initial_height):
            self._append_block()

    def __len__(self) -> int:
        return len(self._chain)

    def start(self) -> None:
        """Begin producing a new block every interval."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.generate_block()

    def generate_block(self) -> BlockInfo:
        """Append one block and wake anyone waiting for it."""
        block = self._append_block()
        self._notify()
        return block

    async def genesis_hash(self) -> str:
        while not self._chain:
            await self._wait_for_new_block()
        return self._chain[0].block_hash

    def sync(self) -> "MockChainSync":
        return MockChainSync(self)

    def roll_back(self, from_ref: BlockReference, to_ref: BlockReference) -> None:
        """Drop every block after to_ref; followers past it are sent back there."""
        if from_ref == to_ref:
            raise ValueError("cannot roll back to the same block")
        if to_ref.is_origin():
            keep = min(1, len(self._chain))
        else:
            index = self._indexes.get(to_ref.hash)
            if index is None:
                raise ValueError(f"unknown block {to_ref.hash}")
            keep = index + 1
        removed = self._chain[keep:]
        del self._chain[keep:]
        for block in removed:
            del self._indexes[block.block_hash]
            self._rolled_back[block.as_reference()] = to_ref
        self._rolled_back[from_ref] = to_ref
        self._notify()

    def _append_block(self) -> BlockInfo:
        if self._chain:
            height: Optional[int] = len(self._chain)
            parent: Optional[str] = self._chain[-1].block_hash
        else:
            height = None
            parent = None
        tx_hashes = [self._generate_hash() for _ in range(self._rng.randrange(10))]
        block = BlockInfo(
            block_hash=self._generate_hash(),
            block_height=height,
            block_slot=height,
            parent_hash=parent,
            transaction_hashes=tx_hashes,
        )
        self._indexes[block.block_hash] = len(self._chain)
        self._chain.append(block)
        return block

    def _generate_hash(self) -> str:
        return self._rng.randbytes(32).hex()

    def _notify(self) -> None:
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    async def _wait_for_new_block(self) -> None:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def _tip(self) -> BlockReference:
        return self._chain[-1].as_reference() if self._chain else BlockReference.origin()

    def _lookup(self, ref: BlockReference) -> Optional[BlockInfo]:
        if ref.is_origin():
            return self._chain[0] if self._chain else None
        index = self._indexes.get(ref.hash)
        return None if index is None else self._chain[index]

    def _block_after(self, ref: BlockReference) -> Optional[BlockInfo]:
        if ref.is_origin():
            next_index: Optional[int] = 1
        else:
            index = self._indexes.get(ref.hash)
            next_index = None if index is None else index + 1
        if next_index is None or next_index >= len(self._chain):
            return None
        return self._chain[next_index]

    def _find_rollback(self, tip: BlockReference) -> Optional[BlockReference]:
        target = self._rolled_back.get(tip)
        if target is None:
            return None
        seen = {tip}
        while target in self._rolled_back and target not in seen:
            seen.add(target)
            target = self._rolled_back[target]
        return target


class MockChainSync(ChainSyncClient):
    """Follows a MockChain from the origin."""

    def __init__(self, chain: MockChain) -> None:
        self._chain = chain
        self._consumer_tip = BlockReference.origin()

    async def request_next(self) -> RequestNextResponse:
        chain = self._chain
        while True:
            tip = chain._tip()
            rollback_to = chain._find_rollback(self._consumer_tip)
            if rollback_to is not None:
                self._consumer_tip = rollback_to
                return RollBackward(rollback_to, tip)
            block = chain._block_after(self._consumer_tip)
            if block is not None:
                self._consumer_tip = block.as_reference()
                return RollForward(block, tip)
            await chain._wait_for_new_block()

    async def find_intersect(
        self, points: Sequence[BlockReference]
    ) -> Tuple[Optional[BlockReference], BlockReference]:
        chain = self._chain
        found = next(
            (block for block in map(chain._lookup, points) if block is not None), None
        )
        intersect = found.as_reference() if found is not None else None
        self._consumer_tip = intersect if intersect is not None else BlockReference.origin()
        return intersect, chain._tip()