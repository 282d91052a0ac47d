"""Blockchain configuration, block references and ledger access."""

from __future__ import annotations

import dataclasses
import functools
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Mapping, Optional, Sequence, Tuple, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True, repr=False)
class Secret(Generic[T]):
    """A value that is never shown when printed."""

    value: T

    def __repr__(self) -> str:
        return "<redacted>"

    __str__ = __repr__


class Network(str, Enum):
    MAINNET = "mainnet"
    PREVIEW = "preview"
    PREPROD = "preprod"


_MAGICS = {
    Network.PREPROD: 1,
    Network.PREVIEW: 2,
    Network.MAINNET: 764824073,
}

_GENESIS_HASHES = {
    Network.PREPROD: "f28f1c1280ea0d32f8cd3143e268650d6c1a8e221522ce4a7d20d62fc09783e1",
    Network.PREVIEW: "83de1d7302569ad56cf9139a41e2e11346d4cb4a31c00142557b6ab3fa550761",
    Network.MAINNET: "5f20df933584822601f9e3f8c024eb5eb252fe8cefb24d1317dc3d432e940ebb",
}


@functools.total_ordering
@dataclass(frozen=True)
class BlockReference:
    """Either the chain origin (no hash) or a specific block point."""

    slot: Optional[int] = None
    hash: Optional[str] = None

    def __post_init__(self) -> None:
        if self.hash is None and self.slot is not None:
            raise ValueError("the origin has no slot")

    @classmethod
    def origin(cls) -> "BlockReference":
        return cls()

    @classmethod
    def point(cls, slot: Optional[int], hash: str) -> "BlockReference":
        if hash is None:
            raise ValueError("a point needs a block hash")
        return cls(slot, hash)

    def is_origin(self) -> bool:
        return self.hash is None

    def _key(self) -> tuple:
        if self.hash is None:
            return (0, 0, 0, "")
        return (1, 0 if self.slot is None else 1, self.slot or 0, self.hash)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, BlockReference):
            return NotImplemented
        return self._key() < other._key()


@dataclass
class BlockInfo:
    block_hash: str
    block_height: Optional[int] = None
    block_slot: Optional[int] = None
    parent_hash: Optional[str] = None
    transaction_hashes: list = field(default_factory=list)
    transactions: list = field(default_factory=list)

    def as_reference(self) -> BlockReference:
        return BlockReference.point(self.block_slot, self.block_hash)


@dataclass
class BlockchainConfig:
    era: int
    socket: Optional[Path] = None
    blockfrost_key: Optional[Secret] = None
    blockfrost_base_url: Optional[str] = None
    network: Optional[Network] = None
    network_magic: Optional[int] = None
    genesis_hash: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BlockchainConfig":
        """Build a config from camelCase keys; unknown keys are ignored."""
        if "era" not in data:
            raise ValueError("missing field `era`")
        era = data["era"]
        if not isinstance(era, int) or isinstance(era, bool):
            raise ValueError("`era` must be an integer")
        network = data.get("network")
        if network is not None:
            try:
                network = Network(network)
            except ValueError:
                raise ValueError(f"unknown network {network!r}") from None
        magic = data.get("networkMagic")
        if magic is not None and (not isinstance(magic, int) or isinstance(magic, bool)):
            raise ValueError("`networkMagic` must be an integer")
        socket = data.get("socket")
        key = data.get("blockfrostKey")
        return cls(
            era=era,
            socket=Path(socket) if socket is not None else None,
            blockfrost_key=Secret(key) if key is not None else None,
            blockfrost_base_url=data.get("blockfrostBaseUrl"),
            network=network,
            network_magic=magic,
            genesis_hash=data.get("genesisHash"),
        )

    def resolved_magic(self) -> int:
        if self.network_magic is not None:
            return self.network_magic
        return _MAGICS[self.network or Network.MAINNET]

    def resolved_genesis_hash(self) -> str:
        if self.genesis_hash is not None:
            return self.genesis_hash
        return _GENESIS_HASHES[self.network or Network.MAINNET]


@dataclass(frozen=True)
class RollForward:
    block: BlockInfo
    tip: BlockReference


@dataclass(frozen=True)
class RollBackward:
    point: BlockReference
    tip: BlockReference


RequestNextResponse = Union[RollForward, RollBackward]


class ChainSyncClient(ABC):
    """Follows the chain, one block or rollback at a time."""

    @abstractmethod
    async def request_next(self) -> RequestNextResponse:
        """Wait for and return the next change to the chain."""

    @abstractmethod
    async def find_intersect(
        self, points: Sequence[BlockReference]
    ) -> Tuple[Optional[BlockReference], BlockReference]:
        """Move to the first known point; return it (or None) and the tip."""


@dataclass(frozen=True)
class TxoRef:
    tx_hash: bytes
    tx_index: int


@dataclass(frozen=True)
class Utxo:
    ref: TxoRef
    body: bytes


@dataclass
class UtxoPage:
    utxos: list
    next_token: Optional[str] = None


@dataclass(frozen=True)
class UtxoPattern:
    address: Optional[bytes] = None
    asset: Optional[Any] = None


class LedgerError(Exception):
    """A ledger query failed."""


class LedgerNotFoundError(LedgerError):
    def __init__(self, ref: TxoRef) -> None:
        super().__init__(f"utxo not found: {ref.tx_hash.hex()}#{ref.tx_index}")
        self.ref = ref


class LedgerUpstreamError(LedgerError):
    """The backing service reported an error."""


class LedgerInternalError(LedgerError):
    """The request could not be served."""


class UtxoLedger(ABC):
    """A source of unspent outputs and protocol parameters."""

    @abstractmethod
    async def get_utxos(self, refs: Sequence[TxoRef]) -> list:
        """Return the outputs found for refs, in the order of refs."""

    @abstractmethod
    async def get_utxos_by_address(
        self, address: bytes, start: Optional[str], max_items: int
    ) -> UtxoPage:
        """Return one page of the outputs held by an address."""

    @abstractmethod
    async def get_params(self) -> Any:
        """Return the current protocol parameters."""


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


class LedgerProvider:
    """Adapts a UtxoLedger to the queries contracts make."""

    def __init__(self, ledger: UtxoLedger) -> None:
        self.ledger = ledger

    async def read_utxos(self, refs: Sequence[TxoRef]) -> list:
        ordered = sorted(refs, key=lambda r: (r.tx_hash, r.tx_index))
        try:
            txos = list(await self.ledger.get_utxos(ordered))
        except Exception as error:
            raise LedgerUpstreamError(str(error)) from error
        for requested, found in zip(ordered, txos):
            if found.ref != requested:
                raise LedgerNotFoundError(requested)
        if len(ordered) > len(txos):
            raise LedgerNotFoundError(ordered[len(txos)])
        return txos

    async def read_params(self) -> bytes:
        try:
            params = await self.ledger.get_params()
        except Exception as error:
            raise LedgerUpstreamError(str(error)) from error
        try:
            return json.dumps(_to_jsonable(params)).encode()
        except (TypeError, ValueError) as error:
            raise LedgerInternalError(str(error)) from error

    async def search_utxos(
        self, pattern: UtxoPattern, start: Optional[str], max_items: int
    ) -> UtxoPage:
        if pattern.asset is not None:
            raise LedgerInternalError("querying by asset is not implemented")
        if pattern.address is None:
            raise LedgerInternalError("address is required")
        try:
            return await self.ledger.get_utxos_by_address(pattern.address, start, max_items)
        except Exception as error:
            raise LedgerInternalError(str(error)) from error