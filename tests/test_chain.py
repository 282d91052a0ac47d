import json
from pathlib import Path

import pytest

from firefly_cardano.chain import (
    BlockchainConfig,
    BlockInfo,
    BlockReference,
    LedgerInternalError,
    LedgerNotFoundError,
    LedgerProvider,
    LedgerUpstreamError,
    Network,
    Secret,
    TxoRef,
    Utxo,
    UtxoLedger,
    UtxoPage,
    UtxoPattern,
)


class _FakeLedger(UtxoLedger):
    def __init__(self, utxos=(), error=None, params=None):
        self._by_ref = {u.ref: u for u in utxos}
        self.error = error
        self.params = params
        self.requested = None
        self.address_calls = []

    async def get_utxos(self, refs):
        self.requested = list(refs)
        if self.error:
            raise self.error
        return [self._by_ref[r] for r in refs if r in self._by_ref]

    async def get_utxos_by_address(self, address, start, max_items):
        if self.error:
            raise self.error
        self.address_calls.append((address, start, max_items))
        return UtxoPage(utxos=list(self._by_ref.values()))

    async def get_params(self):
        if self.error:
            raise self.error
        return self.params


def test_secret_is_redacted():
    secret = Secret("placeholder")
    assert repr(secret) == "<redacted>"
    assert "placeholder" not in str(secret)
    assert secret.value == "placeholder"


def test_block_reference_origin():
    origin = BlockReference.origin()
    assert origin.is_origin()
    assert origin == BlockReference()
    assert not BlockReference.point(5, "ab").is_origin()


def test_block_reference_ordering():
    origin = BlockReference.origin()
    low = BlockReference.point(1, "ff")
    high = BlockReference.point(2, "00")
    assert origin < low < high
    assert high >= low
    assert low <= low
    assert BlockReference.point(None, "zz") < low


def test_point_requires_hash():
    with pytest.raises(ValueError):
        BlockReference.point(1, None)


def test_block_info_as_reference():
    info = BlockInfo(block_hash="abcd", block_height=3, block_slot=7)
    assert info.as_reference() == BlockReference.point(7, "abcd")


def test_config_defaults_to_mainnet():
    config = BlockchainConfig.from_dict({"era": 6})
    assert config.resolved_magic() == 764824073
    assert (
        config.resolved_genesis_hash()
        == "5f20df933584822601f9e3f8c024eb5eb252fe8cefb24d1317dc3d432e940ebb"
    )


@pytest.mark.parametrize(
    "network,magic,genesis",
    [
        ("preprod", 1, "f28f1c1280ea0d32f8cd3143e268650d6c1a8e221522ce4a7d20d62fc09783e1"),
        ("preview", 2, "83de1d7302569ad56cf9139a41e2e11346d4cb4a31c00142557b6ab3fa550761"),
    ],
)
def test_config_networks(network, magic, genesis):
    config = BlockchainConfig.from_dict({"era": 6, "network": network})
    assert config.network == Network(network)
    assert config.resolved_magic() == magic
    assert config.resolved_genesis_hash() == genesis


def test_config_overrides():
    config = BlockchainConfig.from_dict(
        {
            "era": 6,
            "network": "preview",
            "networkMagic": 42,
            "genesisHash": "beef",
            "socket": "/tmp/node.socket",
            "blockfrostKey": "placeholder",
            "blockfrostBaseUrl": "http://localhost:3000",
        }
    )
    assert config.resolved_magic() == 42
    assert config.resolved_genesis_hash() == "beef"
    assert config.socket == Path("/tmp/node.socket")
    assert config.blockfrost_key.value == "placeholder"
    assert config.blockfrost_base_url == "http://localhost:3000"


def test_config_requires_era():
    with pytest.raises(ValueError):
        BlockchainConfig.from_dict({"network": "mainnet"})


def test_config_rejects_unknown_network():
    with pytest.raises(ValueError):
        BlockchainConfig.from_dict({"era": 6, "network": "moonnet"})


def _utxo(hash_byte, index):
    return Utxo(TxoRef(bytes([hash_byte]) * 4, index), b"body")


@pytest.mark.asyncio
async def test_read_utxos_sorts_refs():
    utxos = [_utxo(2, 0), _utxo(1, 1), _utxo(1, 0)]
    ledger = _FakeLedger(utxos)
    provider = LedgerProvider(ledger)
    refs = [u.ref for u in utxos]
    result = await provider.read_utxos(refs)
    expected = sorted(refs, key=lambda r: (r.tx_hash, r.tx_index))
    assert ledger.requested == expected
    assert [u.ref for u in result] == expected


@pytest.mark.asyncio
async def test_read_utxos_missing_in_middle():
    present = [_utxo(1, 0), _utxo(3, 0)]
    missing = TxoRef(bytes([2]) * 4, 0)
    provider = LedgerProvider(_FakeLedger(present))
    with pytest.raises(LedgerNotFoundError) as info:
        await provider.read_utxos([present[0].ref, missing, present[1].ref])
    assert info.value.ref == missing


@pytest.mark.asyncio
async def test_read_utxos_missing_at_end():
    present = [_utxo(1, 0)]
    missing = TxoRef(bytes([9]) * 4, 0)
    provider = LedgerProvider(_FakeLedger(present))
    with pytest.raises(LedgerNotFoundError) as info:
        await provider.read_utxos([missing, present[0].ref])
    assert info.value.ref == missing


@pytest.mark.asyncio
async def test_read_utxos_wraps_upstream_errors():
    provider = LedgerProvider(_FakeLedger(error=RuntimeError("boom")))
    with pytest.raises(LedgerUpstreamError, match="boom"):
        await provider.read_utxos([TxoRef(b"\x01", 0)])


@pytest.mark.asyncio
async def test_read_params_is_json():
    params = {"maxTxSize": 16384, "minFeeConstant": 155381}
    provider = LedgerProvider(_FakeLedger(params=params))
    raw = await provider.read_params()
    assert json.loads(raw) == params


@pytest.mark.asyncio
async def test_read_params_upstream_error():
    provider = LedgerProvider(_FakeLedger(error=RuntimeError("down")))
    with pytest.raises(LedgerUpstreamError, match="down"):
        await provider.read_params()


@pytest.mark.asyncio
async def test_search_rejects_asset_queries():
    provider = LedgerProvider(_FakeLedger())
    with pytest.raises(LedgerInternalError, match="asset"):
        await provider.search_utxos(UtxoPattern(address=b"a", asset=b"x"), None, 10)


@pytest.mark.asyncio
async def test_search_requires_address():
    provider = LedgerProvider(_FakeLedger())
    with pytest.raises(LedgerInternalError, match="address is required"):
        await provider.search_utxos(UtxoPattern(), None, 10)


@pytest.mark.asyncio
async def test_search_passes_through():
    ledger = _FakeLedger([_utxo(1, 0)])
    provider = LedgerProvider(ledger)
    page = await provider.search_utxos(UtxoPattern(address=b"addr"), "2", 5)
    assert ledger.address_calls == [(b"addr", "2", 5)]
    assert [u.ref for u in page.utxos] == [_utxo(1, 0).ref]


@pytest.mark.asyncio
async def test_search_wraps_errors_as_internal():
    provider = LedgerProvider(_FakeLedger(error=RuntimeError("bad")))
    with pytest.raises(LedgerInternalError, match="bad"):
        await provider.search_utxos(UtxoPattern(address=b"addr"), None, 5)