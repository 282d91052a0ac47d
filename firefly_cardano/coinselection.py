"""A simple coin selection strategy for building transactions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping

from .chain import TxoRef

_UNKNOWN_FEE_ESTIMATE = 2_000_000


class OutputsTooHighError(Exception):
    """The available outputs cannot cover the requested value."""


@dataclass(frozen=True)
class Value:
    """Lovelace plus native assets, keyed by policy id then asset name."""

    coin: int
    assets: Mapping[bytes, Mapping[bytes, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class UnspentOutput:
    ref: TxoRef
    value: Value


def select_coins(
    utxos: Iterable[UnspentOutput], target: Value, estimated_fee: int
) -> List[TxoRef]:
    """Pick outputs, in order of reference, until they cover target plus the fee.

    An unknown fee (zero) is overestimated so that enough outputs are chosen.
    """
    fee = _UNKNOWN_FEE_ESTIMATE if estimated_fee == 0 else estimated_fee
    target_lovelace = target.coin + fee
    target_assets: Dict[bytes, Dict[bytes, int]] = {
        policy: dict(assets) for policy, assets in target.assets.items()
    }

    def satisfied() -> bool:
        return lovelace_so_far >= target_lovelace and not target_assets

    inputs: List[TxoRef] = []
    lovelace_so_far = 0
    for utxo in sorted(utxos, key=lambda u: (u.ref.tx_hash, u.ref.tx_index)):
        coin = utxo.value.coin
        useful = coin != 0 and lovelace_so_far < target_lovelace
        for policy, assets in utxo.value.assets.items():
            wanted = target_assets.get(policy)
            if wanted is None:
                continue
            for name, amount in assets.items():
                if name not in wanted or not amount:
                    continue
                useful = True
                if amount < wanted[name]:
                    wanted[name] -= amount
                else:
                    del wanted[name]
            if not wanted:
                del target_assets[policy]
        if not useful:
            continue
        inputs.append(utxo.ref)
        lovelace_so_far += coin
        if satisfied():
            break
    if not satisfied():
        raise OutputsTooHighError("outputs too high for the available inputs")
    return inputs