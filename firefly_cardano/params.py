"""Protocol parameters, as reported by a Blockfrost-style API."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple, TypeVar

N = TypeVar("N")

_I32_MAX = 2**31 - 1
_MAX_ERROR = 10e-20
_MAX_ITERATIONS = 30


@dataclass(frozen=True)
class RationalNumber:
    numerator: int
    denominator: int


@dataclass(frozen=True)
class ExUnits:
    steps: int
    memory: int


@dataclass(frozen=True)
class ProtocolVersion:
    major: int
    minor: int


@dataclass(frozen=True)
class CostModels:
    plutus_v1: Optional[List[int]] = None
    plutus_v2: Optional[List[int]] = None
    plutus_v3: Optional[List[int]] = None


@dataclass(frozen=True)
class PParams:
    coins_per_utxo_byte: int
    max_tx_size: int
    min_fee_coefficient: int
    min_fee_constant: int
    max_block_body_size: int
    max_block_header_size: int
    stake_key_deposit: int
    pool_deposit: int
    pool_retirement_epoch_bound: int
    desired_number_of_pools: int
    pool_influence: RationalNumber
    monetary_expansion: RationalNumber
    treasury_expansion: RationalNumber
    min_pool_cost: int
    protocol_version: ProtocolVersion
    max_value_size: int
    collateral_percentage: int
    max_collateral_inputs: int
    cost_models: Optional[CostModels]
    price_steps: Optional[RationalNumber]
    price_memory: Optional[RationalNumber]
    max_execution_units_per_transaction: Optional[ExUnits]
    max_execution_units_per_block: Optional[ExUnits]
    min_fee_script_ref_cost_per_byte: Optional[RationalNumber]
    pool_voting_thresholds: Optional[List[RationalNumber]]
    drep_voting_thresholds: Optional[List[RationalNumber]]
    min_committee_size: int
    committee_term_limit: int
    governance_action_validity_period: int
    governance_action_deposit: int
    drep_deposit: int
    drep_inactivity_period: int


def _approximate(value: float) -> Optional[Tuple[int, int]]:
    """Continued-fraction approximation of a non-negative float within 32-bit bounds."""
    t_max_f = float(_I32_MAX)
    epsilon = 1.0 / t_max_f
    if value > t_max_f:
        return None
    q = value
    n0, d0, n1, d1 = 0, 1, 1, 0
    for _ in range(_MAX_ITERATIONS):
        if not q <= t_max_f:
            break
        a = int(q)
        f = q - float(a)
        if a > 0 and (
            n1 > _I32_MAX // a
            or d1 > _I32_MAX // a
            or a * n1 > _I32_MAX - n0
            or a * d1 > _I32_MAX - d0
        ):
            break
        n = a * n1 + n0
        d = a * d1 + d0
        n0, d0 = n1, d1
        g = math.gcd(n, d)
        n1, d1 = (n // g, d // g) if g else (n, d)
        if abs(n / d - value) < _MAX_ERROR:
            break
        if f < epsilon:
            break
        q = 1.0 / f
    if d1 == 0:
        return None
    g = math.gcd(n1, d1)
    return n1 // g, d1 // g


def f64_to_rational(value: float) -> RationalNumber:
    """The closest fraction with 32-bit terms that continued fractions reach."""
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"cannot represent {value} as a ratio")
    ratio = _approximate(abs(value))
    if ratio is None:
        raise ValueError(f"cannot represent {value} as a ratio")
    numerator, denominator = ratio
    return RationalNumber(-numerator if value < 0 else numerator, denominator)


def string_to_num(value: Optional[str], kind: Callable[..., N] = int) -> N:
    """Parse value as kind, or fall back to kind's zero when absent or malformed."""
    if value is None or value != value.strip():
        return kind()
    try:
        return kind(value)
    except (TypeError, ValueError):
        return kind()


def ex_units(steps: Optional[str], memory: Optional[str]) -> Optional[ExUnits]:
    """Execution units, or None unless both parts are present and numeric."""
    if steps is None or memory is None:
        return None
    try:
        return ExUnits(steps=int(steps), memory=int(memory))
    except ValueError:
        return None


def voting_thresholds(thresholds: Iterable[Optional[float]]) -> Optional[List[RationalNumber]]:
    """All thresholds as fractions, or None if any one is missing."""
    result = []
    for threshold in thresholds:
        if threshold is None:
            return None
        result.append(f64_to_rational(threshold))
    return result


def _required(raw: Mapping[str, Any], name: str) -> Any:
    try:
        return raw[name]
    except KeyError:
        raise ValueError(f"missing field `{name}`") from None


def _parse_int(raw: Mapping[str, Any], name: str) -> int:
    text = _required(raw, name)
    try:
        return int(text)
    except (TypeError, ValueError):
        raise ValueError(f"`{name}` is not an integer: {text!r}") from None


def _cost_models(models: Optional[Mapping[str, Any]]) -> Optional[CostModels]:
    if models is None:
        return None

    def extract(name: str) -> Optional[List[int]]:
        values = models.get(name)
        if not isinstance(values, list):
            return None
        for item in values:
            if isinstance(item, bool) or not isinstance(item, int):
                raise ValueError(f"cost model {name} holds a non-integer {item!r}")
        return list(values)

    return CostModels(
        plutus_v1=extract("PlutusV1"),
        plutus_v2=extract("PlutusV2"),
        plutus_v3=extract("PlutusV3"),
    )


def _optional_rational(value: Optional[float]) -> Optional[RationalNumber]:
    return None if value is None else f64_to_rational(value)


def pparams_from_blockfrost(raw: Mapping[str, Any]) -> PParams:
    """Build protocol parameters from a latest-epoch-parameters response."""
    get = raw.get
    return PParams(
        coins_per_utxo_byte=string_to_num(get("coins_per_utxo_size")),
        max_tx_size=int(_required(raw, "max_tx_size")),
        min_fee_coefficient=int(_required(raw, "min_fee_a")),
        min_fee_constant=int(_required(raw, "min_fee_b")),
        max_block_body_size=int(_required(raw, "max_block_size")),
        max_block_header_size=int(_required(raw, "max_block_header_size")),
        stake_key_deposit=_parse_int(raw, "key_deposit"),
        pool_deposit=_parse_int(raw, "pool_deposit"),
        pool_retirement_epoch_bound=int(_required(raw, "e_max")),
        desired_number_of_pools=int(_required(raw, "n_opt")),
        pool_influence=f64_to_rational(_required(raw, "a0")),
        monetary_expansion=f64_to_rational(_required(raw, "rho")),
        treasury_expansion=f64_to_rational(_required(raw, "tau")),
        min_pool_cost=_parse_int(raw, "min_pool_cost"),
        protocol_version=ProtocolVersion(
            major=int(_required(raw, "protocol_major_ver")),
            minor=int(_required(raw, "protocol_minor_ver")),
        ),
        max_value_size=string_to_num(get("max_val_size")),
        collateral_percentage=int(get("collateral_percent") or 0),
        max_collateral_inputs=int(get("max_collateral_inputs") or 0),
        cost_models=_cost_models(get("cost_models_raw")),
        price_steps=_optional_rational(get("price_step")),
        price_memory=_optional_rational(get("price_mem")),
        max_execution_units_per_transaction=ex_units(
            get("max_tx_ex_steps"), get("max_tx_ex_mem")
        ),
        max_execution_units_per_block=ex_units(
            get("max_block_ex_steps"), get("max_block_ex_mem")
        ),
        min_fee_script_ref_cost_per_byte=_optional_rational(
            get("min_fee_ref_script_cost_per_byte")
        ),
        pool_voting_thresholds=voting_thresholds(
            get(name)
            for name in (
                "pvt_motion_no_confidence",
                "pvt_committee_normal",
                "pvt_committee_no_confidence",
                "pvt_hard_fork_initiation",
                "pvt_p_p_security_group",
            )
        ),
        drep_voting_thresholds=voting_thresholds(
            get(name)
            for name in (
                "dvt_motion_no_confidence",
                "dvt_committee_normal",
                "dvt_committee_no_confidence",
                "dvt_update_to_constitution",
                "dvt_hard_fork_initiation",
                "dvt_p_p_network_group",
                "dvt_p_p_economic_group",
                "dvt_p_p_technical_group",
                "dvt_p_p_gov_group",
                "dvt_treasury_withdrawal",
            )
        ),
        min_committee_size=string_to_num(get("committee_min_size")),
        committee_term_limit=string_to_num(get("committee_max_term_length")),
        governance_action_validity_period=string_to_num(get("gov_action_lifetime")),
        governance_action_deposit=string_to_num(get("gov_action_deposit")),
        drep_deposit=string_to_num(get("drep_deposit")),
        drep_inactivity_period=string_to_num(get("drep_activity")),
    )