from fractions import Fraction

import pytest

from firefly_cardano.params import (
    CostModels,
    ExUnits,
    ProtocolVersion,
    ex_units,
    f64_to_rational,
    pparams_from_blockfrost,
    string_to_num,
    voting_thresholds,
)


def close(rational, value):
    return rational.denominator > 0 and abs(rational.numerator / rational.denominator - value) < 1e-9


@pytest.mark.parametrize("value", [0.5, 0.25, 0.3, 0.003, 0.0577, 0.0000721, 2.0, 0.0])
def test_rational_approximates_value(value):
    r = f64_to_rational(value)
    assert r.denominator > 0
    assert r.numerator / r.denominator == pytest.approx(value, abs=1e-9)


@pytest.mark.parametrize("value", [0.5, 0.25, 2.0])
def test_exact_values_are_exact(value):
    r = f64_to_rational(value)
    assert Fraction(r.numerator, r.denominator) == Fraction(value)


def test_rational_is_reduced_and_signed():
    r = f64_to_rational(-0.25)
    assert r.numerator < 0
    assert Fraction(r.numerator, r.denominator) == Fraction(-0.25)
    assert Fraction(r.numerator, r.denominator).denominator == r.denominator


def test_rational_rejects_nan():
    with pytest.raises(ValueError):
        f64_to_rational(float("nan"))


def test_string_to_num():
    assert string_to_num("42") == 42
    assert string_to_num(None) == 0
    assert string_to_num("abc") == 0
    assert string_to_num("1.5") == 0
    assert string_to_num("1.5", float) == 1.5


def test_ex_units():
    assert ex_units("10", "20") == ExUnits(steps=10, memory=20)
    assert ex_units(None, "20") is None
    assert ex_units("x", "1") is None


def test_voting_thresholds():
    assert voting_thresholds([0.5, None]) is None
    result = voting_thresholds([0.5, 0.25])
    assert [close(r, v) for r, v in zip(result, [0.5, 0.25])] == [True, True]
    assert len(result) == 2


def sample():
    raw = {
        "coins_per_utxo_size": "4310",
        "max_tx_size": 16384,
        "min_fee_a": 44,
        "min_fee_b": 155381,
        "max_block_size": 90112,
        "max_block_header_size": 1100,
        "key_deposit": "2000000",
        "pool_deposit": "500000000",
        "e_max": 18,
        "n_opt": 500,
        "a0": 0.3,
        "rho": 0.003,
        "tau": 0.2,
        "min_pool_cost": "170000000",
        "protocol_major_ver": 9,
        "protocol_minor_ver": 0,
        "max_val_size": "5000",
        "collateral_percent": 150,
        "max_collateral_inputs": 3,
        "cost_models_raw": {"PlutusV1": [1, 2, 3], "PlutusV2": "x"},
        "price_step": 0.0000721,
        "price_mem": 0.0577,
        "max_tx_ex_steps": "10000000000",
        "max_tx_ex_mem": "14000000",
        "max_block_ex_steps": "20000000000",
        "max_block_ex_mem": None,
        "committee_min_size": "7",
        "drep_deposit": "500000000",
    }
    for name in ("pvt_motion_no_confidence", "pvt_committee_normal",
                 "pvt_committee_no_confidence", "pvt_hard_fork_initiation",
                 "pvt_p_p_security_group"):
        raw[name] = 0.51
    return raw


def test_pparams_from_blockfrost():
    p = pparams_from_blockfrost(sample())
    assert p.coins_per_utxo_byte == 4310
    assert p.max_tx_size == 16384
    assert p.min_fee_coefficient == 44
    assert p.stake_key_deposit == 2000000
    assert p.protocol_version == ProtocolVersion(9, 0)
    assert close(p.pool_influence, 0.3)
    assert close(p.price_memory, 0.0577)
    assert p.cost_models == CostModels(plutus_v1=[1, 2, 3])
    assert p.max_execution_units_per_transaction == ExUnits(10000000000, 14000000)
    assert p.max_execution_units_per_block is None
    assert len(p.pool_voting_thresholds) == 5
    assert p.drep_voting_thresholds is None
    assert p.min_committee_size == 7
    assert p.governance_action_deposit == 0


def test_pparams_bad_deposit():
    raw = sample()
    raw["key_deposit"] = "abc"
    with pytest.raises(ValueError):
        pparams_from_blockfrost(raw)


def test_pparams_missing_field():
    raw = sample()
    del raw["min_fee_a"]
    with pytest.raises(ValueError, match="min_fee_a"):
        pparams_from_blockfrost(raw)


def test_pparams_bad_cost_model_value():
    raw = sample()
    raw["cost_models_raw"] = {"PlutusV3": [1, "two"]}
    with pytest.raises(ValueError):
        pparams_from_blockfrost(raw)