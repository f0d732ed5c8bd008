"""
Tests for pack_batches: size bound, order, pair boundaries, budget prefix.
"""

from __future__ import annotations

import random

import pytest
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.pubkey import Pubkey

import burn_and_close as bc
from conftest import make_record

WALLET = Pubkey.new_unique()


def _groups(balances):
    records = [make_record(ui_amount=float(b), amount=b) for b in balances]
    return bc.build_instructions(records, WALLET, frozenset())


def test_thirty_pairs_pack_into_22_22_16():
    groups = _groups([1] * 30)

    batches = list(bc.pack_batches(groups, max_instructions=22))

    assert [len(b.instructions) for b in batches] == [22, 22, 16]
    assert [b.index for b in batches] == [1, 2, 3]


def test_pair_that_would_overflow_starts_new_batch():
    # 10 closes, then pairs: 10 + 2*5 = 20, next pair would make 22 > 21
    groups = _groups([0] * 10 + [1] * 6)

    batches = list(bc.pack_batches(groups, max_instructions=21))

    assert [len(b.instructions) for b in batches] == [20, 2]


@pytest.mark.parametrize("max_instructions", [2, 3, 7, 22])
def test_batches_respect_bound_and_reconstruct_sequence(max_instructions):
    rng = random.Random(max_instructions)
    groups = _groups([rng.choice([0, 0, 3]) for _ in range(47)])

    batches = list(bc.pack_batches(groups, max_instructions=max_instructions))

    assert all(0 < len(b.instructions) <= max_instructions for b in batches)
    rebuilt = [ix for b in batches for ix in b.instructions]
    assert rebuilt == bc.flatten(groups)


def test_pairs_never_split():
    groups = _groups([1, 0, 1, 1, 0, 1, 1, 1, 0, 1] * 3)

    for batch in bc.pack_batches(groups, max_instructions=5):
        covered = [ix for rec in batch.accounts for g in groups if g.record is rec for ix in g.instructions]
        assert covered == batch.instructions


def test_budget_instructions_lead_each_batch():
    groups = _groups([1] * 3)

    (batch,) = bc.pack_batches(groups, max_instructions=22, unit_price=1_000, unit_limit=200_000)

    txs = batch.transaction_instructions
    assert txs[0] == set_compute_unit_price(1_000)
    assert txs[1] == set_compute_unit_limit(200_000)
    assert txs[2:] == batch.instructions


def test_empty_input_yields_no_batches():
    assert list(bc.pack_batches([], max_instructions=22)) == []


def test_group_larger_than_bound_is_rejected():
    with pytest.raises(ValueError):
        list(bc.pack_batches(_groups([1]), max_instructions=1))


def test_packing_is_lazy_and_rederivable():
    groups = _groups([1] * 12)

    gen = bc.pack_batches(groups, max_instructions=22)
    first = next(gen)
    assert len(first.instructions) == 22

    again = list(bc.pack_batches(groups, max_instructions=22))
    assert [len(b.instructions) for b in again] == [22, 2]


def test_batch_rent_sums_account_lamports():
    records = [make_record(ui_amount=0.0, lamports=1_000), make_record(ui_amount=0.0, lamports=2_500)]
    groups = bc.build_instructions(records, WALLET, frozenset())

    (batch,) = bc.pack_batches(groups)

    assert batch.rent_lamports == 3_500
