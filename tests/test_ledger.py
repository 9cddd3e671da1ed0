from __future__ import annotations

import fakeredis
import pytest

from zeroshot.accounts import (
    UNVERIFIED_STARTING_BALANCE,
    VERIFIED_STARTING_BALANCE,
    bootstrap_account,
    get_account,
    record_event,
    settlement_for,
)
from zeroshot.api.models import Account
from zeroshot.errors import LedgerInvariantViolation, ValidationError


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


def _reconciles(account: Account) -> bool:
    total = 0
    for t in account.tx_history:
        if t.type in ("deposit", "win", "refund"):
            total += t.amount
        elif t.type == "stake":
            total -= t.amount
    return total == account.balance


def test_bootstrap_creates_once(r: fakeredis.FakeRedis) -> None:
    acct = bootstrap_account(r=r, account_key="Pilot@Example.com", verified=True)
    assert acct.balance == VERIFIED_STARTING_BALANCE
    assert acct.username == "pilot"
    assert [t.type for t in acct.tx_history] == ["deposit"]

    again = bootstrap_account(r=r, account_key="Pilot@Example.com", verified=False, username="other")
    assert again == acct

    demo = bootstrap_account(r=r, account_key="guest", verified=False)
    assert demo.balance == UNVERIFIED_STARTING_BALANCE


def test_stake_then_win(r: fakeredis.FakeRedis) -> None:
    bootstrap_account(r=r, account_key="p", verified=True)
    stake = record_event(r=r, account_key="p", type="stake", amount=10, session_id=1234)
    assert stake is not None
    win = record_event(r=r, account_key="p", type="win", amount=20, session_id=1234)
    assert win is not None

    acct = get_account(r=r, account_key="p")
    assert acct is not None
    assert acct.balance == 510
    assert acct.total_staked == 10
    assert acct.wins == 1
    assert settlement_for(account=acct, session_id=1234) == win
    assert _reconciles(acct)


def test_loss_keeps_balance_and_counts(r: fakeredis.FakeRedis) -> None:
    bootstrap_account(r=r, account_key="p", verified=True)
    record_event(r=r, account_key="p", type="stake", amount=10, session_id=1234)
    record_event(r=r, account_key="p", type="loss", amount=10, session_id=1234)

    acct = get_account(r=r, account_key="p")
    assert acct is not None
    assert acct.balance == 490
    assert acct.losses == 1
    assert _reconciles(acct)


def test_events_are_idempotent_per_session_and_type(r: fakeredis.FakeRedis) -> None:
    bootstrap_account(r=r, account_key="p", verified=True)
    record_event(r=r, account_key="p", type="stake", amount=10, session_id=1234)
    assert record_event(r=r, account_key="p", type="stake", amount=10, session_id=1234) is None
    record_event(r=r, account_key="p", type="refund", amount=10, session_id=1234)
    assert record_event(r=r, account_key="p", type="refund", amount=10, session_id=1234) is None

    acct = get_account(r=r, account_key="p")
    assert acct is not None
    assert acct.balance == 500
    assert [t.type for t in acct.tx_history] == ["deposit", "stake", "refund"]
    assert _reconciles(acct)


def test_settlements_are_mutually_exclusive(r: fakeredis.FakeRedis) -> None:
    bootstrap_account(r=r, account_key="p", verified=True)
    record_event(r=r, account_key="p", type="stake", amount=10, session_id=1234)
    record_event(r=r, account_key="p", type="refund", amount=10, session_id=1234)

    with pytest.raises(LedgerInvariantViolation):
        record_event(r=r, account_key="p", type="win", amount=20, session_id=1234)

    acct = get_account(r=r, account_key="p")
    assert acct is not None
    assert acct.balance == 500
    assert acct.wins == 0


def test_settlement_needs_a_stake(r: fakeredis.FakeRedis) -> None:
    bootstrap_account(r=r, account_key="p", verified=True)
    with pytest.raises(LedgerInvariantViolation):
        record_event(r=r, account_key="p", type="refund", amount=10, session_id=4321)


def test_stake_over_balance_is_rejected(r: fakeredis.FakeRedis) -> None:
    bootstrap_account(r=r, account_key="p", verified=False)
    with pytest.raises(ValidationError):
        record_event(r=r, account_key="p", type="stake", amount=UNVERIFIED_STARTING_BALANCE + 1, session_id=1234)


def test_unknown_account(r: fakeredis.FakeRedis) -> None:
    with pytest.raises(ValueError):
        record_event(r=r, account_key="nobody", type="stake", amount=1, session_id=1234)
