"""Per-identity account records and the append-only stake ledger.

The ledger is the one piece of shared state that outlives a session. Every
write goes through `record_event`, which is idempotent per (session id, event
type) and refuses to settle a session twice, so recovery can be replayed on
every restart without double-crediting.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import uuid4

import redis

from zeroshot.api.models import SETTLEMENT_TYPES, Account, TxRecord, TxType
from zeroshot.errors import LedgerInvariantViolation, ValidationError

logger = logging.getLogger(__name__)

ACCOUNT_KEY_PREFIX = "zeroshot:account:"  # + {account_key}

VERIFIED_STARTING_BALANCE = 500
UNVERIFIED_STARTING_BALANCE = 200


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _account_key(account_key: str) -> str:
    return f"{ACCOUNT_KEY_PREFIX}{account_key}"


def new_tx_id() -> str:
    return "TX" + uuid4().hex[:16].upper()


def get_account(*, r: redis.Redis, account_key: str) -> Account | None:
    raw = r.get(_account_key(account_key))
    if not raw:
        return None
    return Account.model_validate_json(raw)


def require_account(*, r: redis.Redis, account_key: str) -> Account:
    account = get_account(r=r, account_key=account_key)
    if account is None:
        raise ValueError("Account not found")
    return account


def bootstrap_account(*, r: redis.Redis, account_key: str, verified: bool, username: str | None = None) -> Account:
    """Create the account on first sight of an identity; return the stored one afterwards.

    The starting deposit depends on the identity provider's verified flag.
    """

    existing = get_account(r=r, account_key=account_key)
    if existing is not None:
        return existing

    now = _now()
    amount = VERIFIED_STARTING_BALANCE if verified else UNVERIFIED_STARTING_BALANCE
    account = Account(
        account_key=account_key,
        username=(username or account_key.split("@")[0] or "operative").lower(),
        verified=verified,
        balance=amount,
        created_at=now,
        tx_history=[
            TxRecord(
                id=new_tx_id(),
                type="deposit",
                amount=amount,
                ts=now,
                label=f"Welcome ({'verified' if verified else 'demo'} account)",
            )
        ],
    )

    # NX: two racing bootstraps for the same identity create it once.
    created = r.set(_account_key(account_key), account.model_dump_json(), nx=True)
    if not created:
        return require_account(r=r, account_key=account_key)
    logger.info("account %s created with %s", account_key, amount)
    return account


def _apply_event(account: Account, *, type: TxType, amount: int, session_id: int, label: str) -> TxRecord | None:
    duplicate = account.find_event(session_id=session_id, type=type)
    if duplicate is not None:
        logger.info("ledger: %s for session %s already recorded (%s)", type, session_id, duplicate.id)
        return None

    if type in SETTLEMENT_TYPES:
        if account.find_event(session_id=session_id, type="stake") is None:
            raise LedgerInvariantViolation(f"Session {session_id} has no stake to settle")
        settled = settlement_for(account=account, session_id=session_id)
        if settled is not None:
            raise LedgerInvariantViolation(
                f"Session {session_id} already settled by {settled.type}; refusing {type}"
            )

    if type == "stake":
        if amount > account.balance:
            raise ValidationError(f"Insufficient balance ({account.balance})")
        account.balance -= amount
        account.total_staked += amount
    elif type == "win":
        account.balance += amount
        account.wins += 1
    elif type == "loss":
        # The stake was already taken at escrow; a loss only records the forfeit.
        account.losses += 1
    elif type == "refund":
        account.balance += amount
    else:
        raise ValidationError(f"Unsupported ledger event: {type}")

    rec = TxRecord(id=new_tx_id(), type=type, amount=amount, ts=_now(), label=label, session_id=session_id)
    account.tx_history.append(rec)
    return rec


def record_event(
    *,
    r: redis.Redis,
    account_key: str,
    type: TxType,
    amount: int,
    session_id: int,
    label: str = "",
) -> TxRecord | None:
    """Append one ledger event and update the balance atomically.

    Returns the new record, or None when this (session_id, type) event already exists.
    Raises LedgerInvariantViolation when the event would settle a session a second way.
    """

    key = _account_key(account_key)

    def _txn(pipe: redis.client.Pipeline) -> TxRecord | None:
        raw = pipe.get(key)
        if not raw:
            raise ValueError("Account not found")
        account = Account.model_validate_json(raw)
        rec = _apply_event(account, type=type, amount=amount, session_id=session_id, label=label)
        if rec is None:
            return None
        pipe.multi()
        pipe.set(key, account.model_dump_json())
        return rec

    return r.transaction(_txn, key, value_from_callable=True)


def session_events(*, account: Account, session_id: int) -> list[TxRecord]:
    return [t for t in account.tx_history if t.session_id == session_id]


def settlement_for(*, account: Account, session_id: int) -> TxRecord | None:
    return next((t for t in session_events(account=account, session_id=session_id) if t.type in SETTLEMENT_TYPES), None)
