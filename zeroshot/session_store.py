from __future__ import annotations

import logging
from datetime import UTC, datetime

import pydantic
import redis

from zeroshot.api.models import GamePhase, GameState
from zeroshot.errors import PersistenceCorruption

logger = logging.getLogger(__name__)

# One in-progress session per deployment, replaced in place after every mutation.
SESSION_KEY = "zeroshot:session"


def _now() -> datetime:
    return datetime.now(tz=UTC)


def save_session(*, r: redis.Redis, state: GameState) -> None:
    state.last_updated_at = _now()
    r.set(SESSION_KEY, state.model_dump_json())


def discard_session(*, r: redis.Redis) -> None:
    r.delete(SESSION_KEY)


def persist(*, r: redis.Redis, state: GameState) -> None:
    """Write the snapshot, or delete it once there is nothing left to resume."""

    if state.session_id == 0 or state.phase == GamePhase.ended:
        discard_session(r=r)
    else:
        save_session(r=r, state=state)


def load_session(*, r: redis.Redis) -> GameState | None:
    raw = r.get(SESSION_KEY)
    if not raw:
        return None
    try:
        return GameState.model_validate_json(raw)
    except pydantic.ValidationError as e:
        raise PersistenceCorruption(f"Snapshot at {SESSION_KEY} is malformed") from e


def get_session(*, r: redis.Redis) -> GameState | None:
    """Like load_session, but a malformed snapshot reads as absent."""

    try:
        return load_session(r=r)
    except PersistenceCorruption:
        logger.warning("discarding malformed session snapshot", exc_info=True)
        discard_session(r=r)
        return None
