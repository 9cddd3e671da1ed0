from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().casefold() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"

    min_stake: int = 1
    max_stake: int = 50
    default_stake: int = 10

    # Seconds allowed for each prover/verifier call before it counts as a failure.
    stage_timeout_s: float = 30.0

    # When False, a failed verification withholds the turn until a Retry command.
    restore_turn_on_failure: bool = True

    # Remote prover service; unset means the in-process mock prover.
    prover_url: str | None = None

    # Identity used by the HTTP API when a request does not name one.
    account_key: str = "local"


def load_settings() -> Settings:
    """Build settings from the environment.

    `zeroshot.main` loads `.env` before the first call.
    """

    return Settings(
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        log_level=os.environ.get("ZEROSHOT_LOG_LEVEL", "INFO").upper(),
        max_stake=int(os.environ.get("ZEROSHOT_MAX_STAKE", "50")),
        stage_timeout_s=float(os.environ.get("ZEROSHOT_STAGE_TIMEOUT_S", "30")),
        restore_turn_on_failure=_env_bool("ZEROSHOT_RESTORE_TURN_ON_FAILURE", True),
        prover_url=os.environ.get("ZEROSHOT_PROVER_URL") or None,
        account_key=os.environ.get("ZEROSHOT_ACCOUNT_KEY", "local"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
