from __future__ import annotations

import os
import random
from collections.abc import Generator
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient

from zeroshot.accounts import bootstrap_account
from zeroshot.config import Settings
from zeroshot.prover.mock import MockProver
from zeroshot.runtime import SessionRuntime

ACCOUNT = "pilot@example.com"


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs; CI stays on the defaults unless opted in."""

    if os.environ.get("CI") and os.environ.get("ZEROSHOT_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


class FixedUnitRandom(random.Random):
    """Seeded RNG with the opponent unit and the opening toss pinned.

    toss < 0.5 gives the player the first turn.
    """

    def __init__(self, unit: int, toss: float = 0.0, seed: int = 7) -> None:
        super().__init__(seed)
        self.unit = unit
        # Instance attribute: a class-level random() would also replace the integer draws.
        self.random = lambda: toss

    def randrange(self, start, stop=None, step=1) -> int:
        if stop is None:
            return self.unit
        return super().randrange(start, stop, step)


class ScriptedStrikes:
    """Opponent policy that strikes a fixed sequence of cells."""

    def __init__(self, *cells: int) -> None:
        self.cells = list(cells)

    def choose(self, *, state) -> int | None:
        from zeroshot.core.reducer import REVEALED

        while self.cells:
            cell = self.cells.pop(0)
            if state.my_grid[cell] not in REVEALED:
                return cell
        return None


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def settings() -> Settings:
    return Settings(stage_timeout_s=1.0, account_key=ACCOUNT)


@pytest.fixture()
def prover() -> MockProver:
    return MockProver()


@pytest.fixture()
def make_runtime(r, settings, prover):
    """Factory so recovery tests can build a second runtime over the same Redis."""

    def _make(*, strikes: tuple[int, ...] = (), **overrides) -> SessionRuntime:
        kwargs = {
            "r": r,
            "account_key": ACCOUNT,
            "prover": prover,
            "settings": settings,
            "policy": ScriptedStrikes(*strikes),
            "rng": FixedUnitRandom(5),
        }
        kwargs.update(overrides)
        return SessionRuntime(**kwargs)

    return _make


@pytest.fixture()
def runtime(r, make_runtime) -> SessionRuntime:
    bootstrap_account(r=r, account_key=ACCOUNT, verified=True)
    return make_runtime()


@pytest.fixture()
def client_and_runtime(r, make_runtime) -> Generator[tuple[TestClient, SessionRuntime], None, None]:
    """TestClient wired to fakeredis and a runtime with a scripted opponent."""

    from zeroshot.api.deps import get_redis
    from zeroshot.main import app

    runtime = make_runtime()

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.state.runtime = runtime
    with TestClient(app) as c:
        yield c, runtime
    app.dependency_overrides.clear()
    app.state.runtime = None


@pytest.fixture()
def account_key() -> str:
    return ACCOUNT


@pytest.fixture()
def fixed_rng():
    """Build a FixedUnitRandom(unit, toss=...) for runtimes with a pinned opening."""

    return FixedUnitRandom
