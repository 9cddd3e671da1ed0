import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

# .env must be loaded before settings are read for the first time.
load_dotenv(override=False)

from zeroshot.api.routes import router  # noqa: E402
from zeroshot.config import get_settings  # noqa: E402
from zeroshot.infra.redis_client import create_redis  # noqa: E402
from zeroshot.prover.factory import create_prover  # noqa: E402
from zeroshot.runtime import SessionRuntime  # noqa: E402

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def build_runtime() -> SessionRuntime:
    s = get_settings()
    return SessionRuntime(r=create_redis(), account_key=s.account_key, prover=create_prover(s), settings=s)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Tests install their own runtime before the app starts.
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = build_runtime()
    runtime: SessionRuntime = app.state.runtime
    state = runtime.recover()
    logger.info("runtime ready for %s (session %s, phase %s)", runtime.account_key, state.session_id, state.phase.value)
    try:
        yield
    finally:
        await runtime.aclose()
        app.state.runtime = None


app = FastAPI(title="zeroshot", version="0.1.0", lifespan=lifespan)
app.include_router(router)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "zeroshot", "version": "0.1.0"}
