from __future__ import annotations

from collections.abc import Generator

import redis
from fastapi import HTTPException, status
from fastapi.requests import HTTPConnection

from zeroshot.infra.redis_client import create_redis
from zeroshot.runtime import SessionRuntime


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        client.close()


def get_runtime(conn: HTTPConnection) -> SessionRuntime:
    """The process-wide runtime created at startup."""

    runtime: SessionRuntime | None = getattr(conn.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Session runtime not started")
    return runtime
