from __future__ import annotations

import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from zeroshot.accounts import bootstrap_account, get_account
from zeroshot.api.deps import get_redis, get_runtime
from zeroshot.api.models import (
    Account,
    CommandRequest,
    ProfileCreateRequest,
    SessionCreateRequest,
    SessionResponse,
    SessionView,
)
from zeroshot.commands import normalize
from zeroshot.runtime import SessionRuntime
from zeroshot.streams import Mailbox, read_mailbox
from zeroshot.websocket_hub import hub, session_event

logger = logging.getLogger(__name__)

router = APIRouter()


def _response(runtime: SessionRuntime) -> SessionResponse:
    state = runtime.state
    return SessionResponse(session=SessionView.of(state) if state.session_id else None, account=runtime.account())


async def _broadcast(runtime: SessionRuntime) -> None:
    await hub.broadcast(runtime.account_key, session_event(runtime.state))


@router.websocket("/ws/session")
async def session_updates_ws(websocket: WebSocket, runtime: SessionRuntime = Depends(get_runtime)) -> None:
    key = runtime.account_key
    await hub.connect(key, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(key, websocket)
    except Exception:
        await hub.disconnect(key, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/profile", response_model=Account, status_code=status.HTTP_201_CREATED)
async def create_profile_route(payload: ProfileCreateRequest, r: redis.Redis = Depends(get_redis)) -> Account:
    return bootstrap_account(r=r, account_key=payload.account_key, verified=payload.verified, username=payload.username)


@router.get("/profile/{account_key}", response_model=Account)
async def get_profile_route(account_key: str, r: redis.Redis = Depends(get_redis)) -> Account:
    account = get_account(r=r, account_key=account_key)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return account


@router.get("/profile/{account_key}/alerts")
async def get_alerts_route(account_key: str, count: int = 20, r: redis.Redis = Depends(get_redis)) -> dict[str, object]:
    """Read an account's alert stream (enemy attacks, settlements, low balance)."""

    if count < 1 or count > 200:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 200")

    mailbox = Mailbox(account_key=account_key)
    entries = read_mailbox(r=r, mailbox=mailbox, count=count)
    alerts = [{"id": mid, "fields": fields} for mid, fields in entries]
    return {"account_key": account_key, "stream": mailbox.key, "alerts": alerts}


@router.post("/session", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    payload: SessionCreateRequest,
    runtime: SessionRuntime = Depends(get_runtime),
) -> SessionResponse:
    try:
        if payload.account_key is not None and payload.account_key != runtime.account_key:
            raise ValueError(f"This deployment serves account {runtime.account_key!r}")
        runtime.start_session(stake=payload.stake)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    await _broadcast(runtime)
    return _response(runtime)


@router.get("/session", response_model=SessionResponse)
async def get_session_route(runtime: SessionRuntime = Depends(get_runtime)) -> SessionResponse:
    return _response(runtime)


@router.post("/session/commands", response_model=SessionResponse)
async def session_command_route(
    payload: CommandRequest,
    runtime: SessionRuntime = Depends(get_runtime),
) -> SessionResponse:
    try:
        command = normalize(payload)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    if command is None:
        logger.debug("unrecognized %s command ignored: %r", payload.source, payload.transcript)
        return _response(runtime)

    try:
        await runtime.handle(command)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    await _broadcast(runtime)
    return _response(runtime)


@router.post("/session/abort", response_model=SessionResponse)
async def abort_session_route(runtime: SessionRuntime = Depends(get_runtime)) -> SessionResponse:
    runtime.abort()
    await _broadcast(runtime)
    return _response(runtime)
