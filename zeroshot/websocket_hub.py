from __future__ import annotations

import asyncio
from collections import defaultdict

from fastapi import WebSocket

from zeroshot.api.models import GameState


class SessionWebSocketHub:
    """In-process WebSocket fan-out keyed by account key.

    Connections join an account's channel with `connect(account_key, websocket)`;
    `broadcast` pushes a JSON dict to every socket on that channel. Sockets that
    fail to receive are dropped.
    """

    def __init__(self) -> None:
        self._by_account: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, account_key: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._by_account[account_key].add(websocket)

    async def disconnect(self, account_key: str, websocket: WebSocket) -> None:
        async with self._lock:
            conns = self._by_account.get(account_key)
            if not conns:
                return
            conns.discard(websocket)
            if not conns:
                self._by_account.pop(account_key, None)

    async def broadcast(self, account_key: str, payload: dict[str, object]) -> None:
        async with self._lock:
            conns = list(self._by_account.get(account_key, set()))

        if not conns:
            return

        dead: list[WebSocket] = []
        for ws in conns:
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)

        if dead:
            async with self._lock:
                for ws in dead:
                    self._by_account.get(account_key, set()).discard(ws)


def session_event(state: GameState) -> dict[str, object]:
    """Lightweight change notice; clients fetch GET /session for the full state."""

    return {
        "type": "session_updated",
        "session_id": state.session_id,
        "phase": state.phase.value,
        "stage": state.proof.stage.value,
        "my_turn": state.my_turn,
        "winner": state.winner,
    }


hub = SessionWebSocketHub()
