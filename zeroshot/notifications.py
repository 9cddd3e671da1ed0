from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Literal, Protocol

import redis

from zeroshot.streams import Mailbox, publish_to_mailbox

logger = logging.getLogger(__name__)

AlertType = Literal["enemy_attack", "game_won", "game_lost", "low_balance"]

LOW_BALANCE_THRESHOLD = 20


class Notifier(Protocol):
    """Fire-and-forget alert sink. Rate limiting belongs to the delivery side."""

    def alert(self, type: AlertType, session_id: int, detail: str) -> None:  # pragma: no cover
        ...


class MailboxNotifier:
    """Publishes alerts to the account's Redis Stream for the delivery worker to pick up."""

    def __init__(self, *, r: redis.Redis, account_key: str) -> None:
        self._r = r
        self._mailbox = Mailbox(account_key=account_key)

    def alert(self, type: AlertType, session_id: int, detail: str) -> None:
        try:
            publish_to_mailbox(
                r=self._r,
                mailbox=self._mailbox,
                fields={
                    "type": type,
                    "session_id": str(session_id),
                    "detail": detail,
                    "ts": datetime.now(tz=UTC).isoformat(),
                },
            )
        except redis.RedisError:
            # Alerts never block gameplay.
            logger.warning("failed to publish %s alert for session %s", type, session_id, exc_info=True)
