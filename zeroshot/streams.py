from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, cast

import redis


@dataclass(frozen=True, slots=True)
class Mailbox:
    account_key: str

    @property
    def key(self) -> str:
        return f"alerts:{self.account_key}"


def publish_to_mailbox(*, r: redis.Redis, mailbox: Mailbox, fields: Mapping[str, str]) -> str:
    """Append an entry to an account's alert stream."""

    # redis-py stubs expect field/value unions; we only use string fields/values.
    stream_id = r.xadd(mailbox.key, {str(k): str(v) for k, v in fields.items()})
    return cast(str, stream_id)


def read_mailbox(*, r: redis.Redis, mailbox: Mailbox, count: int = 20) -> list[tuple[str, dict[str, str]]]:
    return cast(list[tuple[str, dict[str, str]]], r.xrange(mailbox.key, count=count))
