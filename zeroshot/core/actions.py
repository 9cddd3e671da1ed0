from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from zeroshot.api.models import GameState, LogEntry, Winner


def _now() -> datetime:
    return datetime.now(tz=UTC)


# Every action carries its own timestamp so the reducer never reads the clock.


@dataclass(frozen=True, slots=True)
class GameInit:
    session_id: int
    stake: int
    foe_unit: int
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class GameReady:
    tx_id: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class UnitPlace:
    index: int
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class BattleBegin:
    my_turn: bool
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class WitnessBegin:
    index: int
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class WitnessReady:
    witness_hex: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class CircuitReady:
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class ProofReady:
    proof_hex: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class VerificationAccepted:
    is_hit: bool
    verify_ref: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class VerificationRejected:
    reason: str
    # Keep the turn with the acting side (False withholds it until ProofReset).
    restore_turn: bool = True
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class ProofReset:
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class ShotApply:
    index: int
    is_hit: bool
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class EnemyStrike:
    index: int
    is_hit: bool
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class GameOver:
    winner: Winner
    tx_id: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class LogAppend:
    entries: tuple[LogEntry, ...]
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class GameRestore:
    snapshot: GameState
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class GameReset:
    at: datetime = field(default_factory=_now)


GameAction = (
    GameInit
    | GameReady
    | UnitPlace
    | BattleBegin
    | WitnessBegin
    | WitnessReady
    | CircuitReady
    | ProofReady
    | VerificationAccepted
    | VerificationRejected
    | ProofReset
    | ShotApply
    | EnemyStrike
    | GameOver
    | LogAppend
    | GameRestore
    | GameReset
)
