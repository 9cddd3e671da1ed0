from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from zeroshot.core.grid import CELLS


class GamePhase(StrEnum):
    setup = "setup"
    placement = "placement"
    battle = "battle"
    ended = "ended"


PHASE_ORDER: dict[GamePhase, int] = {
    GamePhase.setup: 0,
    GamePhase.placement: 1,
    GamePhase.battle: 2,
    GamePhase.ended: 3,
}


class CellKind(StrEnum):
    fog = "fog"
    empty = "empty"
    unit = "unit"
    targeted = "targeted"
    hit = "hit"
    miss = "miss"


class ProofStage(StrEnum):
    idle = "IDLE"
    witness_generation = "WITNESS_GENERATION"
    circuit_compilation = "CIRCUIT_COMPILATION"
    proof_generation = "PROOF_GENERATION"
    on_chain_verification = "ON_CHAIN_VERIFICATION"
    verification_success = "VERIFICATION_SUCCESS"
    verification_failure = "VERIFICATION_FAILURE"


IN_FLIGHT_STAGES = frozenset(
    {
        ProofStage.witness_generation,
        ProofStage.circuit_compilation,
        ProofStage.proof_generation,
        ProofStage.on_chain_verification,
    }
)
TERMINAL_STAGES = frozenset({ProofStage.verification_success, ProofStage.verification_failure})


Winner = Literal["you", "foe"]
LogTag = Literal["sys", "zk", "fire", "hit", "miss", "wallet", "warn"]


class LogEntry(BaseModel):
    ts: datetime
    msg: str
    t: LogTag = "sys"


class ProofContext(BaseModel):
    stage: ProofStage = ProofStage.idle
    # Cell index being fired upon; -1 when no pipeline has started.
    target_index: int = -1

    # Opaque artifacts from the prover boundary. The witness never leaves the process.
    witness_hex: str = ""
    proof_hex: str = ""
    verify_ref: str = ""

    started_at: datetime | None = None
    resolved_at: datetime | None = None
    error_msg: str = ""

    # Authoritative result, meaningful only in VERIFICATION_SUCCESS.
    is_hit: bool = False

    @property
    def in_flight(self) -> bool:
        return self.stage in IN_FLIGHT_STAGES


def _own_grid() -> list[CellKind]:
    return [CellKind.empty] * CELLS


def _fog_grid() -> list[CellKind]:
    return [CellKind.fog] * CELLS


class GameState(BaseModel):
    phase: GamePhase = GamePhase.setup
    session_id: int = 0
    stake: int = 0

    my_grid: list[CellKind] = Field(default_factory=_own_grid)
    # Opponent-facing fog-of-war view.
    foe_grid: list[CellKind] = Field(default_factory=_fog_grid)

    # Hidden opponent unit; -1 until the session is initialised.
    foe_unit: int = -1
    # Own unit; -1 until placed.
    my_unit: int = -1

    my_turn: bool = True
    shots: int = 0
    hits: int = 0
    winner: Winner | None = None

    tx_ids: list[str] = Field(default_factory=list)
    log: list[LogEntry] = Field(default_factory=list)

    # Guards against deducting the stake again when a snapshot is restored.
    stake_deducted: bool = False

    proof: ProofContext = Field(default_factory=ProofContext)

    created_at: datetime | None = None
    last_updated_at: datetime | None = None


TxType = Literal["deposit", "stake", "win", "loss", "refund"]
SETTLEMENT_TYPES: frozenset[str] = frozenset({"win", "loss", "refund"})


class TxRecord(BaseModel):
    id: str
    type: TxType
    amount: int
    ts: datetime
    status: Literal["confirmed", "pending"] = "confirmed"
    label: str = ""
    session_id: int | None = None


class Account(BaseModel):
    account_key: str
    username: str
    verified: bool = False
    balance: int = 0
    wins: int = 0
    losses: int = 0
    total_staked: int = 0
    tx_history: list[TxRecord] = Field(default_factory=list)
    created_at: datetime

    def find_event(self, *, session_id: int, type: str) -> TxRecord | None:
        return next((t for t in self.tx_history if t.session_id == session_id and t.type == type), None)


# ---- HTTP request/response bodies ----


class ProfileCreateRequest(BaseModel):
    account_key: str = Field(..., min_length=1, max_length=200)
    verified: bool = False
    username: str | None = None


class SessionCreateRequest(BaseModel):
    account_key: str | None = None
    # Omitted: the configured default stake.
    stake: int | None = Field(None, ge=1)


class CommandRequest(BaseModel):
    """A raw command from one of the input collaborators.

    Pointer input names the grid and cell; voice input carries a transcript.
    """

    source: Literal["pointer", "voice"]
    grid: Literal["own", "enemy"] | None = None
    cell_index: int | None = Field(None, ge=0, lt=CELLS)
    transcript: str | None = None
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class SessionView(GameState):
    """The player-facing session: the opponent unit and the private witness stay server-side."""

    foe_unit: int = Field(-1, exclude=True)

    @classmethod
    def of(cls, state: GameState) -> SessionView:
        view = cls.model_validate(state.model_dump())
        view.proof.witness_hex = ""
        return view


class SessionResponse(BaseModel):
    session: SessionView | None
    account: Account | None = None
