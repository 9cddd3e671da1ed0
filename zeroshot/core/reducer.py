"""The session transition function.

`reduce(state, action)` is pure: it never mutates its input, never reads the
clock (timestamps travel on the action) and performs no I/O. Any action that
is invalid for the current phase or proof stage yields the input state
unchanged; that is how stale or duplicate stage events from racing inputs are
absorbed.
"""
from __future__ import annotations

import logging
from datetime import datetime

from zeroshot.api.models import (
    CellKind,
    GamePhase,
    GameState,
    LogEntry,
    LogTag,
    ProofContext,
    ProofStage,
)
from zeroshot.core.actions import (
    BattleBegin,
    CircuitReady,
    EnemyStrike,
    GameAction,
    GameInit,
    GameOver,
    GameReady,
    GameReset,
    GameRestore,
    LogAppend,
    ProofReady,
    ProofReset,
    ShotApply,
    UnitPlace,
    VerificationAccepted,
    VerificationRejected,
    WitnessBegin,
    WitnessReady,
)
from zeroshot.core.grid import coord, in_bounds
from zeroshot.errors import PipelineOrderError, ValidationError
from zeroshot.fsm import ProofFSM, SessionFSM

logger = logging.getLogger(__name__)

LOG_CAPACITY = 100

REVEALED = frozenset({CellKind.hit, CellKind.miss})


def blank_game() -> GameState:
    return GameState()


def log_entry(at: datetime, msg: str, t: LogTag = "sys") -> LogEntry:
    return LogEntry(ts=at, msg=msg, t=t)


def _append_log(state: GameState, *entries: LogEntry) -> None:
    state.log = [*state.log, *entries][-LOG_CAPACITY:]


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ValidationError(msg)


def _require_phase(state: GameState, phase: GamePhase) -> None:
    _require(state.phase == phase, f"Game is not in {phase.value} phase")


def _send_stage(state: GameState, event: str) -> None:
    fsm = ProofFSM(state)
    fsm.advance(event)
    fsm.sync_stage_to_model()


def _send_phase(state: GameState, event: str) -> None:
    fsm = SessionFSM(state)
    fsm.advance(event)
    fsm.sync_phase_to_model()


def reduce(state: GameState, action: GameAction) -> GameState:
    try:
        return _apply(state.model_copy(deep=True), action)
    except (ValidationError, PipelineOrderError) as e:
        logger.debug("session %s: ignored %s (%s)", state.session_id, type(action).__name__, e)
        return state


def _apply(s: GameState, action: GameAction) -> GameState:
    at = action.at

    match action:
        case GameInit(session_id=sid, stake=stake, foe_unit=foe_unit):
            _require(s.session_id == 0 or s.phase == GamePhase.ended, "A session is already in progress")
            _require(stake > 0, "stake must be positive")
            _require(in_bounds(foe_unit), "opponent unit is off the grid")
            fresh = GameState(
                phase=GamePhase.setup,
                session_id=sid,
                stake=stake,
                foe_unit=foe_unit,
                created_at=at,
            )
            _append_log(
                fresh,
                log_entry(at, f"Session #{sid} initialised | stake: {stake}"),
                log_entry(at, "Escrowing stake..."),
            )
            return fresh

        case GameReady(tx_id=tx_id):
            _require(not s.stake_deducted, "Stake already deducted for this session")
            _send_phase(s, "stake_confirmed")
            s.stake_deducted = True
            s.tx_ids = [tx_id]
            _append_log(
                s,
                log_entry(at, f"Stake TX {tx_id[:12]}... confirmed", "wallet"),
                log_entry(at, "Place your unit on the grid."),
            )

        case UnitPlace(index=index):
            _require_phase(s, GamePhase.placement)
            _require(s.my_unit == -1, "Unit already placed")
            _require(in_bounds(index), "cell is off the grid")
            s.my_grid[index] = CellKind.unit
            s.my_unit = index
            _append_log(s, log_entry(at, f"Unit placed at {coord(index)}; building commitment...", "zk"))

        case BattleBegin(my_turn=my_turn):
            _require(s.my_unit != -1, "Unit must be placed before battle")
            _send_phase(s, "battle_begin")
            s.my_turn = my_turn
            _append_log(
                s,
                log_entry(at, "Commitment confirmed", "zk"),
                log_entry(at, "BATTLE START"),
                log_entry(at, "YOUR TURN" if my_turn else "Waiting for opponent..."),
            )

        case WitnessBegin(index=index):
            _require_phase(s, GamePhase.battle)
            _require(s.my_turn, "Not your turn")
            _require(in_bounds(index), "cell is off the grid")
            _require(s.foe_grid[index] in (CellKind.fog, CellKind.targeted), "cell already resolved")
            _send_stage(s, "begin")
            s.proof = ProofContext(stage=ProofStage.witness_generation, target_index=index, started_at=at)
            s.my_turn = False
            s.foe_grid[index] = CellKind.targeted
            _append_log(
                s,
                log_entry(at, f"Firing at {coord(index)}...", "fire"),
                log_entry(at, "[ ZK ] Building witness...", "zk"),
            )

        case WitnessReady(witness_hex=witness_hex):
            _send_stage(s, "witness_done")
            s.proof.witness_hex = witness_hex
            _append_log(
                s,
                log_entry(at, f"[ ZK ] Witness ready: 0x{witness_hex[:16]}...", "zk"),
                log_entry(at, "[ ZK ] Compiling circuit...", "zk"),
            )

        case CircuitReady():
            _send_stage(s, "circuit_done")
            _append_log(s, log_entry(at, "[ ZK ] Circuit compiled; generating proof...", "zk"))

        case ProofReady(proof_hex=proof_hex):
            _send_stage(s, "proof_done")
            s.proof.proof_hex = proof_hex
            _append_log(
                s,
                log_entry(at, f"[ ZK ] Proof: 0x{proof_hex[:16]}...", "zk"),
                log_entry(at, "[ ZK ] Submitting for on-chain verification...", "zk"),
            )

        case VerificationAccepted(is_hit=is_hit, verify_ref=ref):
            _require(is_hit == (s.proof.target_index == s.foe_unit), "Verified result contradicts the board")
            _send_stage(s, "verified")
            s.proof.is_hit = is_hit
            s.proof.verify_ref = ref
            s.proof.resolved_at = at
            started = s.proof.started_at or at
            dur = (at - started).total_seconds()
            _append_log(
                s,
                log_entry(at, f"[ ZK ] Verified ({dur:.2f}s): {'impact confirmed' if is_hit else 'miss confirmed'}", "zk"),
                log_entry(at, f"Verify TX: {ref[:12]}...", "wallet"),
            )

        case VerificationRejected(reason=reason, restore_turn=restore_turn):
            _send_stage(s, "rejected")
            s.proof.error_msg = reason
            s.proof.resolved_at = at
            s.my_turn = restore_turn
            _append_log(s, log_entry(at, f"[ ZK ] Verification failed: {reason}", "warn"))
            if restore_turn:
                _append_log(s, log_entry(at, "Turn restored; fire again to retry.", "warn"))
            else:
                _append_log(s, log_entry(at, "Turn withheld; retry to reacquire.", "warn"))

        case ProofReset():
            _require_phase(s, GamePhase.battle)
            if s.proof.stage == ProofStage.verification_success:
                _require(s.foe_grid[s.proof.target_index] in REVEALED, "Verified shot has not been applied")
            _send_stage(s, "reset")
            s.proof = ProofContext()
            s.my_turn = True

        case ShotApply(index=index, is_hit=is_hit):
            _require_phase(s, GamePhase.battle)
            if s.proof.stage != ProofStage.verification_success:
                raise PipelineOrderError("Shot applied without a verified proof")
            _require(s.proof.target_index == index, "Shot does not match the verified target")
            _require(s.proof.is_hit == is_hit, "Shot result does not match the verified result")
            _require(s.foe_grid[index] == CellKind.targeted, "Shot already applied")
            s.foe_grid[index] = CellKind.hit if is_hit else CellKind.miss
            s.shots += 1
            s.hits += 1 if is_hit else 0
            if is_hit:
                _append_log(s, log_entry(at, f"DIRECT HIT at {coord(index)}!", "hit"))
            else:
                _append_log(s, log_entry(at, f"Miss at {coord(index)}.", "miss"))

        case EnemyStrike(index=index, is_hit=is_hit):
            _require_phase(s, GamePhase.battle)
            _require(in_bounds(index), "cell is off the grid")
            _require(s.my_grid[index] not in REVEALED, "cell already struck")
            _require(is_hit == (index == s.my_unit), "Strike result does not match the board")
            opening = s.proof.stage == ProofStage.idle and not s.my_turn
            answering = (
                s.proof.stage == ProofStage.verification_success
                and not s.proof.is_hit
                and s.foe_grid[s.proof.target_index] == CellKind.miss
            )
            _require(opening or answering, "Opponent cannot strike now")
            s.my_grid[index] = CellKind.hit if is_hit else CellKind.miss
            if is_hit:
                s.my_turn = False
            else:
                # Turn returns to the attacker and the pipeline is ready for the next Fire.
                s.my_turn = True
                s.proof = ProofContext()
            _append_log(
                s,
                log_entry(
                    at,
                    f"Enemy fires {coord(index)}... {'YOUR UNIT HIT!' if is_hit else 'missed.'}",
                    "hit" if is_hit else "miss",
                ),
            )

        case GameOver(winner=winner, tx_id=tx_id):
            if winner == "you":
                _require(s.foe_grid[s.foe_unit] == CellKind.hit, "Opponent unit has not been hit")
            else:
                _require(s.my_unit != -1 and s.my_grid[s.my_unit] == CellKind.hit, "Own unit has not been hit")
            _send_phase(s, "finish")
            s.winner = winner
            s.my_turn = False
            s.tx_ids = [*s.tx_ids, tx_id]
            _append_log(
                s,
                log_entry(at, f"end_game(player1_won={winner == 'you'}) TX: {tx_id[:12]}...", "wallet"),
                log_entry(at, "MISSION ACCOMPLISHED" if winner == "you" else "MISSION FAILED"),
            )

        case LogAppend(entries=entries):
            _append_log(s, *entries)

        case GameRestore(snapshot=snapshot):
            restored = snapshot.model_copy(deep=True)
            _append_log(restored, log_entry(at, "Session restored."))
            return restored

        case GameReset():
            return blank_game()

        case _:
            raise ValidationError(f"Unknown action: {type(action).__name__}")

    return s
