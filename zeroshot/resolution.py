from __future__ import annotations

import logging
import random
from typing import Protocol

import redis

from zeroshot.accounts import get_account, new_tx_id, record_event
from zeroshot.api.models import CellKind, GamePhase, GameState, ProofStage, TxType, Winner
from zeroshot.core.actions import EnemyStrike, GameOver, ProofReset, ShotApply
from zeroshot.core.grid import coord
from zeroshot.core.reducer import REVEALED
from zeroshot.notifications import LOW_BALANCE_THRESHOLD, Notifier
from zeroshot.pipeline import Dispatch

logger = logging.getLogger(__name__)


class StrikePolicy(Protocol):
    def choose(self, *, state: GameState) -> int | None:  # pragma: no cover
        ...


class RandomStrikePolicy:
    """Opponent picks uniformly among the attacker's cells it has not struck yet.

    Placeholder policy; there is no difficulty model.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def choose(self, *, state: GameState) -> int | None:
        avail = [i for i, kind in enumerate(state.my_grid) if kind not in REVEALED]
        if not avail:
            return None
        return self.rng.choice(avail)


class TurnResolver:
    """Applies a verified shot and plays out the rest of the round.

    Every step is derived from the current state, so `resolve` can be called
    again on a restored snapshot and continues where the last run stopped.
    Settlement is written to the ledger before GameOver discards the snapshot.
    """

    def __init__(
        self,
        *,
        r: redis.Redis,
        account_key: str,
        dispatch: Dispatch,
        notifier: Notifier,
        policy: StrikePolicy,
    ) -> None:
        self.r = r
        self.account_key = account_key
        self._dispatch = dispatch
        self.notifier = notifier
        self.policy = policy

    def resolve(self, state: GameState) -> GameState:
        if state.phase != GamePhase.battle:
            return state

        ctx = state.proof
        if ctx.stage == ProofStage.verification_success:
            if state.foe_grid[ctx.target_index] == CellKind.targeted:
                state = self._dispatch(ShotApply(index=ctx.target_index, is_hit=ctx.is_hit))
            if ctx.is_hit:
                return self._finish(state, "you")
            return self.enemy_turn(state)

        if ctx.stage == ProofStage.idle and not state.my_turn:
            # Opponent opened the battle, or its turn was interrupted.
            return self.enemy_turn(state)

        return state

    def enemy_turn(self, state: GameState) -> GameState:
        if state.my_unit != -1 and state.my_grid[state.my_unit] == CellKind.hit:
            # Strike already landed before an interruption; only settlement is missing.
            return self._finish(state, "foe")

        index = self.policy.choose(state=state)
        if index is None:
            return self._dispatch(ProofReset())

        is_hit = index == state.my_unit
        state = self._dispatch(EnemyStrike(index=index, is_hit=is_hit))
        if is_hit:
            return self._finish(state, "foe")

        self.notifier.alert("enemy_attack", state.session_id, f"Enemy fired at {coord(index)} and missed.")
        return state

    def _settle(self, *, type: TxType, amount: int, session_id: int, label: str) -> None:
        rec = record_event(
            r=self.r,
            account_key=self.account_key,
            type=type,
            amount=amount,
            session_id=session_id,
            label=label,
        )
        if rec is not None:
            logger.info("session %s settled: %s %s", session_id, type, amount)

    def _finish(self, state: GameState, winner: Winner) -> GameState:
        sid = state.session_id
        if winner == "you":
            prize = state.stake * 2
            self._settle(type="win", amount=prize, session_id=sid, label=f"Win game #{sid} (+{prize})")
            self.notifier.alert("game_won", sid, f"You won {prize}!")
        else:
            self._settle(type="loss", amount=state.stake, session_id=sid, label=f"Loss game #{sid}")
            self.notifier.alert("game_lost", sid, f"Session #{sid} ended.")

        account = get_account(r=self.r, account_key=self.account_key)
        if account is not None and account.balance < LOW_BALANCE_THRESHOLD:
            self.notifier.alert("low_balance", sid, f"Balance is {account.balance}")

        return self._dispatch(GameOver(winner=winner, tx_id=new_tx_id()))
