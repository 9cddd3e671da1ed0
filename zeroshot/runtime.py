"""Process-lifetime session runtime.

One `SessionRuntime` owns the in-memory session, the single-flight guard and
the collaborators (prover, notifier, strike policy). It is created at startup,
runs `recover()` once, and is closed at shutdown. Every mutation goes through
`dispatch`, which reduces and then snapshots.
"""
from __future__ import annotations

import logging
import random
from datetime import UTC, datetime

import redis

from zeroshot.accounts import bootstrap_account, get_account, record_event, require_account, settlement_for
from zeroshot.api.models import Account, CellKind, GamePhase, GameState, ProofStage
from zeroshot.commands import Abort, Command, Fire, Place, Retry
from zeroshot.config import Settings
from zeroshot.core.actions import (
    BattleBegin,
    GameAction,
    GameInit,
    GameReady,
    GameReset,
    GameRestore,
    LogAppend,
    ProofReset,
    UnitPlace,
    VerificationRejected,
)
from zeroshot.core.grid import CELLS, coord
from zeroshot.core.reducer import blank_game, log_entry, reduce
from zeroshot.errors import LedgerInvariantViolation, SessionBusy, ValidationError
from zeroshot.lock import PipelineGuard
from zeroshot.notifications import MailboxNotifier, Notifier
from zeroshot.pipeline import ProofPipeline
from zeroshot.prover.base import ProverBackend
from zeroshot.resolution import RandomStrikePolicy, StrikePolicy, TurnResolver
from zeroshot.session_store import discard_session, get_session, persist

logger = logging.getLogger(__name__)


class SessionRuntime:
    def __init__(
        self,
        *,
        r: redis.Redis,
        account_key: str,
        prover: ProverBackend,
        settings: Settings,
        notifier: Notifier | None = None,
        policy: StrikePolicy | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.r = r
        self.account_key = account_key
        self.settings = settings
        self.rng = rng or random.Random()
        self.notifier = notifier or MailboxNotifier(r=r, account_key=account_key)
        self.prover = prover

        self.state: GameState = blank_game()
        self.guard = PipelineGuard()
        self.pipeline = ProofPipeline(
            prover=prover,
            dispatch=self.dispatch,
            stage_timeout_s=settings.stage_timeout_s,
            restore_turn_on_failure=settings.restore_turn_on_failure,
        )
        self.resolver = TurnResolver(
            r=r,
            account_key=account_key,
            dispatch=self.dispatch,
            notifier=self.notifier,
            policy=policy or RandomStrikePolicy(self.rng),
        )

    # ---- state plumbing ----

    def dispatch(self, action: GameAction) -> GameState:
        self.state = reduce(self.state, action)
        persist(r=self.r, state=self.state)
        return self.state

    @property
    def busy(self) -> bool:
        return self.guard.busy

    @property
    def active(self) -> bool:
        return self.state.session_id != 0 and self.state.phase != GamePhase.ended

    # ---- profile ----

    def bootstrap_profile(self, *, verified: bool, username: str | None = None) -> Account:
        return bootstrap_account(r=self.r, account_key=self.account_key, verified=verified, username=username)

    def account(self) -> Account | None:
        return get_account(r=self.r, account_key=self.account_key)

    # ---- lifecycle ----

    def recover(self) -> GameState:
        """Bring the runtime back in line with the last durable snapshot.

        - battle snapshots are restored verbatim and play resumes;
        - an interrupted pipeline stage is closed as a failed verification;
        - a verified-but-unresolved shot is resolved;
        - setup/placement snapshots whose stake was taken are refunded once and discarded.
        """

        snapshot = get_session(r=self.r)
        if snapshot is None:
            return self.state

        if snapshot.phase == GamePhase.battle:
            state = self.dispatch(GameRestore(snapshot=snapshot))
            logger.info("session %s restored in battle (stage %s)", state.session_id, state.proof.stage.value)
            if state.proof.in_flight:
                state = self.dispatch(
                    VerificationRejected(
                        reason="interrupted before verification completed",
                        restore_turn=self.settings.restore_turn_on_failure,
                    )
                )
            return self.resolver.resolve(state)

        if snapshot.phase != GamePhase.ended:
            self._refund_abandoned(snapshot, label=f"Auto-refund session #{snapshot.session_id}")
        discard_session(r=self.r)
        self.state = blank_game()
        return self.state

    def _stake_taken(self, snapshot: GameState) -> bool:
        if snapshot.stake_deducted:
            return True
        # Crash between the ledger write and GameReady leaves the flag unset.
        account = self.account()
        return account is not None and account.find_event(session_id=snapshot.session_id, type="stake") is not None

    def _refund_abandoned(self, snapshot: GameState, *, label: str) -> None:
        if not self._stake_taken(snapshot):
            return
        account = self.account()
        settled = settlement_for(account=account, session_id=snapshot.session_id) if account else None
        if settled:
            logger.info("session %s: already settled as %s, no refund", snapshot.session_id, settled.type)
            return
        try:
            rec = record_event(
                r=self.r,
                account_key=self.account_key,
                type="refund",
                amount=snapshot.stake,
                session_id=snapshot.session_id,
                label=label,
            )
        except LedgerInvariantViolation:
            logger.exception("session %s: refund refused by ledger", snapshot.session_id)
            return
        if rec is not None:
            logger.info("session %s: refunded %s", snapshot.session_id, snapshot.stake)

    def start_session(self, *, stake: int | None = None) -> GameState:
        """Escrow the stake and open a session in the placement phase."""

        if self.active:
            raise ValidationError("A session is already in progress")
        account = require_account(r=self.r, account_key=self.account_key)
        if stake is None:
            stake = self.settings.default_stake
        bet = min(self.settings.max_stake, max(self.settings.min_stake, stake))
        if bet > account.balance:
            raise ValidationError(f"Insufficient balance ({account.balance})")

        # Ledger idempotency is keyed by session id, so ids are never reused per account.
        used = {t.session_id for t in account.tx_history if t.session_id is not None}
        if len(used) >= 9000:
            raise ValidationError("No free session ids left for this account")

        try:
            with self.guard.acquire(session_id=0, reason="start"):
                sid = self.rng.randint(1000, 9999)
                while sid in used:
                    sid = self.rng.randint(1000, 9999)
                self.dispatch(GameInit(session_id=sid, stake=bet, foe_unit=self.rng.randrange(CELLS)))
                try:
                    rec = record_event(
                        r=self.r,
                        account_key=self.account_key,
                        type="stake",
                        amount=bet,
                        session_id=sid,
                        label=f"Game #{sid} stake",
                    )
                    if rec is None:
                        raise LedgerInvariantViolation(f"Stake for session {sid} already recorded")
                except Exception:
                    self.dispatch(GameReset())
                    raise
                logger.info("session %s started with stake %s", sid, bet)
                return self.dispatch(GameReady(tx_id=rec.id))
        except SessionBusy:
            logger.debug("start ignored: runtime busy")
            return self.state

    async def handle(self, command: Command) -> GameState:
        match command:
            case Fire(cell_index=index, confidence=confidence):
                return await self.fire(index, voice_confidence=confidence)
            case Place(cell_index=index):
                return self.place(index)
            case Abort():
                return self.abort()
            case Retry():
                return self.retry()
        raise ValidationError(f"Unknown command: {command!r}")

    def place(self, index: int) -> GameState:
        try:
            with self.guard.acquire(session_id=self.state.session_id, reason="place"):
                if self.state.phase != GamePhase.placement or self.state.my_unit != -1:
                    return self.state
                state = self.dispatch(UnitPlace(index=index))
                if state.my_unit != index:
                    return state
                state = self.dispatch(BattleBegin(my_turn=self.rng.random() < 0.5))
                return self.resolver.resolve(state)
        except SessionBusy:
            logger.debug("session %s: place ignored, pipeline in flight", self.state.session_id)
            return self.state

    async def fire(self, index: int, *, voice_confidence: float | None = None) -> GameState:
        try:
            with self.guard.acquire(session_id=self.state.session_id, reason="fire"):
                if voice_confidence is not None and self.active:
                    self._log_voice_fire(index=index, confidence=voice_confidence)
                state = self.state
                if state.proof.stage == ProofStage.verification_failure:
                    if not state.my_turn:
                        logger.debug("session %s: fire ignored, turn withheld until retry", state.session_id)
                        return state
                    state = self.dispatch(ProofReset())
                if not self._can_fire(state, index):
                    return state
                state = await self.pipeline.run(state=state, target=index)
                if state.proof.stage == ProofStage.verification_success:
                    state = self.resolver.resolve(state)
                return state
        except SessionBusy:
            logger.debug("session %s: fire at %s ignored, pipeline in flight", self.state.session_id, index)
            return self.state

    def _can_fire(self, state: GameState, index: int) -> bool:
        return (
            state.phase == GamePhase.battle
            and state.my_turn
            and state.proof.stage == ProofStage.idle
            and 0 <= index < CELLS
            and state.foe_grid[index] in (CellKind.fog, CellKind.targeted)
        )

    def retry(self) -> GameState:
        """Explicitly reset a failed proof context and reacquire the turn."""

        if self.busy or self.state.proof.stage != ProofStage.verification_failure:
            return self.state
        return self.dispatch(ProofReset())

    def abort(self) -> GameState:
        """Refund and discard the current session. Ignored while a pipeline is in flight."""

        if self.busy:
            logger.debug("session %s: abort ignored, pipeline in flight", self.state.session_id)
            return self.state
        if self.state.session_id == 0:
            return self.state

        snapshot = self.state
        if snapshot.phase != GamePhase.ended:
            self._refund_abandoned(snapshot, label=f"Stake refund, aborted #{snapshot.session_id}")
        logger.info("session %s aborted", snapshot.session_id)
        # A blank state persists as "no snapshot".
        return self.dispatch(GameReset())

    def _log_voice_fire(self, *, index: int, confidence: float) -> GameState:
        now = datetime.now(tz=UTC)
        entry = log_entry(now, f"Voice: FIRE {coord(index)} ({confidence * 100:.0f}%)", "fire")
        return self.dispatch(LogAppend(entries=(entry,), at=now))

    async def aclose(self) -> None:
        close = getattr(self.prover, "aclose", None)
        if close is not None:
            await close()
