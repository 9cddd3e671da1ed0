"""Staged proof pipeline for one Fire action.

The orchestrator issues exactly one prover call at a time and feeds each
result back through the reducer before starting the next call:

    IDLE -> WITNESS_GENERATION -> CIRCUIT_COMPILATION -> PROOF_GENERATION
         -> ON_CHAIN_VERIFICATION -> VERIFICATION_SUCCESS | VERIFICATION_FAILURE

Every failure on the way (exceptions, timeouts, a rejected proof) becomes a
single VerificationRejected action. Nothing escapes to the caller, and no shot
is applied here; that is the resolution engine's job once the context reads
VERIFICATION_SUCCESS.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Awaitable, Callable
from typing import TypeVar

from zeroshot.api.models import GameState, ProofStage
from zeroshot.core.actions import (
    CircuitReady,
    GameAction,
    ProofReady,
    VerificationAccepted,
    VerificationRejected,
    WitnessBegin,
    WitnessReady,
)
from zeroshot.errors import PipelineOrderError, VerificationFailure
from zeroshot.prover.base import ProverBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

Dispatch = Callable[[GameAction], GameState]


def _new_salt() -> str:
    return secrets.token_hex(16)


class ProofPipeline:
    def __init__(
        self,
        *,
        prover: ProverBackend,
        dispatch: Dispatch,
        stage_timeout_s: float = 30.0,
        restore_turn_on_failure: bool = True,
        salt_factory: Callable[[], str] = _new_salt,
    ) -> None:
        self.prover = prover
        self._dispatch = dispatch
        self.stage_timeout_s = stage_timeout_s
        self.restore_turn_on_failure = restore_turn_on_failure
        self._salt_factory = salt_factory

    async def _call(self, stage: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.stage_timeout_s)
        except TimeoutError as e:
            raise VerificationFailure(f"{stage} timed out after {self.stage_timeout_s:g}s", stage=stage) from e

    def _advance(self, action: GameAction, expected: ProofStage) -> GameState:
        state = self._dispatch(action)
        if state.proof.stage != expected:
            raise PipelineOrderError(
                f"{type(action).__name__} left the pipeline in {state.proof.stage.value}, expected {expected.value}"
            )
        return state

    async def run(self, *, state: GameState, target: int) -> GameState:
        """Start a pipeline for `target` and drive it to a terminal stage.

        Returns the state unchanged when the Fire is not valid right now
        (wrong phase, not our turn, a context still active, cell already resolved).
        """

        state = self._dispatch(WitnessBegin(index=target))
        if state.proof.stage != ProofStage.witness_generation or state.proof.target_index != target:
            logger.debug("session %s: fire at %s rejected by reducer", state.session_id, target)
            return state

        session_id = state.session_id
        position = state.foe_unit
        logger.info("session %s: proof pipeline started for cell %s", session_id, target)

        try:
            witness = await self._call(
                "witness",
                self.prover.build_witness(position=position, target=target, salt=self._salt_factory()),
            )
            self._advance(WitnessReady(witness_hex=witness.witness_hex), ProofStage.circuit_compilation)

            await self._call("circuit", self.prover.compile_circuit())
            self._advance(CircuitReady(), ProofStage.proof_generation)

            proof = await self._call("proof", self.prover.generate_proof(witness))
            if proof.target != target:
                raise VerificationFailure("proof does not attest the fired cell", stage="proof")
            if proof.is_hit != (target == position):
                raise VerificationFailure("proof claim does not match the board", stage="proof")
            self._advance(ProofReady(proof_hex=proof.proof_hex), ProofStage.on_chain_verification)

            receipt = await self._call("verify", self.prover.verify_on_chain(proof))
            if not receipt.accepted:
                raise VerificationFailure(receipt.reason or "proof rejected by verifier", stage="verify")
            state = self._advance(
                VerificationAccepted(is_hit=proof.is_hit, verify_ref=receipt.ref),
                ProofStage.verification_success,
            )
        except Exception as e:
            reason = e.reason if isinstance(e, VerificationFailure) else f"{type(e).__name__}: {e}"
            logger.warning("session %s: verification failed for cell %s: %s", session_id, target, reason)
            state = self._dispatch(VerificationRejected(reason=reason, restore_turn=self.restore_turn_on_failure))
            return state

        logger.info(
            "session %s: cell %s verified (%s)", session_id, target, "hit" if state.proof.is_hit else "miss"
        )
        return state
