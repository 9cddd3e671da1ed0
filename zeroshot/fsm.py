from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from zeroshot.api.models import GamePhase, GameState, ProofStage
from zeroshot.errors import PipelineOrderError, ValidationError


class SessionFSM(StateMachine):
    """FSM wrapper around GameState.phase.

    - phases: setup -> placement -> battle -> ended
    - the reducer applies the domain changes; the FSM only guards transitions.
    """

    setup = State(GamePhase.setup.value, value=GamePhase.setup.value, initial=True)
    placement = State(GamePhase.placement.value, value=GamePhase.placement.value)
    battle = State(GamePhase.battle.value, value=GamePhase.battle.value)
    ended = State(GamePhase.ended.value, value=GamePhase.ended.value, final=True)

    stake_confirmed = setup.to(placement)
    battle_begin = placement.to(battle)
    finish = battle.to(ended)

    def __init__(self, game: GameState):
        self.game = game
        super().__init__(start_value=game.phase.value)

    def advance(self, event: str) -> GamePhase:
        try:
            self.send(event)
        except TransitionNotAllowed as e:
            raise ValidationError(f"Event '{event}' not allowed in phase '{self.game.phase.value}'") from e
        return GamePhase(str(self.current_state.value))

    def sync_phase_to_model(self) -> None:
        self.game.phase = GamePhase(str(self.current_state.value))


class ProofFSM(StateMachine):
    """Guards the per-Fire proof pipeline stages.

    IDLE -> WITNESS_GENERATION -> CIRCUIT_COMPILATION -> PROOF_GENERATION
    -> ON_CHAIN_VERIFICATION -> VERIFICATION_SUCCESS | VERIFICATION_FAILURE
    """

    idle = State(ProofStage.idle.value, value=ProofStage.idle.value, initial=True)
    witness_generation = State(ProofStage.witness_generation.value, value=ProofStage.witness_generation.value)
    circuit_compilation = State(ProofStage.circuit_compilation.value, value=ProofStage.circuit_compilation.value)
    proof_generation = State(ProofStage.proof_generation.value, value=ProofStage.proof_generation.value)
    on_chain_verification = State(
        ProofStage.on_chain_verification.value,
        value=ProofStage.on_chain_verification.value,
    )
    verification_success = State(ProofStage.verification_success.value, value=ProofStage.verification_success.value)
    verification_failure = State(ProofStage.verification_failure.value, value=ProofStage.verification_failure.value)

    begin = idle.to(witness_generation)
    witness_done = witness_generation.to(circuit_compilation)
    circuit_done = circuit_compilation.to(proof_generation)
    proof_done = proof_generation.to(on_chain_verification)
    verified = on_chain_verification.to(verification_success)
    # Any in-flight stage may fail; nothing else can.
    rejected = (
        witness_generation.to(verification_failure)
        | circuit_compilation.to(verification_failure)
        | proof_generation.to(verification_failure)
        | on_chain_verification.to(verification_failure)
    )
    reset = idle.to(idle) | verification_success.to(idle) | verification_failure.to(idle)

    def __init__(self, game: GameState):
        self.game = game
        super().__init__(start_value=game.proof.stage.value)

    def advance(self, event: str) -> ProofStage:
        try:
            self.send(event)
        except TransitionNotAllowed as e:
            raise PipelineOrderError(
                f"Stage event '{event}' not expected in stage '{self.game.proof.stage.value}'"
            ) from e
        return ProofStage(str(self.current_state.value))

    def sync_stage_to_model(self) -> None:
        self.game.proof.stage = ProofStage(str(self.current_state.value))
