from __future__ import annotations

import fakeredis
import pytest
import redis

from zeroshot.api.models import GamePhase, GameState, ProofStage
from zeroshot.errors import PipelineOrderError, ValidationError
from zeroshot.fsm import ProofFSM, SessionFSM
from zeroshot.notifications import MailboxNotifier
from zeroshot.streams import Mailbox, publish_to_mailbox, read_mailbox


def test_session_fsm_transitions_and_sync() -> None:
    game = GameState(session_id=1234)
    fsm = SessionFSM(game)
    assert fsm.current_state.id == "setup"

    assert fsm.advance("stake_confirmed") == GamePhase.placement
    fsm.sync_phase_to_model()
    assert game.phase == GamePhase.placement

    with pytest.raises(ValidationError):
        fsm.advance("finish")
    assert fsm.current_state.id == "placement"


def test_session_fsm_starts_from_model_phase() -> None:
    game = GameState(session_id=1234, phase=GamePhase.battle)
    fsm = SessionFSM(game)
    assert fsm.advance("finish") == GamePhase.ended
    with pytest.raises(ValidationError):
        fsm.advance("stake_confirmed")


def test_proof_fsm_linear_order() -> None:
    game = GameState(session_id=1234)
    fsm = ProofFSM(game)
    with pytest.raises(PipelineOrderError):
        fsm.advance("witness_done")

    for event, stage in [
        ("begin", ProofStage.witness_generation),
        ("witness_done", ProofStage.circuit_compilation),
        ("circuit_done", ProofStage.proof_generation),
        ("proof_done", ProofStage.on_chain_verification),
        ("verified", ProofStage.verification_success),
    ]:
        assert fsm.advance(event) == stage

    fsm.sync_stage_to_model()
    assert game.proof.stage == ProofStage.verification_success

    with pytest.raises(PipelineOrderError):
        fsm.advance("rejected")
    assert fsm.advance("reset") == ProofStage.idle


@pytest.mark.parametrize(
    "stage",
    [
        ProofStage.witness_generation,
        ProofStage.circuit_compilation,
        ProofStage.proof_generation,
        ProofStage.on_chain_verification,
    ],
)
def test_any_in_flight_stage_can_fail(stage: ProofStage) -> None:
    game = GameState(session_id=1234)
    game.proof.stage = stage
    fsm = ProofFSM(game)
    assert fsm.advance("rejected") == ProofStage.verification_failure
    with pytest.raises(PipelineOrderError):
        fsm.advance("witness_done")


def test_mailbox_publish_and_read() -> None:
    r = fakeredis.FakeRedis(decode_responses=True)
    mailbox = Mailbox(account_key="pilot")
    assert mailbox.key == "alerts:pilot"

    publish_to_mailbox(r=r, mailbox=mailbox, fields={"type": "game_won", "session_id": 1234})
    entries = read_mailbox(r=r, mailbox=mailbox)
    assert len(entries) == 1
    _, fields = entries[0]
    assert fields == {"type": "game_won", "session_id": "1234"}


def test_notifier_swallows_redis_errors(caplog) -> None:
    class BrokenRedis:
        def xadd(self, *args, **kwargs):
            raise redis.ConnectionError("down")

    notifier = MailboxNotifier(r=BrokenRedis(), account_key="pilot")  # type: ignore[arg-type]
    notifier.alert("enemy_attack", 1234, "Enemy fired at A1 and missed.")
    assert "failed to publish enemy_attack alert" in caplog.text
