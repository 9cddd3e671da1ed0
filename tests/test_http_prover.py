from __future__ import annotations

import json

import httpx
import pytest

from zeroshot.config import Settings
from zeroshot.errors import VerificationFailure
from zeroshot.prover.base import ShotProof
from zeroshot.prover.factory import create_prover
from zeroshot.prover.http import HttpProver
from zeroshot.prover.mock import MockProver


def _prover(handler) -> HttpProver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://prover.test")
    return HttpProver(base_url="http://prover.test", client=client)


def _happy(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content or b"{}")
    if request.url.path == "/witness":
        return httpx.Response(200, json={"witness": f"w{body['position']}{body['target']}"})
    if request.url.path == "/circuit":
        return httpx.Response(200, json={"ready": True})
    if request.url.path == "/proof":
        return httpx.Response(200, json={"proof": "p" + body["witness"], "is_hit": body["witness"] == "w55"})
    if request.url.path == "/verify":
        return httpx.Response(200, json={"accepted": True, "ref": "TXABC"})
    return httpx.Response(404)


@pytest.mark.asyncio
async def test_http_prover_round_trip() -> None:
    prover = _prover(_happy)
    witness = await prover.build_witness(position=5, target=5, salt="s")
    assert witness.witness_hex == "w55"
    assert await prover.compile_circuit() is True
    proof = await prover.generate_proof(witness)
    assert proof.is_hit is True
    assert proof.target == 5
    receipt = await prover.verify_on_chain(proof)
    assert receipt.accepted is True
    assert receipt.ref == "TXABC"


@pytest.mark.asyncio
async def test_http_errors_become_verification_failures() -> None:
    prover = _prover(lambda request: httpx.Response(503, json={"detail": "busy"}))
    with pytest.raises(VerificationFailure) as exc:
        await prover.compile_circuit()
    assert exc.value.stage == "circuit"
    assert "503" in exc.value.reason


@pytest.mark.asyncio
async def test_transport_and_payload_errors() -> None:
    def _boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(VerificationFailure):
        await _prover(_boom).build_witness(position=1, target=2, salt="s")

    with pytest.raises(VerificationFailure):
        await _prover(lambda request: httpx.Response(200, content=b"not json")).compile_circuit()

    with pytest.raises(VerificationFailure):
        await _prover(lambda request: httpx.Response(200, json={"ready": False})).compile_circuit()


@pytest.mark.asyncio
async def test_verifier_rejection_is_returned() -> None:
    prover = _prover(lambda request: httpx.Response(200, json={"accepted": False, "reason": "bad proof"}))
    receipt = await prover.verify_on_chain(ShotProof(proof_hex="00", target=1, is_hit=False))
    assert receipt.accepted is False
    assert receipt.reason == "bad proof"


def test_factory_picks_backend() -> None:
    assert isinstance(create_prover(Settings()), MockProver)
    assert isinstance(create_prover(Settings(prover_url="http://prover.test")), HttpProver)


def test_mock_prover_rejects_unknown_stage() -> None:
    with pytest.raises(ValueError):
        MockProver(fail_stage="compile")
