from __future__ import annotations

from typing import Any

import httpx

from zeroshot.errors import VerificationFailure
from zeroshot.prover.base import ShotProof, ShotWitness, VerificationReceipt


class HttpProver:
    """Prover/verifier backend reached over HTTP.

    Contract with the prover service (JSON in, JSON out):
      - POST /witness  {position, target, salt}  -> {witness}
      - POST /circuit  {}                        -> {ready}
      - POST /proof    {witness, target}         -> {proof, is_hit}
      - POST /verify   {proof, target, is_hit}   -> {accepted, ref, reason?}

    Transport errors and non-2xx responses raise VerificationFailure.
    """

    def __init__(self, *, base_url: str, timeout_s: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, stage: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.post(path, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise VerificationFailure(f"{stage}: prover returned {e.response.status_code}", stage=stage) from e
        except (httpx.HTTPError, ValueError) as e:
            raise VerificationFailure(f"{stage}: {e}", stage=stage) from e
        if not isinstance(data, dict):
            raise VerificationFailure(f"{stage}: malformed response", stage=stage)
        return data

    async def build_witness(self, *, position: int, target: int, salt: str) -> ShotWitness:
        data = await self._post("witness", "/witness", {"position": position, "target": target, "salt": salt})
        return ShotWitness(position=position, target=target, salt=salt, witness_hex=str(data["witness"]))

    async def compile_circuit(self) -> bool:
        data = await self._post("circuit", "/circuit", {})
        if not data.get("ready"):
            raise VerificationFailure("circuit: not ready", stage="circuit")
        return True

    async def generate_proof(self, witness: ShotWitness) -> ShotProof:
        data = await self._post("proof", "/proof", {"witness": witness.witness_hex, "target": witness.target})
        return ShotProof(proof_hex=str(data["proof"]), target=witness.target, is_hit=bool(data["is_hit"]))

    async def verify_on_chain(self, proof: ShotProof) -> VerificationReceipt:
        data = await self._post(
            "verify",
            "/verify",
            {"proof": proof.proof_hex, "target": proof.target, "is_hit": proof.is_hit},
        )
        return VerificationReceipt(
            accepted=bool(data.get("accepted")),
            ref=str(data.get("ref") or ""),
            reason=data.get("reason"),
        )
