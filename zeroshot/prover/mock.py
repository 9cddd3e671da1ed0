from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field

from zeroshot.errors import VerificationFailure
from zeroshot.prover.base import ShotProof, ShotWitness, VerificationReceipt

STAGES = ("witness", "circuit", "proof", "verify")


def _digest(*parts: object) -> str:
    h = hashlib.sha256()
    for p in parts:
        h.update(str(p).encode())
        h.update(b"\x00")
    return h.hexdigest()


@dataclass(slots=True)
class MockProver:
    """In-process stand-in for the prover/verifier service.

    Timing is deterministic: each stage sleeps for `delays[stage]` seconds
    (default 0). `fail_stage` makes that stage raise; `reject_reason` makes
    the verifier answer accepted=False. `calls` records the stage order.
    """

    delays: dict[str, float] = field(default_factory=dict)
    fail_stage: str | None = None
    reject_reason: str | None = None
    calls: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.fail_stage is not None and self.fail_stage not in STAGES:
            raise ValueError(f"unknown stage {self.fail_stage!r}; expected one of {STAGES}")

    async def _stage(self, name: str) -> None:
        self.calls.append(name)
        delay = self.delays.get(name, 0.0)
        # sleep(0) still yields to the loop.
        await asyncio.sleep(delay)
        if self.fail_stage == name:
            raise VerificationFailure(f"{name} stage failed", stage=name)

    async def build_witness(self, *, position: int, target: int, salt: str) -> ShotWitness:
        await self._stage("witness")
        return ShotWitness(position=position, target=target, salt=salt, witness_hex=_digest("w", position, target, salt))

    async def compile_circuit(self) -> bool:
        await self._stage("circuit")
        return True

    async def generate_proof(self, witness: ShotWitness) -> ShotProof:
        await self._stage("proof")
        return ShotProof(
            proof_hex=_digest("p", witness.witness_hex),
            target=witness.target,
            is_hit=witness.position == witness.target,
        )

    async def verify_on_chain(self, proof: ShotProof) -> VerificationReceipt:
        await self._stage("verify")
        if self.reject_reason is not None:
            return VerificationReceipt(accepted=False, reason=self.reject_reason)
        return VerificationReceipt(accepted=True, ref="TX" + _digest("v", proof.proof_hex)[:16].upper())
