from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class ShotWitness:
    """Private inputs for one shot.

    `position` is the defender's hidden unit; `target` the attacked cell. The
    witness hex is opaque to the engine and never leaves the process.
    """

    position: int
    target: int
    salt: str
    witness_hex: str


@dataclass(frozen=True, slots=True)
class ShotProof:
    proof_hex: str
    # Public claim the proof attests to.
    target: int
    is_hit: bool


@dataclass(frozen=True, slots=True)
class VerificationReceipt:
    accepted: bool
    ref: str = ""
    reason: str | None = None


class ProverBackend(Protocol):
    """The four ordered calls of the external prover/verifier.

    Each call either returns or raises; the orchestrator maps any exception to
    a failed verification.
    """

    async def build_witness(self, *, position: int, target: int, salt: str) -> ShotWitness:  # pragma: no cover
        ...

    async def compile_circuit(self) -> bool:  # pragma: no cover
        ...

    async def generate_proof(self, witness: ShotWitness) -> ShotProof:  # pragma: no cover
        ...

    async def verify_on_chain(self, proof: ShotProof) -> VerificationReceipt:  # pragma: no cover
        ...
