from __future__ import annotations


class ZeroShotError(Exception):
    """Base class for engine errors."""


class ValidationError(ZeroShotError, ValueError):
    """A command or action is not valid for the current phase."""


class PipelineOrderError(ZeroShotError):
    """A proof stage event arrived while the context was in another stage."""


class VerificationFailure(ZeroShotError):
    """A pipeline stage failed or the verifier rejected the proof.

    Raised by prover backends; the orchestrator converts it into a
    VERIFICATION_FAILURE stage and never lets it escape.
    """

    def __init__(self, reason: str, *, stage: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.stage = stage


class PersistenceCorruption(ZeroShotError):
    """A persisted snapshot could not be decoded."""


class LedgerInvariantViolation(ZeroShotError):
    """A ledger write would settle a session twice or deduct a stake twice."""


class SessionBusy(ZeroShotError):
    """A proof pipeline is already in flight for this session."""
