from __future__ import annotations

from typing import cast

from zeroshot.config import Settings
from zeroshot.prover.base import ProverBackend
from zeroshot.prover.http import HttpProver
from zeroshot.prover.mock import MockProver


def create_prover(settings: Settings) -> ProverBackend:
    """Create the configured prover backend.

    Uses the remote prover service when ZEROSHOT_PROVER_URL is set, otherwise the in-process mock.
    """

    if settings.prover_url:
        return cast(ProverBackend, HttpProver(base_url=settings.prover_url, timeout_s=settings.stage_timeout_s))
    return cast(ProverBackend, MockProver())
