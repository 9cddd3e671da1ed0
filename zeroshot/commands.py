from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from zeroshot.api.models import CommandRequest
from zeroshot.core.grid import GRID, coord, in_bounds, index_of


@dataclass(frozen=True, slots=True)
class Fire:
    cell_index: int
    # Set for voice input; logged with the shot.
    confidence: float | None = None


@dataclass(frozen=True, slots=True)
class Place:
    cell_index: int


@dataclass(frozen=True, slots=True)
class Abort:
    """Refund and discard the session between pipelines."""


@dataclass(frozen=True, slots=True)
class Retry:
    """Explicitly reacquire the turn after a failed verification."""


Command = Fire | Place | Abort | Retry

VoiceAction = Literal["fire", "place", "abort", "retry", "unknown"]


@dataclass(frozen=True, slots=True)
class VoiceCommand:
    transcript: str
    action: VoiceAction
    cell_index: int = -1
    coord: str = ""
    confidence: float = 1.0


# NATO phonetic alphabet -> column letter (A-F for a 6x6 grid).
NATO: dict[str, str] = {
    "alpha": "a",
    "bravo": "b",
    "charlie": "c",
    "delta": "d",
    "echo": "e",
    "foxtrot": "f",
    "a": "a",
    "b": "b",
    "c": "c",
    "d": "d",
    "e": "e",
    "f": "f",
}

_NUMBER_WORDS = {"one": "1", "two": "2", "three": "3", "four": "4", "five": "5", "six": "6"}
_NUMBER_RE = re.compile(r"\b(" + "|".join(_NUMBER_WORDS) + r")\b")

_ABORT_RE = re.compile(r"^(abort|cancel|stop)\b")
_RETRY_RE = re.compile(r"^(retry|reload)\b")
_CELL_RE = re.compile(r"^(fire|shoot|attack|place|put|deploy)\s+([a-z]+)\s*(\d)$")


def parse_voice(raw: str, confidence: float = 1.0) -> VoiceCommand:
    """Parse a speech transcript into a VoiceCommand.

    "fire alpha four" -> fire A4 (index 18); "place bravo 3" -> place B3; "abort" -> abort.
    Anything else comes back as action="unknown".
    """

    base = VoiceCommand(transcript=raw, action="unknown", confidence=confidence)
    t = _NUMBER_RE.sub(lambda m: _NUMBER_WORDS[m.group(1)], raw.lower())
    t = re.sub(r"\s+", " ", t).strip()

    if _ABORT_RE.match(t):
        return VoiceCommand(transcript=raw, action="abort", confidence=confidence)
    if _RETRY_RE.match(t):
        return VoiceCommand(transcript=raw, action="retry", confidence=confidence)

    m = _CELL_RE.match(t)
    if not m:
        return base
    letter = NATO.get(m.group(2))
    if letter is None:
        return base

    col = ord(letter) - ord("a")
    row = int(m.group(3)) - 1
    if not (0 <= col < GRID and 0 <= row < GRID):
        return base

    index = index_of(col, row)
    is_fire = m.group(1) in {"fire", "shoot", "attack"}
    return VoiceCommand(
        transcript=raw,
        action="fire" if is_fire else "place",
        cell_index=index,
        coord=coord(index),
        confidence=confidence,
    )


def from_voice(cmd: VoiceCommand) -> Command | None:
    if cmd.action == "fire":
        return Fire(cmd.cell_index, cmd.confidence)
    if cmd.action == "place":
        return Place(cmd.cell_index)
    if cmd.action == "abort":
        return Abort()
    if cmd.action == "retry":
        return Retry()
    return None


def from_pointer(*, grid: Literal["own", "enemy"], cell_index: int) -> Command:
    """A click on the own grid places the unit; a click on the enemy grid fires."""

    if not in_bounds(cell_index):
        raise ValueError(f"cell_index must be between 0 and {GRID * GRID - 1}")
    if grid == "own":
        return Place(cell_index)
    return Fire(cell_index)


def normalize(req: CommandRequest) -> Command | None:
    """Map a raw pointer/voice request to a canonical command.

    Returns None for transcripts that do not parse; callers treat that as a no-op.
    """

    if req.source == "pointer":
        if req.grid is None or req.cell_index is None:
            raise ValueError("pointer commands require grid and cell_index")
        return from_pointer(grid=req.grid, cell_index=req.cell_index)

    if not req.transcript:
        raise ValueError("voice commands require a transcript")
    return from_voice(parse_voice(req.transcript, req.confidence))
