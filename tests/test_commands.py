from __future__ import annotations

import pytest

from zeroshot.api.models import CommandRequest
from zeroshot.commands import Abort, Fire, Place, Retry, from_pointer, normalize, parse_voice
from zeroshot.core.grid import coord, index_of


def test_grid_coordinates() -> None:
    assert coord(0) == "A1"
    assert coord(35) == "F6"
    assert index_of(0, 3) == 18
    with pytest.raises(ValueError):
        index_of(6, 0)


@pytest.mark.parametrize(
    ("transcript", "action", "index"),
    [
        ("fire alpha four", "fire", 18),
        ("Shoot B 2", "fire", 7),
        ("attack foxtrot six", "fire", 35),
        ("place bravo 3", "place", 13),
        ("deploy charlie one", "place", 2),
    ],
)
def test_parse_voice_cells(transcript: str, action: str, index: int) -> None:
    cmd = parse_voice(transcript, 0.9)
    assert cmd.action == action
    assert cmd.cell_index == index
    assert cmd.coord == coord(index)
    assert cmd.confidence == 0.9


def test_parse_voice_control_words() -> None:
    assert parse_voice("abort").action == "abort"
    assert parse_voice("cancel that").action == "abort"
    assert parse_voice("retry").action == "retry"
    assert parse_voice("reload please").action == "retry"


@pytest.mark.parametrize("transcript", ["fire golf one", "fire alpha seven", "hello there", "fire alpha"])
def test_parse_voice_unknown(transcript: str) -> None:
    cmd = parse_voice(transcript)
    assert cmd.action == "unknown"
    assert cmd.cell_index == -1


def test_pointer_commands_follow_the_grid() -> None:
    assert from_pointer(grid="own", cell_index=4) == Place(4)
    assert from_pointer(grid="enemy", cell_index=4) == Fire(4)
    with pytest.raises(ValueError):
        from_pointer(grid="enemy", cell_index=36)


def test_normalize() -> None:
    assert normalize(CommandRequest(source="pointer", grid="enemy", cell_index=5)) == Fire(5)
    assert normalize(CommandRequest(source="voice", transcript="fire alpha four")) == Fire(18, confidence=1.0)
    assert normalize(CommandRequest(source="voice", transcript="stop")) == Abort()
    assert normalize(CommandRequest(source="voice", transcript="reload")) == Retry()
    assert normalize(CommandRequest(source="voice", transcript="sing a song")) is None

    with pytest.raises(ValueError):
        normalize(CommandRequest(source="pointer", grid="own"))
    with pytest.raises(ValueError):
        normalize(CommandRequest(source="voice"))
