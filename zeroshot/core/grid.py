from __future__ import annotations

GRID = 6
CELLS = GRID * GRID

COLUMNS = "ABCDEF"


def coord(index: int) -> str:
    """Chess-style label for a cell index: 0 -> 'A1', 35 -> 'F6'."""

    return f"{COLUMNS[index % GRID]}{index // GRID + 1}"


def index_of(column: int, row: int) -> int:
    if not (0 <= column < GRID and 0 <= row < GRID):
        raise ValueError(f"cell ({column}, {row}) is off the {GRID}x{GRID} grid")
    return row * GRID + column


def in_bounds(index: int) -> bool:
    return 0 <= index < CELLS
