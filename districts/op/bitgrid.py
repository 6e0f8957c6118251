# districts/op/bitgrid.py
# Half-grid bitboards: cell masks, 4-connected flood fill, sealed-region pruning

"""
Bit layout of the left half of an N×N grid:

    bit(x, y) = x*N + y,   x in [0, N/2) columns, y in [0, N) rows

so each column is a contiguous run of N bits and column N/2 - 1 is the one
touching the cut line. All masks are plain Python ints.
"""

from __future__ import annotations
from typing import Optional, Tuple


def half_cells(n: int) -> int:
    """Number of cells in one half."""
    return n * (n // 2)


def half_mask(n: int) -> int:
    """Mask with every cell of the left half set."""
    if n <= 0:
        return 0
    return (1 << half_cells(n)) - 1


def column_mask(n: int, x: int) -> int:
    """Mask of column x."""
    return ((1 << n) - 1) << (x * n)


def cut_column_mask(n: int) -> int:
    """Mask of the column adjacent to the cut line."""
    return column_mask(n, n // 2 - 1)


def edge_masks(n: int) -> Tuple[int, int]:
    """
    Masks of the top row (y = N-1) and bottom row (y = 0) across the half.

    Shifting by one bit moves along a column; these keep flood fill from
    wrapping into the neighbouring column.
    """
    top = 0
    bot = 0
    for x in range(n // 2):
        top |= 1 << (x * n + (n - 1))
        bot |= 1 << (x * n)
    return top, bot


def flood_fill(seed: int, domain: int, n: int) -> int:
    """
    4-connected component of domain reachable from seed.

    Args:
        seed: starting cells (any subset; cells outside domain are ignored)
        domain: cells that may be entered
        n: grid side

    Returns:
        Mask of the component(s) containing the seed cells
    """
    if seed == 0:
        return 0
    top_mask, bot_mask = edge_masks(n)
    comp = 0
    frontier = seed & domain
    while frontier:
        comp |= frontier
        up = (frontier & ~top_mask) << 1
        down = (frontier & ~bot_mask) >> 1
        left = frontier >> n
        right = frontier << n
        frontier = (up | down | left | right) & domain & ~comp
    return comp


def has_sealed_remainder(covered: int, n: int) -> bool:
    """
    True if the uncovered part of the half can never be completed.

    An uncovered region that does not reach the cut column can only be filled
    by districts lying wholly inside it, so its size must be a multiple of N.

    Args:
        covered: mask of cells already assigned
        n: grid side

    Returns:
        True when some sealed region has a size not divisible by n
    """
    escape = cut_column_mask(n)
    remaining = covered ^ half_mask(n)
    while remaining:
        seed = remaining & -remaining
        comp = flood_fill(seed, remaining, n)
        remaining ^= comp
        if comp & escape:
            continue
        if comp.bit_count() % n != 0:
            return True
    return False


def next_root(covered: int, n: int) -> Optional[int]:
    """
    Lowest uncovered bit of the half, or None when the half is full.
    """
    remaining = covered ^ half_mask(n)
    if remaining == 0:
        return None
    return (remaining & -remaining).bit_length() - 1
