"""Gem grid generation: independent per-cell draws or exact hazard count."""
import random
from typing import Optional

INDEPENDENT = "independent"
EXACT = "exact"


def draw_cells(cell_count: int, hazard_count: int, rng: Optional[random.Random] = None,
               placement: str = INDEPENDENT) -> tuple[bool, ...]:
    """Draw a board. True = gem, False = hazard.

    Independent placement draws every cell on its own with hazard chance
    hazard_count / cell_count, so the real number of hazards varies per
    round. Exact placement samples hazard_count distinct hazard cells.
    """
    rng = rng or random
    if placement == EXACT:
        hazards = set(rng.sample(range(cell_count), min(hazard_count, cell_count)))
        return tuple(i not in hazards for i in range(cell_count))
    ratio = hazard_count / cell_count
    return tuple(rng.random() >= ratio for _ in range(cell_count))


def hazard_positions(cells) -> list[int]:
    return [i for i, safe in enumerate(cells) if not safe]
