"""
GEMRUSH: Grid Configuration Schema

Immutable parameters of a gem grid. One process-wide default is built from
the environment (see config.settings); a host may pass its own GridConfig
to any round.

Usage:
    from config.grid_schema import GridConfig
    config = GridConfig(cell_count=36, max_hazards=20)
    json_str = config.model_dump_json(indent=2)
"""

from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Placement(str, Enum):
    INDEPENDENT = "independent"     # per-cell draw, hazard total varies
    EXACT = "exact"                 # exactly hazard_count hazards


class GridConfig(BaseModel):
    """Grid size, hazard ceiling and multiplier growth."""
    model_config = ConfigDict(frozen=True)

    cell_count: int = Field(25, gt=0)
    max_hazards: int = Field(15, gt=0)
    base_multiplier: float = Field(1.2, gt=1.0)
    risk_factor: float = Field(0.1, gt=0.0)   # compounding growth per gem
    default_hazards: int = Field(5, gt=0)
    default_stake: float = Field(1.0, ge=0.0)
    placement: Placement = Placement.INDEPENDENT

    @model_validator(mode="after")
    def check_hazard_bounds(self):
        if self.max_hazards >= self.cell_count:
            raise ValueError(
                f"max_hazards ({self.max_hazards}) must be below cell_count ({self.cell_count})"
            )
        if self.default_hazards > self.max_hazards:
            raise ValueError(
                f"default_hazards ({self.default_hazards}) exceeds max_hazards ({self.max_hazards})"
            )
        return self


DEFAULT_GRID = GridConfig()
