"""
GemRush - Configuration

Environment-driven defaults for the gem grid and its hosts. Values come
from the process environment or a local .env file:

    GEMRUSH_CELL_COUNT        grid size                     (25)
    GEMRUSH_MAX_HAZARDS       hazard ceiling                (15)
    GEMRUSH_BASE_MULTIPLIER   multiplier before any gem     (1.2)
    GEMRUSH_RISK_FACTOR       compounding growth per gem    (0.1)
    GEMRUSH_DEFAULT_HAZARDS   hazards in the first round    (5)
    GEMRUSH_PLACEMENT         independent | exact           (independent)
    GEMRUSH_DB_PATH           SQLite file for the balance   (gemrush.db)
    GEMRUSH_LOG_LEVEL         logging level                 (INFO)
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

from config.grid_schema import GridConfig

load_dotenv()

DB_PATH = Path(os.getenv("GEMRUSH_DB_PATH", "gemrush.db"))
LOG_LEVEL = os.getenv("GEMRUSH_LOG_LEVEL", "INFO").upper()


# ============================================================
# Grid defaults
# ============================================================

class GridSettings:

    CELL_COUNT       = int(os.getenv("GEMRUSH_CELL_COUNT", "25"))
    MAX_HAZARDS      = int(os.getenv("GEMRUSH_MAX_HAZARDS", "15"))
    BASE_MULTIPLIER  = float(os.getenv("GEMRUSH_BASE_MULTIPLIER", "1.2"))
    RISK_FACTOR      = float(os.getenv("GEMRUSH_RISK_FACTOR", "0.1"))
    DEFAULT_HAZARDS  = int(os.getenv("GEMRUSH_DEFAULT_HAZARDS", "5"))
    PLACEMENT        = os.getenv("GEMRUSH_PLACEMENT", "independent")


def default_grid_config() -> GridConfig:
    """Validated GridConfig from the environment. Raises ValidationError on bad values."""
    return GridConfig(
        cell_count=GridSettings.CELL_COUNT,
        max_hazards=GridSettings.MAX_HAZARDS,
        base_multiplier=GridSettings.BASE_MULTIPLIER,
        risk_factor=GridSettings.RISK_FACTOR,
        default_hazards=GridSettings.DEFAULT_HAZARDS,
        placement=GridSettings.PLACEMENT,
    )


def configure_logging(level: str = None) -> None:
    """Structured logging for hosts. The round core itself never logs."""
    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
