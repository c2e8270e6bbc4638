"""
GEMRUSH: Round State Machine

One round of the gem grid as an immutable snapshot plus the actions that
move it forward. Every action is a plain function (state, input) -> state.
A rejected action returns the very same snapshot object, so hosts can
detect a no-op with `new is old`. Nothing here raises on player input.

    fresh ──lock_in──▶ locked ──reveal──▶ playing ──hazard──▶ game over
      ▲                                     │
      └────────────── cash_out / new_round ─┘

Usage:
    from sim_engine.gems.machine import new_game, deposit, set_stake, lock_in, reveal, cash_out
    state = new_game(balance=0.0)
    state = deposit(state, 10)
    state = set_stake(state, 2)
    state = lock_in(state)
    state = reveal(state, 7)
    if state.signal is Signal.SAFE_REVEAL:
        state = cash_out(state)
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from config.grid_schema import DEFAULT_GRID, GridConfig
from sim_engine.gems import payout
from sim_engine.gems.grid import draw_cells


class Signal(str, Enum):
    """Advisory events for the host to render (sound, flash). No payload."""
    SAFE_REVEAL = "safe-reveal"
    HAZARD_REVEAL = "hazard-reveal"
    WIN = "win"


@dataclass(frozen=True)
class RoundState:
    """Snapshot of one round. Replaced, never mutated."""
    cells: tuple[bool, ...]          # True = gem, False = hazard
    revealed: tuple[bool, ...]
    hazard_count: int
    score: int
    stake: float
    multiplier: float
    potential_payout: float
    balance: float
    is_playing: bool
    is_locked_in: bool
    game_over: bool
    config: GridConfig = DEFAULT_GRID
    signal: Optional[Signal] = None  # emitted by the transition that built this snapshot

    @property
    def revealed_count(self) -> int:
        return sum(self.revealed)

    @property
    def has_revealed(self) -> bool:
        return any(self.revealed)

    @property
    def current_odds(self) -> float:
        return payout.odds(self.config.cell_count, self.hazard_count, self.revealed_count)

    def to_dict(self, reveal_board: bool = True) -> dict:
        """JSON-friendly snapshot for hosts.

        With reveal_board=False unrevealed cells come out as None so a
        client cannot read the board ahead of its clicks.
        """
        if reveal_board:
            cells = list(self.cells)
        else:
            cells = [safe if shown else None for safe, shown in zip(self.cells, self.revealed)]
        return {
            "cells": cells,
            "revealed": list(self.revealed),
            "hazard_count": self.hazard_count,
            "score": self.score,
            "stake": self.stake,
            "multiplier": self.multiplier,
            "potential_payout": payout.potential_payout(self.stake, self.multiplier),
            "current_odds": self.current_odds,
            "balance": self.balance,
            "is_playing": self.is_playing,
            "is_locked_in": self.is_locked_in,
            "game_over": self.game_over,
            "signal": self.signal.value if self.signal else None,
            "config": self.config.model_dump(mode="json"),
        }


# ═══════════════════════════════════════════════════════════════
# Input checks
# ═══════════════════════════════════════════════════════════════

def _is_amount(value) -> bool:
    """Finite, non-negative real. bool is rejected even though it is an int."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value) and value >= 0
    except OverflowError:
        return False


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# ═══════════════════════════════════════════════════════════════
# Round construction
# ═══════════════════════════════════════════════════════════════

def _fresh(config: GridConfig, hazard_count: int, balance: float, stake: float,
           rng=None, signal: Optional[Signal] = None) -> RoundState:
    base = config.base_multiplier
    return RoundState(
        cells=draw_cells(config.cell_count, hazard_count, rng, config.placement),
        revealed=(False,) * config.cell_count,
        hazard_count=hazard_count,
        score=0,
        stake=stake,
        multiplier=base,
        potential_payout=payout.potential_payout(stake, base),
        balance=balance,
        is_playing=False,
        is_locked_in=False,
        game_over=False,
        config=config,
        signal=signal,
    )


def new_game(balance: float = 0.0, config: Optional[GridConfig] = None,
             rng: Optional[random.Random] = None) -> RoundState:
    """First round of a process, built around a balance loaded from storage."""
    config = config or DEFAULT_GRID
    if not _is_amount(balance):
        balance = 0.0
    return _fresh(config, config.default_hazards, float(balance), config.default_stake, rng)


# ═══════════════════════════════════════════════════════════════
# Actions
# ═══════════════════════════════════════════════════════════════

def deposit(state: RoundState, amount) -> RoundState:
    if not _is_amount(amount):
        return state
    balance = state.balance + amount
    if not math.isfinite(balance):
        return state
    return replace(state, balance=balance, signal=None)


def set_stake(state: RoundState, new_stake) -> RoundState:
    if state.has_revealed or not _is_amount(new_stake) or new_stake > state.balance:
        return state
    return replace(
        state,
        stake=new_stake,
        potential_payout=payout.potential_payout(new_stake, state.multiplier),
        signal=None,
    )


def set_hazard_count(state: RoundState, hazard_count, rng: Optional[random.Random] = None) -> RoundState:
    config = state.config
    if state.has_revealed or not _is_int(hazard_count):
        return state
    if not 1 <= hazard_count <= config.max_hazards:
        return state
    return replace(
        state,
        cells=draw_cells(config.cell_count, hazard_count, rng, config.placement),
        hazard_count=hazard_count,
        signal=None,
    )


def new_round(state: RoundState, rng: Optional[random.Random] = None) -> RoundState:
    return _fresh(state.config, state.hazard_count, state.balance, state.stake, rng)


def lock_in(state: RoundState) -> RoundState:
    if state.stake > state.balance:
        return state
    if state.is_locked_in:
        return state
    return replace(state, is_locked_in=True, signal=None)


def reveal(state: RoundState, index) -> RoundState:
    """Open one cell.

    The stake leaves the balance on the first reveal of the round, not at
    lock-in, so stake and hazard count stay editable until the first click.
    """
    if not state.is_locked_in or state.game_over:
        return state
    if not _is_int(index) or not 0 <= index < state.config.cell_count:
        return state
    if state.revealed[index]:
        return state

    balance = state.balance
    if not state.has_revealed:
        if state.stake > balance:
            return state
        balance -= state.stake

    revealed = state.revealed[:index] + (True,) + state.revealed[index + 1:]

    if state.cells[index]:
        score = state.score + 1
        mult = payout.multiplier(state.config.base_multiplier, state.config.risk_factor, score)
        return replace(
            state,
            revealed=revealed,
            balance=balance,
            is_playing=True,
            score=score,
            multiplier=mult,
            potential_payout=payout.potential_payout(state.stake, mult),
            signal=Signal.SAFE_REVEAL,
        )

    # Hazard: the debited stake is forfeited.
    return replace(
        state,
        revealed=revealed,
        balance=balance,
        is_playing=False,
        game_over=True,
        signal=Signal.HAZARD_REVEAL,
    )


def cash_out(state: RoundState, rng: Optional[random.Random] = None) -> RoundState:
    """Credit stake × multiplier and open the next round with the same stake."""
    winnings = payout.potential_payout(state.stake, state.multiplier)
    return _fresh(state.config, state.hazard_count, state.balance + winnings, state.stake,
                  rng, signal=Signal.WIN)


# ═══════════════════════════════════════════════════════════════
# Dispatch by name
# ═══════════════════════════════════════════════════════════════

ACTIONS = {
    "deposit": deposit,
    "set_stake": set_stake,
    "set_hazard_count": set_hazard_count,
    "new_round": new_round,
    "lock_in": lock_in,
    "reveal": reveal,
    "cash_out": cash_out,
}

# Actions that draw a new board and therefore take the random source.
_DRAWING = {"set_hazard_count", "new_round", "cash_out"}


def apply(state: RoundState, action: str, *args, rng: Optional[random.Random] = None) -> RoundState:
    """Apply an action by name. Unknown names raise KeyError."""
    fn = ACTIONS[action]
    if action in _DRAWING:
        return fn(state, *args, rng=rng)
    return fn(state, *args)
