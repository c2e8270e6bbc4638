"""
GEMRUSH: Gem Grid Engine

Round state machine and payout math for a mines-style grid: stake, open
cells one at a time, cash out before a hazard turns up.

Usage:
    from sim_engine.gems import new_game, apply, Signal
    state = new_game(balance=10.0)
    state = apply(state, "lock_in")
    state = apply(state, "reveal", 12)
"""

from sim_engine.gems.payout import odds, multiplier, potential_payout, multiplier_ladder
from sim_engine.gems.machine import (
    ACTIONS, RoundState, Signal, apply, cash_out, deposit, lock_in, new_game,
    new_round, reveal, set_hazard_count, set_stake,
)
from sim_engine.gems.table import GemTable
