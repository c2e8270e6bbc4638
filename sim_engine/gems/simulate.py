"""
GEMRUSH: RTP Simulation

Monte Carlo run of whole rounds through the real state machine: fund,
stake, lock in, open random cells until a target count or a hazard, then
cash out. Reports measured return-to-player against the closed form.

Usage:
    from sim_engine.gems.simulate import simulate
    result = simulate(hazard_count=5, target_reveals=3, rounds=100_000)
    print(result.to_dict())
"""

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Optional

from config.grid_schema import DEFAULT_GRID, GridConfig
from sim_engine.gems import machine, payout

logger = logging.getLogger("gemrush.sim")


@dataclass
class SimResult:
    """Simulation results for a gem grid strategy."""
    rounds: int
    hazard_count: int
    target_reveals: int
    rtp_theoretical: float
    rtp: float
    house_edge_measured: float
    avg_multiplier: float
    max_multiplier_hit: float
    hit_rate: float  # share of rounds cashed out
    total_wagered: float
    total_returned: float
    confidence_95: tuple = (0.0, 0.0)
    distribution: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "rounds": self.rounds,
            "hazard_count": self.hazard_count,
            "target_reveals": self.target_reveals,
            "rtp_theoretical": round(self.rtp_theoretical, 4),
            "rtp": round(self.rtp, 4),
            "house_edge_measured": round(self.house_edge_measured, 6),
            "avg_multiplier": round(self.avg_multiplier, 4),
            "max_multiplier_hit": round(self.max_multiplier_hit, 4),
            "hit_rate": round(self.hit_rate, 4),
            "total_wagered": round(self.total_wagered, 2),
            "total_returned": round(self.total_returned, 2),
            "confidence_95": [round(x, 6) for x in self.confidence_95],
            "distribution": self.distribution,
        }


def theoretical_rtp(config: Optional[GridConfig] = None, hazard_count: int = 5,
                    target_reveals: int = 3) -> float:
    """Expected return per unit staked under independent placement.

    Each cell is a gem with chance 1 - p, so surviving k picks has chance
    (1 - p)^k and pays base * (1 + risk)^k.
    """
    config = config or DEFAULT_GRID
    p_safe = 1.0 - hazard_count / config.cell_count
    mult = payout.multiplier(config.base_multiplier, config.risk_factor, target_reveals)
    return p_safe ** target_reveals * mult


def _bucket(mult: float) -> str:
    if mult == 0:
        return "0x"
    elif mult < 2:
        return "1-2x"
    elif mult < 5:
        return "2-5x"
    elif mult < 10:
        return "5-10x"
    return "10x+"


def play_round(state: machine.RoundState, target_reveals: int,
               rng: random.Random) -> tuple[machine.RoundState, float]:
    """Play one round from a fresh, funded, staked state.

    Returns the next fresh state and the multiplier paid (0 on a hazard).
    """
    state = machine.lock_in(state)
    order = list(range(state.config.cell_count))
    rng.shuffle(order)
    for index in order[:target_reveals]:
        state = machine.reveal(state, index)
        if state.game_over:
            return machine.new_round(state, rng), 0.0
    paid = state.multiplier
    return machine.cash_out(state, rng), paid


def simulate(config: Optional[GridConfig] = None, hazard_count: int = 5,
             target_reveals: int = 3, rounds: int = 10_000, seed: int = 42,
             stake: float = 1.0) -> SimResult:
    """Run `rounds` rounds with a fixed reveal target and report RTP."""
    config = config or DEFAULT_GRID
    target_reveals = max(1, min(config.cell_count, target_reveals))
    rng = random.Random(seed)

    state = machine.new_game(0.0, config, rng)
    state = machine.set_hazard_count(state, hazard_count, rng)
    hazard_count = state.hazard_count

    total_wagered = 0.0
    total_returned = 0.0
    wins = 0
    max_mult = 0.0
    sum_sq = 0.0
    buckets = {}

    for _ in range(rounds):
        # Top up so the stake is always affordable; deposits are not counted.
        if state.balance < stake:
            state = machine.deposit(state, stake * 100)
        state = machine.set_stake(state, stake)
        state, mult = play_round(state, target_reveals, rng)

        total_wagered += stake
        total_returned += stake * mult
        sum_sq += mult * mult
        if mult > 0:
            wins += 1
        max_mult = max(max_mult, mult)
        b = _bucket(mult)
        buckets[b] = buckets.get(b, 0) + 1

    rtp = total_returned / total_wagered if total_wagered > 0 else 0.0
    avg_mult = total_returned / (stake * rounds) if rounds > 0 else 0.0
    variance = (sum_sq / rounds - avg_mult ** 2) if rounds > 0 else 0.0
    std_err = math.sqrt(max(variance, 0.0) / rounds) if rounds > 0 else 0.0
    he = 1.0 - rtp

    result = SimResult(
        rounds=rounds,
        hazard_count=hazard_count,
        target_reveals=target_reveals,
        rtp_theoretical=theoretical_rtp(config, hazard_count, target_reveals),
        rtp=rtp,
        house_edge_measured=he,
        avg_multiplier=avg_mult,
        max_multiplier_hit=max_mult,
        hit_rate=wins / rounds if rounds > 0 else 0.0,
        total_wagered=total_wagered,
        total_returned=total_returned,
        confidence_95=(he - 1.96 * std_err, he + 1.96 * std_err),
        distribution={k: round(v / rounds, 4) for k, v in sorted(buckets.items())} if rounds else {},
    )
    logger.info(f"Simulated {rounds:,} rounds: rtp={rtp:.4f} "
                f"(theory {result.rtp_theoretical:.4f}) hit_rate={result.hit_rate:.3f}")
    return result
