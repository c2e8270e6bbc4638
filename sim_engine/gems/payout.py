"""Gem grid payout math: odds, compounding multiplier, payout."""


def odds(cell_count: int, hazard_count: int, revealed_count: int) -> float:
    """Estimated chance that the next reveal is a gem.

    Uses the expected hazard ratio, not the actual board, so it is a
    display figure only. Revealed cells are assumed to have been safe.
    """
    remaining = cell_count - revealed_count
    if remaining <= 0:
        return 0.0
    safe_left = cell_count - hazard_count - revealed_count
    return max(0.0, min(1.0, safe_left / remaining))


def multiplier(base_multiplier: float, risk_factor: float, safe_reveal_count: int) -> float:
    """Compounding multiplier after `safe_reveal_count` gems."""
    if safe_reveal_count <= 0:
        return base_multiplier
    return base_multiplier * (1.0 + risk_factor) ** safe_reveal_count


def potential_payout(stake: float, multiplier: float) -> float:
    return stake * multiplier


def multiplier_ladder(base_multiplier: float, risk_factor: float, steps: int) -> list[float]:
    """Multipliers for 1..steps safe reveals."""
    return [multiplier(base_multiplier, risk_factor, n) for n in range(1, steps + 1)]
