"""
GEMRUSH: Table Driver

Host-side owner of the single live RoundState. Applies actions one at a
time, writes the balance through an injected store whenever it changes,
and forwards advisory signals to listeners (sound, flashes, toasts).

Usage:
    from config.balance_store import MemoryBalanceStore
    from sim_engine.gems.table import GemTable

    table = GemTable(MemoryBalanceStore(10.0))
    table.on_signal(lambda sig: print(sig.value))
    table.set_stake(2)
    table.lock_in()
    table.reveal(0)
    print(table.snapshot())
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from config.balance_store import BalanceStore
from config.grid_schema import GridConfig
from sim_engine.gems import machine
from sim_engine.gems.machine import RoundState, Signal

logger = logging.getLogger("gemrush.table")


@dataclass(frozen=True)
class Outcome:
    """Result of one dispatched action: whether it applied, and the snapshot it left."""
    accepted: bool
    state: RoundState

    @property
    def signal(self) -> Optional[Signal]:
        return self.state.signal if self.accepted else None

    def __bool__(self) -> bool:
        return self.accepted


def _is_live(state: RoundState) -> bool:
    return state.is_playing


class GemTable:
    """Serialises actions on one RoundState and persists its balance."""

    def __init__(self, store: BalanceStore, config: Optional[GridConfig] = None,
                 rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng
        self._listeners: list[Callable[[Signal], None]] = []
        self._lock = threading.Lock()
        balance = store.load()
        self.state: RoundState = machine.new_game(balance, config, rng)
        logger.info(f"Table opened: balance={self.state.balance:.2f} "
                    f"grid={self.state.config.cell_count} hazards={self.state.hazard_count}")

    # ── Listeners ──

    def on_signal(self, callback: Callable[[Signal], None]) -> None:
        self._listeners.append(callback)

    def _emit(self, signal: Signal) -> None:
        for cb in list(self._listeners):
            try:
                cb(signal)
            except Exception as e:
                # Signals are advisory only.
                logger.warning(f"Signal listener failed on {signal.value}: {e}")

    # ── Dispatch ──

    def dispatch(self, action: str, *args,
                 guard: Optional[Callable[[RoundState], bool]] = None) -> Outcome:
        """Apply `action` and return the outcome with the snapshot it left.

        `guard` is checked against the current snapshot under the same lock
        as the action; when it returns False the action is not applied.
        """
        with self._lock:
            before = self.state
            if guard is not None and not guard(before):
                logger.debug(f"Refused {action}{args}: guard not met")
                return Outcome(False, before)
            after = machine.apply(before, action, *args, rng=self.rng)
            if after is before:
                logger.debug(f"Rejected {action}{args}")
                return Outcome(False, before)
            self.state = after
            if after.balance != before.balance:
                self.store.save(after.balance)
                logger.info(f"{action}{args}: balance {before.balance:.2f} -> {after.balance:.2f}")
            else:
                logger.debug(f"{action}{args} applied")
        if after.signal is not None:
            self._emit(after.signal)
        return Outcome(True, after)

    def deposit(self, amount) -> Outcome:
        return self.dispatch("deposit", amount)

    def set_stake(self, stake) -> Outcome:
        return self.dispatch("set_stake", stake)

    def set_hazard_count(self, hazard_count) -> Outcome:
        return self.dispatch("set_hazard_count", hazard_count)

    def new_round(self) -> Outcome:
        return self.dispatch("new_round")

    def lock_in(self) -> Outcome:
        return self.dispatch("lock_in")

    def reveal(self, index) -> Outcome:
        return self.dispatch("reveal", index)

    def cash_out(self) -> Outcome:
        """Cash out, offered only while a round is live."""
        return self.dispatch("cash_out", guard=_is_live)

    def snapshot(self, reveal_board: bool = True) -> dict:
        return self.state.to_dict(reveal_board=reveal_board)
