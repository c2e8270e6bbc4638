#!/usr/bin/env python3
"""
GEMRUSH: Terminal Host

Usage:
    python -m tools.gems_cli play
    python -m tools.gems_cli play --db /tmp/gems.db --hazards 8
    python -m tools.gems_cli simulate --hazards 5 --reveals 3 --rounds 200000

In `play`, type commands at the prompt:
    deposit 10 | stake 2 | hazards 3 | lock | reveal 7 | cashout | new | quit
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.balance_store import SqliteBalanceStore
from config.settings import DB_PATH, configure_logging, default_grid_config
from sim_engine.gems import payout
from sim_engine.gems.machine import Signal
from sim_engine.gems.simulate import simulate
from sim_engine.gems.table import GemTable

console = Console()

SIGNAL_TEXT = {
    Signal.SAFE_REVEAL: "[green]💎 Gem![/green]",
    Signal.HAZARD_REVEAL: "[red]💥 Ruby! Round lost.[/red]",
    Signal.WIN: "[bold yellow]🏆 Cashed out![/bold yellow]",
}

HELP = "deposit N | stake X | hazards N | lock | reveal I | cashout | new | quit"


def ladder_text(state, ahead: int = 4) -> str:
    """Multipliers for the next few safe reveals, e.g. '1.452x → 1.597x'."""
    ahead = min(ahead, state.config.cell_count - state.revealed_count)
    if ahead <= 0 or state.game_over:
        return "-"
    steps = payout.multiplier_ladder(state.config.base_multiplier, state.config.risk_factor,
                                     state.score + ahead)
    return " → ".join(f"{m:.3f}x" for m in steps[state.score:])


def render(table: GemTable) -> None:
    state = table.state
    cols = int(state.config.cell_count ** 0.5) or 1
    grid = Table(show_header=False, show_lines=True, padding=(0, 1))
    for _ in range(cols):
        grid.add_column(justify="center")
    row = []
    for i, (safe, shown) in enumerate(zip(state.cells, state.revealed)):
        if shown:
            row.append("💎" if safe else "💥")
        elif state.game_over and not safe:
            row.append("[dim]✕[/dim]")
        else:
            row.append(f"[dim]{i}[/dim]")
        if len(row) == cols:
            grid.add_row(*row)
            row = []
    if row:
        grid.add_row(*row, *[""] * (cols - len(row)))

    status = "GAME OVER" if state.game_over else (
        "playing" if state.is_playing else ("locked in" if state.is_locked_in else "ready"))
    info = (
        f"Balance [bold]{state.balance:.2f}[/bold]   Stake {state.stake:.2f}   "
        f"Hazards {state.hazard_count}/{state.config.max_hazards}\n"
        f"Multiplier {state.multiplier:.3f}x   Payout {state.potential_payout:.2f}   "
        f"Next-gem odds {state.current_odds * 100:.1f}%   Status {status}"
        f"\nNext gems {ladder_text(state)}"
    )
    console.print(grid)
    console.print(info)


def _number(text: str, cast=float):
    try:
        return cast(text)
    except (TypeError, ValueError, OverflowError):
        return None


def run_command(table: GemTable, line: str) -> bool:
    """Apply one typed command. Returns False when the player quits."""
    parts = line.strip().split()
    if not parts:
        return True
    cmd, args = parts[0].lower(), parts[1:]
    arg = args[0] if args else None

    if cmd in ("quit", "exit", "q"):
        return False
    if cmd in ("help", "?"):
        console.print(HELP)
        return True

    if cmd == "deposit":
        accepted = table.deposit(_number(arg))
    elif cmd == "stake":
        accepted = table.set_stake(_number(arg))
    elif cmd in ("hazards", "mines"):
        accepted = table.set_hazard_count(_number(arg, int))
    elif cmd == "lock":
        accepted = table.lock_in()
    elif cmd == "reveal":
        accepted = table.reveal(_number(arg, int))
    elif cmd == "cashout":
        accepted = table.cash_out()
    elif cmd == "new":
        accepted = table.new_round()
    else:
        console.print(f"[yellow]Unknown command '{cmd}'.[/yellow] {HELP}")
        return True

    if not accepted:
        console.print(f"[yellow]⚠️  '{line.strip()}' not allowed right now[/yellow]")
    return True


def play(args) -> None:
    config = default_grid_config()
    store = SqliteBalanceStore(args.db)
    table = GemTable(store, config)
    if args.hazards:
        table.set_hazard_count(args.hazards)
    table.on_signal(lambda sig: console.print(SIGNAL_TEXT[sig]))

    console.print(Panel(
        f"[bold]💎 GemRush[/bold]\n{HELP}",
        subtitle=f"balance file: {args.db}",
    ))
    while True:
        render(table)
        try:
            line = console.input("[bold cyan]> [/bold cyan]")
        except (EOFError, KeyboardInterrupt):
            break
        if not run_command(table, line):
            break
    console.print(f"Final balance: [bold]{table.state.balance:.2f}[/bold]")


def run_simulation(args) -> None:
    config = default_grid_config()
    result = simulate(config, hazard_count=args.hazards, target_reveals=args.reveals,
                      rounds=args.rounds, seed=args.seed)
    data = result.to_dict()
    out = Table(title=f"🎲 {args.rounds:,} rounds · {result.hazard_count} hazards · "
                      f"cash out after {result.target_reveals}")
    out.add_column("Metric")
    out.add_column("Value", justify="right")
    for key in ("rtp_theoretical", "rtp", "house_edge_measured", "hit_rate",
                "avg_multiplier", "max_multiplier_hit"):
        out.add_row(key, f"{data[key]}")
    for bucket, share in data["distribution"].items():
        out.add_row(f"  {bucket}", f"{share * 100:.2f}%")
    console.print(out)


def main(argv=None):
    parser = argparse.ArgumentParser(description="GemRush gem grid in the terminal")
    sub = parser.add_subparsers(dest="command", required=True)

    p_play = sub.add_parser("play", help="Play interactively")
    p_play.add_argument("--db", type=str, default=str(DB_PATH), help="SQLite balance file")
    p_play.add_argument("--hazards", type=int, default=None)

    p_sim = sub.add_parser("simulate", help="Monte Carlo RTP check")
    p_sim.add_argument("--hazards", type=int, default=5)
    p_sim.add_argument("--reveals", type=int, default=3)
    p_sim.add_argument("--rounds", type=int, default=100_000)
    p_sim.add_argument("--seed", type=int, default=42)

    parser.add_argument("--log-level", type=str, default=None)
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "play":
        play(args)
    else:
        run_simulation(args)


if __name__ == "__main__":
    main()
