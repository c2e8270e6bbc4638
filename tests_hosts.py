#!/usr/bin/env python3
"""
Tests for the host side: table driver, balance stores, RTP simulation,
terminal commands and the HTTP surface.

Run: python tests_hosts.py
"""

import json
import random
import sys
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.balance_store import MemoryBalanceStore, SqliteBalanceStore
from config.grid_schema import GridConfig
from sim_engine.gems.machine import Signal
from sim_engine.gems.simulate import simulate, theoretical_rtp
from sim_engine.gems.table import GemTable

BOARD = (False, False) + (True,) * 23
SAFE = 5
HAZARD = 0


def _table(balance=10.0, store=None):
    store = store or MemoryBalanceStore(balance)
    table = GemTable(store, rng=random.Random(21))
    table.state = replace(table.state, cells=BOARD)
    return table


# ════════════════════════════════════════════════════════════════
# A) Table driver
# ════════════════════════════════════════════════════════════════

class TestGemTable(unittest.TestCase):

    def test_loads_balance_at_start(self):
        table = GemTable(MemoryBalanceStore(42.0), rng=random.Random(1))
        self.assertEqual(table.state.balance, 42.0)

    def test_persists_balance_changes_only(self):
        store = MemoryBalanceStore(10.0)
        table = _table(store=store)
        table.set_stake(2)
        table.lock_in()
        self.assertEqual(store.saves, 0)
        table.reveal(SAFE)
        self.assertEqual(store.saves, 1)
        self.assertEqual(store.balance, 8.0)
        table.reveal(SAFE + 1)
        self.assertEqual(store.saves, 1)
        table.deposit(5)
        self.assertEqual(store.balance, 13.0)

    def test_rejected_action_returns_false(self):
        table = _table()
        self.assertFalse(table.reveal(SAFE))           # not locked in
        self.assertFalse(table.set_stake(1000))
        self.assertFalse(table.set_hazard_count(99))
        self.assertTrue(table.lock_in())
        self.assertFalse(table.lock_in())

    def test_signals_reach_listeners(self):
        table = _table()
        seen = []
        table.on_signal(seen.append)
        table.set_stake(1)
        table.lock_in()
        table.reveal(SAFE)
        table.reveal(SAFE)                            # rejected, no repeat
        table.cash_out()
        self.assertEqual(seen, [Signal.SAFE_REVEAL, Signal.WIN])

    def test_hazard_signal(self):
        table = _table()
        seen = []
        table.on_signal(seen.append)
        table.lock_in()
        table.reveal(HAZARD)
        self.assertEqual(seen, [Signal.HAZARD_REVEAL])
        self.assertTrue(table.state.game_over)

    def test_broken_listener_does_not_block(self):
        table = _table()

        def boom(sig):
            raise RuntimeError("speaker unplugged")

        seen = []
        table.on_signal(boom)
        table.on_signal(seen.append)
        table.lock_in()
        self.assertTrue(table.reveal(SAFE))
        self.assertEqual(seen, [Signal.SAFE_REVEAL])

    def test_cash_out_only_while_playing(self):
        store = MemoryBalanceStore(10.0)
        table = _table(store=store)
        self.assertFalse(table.cash_out())
        table.lock_in()
        table.reveal(HAZARD)
        self.assertFalse(table.cash_out())
        self.assertEqual(store.balance, 9.0)

    def test_cash_out_credits_and_persists(self):
        store = MemoryBalanceStore(10.0)
        table = _table(store=store)
        table.set_stake(2)
        table.lock_in()
        table.reveal(SAFE)
        self.assertTrue(table.cash_out())
        self.assertAlmostEqual(store.balance, 8.0 + 2.0 * 1.32)
        self.assertFalse(table.state.is_playing)

    def test_concurrent_cash_outs_credit_once(self):
        import threading
        import time
        from unittest.mock import patch
        from sim_engine.gems import machine

        store = MemoryBalanceStore(10.0)
        table = _table(store=store)
        table.set_stake(2)
        table.lock_in()
        table.reveal(SAFE)
        real_apply = machine.apply

        def slow_apply(*args, **kwargs):
            time.sleep(0.05)
            return real_apply(*args, **kwargs)

        results = []
        with patch.object(machine, "apply", slow_apply):
            workers = [threading.Thread(target=lambda: results.append(table.cash_out()))
                       for _ in range(2)]
            for w in workers:
                w.start()
            for w in workers:
                w.join()
        self.assertEqual(sum(1 for r in results if r), 1)
        self.assertAlmostEqual(store.balance, 8.0 + 2.0 * 1.32)
        self.assertAlmostEqual(table.state.balance, 8.0 + 2.0 * 1.32)

    def test_outcome_carries_its_snapshot(self):
        table = _table()
        table.lock_in()
        outcome = table.reveal(SAFE)
        self.assertTrue(outcome.accepted)
        self.assertIs(outcome.state, table.state)
        self.assertIs(outcome.signal, Signal.SAFE_REVEAL)
        refused = table.reveal(SAFE)
        self.assertFalse(refused)
        self.assertIs(refused.state, outcome.state)
        self.assertIsNone(refused.signal)

    def test_custom_config(self):
        config = GridConfig(cell_count=9, max_hazards=4, default_hazards=2)
        table = GemTable(MemoryBalanceStore(1.0), config, random.Random(1))
        self.assertEqual(len(table.snapshot()["cells"]), 9)


# ════════════════════════════════════════════════════════════════
# B) Balance stores
# ════════════════════════════════════════════════════════════════

class TestSqliteBalanceStore(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = Path(self.tmpdir) / "nested" / "gems.db"

    def test_missing_balance_is_zero(self):
        self.assertEqual(SqliteBalanceStore(self.path).load(), 0.0)

    def test_round_trip_across_instances(self):
        SqliteBalanceStore(self.path).save(17.25)
        self.assertEqual(SqliteBalanceStore(self.path).load(), 17.25)

    def test_overwrite(self):
        store = SqliteBalanceStore(self.path)
        store.save(1.0)
        store.save(2.5)
        self.assertEqual(store.load(), 2.5)

    def test_separate_keys(self):
        SqliteBalanceStore(self.path, key="alice").save(3.0)
        self.assertEqual(SqliteBalanceStore(self.path, key="bob").load(), 0.0)

    def test_garbage_value_loads_as_zero(self):
        import sqlite3
        store = SqliteBalanceStore(self.path)
        conn = sqlite3.connect(str(self.path))
        conn.execute("INSERT INTO kv_store (key, value) VALUES ('gameBalance', 'lots')")
        conn.commit()
        conn.close()
        self.assertEqual(store.load(), 0.0)

    def test_in_memory(self):
        store = SqliteBalanceStore(":memory:")
        store.save(4.0)
        self.assertEqual(store.load(), 4.0)
        store.close()

    def test_table_survives_restart(self):
        table = _table(store=SqliteBalanceStore(self.path))
        table.deposit(10)
        table.lock_in()
        table.reveal(SAFE)
        reopened = GemTable(SqliteBalanceStore(self.path))
        self.assertEqual(reopened.state.balance, table.state.balance)


# ════════════════════════════════════════════════════════════════
# C) RTP simulation
# ════════════════════════════════════════════════════════════════

class TestSimulation(unittest.TestCase):

    def test_theoretical_rtp(self):
        expected = 0.8 ** 3 * 1.2 * 1.1 ** 3
        self.assertAlmostEqual(theoretical_rtp(hazard_count=5, target_reveals=3), expected)

    def test_measured_matches_theory(self):
        result = simulate(hazard_count=5, target_reveals=3, rounds=20_000, seed=7)
        self.assertAlmostEqual(result.rtp, result.rtp_theoretical, delta=0.03)
        self.assertAlmostEqual(result.hit_rate, 0.8 ** 3, delta=0.02)

    def test_result_shape(self):
        result = simulate(rounds=500, seed=1)
        data = result.to_dict()
        self.assertEqual(data["rounds"], 500)
        self.assertEqual(data["total_wagered"], 500.0)
        self.assertAlmostEqual(sum(data["distribution"].values()), 1.0, places=2)
        self.assertIn("0x", data["distribution"])
        self.assertLessEqual(data["confidence_95"][0], data["confidence_95"][1])

    def test_repeatable(self):
        a = simulate(rounds=300, seed=5).to_dict()
        b = simulate(rounds=300, seed=5).to_dict()
        self.assertEqual(a, b)

    def test_max_multiplier(self):
        result = simulate(hazard_count=1, target_reveals=2, rounds=200, seed=3)
        self.assertAlmostEqual(result.max_multiplier_hit, 1.2 * 1.1 ** 2)


# ════════════════════════════════════════════════════════════════
# D) Terminal commands
# ════════════════════════════════════════════════════════════════

class TestCliCommands(unittest.TestCase):

    def setUp(self):
        from tools import gems_cli
        self.cli = gems_cli
        self.table = _table(balance=0.0)

    def test_full_round(self):
        for line in ("deposit 10", "stake 2", "lock", f"reveal {SAFE}", "cashout"):
            self.assertTrue(self.cli.run_command(self.table, line))
        self.assertAlmostEqual(self.table.state.balance, 8.0 + 2.0 * 1.32)

    def test_quit(self):
        self.assertFalse(self.cli.run_command(self.table, "quit"))

    def test_bad_input_is_harmless(self):
        before = self.table.state
        for line in ("deposit lots", "reveal", "stake -1", "hazards x", "dance", ""):
            self.assertTrue(self.cli.run_command(self.table, line))
        self.assertIs(self.table.state, before)

    def test_hazards_command(self):
        self.cli.run_command(self.table, "hazards 3")
        self.assertEqual(self.table.state.hazard_count, 3)

    def test_ladder_follows_score(self):
        state = self.table.state
        self.assertEqual(self.cli.ladder_text(state, ahead=2), "1.320x → 1.452x")
        self.cli.run_command(self.table, "deposit 5")
        self.cli.run_command(self.table, "lock")
        self.cli.run_command(self.table, f"reveal {SAFE}")
        self.assertEqual(self.cli.ladder_text(self.table.state, ahead=2), "1.452x → 1.597x")
        self.cli.run_command(self.table, f"reveal {HAZARD}")
        self.assertEqual(self.cli.ladder_text(self.table.state), "-")

    def test_huge_number_is_harmless(self):
        before = self.table.state
        self.assertTrue(self.cli.run_command(self.table, "deposit 1e999"))
        self.assertTrue(self.cli.run_command(self.table, "stake " + "9" * 400))
        self.assertIs(self.table.state, before)

    def test_render_does_not_fail(self):
        self.cli.run_command(self.table, "deposit 5")
        self.cli.run_command(self.table, "lock")
        self.cli.run_command(self.table, f"reveal {HAZARD}")
        self.cli.render(self.table)


# ════════════════════════════════════════════════════════════════
# E) HTTP surface
# ════════════════════════════════════════════════════════════════

class TestWebApp(unittest.TestCase):

    def setUp(self):
        from web_app import create_app
        self.store = MemoryBalanceStore(10.0)
        self.table = _table(store=self.store)
        self.app = create_app(self.table)
        self.client = self.app.test_client()

    def _post(self, path, body=None):
        resp = self.client.post(path, json=body) if body is not None else self.client.post(path)
        return resp.status_code, resp.get_json()

    def test_state(self):
        resp = self.client.get("/api/state")
        self.assertEqual(resp.status_code, 200)
        state = resp.get_json()["state"]
        self.assertEqual(state["balance"], 10.0)
        self.assertTrue(all(c is None for c in state["cells"]))

    def test_round_over_http(self):
        code, data = self._post("/api/stake", {"stake": 2})
        self.assertEqual(code, 200)
        self.assertTrue(data["accepted"])
        self._post("/api/lock")
        code, data = self._post(f"/api/reveal/{SAFE}")
        self.assertEqual(data["signal"], "safe-reveal")
        self.assertEqual(data["state"]["balance"], 8.0)
        self.assertEqual(data["state"]["score"], 1)
        code, data = self._post("/api/cashout")
        self.assertEqual(data["signal"], "win")
        self.assertAlmostEqual(self.store.balance, 8.0 + 2.0 * 1.32)

    def test_rejected_action_is_200(self):
        code, data = self._post(f"/api/reveal/{SAFE}")
        self.assertEqual(code, 200)
        self.assertFalse(data["accepted"])
        self.assertIsNone(data["signal"])

    def test_board_shown_after_game_over(self):
        self._post("/api/lock")
        code, data = self._post(f"/api/reveal/{HAZARD}")
        self.assertEqual(data["signal"], "hazard-reveal")
        self.assertEqual(data["state"]["cells"], list(BOARD))

    def test_malformed_bodies(self):
        for path, body in (("/api/deposit", None), ("/api/deposit", {"amt": 1}),
                           ("/api/stake", {"stake": "2"}), ("/api/hazards", {"count": 2.5}),
                           ("/api/deposit", {"amount": True})):
            code, data = self._post(path, body)
            self.assertEqual(code, 400, f"{path} {body}")
            self.assertIn("error", data)

    def test_oversized_numbers_are_400(self):
        for path, body in (("/api/deposit", {"amount": 10 ** 400}),
                           ("/api/hazards", {"count": 10 ** 400})):
            code, data = self._post(path, body)
            self.assertEqual(code, 400, path)
            self.assertIn("error", data)
        self.assertEqual(self.store.balance, 10.0)

    def test_concurrent_cashouts_over_http(self):
        import threading
        self._post("/api/stake", {"stake": 2})
        self._post("/api/lock")
        self._post(f"/api/reveal/{SAFE}")
        answers = []

        def cash_out():
            answers.append(self.app.test_client().post("/api/cashout").get_json())

        workers = [threading.Thread(target=cash_out) for _ in range(4)]
        for w in workers:
            w.start()
        for w in workers:
            w.join()
        self.assertEqual([a["signal"] for a in answers if a["accepted"]], ["win"])
        self.assertAlmostEqual(self.store.balance, 8.0 + 2.0 * 1.32)

    def test_default_table_opened_at_startup(self):
        from unittest.mock import patch
        import web_app
        path = Path(tempfile.mkdtemp()) / "gems.db"
        SqliteBalanceStore(path).save(6.5)
        with patch.object(web_app, "DB_PATH", path):
            app = web_app.create_app()
        self.assertIsInstance(app.config["GEM_TABLE"], GemTable)
        resp = app.test_client().get("/api/state")
        self.assertEqual(resp.get_json()["state"]["balance"], 6.5)

    def test_hazards_and_new(self):
        code, data = self._post("/api/hazards", {"count": 4})
        self.assertTrue(data["accepted"])
        self.assertEqual(data["state"]["hazard_count"], 4)
        code, data = self._post("/api/new")
        self.assertTrue(data["accepted"])
        self.assertEqual(data["state"]["hazard_count"], 4)

    def test_deposit(self):
        code, data = self._post("/api/deposit", {"amount": 2.5})
        self.assertTrue(data["accepted"])
        self.assertEqual(self.store.balance, 12.5)
        code, data = self._post("/api/deposit", {"amount": -1})
        self.assertFalse(data["accepted"])
        self.assertEqual(json.loads(json.dumps(data["state"]))["balance"], 12.5)


# ════════════════════════════════════════════════════════════════
# F) Settings
# ════════════════════════════════════════════════════════════════

class TestSettings(unittest.TestCase):

    def test_default_grid_config(self):
        from unittest.mock import patch
        from config import settings
        with patch.object(settings.GridSettings, "CELL_COUNT", 36), \
             patch.object(settings.GridSettings, "MAX_HAZARDS", 20), \
             patch.object(settings.GridSettings, "PLACEMENT", "exact"):
            config = settings.default_grid_config()
        self.assertEqual(config.cell_count, 36)
        self.assertEqual(config.max_hazards, 20)
        self.assertEqual(config.placement.value, "exact")

    def test_bad_environment_raises(self):
        from unittest.mock import patch
        from pydantic import ValidationError
        from config import settings
        with patch.object(settings.GridSettings, "MAX_HAZARDS", 100):
            with self.assertRaises(ValidationError):
                settings.default_grid_config()


if __name__ == "__main__":
    unittest.main(verbosity=2)
