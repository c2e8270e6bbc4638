"""
GEMRUSH: HTTP Host

Flask JSON surface over one GemTable. Every action answers with the
fresh snapshot, the advisory signal it emitted, and whether it was
accepted. Rejected actions are not errors: they answer 200 with
accepted=false. Only malformed request bodies get a 400.

Run:
    flask --app web_app run
"""
import logging

from flask import Flask, abort, current_app, jsonify, request

from config.balance_store import SqliteBalanceStore
from config.settings import DB_PATH, configure_logging, default_grid_config
from sim_engine.gems.table import GemTable, Outcome

logger = logging.getLogger("gemrush.web")


def create_app(table: GemTable = None) -> Flask:
    """Build the app. Without a table, one backed by GEMRUSH_DB_PATH is opened here."""
    app = Flask(__name__)
    if table is None:
        table = GemTable(SqliteBalanceStore(DB_PATH), default_grid_config())
        logger.info(f"Opened gem table on {DB_PATH}")
    app.config["GEM_TABLE"] = table

    # ── Helpers ──

    def _table() -> GemTable:
        return current_app.config["GEM_TABLE"]

    def _respond(outcome: Outcome):
        state = outcome.state
        signal = outcome.signal
        return jsonify({
            "accepted": outcome.accepted,
            "signal": signal.value if signal else None,
            "state": state.to_dict(reveal_board=state.game_over),
        })

    def _body_number(field: str, cast=float):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict) or field not in payload:
            abort(400, description=f"JSON body with '{field}' required")
        value = payload[field]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            abort(400, description=f"'{field}' must be a number")
        try:
            if cast is int and not float(value).is_integer():
                abort(400, description=f"'{field}' must be an integer")
            return cast(value)
        except OverflowError:
            abort(400, description=f"'{field}' is out of range")

    # ── Routes ──

    @app.get("/api/state")
    def api_state():
        state = _table().state
        return jsonify({"state": state.to_dict(reveal_board=state.game_over)})

    @app.post("/api/deposit")
    def api_deposit():
        return _respond(_table().deposit(_body_number("amount")))

    @app.post("/api/stake")
    def api_stake():
        return _respond(_table().set_stake(_body_number("stake")))

    @app.post("/api/hazards")
    def api_hazards():
        return _respond(_table().set_hazard_count(_body_number("count", int)))

    @app.post("/api/lock")
    def api_lock():
        return _respond(_table().lock_in())

    @app.post("/api/reveal/<int:index>")
    def api_reveal(index):
        return _respond(_table().reveal(index))

    @app.post("/api/cashout")
    def api_cashout():
        return _respond(_table().cash_out())

    @app.post("/api/new")
    def api_new():
        return _respond(_table().new_round())

    @app.errorhandler(400)
    def bad_request(err):
        return jsonify({"error": err.description}), 400

    return app


if __name__ == "__main__":
    configure_logging()
    create_app().run(debug=False)
