#!/usr/bin/env python3
"""
Container Board Server
----------------------
JSON presentation surface for the container-order dashboard core.

Usage:
    python board_server.py --config containerboard.yaml
    python board_server.py --host 0.0.0.0 --port 3000

API:
    GET    /api/view                        → view model (table, board, counters, ...)
    POST   /api/view                        → JSON body: { search?, status?, action?,
                                              sort?, sort_column?, sort_direction?,
                                              page?: int | "next" | "prev" }
    GET    /api/orders/<id>                 → order details
    POST   /api/orders                      → create order (wire keys)
    PUT    /api/orders/<id>                 → edit order
    POST   /api/orders/<id>/close           → JSON body: { finishDate? }
    DELETE /api/orders/<id>                 → delete order
    POST   /api/orders/<id>/duplicate       → clone, apply body overrides, submit
    POST   /api/board/<id>/move             → JSON body: { status }
    POST   /api/containers                  → JSON body: { containerNumber }
    GET    /api/containers/<number>/history → history entries
    GET    /api/suggest?field=&q=           → autocomplete suggestions
    GET    /api/notifications               → notifications not yet delivered
    POST   /api/reload                      → full refresh
    GET    /health

The core runs on one background event loop thread; every request hands its
work to that loop, so the core is only ever touched from a single thread.
"""

import argparse
import asyncio
import hmac
import locale
import logging
import sys
import threading
from dataclasses import replace
from functools import wraps
from typing import Any, Dict

from flask import Flask, jsonify, request

from containerboard import __version__
from containerboard.config import Config
from containerboard.dashboard import Dashboard
from containerboard.errors import (
    ConfigError,
    DashboardError,
    InitialLoadFailed,
    NetworkError,
    NotFound,
    OperationFailed,
    RateLimited,
    RecordBusy,
    ValidationError,
)
from containerboard.schema import DERIVED_KEYS, FIELD_NAMES
from containerboard.telegram_bridge import TelegramNotifier

logger = logging.getLogger("containerboard.server")

# Most specific first
ERROR_STATUS = (
    (RecordBusy, 409),
    (ValidationError, 400),
    (NotFound, 404),
    (RateLimited, 429),
    (OperationFailed, 502),
    (NetworkError, 503),
    (InitialLoadFailed, 503),
)


def error_status(error: DashboardError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(error, cls):
            return code
    return 500


class CoreLoop:
    """Background thread owning the event loop the dashboard core runs on."""

    def __init__(self, timeout: float = 120.0):
        self.timeout = timeout
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, name="containerboard-core", daemon=True)
        self.thread.start()

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coro) -> Any:
        """Run a coroutine on the core loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(self.timeout)

    def call(self, fn, *args, **kwargs) -> Any:
        """Run a plain callable on the core loop and wait for its result."""
        async def invoke():
            return fn(*args, **kwargs)
        return self.run(invoke())

    def stop(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=5)
        if not self.thread.is_alive():
            self.loop.close()


def order_fields(body: Dict[str, Any]) -> Dict[str, Any]:
    """Map a wire-format request body onto record attribute names."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    fields = {}
    for key, value in body.items():
        if key in DERIVED_KEYS or key == "id":
            continue
        fields[FIELD_NAMES.get(key, key)] = value
    return fields


def create_app(dashboard: Dashboard, api_key: str = None, core: CoreLoop = None) -> Flask:
    """Build the Flask app serving ``dashboard``."""
    app = Flask(__name__)
    core = core or CoreLoop()
    app.config["CORE"] = core

    def require_api_key(f):
        """Reject mutating requests without a valid X-API-Key header when a key is set."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if api_key:
                provided = request.headers.get("X-API-Key", "").strip()
                if not hmac.compare_digest(provided, api_key):
                    code = 401 if not provided else 403
                    return jsonify({"error": "Unauthorized"}), code
            return f(*args, **kwargs)
        return decorated

    def body() -> Dict[str, Any]:
        return request.get_json(silent=True) or {}

    @app.errorhandler(DashboardError)
    def handle_dashboard_error(e: DashboardError):
        return jsonify({"error": e.user_message, "type": type(e).__name__}), error_status(e)

    # ── Views ────────────────────────────────────────────────────────────

    @app.route("/api/view", methods=["GET"])
    def api_view():
        return jsonify(core.call(dashboard.view_model))

    @app.route("/api/view", methods=["POST"])
    def api_view_change():
        changes = body()
        page = changes.get("page")
        if page is not None and page not in ("next", "prev") and (
                isinstance(page, bool) or not isinstance(page, int)):
            raise ValidationError("page must be an integer, 'next' or 'prev'")

        def apply():
            # Staged copy; the live state changes only if every key is valid
            state = replace(dashboard.view_state)
            if "search" in changes:
                state.set_search(changes["search"])
            if "status" in changes:
                state.set_status_filter(changes["status"])
            if "action" in changes:
                state.set_action_filter(changes["action"])
            if "sort_column" in changes:
                state.set_sort(changes["sort_column"], changes.get("sort_direction", "asc"))
            elif "sort" in changes:
                state.toggle_sort(changes["sort"])
            dashboard.view_state = state
            if page == "next":
                dashboard.next_page()
            elif page == "prev":
                dashboard.prev_page()
            elif page is not None:
                dashboard.go_to_page(page)
            return dashboard.view_model()

        return jsonify(core.call(apply))

    @app.route("/api/orders/<order_id>", methods=["GET"])
    def api_order_details(order_id):
        return jsonify({"order": core.call(dashboard.order_details, order_id)})

    @app.route("/api/suggest")
    def api_suggest():
        field = request.args.get("field", "")
        text = request.args.get("q", "")
        limit = request.args.get("limit", 5, type=int)
        return jsonify({"suggestions": core.call(dashboard.suggest, field, text, limit)})

    @app.route("/api/notifications")
    def api_notifications():
        notes = core.call(dashboard.notifier.drain)
        return jsonify({"notifications": [n.to_dict() for n in notes]})

    # ── Orders ───────────────────────────────────────────────────────────

    @app.route("/api/orders", methods=["POST"])
    @require_api_key
    def api_add_order():
        fields = order_fields(body())
        record = core.run(dashboard.coordinator.add_order(fields))
        return jsonify({"order": record.to_dict()}), 201

    @app.route("/api/orders/<order_id>", methods=["PUT"])
    @require_api_key
    def api_edit_order(order_id):
        fields = order_fields(body())
        record = core.run(dashboard.coordinator.edit_order(order_id, fields))
        return jsonify({"order": record.to_dict()})

    @app.route("/api/orders/<order_id>/close", methods=["POST"])
    @require_api_key
    def api_close_order(order_id):
        finish_date = body().get("finishDate")
        record = core.run(dashboard.coordinator.close_order(order_id, finish_date))
        return jsonify({"order": record.to_dict()})

    @app.route("/api/orders/<order_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_order(order_id):
        core.run(dashboard.coordinator.delete_order(order_id))
        return jsonify({"deleted": order_id})

    @app.route("/api/orders/<order_id>/duplicate", methods=["POST"])
    @require_api_key
    def api_duplicate_order(order_id):
        overrides = order_fields(body())
        note = overrides.pop("note", "")

        async def duplicate():
            session = dashboard.coordinator.begin_duplicate(order_id)
            for name, value in overrides.items():
                session.set(name, value)
            if note:
                session.append_note(note)
            return await session.submit()

        record = core.run(duplicate())
        return jsonify({"order": record.to_dict(), "source": order_id}), 201

    # ── Board ────────────────────────────────────────────────────────────

    @app.route("/api/board/<order_id>/move", methods=["POST"])
    @require_api_key
    def api_move_card(order_id):
        status = body().get("status")
        if not status:
            return jsonify({"error": "status is required"}), 400
        record = core.run(dashboard.coordinator.update_kanban_status(order_id, status))
        if record is None:
            return jsonify({"changed": False})
        return jsonify({"changed": True, "order": record.to_dict()})

    # ── Containers ───────────────────────────────────────────────────────

    @app.route("/api/containers", methods=["POST"])
    @require_api_key
    def api_add_container():
        number = core.run(dashboard.coordinator.add_container(body().get("containerNumber", "")))
        return jsonify({"containerNumber": number}), 201

    @app.route("/api/containers/<number>/history")
    def api_container_history(number):
        history = core.run(dashboard.coordinator.container_history(number))
        return jsonify({"containerNumber": number, "history": history})

    @app.route("/api/reload", methods=["POST"])
    @require_api_key
    def api_reload():
        ok = core.run(dashboard.reload())
        return jsonify({"reloaded": ok, "ready": dashboard.ready}), (200 if ok else 503)

    @app.route("/health")
    def health():
        return jsonify({
            "status": "ok" if dashboard.ready else "degraded",
            "ready": dashboard.ready,
            "version": __version__,
            "orders": len(dashboard.store),
        })

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Container Board Server")
    parser.add_argument("--config", help="Path to containerboard.yaml")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        format="%(asctime)s [containerboard] %(levelname)s: %(message)s",
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        stream=sys.stdout,
    )

    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error as e:
        logger.warning(f"Could not apply the environment's collation locale ({e}); using accent-folded ordering")

    try:
        dashboard = Dashboard(config)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    TelegramNotifier.from_config(config, dashboard.bus)
    app = create_app(dashboard, api_key=config.api_key)

    try:
        app.config["CORE"].run(dashboard.load())
    except InitialLoadFailed as e:
        logger.error(f"{e.user_message}; serving without data until /api/reload succeeds")

    logger.info(f"Serving on http://{args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=False, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
