#!/usr/bin/env python3
"""
Project Board Server
--------------------
JSON API over the project store: read the board, drag cards between lanes,
manage lanes, add projects.

Usage:
    python board_server.py --port 3000
    python board_server.py --db /tmp/board.db

API:
    GET    /api/board              → { lanes: [{..., items}], orphans, stats }
    POST   /api/board/move         → body { item_id, source_lane, dest_lane, destination_valid }
                                     Returns { moved, phase, notification, item }
    GET    /api/lanes              → { lanes }
    POST   /api/lanes              → body { name, color }
    PATCH  /api/lanes/<id>         → body { name?, color? }
    DELETE /api/lanes/<id>
    POST   /api/lanes/reorder      → body { lane_ids: [...] }
    POST   /api/items              → body { name, lane?, value?, priority?, due_date? }
    GET    /health

Mutating routes require an X-API-Key header matching PROJECTBOARD_API_SECRET.
"""

import asyncio
import hmac
import logging
import os
import sys
from functools import wraps

from flask import Flask, jsonify, request

from pkg.board.config import BoardConfig
from pkg.board.errors import ErrorKind, StoreError, ConfigError
from pkg.board.notifications import NotificationLog
from pkg.board.reconciler import Reconciler
from pkg.board.schema import DragGesture
from pkg.board.state import BoardState

logger = logging.getLogger("board_server")

app = Flask(__name__)

ERROR_STATUS = {
    ErrorKind.VALIDATION_REJECTED: 400,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.UNCLASSIFIED: 502,
}


# ── Config ───────────────────────────────────────────────────────────────────

def get_config() -> BoardConfig:
    return BoardConfig.load()


def get_store(cfg: BoardConfig = None):
    cfg = cfg or get_config()
    store = cfg.build_store()
    if cfg.seed_default_lanes:
        store.seed_default_lanes()
    return store


def load_board(store) -> BoardState:
    return BoardState(store.list_records(), store.list_lanes())


# ── Auth ─────────────────────────────────────────────────────────────────────

def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = get_config().api_secret
        if not secret:
            return jsonify({"error": "PROJECTBOARD_API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


@app.errorhandler(StoreError)
def handle_store_error(e: StoreError):
    status = e.status if e.status == 404 else ERROR_STATUS[e.kind]
    return jsonify(e.to_dict()), status


@app.errorhandler(ConfigError)
def handle_config_error(e: ConfigError):
    logger.error(f"Configuration error: {e}")
    return jsonify({"error": str(e)}), 500


# ── Board ────────────────────────────────────────────────────────────────────

@app.route("/api/board")
def api_board():
    board = load_board(get_store())
    columns = board.items_by_lane()
    lanes = []
    for lane in board.lanes:
        entry = lane.to_dict()
        entry["items"] = [i.to_dict() for i in columns.get(lane.name, [])]
        lanes.append(entry)

    orphans = board.orphans()
    stats = {
        "total": len(board.items),
        "orphans": len(orphans),
        "by_lane": {name: len(items) for name, items in columns.items()},
        "value_by_lane": {name: sum(i.value or 0 for i in items) for name, items in columns.items()},
    }
    return jsonify({
        "lanes": lanes,
        "orphans": [i.to_dict() for i in orphans],
        "stats": stats,
    })


@app.route("/api/board/move", methods=["POST"])
@require_api_key
def api_move():
    """Drop a card onto a lane: optimistic move, store confirm or rollback."""
    data = request.get_json(force=True, silent=True) or {}
    gesture = DragGesture.from_dict(data)

    store = get_store()
    board = load_board(store)
    notifications = NotificationLog()
    # The board is rebuilt from the store on every request, so no re-fetch
    reconciler = Reconciler(board, store, notifications, refetch_delay=None)

    result = asyncio.run(reconciler.handle_drop(gesture))
    if result is None:
        return jsonify({"moved": False, "phase": None, "notification": None})

    item = board.find_item(result.transition.item_id)
    body = {
        "moved": result.ok,
        "phase": result.phase.value,
        "notification": result.notification.to_dict() if result.notification else None,
        "item": item.to_dict() if item else None,
    }
    return jsonify(body), (200 if result.ok else 409)


# ── Lanes ────────────────────────────────────────────────────────────────────

@app.route("/api/lanes", methods=["GET"])
def api_lanes():
    lanes = get_store().list_lanes()
    return jsonify({"lanes": [l.to_dict() for l in lanes]})


@app.route("/api/lanes", methods=["POST"])
@require_api_key
def api_create_lane():
    data = request.get_json(force=True, silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name is required"}), 400
    lane = get_store().create_lane(name, data.get("color") or "#6B7280")
    return jsonify({"lane": lane.to_dict()}), 201


@app.route("/api/lanes/<lane_id>", methods=["PATCH"])
@require_api_key
def api_update_lane(lane_id):
    data = request.get_json(force=True, silent=True) or {}
    lane = get_store().update_lane(lane_id, name=data.get("name"), color=data.get("color"))
    return jsonify({"lane": lane.to_dict()})


@app.route("/api/lanes/<lane_id>", methods=["DELETE"])
@require_api_key
def api_delete_lane(lane_id):
    get_store().delete_lane(lane_id)
    return jsonify({"deleted": lane_id})


@app.route("/api/lanes/reorder", methods=["POST"])
@require_api_key
def api_reorder_lanes():
    data = request.get_json(force=True, silent=True) or {}
    lane_ids = data.get("lane_ids")
    if not isinstance(lane_ids, list) or not lane_ids:
        return jsonify({"error": "lane_ids must be a non-empty list"}), 400
    lanes = get_store().reorder_lanes(lane_ids)
    return jsonify({"lanes": [l.to_dict() for l in lanes]})


# ── Items ────────────────────────────────────────────────────────────────────

@app.route("/api/items", methods=["POST"])
@require_api_key
def api_create_item():
    data = request.get_json(force=True, silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name is required"}), 400
    try:
        value = float(data.get("value") or 0)
    except (TypeError, ValueError):
        return jsonify({"error": "value must be a number"}), 400
    item = get_store().create_record(
        name,
        lane=data.get("lane"),
        value=value,
        priority=data.get("priority") or "medium",
        due_date=data.get("due_date"),
        description=data.get("description") or "",
        client_id=data.get("client_id") or "",
    )
    return jsonify({"item": item.to_dict()}), 201


@app.route("/health")
def health():
    cfg = get_config()
    return jsonify({"status": "ok", "backend": cfg.backend, "owner": cfg.owner_id})


# ── Main ─────────────────────────────────────────────────────────────────────

def main():
    import argparse

    parser = argparse.ArgumentParser(description="Project Board Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to board.db (overrides PROJECTBOARD_DB env var)")
    parser.add_argument("--config", help="Path to board.yaml (overrides PROJECTBOARD_CONFIG)")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [board] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    if args.db:
        os.environ["PROJECTBOARD_DB"] = args.db
    if args.config:
        os.environ["PROJECTBOARD_CONFIG"] = args.config

    try:
        cfg = get_config()
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        sys.exit(1)

    logger.info(f"Backend: {cfg.backend}  Owner: {cfg.owner_id}")
    if cfg.backend == "sqlite":
        logger.info(f"DB: {cfg.db_path}")
    app.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
