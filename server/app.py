"""Minimal Flask API for the result log and collaborative rooms."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from flask import Flask, jsonify, request

from ledger import GameOutcome, LedgerError, ParquetLedger, outcome_to_row
from multiplayer import (
    TURN_TIME_LIMIT,
    LatestStateTransport,
    ManualClock,
    MonotonicClock,
    SessionError,
    TurnCoordinator,
)
from scripts.validate import ALLOWED_RESULTS

LOGGER = logging.getLogger(__name__)

DATA_DIR = Path("data")
RESULTS_PATH = DATA_DIR / "results.parquet"
# Clock units a finished or abandoned room stays readable before it is dropped.
ROOM_RETENTION = 300

REQUIRED_FIELDS = {
    "result": str,
    "moves": int,
    "score": int,
    "elapsed_s": (int, float),
}

OPTIONAL_FIELDS = {
    "tag": str,
    "seed": (int, str),
    "timestamp_utc": str,
}


class RoomRegistry:
    """Rooms served by this process, sharing one clock and one transport.

    The transport keeps only each room's newest state, and rooms with a result
    are dropped once it has been readable for ``retention`` clock units.
    """

    def __init__(
        self, clock: ManualClock | None = None, *, retention: float = ROOM_RETENTION
    ) -> None:
        self.clock = clock or MonotonicClock()
        self.transport = LatestStateTransport()
        self.retention = retention
        self.rooms: dict[str, TurnCoordinator] = {}
        self._finished_at: dict[str, float] = {}

    def create(self, room_id: str, players: list[int], turn_time_limit: int) -> TurnCoordinator:
        if room_id in self.rooms:
            raise SessionError(f"Room {room_id} already exists")
        coordinator = TurnCoordinator(
            room_id,
            players,
            transport=self.transport,
            clock=self.clock,
            turn_time_limit=turn_time_limit,
        )
        self.rooms[room_id] = coordinator
        LOGGER.info("Opened room %s for players %s", room_id, players)
        return coordinator

    def get(self, room_id: str) -> TurnCoordinator | None:
        return self.rooms.get(room_id)

    def poll(self) -> None:
        poll = getattr(self.clock, "poll", None)
        if poll is not None:
            poll()
        self.prune()

    def prune(self) -> list[str]:
        now = self.clock.now()
        dropped = []
        for room_id, coordinator in list(self.rooms.items()):
            if coordinator.result is None:
                continue
            finished_at = self._finished_at.setdefault(room_id, now)
            if now - finished_at < self.retention:
                continue
            coordinator.close()
            del self.rooms[room_id]
            del self._finished_at[room_id]
            self.transport.forget(room_id)
            dropped.append(room_id)
            LOGGER.info("Dropped room %s (%s)", room_id, coordinator.result)
        return dropped


app = Flask(__name__)
app.config.setdefault("RESULTS_PATH", RESULTS_PATH)
app.extensions["rooms"] = RoomRegistry()


def _registry() -> RoomRegistry:
    return app.extensions["rooms"]


def _ledger(tag: str = "solo") -> ParquetLedger:
    return ParquetLedger(Path(app.config["RESULTS_PATH"]), tag=tag)


def _is_type(value: Any, expected: Any) -> bool:
    return isinstance(value, expected) and not isinstance(value, bool)


def _normalise_timestamp(candidate: str | None) -> str:
    if not candidate:
        return datetime.now(timezone.utc).isoformat()
    try:
        timestamp = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError("timestamp_utc must be ISO-8601 formatted") from exc
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


def _validate_result(payload: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for field, expected in REQUIRED_FIELDS.items():
        if field not in payload:
            raise ValueError(f"Missing field: {field}")
        value = payload[field]
        if not _is_type(value, expected):
            raise ValueError(f"{field} has invalid type: {type(value).__name__}")
        cleaned[field] = value

    for field, expected in OPTIONAL_FIELDS.items():
        value = payload.get(field)
        if value is not None and not _is_type(value, expected):
            raise ValueError(f"{field} has invalid type: {type(value).__name__}")
        cleaned[field] = value

    cleaned["result"] = cleaned["result"].strip().lower()
    if cleaned["result"] not in ALLOWED_RESULTS:
        raise ValueError(f"Unexpected result value: {cleaned['result']}")
    if cleaned["moves"] < 0 or cleaned["elapsed_s"] < 0:
        raise ValueError("moves and elapsed_s must be non-negative")
    cleaned["timestamp_utc"] = _normalise_timestamp(cleaned["timestamp_utc"])
    cleaned["tag"] = (cleaned["tag"] or "solo").strip() or "solo"
    return cleaned


def _player_number(payload: Dict[str, Any]) -> int:
    value = payload.get("playerNumber")
    if not _is_type(value, int):
        raise ValueError("playerNumber must be an integer")
    return value


def _room_view(coordinator: TurnCoordinator) -> Dict[str, Any]:
    view = coordinator.snapshot()
    view["roomId"] = coordinator.room_id
    view["players"] = list(coordinator.session.players)
    view["turnTimeRemaining"] = coordinator.turn_time_remaining
    return view


def _rejection(result: Any):
    return jsonify({"error": result.reason, "message": result.message}), 409


@app.post("/api/result")
def ingest_result():
    payload = request.get_json(silent=True) or {}
    try:
        record = _validate_result(payload)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    outcome = GameOutcome(
        result=record["result"],
        score=record["score"],
        moves=record["moves"],
        elapsed_time=int(record["elapsed_s"]),
        seed=record["seed"],
        finished_at=record["timestamp_utc"],
    )
    ledger = _ledger(record["tag"])
    try:
        ledger.append_rows([outcome_to_row(outcome, ledger.tag)])
    except LedgerError as exc:
        LOGGER.error("Cannot store result: %s", exc)
        return jsonify({"error": "result log unavailable"}), 500

    return jsonify({"status": "accepted"}), 201


@app.get("/api/stats")
def get_stats():
    try:
        stats = _ledger().stats(request.args.get("tag"))
    except LedgerError as exc:
        LOGGER.error("Cannot read results: %s", exc)
        return jsonify({"error": "result log unavailable"}), 500
    payload = stats.to_dict()
    payload["winRate"] = stats.win_rate
    return jsonify(payload)


@app.post("/api/rooms")
def create_room():
    payload = request.get_json(silent=True) or {}
    players = payload.get("players")
    if not isinstance(players, list):
        return jsonify({"error": "players must be a list of player numbers"}), 400
    room_id = payload.get("roomId") or uuid.uuid4().hex[:8]
    turn_time_limit = payload.get("turnTimeLimit", TURN_TIME_LIMIT)
    if not isinstance(room_id, str) or not _is_type(turn_time_limit, int):
        return jsonify({"error": "roomId must be a string and turnTimeLimit an integer"}), 400

    registry = _registry()
    registry.poll()
    if registry.get(room_id) is not None:
        return jsonify({"error": f"Room {room_id} already exists"}), 409
    try:
        coordinator = registry.create(room_id, players, turn_time_limit)
    except SessionError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(_room_view(coordinator)), 201


@app.get("/api/rooms/<room_id>")
def get_room(room_id: str):
    registry = _registry()
    registry.poll()
    coordinator = registry.get(room_id)
    if coordinator is None:
        return jsonify({"error": "room not found"}), 404
    return jsonify(_room_view(coordinator))


@app.post("/api/rooms/<room_id>/start")
def start_room(room_id: str):
    registry = _registry()
    registry.poll()
    coordinator = registry.get(room_id)
    if coordinator is None:
        return jsonify({"error": "room not found"}), 404
    payload = request.get_json(silent=True) or {}
    seed = payload.get("seed")
    try:
        player_number = _player_number(payload)
        if seed is not None and not _is_type(seed, int):
            raise ValueError("seed must be an integer")
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    result = coordinator.start(player_number, seed=seed)
    if not result:
        return _rejection(result)
    return jsonify(_room_view(coordinator))


@app.post("/api/rooms/<room_id>/move")
def move_in_room(room_id: str):
    registry = _registry()
    registry.poll()
    coordinator = registry.get(room_id)
    if coordinator is None:
        return jsonify({"error": "room not found"}), 404
    payload = request.get_json(silent=True) or {}
    move_type = payload.get("moveType")
    params = payload.get("params") or {}
    try:
        player_number = _player_number(payload)
        if not isinstance(move_type, str) or not isinstance(params, dict):
            raise ValueError("moveType must be a string and params an object")
        allowed = coordinator.engine.move_arguments(move_type)
        if allowed is not None and not set(params) <= allowed:
            unknown = ", ".join(sorted(set(params) - allowed))
            raise ValueError(f"{move_type} does not take: {unknown}")
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    result = coordinator.submit(player_number, move_type, **params)
    if not result:
        return _rejection(result)
    return jsonify(_room_view(coordinator))


@app.post("/api/rooms/<room_id>/leave")
def leave_room(room_id: str):
    registry = _registry()
    registry.poll()
    coordinator = registry.get(room_id)
    if coordinator is None:
        return jsonify({"error": "room not found"}), 404
    payload = request.get_json(silent=True) or {}
    try:
        coordinator.leave(_player_number(payload))
    except (ValueError, SessionError) as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(_room_view(coordinator))


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    logging.basicConfig(level=logging.INFO)
    app.run(host="0.0.0.0", port=5000, debug=True)
