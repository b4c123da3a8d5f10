import pytest

from multiplayer import TURN_TIME_LIMIT, ManualClock
from server.app import ROOM_RETENTION, RoomRegistry, app


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def registry(clock):
    return RoomRegistry(clock)


@pytest.fixture
def client(tmp_path, registry):
    app.config.update(TESTING=True, RESULTS_PATH=tmp_path / "results.parquet")
    app.extensions["rooms"] = registry
    with app.test_client() as test_client:
        yield test_client


def post_result(client, **overrides):
    payload = {
        "result": "won",
        "moves": 95,
        "score": 120,
        "elapsed_s": 310,
        "tag": "alice",
        "seed": 42,
        "timestamp_utc": "2024-03-01T10:00:00Z",
    }
    payload.update(overrides)
    return client.post("/api/result", json=payload)


def test_result_is_appended_and_aggregated(client):
    assert post_result(client).status_code == 201
    assert post_result(client, result="blocked", score=-10, moves=40).status_code == 201
    assert post_result(client, tag="bob", score=999).status_code == 201

    alice = client.get("/api/stats", query_string={"tag": "alice"}).get_json()
    assert alice["gamesPlayed"] == 2
    assert alice["wins"] == 1
    assert alice["losses"] == 1
    assert alice["bestScore"] == 120
    assert alice["fastestWinTime"] == 310
    assert alice["fewestMoves"] == 95
    assert alice["winRate"] == 0.5

    everyone = client.get("/api/stats").get_json()
    assert everyone["gamesPlayed"] == 3
    assert everyone["bestScore"] == 999


def test_stats_without_a_log_are_empty(client):
    payload = client.get("/api/stats").get_json()
    assert payload["gamesPlayed"] == 0
    assert payload["winRate"] is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"result": "win"},
        {"moves": "95"},
        {"moves": True},
        {"moves": -1},
        {"score": 1.5},
        {"timestamp_utc": "yesterday"},
        {"tag": 7},
    ],
)
def test_malformed_results_are_rejected(client, overrides):
    response = post_result(client, **overrides)
    assert response.status_code == 400
    assert "error" in response.get_json()


def test_missing_result_field(client):
    response = client.post("/api/result", json={"moves": 1, "score": 1, "elapsed_s": 1})
    assert response.status_code == 400
    assert response.get_json()["error"] == "Missing field: result"


def test_room_lifecycle(client, clock):
    created = client.post("/api/rooms", json={"roomId": "r1", "players": [2, 1]})
    assert created.status_code == 201
    assert created.get_json()["players"] == [1, 2]
    assert created.get_json()["status"] == "waiting"

    assert client.post("/api/rooms/r1/start", json={"playerNumber": 2}).status_code == 409
    started = client.post("/api/rooms/r1/start", json={"playerNumber": 1, "seed": 4})
    assert started.status_code == 200
    assert started.get_json()["currentTurn"] == 1
    assert started.get_json()["turnTimeRemaining"] == TURN_TIME_LIMIT

    out_of_turn = client.post("/api/rooms/r1/move", json={"playerNumber": 2, "moveType": "draw"})
    assert out_of_turn.status_code == 409
    assert out_of_turn.get_json()["error"] == "not-your-turn"

    moved = client.post("/api/rooms/r1/move", json={"playerNumber": 1, "moveType": "draw"})
    assert moved.status_code == 200
    body = moved.get_json()
    assert body["currentTurn"] == 2
    assert body["moves"] == 1
    assert len(body["waste"]) == 1

    clock.advance(TURN_TIME_LIMIT)
    room = client.get("/api/rooms/r1").get_json()
    assert room["currentTurn"] == 1


def test_move_with_bad_arguments(client):
    client.post("/api/rooms", json={"roomId": "r2", "players": [1, 2]})
    client.post("/api/rooms/r2/start", json={"playerNumber": 1, "seed": 4})

    missing = client.post(
        "/api/rooms/r2/move",
        json={"playerNumber": 1, "moveType": "waste-to-tableau"},
    )
    assert missing.status_code == 409
    assert missing.get_json()["error"] == "invalid-arguments"

    misnamed = client.post(
        "/api/rooms/r2/move",
        json={"playerNumber": 1, "moveType": "waste-to-tableau", "params": {"col": 1}},
    )
    assert misnamed.status_code == 400
    assert misnamed.get_json()["error"] == "waste-to-tableau does not take: col"

    malformed = client.post("/api/rooms/r2/move", json={"playerNumber": "1", "moveType": "draw"})
    assert malformed.status_code == 400

    clash = client.post(
        "/api/rooms/r2/move",
        json={"playerNumber": 1, "moveType": "draw", "params": {"player_number": 2}},
    )
    assert clash.status_code == 400


def test_room_errors(client):
    assert client.get("/api/rooms/missing").status_code == 404
    assert client.post("/api/rooms/missing/move", json={}).status_code == 404
    assert client.post("/api/rooms", json={"players": [1]}).status_code == 400
    assert client.post("/api/rooms", json={"players": "1,2"}).status_code == 400

    assert client.post("/api/rooms", json={"roomId": "dup", "players": [1, 2]}).status_code == 201
    assert client.post("/api/rooms", json={"roomId": "dup", "players": [1, 2]}).status_code == 409


def test_leaving_abandons_a_two_player_room(client):
    client.post("/api/rooms", json={"roomId": "r3", "players": [1, 2]})
    client.post("/api/rooms/r3/start", json={"playerNumber": 1})

    left = client.post("/api/rooms/r3/leave", json={"playerNumber": 2})

    assert left.status_code == 200
    assert left.get_json()["status"] == "abandoned"
    assert client.post("/api/rooms/r3/leave", json={"playerNumber": 2}).status_code == 400


@pytest.mark.parametrize("key", ["self", "player_number", "move_type", "params"])
def test_move_params_must_be_move_arguments(client, key):
    client.post("/api/rooms", json={"roomId": "r4", "players": [1, 2]})
    client.post("/api/rooms/r4/start", json={"playerNumber": 1, "seed": 4})

    response = client.post(
        "/api/rooms/r4/move",
        json={"playerNumber": 1, "moveType": "draw", "params": {key: 1}},
    )

    assert response.status_code == 400
    assert client.get("/api/rooms/r4").get_json()["moves"] == 0


def test_unknown_move_type_is_a_rejection(client):
    client.post("/api/rooms", json={"roomId": "r5", "players": [1, 2]})
    client.post("/api/rooms/r5/start", json={"playerNumber": 1, "seed": 4})

    response = client.post("/api/rooms/r5/move", json={"playerNumber": 1, "moveType": "undo"})

    assert response.status_code == 409
    assert response.get_json()["error"] == "unknown-move"


def test_leaving_before_the_deal_abandons_the_room(client):
    client.post("/api/rooms", json={"roomId": "r6", "players": [1, 2]})

    left = client.post("/api/rooms/r6/leave", json={"playerNumber": 2})
    started = client.post("/api/rooms/r6/start", json={"playerNumber": 1})

    assert left.get_json()["status"] == "abandoned"
    assert started.status_code == 409
    assert started.get_json()["error"] == "game-over"


def test_idle_room_keeps_only_its_latest_state(client, clock, registry):
    client.post("/api/rooms", json={"roomId": "r7", "players": [1, 2]})
    client.post("/api/rooms/r7/start", json={"playerNumber": 1, "seed": 4})

    clock.advance(TURN_TIME_LIMIT * 1000)
    room = client.get("/api/rooms/r7").get_json()

    assert list(registry.transport.states) == ["r7"]
    assert registry.transport.latest_state("r7")["currentTurn"] == room["currentTurn"]
    assert room["playerMoves"] == {"1": 0, "2": 0}


def test_finished_rooms_are_dropped_after_the_retention_period(client, clock, registry):
    client.post("/api/rooms", json={"roomId": "r8", "players": [1, 2]})
    client.post("/api/rooms", json={"roomId": "r9", "players": [1, 2]})
    client.post("/api/rooms/r8/start", json={"playerNumber": 1})
    client.post("/api/rooms/r8/leave", json={"playerNumber": 2})

    clock.advance(ROOM_RETENTION - 1)
    assert client.get("/api/rooms/r8").get_json()["status"] == "abandoned"

    clock.advance(ROOM_RETENTION)
    assert client.get("/api/rooms/r8").status_code == 404
    assert client.get("/api/rooms/r9").status_code == 200
    assert "r8" not in registry.rooms
    assert registry.transport.latest_state("r8") is None
