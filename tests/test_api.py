"""API route tests."""

import pytest
from fastapi.testclient import TestClient

from api import game_store
from api.main import app


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("MAFIA_MAX_PLAYERS", "3")
    with TestClient(app) as c:
        yield c


def _intent(client, actor, kind, conversation, *args, **extra):
    body = {
        "actor_id": actor,
        "actor_name": actor.capitalize(),
        "kind": kind,
        "conversation_id": conversation,
        "args": list(args),
    }
    body.update(extra)
    r = client.post("/intents", json=body)
    assert r.status_code == 200
    return r.json()


def _start_game(client) -> str:
    started = _intent(client, "alice", "start", "origin")
    assert started["ok"]
    lobby = started["data"]["lobby_id"]
    assert _intent(client, "bob", "join", lobby)["ok"]
    assert _intent(client, "carol", "join", lobby)["ok"]
    return lobby


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_config_reads_environment(client):
    r = client.get("/settings/config")
    assert r.status_code == 200
    data = r.json()
    assert data["max_players"] == 3
    assert data["min_players_to_start"] == 3
    assert data["merge_task_and_kill"] is True


def test_idle_game(client):
    r = client.get("/game")
    assert r.status_code == 200
    state = r.json()
    assert state["phase"] == "IDLE"
    assert state["players"] == []
    assert state["time_remaining_ms"] is None


def test_start_and_join(client):
    lobby = _intent(client, "alice", "start", "origin")["data"]["lobby_id"]
    state = client.get("/game").json()
    assert state["phase"] == "WAITING_FOR_PLAYERS"
    assert state["lobby_id"] == lobby
    assert [p["id"] for p in state["players"]] == ["alice"]
    assert state["join_time_remaining_ms"] > 0

    outcome = _intent(client, "bob", "join", "origin")
    assert outcome["ok"] is False
    assert outcome["error"] == "WRONG_CONVERSATION"

    outcome = _intent(client, "bob", "join", "origin", source="BUTTON")
    assert outcome["ok"] is True


def test_game_hides_roles_of_alive_players(client):
    _start_game(client)
    state = client.get("/game").json()
    assert state["phase"] == "TASKS"
    assert state["phase_label"] == "ROUND_1_TASKS"
    assert len(state["players"]) == 3
    assert all(p["role"] is None for p in state["players"])
    assert 0 < state["time_remaining_ms"] <= 60_000


def test_player_tasks_hide_answers(client):
    _start_game(client)
    r = client.get("/game/players/bob/tasks")
    assert r.status_code == 200
    tasks = r.json()
    assert len(tasks) == 2
    assert all("answer" not in t for t in tasks)
    assert all(t["question"] for t in tasks)

    r = client.get("/game/players/nobody/tasks")
    assert r.status_code == 404


def test_rejected_intent_is_not_http_error(client):
    _start_game(client)
    outcome = _intent(client, "bob", "vote", "origin", "carol")
    assert outcome["ok"] is False
    assert outcome["error"] == "INVALID_PHASE"
    assert outcome["message"]


def test_kill_cooldown_reports_remaining_time(monkeypatch):
    monkeypatch.setenv("MAFIA_MAX_PLAYERS", "3")
    monkeypatch.setenv("MAFIA_KILL_SUCCESS_CHANCE", "0")
    with TestClient(app) as client:
        _kill_twice(client)


def _kill_twice(client):
    _start_game(client)
    impostor = game_store.get().engine.impostor_id
    target = next(p.id for p in game_store.get().engine.get_players() if p.id != impostor)
    first = _intent(client, impostor, "kill", impostor, target, conversation_kind="DIRECT")
    assert first["ok"]
    assert first["data"]["success"] is False
    second = _intent(client, impostor, "kill", impostor, target, conversation_kind="DIRECT")
    assert second["error"] == "ON_COOLDOWN"
    assert 0 < second["data"]["remaining_ms"] <= 15_000


@pytest.fixture
def deadly_client(monkeypatch):
    monkeypatch.setenv("MAFIA_MAX_PLAYERS", "3")
    monkeypatch.setenv("MAFIA_KILL_SUCCESS_CHANCE", "1")
    with TestClient(app) as c:
        yield c


def _kill_one(client) -> tuple[str, str]:
    """Impostor kills one crew member by DM. Returns (impostor id, victim id)."""
    _start_game(client)
    engine = game_store.get().engine
    impostor = engine.impostor_id
    victim = next(p.id for p in engine.get_players() if p.id != impostor)
    outcome = _intent(client, impostor, "kill", impostor, victim, conversation_kind="DIRECT")
    assert outcome["data"]["success"] is True
    return impostor, victim


def test_game_history_keeps_killer_anonymous(deadly_client):
    impostor, victim = _kill_one(deadly_client)
    events = deadly_client.get("/game").json()["events"]
    kills = [e for e in events if e["kind"] in ("kill_attempt", "killed")]
    assert [e["kind"] for e in kills] == ["kill_attempt", "killed"]
    assert all(e["target_id"] == victim for e in kills)
    assert all(e["player_id"] is None for e in kills)
    assert all(impostor.capitalize() not in e["message"] for e in kills)


def test_game_reveals_roles_only_of_the_dead(deadly_client):
    _, victim = _kill_one(deadly_client)
    state = deadly_client.get("/game").json()
    assert "winner" not in state
    roles = {p["id"]: p["role"] for p in state["players"]}
    assert roles.pop(victim) == "CREW"
    assert set(roles.values()) == {None}


def test_votes_endpoint(client):
    lobby = _start_game(client)
    engine = game_store.get().engine
    engine.advance_phase()
    engine.advance_phase()
    assert _intent(client, "alice", "vote", lobby, "Bob")["ok"]
    r = client.get("/game/votes")
    assert r.status_code == 200
    tally = r.json()
    assert tally["round"] == 1
    assert tally["majority"] == 2
    assert tally["results"] == [{"target_id": "bob", "target_name": "Bob", "votes": 1}]


def test_outbox_drains(client):
    lobby = _start_game(client)
    r = client.get("/outbox")
    assert r.status_code == 200
    messages = r.json()
    assert any(m["kind"] == "actions" and m["conversation_id"] == "origin" for m in messages)
    join = next(m for m in messages if m["kind"] == "actions" and m["conversation_id"] == "origin")
    assert join["actions"][0]["id"] == "join-game"
    assert any(m["kind"] == "group" and m["conversation_id"] == lobby for m in messages)
    assert sum(1 for m in messages if m["kind"] == "direct" and "You are" in m["text"]) == 3
    assert client.get("/outbox").json() == []


def test_invalid_intent_body(client):
    r = client.post("/intents", json={"actor_id": "a", "actor_name": "A", "kind": "dance", "conversation_id": "g"})
    assert r.status_code == 422
    r = client.post("/intents", json={"actor_id": "a", "actor_name": "   ", "kind": "join", "conversation_id": "g"})
    assert r.status_code == 422


def test_each_client_gets_a_fresh_runtime():
    with TestClient(app) as c:
        _intent(c, "alice", "start", "origin")
        assert c.get("/game").json()["phase"] == "WAITING_FOR_PLAYERS"
    assert game_store.get() is None
    with TestClient(app) as c:
        assert c.get("/game").json()["phase"] == "IDLE"
