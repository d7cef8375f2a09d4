"""Tests for the FastAPI endpoints, backed by the in-memory store."""

from __future__ import annotations

import contextlib
import os
from unittest.mock import AsyncMock, patch

# Disable rate limiting before importing the app module
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")

import anthropic
import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from casino import commentary, room, store
from casino.store import MemoryStore


@contextlib.asynccontextmanager
async def _noop_lifespan(app):
    yield


# Patch lifespan BEFORE importing app so no background tasks start
with patch("casino.main.lifespan", _noop_lifespan):
    from casino.main import app as fastapi_app

# agent_id -> token issued at registration
_tokens: dict[str, str] = {}


@pytest.fixture(autouse=True)
def memory_store(monkeypatch):
    s = MemoryStore()
    store.set_store(s)
    room._locks.clear()
    room._lock_users.clear()
    _tokens.clear()
    monkeypatch.setattr(commentary, "is_configured", lambda: False)
    yield s
    store.set_store(None)
    room._locks.clear()
    room._lock_users.clear()


@pytest.fixture
async def client():
    async with AsyncClient(
        transport=ASGITransport(app=fastapi_app), base_url="http://test"
    ) as c:
        yield c


async def _register(client, agent_id: str, bankroll: int = 1000):
    resp = await client.post(
        "/api/players/register",
        json={"agent_id": agent_id, "wallet": f"w-{agent_id}", "buy_in": bankroll},
    )
    assert resp.status_code == 200
    _tokens[agent_id] = resp.json()["token"]
    return resp.json()


async def _table(client, **body) -> str:
    body.setdefault("action_timeout", 0)
    resp = await client.post("/api/tables/create", json=body)
    assert resp.status_code == 200
    return resp.json()["id"]


async def _join(client, table_id: str, agent_id: str, **body):
    body.setdefault("token", _tokens.get(agent_id))
    return await client.post(
        f"/api/tables/{table_id}/join", json={"agent_id": agent_id, **body}
    )


async def _act(client, table_id: str, agent_id: str, action: str, **body):
    body.setdefault("token", _tokens.get(agent_id))
    return await client.post(
        f"/api/tables/{table_id}/action",
        json={"agent_id": agent_id, "action": action, **body},
    )


async def _seated(client, *agents: str) -> str:
    table_id = await _table(client)
    for agent_id in agents:
        await _register(client, agent_id)
        resp = await _join(client, table_id, agent_id, buy_in=500)
        assert resp.status_code == 200
    return table_id


# ---------------------------------------------------------------------------
# Health / players
# ---------------------------------------------------------------------------


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["stats"]["active_tables"] == 0


class TestPlayers:
    async def test_register(self, client):
        body = await _register(client, "alice", 2000)
        assert body["id"] == "alice"
        assert body["chips"] == 2000
        assert body["stats"]["hands_played"] == 0
        assert body["token"]
        assert "token_hash" not in body

    async def test_register_camel_case(self, client):
        resp = await client.post(
            "/api/players/register",
            json={"agentId": "alice", "name": "Alice", "wallet": "0xabc", "buyIn": 2500},
        )
        assert resp.status_code == 200
        assert resp.json()["id"] == "alice"
        assert resp.json()["chips"] == 2500

    async def test_register_validation(self, client):
        resp = await client.post("/api/players/register", json={"agent_id": "x"})
        assert resp.status_code == 422

    async def test_reregister_needs_token(self, client):
        await _register(client, "alice")
        resp = await client.post(
            "/api/players/register", json={"agent_id": "alice", "wallet": "stolen"}
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "Unauthorized"

        resp = await client.post(
            "/api/players/register",
            json={"agent_id": "alice", "wallet": "new", "token": _tokens["alice"]},
        )
        assert resp.status_code == 200
        assert resp.json()["wallet"] == "new"
        assert resp.json()["token"] is None

    async def test_get_player(self, client):
        await _register(client, "alice")
        resp = await client.get("/api/players/alice")
        assert resp.status_code == 200
        assert resp.json()["wallet"] == "w-alice"
        assert "token" not in resp.json()
        assert "token_hash" not in resp.json()

    async def test_get_missing_player(self, client):
        resp = await client.get("/api/players/ghost")
        assert resp.status_code == 404
        assert resp.json()["error"] == "PlayerNotFound"

    async def test_leaderboard(self, client):
        await _register(client, "alice")
        resp = await client.get("/api/leaderboard")
        assert resp.status_code == 200
        assert resp.json()[0]["agent_id"] == "alice"


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class TestTables:
    async def test_create_and_list(self, client):
        table_id = await _table(client, name="Arena")
        resp = await client.get("/api/tables")
        assert resp.status_code == 200
        assert resp.json()["tables"][0]["id"] == table_id

    async def test_create_camel_case_with_blinds(self, client):
        resp = await client.post(
            "/api/tables/create",
            json={
                "name": "Arena",
                "maxPlayers": 4,
                "blinds": {"small": 25, "big": 50},
                "buyInMin": 500,
                "buyInMax": 5000,
                "actionTimeout": 0,
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["max_players"] == 4
        assert body["blinds"] == {"small": 25, "big": 50}
        assert body["buy_in"] == {"min": 500, "max": 5000}

    async def test_create_rejects_bad_blinds(self, client):
        resp = await client.post(
            "/api/tables/create", json={"blinds": {"small": 50, "big": 25}}
        )
        assert resp.status_code == 422

    async def test_create_rejects_bad_ranges(self, client):
        resp = await client.post(
            "/api/tables/create", json={"buy_in_min": 500, "buy_in_max": 100}
        )
        assert resp.status_code == 422

    async def test_missing_table(self, client):
        resp = await client.get("/api/tables/nope")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Table not found: nope", "error": "TableNotFound"}

    async def test_table_full(self, client):
        table_id = await _table(client, max_players=2)
        for agent_id in ("a", "b", "c"):
            await _register(client, agent_id)
        for agent_id in ("a", "b"):
            await _join(client, table_id, agent_id)
        resp = await _join(client, table_id, "c")
        assert resp.status_code == 400
        assert resp.json()["error"] == "TableFull"

    async def test_invalid_buy_in(self, client):
        table_id = await _table(client)
        await _register(client, "a")
        resp = await _join(client, table_id, "a", buy_in=5000)
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidBuyIn"

    async def test_join_camel_case(self, client):
        table_id = await _table(client)
        await _register(client, "a")
        resp = await client.post(
            f"/api/tables/{table_id}/join",
            json={"agentId": "a", "buyIn": 300, "token": _tokens["a"]},
        )
        assert resp.status_code == 200
        assert resp.json()["seat"]["chips"] == 300

    async def test_leave(self, client):
        table_id = await _seated(client, "a", "b")
        resp = await client.post(
            f"/api/tables/{table_id}/leave", json={"agent_id": "a", "token": _tokens["a"]}
        )
        assert resp.status_code == 200
        assert resp.json()["chips_returned"] == 500

    async def test_public_view_hides_cards(self, client):
        table_id = await _seated(client, "a", "b")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await client.get(f"/api/tables/{table_id}")
        assert all("hole_cards" not in s for s in resp.json()["seats"])

    async def test_agent_state_shows_own_cards(self, client):
        table_id = await _seated(client, "a", "b")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await client.get(
            f"/api/tables/{table_id}/state/b", headers={"X-Agent-Token": _tokens["b"]}
        )
        assert resp.status_code == 200
        body = resp.json()
        seats = {s["agent_id"]: s for s in body["seats"]}
        assert len(seats["b"]["hole_cards"]) == 2
        assert "hole_cards" not in seats["a"]
        assert body["legal_actions"]


class TestAgentAuth:
    async def test_state_without_token(self, client):
        table_id = await _seated(client, "a", "b")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await client.get(f"/api/tables/{table_id}/state/b")
        assert resp.status_code == 401
        assert resp.json()["error"] == "Unauthorized"
        assert "hole_cards" not in resp.text

    async def test_state_with_other_agents_token(self, client):
        table_id = await _seated(client, "a", "b")
        await client.post(f"/api/tables/{table_id}/deal")
        for token in ("guess", _tokens["a"]):
            resp = await client.get(
                f"/api/tables/{table_id}/state/b", headers={"X-Agent-Token": token}
            )
            assert resp.status_code == 401
            assert "hole_cards" not in resp.text

    async def test_action_with_wrong_token(self, client):
        # Heads-up: "b" posts the small blind and acts first
        table_id = await _seated(client, "a", "b")
        await client.post(f"/api/tables/{table_id}/deal")
        for token in (None, "guess", _tokens["a"]):
            resp = await _act(client, table_id, "b", "fold", token=token)
            assert resp.status_code == 401
        view = (await client.get(f"/api/tables/{table_id}")).json()
        assert view["on_turn"] == "b"
        assert view["pot"] == 15
        assert view["last_result"] is None

    async def test_join_with_wrong_token(self, client):
        table_id = await _table(client)
        await _register(client, "a")
        resp = await _join(client, table_id, "a", token="guess")
        assert resp.status_code == 401
        assert (await client.get("/api/players/a")).json()["chips"] == 1000

    async def test_leave_with_wrong_token(self, client):
        table_id = await _seated(client, "a", "b")
        resp = await client.post(
            f"/api/tables/{table_id}/leave", json={"agent_id": "a", "token": _tokens["b"]}
        )
        assert resp.status_code == 401
        view = (await client.get(f"/api/tables/{table_id}")).json()
        assert [s["agent_id"] for s in view["seats"]] == ["a", "b"]


# ---------------------------------------------------------------------------
# Hands
# ---------------------------------------------------------------------------


class TestHandFlow:
    async def test_deal_needs_players(self, client):
        table_id = await _table(client)
        resp = await client.post(f"/api/tables/{table_id}/deal")
        assert resp.status_code == 400

    async def test_deal_twice(self, client):
        table_id = await _seated(client, "a", "b")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await client.post(f"/api/tables/{table_id}/deal")
        assert resp.status_code == 409
        assert resp.json()["error"] == "HandInProgress"

    async def test_action_without_hand(self, client):
        table_id = await _seated(client, "a", "b")
        resp = await _act(client, table_id, "a", "check")
        assert resp.status_code == 409
        assert resp.json()["error"] == "HandNotActive"

    async def test_wrong_turn(self, client):
        table_id = await _seated(client, "a", "b", "c")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await _act(client, table_id, "c", "check")
        assert resp.status_code == 409
        assert resp.json()["error"] == "NotYourTurn"

    async def test_invalid_action(self, client):
        table_id = await _seated(client, "a", "b", "c")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await _act(client, table_id, "a", "check")
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidAction"

    async def test_raise_beyond_stack(self, client):
        table_id = await _seated(client, "a", "b", "c")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await _act(client, table_id, "a", "raise", amount=900)
        assert resp.status_code == 400
        assert resp.json()["error"] == "InsufficientChips"

    async def test_negative_amount_rejected(self, client):
        table_id = await _seated(client, "a", "b")
        resp = await _act(client, table_id, "a", "raise", amount=-1)
        assert resp.status_code == 422

    async def test_unregistered_agent(self, client):
        table_id = await _seated(client, "a", "b")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await _act(client, table_id, "zed", "fold", token="guess")
        assert resp.status_code == 404

    async def test_action_camel_case(self, client):
        table_id = await _seated(client, "a", "b", "c")
        await client.post(f"/api/tables/{table_id}/deal")
        resp = await client.post(
            f"/api/tables/{table_id}/action",
            json={"agentId": "a", "action": "raise", "amount": 40, "token": _tokens["a"]},
        )
        assert resp.status_code == 200
        assert resp.json()["next_player"] == "b"

    async def test_full_hand_by_folds(self, client):
        table_id = await _seated(client, "a", "b", "c")
        resp = await client.post(f"/api/tables/{table_id}/deal")
        assert resp.status_code == 200
        assert resp.json()["table"]["on_turn"] == "a"

        await _act(client, table_id, "a", "fold")
        resp = await _act(client, table_id, "b", "fold")
        body = resp.json()
        assert body["result"]["winners"][0]["agent_id"] == "c"
        assert body["result"]["pot"] == 15

        resp = await client.get("/api/players/c")
        assert resp.json()["stats"]["hands_won"] == 1

    async def test_timer_tracks_deadline(self, client):
        table_id = await _table(client, action_timeout=30)
        for agent_id in ("a", "b"):
            await _register(client, agent_id)
            await _join(client, table_id, agent_id)
        with patch("casino.main.action_timer") as timer:
            resp = await client.post(f"/api/tables/{table_id}/deal")
        deadline = resp.json()["table"]["action_deadline"]
        timer.set_deadline.assert_called_once_with(table_id, deadline)


# ---------------------------------------------------------------------------
# Spectators / tournaments
# ---------------------------------------------------------------------------


class TestExtras:
    async def test_spectator_bet(self, client):
        table_id = await _seated(client, "a", "b")
        resp = await client.post(
            f"/api/tables/{table_id}/spectate/bet",
            json={"back_player": "a", "amount": 25},
        )
        assert resp.status_code == 200
        assert resp.json()["bet"]["spectator_id"] == "anonymous"

    async def test_spectator_bet_camel_case(self, client):
        table_id = await _seated(client, "a", "b")
        resp = await client.post(
            f"/api/tables/{table_id}/spectate/bet",
            json={"oddsId": "x1", "backPlayer": "b", "amount": 10, "spectatorId": "fan"},
        )
        assert resp.status_code == 200
        assert resp.json()["bet"]["back_player"] == "b"
        assert resp.json()["bet"]["spectator_id"] == "fan"

    async def test_spectator_bet_needs_amount(self, client):
        table_id = await _seated(client, "a", "b")
        resp = await client.post(
            f"/api/tables/{table_id}/spectate/bet", json={"back_player": "a", "amount": 0}
        )
        assert resp.status_code == 422

    async def test_tournaments(self, client):
        resp = await client.post("/api/tournaments/create", json={"name": "Open"})
        assert resp.status_code == 200
        resp = await client.get("/api/tournaments")
        assert [t["name"] for t in resp.json()["tournaments"]] == ["Open"]

    async def test_tournament_camel_case(self, client):
        resp = await client.post(
            "/api/tournaments/create",
            json={"name": "Open", "buyIn": 250, "maxPlayers": 64, "prizePool": 5000},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert (body["buy_in"], body["max_players"], body["prize_pool"]) == (250, 64, 5000)


# ---------------------------------------------------------------------------
# LLM endpoints
# ---------------------------------------------------------------------------


class TestAIEndpoints:
    async def test_decide_action(self, client):
        with patch("casino.main.room.suggest_action", new_callable=AsyncMock) as m:
            m.return_value = "ACTION: CALL | REASONING: pot odds"
            resp = await client.post("/api/ai/decide-action", json={"hand": "Qs Qd"})
        assert resp.status_code == 200
        assert resp.json()["decision"] == "ACTION: CALL | REASONING: pot odds"

    async def test_decide_action_camel_case(self, client):
        with patch("casino.main.room.suggest_action", new_callable=AsyncMock) as m:
            m.return_value = "ACTION: FOLD | REASONING: dominated"
            resp = await client.post(
                "/api/ai/decide-action",
                json={
                    "hand": "7c 2d",
                    "communityCards": "Ah Kh Qh",
                    "potSize": 400,
                    "opponentBehavior": "aggressive",
                },
            )
        assert resp.status_code == 200
        req = m.await_args.args[0]
        assert req.community_cards == "Ah Kh Qh"
        assert req.pot_size == 400
        assert req.opponent_behavior == "aggressive"

    async def test_unconfigured(self, client, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setattr(commentary, "_client", None)
        resp = await client.post("/api/ai/decide-action", json={})
        assert resp.status_code == 503
        assert resp.json()["error"] == "CommentaryUnavailable"

    async def test_llm_failure_is_502(self, client):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.APIConnectionError(request=request)
        with patch("casino.main.room.analyze_table", new_callable=AsyncMock) as m:
            m.side_effect = error
            resp = await client.get("/api/ai/analyze-table/t1")
        assert resp.status_code == 502

    async def test_player_profile(self, client):
        await _register(client, "alice")
        with patch("casino.room.commentary.player_profile", new_callable=AsyncMock) as m:
            m.return_value = "Iceberg"
            resp = await client.get("/api/ai/player-profile/alice")
        assert resp.status_code == 200
        assert resp.json()["profile"] == "Iceberg"
        assert resp.json()["player"]["id"] == "alice"
        assert "token_hash" not in resp.json()["player"]


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class TestAdmin:
    async def test_cleanup_requires_config(self, client, monkeypatch):
        monkeypatch.setattr("casino.main.ADMIN_PASSWORD", "")
        resp = await client.post("/api/admin/cleanup")
        assert resp.status_code == 503

    async def test_cleanup_bad_password(self, client, monkeypatch):
        monkeypatch.setattr("casino.main.ADMIN_PASSWORD", "secret")
        resp = await client.post(
            "/api/admin/cleanup", headers={"Authorization": "Bearer wrong"}
        )
        assert resp.status_code == 401

    async def test_cleanup(self, client, monkeypatch):
        monkeypatch.setattr("casino.main.ADMIN_PASSWORD", "secret")
        table_id = await _table(client)
        resp = await client.post(
            "/api/admin/cleanup", headers={"Authorization": "Bearer secret"}
        )
        assert resp.status_code == 200
        assert resp.json() == {"deleted": [], "kept": [table_id]}
