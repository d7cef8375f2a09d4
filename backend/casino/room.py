"""Room service: business logic for players, tables and hands.

Tables live in the store as snapshots.  Every mutation of a table runs
under that table's ``asyncio.Lock``: load, change, save.  Submissions for
one table are therefore applied one at a time in arrival order, while
different tables proceed independently.  Player records have their own
locks, always taken after the table lock.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import os
import secrets
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional

from casino import commentary, store
from casino.cards import Deck, new_shuffled_deck
from casino.errors import InsufficientChips, PlayerNotFound, TableNotFound, Unauthorized
from casino.models import (
    CreateTableRequest,
    CreateTournamentRequest,
    DecideActionRequest,
    RegisterPlayerRequest,
    SpectatorBetRequest,
)
from casino.table import Table, new_table_id

logger = logging.getLogger(__name__)

ACTION_TIMEOUT = int(os.getenv("ACTION_TIMEOUT", "30"))  # seconds, 0 = no timer
LEADERBOARD_SIZE = 20

TABLES = "table"
PLAYERS = "player"
TOURNAMENTS = "tournament"
COMMENTARY = "commentary"

DEFAULT_BLIND_LEVELS = [
    {"small": 25, "big": 50, "duration": 15},
    {"small": 50, "big": 100, "duration": 15},
    {"small": 100, "big": 200, "duration": 15},
    {"small": 200, "big": 400, "duration": 15},
]

# Deck source for new hands.  Tests swap in stacked decks.
deck_factory: Callable[[], Deck] = new_shuffled_deck

# Locks exist only while someone holds or waits on them.
_locks: dict[str, asyncio.Lock] = {}
_lock_users: dict[str, int] = {}
_background: set[asyncio.Task] = set()


@asynccontextmanager
async def _locked(key: str) -> AsyncIterator[None]:
    lock = _locks.get(key)
    if lock is None:
        lock = _locks[key] = asyncio.Lock()
    _lock_users[key] = _lock_users.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _lock_users[key] -= 1
        if not _lock_users[key]:
            del _lock_users[key]
            del _locks[key]


def _table_lock(table_id: str):
    return _locked(f"table:{table_id}")


def _player_lock(agent_id: str):
    return _locked(f"player:{agent_id}")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ------------------------------------------------------------------
# Persistence helpers
# ------------------------------------------------------------------


async def _load_table(table_id: str) -> Table:
    data = await store.get_store().get(TABLES, table_id)
    if data is None:
        raise TableNotFound(table_id)
    return Table.from_dict(data)


async def _save_table(table: Table) -> None:
    await store.get_store().put(TABLES, table.table_id, table.to_dict())


async def _load_player(agent_id: str) -> dict[str, Any]:
    data = await store.get_store().get(PLAYERS, agent_id)
    if data is None:
        raise PlayerNotFound(agent_id, "not registered")
    return data


async def _save_player(player: dict[str, Any]) -> None:
    await store.get_store().put(PLAYERS, player["id"], player)


def _empty_stats() -> dict[str, int]:
    return {"hands_played": 0, "hands_won": 0, "total_winnings": 0, "biggest_pot": 0}


def _public(player: dict[str, Any]) -> dict[str, Any]:
    """Player record without the token hash."""
    return {k: v for k, v in player.items() if k != "token_hash"}


# ------------------------------------------------------------------
# Agent tokens
# ------------------------------------------------------------------


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _check_token(player: dict[str, Any], token: Optional[str]) -> None:
    if not token:
        raise Unauthorized("Missing agent token")
    token_hash = player.get("token_hash")
    if not token_hash or not hmac.compare_digest(_hash_token(token), token_hash):
        raise Unauthorized(f"Invalid token for {player['id']}")


async def verify_agent(agent_id: str, token: Optional[str]) -> None:
    """Check ``token`` against the one issued when ``agent_id`` registered."""
    _check_token(await _load_player(agent_id), token)


# ------------------------------------------------------------------
# Players
# ------------------------------------------------------------------


async def register_player(req: RegisterPlayerRequest) -> dict[str, Any]:
    """Register an agent and issue its token.

    The token is returned once and only its hash is stored.  Re-registering
    needs that token and updates the profile, not the bankroll.
    """
    async with _player_lock(req.agent_id):
        player = await store.get_store().get(PLAYERS, req.agent_id)
        token = None
        if player is None:
            token = secrets.token_urlsafe(24)
            player = {
                "id": req.agent_id,
                "name": req.name or req.agent_id,
                "wallet": req.wallet,
                "chips": req.buy_in,
                "style": req.style,
                "stats": _empty_stats(),
                "registered_at": _now_iso(),
                "token_hash": _hash_token(token),
            }
            logger.info("Registered player %s", req.agent_id)
        else:
            _check_token(player, req.token)
            player["name"] = req.name or player["name"]
            player["wallet"] = req.wallet
            player["style"] = req.style
        await _save_player(player)
    return {**_public(player), "token": token}


async def get_player(agent_id: str) -> dict[str, Any]:
    return _public(await _load_player(agent_id))


async def leaderboard() -> list[dict[str, Any]]:
    players = await store.get_store().all(PLAYERS)
    players.sort(key=lambda p: p["stats"]["total_winnings"], reverse=True)
    board = []
    for i, p in enumerate(players[:LEADERBOARD_SIZE]):
        stats = p["stats"]
        played = stats["hands_played"]
        board.append(
            {
                "rank": i + 1,
                "agent_id": p["id"],
                "name": p["name"],
                "winnings": stats["total_winnings"],
                "hands_won": stats["hands_won"],
                "win_rate": f"{stats['hands_won'] / played * 100:.1f}%" if played else "N/A",
                "style": p.get("style", "unknown"),
            }
        )
    return board


async def _record_hand(result: dict[str, Any]) -> None:
    """Fold a settled hand into each participant's lifetime stats."""
    winners = {
        agent_id
        for pot in result["pots"]
        if len(pot["eligible"]) > 1 or not result["showdown"]
        for agent_id in pot["winners"]
    }
    for agent_id, committed in result["contributions"].items():
        won = result["payouts"].get(agent_id, 0)
        async with _player_lock(agent_id):
            player = await store.get_store().get(PLAYERS, agent_id)
            if player is None:
                continue
            stats = player.setdefault("stats", _empty_stats())
            stats["hands_played"] += 1
            stats["total_winnings"] += won - committed
            if agent_id in winners:
                stats["hands_won"] += 1
                stats["biggest_pot"] = max(stats["biggest_pot"], won)
            await _save_player(player)


# ------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------


async def create_table(req: CreateTableRequest, table_id: Optional[str] = None) -> dict[str, Any]:
    table = Table(
        table_id or new_table_id(),
        name=req.name or "",
        small_blind=req.small_blind,
        big_blind=req.big_blind,
        buy_in_min=req.buy_in_min,
        buy_in_max=req.buy_in_max,
        max_players=req.max_players,
        action_timeout=ACTION_TIMEOUT if req.action_timeout is None else req.action_timeout,
    )
    async with _table_lock(table.table_id):
        await _save_table(table)
    logger.info("Created table %s (%s)", table.table_id, table.name)
    return table.view()


async def list_tables() -> list[dict[str, Any]]:
    tables = await store.get_store().all(TABLES)
    return [Table.from_dict(t).summary() for t in tables]


async def get_table_view(
    table_id: str, viewer: Optional[str] = None, token: Optional[str] = None
) -> dict[str, Any]:
    """Table state; with ``viewer`` it includes their hole cards and legal actions.

    Viewing as an agent needs that agent's token.
    """
    table = await _load_table(table_id)
    if viewer is not None:
        await verify_agent(viewer, token)
        if table.find_seat(viewer) is None:
            raise PlayerNotFound(viewer, "not seated at this table")
    view = table.view(viewer)
    view["commentary"] = await store.get_store().get(COMMENTARY, table_id)
    return view


async def join_table(
    table_id: str, agent_id: str, token: Optional[str], buy_in: Optional[int] = None
) -> dict[str, Any]:
    await verify_agent(agent_id, token)
    return await _seat_player(table_id, agent_id, buy_in)


async def _seat_player(table_id: str, agent_id: str, buy_in: Optional[int]) -> dict[str, Any]:
    async with _table_lock(table_id):
        table = await _load_table(table_id)
        async with _player_lock(agent_id):
            player = await _load_player(agent_id)
            amount = table.buy_in_min if buy_in is None else buy_in
            table.check_join(agent_id, amount)
            if player["chips"] < amount:
                raise InsufficientChips(
                    f"Bankroll of {player['chips']} cannot cover a buy-in of {amount}"
                )
            seat = table.join(agent_id, player["name"], amount)
            player["chips"] -= amount
            await _save_table(table)
            await _save_player(player)

    logger.info("Player %s joined table %s with %d", agent_id, table_id, amount)
    return {
        "seat": seat.public_dict(),
        "players_at_table": len(table.seats),
        "table": table.view(agent_id),
    }


async def leave_table(table_id: str, agent_id: str, token: Optional[str]) -> dict[str, Any]:
    await verify_agent(agent_id, token)
    async with _table_lock(table_id):
        table = await _load_table(table_id)
        async with _player_lock(agent_id):
            player = await _load_player(agent_id)
            chips = table.leave(agent_id)
            player["chips"] += chips
            await _save_table(table)
            await _save_player(player)

    logger.info("Player %s left table %s with %d", agent_id, table_id, chips)
    return {"chips_returned": chips, "bankroll": player["chips"], "table": table.view()}


async def deal(table_id: str) -> dict[str, Any]:
    """Start the next hand at a table."""
    async with _table_lock(table_id):
        table = await _load_table(table_id)
        hand = table.start_hand(deck_factory())
        await _save_table(table)
        # All-in blinds can run the whole board out during the deal.
        result = table.last_result if table.hand is None else None
        if result is not None:
            await _record_hand(result)

    logger.info("Dealt hand %s at table %s (#%d)", hand.hand_id, table_id, table.hand_count)
    view = table.view()
    if result is not None:
        _schedule_commentary(table_id, view)
    return {"hand_id": hand.hand_id, "table": view}


async def process_action(
    table_id: str, agent_id: str, token: Optional[str], action: str, amount: int = 0
) -> dict[str, Any]:
    await verify_agent(agent_id, token)
    async with _table_lock(table_id):
        table = await _load_table(table_id)
        entry = table.apply_action(agent_id, action, amount)
        await _save_table(table)
        result = table.last_result if table.hand is None else None
        if result is not None:
            await _record_hand(result)

    on_turn = table.seat_on_turn()
    view = table.view(agent_id)
    if result is not None:
        logger.info("Hand %s settled at table %s", result["hand_id"], table_id)
        _schedule_commentary(table_id, view)
    return {
        "action": entry,
        "pot": table.pot,
        "next_player": on_turn.agent_id if on_turn else None,
        "result": result,
        "table": view,
    }


async def handle_timeout(table_id: str) -> Optional[float]:
    """Apply the default action if the turn deadline has passed.

    Returns the deadline the timer should track next, if any.
    """
    async with _table_lock(table_id):
        try:
            table = await _load_table(table_id)
        except TableNotFound:
            return None
        if table.hand is None or table.action_deadline is None:
            return None
        if time.time() < table.action_deadline:
            return table.action_deadline

        seat = table.seat_on_turn()
        entry = table.apply_default_action()
        logger.info(
            "Auto-%s: table=%s agent=%s timed out",
            entry["action"],
            table_id,
            seat.agent_id if seat else "?",
        )
        await _save_table(table)
        result = table.last_result if table.hand is None else None
        if result is not None:
            await _record_hand(result)

    if result is not None:
        _schedule_commentary(table_id, table.view())
    return table.action_deadline


async def pending_deadlines() -> dict[str, float]:
    """Action deadlines of every table with a hand in progress."""
    deadlines = {}
    for data in await store.get_store().all(TABLES):
        if data.get("hand") and data.get("action_deadline"):
            deadlines[data["table_id"]] = data["action_deadline"]
    return deadlines


async def place_spectator_bet(table_id: str, req: SpectatorBetRequest) -> dict[str, Any]:
    """Record a spectator's backing of a seated agent.  Bets are never settled."""
    async with _table_lock(table_id):
        table = await _load_table(table_id)
        if table.find_seat(req.back_player) is None:
            raise PlayerNotFound(req.back_player, "not seated at this table")
        bet = {
            "id": secrets.token_hex(4),
            "spectator_id": req.spectator_id,
            "back_player": req.back_player,
            "amount": req.amount,
            "table_id": table_id,
            "hand_id": table.hand.hand_id if table.hand else None,
            "placed_at": _now_iso(),
        }
        table.add_spectator_bet(bet)
        await _save_table(table)
    return bet


# ------------------------------------------------------------------
# Tournaments
# ------------------------------------------------------------------


async def create_tournament(req: CreateTournamentRequest) -> dict[str, Any]:
    tournament_id = secrets.token_hex(6)
    tournament = {
        "id": tournament_id,
        "name": req.name or f"Tournament {tournament_id}",
        "buy_in": req.buy_in,
        "max_players": req.max_players,
        "prize_pool": req.prize_pool,
        "players": [],
        "status": "registering",
        "start_time": None,
        "structure": {"starting_chips": 10000, "blind_levels": DEFAULT_BLIND_LEVELS},
        "created_at": _now_iso(),
    }
    await store.get_store().put(TOURNAMENTS, tournament_id, tournament)
    return tournament


async def list_tournaments() -> list[dict[str, Any]]:
    return await store.get_store().all(TOURNAMENTS)


# ------------------------------------------------------------------
# Health
# ------------------------------------------------------------------


async def health() -> dict[str, Any]:
    s = store.get_store()
    return {
        "status": "ok",
        "service": "Agent-Casino-Royale",
        "version": "1.0.0",
        "stats": {
            "active_tables": len(await s.keys(TABLES)),
            "registered_players": len(await s.keys(PLAYERS)),
            "ongoing_tournaments": len(await s.keys(TOURNAMENTS)),
        },
    }


# ------------------------------------------------------------------
# LLM narrative
# ------------------------------------------------------------------


def _schedule_commentary(table_id: str, snapshot: dict[str, Any]) -> None:
    """Fire-and-forget table commentary; never awaited by game flow."""
    if not commentary.is_configured():
        return
    task = asyncio.create_task(_write_commentary(table_id, snapshot))
    _background.add(task)
    task.add_done_callback(_background.discard)


async def _write_commentary(table_id: str, snapshot: dict[str, Any]) -> None:
    try:
        text = await commentary.analyze_table(snapshot)
        await store.get_store().put(
            COMMENTARY,
            table_id,
            {
                "text": text,
                "hand_id": (snapshot.get("last_result") or {}).get("hand_id"),
                "created_at": time.time(),
            },
        )
    except Exception:
        logger.debug("Dropped commentary for table %s", table_id, exc_info=True)


async def suggest_action(req: DecideActionRequest) -> str:
    return await commentary.suggest_action(
        req.hand, req.community_cards, req.pot_size, req.position, req.opponent_behavior
    )


async def analyze_table(table_id: str) -> str:
    view = await get_table_view(table_id)
    return await commentary.analyze_table(view)


async def player_profile(agent_id: str) -> tuple[dict[str, Any], str]:
    player = await get_player(agent_id)
    return player, await commentary.player_profile(player)


# ------------------------------------------------------------------
# Demo data
# ------------------------------------------------------------------

DEMO_TABLE_ID = "high-stakes"

DEMO_PLAYERS = [
    {"id": "poker-shark", "name": "Poker Shark AI", "chips": 5000, "style": "aggressive"},
    {"id": "bluff-master", "name": "Bluff Master", "chips": 3500, "style": "loose"},
    {"id": "rock-solid", "name": "Rock Solid Bot", "chips": 4200, "style": "tight"},
    {"id": "wild-card", "name": "Wild Card", "chips": 2800, "style": "unpredictable"},
]


async def seed_demo() -> None:
    """Create the demo players and seat them at the demo table (idempotent).

    Demo agents are seated directly; their tokens are never handed out.
    """
    if await store.get_store().get(TABLES, DEMO_TABLE_ID) is not None:
        return

    for p in DEMO_PLAYERS:
        if await store.get_store().get(PLAYERS, p["id"]) is None:
            await register_player(
                RegisterPlayerRequest(
                    agent_id=p["id"], name=p["name"], wallet="Demo...", buy_in=p["chips"], style=p["style"]
                )
            )
        async with _player_lock(p["id"]):
            player = await _load_player(p["id"])
            player["chips"] = max(player["chips"], p["chips"])
            player["stats"] = {
                "hands_played": 100,
                "hands_won": 45 if p["chips"] > 3000 else 30,
                "total_winnings": p["chips"] - 1000,
                "biggest_pot": 500,
            }
            await _save_player(player)

    await create_table(
        CreateTableRequest(
            name="High Stakes Arena",
            max_players=6,
            small_blind=25,
            big_blind=50,
            buy_in_min=500,
            buy_in_max=5000,
        ),
        table_id=DEMO_TABLE_ID,
    )
    for p in DEMO_PLAYERS:
        await _seat_player(DEMO_TABLE_ID, p["id"], p["chips"])
    logger.info("Seeded demo table %s with %d players", DEMO_TABLE_ID, len(DEMO_PLAYERS))
