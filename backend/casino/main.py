"""FastAPI application: REST endpoints for the agent poker room."""

import hmac
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import anthropic
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from casino import room, store
from casino.cleanup import cleanup_empty_tables, table_cleaner
from casino.errors import PokerError
from casino.models import (
    ActionRequest,
    CreateTableRequest,
    CreateTournamentRequest,
    DecideActionRequest,
    ErrorResponse,
    JoinTableRequest,
    LeaderboardEntry,
    LeaveTableRequest,
    PlayerInfo,
    RegisterPlayerRequest,
    RegisterPlayerResponse,
    SpectatorBetRequest,
)
from casino.timer import action_timer

logger = logging.getLogger(__name__)

SEED_DEMO = os.getenv("SEED_DEMO", "1") != "0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if SEED_DEMO:
        await room.seed_demo()
    await action_timer.resync()
    action_timer.start()
    table_cleaner.start()
    yield
    table_cleaner.stop()
    action_timer.stop()
    await store.close()


_ERRORS = {code: {"model": ErrorResponse} for code in (400, 401, 404, 409)}

app = FastAPI(title="Agent Casino Royale", lifespan=lifespan, responses=_ERRORS)

# ---------- Rate Limiting ----------

_rate_limit_enabled = os.getenv("RATE_LIMIT_ENABLED", "1") != "0"

limiter = Limiter(
    key_func=get_remote_address,
    enabled=_rate_limit_enabled,
)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please slow down."},
    )


@app.exception_handler(PokerError)
async def _poker_error_handler(request: Request, exc: PokerError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error": exc.kind},
    )


@app.exception_handler(anthropic.APIError)
async def _llm_error_handler(request: Request, exc: anthropic.APIError):
    logger.warning("LLM request failed: %s", exc)
    return JSONResponse(
        status_code=502,
        content={"detail": "LLM request failed", "error": "CommentaryFailed"},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Admin Auth ----------

ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")


async def verify_admin(authorization: Optional[str] = Header(None)):
    """Validate the admin password from the Authorization header."""
    if not ADMIN_PASSWORD:
        raise HTTPException(
            status_code=503,
            detail="Admin not configured. Set ADMIN_PASSWORD env var.",
        )
    expected = f"Bearer {ADMIN_PASSWORD}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Invalid admin password")


# ---------- Health ----------


@app.get("/api/health")
async def health():
    return await room.health()


# ---------- Players ----------


@app.post("/api/players/register", response_model=RegisterPlayerResponse)
@limiter.limit("10/minute")
async def register_player(request: Request, req: RegisterPlayerRequest):
    """Register an agent.  Keep the returned token: it is shown only once."""
    return await room.register_player(req)


@app.get("/api/players/{agent_id}", response_model=PlayerInfo)
@limiter.limit("30/minute")
async def get_player(request: Request, agent_id: str):
    return await room.get_player(agent_id)


@app.get("/api/leaderboard", response_model=list[LeaderboardEntry])
@limiter.limit("30/minute")
async def leaderboard(request: Request):
    return await room.leaderboard()


# ---------- Tables ----------


@app.post("/api/tables/create")
@limiter.limit("5/minute")
async def create_table(request: Request, req: CreateTableRequest):
    return await room.create_table(req)


@app.get("/api/tables")
@limiter.limit("30/minute")
async def list_tables(request: Request):
    return {"tables": await room.list_tables()}


@app.get("/api/tables/{table_id}")
@limiter.limit("60/minute")
async def get_table(request: Request, table_id: str):
    """Public table state.  Hole cards stay hidden until showdown."""
    return await room.get_table_view(table_id)


@app.get("/api/tables/{table_id}/state/{agent_id}")
@limiter.limit("120/minute")
async def get_agent_state(
    request: Request,
    table_id: str,
    agent_id: str,
    x_agent_token: Optional[str] = Header(None),
):
    """Table state as ``agent_id`` sees it: own hole cards and legal actions.

    Requires the agent's token in the ``X-Agent-Token`` header.
    """
    return await room.get_table_view(table_id, agent_id, x_agent_token)


@app.post("/api/tables/{table_id}/join")
@limiter.limit("10/minute")
async def join_table(request: Request, table_id: str, req: JoinTableRequest):
    return await room.join_table(table_id, req.agent_id, req.token, req.buy_in)


@app.post("/api/tables/{table_id}/leave")
@limiter.limit("10/minute")
async def leave_table(request: Request, table_id: str, req: LeaveTableRequest):
    return await room.leave_table(table_id, req.agent_id, req.token)


@app.post("/api/tables/{table_id}/deal")
@limiter.limit("30/minute")
async def deal(request: Request, table_id: str):
    """Deal the next hand (anyone may trigger)."""
    result = await room.deal(table_id)
    _sync_timer(table_id, result["table"]["action_deadline"])
    return result


@app.post("/api/tables/{table_id}/action")
@limiter.limit("120/minute")
async def table_action(request: Request, table_id: str, req: ActionRequest):
    """Apply an agent's action (fold, check, call, bet, raise, all_in)."""
    result = await room.process_action(
        table_id, req.agent_id, req.token, req.action, req.amount
    )
    _sync_timer(table_id, result["table"]["action_deadline"])
    return result


@app.post("/api/tables/{table_id}/spectate/bet")
@limiter.limit("30/minute")
async def spectator_bet(request: Request, table_id: str, req: SpectatorBetRequest):
    bet = await room.place_spectator_bet(table_id, req)
    return {"success": True, "bet": bet}


# ---------- Tournaments ----------


@app.post("/api/tournaments/create")
@limiter.limit("5/minute")
async def create_tournament(request: Request, req: CreateTournamentRequest):
    return await room.create_tournament(req)


@app.get("/api/tournaments")
@limiter.limit("30/minute")
async def list_tournaments(request: Request):
    return {"tournaments": await room.list_tournaments()}


# ---------- LLM ----------


@app.post("/api/ai/decide-action")
@limiter.limit("10/minute")
async def decide_action(request: Request, req: DecideActionRequest):
    suggestion = await room.suggest_action(req)
    return {"success": True, "decision": suggestion, "model": "claude"}


@app.get("/api/ai/analyze-table/{table_id}")
@limiter.limit("10/minute")
async def analyze_table(request: Request, table_id: str):
    analysis = await room.analyze_table(table_id)
    return {"success": True, "analysis": analysis, "table_id": table_id}


@app.get("/api/ai/player-profile/{agent_id}")
@limiter.limit("10/minute")
async def player_profile(request: Request, agent_id: str):
    player, profile = await room.player_profile(agent_id)
    return {"success": True, "player": player, "profile": profile}


# ---------- Admin ----------


@app.post("/api/admin/cleanup")
@limiter.limit("10/minute")
async def admin_cleanup(request: Request, _=Depends(verify_admin)):
    """Manually trigger empty-table cleanup. Returns deleted and kept table ids."""
    return await cleanup_empty_tables()


# ---------- Helpers ----------


def _sync_timer(table_id: str, deadline: Optional[float]) -> None:
    """Update the action timer with the table's current deadline."""
    if deadline:
        action_timer.set_deadline(table_id, deadline)
    else:
        action_timer.clear(table_id)
