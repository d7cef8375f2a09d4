"""LLM narrative: action suggestions, table commentary, player profiles.

All of it is flavour.  Nothing in the betting logic waits on these calls,
and background commentary failures are logged and dropped.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

import anthropic

from casino.errors import CommentaryUnavailable

logger = logging.getLogger(__name__)

LLM_MODEL = os.getenv("LLM_MODEL", "claude-sonnet-4-20250514")

_client: Optional[anthropic.AsyncAnthropic] = None


def is_configured() -> bool:
    return _client is not None or bool(os.getenv("ANTHROPIC_API_KEY"))


def get_client() -> anthropic.AsyncAnthropic:
    global _client
    if _client is None:
        api_key = os.getenv("ANTHROPIC_API_KEY", "")
        if not api_key:
            raise CommentaryUnavailable("LLM not configured. Set ANTHROPIC_API_KEY.")
        _client = anthropic.AsyncAnthropic(api_key=api_key)
    return _client


async def _complete(prompt: str, max_tokens: int) -> str:
    client = get_client()
    message = await client.messages.create(
        model=LLM_MODEL,
        max_tokens=max_tokens,
        messages=[{"role": "user", "content": prompt}],
    )
    return "".join(
        block.text for block in message.content if getattr(block, "type", "") == "text"
    )


async def suggest_action(
    hand: str,
    community_cards: str,
    pot_size: int,
    position: str,
    opponent_behavior: str,
) -> str:
    prompt = (
        "You are an AI agent seated at the Casino Royale poker room. "
        "Pick your next No-Limit Hold'em action.\n"
        f"Hole cards: {hand}\n"
        f"Board: {community_cards or 'none yet (preflop)'}\n"
        f"Pot: {pot_size} chips\n"
        f"Position: {position}\n"
        f"Opponent read: {opponent_behavior or 'unknown'}\n\n"
        "Choose FOLD, CHECK, CALL, RAISE <amount> or ALL-IN and justify it "
        "briefly with hand strength, pot odds and bluff equity.\n"
        "Answer as: ACTION: <action> | REASONING: <reasoning>"
    )
    return await _complete(prompt, max_tokens=400)


async def analyze_table(snapshot: dict[str, Any]) -> str:
    hand = snapshot.get("hand") or {}
    seats = [
        {"name": s["name"], "chips": s["chips"], "last_action": s["last_action"]}
        for s in snapshot.get("seats", [])
    ]
    last = snapshot.get("last_result") or {}
    prompt = (
        "You are the broadcast commentator for an AI-versus-AI poker table.\n"
        f"Table: {snapshot.get('name')}\n"
        f"Players: {json.dumps(seats)}\n"
        f"Pot: {snapshot.get('pot', 0)} chips\n"
        f"Board: {' '.join(hand.get('community_cards', [])) or 'no cards yet'}\n"
        f"Stage: {hand.get('stage', snapshot.get('status'))}\n"
        f"Last hand winners: {json.dumps(last.get('winners', []))}\n\n"
        "In 3-4 lively sentences, say who has the edge, what the dynamics "
        "are and who spectators should back."
    )
    return await _complete(prompt, max_tokens=400)


async def player_profile(player: dict[str, Any]) -> str:
    stats = player.get("stats", {})
    played = stats.get("hands_played", 0)
    win_rate = f"{stats.get('hands_won', 0) / played * 100:.1f}%" if played else "n/a"
    prompt = (
        "Write a poker scouting report.\n"
        f"Name: {player.get('name')}\n"
        f"Hands played: {played}, hands won: {stats.get('hands_won', 0)} "
        f"(win rate {win_rate})\n"
        f"Net winnings: {stats.get('total_winnings', 0)} chips, "
        f"biggest pot: {stats.get('biggest_pot', 0)}\n"
        f"Declared style: {player.get('style', 'unknown')}\n\n"
        "Give a nickname, a player-type classification and a 2-3 sentence "
        "report in the voice of a televised tournament profile."
    )
    return await _complete(prompt, max_tokens=300)
