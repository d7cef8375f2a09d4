"""Pydantic request and response models for the HTTP API.

Request fields also accept the camelCase names agents already send
(``agentId``, ``buyIn``, ``backPlayer``, ...).
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# --- Request models ---


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterPlayerRequest(_Request):
    agent_id: str = Field(..., alias="agentId", min_length=1, max_length=64)
    wallet: str = Field(..., min_length=1, max_length=128)
    name: Optional[str] = Field(default=None, max_length=40)
    buy_in: int = Field(default=1000, alias="buyIn", ge=1, le=1_000_000)  # starting bankroll
    style: str = Field(default="unknown", max_length=20)
    token: Optional[str] = None  # required to re-register


class CreateTableRequest(_Request):
    name: Optional[str] = Field(default=None, max_length=60)
    max_players: int = Field(default=6, alias="maxPlayers", ge=2, le=10)
    small_blind: int = Field(default=5, ge=1)
    big_blind: int = Field(default=10, ge=1)
    buy_in_min: int = Field(default=100, alias="buyInMin", ge=1)
    buy_in_max: int = Field(default=1000, alias="buyInMax", ge=1)
    action_timeout: Optional[int] = Field(
        default=None, alias="actionTimeout", ge=0, le=600
    )  # None = server default

    @model_validator(mode="before")
    @classmethod
    def _unpack_blinds(cls, data: Any) -> Any:
        """Accept ``blinds: {small, big}`` as well as the flat fields."""
        if isinstance(data, dict) and isinstance(data.get("blinds"), dict):
            data = dict(data)
            blinds = data.pop("blinds")
            for key, field in (("small", "small_blind"), ("big", "big_blind")):
                if key in blinds:
                    data.setdefault(field, blinds[key])
        return data

    @model_validator(mode="after")
    def _check_ranges(self) -> CreateTableRequest:
        if self.big_blind < self.small_blind:
            raise ValueError("big_blind must be at least small_blind")
        if self.buy_in_max < self.buy_in_min:
            raise ValueError("buy_in_max must be at least buy_in_min")
        return self


class JoinTableRequest(_Request):
    agent_id: str = Field(..., alias="agentId")
    token: Optional[str] = None
    buy_in: Optional[int] = Field(default=None, alias="buyIn", ge=1)  # None = table minimum


class LeaveTableRequest(_Request):
    agent_id: str = Field(..., alias="agentId")
    token: Optional[str] = None


class ActionRequest(_Request):
    agent_id: str = Field(..., alias="agentId")
    token: Optional[str] = None
    action: str  # fold, check, call, bet, raise, all_in
    amount: int = Field(default=0, ge=0)


class SpectatorBetRequest(_Request):
    back_player: str = Field(..., alias="backPlayer")
    amount: int = Field(..., ge=1)
    spectator_id: str = Field(default="anonymous", alias="spectatorId")


class CreateTournamentRequest(_Request):
    name: Optional[str] = Field(default=None, max_length=60)
    buy_in: int = Field(default=100, alias="buyIn", ge=0)
    max_players: int = Field(default=32, alias="maxPlayers", ge=2, le=1000)
    prize_pool: int = Field(default=0, alias="prizePool", ge=0)


class DecideActionRequest(_Request):
    hand: str = "Ah Kd"
    community_cards: str = Field(default="", alias="communityCards")
    pot_size: int = Field(default=100, alias="potSize", ge=0)
    position: str = "dealer"
    opponent_behavior: str = Field(default="", alias="opponentBehavior")


# --- Response models ---


class PlayerStats(BaseModel):
    hands_played: int = 0
    hands_won: int = 0
    total_winnings: int = 0
    biggest_pot: int = 0


class PlayerInfo(BaseModel):
    """Public player record (wallet included, nothing is charged to it)."""

    id: str
    name: str
    wallet: str
    chips: int
    style: str = "unknown"
    stats: PlayerStats = Field(default_factory=PlayerStats)
    registered_at: str


class RegisterPlayerResponse(PlayerInfo):
    token: Optional[str] = None  # issued on first registration only


class LeaderboardEntry(BaseModel):
    rank: int
    agent_id: str
    name: str
    winnings: int
    hands_won: int
    win_rate: str
    style: str


class ErrorResponse(BaseModel):
    detail: str
    error: str = ""
