"""Table manager: seats, stacks across hands, the button and the active hand."""

from __future__ import annotations

import secrets
import time
from enum import Enum
from typing import Any, Optional

from casino.cards import Deck, new_shuffled_deck
from casino.errors import (
    HandInProgress,
    HandNotActive,
    InvalidAction,
    InvalidBuyIn,
    PlayerNotFound,
    PokerError,
    TableFull,
)
from casino.hand import ActionType, Hand, Seat, Stage


class TableStatus(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    SHOWDOWN = "showdown"


def new_table_id() -> str:
    return secrets.token_hex(6)


class Table:
    """One poker table and the hand being played on it, if any."""

    MAX_PLAYERS = 10
    HISTORY_LIMIT = 20
    SPECTATOR_BET_LIMIT = 50

    def __init__(
        self,
        table_id: str,
        name: str = "",
        small_blind: int = 5,
        big_blind: int = 10,
        buy_in_min: int = 100,
        buy_in_max: int = 1000,
        max_players: int = 6,
        action_timeout: int = 0,
    ) -> None:
        if not 2 <= max_players <= self.MAX_PLAYERS:
            raise InvalidAction(f"max_players must be between 2 and {self.MAX_PLAYERS}")
        if not 0 < small_blind <= big_blind:
            raise InvalidAction("Blinds must satisfy 0 < small <= big")
        if not 0 < buy_in_min <= buy_in_max:
            raise InvalidBuyIn("Buy-in range must satisfy 0 < min <= max")

        self.table_id = table_id
        self.name = name or f"Table {table_id}"
        self.small_blind = small_blind
        self.big_blind = big_blind
        self.buy_in_min = buy_in_min
        self.buy_in_max = buy_in_max
        self.max_players = max_players
        self.action_timeout = action_timeout  # seconds, 0 = no timer

        self.seats: list[Seat] = []
        self.button: Optional[int] = None
        self.hand: Optional[Hand] = None
        self.hand_count: int = 0
        self.status = TableStatus.WAITING
        self.last_result: Optional[dict[str, Any]] = None
        self.history: list[dict[str, Any]] = []
        self.action_deadline: Optional[float] = None
        self.spectator_bets: list[dict[str, Any]] = []
        self.spectator_bet_count: int = 0
        self.created_at: float = time.time()
        self.last_activity: float = self.created_at

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def pot(self) -> int:
        return self.hand.pot if self.hand else 0

    @property
    def hand_active(self) -> bool:
        return self.hand is not None

    def find_seat(self, agent_id: str) -> Optional[Seat]:
        for seat in self.seats:
            if seat.agent_id == agent_id:
                return seat
        return None

    def _require_seat(self, agent_id: str) -> Seat:
        seat = self.find_seat(agent_id)
        if seat is None:
            raise PlayerNotFound(agent_id, "not seated at this table")
        return seat

    def seat_on_turn(self) -> Optional[Seat]:
        if self.hand is None or self.hand.current_turn is None:
            return None
        return self.seats[self.hand.current_turn]

    def _touch(self) -> None:
        self.last_activity = time.time()

    # ------------------------------------------------------------------
    # Seating
    # ------------------------------------------------------------------

    def check_join(self, agent_id: str, buy_in: int) -> None:
        """Raise if ``agent_id`` cannot sit down with ``buy_in`` right now."""
        if self.hand is not None:
            raise HandInProgress("Wait for the current hand to finish before joining")
        if self.find_seat(agent_id) is not None:
            raise InvalidAction(f"{agent_id} is already seated")
        if len(self.seats) >= self.max_players:
            raise TableFull(f"Table full ({self.max_players} seats)")
        if not self.buy_in_min <= buy_in <= self.buy_in_max:
            raise InvalidBuyIn(
                f"Buy-in must be between {self.buy_in_min} and {self.buy_in_max}"
            )

    def join(self, agent_id: str, name: str, buy_in: int) -> Seat:
        self.check_join(agent_id, buy_in)
        seat = Seat(agent_id, name, buy_in, position=len(self.seats))
        self.seats.append(seat)
        self._touch()
        return seat

    def leave(self, agent_id: str) -> int:
        """Stand up between hands.  Returns the chips taken off the table."""
        if self.hand is not None:
            raise HandInProgress("Wait for the current hand to finish before leaving")
        seat = self._require_seat(agent_id)
        idx = seat.position
        del self.seats[idx]
        for i, s in enumerate(self.seats):
            s.position = i

        # Keep the button on the same player it was on, or just before
        # the vacated chair, so the next hand moves on by one.
        if self.button is not None:
            if not self.seats:
                self.button = None
            elif idx <= self.button:
                self.button = (self.button - 1) % len(self.seats)

        if not self.seats:
            self.status = TableStatus.WAITING
        self._touch()
        return seat.chips

    # ------------------------------------------------------------------
    # Hand lifecycle
    # ------------------------------------------------------------------

    def start_hand(self, deck: Optional[Deck] = None) -> Hand:
        """Advance the button one seat and deal a new hand."""
        if self.hand is not None:
            raise HandInProgress("Current hand is still in progress")
        funded = [s for s in self.seats if s.chips > 0]
        if len(funded) < 2:
            raise InvalidAction("Need at least 2 players with chips to deal")

        saved_button = self.button
        saved_seats = [s.to_dict() for s in self.seats]

        button = 0 if self.button is None else (self.button + 1) % len(self.seats)
        for seat in self.seats:
            seat.reset_for_new_hand()
            seat.in_hand = seat.chips > 0

        hand = Hand(
            seats=self.seats,
            button=button,
            small_blind=self.small_blind,
            big_blind=self.big_blind,
            deck=deck if deck is not None else new_shuffled_deck(),
        )
        try:
            hand.start()
        except PokerError:
            self.button = saved_button
            self.seats[:] = [Seat.from_dict(s) for s in saved_seats]
            raise

        self.button = button
        self.hand = hand
        self.hand_count += 1
        self.status = TableStatus.PLAYING
        self.last_result = None
        self._after_action()
        return hand

    def apply_action(
        self, agent_id: str, action: str | ActionType, amount: int = 0
    ) -> dict[str, Any]:
        seat = self._require_seat(agent_id)
        if self.hand is None:
            raise HandNotActive("No active hand at this table")
        entry = self.hand.apply(seat.position, action, amount)
        self._after_action()
        return entry

    def apply_default_action(self) -> dict[str, Any]:
        """Check if free, else fold, for whoever is on turn."""
        if self.hand is None:
            raise HandNotActive("No active hand at this table")
        entry = self.hand.apply_default()
        self._after_action()
        return entry

    def legal_actions(self, agent_id: str) -> list[dict[str, Any]]:
        seat = self.find_seat(agent_id)
        if seat is None or self.hand is None:
            return []
        return self.hand.legal_actions(seat.position)

    def add_spectator_bet(self, bet: dict[str, Any]) -> None:
        """Record a spectator bet, keeping only the most recent ones."""
        self.spectator_bets.append(bet)
        del self.spectator_bets[: -self.SPECTATOR_BET_LIMIT]
        self.spectator_bet_count += 1

    def _after_action(self) -> None:
        self._touch()
        hand = self.hand
        if hand is not None and hand.stage == Stage.SETTLED:
            self.last_result = hand.result
            self.history.append(hand.result)
            del self.history[: -self.HISTORY_LIMIT]
            self.status = (
                TableStatus.SHOWDOWN if hand.result["showdown"] else TableStatus.WAITING
            )
            for seat in self.seats:
                seat.in_hand = False
            self.hand = None
        if self.hand is not None and self.action_timeout > 0:
            self.action_deadline = time.time() + self.action_timeout
        else:
            self.action_deadline = None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.table_id,
            "name": self.name,
            "players": len(self.seats),
            "max_players": self.max_players,
            "blinds": {"small": self.small_blind, "big": self.big_blind},
            "pot": self.pot,
            "status": self.status.value,
        }

    def view(self, viewer: Optional[str] = None) -> dict[str, Any]:
        """Public table state; hole cards only for ``viewer``'s own seat."""
        on_turn = self.seat_on_turn()
        state: dict[str, Any] = {
            **self.summary(),
            "buy_in": {"min": self.buy_in_min, "max": self.buy_in_max},
            "button": self.button,
            "hand_count": self.hand_count,
            "hand": self.hand.public_dict() if self.hand else None,
            "on_turn": on_turn.agent_id if on_turn else None,
            "seats": [
                s.public_dict(reveal_cards=viewer is not None and s.agent_id == viewer)
                for s in self.seats
            ],
            "last_result": self.last_result,
            "action_timeout": self.action_timeout,
            "action_deadline": self.action_deadline,
            "spectator_bets": self.spectator_bet_count,
            "created_at": self.created_at,
        }
        if viewer is not None:
            state["legal_actions"] = self.legal_actions(viewer)
        return state

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_id": self.table_id,
            "name": self.name,
            "small_blind": self.small_blind,
            "big_blind": self.big_blind,
            "buy_in_min": self.buy_in_min,
            "buy_in_max": self.buy_in_max,
            "max_players": self.max_players,
            "action_timeout": self.action_timeout,
            "seats": [s.to_dict() for s in self.seats],
            "button": self.button,
            "hand": self.hand.to_dict() if self.hand else None,
            "hand_count": self.hand_count,
            "status": self.status.value,
            "last_result": self.last_result,
            "history": self.history,
            "action_deadline": self.action_deadline,
            "spectator_bets": self.spectator_bets,
            "spectator_bet_count": self.spectator_bet_count,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Table:
        table = cls.__new__(cls)
        table.table_id = data["table_id"]
        table.name = data["name"]
        table.small_blind = data["small_blind"]
        table.big_blind = data["big_blind"]
        table.buy_in_min = data["buy_in_min"]
        table.buy_in_max = data["buy_in_max"]
        table.max_players = data["max_players"]
        table.action_timeout = data.get("action_timeout", 0)
        table.seats = [Seat.from_dict(s) for s in data["seats"]]
        table.button = data.get("button")
        hand_data = data.get("hand")
        table.hand = Hand.from_dict(hand_data, table.seats) if hand_data else None
        table.hand_count = data.get("hand_count", 0)
        table.status = TableStatus(data.get("status", TableStatus.WAITING.value))
        table.last_result = data.get("last_result")
        table.history = list(data.get("history", []))
        table.action_deadline = data.get("action_deadline")
        table.spectator_bets = list(data.get("spectator_bets", []))
        table.spectator_bet_count = data.get("spectator_bet_count", len(table.spectator_bets))
        table.created_at = data.get("created_at", time.time())
        table.last_activity = data.get("last_activity", table.created_at)
        return table
