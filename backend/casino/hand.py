"""Hand lifecycle for one deal of No-Limit Texas Hold'em.

A ``Hand`` owns the deck, the board, the pots and the betting round.
Turn order is an explicit queue of seat positions still owed an action:
the head of the queue is on turn, a raise rebuilds the queue from the
seats behind the raiser, and an empty queue closes the betting round.

Every ``apply`` validates before it mutates, so a rejected action leaves
the hand exactly as it was.
"""

from __future__ import annotations

import secrets
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from casino.cards import Card, Deck
from casino.errors import (
    HandNotActive,
    InsufficientChips,
    InvalidAction,
    NotYourTurn,
)
from casino.evaluator import HandRank, best_of, determine_winners


class Stage(str, Enum):
    PREFLOP = "preflop"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"
    SHOWDOWN = "showdown"
    SETTLED = "settled"


_NEXT_STREET = {
    Stage.PREFLOP: (Stage.FLOP, 3),
    Stage.FLOP: (Stage.TURN, 1),
    Stage.TURN: (Stage.RIVER, 1),
}


class ActionType(str, Enum):
    FOLD = "fold"
    CHECK = "check"
    CALL = "call"
    BET = "bet"
    RAISE = "raise"
    ALL_IN = "all_in"

    @classmethod
    def parse(cls, raw: str | ActionType) -> ActionType:
        if isinstance(raw, ActionType):
            return raw
        key = str(raw).strip().lower().replace("-", "_").replace(" ", "_")
        if key == "allin":
            key = "all_in"
        try:
            return cls(key)
        except ValueError:
            raise InvalidAction(f"Unknown action: {raw}") from None


class Seat:
    """A player's chair at a table.

    The stack persists across hands; everything else resets at the deal.
    ``position`` is the seat's index in the table's seat list.
    """

    def __init__(self, agent_id: str, name: str, chips: int, position: int) -> None:
        self.agent_id = agent_id
        self.name = name
        self.chips = chips
        self.position = position
        self.hole_cards: list[Card] = []
        self.bet: int = 0  # this betting round
        self.committed: int = 0  # this hand
        self.folded: bool = False
        self.all_in: bool = False
        self.in_hand: bool = False
        self.last_action: str = ""

    @property
    def contending(self) -> bool:
        """Dealt in and not folded: can still win chips."""
        return self.in_hand and not self.folded

    @property
    def can_act(self) -> bool:
        return self.contending and not self.all_in

    def reset_for_new_hand(self) -> None:
        self.hole_cards = []
        self.bet = 0
        self.committed = 0
        self.folded = False
        self.all_in = False
        self.in_hand = False
        self.last_action = ""

    def public_dict(self, reveal_cards: bool = False) -> dict[str, Any]:
        d: dict[str, Any] = {
            "agent_id": self.agent_id,
            "name": self.name,
            "chips": self.chips,
            "position": self.position,
            "bet": self.bet,
            "committed": self.committed,
            "folded": self.folded,
            "all_in": self.all_in,
            "in_hand": self.in_hand,
            "last_action": self.last_action,
        }
        if reveal_cards and self.hole_cards:
            d["hole_cards"] = [repr(c) for c in self.hole_cards]
        return d

    def to_dict(self) -> dict[str, Any]:
        return self.public_dict(reveal_cards=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Seat:
        seat = cls(data["agent_id"], data["name"], data["chips"], data["position"])
        seat.hole_cards = [Card.from_str(c) for c in data.get("hole_cards", [])]
        seat.bet = data["bet"]
        seat.committed = data["committed"]
        seat.folded = data["folded"]
        seat.all_in = data["all_in"]
        seat.in_hand = data["in_hand"]
        seat.last_action = data.get("last_action", "")
        return seat


@dataclass
class Pot:
    amount: int
    eligible: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"amount": self.amount, "eligible": list(self.eligible)}


def new_hand_id() -> str:
    return secrets.token_hex(4)


class Hand:
    """State machine for a single hand at a table."""

    def __init__(
        self,
        seats: list[Seat],
        button: int,
        small_blind: int,
        big_blind: int,
        deck: Deck,
        hand_id: Optional[str] = None,
    ) -> None:
        self.hand_id = hand_id or new_hand_id()
        self.seats = seats
        self.button = button
        self.small_blind = small_blind
        self.big_blind = big_blind
        self.deck = deck
        self.stage = Stage.PREFLOP
        self.community: list[Card] = []
        self.actions: list[dict[str, Any]] = []
        self.pending: list[int] = []
        self.bet_to_call: int = 0
        self.min_raise: int = big_blind
        self.sb_position: Optional[int] = None
        self.bb_position: Optional[int] = None
        self.result: Optional[dict[str, Any]] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def pot(self) -> int:
        return sum(s.committed for s in self.seats)

    @property
    def is_over(self) -> bool:
        return self.stage in (Stage.SHOWDOWN, Stage.SETTLED)

    @property
    def current_turn(self) -> Optional[int]:
        if self.is_over or not self.pending:
            return None
        return self.pending[0]

    def _clockwise_from(self, position: int) -> list[int]:
        """Every position after ``position``, wrapping, ending with it."""
        n = len(self.seats)
        return [(position + offset) % n for offset in range(1, n + 1)]

    def _actors_after(self, position: int, exclude: Optional[int] = None) -> list[int]:
        return [
            p
            for p in self._clockwise_from(position)
            if p != exclude and self.seats[p].can_act
        ]

    def _contenders(self) -> list[Seat]:
        return [s for s in self.seats if s.contending]

    # ------------------------------------------------------------------
    # Deal
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Deal hole cards, post blinds and queue the preflop action.

        The caller marks participating seats ``in_hand`` beforehand.
        """
        participants = [p for p in self._clockwise_from(self.button) if self.seats[p].in_hand]
        if len(participants) < 2:
            raise InvalidAction("Need at least 2 players with chips to deal")

        for seat in self.seats:
            if seat.in_hand:
                seat.hole_cards = self.deck.draw(2)

        self.sb_position, self.bb_position = participants[0], participants[1]
        self._post_blind(self.sb_position, self.small_blind, "SB")
        self._post_blind(self.bb_position, self.big_blind, "BB")
        self.bet_to_call = self.big_blind
        self.min_raise = self.big_blind

        # Big blind closes the queue, so it keeps its option.
        self.pending = self._actors_after(self.bb_position)
        if self._nothing_to_decide():
            self.pending = []
            self._finish_round()

    def _nothing_to_decide(self) -> bool:
        """Only one seat can still bet and it has already matched the price."""
        if not self.pending:
            return True
        actors = [s for s in self.seats if s.can_act]
        if len(actors) > 1:
            return False
        return actors[0].bet >= self.bet_to_call

    def _post_blind(self, position: int, amount: int, label: str) -> None:
        seat = self.seats[position]
        posted = self._commit(seat, min(amount, seat.chips))
        seat.last_action = f"{label} {posted}"
        self._log(seat, label.lower(), posted)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def legal_actions(self, position: int) -> list[dict[str, Any]]:
        if self.current_turn != position:
            return []
        seat = self.seats[position]
        to_call = self.bet_to_call - seat.bet
        actions: list[dict[str, Any]] = [{"action": ActionType.FOLD.value}]
        if to_call == 0:
            actions.append({"action": ActionType.CHECK.value})
        elif seat.chips > to_call:
            actions.append({"action": ActionType.CALL.value, "amount": to_call})
        max_to = seat.bet + seat.chips
        min_to = self.bet_to_call + self.min_raise
        if max_to >= min_to:
            kind = ActionType.BET if self.bet_to_call == 0 else ActionType.RAISE
            actions.append({"action": kind.value, "min_amount": min_to, "max_amount": max_to})
        actions.append({"action": ActionType.ALL_IN.value, "amount": seat.chips})
        return actions

    def apply(self, position: int, action: str | ActionType, amount: int = 0) -> dict[str, Any]:
        """Apply one action for the seat at ``position``.

        Returns the action-log entry.  Raises before touching any state.
        """
        if self.is_over:
            raise HandNotActive("Hand is already settled")
        kind = ActionType.parse(action)
        if self.current_turn != position:
            raise NotYourTurn(f"Not your turn: waiting on seat {self.current_turn}")
        if amount < 0:
            raise InvalidAction("Amount cannot be negative")

        seat = self.seats[position]
        to_call = self.bet_to_call - seat.bet

        if kind == ActionType.FOLD:
            seat.folded = True
            seat.last_action = "Fold"
            entry = self._log(seat, kind.value, 0)
            self.pending.pop(0)
        elif kind == ActionType.CHECK:
            if to_call > 0:
                raise InvalidAction(f"Cannot check, {to_call} to call")
            seat.last_action = "Check"
            entry = self._log(seat, kind.value, 0)
            self.pending.pop(0)
        elif kind == ActionType.CALL:
            if seat.chips <= to_call:
                entry = self._all_in(seat)
            else:
                self._commit(seat, to_call)
                seat.last_action = f"Call {to_call}"
                entry = self._log(seat, kind.value, to_call)
                self.pending.pop(0)
        elif kind == ActionType.ALL_IN:
            entry = self._all_in(seat)
        else:
            entry = self._raise(seat, kind, amount)

        self._advance()
        return entry

    def apply_default(self) -> dict[str, Any]:
        """Timeout action for the seat on turn: check if free, else fold."""
        position = self.current_turn
        if position is None:
            raise HandNotActive("No seat is on turn")
        seat = self.seats[position]
        kind = ActionType.CHECK if seat.bet >= self.bet_to_call else ActionType.FOLD
        entry = self.apply(position, kind)
        entry["auto"] = True
        return entry

    def _raise(self, seat: Seat, kind: ActionType, raise_to: int) -> dict[str, Any]:
        if raise_to <= self.bet_to_call:
            raise InvalidAction(
                f"{kind.value.capitalize()} must exceed the current bet of {self.bet_to_call}"
            )
        needed = raise_to - seat.bet
        if needed > seat.chips:
            raise InsufficientChips(
                f"{kind.value.capitalize()} to {raise_to} needs {needed}, stack is {seat.chips}"
            )
        if needed == seat.chips:
            return self._all_in(seat)
        increment = raise_to - self.bet_to_call
        if increment < self.min_raise:
            raise InvalidAction(
                f"Minimum {kind.value} is to {self.bet_to_call + self.min_raise}"
            )

        self._commit(seat, needed)
        self.min_raise = increment
        self.bet_to_call = raise_to
        seat.last_action = f"{kind.value.capitalize()} {raise_to}"
        entry = self._log(seat, kind.value, needed)
        self._reopen(seat.position)
        return entry

    def _all_in(self, seat: Seat) -> dict[str, Any]:
        if seat.chips <= 0:
            raise InvalidAction("No chips left to commit")
        amount = seat.chips
        self._commit(seat, amount)
        seat.last_action = f"All-In {seat.committed}"
        entry = self._log(seat, ActionType.ALL_IN.value, amount)
        if seat.bet > self.bet_to_call:
            increment = seat.bet - self.bet_to_call
            # A short all-in raises the price without resetting the minimum.
            if increment >= self.min_raise:
                self.min_raise = increment
            self.bet_to_call = seat.bet
            self._reopen(seat.position)
        else:
            self.pending.pop(0)
        return entry

    def _reopen(self, raiser: int) -> None:
        self.pending = self._actors_after(raiser, exclude=raiser)

    def _commit(self, seat: Seat, amount: int) -> int:
        seat.chips -= amount
        seat.bet += amount
        seat.committed += amount
        if seat.chips == 0:
            seat.all_in = True
        return amount

    def _log(self, seat: Seat, action: str, amount: int) -> dict[str, Any]:
        entry = {
            "agent_id": seat.agent_id,
            "position": seat.position,
            "action": action,
            "amount": amount,
            "stage": self.stage.value,
        }
        self.actions.append(entry)
        return entry

    # ------------------------------------------------------------------
    # Rounds and streets
    # ------------------------------------------------------------------

    def _advance(self) -> None:
        contenders = self._contenders()
        if len(contenders) == 1:
            self._award_uncontested(contenders[0])
        elif self._nothing_to_decide():
            self.pending = []
            self._finish_round()

    def _finish_round(self) -> None:
        """Close the betting round and deal on until someone must act."""
        while True:
            for seat in self.seats:
                seat.bet = 0
            self.bet_to_call = 0
            self.min_raise = self.big_blind

            if self.stage == Stage.RIVER:
                self._showdown()
                return

            self.stage, count = _NEXT_STREET[self.stage]
            self.deck.draw(1)  # burn
            self.community.extend(self.deck.draw(count))

            actors = self._actors_after(self.button)
            if len(actors) >= 2:
                self.pending = actors
                for p in actors:
                    self.seats[p].last_action = ""
                return
            # At most one seat can still bet: run the board out.
            self.pending = []

    # ------------------------------------------------------------------
    # Pots and settlement
    # ------------------------------------------------------------------

    def pots(self) -> list[Pot]:
        """Main pot first, then side pots by all-in tier.

        Chips a folded seat put in above the highest contending tier are
        added to the last pot.
        """
        contributions = [s.committed for s in self.seats if s.committed > 0]
        levels = sorted({s.committed for s in self._contenders() if s.committed > 0})

        pots: list[Pot] = []
        prev = 0
        for level in levels:
            amount = sum(min(c, level) - min(c, prev) for c in contributions)
            eligible = [
                s.position for s in self._contenders() if s.committed >= level
            ]
            if amount > 0:
                pots.append(Pot(amount, eligible))
            prev = level

        leftover = sum(max(0, c - prev) for c in contributions)
        if leftover:
            if pots:
                pots[-1].amount += leftover
            else:
                pots.append(Pot(leftover, [s.position for s in self._contenders()]))
        return pots

    def _odd_chip_order(self, positions: list[int]) -> list[int]:
        """Sort positions clockwise starting left of the button."""
        n = len(self.seats)
        return sorted(positions, key=lambda p: (p - self.button - 1) % n)

    def _award_uncontested(self, winner: Seat) -> None:
        amount = self.pot
        winner.chips += amount
        self._close(
            payouts={winner.position: amount},
            pots=[{"amount": amount, "eligible": [winner.position], "winners": [winner.position]}],
            ranks={},
            showdown=False,
        )

    def _showdown(self) -> None:
        self.stage = Stage.SHOWDOWN
        ranks: dict[int, HandRank] = {
            s.position: best_of(s.hole_cards, self.community) for s in self._contenders()
        }

        payouts: dict[int, int] = defaultdict(int)
        pot_results: list[dict[str, Any]] = []
        for pot in self.pots():
            contenders = {p: ranks[p] for p in pot.eligible}
            winners = self._odd_chip_order(determine_winners(contenders))
            share, remainder = divmod(pot.amount, len(winners))
            for i, p in enumerate(winners):
                payouts[p] += share + (1 if i < remainder else 0)
            pot_results.append({**pot.to_dict(), "winners": winners})

        for p, amount in payouts.items():
            self.seats[p].chips += amount

        self._close(dict(payouts), pot_results, ranks, showdown=True)

    def _close(
        self,
        payouts: dict[int, int],
        pots: list[dict[str, Any]],
        ranks: dict[int, HandRank],
        showdown: bool,
    ) -> None:
        total = sum(payouts.values())
        winners = []
        for p, amount in payouts.items():
            seat = self.seats[p]
            winners.append(
                {
                    "agent_id": seat.agent_id,
                    "name": seat.name,
                    "amount": amount,
                    "hand": ranks[p].name if p in ranks else "Last player standing",
                }
            )
        self.result = {
            "hand_id": self.hand_id,
            "pot": total,
            "showdown": showdown,
            "community_cards": [repr(c) for c in self.community],
            "winners": winners,
            "pots": [
                {
                    **pot,
                    "eligible": [self.seats[p].agent_id for p in pot["eligible"]],
                    "winners": [self.seats[p].agent_id for p in pot["winners"]],
                }
                for pot in pots
            ],
            "revealed": {
                self.seats[p].agent_id: {
                    "hole_cards": [repr(c) for c in self.seats[p].hole_cards],
                    **hand_rank.to_dict(),
                }
                for p, hand_rank in ranks.items()
            },
            "contributions": {
                s.agent_id: s.committed for s in self.seats if s.in_hand
            },
            "payouts": {self.seats[p].agent_id: amount for p, amount in payouts.items()},
        }
        for seat in self.seats:
            seat.bet = 0
            seat.committed = 0
        self.pending = []
        self.stage = Stage.SETTLED

    # ------------------------------------------------------------------
    # Views and serialization
    # ------------------------------------------------------------------

    def public_dict(self) -> dict[str, Any]:
        return {
            "hand_id": self.hand_id,
            "stage": self.stage.value,
            "community_cards": [repr(c) for c in self.community],
            "pot": self.pot,
            "pots": [p.to_dict() for p in self.pots()],
            "bet_to_call": self.bet_to_call,
            "min_raise": self.min_raise,
            "button": self.button,
            "small_blind_position": self.sb_position,
            "big_blind_position": self.bb_position,
            "current_turn": self.current_turn,
            "actions": list(self.actions),
        }

    def to_dict(self) -> dict[str, Any]:
        """Everything but the seats, which the table serializes."""
        return {
            "hand_id": self.hand_id,
            "button": self.button,
            "small_blind": self.small_blind,
            "big_blind": self.big_blind,
            "deck": self.deck.to_dict(),
            "stage": self.stage.value,
            "community": [repr(c) for c in self.community],
            "actions": self.actions,
            "pending": self.pending,
            "bet_to_call": self.bet_to_call,
            "min_raise": self.min_raise,
            "sb_position": self.sb_position,
            "bb_position": self.bb_position,
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], seats: list[Seat]) -> Hand:
        hand = cls(
            seats=seats,
            button=data["button"],
            small_blind=data["small_blind"],
            big_blind=data["big_blind"],
            deck=Deck.from_dict(data["deck"]),
            hand_id=data["hand_id"],
        )
        hand.stage = Stage(data["stage"])
        hand.community = [Card.from_str(c) for c in data["community"]]
        hand.actions = list(data["actions"])
        hand.pending = list(data["pending"])
        hand.bet_to_call = data["bet_to_call"]
        hand.min_raise = data["min_raise"]
        hand.sb_position = data.get("sb_position")
        hand.bb_position = data.get("bb_position")
        hand.result = data.get("result")
        return hand
