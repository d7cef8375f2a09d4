"""Card and Deck representation."""

from __future__ import annotations

import random
from enum import Enum, IntEnum
from typing import Iterable, Optional

from casino.errors import DeckExhausted


class Suit(str, Enum):
    HEARTS = "h"
    DIAMONDS = "d"
    CLUBS = "c"
    SPADES = "s"


class Rank(IntEnum):
    TWO = 2
    THREE = 3
    FOUR = 4
    FIVE = 5
    SIX = 6
    SEVEN = 7
    EIGHT = 8
    NINE = 9
    TEN = 10
    JACK = 11
    QUEEN = 12
    KING = 13
    ACE = 14


RANK_SYMBOLS = {rank: symbol for rank, symbol in zip(Rank, "23456789TJQKA")}
_SYMBOL_RANKS = {symbol: rank for rank, symbol in RANK_SYMBOLS.items()}


class Card:
    __slots__ = ("rank", "suit")

    def __init__(self, rank: Rank, suit: Suit) -> None:
        self.rank = rank
        self.suit = suit

    def __repr__(self) -> str:
        return f"{RANK_SYMBOLS[self.rank]}{self.suit.value}"

    def __str__(self) -> str:
        return repr(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Card):
            return NotImplemented
        return self.rank == other.rank and self.suit == other.suit

    def __hash__(self) -> int:
        return hash((self.rank, self.suit))

    @classmethod
    def from_str(cls, s: str) -> Card:
        """Parse 'Ah', 'Ts', '2c'; '10h' is accepted for tens."""
        s = s.strip()
        if s[:2] == "10":
            s = "T" + s[2:]
        if len(s) != 2:
            raise ValueError(f"Bad card: {s!r}")
        try:
            return cls(_SYMBOL_RANKS[s[0].upper()], Suit(s[1].lower()))
        except (KeyError, ValueError):
            raise ValueError(f"Bad card: {s!r}") from None


def parse_cards(text: str) -> list[Card]:
    """'Ah Kd 2c' -> [Ah, Kd, 2c]."""
    return [Card.from_str(token) for token in text.replace(",", " ").split()]


def full_deck() -> list[Card]:
    return [Card(rank, suit) for suit in Suit for rank in Rank]


class Deck:
    """52 cards drawn from the top (index 0)."""

    def __init__(self, cards: Optional[Iterable[Card]] = None) -> None:
        self._cards: list[Card] = list(cards) if cards is not None else full_deck()

    @classmethod
    def from_cards(cls, cards: Iterable[Card]) -> Deck:
        """A deck that deals exactly ``cards`` in order, no shuffle."""
        return cls(cards)

    def shuffle(self, rng: Optional[random.Random] = None) -> None:
        # Random.shuffle is an in-place Fisher-Yates pass.
        (rng or random.SystemRandom()).shuffle(self._cards)

    def draw(self, n: int = 1) -> list[Card]:
        if n > len(self._cards):
            raise DeckExhausted(
                f"Cannot draw {n} card(s), {len(self._cards)} remaining"
            )
        drawn = self._cards[:n]
        del self._cards[:n]
        return drawn

    @property
    def remaining(self) -> int:
        return len(self._cards)

    def to_dict(self) -> dict:
        return {"cards": [repr(c) for c in self._cards]}

    @classmethod
    def from_dict(cls, data: dict) -> Deck:
        return cls(Card.from_str(c) for c in data["cards"])


def new_shuffled_deck(rng: Optional[random.Random] = None) -> Deck:
    """A uniformly shuffled 52-card deck.

    Uses ``random.SystemRandom`` unless a seeded ``rng`` is given.
    """
    deck = Deck()
    deck.shuffle(rng)
    return deck
