"""Texas Hold'em hand evaluator.

``rank`` scores 5 to 7 cards by their best five-card subset and returns a
``HandRank`` whose ordering is total: compare two ranks with < > ==.
"""

from __future__ import annotations

from collections import Counter
from enum import IntEnum
from itertools import combinations
from typing import Hashable, Mapping, Sequence, TypeVar

from casino.cards import Card, Rank

K = TypeVar("K", bound=Hashable)


class HandCategory(IntEnum):
    HIGH_CARD = 0
    ONE_PAIR = 1
    TWO_PAIR = 2
    THREE_OF_A_KIND = 3
    STRAIGHT = 4
    FLUSH = 5
    FULL_HOUSE = 6
    FOUR_OF_A_KIND = 7
    STRAIGHT_FLUSH = 8


HAND_NAMES = {
    HandCategory.HIGH_CARD: "High Card",
    HandCategory.ONE_PAIR: "One Pair",
    HandCategory.TWO_PAIR: "Two Pair",
    HandCategory.THREE_OF_A_KIND: "Three of a Kind",
    HandCategory.STRAIGHT: "Straight",
    HandCategory.FLUSH: "Flush",
    HandCategory.FULL_HOUSE: "Full House",
    HandCategory.FOUR_OF_A_KIND: "Four of a Kind",
    HandCategory.STRAIGHT_FLUSH: "Straight Flush",
}

_WHEEL = [Rank.ACE, Rank.FIVE, Rank.FOUR, Rank.THREE, Rank.TWO]


class HandRank:
    """Category plus tiebreak ranks, most significant first.

    ``cards`` holds the five cards that make the hand.
    """

    __slots__ = ("category", "tiebreakers", "cards")

    def __init__(
        self,
        category: HandCategory,
        tiebreakers: tuple[int, ...],
        cards: Sequence[Card],
    ) -> None:
        self.category = category
        self.tiebreakers = tiebreakers
        self.cards = list(cards)

    @property
    def key(self) -> tuple[int, ...]:
        return (int(self.category),) + tuple(int(r) for r in self.tiebreakers)

    def __lt__(self, other: HandRank) -> bool:
        return self.key < other.key

    def __le__(self, other: HandRank) -> bool:
        return self.key <= other.key

    def __gt__(self, other: HandRank) -> bool:
        return self.key > other.key

    def __ge__(self, other: HandRank) -> bool:
        return self.key >= other.key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HandRank):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    @property
    def name(self) -> str:
        if self.category == HandCategory.STRAIGHT_FLUSH and self.tiebreakers[0] == Rank.ACE:
            return "Royal Flush"
        return HAND_NAMES[self.category]

    def to_dict(self) -> dict:
        return {
            "category": self.category.name.lower(),
            "name": self.name,
            "cards": [repr(c) for c in self.cards],
        }

    def __repr__(self) -> str:
        return f"HandRank({self.name}, {self.tiebreakers})"


def _straight_high(ranks_desc: list[int]) -> int | None:
    """High card of a five-distinct-rank straight, or None."""
    if len(ranks_desc) != 5:
        return None
    if ranks_desc[0] - ranks_desc[4] == 4:
        return ranks_desc[0]
    if ranks_desc == _WHEEL:
        return Rank.FIVE
    return None


def _rank_five(cards: Sequence[Card]) -> HandRank:
    # Ranks grouped by multiplicity, biggest group first, then by rank.
    counts = Counter(c.rank for c in cards)
    groups = sorted(counts.items(), key=lambda rc: (rc[1], rc[0]), reverse=True)
    shape = [n for _, n in groups]
    by_group = tuple(r for r, _ in groups)

    flush = len({c.suit for c in cards}) == 1
    high = _straight_high(sorted(counts, reverse=True))

    if high is not None and flush:
        return HandRank(HandCategory.STRAIGHT_FLUSH, (high,), cards)
    if shape[0] == 4:
        return HandRank(HandCategory.FOUR_OF_A_KIND, by_group, cards)
    if shape[:2] == [3, 2]:
        return HandRank(HandCategory.FULL_HOUSE, by_group, cards)
    if flush:
        return HandRank(HandCategory.FLUSH, by_group, cards)
    if high is not None:
        return HandRank(HandCategory.STRAIGHT, (high,), cards)
    if shape[0] == 3:
        return HandRank(HandCategory.THREE_OF_A_KIND, by_group, cards)
    if shape[:2] == [2, 2]:
        return HandRank(HandCategory.TWO_PAIR, by_group, cards)
    if shape[0] == 2:
        return HandRank(HandCategory.ONE_PAIR, by_group, cards)
    return HandRank(HandCategory.HIGH_CARD, by_group, cards)


def rank(cards: Sequence[Card]) -> HandRank:
    """Rank 5 to 7 cards by their best five-card combination."""
    if not 5 <= len(cards) <= 7:
        raise ValueError(f"Need 5 to 7 cards, got {len(cards)}")
    if len(set(cards)) != len(cards):
        raise ValueError("Duplicate cards")
    return max(_rank_five(combo) for combo in combinations(cards, 5))


def best_of(hole_cards: Sequence[Card], community_cards: Sequence[Card]) -> HandRank:
    """Best five-card hand from hole cards plus the board."""
    return rank(list(hole_cards) + list(community_cards))


def determine_winners(hands: Mapping[K, HandRank]) -> list[K]:
    """Keys holding the best rank (several on a tie), in mapping order."""
    if not hands:
        return []
    best = max(hands.values())
    return [key for key, hand_rank in hands.items() if hand_rank == best]
