"""Tests for Card parsing and the Deck."""

import random

import pytest

from casino.cards import Card, Deck, Rank, Suit, full_deck, new_shuffled_deck, parse_cards
from casino.errors import DeckExhausted


class TestCard:
    def test_repr(self):
        assert repr(Card(Rank.ACE, Suit.HEARTS)) == "Ah"
        assert repr(Card(Rank.TEN, Suit.SPADES)) == "Ts"

    def test_from_str(self):
        c = Card.from_str("Kd")
        assert c.rank == Rank.KING
        assert c.suit == Suit.DIAMONDS

    def test_from_str_accepts_ten_as_digits(self):
        assert Card.from_str("10h") == Card(Rank.TEN, Suit.HEARTS)

    def test_from_str_is_case_insensitive(self):
        assert Card.from_str("qS") == Card(Rank.QUEEN, Suit.SPADES)

    @pytest.mark.parametrize("bad", ["", "A", "1h", "Ax", "Ahh"])
    def test_from_str_rejects_garbage(self, bad):
        with pytest.raises(ValueError):
            Card.from_str(bad)

    def test_parse_cards(self):
        assert parse_cards("Ah Kd, 2c") == [
            Card(Rank.ACE, Suit.HEARTS),
            Card(Rank.KING, Suit.DIAMONDS),
            Card(Rank.TWO, Suit.CLUBS),
        ]

    def test_cards_hash_by_value(self):
        assert len({Card.from_str("Ah"), Card.from_str("Ah")}) == 1


class TestDeck:
    def test_full_deck_is_52_unique(self):
        cards = full_deck()
        assert len(cards) == 52
        assert len(set(cards)) == 52

    def test_draw_from_top(self):
        deck = Deck.from_cards(parse_cards("Ah Kd 2c"))
        assert deck.draw(2) == parse_cards("Ah Kd")
        assert deck.remaining == 1

    def test_draw_past_end_raises(self):
        deck = Deck.from_cards(parse_cards("Ah Kd"))
        with pytest.raises(DeckExhausted):
            deck.draw(3)
        # Failed draw takes nothing
        assert deck.remaining == 2

    def test_shuffle_keeps_all_cards(self):
        deck = new_shuffled_deck()
        drawn = deck.draw(52)
        assert set(drawn) == set(full_deck())
        assert deck.remaining == 0

    def test_seeded_shuffle_is_reproducible(self):
        a = new_shuffled_deck(random.Random(42)).draw(52)
        b = new_shuffled_deck(random.Random(42)).draw(52)
        assert a == b

    def test_seeded_shuffle_differs_from_order(self):
        assert new_shuffled_deck(random.Random(7)).draw(52) != full_deck()

    def test_dict_round_trip(self):
        deck = new_shuffled_deck(random.Random(1))
        deck.draw(5)
        restored = Deck.from_dict(deck.to_dict())
        assert restored.remaining == 47
        assert restored.draw(47) == deck.draw(47)
