"""Error kinds raised by the poker core and the room service.

Every error is recoverable at the request boundary: the operation that
raised it has not mutated any table or player state.
"""

from __future__ import annotations


class PokerError(ValueError):
    """Base class.  ``status_code`` is the HTTP status the API answers with."""

    status_code = 400

    @property
    def kind(self) -> str:
        return type(self).__name__


class TableNotFound(PokerError):
    status_code = 404

    def __init__(self, table_id: str) -> None:
        super().__init__(f"Table not found: {table_id}")
        self.table_id = table_id


class PlayerNotFound(PokerError):
    status_code = 404

    def __init__(self, agent_id: str, where: str = "") -> None:
        msg = f"Player not found: {agent_id}"
        if where:
            msg += f" ({where})"
        super().__init__(msg)
        self.agent_id = agent_id


class Unauthorized(PokerError):
    """Missing or wrong agent token."""

    status_code = 401


class TableFull(PokerError):
    status_code = 400


class InvalidBuyIn(PokerError):
    status_code = 400


class NotYourTurn(PokerError):
    status_code = 409


class InvalidAction(PokerError):
    status_code = 400


class InsufficientChips(PokerError):
    status_code = 400


class HandNotActive(PokerError):
    status_code = 409


class HandInProgress(PokerError):
    """Seat changes and new deals wait for the hand boundary."""

    status_code = 409


class DeckExhausted(PokerError):
    status_code = 500


class CommentaryUnavailable(PokerError):
    status_code = 503
