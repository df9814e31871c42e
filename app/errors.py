"""Game errors.

Every rejection a caller can hit while creating, joining or playing a session.
All of them are expected conditions: routes turn them into an inline message or
a status code, nothing here is process-fatal.

They subclass ValueError so callers that only care about "bad request" can keep
catching that.
"""
from __future__ import annotations


class GameError(ValueError):
    """Base class for all session/game errors."""

    message = "Invalid move"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


# ============ Rules violations ============


class RulesViolation(GameError):
    """Rejected by the board rules; the board is left untouched."""


class OutOfBounds(RulesViolation):
    message = "Out of bounds"


class Occupied(RulesViolation):
    message = "Cell is occupied"


class GameOver(RulesViolation):
    message = "Game is over"


# ============ Session errors ============


class NotFound(GameError):
    message = "Game not found"

    def __init__(self, game_id: str) -> None:
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")


class NotAPlayer(GameError):
    message = "You are a spectator"


class NotYourTurn(GameError):
    message = "Not your turn"


class StoreBusy(GameError):
    """The store lock could not be acquired within the configured wait."""

    message = "Store is busy"
