from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


BOARD_SIZE = 3
CELL_COUNT = BOARD_SIZE * BOARD_SIZE


class Seat(StrEnum):
    """Which side a participant holds. Also the mark stored in a board cell."""

    none = "none"
    first = "first"
    second = "second"

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]

    @property
    def opponent(self) -> Seat:
        if self == Seat.first:
            return Seat.second
        if self == Seat.second:
            return Seat.first
        raise ValueError("Seat.none has no opponent")


_SYMBOLS = {Seat.none: "", Seat.first: "X", Seat.second: "O"}


class GamePhase(StrEnum):
    in_progress = "in_progress"
    won = "won"
    drawn = "drawn"


class Move(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Bounds are checked by the rules engine so an off-board move is a game error, not a schema error.
    row: int
    col: int

    @property
    def index(self) -> int:
        return self.row * BOARD_SIZE + self.col

    def in_bounds(self) -> bool:
        return 0 <= self.row < BOARD_SIZE and 0 <= self.col < BOARD_SIZE


def empty_board() -> tuple[Seat, ...]:
    return (Seat.none,) * CELL_COUNT


class SessionRules(BaseModel):
    """Board state of one match. Immutable; the rules engine returns new instances."""

    model_config = ConfigDict(frozen=True)

    board: tuple[Seat, ...] = Field(default_factory=empty_board)
    turn: Seat = Seat.first
    winner: Seat = Seat.none
    phase: GamePhase = GamePhase.in_progress
    move_count: int = Field(default=0, ge=0, le=CELL_COUNT)

    @field_validator("board")
    @classmethod
    def _nine_cells(cls, v: tuple[Seat, ...]) -> tuple[Seat, ...]:
        if len(v) != CELL_COUNT:
            raise ValueError(f"board must have {CELL_COUNT} cells")
        return v

    @field_validator("turn")
    @classmethod
    def _turn_is_a_side(cls, v: Seat) -> Seat:
        if v == Seat.none:
            raise ValueError("turn must be first or second")
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def finished(self) -> bool:
        return self.phase != GamePhase.in_progress

    def cell(self, row: int, col: int) -> Seat:
        return self.board[row * BOARD_SIZE + col]


class GameSession(BaseModel):
    """Value snapshot of one session, safe to read and render without the store lock."""

    model_config = ConfigDict(frozen=True)

    game_id: str
    rules: SessionRules
    first_player_id: str | None = None
    second_player_id: str | None = None
    created_at: datetime
    updated_at: datetime


class JoinResponse(BaseModel):
    seat: Seat
    game: GameSession


class GameListResponse(BaseModel):
    games: list[GameSession]
