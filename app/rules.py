"""Tic-tac-toe rules.

Pure functions over `SessionRules`: no locks, no I/O, no clock. The engine does
not know who is asking; it only tracks whose mark goes down next. Seat and turn
ownership are checked by the session store before it gets here.
"""
from __future__ import annotations

from app.api.models import CELL_COUNT, GamePhase, Move, Seat, SessionRules
from app.errors import GameOver, Occupied, OutOfBounds
from app.fsm import MatchFSM


WINNING_LINES: tuple[tuple[int, int, int], ...] = (
    # rows
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    # cols
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    # diags
    (0, 4, 8),
    (2, 4, 6),
)


def new_rules() -> SessionRules:
    return SessionRules()


def winning_line(board: tuple[Seat, ...], seat: Seat) -> tuple[int, int, int] | None:
    if seat == Seat.none:
        return None
    for line in WINNING_LINES:
        if all(board[i] == seat for i in line):
            return line
    return None


def apply(rules: SessionRules, move: Move) -> SessionRules:
    """Place the active turn's mark at `move` and return the next state.

    Raises GameOver, OutOfBounds or Occupied (checked in that order); `rules` is never modified.
    """

    fsm = MatchFSM(rules.phase)
    if fsm.is_over:
        raise GameOver()
    if not move.in_bounds():
        raise OutOfBounds()
    if rules.board[move.index] != Seat.none:
        raise Occupied()

    mover = rules.turn
    board = list(rules.board)
    board[move.index] = mover
    next_board = tuple(board)
    move_count = rules.move_count + 1

    if winning_line(next_board, mover) is not None:
        fsm.line_completed()
        return rules.model_copy(
            update={"board": next_board, "move_count": move_count, "winner": mover, "phase": fsm.phase}
        )

    if move_count == CELL_COUNT:
        fsm.board_filled()
        return rules.model_copy(
            update={"board": next_board, "move_count": move_count, "winner": Seat.none, "phase": fsm.phase}
        )

    return rules.model_copy(update={"board": next_board, "move_count": move_count, "turn": mover.opponent})


def status_text(rules: SessionRules) -> str:
    if rules.phase == GamePhase.won:
        return f"{rules.winner.symbol} wins"
    if rules.phase == GamePhase.drawn:
        return "Draw"
    return f"{rules.turn.symbol} to move"
