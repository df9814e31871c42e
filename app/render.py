from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from html import escape
from typing import Protocol

from app.api.models import BOARD_SIZE, GameSession, Seat
from app.rules import status_text, winning_line


HTMX_SRC = "https://unpkg.com/htmx.org@1.9.12"
HTMX_SSE_SRC = "https://unpkg.com/htmx.org@1.9.12/dist/ext/sse.js"


class Renderer(Protocol):
    """Turns a session snapshot into the payload pushed to subscribers."""

    def render(self, game: GameSession) -> bytes: ...


class NullRenderer:
    """Headless default: subscribers are only told that something changed."""

    def render(self, game: GameSession) -> bytes:
        return b""


class JsonRenderer:
    def render(self, game: GameSession) -> bytes:
        return game.model_dump_json().encode("utf-8")


class BoardHtmlRenderer:
    def render(self, game: GameSession) -> bytes:
        return render_board(game).encode("utf-8")


@dataclass(frozen=True, slots=True)
class FunctionRenderer:
    fn: Callable[[GameSession], bytes]

    def render(self, game: GameSession) -> bytes:
        return self.fn(game)


_RENDERERS: dict[str, Callable[[], Renderer]] = {
    "none": NullRenderer,
    "json": JsonRenderer,
    "html": BoardHtmlRenderer,
}


def renderer_from_name(name: str) -> Renderer:
    factory = _RENDERERS.get(name.strip().lower())
    if factory is None:
        allowed = ",".join(sorted(_RENDERERS))
        raise ValueError(f"Unknown renderer '{name}' (allowed: {allowed})")
    return factory()


def _page(content: str) -> str:
    return (
        "<!doctype html><html><head>\n"
        '<meta charset="utf-8"/>\n'
        f'<script src="{HTMX_SRC}"></script>\n'
        f'<script src="{HTMX_SSE_SRC}"></script>\n'
        f"</head><body>{content}</body></html>"
    )


def render_index() -> str:
    return _page('<h1>TicTacToe</h1><form action="/game" method="post"><button>Create</button></form>')


def render_game_page(game: GameSession, *, seat: Seat = Seat.none) -> str:
    gid = escape(game.game_id)
    role = f"You play {seat.symbol}" if seat != Seat.none else "You are watching"
    return _page(
        f'<p class="seat">{role}</p>\n'
        f'<div hx-ext="sse" sse-connect="/game/{gid}/events">\n'
        f'  <div sse-swap="board" hx-swap="outerHTML" hx-target="#board">{render_board(game)}</div>\n'
        "</div>"
    )


def render_board(game: GameSession, *, error: str | None = None) -> str:
    """Board fragment: optional alert, status line and the 3x3 grid of move forms."""

    gid = escape(game.game_id)
    rules = game.rules
    line = winning_line(rules.board, rules.winner) or ()

    parts = ['<div id="board">']
    if error:
        parts.append(f'  <div class="alert">{escape(error)}</div>')
    parts.append(f'  <div class="status">{escape(status_text(rules))}</div>')
    for r in range(BOARD_SIZE):
        parts.append('  <div class="row">')
        for c in range(BOARD_SIZE):
            idx = r * BOARD_SIZE + c
            css = ' class="win"' if idx in line else ""
            parts.append(
                f'    <form hx-post="/game/{gid}/play" hx-target="#board" hx-swap="outerHTML" method="post">'
                f'<input type="hidden" name="r" value="{r}">'
                f'<input type="hidden" name="c" value="{c}">'
                f"<button type=\"submit\"{css}>{rules.board[idx].symbol}</button></form>"
            )
        parts.append("  </div>")
    parts.append("</div>")
    return "\n".join(parts)
