from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from app.api.models import GameSession
from app.game_store import SessionStore
from app.render import FunctionRenderer
from app.settings import Settings


def moves_renderer(game: GameSession) -> bytes:
    """Tiny payload for tests: the move count of the snapshot."""

    return f"moves={game.rules.move_count}".encode()


@pytest.fixture()
def store() -> Generator[SessionStore, None, None]:
    s = SessionStore(renderer=FunctionRenderer(moves_renderer), lock_timeout_s=1.0)
    yield s
    s.close()


@pytest.fixture()
def seated_game(store: SessionStore) -> str:
    """A fresh game where alice holds the first seat and bob the second."""

    game = store.create()
    store.join(game.game_id, "alice")
    store.join(game.game_id, "bob")
    return game.game_id


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    """TestClient over an app with its own store, so tests never share sessions."""

    from app.main import create_app

    app = create_app(settings=Settings(heartbeat_interval_s=0.05, lock_timeout_s=1.0))
    with TestClient(app) as c:
        yield c
