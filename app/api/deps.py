from __future__ import annotations

from dataclasses import dataclass
from uuid import uuid4

from fastapi import Request, Response

from app.game_store import SessionStore
from app.settings import Settings


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@dataclass(frozen=True, slots=True)
class PlayerIdentity:
    player_id: str
    is_new: bool
    cookie_name: str

    def attach(self, response: Response) -> Response:
        """Set the identity cookie on the response we actually return."""

        if self.is_new:
            response.set_cookie(self.cookie_name, self.player_id, path="/", httponly=True, samesite="lax")
        return response


def get_player(request: Request) -> PlayerIdentity:
    cookie_name = get_settings(request).player_cookie
    existing = request.cookies.get(cookie_name)
    if existing:
        return PlayerIdentity(player_id=existing, is_new=False, cookie_name=cookie_name)
    return PlayerIdentity(player_id=uuid4().hex, is_new=True, cookie_name=cookie_name)
