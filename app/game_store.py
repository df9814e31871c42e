from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from app import rules as rules_engine
from app.api.models import GameSession, Move, Seat, SessionRules
from app.broadcast import BroadcastRegistry, CancelToken, Subscriber
from app.errors import NotFound
from app.lock import DEFAULT_LOCK_TIMEOUT_S, new_store_lock, store_lock
from app.render import NullRenderer, Renderer
from app.turn_processing.turns import claim_seat, seat_for
from app.turn_processing.validators import ValidationContext, pipeline_for_action


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _new_game_id() -> str:
    return str(uuid4())


@dataclass(slots=True)
class _SessionRecord:
    """Mutable per-session state. Only touched while the store lock is held."""

    game_id: str
    rules: SessionRules
    created_at: datetime
    updated_at: datetime
    first_player_id: str | None = None
    second_player_id: str | None = None

    def touch(self, now: datetime) -> None:
        # Never step backwards, even if the wall clock does.
        if now > self.updated_at:
            self.updated_at = now

    def snapshot(self) -> GameSession:
        return GameSession(
            game_id=self.game_id,
            rules=self.rules,
            first_player_id=self.first_player_id,
            second_player_id=self.second_player_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SessionStore:
    """Owns every session of the process and the subscribers listening to them.

    All reads and mutations go through one re-entrant lock, shared with the
    broadcast registry so subscriber registration is ordered with moves.
    Rendering and fan-out happen after the lock is released.
    """

    def __init__(
        self,
        *,
        renderer: Renderer | None = None,
        registry: BroadcastRegistry | None = None,
        lock_timeout_s: float | None = DEFAULT_LOCK_TIMEOUT_S,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._lock = new_store_lock()
        if registry is None:
            registry = BroadcastRegistry(lock=self._lock, lock_timeout_s=lock_timeout_s)
        self._registry = registry
        self._games: dict[str, _SessionRecord] = {}
        self._renderer: Renderer = renderer if renderer is not None else NullRenderer()
        self._lock_timeout_s = lock_timeout_s
        self._clock = clock or _now
        self._id_factory = id_factory or _new_game_id

    @property
    def registry(self) -> BroadcastRegistry:
        return self._registry

    def _locked(self):
        return store_lock(self._lock, timeout_s=self._lock_timeout_s)

    def set_renderer(self, renderer: Renderer | None) -> None:
        with self._locked():
            self._renderer = renderer if renderer is not None else NullRenderer()

    def _new_record_locked(self, game_id: str) -> _SessionRecord:
        now = self._clock()
        record = _SessionRecord(game_id=game_id, rules=rules_engine.new_rules(), created_at=now, updated_at=now)
        self._games[game_id] = record
        logger.info("Created game %s", game_id)
        return record

    def _require_locked(self, game_id: str) -> _SessionRecord:
        record = self._games.get(game_id)
        if record is None:
            raise NotFound(game_id)
        return record

    def create(self) -> GameSession:
        with self._locked():
            game_id = self._id_factory()
            while game_id in self._games:
                logger.warning("Game id collision detected, regenerating: %s", game_id)
                game_id = self._id_factory()
            return self._new_record_locked(game_id).snapshot()

    def get(self, game_id: str) -> GameSession | None:
        with self._locked():
            record = self._games.get(game_id)
            return record.snapshot() if record is not None else None

    def require(self, game_id: str) -> GameSession:
        with self._locked():
            return self._require_locked(game_id).snapshot()

    def list_games(self) -> list[GameSession]:
        with self._locked():
            out = [record.snapshot() for record in self._games.values()]
        out.sort(key=lambda g: g.created_at, reverse=True)
        return out

    def join(self, game_id: str, player_id: str) -> tuple[Seat, GameSession]:
        with self._locked():
            record = self._require_locked(game_id)
            seat = claim_seat(seats=record, player_id=player_id)
            record.touch(self._clock())
            logger.debug("Player %s joined game %s as %s", player_id, game_id, seat.value)
            return seat, record.snapshot()

    def seat_of(self, game_id: str, player_id: str) -> Seat:
        with self._locked():
            return seat_for(seats=self._require_locked(game_id), player_id=player_id)

    def play(self, game_id: str, player_id: str, move: Move) -> GameSession:
        """Apply `move` for `player_id`, then fan the new state out to subscribers.

        Raises NotFound, NotAPlayer, NotYourTurn or a rules violation; a rejected
        move leaves the session untouched. Fan-out is best-effort and never
        reported back here.
        """

        with self._locked():
            record = self._require_locked(game_id)
            ctx = ValidationContext(
                game_id=game_id,
                player_id=player_id,
                action="play",
                seat=seat_for(seats=record, player_id=player_id),
            )
            pipeline_for_action(ctx.action).validate(ctx=ctx, rules=record.rules)
            record.rules = rules_engine.apply(record.rules, move)
            record.touch(self._clock())

            snapshot = record.snapshot()
            subscribers = self._registry.subscribers(game_id)
            renderer = self._renderer

        logger.debug(
            "Game %s: %s played (%d,%d), move %d", game_id, ctx.seat.value, move.row, move.col, snapshot.rules.move_count
        )
        self._fan_out(snapshot, renderer=renderer, subscribers=subscribers)
        return snapshot

    def _fan_out(self, snapshot: GameSession, *, renderer: Renderer, subscribers: tuple[Subscriber, ...]) -> None:
        if not subscribers:
            return
        try:
            payload = renderer.render(snapshot)
        except Exception:
            logger.exception("Rendering game %s failed; skipping broadcast", snapshot.game_id)
            return
        self._registry.publish(
            snapshot.game_id,
            payload,
            seq=snapshot.rules.move_count,
            subscribers=subscribers,
        )

    def subscribe(self, game_id: str, cancel: CancelToken | None = None) -> Subscriber:
        """Register a live subscriber; an unknown game_id is created on the spot."""

        with self._locked():
            if game_id not in self._games:
                self._new_record_locked(game_id)
            return self._registry.subscribe(game_id, cancel)

    def close(self) -> None:
        self._registry.close()
