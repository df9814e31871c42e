from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta

import pytest

from app.api.models import Move, Seat
from app.broadcast import CancelToken
from app.errors import GameOver, NotAPlayer, NotFound, NotYourTurn, Occupied, OutOfBounds
from app.game_store import SessionStore
from app.render import FunctionRenderer


def test_create_and_get(store: SessionStore) -> None:
    game = store.create()
    assert game.game_id
    assert game.rules.turn == Seat.first
    assert game.created_at == game.updated_at
    assert game.first_player_id is None and game.second_player_id is None

    got = store.get(game.game_id)
    assert got is not None
    assert got.game_id == game.game_id
    assert store.require(game.game_id) == got


def test_unknown_game(store: SessionStore) -> None:
    assert store.get("missing") is None
    with pytest.raises(NotFound):
        store.require("missing")
    with pytest.raises(NotFound):
        store.join("missing", "alice")
    with pytest.raises(NotFound):
        store.play("missing", "alice", Move(row=0, col=0))


def test_ids_are_unique_even_if_factory_collides() -> None:
    ids = iter(["dup", "dup", "fresh"])
    s = SessionStore(id_factory=lambda: next(ids))
    assert s.create().game_id == "dup"
    assert s.create().game_id == "fresh"


def test_join_seats_and_rejoin(store: SessionStore) -> None:
    gid = store.create().game_id

    assert store.join(gid, "p1")[0] == Seat.first
    assert store.join(gid, "p2")[0] == Seat.second
    assert store.join(gid, "p3")[0] == Seat.none
    assert store.join(gid, "p4")[0] == Seat.none
    # Returning identities keep their seat after spectators arrived.
    assert store.join(gid, "p1")[0] == Seat.first
    seat, game = store.join(gid, "p2")
    assert seat == Seat.second
    assert (game.first_player_id, game.second_player_id) == ("p1", "p2")
    assert store.seat_of(gid, "p3") == Seat.none


def test_join_bumps_updated_at() -> None:
    t0 = datetime(2025, 1, 1, tzinfo=UTC)
    ticks = iter([t0, t0 + timedelta(seconds=1), t0 + timedelta(seconds=2)])
    s = SessionStore(clock=lambda: next(ticks))

    gid = s.create().game_id
    _, g1 = s.join(gid, "alice")
    _, g2 = s.join(gid, "alice")
    assert g1.updated_at == t0 + timedelta(seconds=1)
    assert g2.updated_at == t0 + timedelta(seconds=2)
    assert g2.created_at == t0


def test_updated_at_never_goes_backwards() -> None:
    t0 = datetime(2025, 1, 1, tzinfo=UTC)
    ticks = iter([t0, t0 - timedelta(hours=1)])
    s = SessionStore(clock=lambda: next(ticks))

    gid = s.create().game_id
    _, game = s.join(gid, "alice")
    assert game.updated_at == t0


def test_scenario_alice_and_bob(store: SessionStore) -> None:
    gid = store.create().game_id
    assert store.join(gid, "alice")[0] == Seat.first
    assert store.join(gid, "bob")[0] == Seat.second

    game = store.play(gid, "alice", Move(row=0, col=0))
    assert game.rules.turn == Seat.second
    assert game.rules.move_count == 1

    with pytest.raises(Occupied):
        store.play(gid, "bob", Move(row=0, col=0))

    game = store.play(gid, "bob", Move(row=1, col=1))
    assert game.rules.turn == Seat.first
    assert game.rules.move_count == 2


def test_play_enforces_turn_and_blocks_spectators(store: SessionStore, seated_game: str) -> None:
    store.join(seated_game, "carol")

    with pytest.raises(NotYourTurn):
        store.play(seated_game, "bob", Move(row=0, col=0))
    with pytest.raises(NotAPlayer):
        store.play(seated_game, "carol", Move(row=0, col=0))
    with pytest.raises(NotAPlayer):
        store.play(seated_game, "stranger", Move(row=0, col=0))

    game = store.play(seated_game, "alice", Move(row=0, col=0))
    assert game.rules.cell(0, 0) == Seat.first

    with pytest.raises(NotYourTurn):
        store.play(seated_game, "alice", Move(row=1, col=1))
    assert store.require(seated_game).rules.move_count == 1


def test_rejected_play_leaves_state_untouched(store: SessionStore, seated_game: str) -> None:
    store.play(seated_game, "alice", Move(row=0, col=0))
    before = store.require(seated_game)

    for player, move, err in [
        ("bob", Move(row=3, col=0), OutOfBounds),
        ("bob", Move(row=0, col=0), Occupied),
        ("alice", Move(row=2, col=2), NotYourTurn),
    ]:
        with pytest.raises(err):
            store.play(seated_game, player, move)

    assert store.require(seated_game) == before


def test_top_row_win_then_game_over(store: SessionStore, seated_game: str) -> None:
    for player, (r, c) in [("alice", (0, 0)), ("bob", (1, 0)), ("alice", (0, 1)), ("bob", (1, 1)), ("alice", (0, 2))]:
        game = store.play(seated_game, player, Move(row=r, col=c))

    assert game.rules.finished
    assert game.rules.winner == Seat.first

    # Both seats are refused with GameOver, and nothing changes.
    with pytest.raises(GameOver):
        store.play(seated_game, "alice", Move(row=2, col=2))
    with pytest.raises(GameOver):
        store.play(seated_game, "bob", Move(row=2, col=2))
    assert store.require(seated_game) == game


def test_snapshots_are_isolated(store: SessionStore, seated_game: str) -> None:
    before = store.require(seated_game)
    store.play(seated_game, "alice", Move(row=0, col=0))
    assert before.rules.move_count == 0
    assert before.rules.cell(0, 0) == Seat.none


def test_list_games_newest_first() -> None:
    t0 = datetime(2025, 1, 1, tzinfo=UTC)
    ticks = iter([t0, t0 + timedelta(seconds=5)])
    s = SessionStore(clock=lambda: next(ticks))
    older = s.create()
    newer = s.create()
    assert [g.game_id for g in s.list_games()] == [newer.game_id, older.game_id]


def test_subscribe_creates_unknown_game(store: SessionStore) -> None:
    sub = store.subscribe("late-id", CancelToken())
    game = store.require("late-id")
    assert game.rules.move_count == 0
    assert store.registry.count("late-id") == 1
    sub.unsubscribe()


def test_play_broadcasts_rendered_snapshot(store: SessionStore, seated_game: str) -> None:
    sub = store.subscribe(seated_game, CancelToken())
    store.play(seated_game, "alice", Move(row=0, col=0))
    assert sub.get(timeout=1) == b"moves=1"


def test_rejected_play_does_not_broadcast(store: SessionStore, seated_game: str) -> None:
    sub = store.subscribe(seated_game, CancelToken())
    with pytest.raises(NotYourTurn):
        store.play(seated_game, "bob", Move(row=0, col=0))
    with pytest.raises(TimeoutError):
        sub.get(timeout=0.05)


def test_renderer_runs_outside_the_lock(seated_game: str, store: SessionStore) -> None:
    seen: list[bool] = []

    def lock_checking_renderer(game):  # type: ignore[no-untyped-def]
        # Another thread must be able to take the store lock while we render.
        t = threading.Thread(target=lambda: seen.append(store.get(game.game_id) is not None))
        t.start()
        t.join(timeout=2)
        return b"ok"

    store.set_renderer(FunctionRenderer(lock_checking_renderer))
    sub = store.subscribe(seated_game, CancelToken())
    store.play(seated_game, "alice", Move(row=0, col=0))

    assert seen == [True]
    assert sub.get(timeout=1) == b"ok"


def test_renderer_failure_keeps_the_move(store: SessionStore, seated_game: str) -> None:
    def boom(game):  # type: ignore[no-untyped-def]
        raise RuntimeError("template exploded")

    store.set_renderer(FunctionRenderer(boom))
    sub = store.subscribe(seated_game, CancelToken())

    game = store.play(seated_game, "alice", Move(row=0, col=0))
    assert game.rules.move_count == 1
    assert store.require(seated_game).rules.move_count == 1
    with pytest.raises(TimeoutError):
        sub.get(timeout=0.05)


def test_set_renderer_none_restores_null_payload(store: SessionStore, seated_game: str) -> None:
    store.set_renderer(None)
    sub = store.subscribe(seated_game, CancelToken())
    store.play(seated_game, "alice", Move(row=0, col=0))
    assert sub.get(timeout=1) == b""


def test_concurrent_plays_are_serialized(store: SessionStore, seated_game: str) -> None:
    """Both seats race over the same cells from two threads until the game ends; moves strictly alternate."""

    cells = [Move(row=r, col=c) for r in range(3) for c in range(3)]
    barrier = threading.Barrier(2)
    deadline = time.monotonic() + 5
    errors: list[Exception] = []
    accepted: dict[str, int] = {"alice": 0, "bob": 0}

    def worker(player: str) -> None:
        barrier.wait()
        while time.monotonic() < deadline:
            if store.require(seated_game).rules.finished:
                return
            for move in cells:
                try:
                    store.play(seated_game, player, move)
                except (NotYourTurn, Occupied, GameOver):
                    continue
                except Exception as e:  # pragma: no cover - surfaced by the assert below
                    errors.append(e)
                    return
                accepted[player] += 1
            # Hand the GIL over so the other seat gets its turn.
            time.sleep(0.001)

    threads = [threading.Thread(target=worker, args=(p,)) for p in ("alice", "bob")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    rules = store.require(seated_game).rules
    assert rules.finished
    assert accepted["alice"] + accepted["bob"] == rules.move_count
    firsts = sum(1 for c in rules.board if c == Seat.first)
    seconds = sum(1 for c in rules.board if c == Seat.second)
    assert (firsts, seconds) == (accepted["alice"], accepted["bob"])
    assert firsts - seconds in (0, 1)


def test_close_ends_every_subscriber(store: SessionStore, seated_game: str) -> None:
    subs = [store.subscribe(seated_game, CancelToken()) for _ in range(3)]
    store.close()
    assert all(s.closed for s in subs)
    assert store.registry.count(seated_game) == 0
