from __future__ import annotations

from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from app.api.deps import PlayerIdentity, get_player, get_settings, get_store
from app.api.models import GameListResponse, GameSession, JoinResponse, Move
from app.broadcast import CancelToken
from app.errors import GameError, NotFound, StoreBusy
from app.game_store import SessionStore
from app.render import render_board, render_game_page, render_index
from app.settings import Settings
from app.streams import SSE_HEADERS, SSE_MEDIA_TYPE, board_event_stream


router = APIRouter()


def _not_found(e: NotFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/healthcheck")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/", response_class=HTMLResponse)
def index() -> HTMLResponse:
    return HTMLResponse(render_index())


@router.post("/game")
def create_game_route(store: SessionStore = Depends(get_store)) -> RedirectResponse:
    game = store.create()
    return RedirectResponse(url=f"/game/{game.game_id}", status_code=status.HTTP_303_SEE_OTHER)


@router.get("/game", response_model=GameListResponse)
def list_games_route(store: SessionStore = Depends(get_store)) -> GameListResponse:
    return GameListResponse(games=store.list_games())


@router.get("/game/{game_id}", response_class=HTMLResponse)
def game_page_route(
    game_id: str,
    store: SessionStore = Depends(get_store),
    player: PlayerIdentity = Depends(get_player),
) -> Response:
    # Opening the page claims a seat if one is free.
    try:
        seat, game = store.join(game_id, player.player_id)
    except NotFound as e:
        raise _not_found(e) from e
    return player.attach(HTMLResponse(render_game_page(game, seat=seat)))


@router.get("/game/{game_id}/state", response_model=GameSession)
def game_state_route(game_id: str, store: SessionStore = Depends(get_store)) -> GameSession:
    try:
        return store.require(game_id)
    except NotFound as e:
        raise _not_found(e) from e


@router.post("/game/{game_id}/join", response_class=HTMLResponse)
def join_route(
    game_id: str,
    request: Request,
    store: SessionStore = Depends(get_store),
    player: PlayerIdentity = Depends(get_player),
) -> Response:
    try:
        seat, game = store.join(game_id, player.player_id)
    except NotFound as e:
        raise _not_found(e) from e

    if "application/json" in request.headers.get("accept", ""):
        body = JoinResponse(seat=seat, game=game).model_dump_json()
        return player.attach(Response(content=body, media_type="application/json"))
    return player.attach(HTMLResponse(render_board(game)))


@router.post("/game/{game_id}/play", response_class=HTMLResponse)
def play_route(
    game_id: str,
    r: int = Form(...),
    c: int = Form(...),
    store: SessionStore = Depends(get_store),
    player: PlayerIdentity = Depends(get_player),
) -> Response:
    error: str | None = None
    try:
        game = store.play(game_id, player.player_id, Move(row=r, col=c))
    except NotFound as e:
        raise _not_found(e) from e
    except StoreBusy:
        raise
    except GameError as e:
        # Rejected moves re-render the current board with the reason inline.
        error = str(e)
        try:
            game = store.require(game_id)
        except NotFound as nf:
            raise _not_found(nf) from nf
    return player.attach(HTMLResponse(render_board(game, error=error)))


@router.get("/game/{game_id}/events")
async def events_route(
    game_id: str,
    request: Request,
    store: SessionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Response:
    # Plain requests (health checks, tests) only get the stream headers.
    if SSE_MEDIA_TYPE not in request.headers.get("accept", ""):
        return Response(status_code=status.HTTP_200_OK, media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)

    cancel = CancelToken()
    subscriber = await run_in_threadpool(store.subscribe, game_id, cancel)
    return StreamingResponse(
        board_event_stream(
            subscriber=subscriber,
            cancel=cancel,
            heartbeat_interval_s=settings.heartbeat_interval_s,
        ),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )
