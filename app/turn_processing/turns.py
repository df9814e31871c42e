from __future__ import annotations

from typing import Protocol

from app.api.models import Seat


class SeatHolder(Protocol):
    first_player_id: str | None
    second_player_id: str | None


def seat_for(*, seats: SeatHolder, player_id: str | None) -> Seat:
    if not player_id:
        return Seat.none
    if seats.first_player_id == player_id:
        return Seat.first
    if seats.second_player_id == player_id:
        return Seat.second
    return Seat.none


def claim_seat(*, seats: SeatHolder, player_id: str | None) -> Seat:
    """Give `player_id` a seat, mutating `seats` in place.

    Policy:
    - a returning player keeps the seat they already hold;
    - a new player takes the first open seat (first, then second);
    - anyone else spectates (Seat.none). Spectating is not an error.
    """

    current = seat_for(seats=seats, player_id=player_id)
    if current != Seat.none or not player_id:
        return current
    if seats.first_player_id is None:
        seats.first_player_id = player_id
        return Seat.first
    if seats.second_player_id is None:
        seats.second_player_id = player_id
        return Seat.second
    return Seat.none
