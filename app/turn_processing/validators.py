from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.api.models import Seat, SessionRules
from app.errors import NotAPlayer, NotYourTurn


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """Inputs available to validators.

    Keep this tight and serializable-ish so we can safely log it.
    """

    game_id: str
    player_id: str
    action: str
    seat: Seat


class TurnValidator(ABC):
    """A small, composable validation unit for an incoming action."""

    @abstractmethod
    def validate(self, *, ctx: ValidationContext, rules: SessionRules) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class SeatedPlayerValidator(TurnValidator):
    """Only seated players may act; spectators are refused."""

    def validate(self, *, ctx: ValidationContext, rules: SessionRules) -> None:
        if ctx.seat == Seat.none:
            raise NotAPlayer()


@dataclass(frozen=True, slots=True)
class ActiveTurnValidator(TurnValidator):
    """While the match is running, only the seat named by `rules.turn` may act.

    Once the match is over this steps aside so the rules engine answers with GameOver
    for everyone.
    """

    def validate(self, *, ctx: ValidationContext, rules: SessionRules) -> None:
        if rules.finished:
            return
        if ctx.seat != rules.turn:
            raise NotYourTurn()


@dataclass(frozen=True, slots=True)
class ValidatorPipeline:
    validators: tuple[TurnValidator, ...]

    def validate(self, *, ctx: ValidationContext, rules: SessionRules) -> None:
        for v in self.validators:
            v.validate(ctx=ctx, rules=rules)


DEFAULT_ACTION_PIPELINES: dict[str, ValidatorPipeline] = {
    "play": ValidatorPipeline(
        validators=(
            SeatedPlayerValidator(),
            ActiveTurnValidator(),
        )
    ),
}


def pipeline_for_action(action: str) -> ValidatorPipeline:
    pipe = DEFAULT_ACTION_PIPELINES.get(action)
    if pipe is None:
        raise ValueError(f"Unknown action: {action}")
    return pipe
