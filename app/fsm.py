from __future__ import annotations

from statemachine import State, StateMachine

from app.api.models import GamePhase


class MatchFSM(StateMachine):
    """Phase guard for one match.

    - phases: in progress -> won | drawn
    - both end phases are final, so any further transition is refused.
    The board itself is updated by the rules engine; the FSM only guards phase changes.
    """

    in_progress = State(GamePhase.in_progress.value, value=GamePhase.in_progress.value, initial=True)
    won = State(GamePhase.won.value, value=GamePhase.won.value, final=True)
    drawn = State(GamePhase.drawn.value, value=GamePhase.drawn.value, final=True)

    line_completed = in_progress.to(won)
    board_filled = in_progress.to(drawn)

    def __init__(self, phase: GamePhase = GamePhase.in_progress):
        super().__init__(start_value=phase.value)

    @property
    def phase(self) -> GamePhase:
        return GamePhase(str(self.current_state.value))

    @property
    def is_over(self) -> bool:
        return self.current_state.final
