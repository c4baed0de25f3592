"""
Game progression state machine for Pong Throw Tracker.

Stages and their legal successors live in a static adjacency table. Every
stage may also drop back to INACTIVE (reset).
"""

import logging
from typing import Optional, List, Dict, FrozenSet, Callable, Union, Protocol
from enum import Enum

logger = logging.getLogger(__name__)


class GameStage(Enum):
    """Game progression stages."""
    INACTIVE = "INACTIVE"
    SETUP_CAMERA = "SETUP_CAMERA"
    DETECTING_TARGET = "DETECTING_TARGET"
    DETECTED_TARGET = "DETECTED_TARGET"
    DETECTING_PLAYER = "DETECTING_PLAYER"
    DETECTED_PLAYER = "DETECTED_PLAYER"
    TRACKING_THROWS = "TRACKING_THROWS"
    THROW_COMPLETED = "THROW_COMPLETED"
    SHOW_SUMMARY = "SHOW_SUMMARY"


_FORWARD_TRANSITIONS: Dict[GameStage, FrozenSet[GameStage]] = {
    GameStage.INACTIVE: frozenset({GameStage.SETUP_CAMERA}),
    GameStage.SETUP_CAMERA: frozenset({GameStage.DETECTING_TARGET}),
    GameStage.DETECTING_TARGET: frozenset({GameStage.DETECTED_TARGET}),
    GameStage.DETECTED_TARGET: frozenset({GameStage.DETECTING_PLAYER}),
    GameStage.DETECTING_PLAYER: frozenset({GameStage.DETECTED_PLAYER}),
    GameStage.DETECTED_PLAYER: frozenset({GameStage.TRACKING_THROWS}),
    GameStage.TRACKING_THROWS: frozenset({GameStage.THROW_COMPLETED, GameStage.SHOW_SUMMARY}),
    GameStage.THROW_COMPLETED: frozenset({GameStage.SHOW_SUMMARY, GameStage.TRACKING_THROWS}),
    GameStage.SHOW_SUMMARY: frozenset({GameStage.DETECTING_PLAYER}),
}

# Reset escape hatch: INACTIVE is reachable from every stage, itself included
VALID_TRANSITIONS: Dict[GameStage, FrozenSet[GameStage]] = {
    stage: successors | {GameStage.INACTIVE}
    for stage, successors in _FORWARD_TRANSITIONS.items()
}


def valid_successors(stage: GameStage) -> FrozenSet[GameStage]:
    return VALID_TRANSITIONS[stage]


class StageObserver(Protocol):
    """Anything that reacts to stage entry."""

    def on_stage_entered(self, stage: GameStage, previous: Optional[GameStage]) -> None:
        ...


ObserverLike = Union[StageObserver, Callable[[GameStage, Optional[GameStage]], None]]


class GameStateMachine:
    """
    Holds the single current stage.

    enter() ignores transitions outside the adjacency table and returns
    False; a committed transition notifies observers synchronously in
    registration order before enter() returns True.
    """

    def __init__(self, initial: GameStage = GameStage.INACTIVE):
        self._stage = initial
        self._observers: List[ObserverLike] = []

    @property
    def stage(self) -> GameStage:
        return self._stage

    def can_enter(self, target: GameStage) -> bool:
        return target in VALID_TRANSITIONS[self._stage]

    def enter(self, target: GameStage) -> bool:
        if not self.can_enter(target):
            logger.debug(f"Ignoring invalid transition {self._stage.value} -> {target.value}")
            return False

        previous = self._stage
        self._stage = target
        logger.info(f"{previous.value} -> {target.value}")

        for observer in list(self._observers):
            self._notify(observer, target, previous)
        return True

    def _notify(self, observer: ObserverLike, stage: GameStage, previous: GameStage):
        handler = getattr(observer, "on_stage_entered", observer)
        try:
            handler(stage, previous)
        except Exception as e:
            logger.error(f"Stage observer {observer!r} failed on {stage.value}: {e}")

    def add_observer(self, observer: ObserverLike):
        self._observers.append(observer)

    def remove_observer(self, observer: ObserverLike) -> bool:
        try:
            self._observers.remove(observer)
        except ValueError:
            return False
        return True
