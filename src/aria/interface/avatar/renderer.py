"""Activity-state machine driving the avatar.

Rendering happens in the client (3D model or 2D fallback).  This module
owns the single :class:`ActivityState` the client draws, plus the two
device flags it overlays::

    IDLE → THINKING → SPEAKING → HAPPY → IDLE
    IDLE → THINKING → CONFUSED → IDLE
    IDLE → LISTENING → THINKING | IDLE | CONFUSED

HAPPY and CONFUSED are display holds: entering one schedules a single
delayed return to IDLE on the running event loop, cancelled if another
transition preempts it first.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from aria.models import ActivityState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvatarSnapshot:
    """Everything the avatar renderer consumes for one frame."""

    state: ActivityState
    is_listening: bool = False
    is_speaking: bool = False

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "is_listening": self.is_listening,
            "is_speaking": self.is_speaking,
        }


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

# Valid transitions.
_TRANSITIONS: dict[ActivityState, set[ActivityState]] = {
    ActivityState.IDLE: {ActivityState.LISTENING, ActivityState.THINKING},
    ActivityState.LISTENING: {
        ActivityState.THINKING, ActivityState.IDLE, ActivityState.CONFUSED,
    },
    ActivityState.THINKING: {
        ActivityState.SPEAKING, ActivityState.HAPPY, ActivityState.CONFUSED,
    },
    ActivityState.SPEAKING: {ActivityState.HAPPY},
    # Holds return to IDLE on their own, or are preempted by a new turn.
    ActivityState.HAPPY: {
        ActivityState.IDLE, ActivityState.THINKING, ActivityState.LISTENING,
    },
    ActivityState.CONFUSED: {
        ActivityState.IDLE, ActivityState.THINKING, ActivityState.LISTENING,
    },
}

StateListener = Callable[[ActivityState, ActivityState], None]


class ActivityStateMachine:
    """Holds exactly one :class:`ActivityState` and validates changes.

    Parameters
    ----------
    happy_hold : float
        Seconds HAPPY is shown before returning to IDLE.
    confused_hold : float
        Seconds CONFUSED is shown before returning to IDLE.
    """

    def __init__(self, happy_hold: float = 2.0, confused_hold: float = 3.0) -> None:
        self.happy_hold = happy_hold
        self.confused_hold = confused_hold
        self._state = ActivityState.IDLE
        self._pending_idle: Optional[asyncio.TimerHandle] = None
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ActivityState:
        return self._state

    @property
    def has_pending_idle(self) -> bool:
        return self._pending_idle is not None

    def add_listener(self, listener: StateListener) -> None:
        """Call ``listener(old, new)`` after every state change."""
        self._listeners.append(listener)

    def can_transition(self, target: ActivityState) -> bool:
        return target == self._state or target in _TRANSITIONS[self._state]

    def transition(self, target: ActivityState) -> bool:
        """Attempt a state transition.  Returns True if successful."""
        if target == self._state:
            return True
        if target not in _TRANSITIONS[self._state]:
            logger.debug("Rejected transition %s → %s", self._state.value, target.value)
            return False

        self._cancel_pending_idle()
        old, self._state = self._state, target
        logger.debug("Activity %s → %s", old.value, target.value)
        self._notify(old, target)

        if target == ActivityState.HAPPY:
            self._schedule_idle(self.happy_hold)
        elif target == ActivityState.CONFUSED:
            self._schedule_idle(self.confused_hold)
        return True

    def reset(self) -> None:
        """Drop any pending hold and force IDLE (used at teardown)."""
        self._cancel_pending_idle()
        if self._state == ActivityState.IDLE:
            return
        old, self._state = self._state, ActivityState.IDLE
        logger.debug("Activity %s → idle (reset)", old.value)
        self._notify(old, ActivityState.IDLE)

    def snapshot(self, is_listening: bool = False, is_speaking: bool = False) -> AvatarSnapshot:
        return AvatarSnapshot(
            state=self._state, is_listening=is_listening, is_speaking=is_speaking
        )

    def _notify(self, old: ActivityState, new: ActivityState) -> None:
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("Activity listener failed")

    # ------------------------------------------------------------------
    # Delayed return to IDLE
    # ------------------------------------------------------------------
    def _schedule_idle(self, delay: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (synchronous use): the hold collapses immediately.
            self._state_after_hold()
            return
        self._pending_idle = loop.call_later(delay, self._state_after_hold)

    def _state_after_hold(self) -> None:
        self._pending_idle = None
        self.transition(ActivityState.IDLE)

    def _cancel_pending_idle(self) -> None:
        if self._pending_idle is not None:
            self._pending_idle.cancel()
            self._pending_idle = None
