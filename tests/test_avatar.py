"""Tests for the avatar activity-state machine."""

import asyncio

from aria.interface.avatar.renderer import ActivityStateMachine, AvatarSnapshot
from aria.models import ActivityState as S


def _recording_machine(**kwargs):
    machine = ActivityStateMachine(**kwargs)
    seen = []
    machine.add_listener(lambda old, new: seen.append((old, new)))
    return machine, seen


class TestTransitions:

    def test_initial_state(self):
        assert ActivityStateMachine().state == S.IDLE

    def test_invalid_transition_rejected(self):
        machine, seen = _recording_machine()
        assert not machine.transition(S.SPEAKING)
        assert not machine.transition(S.HAPPY)
        assert machine.state == S.IDLE
        assert seen == []

    def test_same_state_is_noop(self):
        machine, seen = _recording_machine()
        assert machine.transition(S.IDLE)
        assert seen == []

    def test_speaking_only_ends_happy(self):
        machine = ActivityStateMachine()
        machine.transition(S.THINKING)
        machine.transition(S.SPEAKING)
        assert not machine.can_transition(S.CONFUSED)
        assert not machine.can_transition(S.IDLE)
        assert machine.can_transition(S.HAPPY)

    def test_listening_exits(self):
        for target in (S.THINKING, S.IDLE, S.CONFUSED):
            machine = ActivityStateMachine()
            machine.transition(S.LISTENING)
            assert machine.can_transition(target)
        machine = ActivityStateMachine()
        machine.transition(S.LISTENING)
        assert not machine.can_transition(S.SPEAKING)

    def test_hold_collapses_without_loop(self):
        machine, seen = _recording_machine()
        machine.transition(S.THINKING)
        machine.transition(S.HAPPY)
        assert machine.state == S.IDLE
        assert seen == [(S.IDLE, S.THINKING), (S.THINKING, S.HAPPY), (S.HAPPY, S.IDLE)]

    def test_listener_errors_do_not_block(self):
        machine = ActivityStateMachine()
        machine.add_listener(lambda old, new: 1 / 0)
        assert machine.transition(S.THINKING)
        assert machine.state == S.THINKING


class TestHolds:

    def test_happy_returns_to_idle_after_hold(self):
        async def scenario():
            machine, seen = _recording_machine(happy_hold=0.02)
            machine.transition(S.THINKING)
            machine.transition(S.HAPPY)
            assert machine.state == S.HAPPY
            assert machine.has_pending_idle
            await asyncio.sleep(0.1)
            return machine, seen

        machine, seen = asyncio.run(scenario())
        assert machine.state == S.IDLE
        assert not machine.has_pending_idle
        assert seen[-1] == (S.HAPPY, S.IDLE)

    def test_confused_uses_its_own_hold(self):
        async def scenario():
            machine = ActivityStateMachine(happy_hold=0.01, confused_hold=0.3)
            machine.transition(S.THINKING)
            machine.transition(S.CONFUSED)
            await asyncio.sleep(0.05)
            return machine.state

        assert asyncio.run(scenario()) == S.CONFUSED

    def test_preemption_cancels_hold(self):
        async def scenario():
            machine, seen = _recording_machine(happy_hold=0.02)
            machine.transition(S.THINKING)
            machine.transition(S.HAPPY)
            machine.transition(S.THINKING)  # new query arrives during the hold
            assert not machine.has_pending_idle
            await asyncio.sleep(0.1)
            return machine, seen

        machine, seen = asyncio.run(scenario())
        assert machine.state == S.THINKING
        assert (S.HAPPY, S.IDLE) not in seen

    def test_listening_preempts_confused(self):
        async def scenario():
            machine = ActivityStateMachine(confused_hold=0.02)
            machine.transition(S.THINKING)
            machine.transition(S.CONFUSED)
            assert machine.transition(S.LISTENING)
            await asyncio.sleep(0.1)
            return machine.state

        assert asyncio.run(scenario()) == S.LISTENING

    def test_reset_drops_pending_hold(self):
        async def scenario():
            machine = ActivityStateMachine(happy_hold=0.02)
            machine.transition(S.THINKING)
            machine.transition(S.HAPPY)
            machine.reset()
            assert not machine.has_pending_idle
            await asyncio.sleep(0.05)
            return machine.state

        assert asyncio.run(scenario()) == S.IDLE

    def test_reset_notifies_listeners(self):
        machine, seen = _recording_machine()
        machine.transition(S.THINKING)
        machine.reset()
        assert machine.state == S.IDLE
        assert seen[-1] == (S.THINKING, S.IDLE)

        machine.reset()
        assert len(seen) == 2


def test_snapshot():
    machine = ActivityStateMachine()
    machine.transition(S.LISTENING)
    snap = machine.snapshot(is_listening=True)
    assert snap == AvatarSnapshot(state=S.LISTENING, is_listening=True, is_speaking=False)
    assert snap.to_dict() == {"state": "listening", "is_listening": True, "is_speaking": False}
