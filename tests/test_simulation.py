"""Tests for the event queue and simulation context."""

import math

import pytest

from cloudsim_playground.core import (
    EventType,
    InvalidEventSchedule,
    SimEntity,
    Simulation,
    SimulationError,
)

TICK = EventType.UPDATE_PROCESSING


def schedule(simulation, entity, fire_at, data=None):
    return simulation.schedule(entity.entity_id, entity.entity_id, TICK, fire_at, data)


class Spawner(SimEntity):
    """Re-schedules a child event at the same instant when it sees ``"spawn"``."""

    def __init__(self):
        super().__init__("spawner")
        self.seen = []

    def _setup_event_handlers(self) -> None:
        self.subscribe(TICK, self._on_tick)

    def _on_tick(self, event) -> None:
        self.seen.append(event.data)
        if event.data == "spawn":
            self.send(self.entity_id, TICK, "child")
        if event.data == "halt":
            self.simulation.stop()


class TestEventOrdering:
    def test_events_fire_in_time_order(self, simulation, recorder):
        for t in (5.0, 1.0, 3.0):
            schedule(simulation, recorder, t)

        times = []
        while (event := simulation.advance()) is not None:
            times.append(event.fire_at)
            assert simulation.clock == event.fire_at

        assert times == [1.0, 3.0, 5.0]

    def test_ties_broken_by_insertion_order(self, simulation, recorder):
        for label in ("a", "b", "c"):
            schedule(simulation, recorder, 2.0, label)

        simulation.run()

        assert [e.data for e in recorder.received] == ["a", "b", "c"]
        assert [e.seq for e in recorder.received] == sorted(e.seq for e in recorder.received)

    def test_reentrant_scheduling_goes_behind_equal_time_events(self, simulation):
        spawner = Spawner()
        simulation.add_entity(spawner)
        schedule(simulation, spawner, 1.0, "spawn")
        schedule(simulation, spawner, 1.0, "second")

        simulation.run()

        assert spawner.seen == ["spawn", "second", "child"]
        assert simulation.clock == 1.0

    def test_order_uses_exact_fire_times_after_clock_moves(self, simulation, recorder):
        # Relative delays from 13.299999999999999 do not land exactly on these fire times
        schedule(simulation, recorder, 13.299999999999999, "mid")
        schedule(simulation, recorder, 31.499999999999996, "first")
        schedule(simulation, recorder, 31.499999999999994, "earlier")
        simulation.advance()
        schedule(simulation, recorder, 31.499999999999996, "second")

        simulation.run()

        assert [e.data for e in recorder.received] == ["mid", "earlier", "first", "second"]
        times = [e.fire_at for e in recorder.received]
        assert times == sorted(times)
        assert simulation.clock == 31.499999999999996

    def test_withdrawn_event_does_not_strand_live_ones(self, simulation, recorder):
        withdrawn = schedule(simulation, recorder, 1.0, "withdrawn")
        schedule(simulation, recorder, 2.0, "kept")
        simulation.cancel(withdrawn)

        assert simulation.queue.peek_time() == 2.0
        simulation.run()

        assert [e.data for e in recorder.received] == ["kept"]

    def test_advance_on_empty_queue(self, simulation, recorder):
        assert simulation.advance() is None
        assert simulation.clock == 0.0


class TestScheduleValidation:
    def test_scheduling_in_the_past_is_rejected(self, simulation, recorder):
        schedule(simulation, recorder, 5.0)
        simulation.advance()

        with pytest.raises(InvalidEventSchedule) as exc_info:
            schedule(simulation, recorder, 4.0)
        assert exc_info.value.entity_id == recorder.entity_id

    def test_scheduling_at_current_clock_is_allowed(self, simulation, recorder):
        schedule(simulation, recorder, 5.0)
        simulation.advance()
        schedule(simulation, recorder, 5.0, "same")
        assert simulation.advance().data == "same"

    def test_nan_fire_time_is_rejected(self, simulation, recorder):
        with pytest.raises(InvalidEventSchedule):
            schedule(simulation, recorder, math.nan)

    def test_unknown_destination_is_rejected(self, simulation, recorder):
        with pytest.raises(SimulationError):
            simulation.schedule(recorder.entity_id, 99, TICK, 1.0)


class TestCancellation:
    def test_cancelled_event_never_fires(self, simulation, recorder):
        keep = schedule(simulation, recorder, 1.0, "keep")
        drop = schedule(simulation, recorder, 2.0, "drop")

        assert simulation.cancel(drop) is True
        assert simulation.cancel(drop) is False
        simulation.run()

        assert [e.data for e in recorder.received] == ["keep"]
        assert keep.fired and not drop.fired
        assert simulation.clock == 1.0

    def test_cancel_after_fire_returns_false(self, simulation, recorder):
        event = schedule(simulation, recorder, 1.0)
        simulation.advance()
        assert simulation.cancel(event) is False

    def test_until_ignores_withdrawn_events(self, simulation, recorder):
        early = schedule(simulation, recorder, 1.0)
        schedule(simulation, recorder, 20.0, "late")
        simulation.cancel(early)

        simulation.run(until=10.0)

        assert recorder.received == []


class TestRunLoop:
    def test_run_until(self, simulation, recorder):
        schedule(simulation, recorder, 5.0)
        schedule(simulation, recorder, 15.0)

        assert simulation.run(until=10.0) == 10.0
        assert len(recorder.received) == 1

    def test_run_until_past_last_event_keeps_last_event_time(self, simulation, recorder):
        schedule(simulation, recorder, 5.0)
        assert simulation.run(until=10.0) == 5.0

    def test_stop_from_handler(self, simulation):
        spawner = Spawner()
        simulation.add_entity(spawner)
        schedule(simulation, spawner, 1.0, "halt")
        schedule(simulation, spawner, 2.0, "after")

        simulation.run()

        assert spawner.seen == ["halt"]
        assert simulation.clock == 1.0

    def test_simulation_runs_once(self, simulation, recorder):
        simulation.run()
        with pytest.raises(SimulationError):
            simulation.run()

    def test_no_entities_after_start(self, simulation, recorder):
        simulation.run()
        with pytest.raises(SimulationError):
            simulation.add_entity(Spawner())

    def test_trace_and_observers(self, simulation, recorder):
        observed = []
        simulation.subscribe(observed.append)
        simulation.subscribe(lambda e: pytest.fail("wrong type"), EventType.VM_CREATE)
        schedule(simulation, recorder, 1.0, 7)
        schedule(simulation, recorder, 2.0)

        simulation.run()

        assert len(observed) == 2
        assert [r.time for r in simulation.trace] == [1.0, 2.0]
        assert simulation.trace[0].subject == 7
        assert simulation.trace[0].event_type == "update_processing"

    def test_independent_simulations(self):
        first, second = Simulation("first"), Simulation("second")
        a, b = Spawner(), Spawner()
        first.add_entity(a)
        second.add_entity(b)
        schedule(first, a, 3.0, "x")
        schedule(second, b, 8.0, "y")

        first.run()

        assert first.clock == 3.0
        assert second.clock == 0.0
        assert b.seen == []
