"""Simulation events, event types and the pending event queue."""

from enum import Enum
from itertools import count
import heapq
import math
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
import simpy
from loguru import logger


class EventType(Enum):
    """Types of simulation events."""

    # VM lifecycle
    VM_CREATE = "vm_create"
    VM_CREATE_ACK = "vm_create_ack"
    VM_DESTROY = "vm_destroy"

    # Cloudlet lifecycle
    CLOUDLET_SUBMIT = "cloudlet_submit"
    CLOUDLET_RETURN = "cloudlet_return"
    CLOUDLET_CANCEL = "cloudlet_cancel"
    CLOUDLET_PAUSE = "cloudlet_pause"
    CLOUDLET_RESUME = "cloudlet_resume"

    # Datacenter self-events
    UPDATE_PROCESSING = "update_processing"
    HOST_FAILURE = "host_failure"


@dataclass(eq=False)
class SimulationEvent:
    """An event addressed from one entity to another, firing at ``fire_at``."""

    fire_at: float
    event_type: EventType
    source: int
    destination: int
    data: Any = None
    seq: int = -1
    created_at: float = 0.0
    cancelled: bool = False
    fired: bool = False

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)

    def __lt__(self, other: "SimulationEvent") -> bool:
        """Order by fire time, then by insertion sequence."""
        if self.fire_at != other.fire_at:
            return self.fire_at < other.fire_at
        return self.seq < other.seq

    def __repr__(self) -> str:
        return (
            f"SimulationEvent({self.event_type.value} #{self.seq} at {self.fire_at:.4f}s, "
            f"{self.source}->{self.destination})"
        )


class EventQueue:
    """Pending events, stepped by a SimPy environment.

    Every scheduled event adds one SimPy timeout. Each time a timeout fires
    the queue dispatches the head of its own heap keyed by exact
    ``(fire_at, seq)``, so rounding in SimPy's relative delays never reorders
    events and ties fire in insertion order. Withdrawn events stay on the heap
    but are skipped when popped.
    """

    def __init__(self, dispatch: Callable[[SimulationEvent], None]) -> None:
        self.env = simpy.Environment()
        self._dispatch = dispatch
        self._sequence = count()
        self._heap: List[SimulationEvent] = []
        self._pending: Dict[int, SimulationEvent] = {}
        self._last_fired: Optional[SimulationEvent] = None

    def __len__(self) -> int:
        return len(self._pending)

    def __bool__(self) -> bool:
        return bool(self._pending)

    def push(self, event: SimulationEvent) -> SimulationEvent:
        """Insert an event. Its fire time must not precede the last dispatched one."""
        event.seq = next(self._sequence)
        heapq.heappush(self._heap, event)
        self._pending[event.seq] = event
        timeout = self.env.timeout(max(0.0, event.fire_at - self.env.now))
        timeout.callbacks.append(self._fire)
        logger.debug(f"Event scheduled: {event!r}")
        return event

    def remove(self, event: SimulationEvent) -> bool:
        """Withdraw a pending event. Returns False if it already fired or was withdrawn."""
        if not event.pending:
            return False
        event.cancelled = True
        self._pending.pop(event.seq, None)
        logger.debug(f"Event withdrawn: {event!r}")
        return True

    def peek_time(self) -> float:
        """Fire time of the earliest live event, or inf when none is pending."""
        self._drop_withdrawn()
        return self._heap[0].fire_at if self._heap else math.inf

    def pop_and_dispatch(self) -> Optional[SimulationEvent]:
        """Fire the next live event, skipping withdrawn ones."""
        self._last_fired = None
        while self._pending and self._last_fired is None:
            self.env.step()
        return self._last_fired

    def _drop_withdrawn(self) -> None:
        while self._heap and self._heap[0].cancelled:
            heapq.heappop(self._heap)

    def _fire(self, timeout: simpy.Timeout) -> None:
        # Live events never outnumber unfired timeouts, so no live event is stranded
        self._drop_withdrawn()
        if not self._heap:
            return
        event = heapq.heappop(self._heap)
        self._pending.pop(event.seq, None)
        event.fired = True
        self._last_fired = event
        self._dispatch(event)

    def clear(self) -> None:
        """Withdraw every pending event."""
        for event in list(self._pending.values()):
            self.remove(event)
        self._drop_withdrawn()
        logger.debug("Event queue cleared")
