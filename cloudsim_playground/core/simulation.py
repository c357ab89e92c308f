"""Simulation context: clock, event queue, entity registry and trace."""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
import math
import time
from loguru import logger

from .errors import InvalidEventSchedule, SimulationError
from .events import EventQueue, EventType, SimulationEvent


EventHandler = Callable[[SimulationEvent], None]


@dataclass(frozen=True)
class TraceRecord:
    """One dispatched event, as recorded in the simulation trace."""
    time: float
    seq: int
    event_type: str
    source: int
    destination: int
    subject: Optional[int] = None


class SimEntity:
    """An actor that owns state and reacts to events addressed to it."""

    def __init__(self, name: str):
        self.name = name
        self.entity_id: int = -1
        self.simulation: Optional["Simulation"] = None
        self._handlers: Dict[EventType, EventHandler] = {}

    def attach(self, simulation: "Simulation", entity_id: int) -> None:
        self.simulation = simulation
        self.entity_id = entity_id
        self._setup_event_handlers()

    def _setup_event_handlers(self) -> None:
        """Register handlers with ``subscribe``. Subclasses override."""

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers[event_type] = handler

    @property
    def clock(self) -> float:
        return self._require_simulation().clock

    def start(self) -> None:
        """Called once when the simulation starts running."""

    def shutdown(self) -> None:
        """Called once after the event queue drains."""

    def process_event(self, event: SimulationEvent) -> None:
        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.warning(f"{self.name} has no handler for {event.event_type.value}; ignored")
            return
        handler(event)

    def send(
        self,
        destination: int,
        event_type: EventType,
        data: Any = None,
        delay: float = 0.0,
    ) -> SimulationEvent:
        """Schedule an event for ``destination`` at ``clock + delay``."""
        simulation = self._require_simulation()
        return simulation.schedule(
            self.entity_id, destination, event_type, simulation.clock + delay, data
        )

    def schedule_self(self, event_type: EventType, fire_at: float, data: Any = None) -> SimulationEvent:
        simulation = self._require_simulation()
        return simulation.schedule(self.entity_id, self.entity_id, event_type, fire_at, data)

    def _require_simulation(self) -> "Simulation":
        if self.simulation is None:
            raise SimulationError(f"Entity {self.name} is not attached to a simulation")
        return self.simulation

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r}, id={self.entity_id})"


class Simulation:
    """Single-threaded discrete-event simulation context.

    Holds all state that would otherwise be global: the clock, the pending
    event queue and the entity registry. Independent instances can run side
    by side in one process.
    """

    def __init__(self, name: str = "simulation", record_trace: bool = True):
        self.name = name
        self.record_trace = record_trace
        self.queue = EventQueue(self._dispatch)
        self.entities: Dict[int, SimEntity] = {}
        self.trace: List[TraceRecord] = []

        self._clock = 0.0
        self._started = False
        self._finished = False
        self._stop_requested = False
        self._observers: List[tuple] = []

        logger.debug(f"Simulation {name} created")

    @property
    def clock(self) -> float:
        """Current simulated time in seconds."""
        return self._clock

    @property
    def running(self) -> bool:
        return self._started and not self._finished

    def add_entity(self, entity: SimEntity) -> int:
        """Register an entity and return its id."""
        if self._started:
            raise SimulationError(f"Cannot add entity {entity.name} to a running simulation")
        entity_id = len(self.entities)
        self.entities[entity_id] = entity
        entity.attach(self, entity_id)
        logger.debug(f"Entity {entity.name} registered with id {entity_id}")
        return entity_id

    def subscribe(self, handler: EventHandler, event_type: Optional[EventType] = None) -> None:
        """Observe dispatched events (all of them when ``event_type`` is None)."""
        self._observers.append((event_type, handler))

    def schedule(
        self,
        source: int,
        destination: int,
        event_type: EventType,
        fire_at: float,
        data: Any = None,
    ) -> SimulationEvent:
        """Insert an event firing at absolute time ``fire_at``."""
        if math.isnan(fire_at) or fire_at < self._clock:
            raise InvalidEventSchedule(
                f"Event {event_type.value} from entity {source} scheduled at {fire_at} "
                f"before current clock {self._clock}",
                entity_id=source,
            )
        if destination not in self.entities:
            raise SimulationError(
                f"Event {event_type.value} addressed to unknown entity {destination}",
                entity_id=source,
            )
        event = SimulationEvent(
            fire_at=fire_at,
            event_type=event_type,
            source=source,
            destination=destination,
            data=data,
            created_at=self._clock,
        )
        return self.queue.push(event)

    def cancel(self, event: SimulationEvent) -> bool:
        """Withdraw a pending event. Returns False if it already fired."""
        return self.queue.remove(event)

    def advance(self) -> Optional[SimulationEvent]:
        """Dispatch the next live event; None once the queue is empty."""
        return self.queue.pop_and_dispatch()

    def stop(self) -> None:
        """Request the run loop to stop after the current event."""
        self._stop_requested = True
        logger.info(f"Stop requested at {self._clock:.2f}s")

    def start(self) -> None:
        if self._started:
            raise SimulationError(f"Simulation {self.name} was already started")
        self._started = True
        for entity in self.entities.values():
            entity.start()

    def run(self, until: Optional[float] = None) -> float:
        """Run until the queue drains, ``until`` is reached or stop is requested.

        When events remain past ``until`` the clock ends at ``until``, so energy
        is accounted up to the horizon. Returns the final simulated clock.
        """
        logger.info(f"Starting simulation {self.name} with {len(self.entities)} entities")
        wall_start = time.time()

        self.start()
        while self.queue and not self._stop_requested:
            if until is not None and self.queue.peek_time() > until:
                self._clock = max(self._clock, until)
                break
            self.advance()

        self.finish()

        elapsed = time.time() - wall_start
        logger.info(
            f"Simulation {self.name} finished at {self._clock:.2f}s simulated "
            f"({elapsed:.3f}s wall clock, {len(self.trace)} events)"
        )
        return self._clock

    def finish(self) -> None:
        """Shut down every entity. Pending events are withdrawn."""
        if self._finished:
            return
        for entity in self.entities.values():
            entity.shutdown()
        self.queue.clear()
        self._finished = True

    def _dispatch(self, event: SimulationEvent) -> None:
        self._clock = event.fire_at
        if self.record_trace:
            self.trace.append(
                TraceRecord(
                    time=event.fire_at,
                    seq=event.seq,
                    event_type=event.event_type.value,
                    source=event.source,
                    destination=event.destination,
                    subject=_subject_id(event.data),
                )
            )
        entity = self.entities[event.destination]
        try:
            entity.process_event(event)
        except Exception as e:
            logger.error(
                f"Error handling {event.event_type.value} at {event.fire_at:.4f}s "
                f"in {entity.name}: {e}"
            )
            raise

        for event_type, handler in self._observers:
            if event_type is None or event_type == event.event_type:
                handler(event)


def _subject_id(data: Any) -> Optional[int]:
    """Best-effort id of the VM, cloudlet or host an event is about."""
    for attr in ("cloudlet_id", "vm_id", "host_id"):
        value = getattr(data, attr, None)
        if isinstance(value, int):
            return value
    if isinstance(data, int):
        return data
    if isinstance(data, tuple) and data:
        return _subject_id(data[0])
    return None
