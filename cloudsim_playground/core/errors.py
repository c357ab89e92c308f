"""Simulation error taxonomy."""

from typing import Optional


class SimulationError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, entity_id: Optional[int] = None):
        super().__init__(message)
        self.entity_id = entity_id


class InvalidSpecification(SimulationError, ValueError):
    """A construction input is malformed (negative capacity, duplicate id, ...)."""


class InvalidEventSchedule(SimulationError):
    """An event was scheduled strictly before the current clock."""


class InvalidStateTransition(SimulationError):
    """A cloudlet was moved to a status its current status cannot reach."""


class InsufficientCapacity(SimulationError):
    """A host cannot reserve the resources a VM requests."""


class NoSuitableHost(SimulationError):
    """No host in the datacenter can place a VM."""


class SchedulingViolation(SimulationError):
    """A cloudlet cannot be executed on the VM it is bound to."""


class PowerModelLookupFailure(SimulationError):
    """A power model could not produce a value for a utilization."""
