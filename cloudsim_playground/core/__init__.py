"""Core simulation components."""

from .errors import (
    SimulationError,
    InvalidSpecification,
    InvalidEventSchedule,
    InvalidStateTransition,
    InsufficientCapacity,
    NoSuitableHost,
    SchedulingViolation,
    PowerModelLookupFailure,
)
from .events import SimulationEvent, EventType, EventQueue
from .simulation import Simulation, SimEntity, TraceRecord
from .resources import ProcessingElement, Host, HostState, VirtualMachine, VmState
from .power import PowerModel, LinearPowerModel, SpecPowerModel, EnergyMeter
from .workload import (
    Cloudlet,
    CloudletStatus,
    UtilizationModel,
    FullUtilization,
    NullUtilization,
    StochasticUtilization,
    TraceUtilization,
)
from .datacenter import Datacenter, DatacenterCharacteristics, UtilizationMetric
from .broker import DatacenterBroker

__all__ = [
    "SimulationError",
    "InvalidSpecification",
    "InvalidEventSchedule",
    "InvalidStateTransition",
    "InsufficientCapacity",
    "NoSuitableHost",
    "SchedulingViolation",
    "PowerModelLookupFailure",
    "SimulationEvent",
    "EventType",
    "EventQueue",
    "Simulation",
    "SimEntity",
    "TraceRecord",
    "ProcessingElement",
    "Host",
    "HostState",
    "VirtualMachine",
    "VmState",
    "PowerModel",
    "LinearPowerModel",
    "SpecPowerModel",
    "EnergyMeter",
    "Cloudlet",
    "CloudletStatus",
    "UtilizationModel",
    "FullUtilization",
    "NullUtilization",
    "StochasticUtilization",
    "TraceUtilization",
    "Datacenter",
    "DatacenterCharacteristics",
    "UtilizationMetric",
    "DatacenterBroker",
]
