"""Discrete-event cloud workload simulator with canned CloudSim-style scenarios."""

__version__ = "0.1.0"
__author__ = "Cloud Project Team"

from .core import Simulation, Datacenter, DatacenterBroker, Host, VirtualMachine, Cloudlet
from .scheduling import TimeSharedScheduler, SpaceSharedScheduler, FirstFitAllocationPolicy

__all__ = [
    "Simulation",
    "Datacenter",
    "DatacenterBroker",
    "Host",
    "VirtualMachine",
    "Cloudlet",
    "TimeSharedScheduler",
    "SpaceSharedScheduler",
    "FirstFitAllocationPolicy",
]
