"""VM allocation and cloudlet scheduling policies."""

from .allocation import (
    VmAllocationPolicy,
    PlacementPolicy,
    FirstFitAllocationPolicy,
    BestFitAllocationPolicy,
    SpreadAllocationPolicy,
    create_allocation_policy,
)
from .cloudlet_scheduler import (
    CloudletScheduler,
    TimeSharedScheduler,
    SpaceSharedScheduler,
    create_cloudlet_scheduler,
)

__all__ = [
    "VmAllocationPolicy",
    "PlacementPolicy",
    "FirstFitAllocationPolicy",
    "BestFitAllocationPolicy",
    "SpreadAllocationPolicy",
    "create_allocation_policy",
    "CloudletScheduler",
    "TimeSharedScheduler",
    "SpaceSharedScheduler",
    "create_cloudlet_scheduler",
]
