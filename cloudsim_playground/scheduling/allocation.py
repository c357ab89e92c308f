"""VM allocation policies: choose a host for each VM submission."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from enum import Enum
from loguru import logger

from ..core.errors import InsufficientCapacity, NoSuitableHost
from ..core.resources import Host, VirtualMachine, VmKey


class PlacementPolicy(Enum):
    """Placement policies for VM allocation."""
    FIRST_FIT = "first_fit"
    BEST_FIT = "best_fit"
    SPREAD = "spread"


class VmAllocationPolicy(ABC):
    """Abstract base class for VM allocation policies.

    Policies only order the candidate hosts. Placement walks that order and
    moves on to the next host whenever one reports ``InsufficientCapacity``.
    """

    def __init__(self, placement_policy: PlacementPolicy):
        self.placement_policy = placement_policy
        self.vm_table: Dict[VmKey, int] = {}  # (broker_id, vm_id) -> host_id
        logger.debug(f"Allocation policy initialized with {placement_policy.value} placement")

    @abstractmethod
    def candidate_hosts(self, vm: VirtualMachine, hosts: List[Host]) -> List[Host]:
        """Hosts to try, in preference order."""

    def allocate_host_for_vm(self, vm: VirtualMachine, hosts: List[Host]) -> Host:
        """Place the VM on the first candidate host with enough free capacity."""
        for host in self.candidate_hosts(vm, hosts):
            if not host.is_active:
                continue
            try:
                host.allocate_vm(vm)
            except InsufficientCapacity as e:
                logger.debug(str(e))
                continue
            self.vm_table[vm.key] = host.host_id
            logger.info(f"VM {vm.vm_id} placed on host {host.host_id} ({self.placement_policy.value})")
            return host

        raise NoSuitableHost(
            f"No host can place VM {vm.vm_id} ({vm.pes} PEs x {vm.mips} MIPS, {vm.ram}MB RAM)",
            entity_id=vm.vm_id,
        )

    def deallocate_host_for_vm(self, vm: VirtualMachine) -> None:
        """Release the VM's reservation on its host."""
        host = vm.host
        if host is None:
            return
        host.deallocate_vm(vm)
        self.vm_table.pop(vm.key, None)

    def host_of(self, vm_id: int, broker_id: int = -1) -> Optional[int]:
        return self.vm_table.get((broker_id, vm_id))


class FirstFitAllocationPolicy(VmAllocationPolicy):
    """First-fit: hosts are tried in their stable datacenter order."""

    def __init__(self):
        super().__init__(PlacementPolicy.FIRST_FIT)

    def candidate_hosts(self, vm: VirtualMachine, hosts: List[Host]) -> List[Host]:
        return list(hosts)


class BestFitAllocationPolicy(VmAllocationPolicy):
    """Best-fit: prefer the host left with the fewest free PEs."""

    def __init__(self):
        super().__init__(PlacementPolicy.BEST_FIT)

    def candidate_hosts(self, vm: VirtualMachine, hosts: List[Host]) -> List[Host]:
        # sorted() is stable, ties keep datacenter order
        return sorted(hosts, key=lambda h: len(h.free_pes))


class SpreadAllocationPolicy(VmAllocationPolicy):
    """Spread: prefer the host with the most free PEs."""

    def __init__(self):
        super().__init__(PlacementPolicy.SPREAD)

    def candidate_hosts(self, vm: VirtualMachine, hosts: List[Host]) -> List[Host]:
        return sorted(hosts, key=lambda h: -len(h.free_pes))


def create_allocation_policy(policy: str) -> VmAllocationPolicy:
    """Create allocation policy instance."""
    policies = {
        PlacementPolicy.FIRST_FIT.value: FirstFitAllocationPolicy,
        PlacementPolicy.BEST_FIT.value: BestFitAllocationPolicy,
        PlacementPolicy.SPREAD.value: SpreadAllocationPolicy,
    }

    if policy not in policies:
        raise ValueError(f"Unknown allocation policy: {policy}")

    return policies[policy]()
