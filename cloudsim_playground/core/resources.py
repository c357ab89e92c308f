"""Cloud resource models: processing elements, hosts and virtual machines."""

from typing import TYPE_CHECKING, Dict, List, Optional, Tuple
from dataclasses import dataclass
from enum import Enum
from loguru import logger

from .errors import InsufficientCapacity, InvalidSpecification
from .power import EnergyMeter, PowerModel

if TYPE_CHECKING:
    from ..scheduling.cloudlet_scheduler import CloudletScheduler

# VM ids are only unique per owning broker
VmKey = Tuple[int, int]


class HostState(Enum):
    """Host state enumeration."""
    ACTIVE = "active"
    FAILED = "failed"


class VmState(Enum):
    """VM lifecycle state."""
    REQUESTED = "requested"
    PLACED = "placed"
    UNPLACED = "unplaced"
    DESTROYED = "destroyed"
    FAILED = "failed"


@dataclass
class ProcessingElement:
    """One CPU core with a fixed MIPS capacity."""
    pe_id: int
    mips: float
    owner: Optional[VmKey] = None

    def __post_init__(self) -> None:
        if self.mips < 0:
            raise InvalidSpecification(f"PE {self.pe_id} has negative capacity {self.mips}")

    @property
    def is_free(self) -> bool:
        return self.owner is None


class Host:
    """Physical machine owning PEs, RAM, bandwidth and storage.

    Capacity counters are only mutated by ``allocate_vm`` and ``deallocate_vm``.
    """

    def __init__(
        self,
        host_id: int,
        pes: List[ProcessingElement],
        ram: int,
        bandwidth: int,
        storage: int,
        power_model: Optional[PowerModel] = None,
    ):
        if not pes:
            raise InvalidSpecification(f"Host {host_id} has no PEs", entity_id=host_id)
        if min(ram, bandwidth, storage) < 0:
            raise InvalidSpecification(f"Host {host_id} has negative capacity", entity_id=host_id)
        pe_ids = [pe.pe_id for pe in pes]
        if len(set(pe_ids)) != len(pe_ids):
            raise InvalidSpecification(f"Host {host_id} has duplicate PE ids", entity_id=host_id)

        self.host_id = host_id
        self.pes = list(pes)
        self.ram = ram
        self.bandwidth = bandwidth
        self.storage = storage
        self.power_model = power_model
        self.state = HostState.ACTIVE

        # Reserved capacity
        self.ram_used = 0
        self.bandwidth_used = 0
        self.storage_used = 0

        # VMs currently placed on this host
        self.vms: Dict[VmKey, "VirtualMachine"] = {}

        self.energy_meter = EnergyMeter(power_model, owner_id=host_id)

        logger.debug(f"Host {host_id} created with {len(pes)} PEs, {ram}MB RAM, "
                     f"{bandwidth} bw, {storage}MB storage")

    @classmethod
    def with_uniform_pes(
        cls,
        host_id: int,
        num_pes: int,
        mips_per_pe: float,
        ram: int,
        bandwidth: int,
        storage: int,
        power_model: Optional[PowerModel] = None,
    ) -> "Host":
        pes = [ProcessingElement(pe_id=i, mips=mips_per_pe) for i in range(num_pes)]
        return cls(host_id, pes, ram, bandwidth, storage, power_model)

    @property
    def num_pes(self) -> int:
        return len(self.pes)

    @property
    def free_pes(self) -> List[ProcessingElement]:
        return [pe for pe in self.pes if pe.is_free]

    @property
    def num_used_pes(self) -> int:
        return self.num_pes - len(self.free_pes)

    @property
    def total_mips(self) -> float:
        return sum(pe.mips for pe in self.pes)

    @property
    def ram_available(self) -> int:
        return self.ram - self.ram_used

    @property
    def bandwidth_available(self) -> int:
        return self.bandwidth - self.bandwidth_used

    @property
    def storage_available(self) -> int:
        return self.storage - self.storage_used

    @property
    def is_active(self) -> bool:
        return self.state == HostState.ACTIVE

    def _pes_for(self, vm: "VirtualMachine") -> List[ProcessingElement]:
        return [pe for pe in self.pes if pe.is_free and pe.mips >= vm.mips]

    def is_suitable_for_vm(self, vm: "VirtualMachine") -> bool:
        """Check if the host can reserve everything the VM requests."""
        return (
            self.is_active
            and len(self._pes_for(vm)) >= vm.pes
            and self.ram_available >= vm.ram
            and self.bandwidth_available >= vm.bandwidth
            and self.storage_available >= vm.size
        )

    def allocate_vm(self, vm: "VirtualMachine") -> None:
        """Reserve capacity for the VM and place it here."""
        if not self.is_suitable_for_vm(vm):
            raise InsufficientCapacity(
                f"Host {self.host_id} cannot fit VM {vm.vm_id} "
                f"({vm.pes}x{vm.mips} MIPS, {vm.ram}MB RAM, {vm.bandwidth} bw, {vm.size}MB)",
                entity_id=vm.vm_id,
            )

        reserved = self._pes_for(vm)[:vm.pes]
        for pe in reserved:
            pe.owner = vm.key
        self.ram_used += vm.ram
        self.bandwidth_used += vm.bandwidth
        self.storage_used += vm.size
        self.vms[vm.key] = vm

        vm.host = self
        vm.pe_ids = [pe.pe_id for pe in reserved]
        vm.state = VmState.PLACED

        logger.debug(f"Allocated {vm.pes} PEs, {vm.ram}MB on host {self.host_id} for VM {vm.vm_id}")

    def deallocate_vm(self, vm: "VirtualMachine") -> None:
        """Release every resource reserved for the VM."""
        if self.vms.get(vm.key) is not vm:
            return
        for pe in self.pes:
            if pe.owner == vm.key:
                pe.owner = None
        self.ram_used -= vm.ram
        self.bandwidth_used -= vm.bandwidth
        self.storage_used -= vm.size
        del self.vms[vm.key]

        vm.host = None
        vm.pe_ids = []

        logger.debug(f"Deallocated VM {vm.vm_id} from host {self.host_id}")

    def pe_utilization(self) -> float:
        """Fraction of PEs reserved by resident VMs."""
        return self.num_used_pes / self.num_pes

    def mips_utilization(self, current_time: float) -> float:
        """Fraction of host MIPS consumed by running cloudlets."""
        total = self.total_mips
        if total <= 0:
            return 0.0
        used = sum(vm.used_mips(current_time) for vm in self.vms.values())
        return min(1.0, used / total)

    def fail(self) -> None:
        self.state = HostState.FAILED
        logger.warning(f"Host {self.host_id} failed")

    def __repr__(self) -> str:
        return f"Host(id={self.host_id}, pes={self.num_used_pes}/{self.num_pes}, vms={sorted(self.vms)})"


class VirtualMachine:
    """Virtual Machine requested by a broker and placed on a host."""

    def __init__(
        self,
        vm_id: int,
        mips: float,
        pes: int,
        ram: int,
        bandwidth: int,
        size: int,
        cloudlet_scheduler: Optional["CloudletScheduler"] = None,
        broker_id: int = -1,
        vmm: str = "Xen",
    ):
        if mips <= 0 or pes < 1:
            raise InvalidSpecification(f"VM {vm_id} needs positive MIPS and at least one PE", entity_id=vm_id)
        if min(ram, bandwidth, size) < 0:
            raise InvalidSpecification(f"VM {vm_id} has negative resource request", entity_id=vm_id)

        if cloudlet_scheduler is None:
            from ..scheduling.cloudlet_scheduler import TimeSharedScheduler
            cloudlet_scheduler = TimeSharedScheduler()

        self.vm_id = vm_id
        self.broker_id = broker_id
        self.mips = mips
        self.pes = pes
        self.ram = ram
        self.bandwidth = bandwidth
        self.size = size
        self.vmm = vmm
        self.cost = 0.0
        self.cloudlet_scheduler = cloudlet_scheduler
        self.state = VmState.REQUESTED

        # Placement
        self.host: Optional[Host] = None
        self.pe_ids: List[int] = []

    @property
    def key(self) -> VmKey:
        return (self.broker_id, self.vm_id)

    @property
    def is_placed(self) -> bool:
        return self.host is not None

    @property
    def host_id(self) -> Optional[int]:
        return self.host.host_id if self.host else None

    @property
    def total_mips(self) -> float:
        return self.mips * self.pes

    def mips_share(self) -> List[float]:
        """MIPS available to the cloudlet scheduler on each reserved PE."""
        if not self.is_placed:
            return []
        return [self.mips] * self.pes

    def used_mips(self, current_time: float) -> float:
        return self.cloudlet_scheduler.total_allocated_mips(current_time)

    def __repr__(self) -> str:
        return f"VirtualMachine(id={self.vm_id}, {self.pes}x{self.mips} MIPS, host={self.host_id})"
