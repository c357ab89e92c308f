"""Datacenter entity: owns hosts, places VMs and drives cloudlet execution."""

from typing import TYPE_CHECKING, Dict, List, Optional
from dataclasses import dataclass
from enum import Enum
import math
from loguru import logger

from .errors import InvalidSpecification, NoSuitableHost, SchedulingViolation
from .events import EventType, SimulationEvent
from .resources import Host, VirtualMachine, VmKey, VmState
from .simulation import SimEntity
from .workload import Cloudlet

if TYPE_CHECKING:
    from ..scheduling.allocation import VmAllocationPolicy


@dataclass
class DatacenterCharacteristics:
    """Descriptive metadata and cost rates; only costs affect results."""
    architecture: str = "x86"
    os: str = "Linux"
    vmm: str = "Xen"
    time_zone: float = 10.0
    cost_per_second: float = 3.0
    cost_per_memory: float = 0.05
    cost_per_storage: float = 0.001
    cost_per_bandwidth: float = 0.0

    def vm_cost(self, vm: VirtualMachine) -> float:
        """One-off charge for the memory and storage a placed VM reserves."""
        return vm.ram * self.cost_per_memory + vm.size * self.cost_per_storage


class UtilizationMetric(Enum):
    """How host utilization is measured for power accounting."""
    PE_COUNT = "pe_count"
    MIPS_WEIGHTED = "mips_weighted"


class Datacenter(SimEntity):
    """Owns a fixed pool of hosts and reacts to broker requests.

    Every handler first integrates cloudlet progress up to the current clock,
    then applies its change, then refreshes host energy meters and keeps a
    single pending ``UPDATE_PROCESSING`` self-event at the next instant
    something can change.
    """

    def __init__(
        self,
        name: str,
        hosts: List[Host],
        allocation_policy: Optional["VmAllocationPolicy"] = None,
        characteristics: Optional[DatacenterCharacteristics] = None,
        scheduling_interval: float = 0.0,
        utilization_metric: UtilizationMetric = UtilizationMetric.PE_COUNT,
    ):
        super().__init__(name)
        if not hosts:
            raise InvalidSpecification(f"Datacenter {name} has no hosts")
        host_ids = [h.host_id for h in hosts]
        if len(set(host_ids)) != len(host_ids):
            raise InvalidSpecification(f"Datacenter {name} has duplicate host ids")
        if scheduling_interval < 0:
            raise InvalidSpecification(f"Scheduling interval must be >= 0, got {scheduling_interval}")

        if allocation_policy is None:
            from ..scheduling.allocation import FirstFitAllocationPolicy
            allocation_policy = FirstFitAllocationPolicy()

        self.hosts: List[Host] = list(hosts)
        self.allocation_policy = allocation_policy
        self.characteristics = characteristics or DatacenterCharacteristics()
        self.scheduling_interval = scheduling_interval
        self.utilization_metric = utilization_metric

        self.vms: Dict[VmKey, VirtualMachine] = {}
        self._pending_update: Optional[SimulationEvent] = None

        logger.info(f"Datacenter {name} created with {len(hosts)} hosts, "
                    f"{self.allocation_policy.placement_policy.value} placement, "
                    f"scheduling interval {scheduling_interval}s")

    def _setup_event_handlers(self) -> None:
        self.subscribe(EventType.VM_CREATE, self._handle_vm_create)
        self.subscribe(EventType.VM_DESTROY, self._handle_vm_destroy)
        self.subscribe(EventType.CLOUDLET_SUBMIT, self._handle_cloudlet_submit)
        self.subscribe(EventType.CLOUDLET_CANCEL, self._handle_cloudlet_cancel)
        self.subscribe(EventType.CLOUDLET_PAUSE, self._handle_cloudlet_pause)
        self.subscribe(EventType.CLOUDLET_RESUME, self._handle_cloudlet_resume)
        self.subscribe(EventType.UPDATE_PROCESSING, self._handle_update_processing)
        self.subscribe(EventType.HOST_FAILURE, self._handle_host_failure)

    # Public API

    def get_host(self, host_id: int) -> Optional[Host]:
        for host in self.hosts:
            if host.host_id == host_id:
                return host
        return None

    def fail_host(self, host_id: int, delay: float = 0.0) -> SimulationEvent:
        """Schedule a failure of ``host_id`` after ``delay`` seconds."""
        if self.get_host(host_id) is None:
            raise InvalidSpecification(f"Datacenter {self.name} has no host {host_id}", entity_id=host_id)
        return self.schedule_self(EventType.HOST_FAILURE, self.clock + delay, host_id)

    def host_utilization(self, host: Host) -> float:
        if self.utilization_metric == UtilizationMetric.MIPS_WEIGHTED:
            return host.mips_utilization(self.clock)
        return host.pe_utilization()

    @property
    def energy_wh(self) -> float:
        return sum(host.energy_meter.energy_wh for host in self.hosts)

    def shutdown(self) -> None:
        for host in self.hosts:
            host.energy_meter.accrue(self.clock)
        logger.info(f"Datacenter {self.name} consumed {self.energy_wh:.4f} Wh "
                    f"over {self.clock:.2f}s")

    # Event handlers

    def _handle_vm_create(self, event: SimulationEvent) -> None:
        vm: VirtualMachine = event.data
        self._update_processing()
        if vm.key in self.vms:
            raise InvalidSpecification(
                f"Broker {vm.broker_id} already has a VM {vm.vm_id} in {self.name}", entity_id=vm.vm_id
            )
        try:
            self.allocation_policy.allocate_host_for_vm(vm, self.hosts)
        except NoSuitableHost as e:
            vm.state = VmState.UNPLACED
            logger.warning(str(e))
            placed = False
        else:
            self.vms[vm.key] = vm
            vm.cost = self.characteristics.vm_cost(vm)
            # Start the VM's scheduler clock at its placement time
            vm.cloudlet_scheduler.update_processing(self.clock, vm.mips_share())
            placed = True
        self._after_change()
        self.send(event.source, EventType.VM_CREATE_ACK, (vm, placed))

    def _handle_vm_destroy(self, event: SimulationEvent) -> None:
        vm: VirtualMachine = event.data
        self._update_processing()
        if self.vms.get(vm.key) is vm:
            self._release_vm(vm, VmState.DESTROYED, "vm destroyed")
            logger.info(f"VM {vm.vm_id} destroyed at {self.clock:.2f}s")
        else:
            logger.warning(f"VM {vm.vm_id} is not running in {self.name}; destroy ignored")
        self._after_change()

    def _handle_cloudlet_submit(self, event: SimulationEvent) -> None:
        cloudlet: Cloudlet = event.data
        self._update_processing()

        cloudlet.datacenter_id = self.entity_id
        cloudlet.cost_per_second = self.characteristics.cost_per_second
        cloudlet.cost_per_bandwidth = self.characteristics.cost_per_bandwidth

        vm = self.vms.get((cloudlet.broker_id, cloudlet.vm_id)) if cloudlet.vm_id is not None else None
        try:
            if vm is None or not vm.is_placed:
                raise SchedulingViolation(
                    f"Cloudlet {cloudlet.cloudlet_id} is bound to VM {cloudlet.vm_id}, "
                    f"which is not placed in {self.name}",
                    entity_id=cloudlet.cloudlet_id,
                )
            cloudlet.host_id = vm.host_id
            vm.cloudlet_scheduler.submit(cloudlet, self.clock)
        except SchedulingViolation as e:
            logger.warning(str(e))
            cloudlet.mark_failed(self.clock, str(e))
            self.send(event.source, EventType.CLOUDLET_RETURN, cloudlet)
        else:
            logger.debug(f"Cloudlet {cloudlet.cloudlet_id} accepted by VM {vm.vm_id} "
                         f"on host {vm.host_id} ({cloudlet.status.value})")
        self._after_change()

    def _handle_cloudlet_cancel(self, event: SimulationEvent) -> None:
        cloudlet_id, vm_id = event.data.cloudlet_id, event.data.vm_id
        self._update_processing()
        vm = self.vms.get((event.data.broker_id, vm_id))
        cloudlet = vm.cloudlet_scheduler.cancel(cloudlet_id, self.clock) if vm else None
        if cloudlet is None:
            logger.warning(f"Cloudlet {cloudlet_id} is not active on VM {vm_id}; cancel ignored")
        else:
            self.send(event.source, EventType.CLOUDLET_RETURN, cloudlet)
        self._after_change()

    def _handle_cloudlet_pause(self, event: SimulationEvent) -> None:
        cloudlet_id, vm_id = event.data.cloudlet_id, event.data.vm_id
        self._update_processing()
        vm = self.vms.get((event.data.broker_id, vm_id))
        if vm is None or not vm.cloudlet_scheduler.pause(cloudlet_id, self.clock):
            logger.warning(f"Cloudlet {cloudlet_id} is not running on VM {vm_id}; pause ignored")
        self._after_change()

    def _handle_cloudlet_resume(self, event: SimulationEvent) -> None:
        cloudlet_id, vm_id = event.data.cloudlet_id, event.data.vm_id
        self._update_processing()
        vm = self.vms.get((event.data.broker_id, vm_id))
        if vm is None or not vm.cloudlet_scheduler.resume(cloudlet_id, self.clock):
            logger.warning(f"Cloudlet {cloudlet_id} is not paused on VM {vm_id}; resume ignored")
        self._after_change()

    def _handle_update_processing(self, event: SimulationEvent) -> None:
        if event is self._pending_update:
            self._pending_update = None
        self._update_processing()
        self._after_change()

    def _handle_host_failure(self, event: SimulationEvent) -> None:
        host = self.get_host(event.data)
        self._update_processing()
        if host is not None and host.is_active:
            for _, vm in sorted(host.vms.items()):
                self._release_vm(vm, VmState.FAILED, f"host {host.host_id} failed")
            host.fail()
        self._after_change()

    # Processing

    def _update_processing(self) -> None:
        """Bring every VM scheduler to the current clock and return finished cloudlets."""
        finished: List[Cloudlet] = []
        for host in self.hosts:
            for _, vm in sorted(host.vms.items()):
                vm.cloudlet_scheduler.update_processing(self.clock, vm.mips_share())
                finished.extend(vm.cloudlet_scheduler.pop_finished())

        # Simultaneous completions are reported in ascending id order
        for cloudlet in sorted(finished, key=lambda cl: (cl.cloudlet_id, cl.broker_id)):
            logger.info(f"Cloudlet {cloudlet.cloudlet_id} finished on VM {cloudlet.vm_id} "
                        f"at {self.clock:.2f}s")
            self.send(cloudlet.broker_id, EventType.CLOUDLET_RETURN, cloudlet)

    def _release_vm(self, vm: VirtualMachine, state: VmState, reason: str) -> None:
        for cloudlet in vm.cloudlet_scheduler.fail_all(self.clock, reason):
            logger.warning(f"Cloudlet {cloudlet.cloudlet_id} failed: {reason}")
            self.send(cloudlet.broker_id, EventType.CLOUDLET_RETURN, cloudlet)
        self.allocation_policy.deallocate_host_for_vm(vm)
        vm.state = state
        self.vms.pop(vm.key, None)

    def _after_change(self) -> None:
        self._refresh_power()
        self._schedule_next_update()

    def _refresh_power(self) -> None:
        for host in self.hosts:
            host.energy_meter.set_utilization(self.clock, self.host_utilization(host))

    def _schedule_next_update(self) -> None:
        next_time = math.inf
        has_running = False
        for vm in self.vms.values():
            scheduler = vm.cloudlet_scheduler
            next_time = min(next_time, scheduler.next_completion_time(self.clock))
            has_running = has_running or scheduler.has_running
        if self.scheduling_interval > 0 and has_running:
            next_time = min(next_time, self.clock + self.scheduling_interval)

        pending = self._pending_update
        if pending is not None and pending.pending:
            if pending.fire_at == next_time:
                return
            self.simulation.cancel(pending)
        self._pending_update = None

        if math.isfinite(next_time):
            self._pending_update = self.schedule_self(EventType.UPDATE_PROCESSING, next_time)

    def __repr__(self) -> str:
        return f"Datacenter({self.name!r}, hosts={len(self.hosts)}, vms={len(self.vms)})"
