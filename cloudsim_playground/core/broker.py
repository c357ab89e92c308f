"""Datacenter broker: submits VMs and cloudlets for one simulated user."""

from typing import Dict, List, Optional
from loguru import logger

from .errors import SchedulingViolation, SimulationError
from .events import EventType, SimulationEvent
from .resources import VirtualMachine
from .simulation import SimEntity
from .workload import Cloudlet, CloudletStatus


class DatacenterBroker(SimEntity):
    """Acts on behalf of one simulated user.

    Lifecycle: request every VM, wait for all placement acknowledgements,
    submit cloudlets (binding unbound ones round-robin over placed VMs),
    collect returned cloudlets, then destroy the placed VMs.
    """

    def __init__(self, name: str, datacenter_id: Optional[int] = None):
        super().__init__(name)
        self.datacenter_id = datacenter_id

        # Submitted by the user
        self.vm_list: List[VirtualMachine] = []
        self.cloudlet_list: List[Cloudlet] = []

        # Placement results
        self.vms_created: List[VirtualMachine] = []
        self.vms_unplaced: List[VirtualMachine] = []
        self._acks_received = 0

        # Cloudlet results, each in arrival order
        self.cloudlets_received: List[Cloudlet] = []
        self.cloudlets_failed: List[Cloudlet] = []
        self.cloudlets_cancelled: List[Cloudlet] = []
        self.outstanding: Dict[int, Cloudlet] = {}
        self._submit_events: Dict[int, SimulationEvent] = {}
        self._cloudlets_submitted = False
        self._vms_destroyed = False

    def _setup_event_handlers(self) -> None:
        self.subscribe(EventType.VM_CREATE_ACK, self._handle_vm_create_ack)
        self.subscribe(EventType.CLOUDLET_RETURN, self._handle_cloudlet_return)

    # Submission API

    def submit_vm_list(self, vms: List[VirtualMachine]) -> None:
        self._ensure_not_running("submit VMs")
        known = {vm.vm_id for vm in self.vm_list}
        for vm in vms:
            if vm.vm_id in known:
                raise SimulationError(f"VM {vm.vm_id} submitted twice to {self.name}", entity_id=vm.vm_id)
            known.add(vm.vm_id)
            self.vm_list.append(vm)
        logger.info(f"{self.name}: {len(vms)} VMs submitted")

    def submit_cloudlet_list(self, cloudlets: List[Cloudlet]) -> None:
        self._ensure_not_running("submit cloudlets")
        known = {cl.cloudlet_id for cl in self.cloudlet_list}
        for cloudlet in cloudlets:
            if cloudlet.cloudlet_id in known:
                raise SimulationError(
                    f"Cloudlet {cloudlet.cloudlet_id} submitted twice to {self.name}",
                    entity_id=cloudlet.cloudlet_id,
                )
            known.add(cloudlet.cloudlet_id)
            self.cloudlet_list.append(cloudlet)
        logger.info(f"{self.name}: {len(cloudlets)} cloudlets submitted")

    def bind_cloudlet_to_vm(self, cloudlet_id: int, vm_id: int) -> None:
        self._ensure_not_running("bind cloudlets")
        self._cloudlet(cloudlet_id).vm_id = vm_id

    def cancel_cloudlet(self, cloudlet_id: int, delay: float = 0.0) -> None:
        """Cancel a cloudlet now, or after ``delay`` seconds of simulated time."""
        cloudlet = self._cloudlet(cloudlet_id)
        if cloudlet.status.is_terminal:
            return

        submit_event = self._submit_events.get(cloudlet_id)
        if delay == 0.0 and (not self._cloudlets_submitted or (submit_event and submit_event.pending)):
            # Not yet at the datacenter: withdraw instead of sending a cancel
            if submit_event is not None:
                self.simulation.cancel(submit_event)
            cloudlet.set_status(CloudletStatus.CANCELED, self.clock)
            self.outstanding.pop(cloudlet_id, None)
            self.cloudlets_cancelled.append(cloudlet)
            logger.info(f"Cloudlet {cloudlet_id} cancelled before submission")
            self._maybe_finish()
            return

        self.send(self._require_datacenter(), EventType.CLOUDLET_CANCEL, cloudlet, delay)

    def pause_cloudlet(self, cloudlet_id: int, delay: float = 0.0) -> None:
        cloudlet = self._cloudlet(cloudlet_id)
        self.send(self._require_datacenter(), EventType.CLOUDLET_PAUSE, cloudlet, delay)

    def resume_cloudlet(self, cloudlet_id: int, delay: float = 0.0) -> None:
        cloudlet = self._cloudlet(cloudlet_id)
        self.send(self._require_datacenter(), EventType.CLOUDLET_RESUME, cloudlet, delay)

    # Lifecycle

    def start(self) -> None:
        datacenter_id = self._require_datacenter()
        logger.info(f"{self.name} starting: requesting {len(self.vm_list)} VMs "
                    f"from entity {datacenter_id}")
        for vm in self.vm_list:
            vm.broker_id = self.entity_id
            self.send(datacenter_id, EventType.VM_CREATE, vm)
        if not self.vm_list:
            self._submit_cloudlets()

    def shutdown(self) -> None:
        if self.outstanding:
            logger.warning(f"{self.name}: {len(self.outstanding)} cloudlets still outstanding "
                           f"at {self.clock:.2f}s: {sorted(self.outstanding)}")

    def _handle_vm_create_ack(self, event: SimulationEvent) -> None:
        vm, placed = event.data
        self._acks_received += 1
        if placed:
            self.vms_created.append(vm)
            logger.info(f"{self.name}: VM {vm.vm_id} created on host {vm.host_id}")
        else:
            self.vms_unplaced.append(vm)
            logger.warning(f"{self.name}: VM {vm.vm_id} could not be placed")

        if self._acks_received == len(self.vm_list):
            self._submit_cloudlets()

    def _submit_cloudlets(self) -> None:
        self._cloudlets_submitted = True
        datacenter_id = self._require_datacenter()
        placed = self.vms_created
        next_vm = 0

        for cloudlet in self.cloudlet_list:
            if cloudlet.status != CloudletStatus.INSTANTIATED:
                continue
            cloudlet.broker_id = self.entity_id
            cloudlet.submission_time = self.clock

            if cloudlet.vm_id is None:
                if not placed:
                    error = SchedulingViolation(
                        f"Cloudlet {cloudlet.cloudlet_id} has no VM to run on",
                        entity_id=cloudlet.cloudlet_id,
                    )
                    logger.warning(str(error))
                    cloudlet.mark_failed(self.clock, str(error))
                    self.cloudlets_failed.append(cloudlet)
                    continue
                cloudlet.vm_id = placed[next_vm % len(placed)].vm_id
                next_vm += 1

            self.outstanding[cloudlet.cloudlet_id] = cloudlet
            self._submit_events[cloudlet.cloudlet_id] = self.send(
                datacenter_id, EventType.CLOUDLET_SUBMIT, cloudlet
            )

        logger.info(f"{self.name}: {len(self.outstanding)} cloudlets sent at {self.clock:.2f}s")
        self._maybe_finish()

    def _handle_cloudlet_return(self, event: SimulationEvent) -> None:
        cloudlet: Cloudlet = event.data
        self.outstanding.pop(cloudlet.cloudlet_id, None)

        if cloudlet.status == CloudletStatus.FINISHED:
            self.cloudlets_received.append(cloudlet)
            logger.debug(f"{self.name}: cloudlet {cloudlet.cloudlet_id} received")
        elif cloudlet.status == CloudletStatus.CANCELED:
            self.cloudlets_cancelled.append(cloudlet)
        else:
            self.cloudlets_failed.append(cloudlet)
            logger.warning(f"{self.name}: cloudlet {cloudlet.cloudlet_id} failed "
                           f"({cloudlet.failure_reason})")

        self._maybe_finish()

    def _maybe_finish(self) -> None:
        """Destroy placed VMs once every submitted cloudlet has come back."""
        if not self._cloudlets_submitted or self.outstanding or self._vms_destroyed:
            return
        self._vms_destroyed = True
        logger.info(f"{self.name}: all cloudlets returned at {self.clock:.2f}s, destroying VMs")
        for vm in self.vms_created:
            self.send(self._require_datacenter(), EventType.VM_DESTROY, vm)

    # Helpers

    def _cloudlet(self, cloudlet_id: int) -> Cloudlet:
        for cloudlet in self.cloudlet_list:
            if cloudlet.cloudlet_id == cloudlet_id:
                return cloudlet
        raise SimulationError(f"{self.name} has no cloudlet {cloudlet_id}", entity_id=cloudlet_id)

    def _require_datacenter(self) -> int:
        if self.datacenter_id is None:
            raise SimulationError(f"{self.name} has no target datacenter", entity_id=self.entity_id)
        return self.datacenter_id

    def _ensure_not_running(self, action: str) -> None:
        if self.simulation is not None and self.simulation.running:
            raise SimulationError(f"{self.name} cannot {action} while the simulation runs",
                                  entity_id=self.entity_id)

    @property
    def placed_vm_ids(self) -> List[int]:
        return [vm.vm_id for vm in self.vms_created]

    @property
    def unplaced_vm_ids(self) -> List[int]:
        return [vm.vm_id for vm in self.vms_unplaced]
