"""Per-VM cloudlet schedulers: time-shared and space-shared."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence
import math
from loguru import logger

from ..core.errors import SchedulingViolation
from ..core.workload import Cloudlet, CloudletStatus


# Remaining lengths at or below this many MI count as complete
FINISH_TOLERANCE = 1e-6


class CloudletScheduler(ABC):
    """Runs cloudlets on the PEs reserved for one VM.

    ``update_processing`` must be called with the current clock before any
    other mutating call at that instant, so executed work is integrated with
    the rates that held since the previous update.
    """

    def __init__(self) -> None:
        self.exec_list: List[Cloudlet] = []
        self.waiting_list: List[Cloudlet] = []
        self.paused_list: List[Cloudlet] = []
        self.finished_list: List[Cloudlet] = []
        self.previous_time = 0.0
        self.current_mips_share: List[float] = []
        self._rates: Dict[int, float] = {}

    # Capacity helpers

    @property
    def capacity(self) -> float:
        return sum(self.current_mips_share)

    @property
    def num_pes(self) -> int:
        return len(self.current_mips_share)

    @property
    def mips_per_pe(self) -> float:
        if not self.current_mips_share:
            return 0.0
        return self.capacity / self.num_pes

    def _requested_mips(self, cloudlet: Cloudlet, current_time: float) -> float:
        utilization = cloudlet.utilization_model_cpu.get_utilization(current_time)
        return cloudlet.pes * self.mips_per_pe * min(1.0, max(0.0, utilization))

    # Policy hooks

    @abstractmethod
    def _admit(self, cloudlet: Cloudlet, current_time: float) -> None:
        """Put a submitted or resumed cloudlet into the running or waiting list."""

    @abstractmethod
    def _allocate_rates(self, current_time: float) -> Dict[int, float]:
        """MIPS each running cloudlet gets until the next update."""

    def _admit_waiting(self, current_time: float) -> None:
        """Start waiting cloudlets that now fit. No-op unless the policy queues."""

    # Core operations

    def update_processing(self, current_time: float, mips_share: Sequence[float]) -> float:
        """Integrate executed MI since the last update and return the next completion time."""
        elapsed = current_time - self.previous_time
        if elapsed > 0:
            for cloudlet in self.exec_list:
                cloudlet.advance(self._rates.get(cloudlet.cloudlet_id, 0.0) * elapsed)

        self.previous_time = current_time
        self.current_mips_share = list(mips_share)

        done = sorted(
            (cl for cl in self.exec_list if self._is_complete(cl, current_time)),
            key=lambda cl: cl.cloudlet_id,
        )
        for cloudlet in done:
            self.exec_list.remove(cloudlet)
            cloudlet.set_status(CloudletStatus.FINISHED, current_time)
            self.finished_list.append(cloudlet)
            logger.debug(f"Cloudlet {cloudlet.cloudlet_id} finished at {current_time:.4f}s")

        if done:
            self._admit_waiting(current_time)
        self._refresh_rates(current_time)
        return self.next_completion_time(current_time)

    def _is_complete(self, cloudlet: Cloudlet, current_time: float) -> bool:
        if cloudlet.remaining_length <= FINISH_TOLERANCE:
            return True
        # Leftover work too small to move the clock forward
        rate = self._rates.get(cloudlet.cloudlet_id, 0.0)
        return rate > 0 and current_time + cloudlet.remaining_length / rate <= current_time

    def submit(self, cloudlet: Cloudlet, current_time: float) -> float:
        """Accept a cloudlet and return the next completion time."""
        if not self.current_mips_share:
            raise SchedulingViolation(
                f"Cloudlet {cloudlet.cloudlet_id} submitted to a VM with no PEs allocated",
                entity_id=cloudlet.cloudlet_id,
            )
        if cloudlet.pes > self.num_pes:
            raise SchedulingViolation(
                f"Cloudlet {cloudlet.cloudlet_id} needs {cloudlet.pes} PEs, VM has {self.num_pes}",
                entity_id=cloudlet.cloudlet_id,
            )
        self._admit(cloudlet, current_time)
        self._refresh_rates(current_time)
        return self.next_completion_time(current_time)

    def pause(self, cloudlet_id: int, current_time: float) -> bool:
        cloudlet = _find(self.exec_list, cloudlet_id)
        if cloudlet is None:
            return False
        self.exec_list.remove(cloudlet)
        cloudlet.set_status(CloudletStatus.PAUSED, current_time)
        self.paused_list.append(cloudlet)
        self._admit_waiting(current_time)
        self._refresh_rates(current_time)
        return True

    def resume(self, cloudlet_id: int, current_time: float) -> bool:
        cloudlet = _find(self.paused_list, cloudlet_id)
        if cloudlet is None:
            return False
        self.paused_list.remove(cloudlet)
        self._admit(cloudlet, current_time)
        self._refresh_rates(current_time)
        return True

    def cancel(self, cloudlet_id: int, current_time: float) -> Optional[Cloudlet]:
        for bucket in (self.exec_list, self.waiting_list, self.paused_list):
            cloudlet = _find(bucket, cloudlet_id)
            if cloudlet is not None:
                bucket.remove(cloudlet)
                cloudlet.set_status(CloudletStatus.CANCELED, current_time)
                self._admit_waiting(current_time)
                self._refresh_rates(current_time)
                return cloudlet
        return None

    def fail_all(self, current_time: float, reason: str) -> List[Cloudlet]:
        """Fail every active cloudlet, e.g. when the VM or its host goes away."""
        active = sorted(
            self.exec_list + self.waiting_list + self.paused_list,
            key=lambda cl: cl.cloudlet_id,
        )
        for cloudlet in active:
            cloudlet.mark_failed(current_time, reason)
        self.exec_list.clear()
        self.waiting_list.clear()
        self.paused_list.clear()
        self._rates = {}
        return active

    def pop_finished(self) -> List[Cloudlet]:
        finished, self.finished_list = self.finished_list, []
        return finished

    def next_completion_time(self, current_time: float) -> float:
        """Earliest estimated finish among running cloudlets, or inf."""
        next_time = math.inf
        for cloudlet in self.exec_list:
            rate = self._rates.get(cloudlet.cloudlet_id, 0.0)
            if rate > 0:
                next_time = min(next_time, current_time + cloudlet.remaining_length / rate)
        return next_time

    def _refresh_rates(self, current_time: float) -> None:
        self._rates = self._allocate_rates(current_time) if self.exec_list else {}

    # Queries

    @property
    def has_running(self) -> bool:
        return bool(self.exec_list or self.waiting_list)

    @property
    def has_active(self) -> bool:
        return bool(self.exec_list or self.waiting_list or self.paused_list)

    def allocated_mips(self, cloudlet_id: int) -> float:
        return self._rates.get(cloudlet_id, 0.0)

    def total_allocated_mips(self, current_time: float) -> float:
        return sum(self._rates.values())

    def cpu_utilization(self, current_time: float) -> float:
        if self.capacity <= 0:
            return 0.0
        return min(1.0, self.total_allocated_mips(current_time) / self.capacity)

    def ram_utilization(self, current_time: float) -> float:
        total = sum(cl.utilization_model_ram.get_utilization(current_time) for cl in self.exec_list)
        return min(1.0, total)

    def bw_utilization(self, current_time: float) -> float:
        total = sum(cl.utilization_model_bw.get_utilization(current_time) for cl in self.exec_list)
        return min(1.0, total)

    def find(self, cloudlet_id: int) -> Optional[Cloudlet]:
        for bucket in (self.exec_list, self.waiting_list, self.paused_list, self.finished_list):
            cloudlet = _find(bucket, cloudlet_id)
            if cloudlet is not None:
                return cloudlet
        return None


class TimeSharedScheduler(CloudletScheduler):
    """All admitted cloudlets run concurrently and divide the VM's MIPS.

    Each running cloudlet requests ``pes * mips_per_pe * cpu_utilization``.
    When total demand exceeds capacity every request is scaled down by the
    same factor, so shares stay proportional to demand.
    """

    def _admit(self, cloudlet: Cloudlet, current_time: float) -> None:
        cloudlet.set_status(CloudletStatus.RUNNING, current_time)
        self.exec_list.append(cloudlet)

    def _allocate_rates(self, current_time: float) -> Dict[int, float]:
        demands = {cl.cloudlet_id: self._requested_mips(cl, current_time) for cl in self.exec_list}
        total_demand = sum(demands.values())
        scale = 1.0
        if total_demand > self.capacity > 0:
            scale = self.capacity / total_demand
        return {cloudlet_id: demand * scale for cloudlet_id, demand in demands.items()}


class SpaceSharedScheduler(CloudletScheduler):
    """Cloudlets own whole PEs exclusively; the rest wait in FIFO order."""

    @property
    def used_pes(self) -> int:
        return sum(cl.pes for cl in self.exec_list)

    @property
    def free_pes(self) -> int:
        return self.num_pes - self.used_pes

    def _admit(self, cloudlet: Cloudlet, current_time: float) -> None:
        if not self.waiting_list and cloudlet.pes <= self.free_pes:
            cloudlet.set_status(CloudletStatus.RUNNING, current_time)
            self.exec_list.append(cloudlet)
        else:
            cloudlet.set_status(CloudletStatus.QUEUED, current_time)
            self.waiting_list.append(cloudlet)
            logger.debug(f"Cloudlet {cloudlet.cloudlet_id} queued, {self.free_pes} PEs free")

    def _admit_waiting(self, current_time: float) -> None:
        while self.waiting_list and self.waiting_list[0].pes <= self.free_pes:
            cloudlet = self.waiting_list.pop(0)
            cloudlet.set_status(CloudletStatus.RUNNING, current_time)
            self.exec_list.append(cloudlet)

    def _allocate_rates(self, current_time: float) -> Dict[int, float]:
        return {cl.cloudlet_id: self._requested_mips(cl, current_time) for cl in self.exec_list}


def _find(cloudlets: List[Cloudlet], cloudlet_id: int) -> Optional[Cloudlet]:
    for cloudlet in cloudlets:
        if cloudlet.cloudlet_id == cloudlet_id:
            return cloudlet
    return None


SCHEDULERS = {
    "time_shared": TimeSharedScheduler,
    "space_shared": SpaceSharedScheduler,
}


def create_cloudlet_scheduler(kind: str) -> CloudletScheduler:
    """Create a cloudlet scheduler by name."""
    if kind not in SCHEDULERS:
        raise ValueError(f"Unknown cloudlet scheduler: {kind}")
    return SCHEDULERS[kind]()
