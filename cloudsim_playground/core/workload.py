"""Cloudlet (task) model, status state machine and utilization models."""

from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Optional, Sequence, Union
from pathlib import Path
from enum import Enum
import numpy as np
from loguru import logger

from .errors import InvalidSpecification, InvalidStateTransition


class UtilizationModel(ABC):
    """Given a simulated time, return a utilization fraction in [0, 1]."""

    @abstractmethod
    def get_utilization(self, time: float) -> float:
        pass


class FullUtilization(UtilizationModel):
    """Always uses the whole resource."""

    def get_utilization(self, time: float) -> float:
        return 1.0


class NullUtilization(UtilizationModel):
    """Never uses the resource."""

    def get_utilization(self, time: float) -> float:
        return 0.0


class StochasticUtilization(UtilizationModel):
    """Uniformly random utilization, fixed per simulated instant.

    Only the last sampled instant is kept: queries arrive at a clock that never
    moves backward, so repeated queries at the same instant agree. A seeded
    generator keeps runs reproducible.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)
        self._last_time: Optional[float] = None
        self._last_value = 0.0

    def get_utilization(self, time: float) -> float:
        if time != self._last_time:
            self._last_time = time
            self._last_value = float(self._rng.random())
        return self._last_value


class TraceUtilization(UtilizationModel):
    """Utilization replayed from percent samples taken every ``interval`` seconds.

    Between samples the value is interpolated linearly; past the last sample
    the last value holds.
    """

    def __init__(self, samples: Sequence[float], interval: float = 300.0):
        data = np.asarray(samples, dtype=float)
        if data.size == 0:
            raise InvalidSpecification("Utilization trace is empty")
        if interval <= 0:
            raise InvalidSpecification(f"Trace interval must be positive, got {interval}")
        self.interval = interval
        self._fractions = np.clip(data / 100.0, 0.0, 1.0)
        self._times = np.arange(data.size) * interval

    @classmethod
    def from_file(cls, path: Union[str, Path], interval: float = 300.0) -> "TraceUtilization":
        """Load one percent value per line (PlanetLab trace format)."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Utilization trace not found: {path}")
        samples = np.atleast_1d(np.loadtxt(path, dtype=float))
        logger.debug(f"Loaded {samples.size} utilization samples from {path}")
        return cls(samples, interval)

    def __len__(self) -> int:
        return int(self._fractions.size)

    def get_utilization(self, time: float) -> float:
        return float(np.interp(time, self._times, self._fractions))


class CloudletStatus(Enum):
    """Cloudlet lifecycle states."""
    INSTANTIATED = "instantiated"
    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[CloudletStatus] = frozenset(
    {CloudletStatus.FINISHED, CloudletStatus.FAILED, CloudletStatus.CANCELED}
)

_ALLOWED_TRANSITIONS: Dict[CloudletStatus, FrozenSet[CloudletStatus]] = {
    CloudletStatus.INSTANTIATED: frozenset(
        {CloudletStatus.QUEUED, CloudletStatus.RUNNING, CloudletStatus.FAILED, CloudletStatus.CANCELED}
    ),
    CloudletStatus.QUEUED: frozenset(
        {CloudletStatus.RUNNING, CloudletStatus.FAILED, CloudletStatus.CANCELED}
    ),
    CloudletStatus.RUNNING: frozenset(
        {CloudletStatus.PAUSED, CloudletStatus.FINISHED, CloudletStatus.FAILED, CloudletStatus.CANCELED}
    ),
    CloudletStatus.PAUSED: frozenset(
        {CloudletStatus.RUNNING, CloudletStatus.QUEUED, CloudletStatus.FAILED, CloudletStatus.CANCELED}
    ),
    CloudletStatus.FINISHED: frozenset(),
    CloudletStatus.FAILED: frozenset(),
    CloudletStatus.CANCELED: frozenset(),
}


class Cloudlet:
    """A batch task of fixed length in millions of instructions (MI)."""

    def __init__(
        self,
        cloudlet_id: int,
        length: float,
        pes: int = 1,
        file_size: int = 300,
        output_size: int = 300,
        utilization_model_cpu: Optional[UtilizationModel] = None,
        utilization_model_ram: Optional[UtilizationModel] = None,
        utilization_model_bw: Optional[UtilizationModel] = None,
        vm_id: Optional[int] = None,
    ):
        if length <= 0:
            raise InvalidSpecification(f"Cloudlet {cloudlet_id} length must be positive", entity_id=cloudlet_id)
        if pes < 1:
            raise InvalidSpecification(f"Cloudlet {cloudlet_id} needs at least one PE", entity_id=cloudlet_id)
        if file_size < 0 or output_size < 0:
            raise InvalidSpecification(f"Cloudlet {cloudlet_id} has negative file size", entity_id=cloudlet_id)

        self.cloudlet_id = cloudlet_id
        self.length = float(length)
        self.pes = pes
        self.file_size = file_size
        self.output_size = output_size
        self.utilization_model_cpu = utilization_model_cpu or FullUtilization()
        self.utilization_model_ram = utilization_model_ram or FullUtilization()
        self.utilization_model_bw = utilization_model_bw or FullUtilization()

        # Binding
        self.vm_id = vm_id
        self.broker_id: int = -1
        self.datacenter_id: int = -1
        self.host_id: Optional[int] = None

        # Execution tracking
        self.status = CloudletStatus.INSTANTIATED
        self.remaining_length = self.length
        self.submission_time: Optional[float] = None
        self.start_time: Optional[float] = None
        self.finish_time: Optional[float] = None
        self.failure_reason: Optional[str] = None

        # Charging, set by the datacenter that runs the cloudlet
        self.cost_per_second = 0.0
        self.cost_per_bandwidth = 0.0

    @property
    def executed_length(self) -> float:
        return self.length - self.remaining_length

    @property
    def is_finished(self) -> bool:
        return self.status == CloudletStatus.FINISHED

    @property
    def actual_cpu_time(self) -> float:
        """Seconds between execution start and finish."""
        if self.start_time is None or self.finish_time is None:
            return 0.0
        return self.finish_time - self.start_time

    @property
    def processing_cost(self) -> float:
        return (
            self.cost_per_second * self.actual_cpu_time
            + self.cost_per_bandwidth * (self.file_size + self.output_size)
        )

    def set_status(self, new_status: CloudletStatus, current_time: float) -> None:
        """Move to ``new_status``, stamping start/finish times as needed."""
        if new_status == self.status:
            return
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateTransition(
                f"Cloudlet {self.cloudlet_id} cannot go from {self.status.value} to {new_status.value}",
                entity_id=self.cloudlet_id,
            )
        previous = self.status
        self.status = new_status

        if new_status == CloudletStatus.RUNNING and self.start_time is None:
            self.start_time = current_time
        elif new_status == CloudletStatus.FINISHED:
            self.remaining_length = 0.0
            self.finish_time = current_time
        elif new_status in (CloudletStatus.FAILED, CloudletStatus.CANCELED):
            self.finish_time = current_time

        logger.debug(f"Cloudlet {self.cloudlet_id}: {previous.value} -> {new_status.value} "
                     f"at {current_time:.4f}s")

    def mark_failed(self, current_time: float, reason: str) -> None:
        self.failure_reason = reason
        self.set_status(CloudletStatus.FAILED, current_time)

    def advance(self, instructions: float) -> None:
        """Consume executed MI from the remaining length."""
        self.remaining_length = max(0.0, self.remaining_length - instructions)

    def __repr__(self) -> str:
        return (f"Cloudlet(id={self.cloudlet_id}, length={self.length:.0f}MI, "
                f"status={self.status.value}, vm={self.vm_id})")
