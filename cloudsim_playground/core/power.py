"""Host power models and energy accounting."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple
from dataclasses import dataclass
import math
import numpy as np
from loguru import logger

from .errors import InvalidSpecification, PowerModelLookupFailure


SECONDS_PER_HOUR = 3600.0


def clamp_utilization(utilization: float) -> float:
    if math.isnan(utilization):
        raise PowerModelLookupFailure("Utilization is NaN")
    return min(1.0, max(0.0, utilization))


class PowerModel(ABC):
    """Maps a CPU utilization fraction to instantaneous power draw in Watts."""

    @property
    @abstractmethod
    def static_power(self) -> float:
        """Power drawn at 0% utilization."""

    @property
    @abstractmethod
    def max_power(self) -> float:
        """Power drawn at 100% utilization."""

    @abstractmethod
    def get_power(self, utilization: float) -> float:
        """Power in Watts; utilization outside [0, 1] is clamped."""


class LinearPowerModel(PowerModel):
    """P(u) = static + (max - static) * u."""

    def __init__(self, static_power: float, max_power: float):
        if static_power < 0 or max_power < static_power:
            raise InvalidSpecification(
                f"Linear power model needs 0 <= static ({static_power}) <= max ({max_power})"
            )
        self._static_power = float(static_power)
        self._max_power = float(max_power)

    @property
    def static_power(self) -> float:
        return self._static_power

    @property
    def max_power(self) -> float:
        return self._max_power

    def get_power(self, utilization: float) -> float:
        u = clamp_utilization(utilization)
        if u == 0.0:
            return self._static_power
        if u == 1.0:
            return self._max_power
        return self._static_power + (self._max_power - self._static_power) * u

    def __repr__(self) -> str:
        return f"LinearPowerModel(static={self._static_power}W, max={self._max_power}W)"


class SpecPowerModel(PowerModel):
    """Table-driven model from SPECpower-style measurements.

    ``power_table`` holds the draw at 0%, 10%, ..., 100% utilization; values
    in between are interpolated linearly.
    """

    def __init__(self, power_table: Sequence[float]):
        table = np.asarray(power_table, dtype=float)
        if table.shape != (11,):
            raise InvalidSpecification(f"SPECpower table needs 11 entries, got {table.size}")
        if np.any(table < 0) or np.any(np.diff(table) < 0):
            raise InvalidSpecification("SPECpower table must be non-negative and non-decreasing")
        self._table = table
        self._points = np.linspace(0.0, 1.0, 11)

    @property
    def static_power(self) -> float:
        return float(self._table[0])

    @property
    def max_power(self) -> float:
        return float(self._table[-1])

    def get_power(self, utilization: float) -> float:
        u = clamp_utilization(utilization)
        return float(np.interp(u, self._points, self._table))


@dataclass(frozen=True)
class EnergySample:
    """Energy accrued over one interval of constant utilization."""
    start: float
    end: float
    utilization: float
    power: float
    energy_wh: float


class EnergyMeter:
    """Integrates power over time for one host.

    Accrual only moves forward from the last recorded state change, using the
    utilization that held during the interval.
    """

    def __init__(self, power_model: Optional[PowerModel], owner_id: int = -1, start_time: float = 0.0):
        self.power_model = power_model
        self.owner_id = owner_id
        self.utilization = 0.0
        self.last_update = start_time
        self.start_time = start_time
        self.energy_wh = 0.0
        self.samples: List[EnergySample] = []
        self.lookup_failures = 0

    def power_at(self, utilization: float) -> float:
        """Power for a utilization, falling back to static power on lookup failure."""
        if self.power_model is None:
            return 0.0
        try:
            return self.power_model.get_power(utilization)
        except Exception as e:
            self.lookup_failures += 1
            logger.warning(
                f"Power lookup failed on host {self.owner_id} at utilization {utilization}: {e}; "
                f"using static power {self.power_model.static_power}W"
            )
            return self.power_model.static_power

    def accrue(self, now: float) -> float:
        """Accrue energy up to ``now`` and return the amount added in Wh."""
        if now <= self.last_update:
            return 0.0
        power = self.power_at(self.utilization)
        energy = power * (now - self.last_update) / SECONDS_PER_HOUR
        self.samples.append(EnergySample(self.last_update, now, self.utilization, power, energy))
        self.energy_wh += energy
        self.last_update = now
        return energy

    def set_utilization(self, now: float, utilization: float) -> None:
        """Close the current interval at ``now`` and start one at ``utilization``."""
        self.accrue(now)
        try:
            self.utilization = clamp_utilization(utilization)
        except PowerModelLookupFailure:
            logger.warning(f"Host {self.owner_id} reported NaN utilization; treated as idle")
            self.utilization = 0.0

    @property
    def elapsed(self) -> float:
        return self.last_update - self.start_time

    def average_utilization(self) -> float:
        """Time-weighted utilization over the metered period."""
        if self.elapsed <= 0:
            return self.utilization
        weighted = sum(s.utilization * (s.end - s.start) for s in self.samples)
        return weighted / self.elapsed

    def average_power(self) -> float:
        """Mean power in Watts over the metered period."""
        if self.elapsed <= 0:
            return self.power_at(self.utilization)
        return self.energy_wh * SECONDS_PER_HOUR / self.elapsed

    def intervals(self) -> List[Tuple[float, float, float]]:
        return [(s.start, s.end, s.utilization) for s in self.samples]
