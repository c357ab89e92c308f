"""Simulation result collection and metrics calculation."""

from typing import Dict, List, Any, Optional
from dataclasses import asdict, dataclass, field
import numpy as np
import pandas as pd
from loguru import logger

from ..core.broker import DatacenterBroker
from ..core.datacenter import Datacenter
from ..core.resources import Host
from ..core.simulation import Simulation
from ..core.workload import Cloudlet


@dataclass(frozen=True)
class CloudletRecord:
    """Outcome of one cloudlet as seen by its broker."""
    cloudlet_id: int
    status: str
    vm_id: Optional[int]
    host_id: Optional[int]
    datacenter_id: int
    length: float
    pes: int
    cpu_time: float
    submission_time: Optional[float]
    start_time: Optional[float]
    finish_time: Optional[float]
    cost: float
    failure_reason: Optional[str] = None

    @classmethod
    def from_cloudlet(cls, cloudlet: Cloudlet) -> "CloudletRecord":
        return cls(
            cloudlet_id=cloudlet.cloudlet_id,
            status=cloudlet.status.value.upper(),
            vm_id=cloudlet.vm_id,
            host_id=cloudlet.host_id,
            datacenter_id=cloudlet.datacenter_id,
            length=cloudlet.length,
            pes=cloudlet.pes,
            cpu_time=cloudlet.actual_cpu_time,
            submission_time=cloudlet.submission_time,
            start_time=cloudlet.start_time,
            finish_time=cloudlet.finish_time,
            cost=cloudlet.processing_cost,
            failure_reason=cloudlet.failure_reason,
        )


@dataclass(frozen=True)
class HostEnergyReport:
    """Per-host utilization and energy over the metered period."""
    host_id: int
    state: str
    used_pes: int
    total_pes: int
    ram_used: int
    vm_count: int
    utilization_percent: float
    average_power_w: float
    energy_wh: float

    @classmethod
    def from_host(cls, host: Host) -> "HostEnergyReport":
        meter = host.energy_meter
        return cls(
            host_id=host.host_id,
            state=host.state.value,
            used_pes=host.num_used_pes,
            total_pes=host.num_pes,
            ram_used=host.ram_used,
            vm_count=len(host.vms),
            utilization_percent=meter.average_utilization() * 100.0,
            average_power_w=meter.average_power(),
            energy_wh=meter.energy_wh,
        )


@dataclass
class SimulationResult:
    """Everything a caller needs to report on one finished run."""
    name: str
    clock: float
    cloudlets: List[CloudletRecord] = field(default_factory=list)
    failed_cloudlets: List[CloudletRecord] = field(default_factory=list)
    cancelled_cloudlets: List[CloudletRecord] = field(default_factory=list)
    placed_vm_ids: List[int] = field(default_factory=list)
    unplaced_vm_ids: List[int] = field(default_factory=list)
    hosts: List[HostEnergyReport] = field(default_factory=list)
    vm_cost: float = 0.0

    @property
    def total_energy_wh(self) -> float:
        return sum(h.energy_wh for h in self.hosts)

    @property
    def total_cost(self) -> float:
        return sum(c.cost for c in self.cloudlets) + self.vm_cost

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['total_energy_wh'] = self.total_energy_wh
        data['total_cost'] = self.total_cost
        return data


class MetricsCalculator:
    """Aggregate statistics over collected records."""

    def calculate_cloudlet_metrics(self, records: List[CloudletRecord]) -> Dict[str, float]:
        """Timing statistics over finished cloudlets."""
        if not records:
            return {
                'avg_cpu_time': 0.0,
                'p95_cpu_time': 0.0,
                'avg_wait_time': 0.0,
                'makespan': 0.0,
                'throughput': 0.0,
            }

        cpu_times = np.array([r.cpu_time for r in records])
        wait_times = np.array([
            (r.start_time or 0.0) - (r.submission_time or 0.0) for r in records
        ])
        finish_times = np.array([r.finish_time or 0.0 for r in records])
        makespan = float(np.max(finish_times))

        return {
            'avg_cpu_time': float(np.mean(cpu_times)),
            'p95_cpu_time': float(np.percentile(cpu_times, 95)),
            'avg_wait_time': float(np.mean(wait_times)),
            'makespan': makespan,
            'throughput': len(records) / makespan if makespan > 0 else 0.0,
        }

    def calculate_energy_metrics(self, hosts: List[HostEnergyReport]) -> Dict[str, float]:
        """Energy and utilization statistics across hosts."""
        if not hosts:
            return {
                'total_energy_wh': 0.0,
                'avg_power_w': 0.0,
                'avg_utilization_percent': 0.0,
                'peak_utilization_percent': 0.0,
            }

        utilization = np.array([h.utilization_percent for h in hosts])
        return {
            'total_energy_wh': float(sum(h.energy_wh for h in hosts)),
            'avg_power_w': float(np.mean([h.average_power_w for h in hosts])),
            'avg_utilization_percent': float(np.mean(utilization)),
            'peak_utilization_percent': float(np.max(utilization)),
        }


class SimulationAnalyzer:
    """Collects in-memory results from a run and derives reports.

    ``collect`` only reads simulation state, so repeated calls without a
    clock advance return equal results.
    """

    def __init__(self):
        self.calculator = MetricsCalculator()
        self.logger = logger.bind(component="SimulationAnalyzer")

    def collect(
        self,
        simulation: Simulation,
        datacenter: Datacenter,
        broker: DatacenterBroker,
    ) -> SimulationResult:
        result = SimulationResult(
            name=simulation.name,
            clock=simulation.clock,
            cloudlets=[CloudletRecord.from_cloudlet(c) for c in broker.cloudlets_received],
            failed_cloudlets=[CloudletRecord.from_cloudlet(c) for c in broker.cloudlets_failed],
            cancelled_cloudlets=[CloudletRecord.from_cloudlet(c) for c in broker.cloudlets_cancelled],
            placed_vm_ids=broker.placed_vm_ids,
            unplaced_vm_ids=broker.unplaced_vm_ids,
            hosts=[HostEnergyReport.from_host(h) for h in datacenter.hosts],
            vm_cost=sum(vm.cost for vm in broker.vms_created),
        )
        self.logger.debug(f"Collected {len(result.cloudlets)} finished, "
                          f"{len(result.failed_cloudlets)} failed cloudlets at {result.clock:.2f}s")
        return result

    def summarize(self, result: SimulationResult) -> Dict[str, Any]:
        """Summary counts plus cloudlet and energy statistics."""
        total = len(result.cloudlets) + len(result.failed_cloudlets) + len(result.cancelled_cloudlets)
        summary = {
            'summary': {
                'name': result.name,
                'simulation_duration': result.clock,
                'total_cloudlets': total,
                'finished_cloudlets': len(result.cloudlets),
                'failed_cloudlets': len(result.failed_cloudlets),
                'cancelled_cloudlets': len(result.cancelled_cloudlets),
                'success_rate': len(result.cloudlets) / total if total else 1.0,
                'placed_vms': len(result.placed_vm_ids),
                'unplaced_vms': len(result.unplaced_vm_ids),
                'vm_cost': result.vm_cost,
                'total_cost': result.total_cost,
            },
            'cloudlet_metrics': self.calculator.calculate_cloudlet_metrics(result.cloudlets),
            'energy_metrics': self.calculator.calculate_energy_metrics(result.hosts),
        }
        self.logger.info(f"Summary for {result.name}: {len(result.cloudlets)}/{total} cloudlets "
                         f"finished, {result.total_energy_wh:.4f} Wh")
        return summary

    def cloudlets_frame(self, result: SimulationResult) -> pd.DataFrame:
        """All cloudlet records, finished first, as a DataFrame."""
        records = result.cloudlets + result.failed_cloudlets + result.cancelled_cloudlets
        columns = list(CloudletRecord.__dataclass_fields__)
        return pd.DataFrame([asdict(r) for r in records], columns=columns)

    def hosts_frame(self, result: SimulationResult) -> pd.DataFrame:
        columns = list(HostEnergyReport.__dataclass_fields__)
        return pd.DataFrame([asdict(h) for h in result.hosts], columns=columns)
