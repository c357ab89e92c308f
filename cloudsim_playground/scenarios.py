"""Constructor functions turning a ScenarioConfig into a runnable simulation.

Also holds the two canned scenarios: ``basic`` (plain time-shared run) and
``energy_aware`` (the same topology with linear host power models).
"""

from typing import Dict, List, Optional
from dataclasses import dataclass
from loguru import logger

from .core.broker import DatacenterBroker
from .core.datacenter import Datacenter, DatacenterCharacteristics, UtilizationMetric
from .core.power import LinearPowerModel, PowerModel, SpecPowerModel
from .core.resources import Host, VirtualMachine
from .core.simulation import Simulation
from .core.workload import (
    Cloudlet,
    FullUtilization,
    NullUtilization,
    StochasticUtilization,
    TraceUtilization,
    UtilizationModel,
)
from .evaluation.metrics import SimulationAnalyzer, SimulationResult
from .scheduling.allocation import create_allocation_policy
from .scheduling.cloudlet_scheduler import create_cloudlet_scheduler
from .utils.config import (
    CloudletConfig,
    DatacenterConfig,
    HostConfig,
    PowerModelConfig,
    ScenarioConfig,
    UtilizationModelConfig,
    VmConfig,
)


@dataclass
class ScenarioSetup:
    """A built, not yet started, simulation."""
    config: ScenarioConfig
    simulation: Simulation
    datacenter: Datacenter
    broker: DatacenterBroker


def create_power_model(config: Optional[PowerModelConfig]) -> Optional[PowerModel]:
    if config is None:
        return None
    if config.kind == "spec":
        return SpecPowerModel(config.table or [])
    return LinearPowerModel(config.static_power, config.max_power)


def create_utilization_model(config: UtilizationModelConfig, index: int = 0) -> UtilizationModel:
    """Build a utilization model; ``index`` offsets the stochastic seed per cloudlet."""
    if config.kind == "null":
        return NullUtilization()
    if config.kind == "stochastic":
        seed = None if config.seed is None else config.seed + index
        return StochasticUtilization(seed)
    if config.kind == "trace":
        if config.trace_file is not None:
            return TraceUtilization.from_file(config.trace_file, config.interval)
        return TraceUtilization(config.samples or [], config.interval)
    return FullUtilization()


def create_hosts(host_configs: List[HostConfig]) -> List[Host]:
    """Expand host groups into hosts with sequential ids."""
    hosts = []
    for group in host_configs:
        for _ in range(group.count):
            hosts.append(Host.with_uniform_pes(
                host_id=len(hosts),
                num_pes=group.pes,
                mips_per_pe=group.mips_per_pe,
                ram=group.ram,
                bandwidth=group.bandwidth,
                storage=group.storage,
                power_model=create_power_model(group.power_model),
            ))
    return hosts


def create_datacenter(config: DatacenterConfig) -> Datacenter:
    characteristics = DatacenterCharacteristics(
        architecture=config.architecture,
        os=config.os,
        vmm=config.vmm,
        time_zone=config.time_zone,
        cost_per_second=config.cost_per_second,
        cost_per_memory=config.cost_per_memory,
        cost_per_storage=config.cost_per_storage,
        cost_per_bandwidth=config.cost_per_bandwidth,
    )
    return Datacenter(
        name=config.name,
        hosts=create_hosts(config.hosts),
        allocation_policy=create_allocation_policy(config.allocation_policy),
        characteristics=characteristics,
        scheduling_interval=config.scheduling_interval,
        utilization_metric=UtilizationMetric(config.utilization_metric),
    )


def create_vms(vm_configs: List[VmConfig]) -> List[VirtualMachine]:
    vms = []
    for group in vm_configs:
        for _ in range(group.count):
            vms.append(VirtualMachine(
                vm_id=len(vms),
                mips=group.mips,
                pes=group.pes,
                ram=group.ram,
                bandwidth=group.bandwidth,
                size=group.size,
                cloudlet_scheduler=create_cloudlet_scheduler(group.cloudlet_scheduler),
                vmm=group.vmm,
            ))
    return vms


def create_cloudlets(cloudlet_configs: List[CloudletConfig]) -> List[Cloudlet]:
    cloudlets = []
    for group in cloudlet_configs:
        for _ in range(group.count):
            index = len(cloudlets)
            cloudlets.append(Cloudlet(
                cloudlet_id=index,
                length=group.length,
                pes=group.pes,
                file_size=group.file_size,
                output_size=group.output_size,
                utilization_model_cpu=create_utilization_model(group.utilization_cpu, index),
                utilization_model_ram=create_utilization_model(group.utilization_ram, index),
                utilization_model_bw=create_utilization_model(group.utilization_bw, index),
                vm_id=group.vm_id,
            ))
    return cloudlets


def build_simulation(config: ScenarioConfig) -> ScenarioSetup:
    """Create the simulation, its datacenter and broker, and submit the workload."""
    simulation = Simulation(name=config.name, record_trace=config.record_trace)

    datacenter = create_datacenter(config.datacenter)
    simulation.add_entity(datacenter)

    broker = DatacenterBroker("Broker_0", datacenter_id=datacenter.entity_id)
    simulation.add_entity(broker)
    broker.submit_vm_list(create_vms(config.vms))
    broker.submit_cloudlet_list(create_cloudlets(config.cloudlets))

    return ScenarioSetup(config, simulation, datacenter, broker)


def run_scenario(config: ScenarioConfig, until: Optional[float] = None) -> SimulationResult:
    """Build and run a scenario, returning the collected results."""
    setup = build_simulation(config)
    setup.simulation.run(until=until)
    return SimulationAnalyzer().collect(setup.simulation, setup.datacenter, setup.broker)


# Canned scenarios

CLOUDLET_LENGTHS = [10_000, 15_000, 20_000, 25_000, 30_000, 35_000, 40_000, 20_000]


def basic_scenario() -> ScenarioConfig:
    """4 hosts, 4 time-shared VMs, 8 cloudlets bound round-robin."""
    return ScenarioConfig(
        name="basic",
        description="Basic time-shared simulation: 4 hosts, 4 VMs, 8 cloudlets",
        datacenter=DatacenterConfig(
            name="Datacenter_0",
            hosts=[HostConfig(count=4, pes=4, mips_per_pe=1000, ram=8192,
                              bandwidth=10_000, storage=1_000_000)],
        ),
        vms=[VmConfig(count=4, mips=1000, pes=2, ram=2048, bandwidth=1000, size=10_000)],
        cloudlets=[CloudletConfig(length=length, pes=1, file_size=300, output_size=300)
                   for length in CLOUDLET_LENGTHS],
    )


def energy_aware_scenario() -> ScenarioConfig:
    """The basic topology with linear host power (35 W idle, 50 W max)."""
    config = basic_scenario()
    config.name = "energy_aware"
    config.description = "Energy-aware simulation: linear power model, 10s scheduling interval"
    config.datacenter.name = "PowerDatacenter_0"
    config.datacenter.scheduling_interval = 10.0
    for group in config.datacenter.hosts:
        group.power_model = PowerModelConfig(kind="linear", static_power=35.0, max_power=50.0)
    return config


SCENARIOS = {
    "basic": basic_scenario,
    "energy_aware": energy_aware_scenario,
}


def get_scenario(name: str) -> ScenarioConfig:
    """Return a fresh copy of a canned scenario."""
    if name not in SCENARIOS:
        raise ValueError(f"Unknown scenario: {name}. Available: {', '.join(SCENARIOS)}")
    logger.debug(f"Loading canned scenario {name}")
    return SCENARIOS[name]()


def list_scenarios() -> Dict[str, str]:
    return {name: factory().description for name, factory in SCENARIOS.items()}
