"""Pytest configuration and shared fixtures."""

from typing import List, Optional

import pytest

from cloudsim_playground.core import (
    Cloudlet,
    Datacenter,
    DatacenterBroker,
    EventType,
    Host,
    SimEntity,
    Simulation,
    VirtualMachine,
)
from cloudsim_playground.core.power import LinearPowerModel


class Recorder(SimEntity):
    """Entity that records every event addressed to it."""

    def __init__(self, name: str = "recorder"):
        super().__init__(name)
        self.received = []

    def _setup_event_handlers(self) -> None:
        for event_type in EventType:
            self.subscribe(event_type, self.received.append)


class Setup:
    """A small single-datacenter, single-broker simulation."""

    def __init__(self, simulation: Simulation, datacenter: Datacenter, broker: DatacenterBroker):
        self.simulation = simulation
        self.datacenter = datacenter
        self.broker = broker

    def run(self, until: Optional[float] = None) -> float:
        return self.simulation.run(until=until)


@pytest.fixture
def simulation() -> Simulation:
    return Simulation("test")


@pytest.fixture
def recorder(simulation) -> Recorder:
    entity = Recorder()
    simulation.add_entity(entity)
    return entity


@pytest.fixture
def small_host() -> Host:
    """1 host: 4 PEs x 1000 MIPS, 8192 MB RAM."""
    return Host.with_uniform_pes(0, num_pes=4, mips_per_pe=1000, ram=8192,
                                 bandwidth=10_000, storage=1_000_000)


@pytest.fixture
def power_host() -> Host:
    """Same host with a 35 W / 50 W linear power model."""
    return Host.with_uniform_pes(0, num_pes=4, mips_per_pe=1000, ram=8192,
                                 bandwidth=10_000, storage=1_000_000,
                                 power_model=LinearPowerModel(35.0, 50.0))


@pytest.fixture
def make_vm():
    """Factory for VMs with 2048 MB RAM, bw 1000 and size 10 000."""

    def _make_vm(vm_id: int, pes: int = 2, mips: float = 1000, scheduler=None) -> VirtualMachine:
        return VirtualMachine(vm_id, mips=mips, pes=pes, ram=2048, bandwidth=1000, size=10_000,
                              cloudlet_scheduler=scheduler)

    return _make_vm


@pytest.fixture
def build():
    """Factory wiring hosts, VMs and cloudlets into a runnable simulation."""

    def _build(
        hosts: List[Host],
        vms: List[VirtualMachine],
        cloudlets: List[Cloudlet],
        **datacenter_kwargs,
    ) -> Setup:
        simulation = Simulation("test")
        datacenter = Datacenter("Datacenter_0", hosts, **datacenter_kwargs)
        simulation.add_entity(datacenter)
        broker = DatacenterBroker("Broker_0", datacenter_id=datacenter.entity_id)
        simulation.add_entity(broker)
        broker.submit_vm_list(vms)
        broker.submit_cloudlet_list(cloudlets)
        return Setup(simulation, datacenter, broker)

    return _build
