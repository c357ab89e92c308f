"""End-to-end tests of the datacenter and broker lifecycle."""

import pytest

from cloudsim_playground.core import (
    Cloudlet,
    CloudletStatus,
    Datacenter,
    DatacenterBroker,
    EventType,
    Host,
    Simulation,
    UtilizationMetric,
    VmState,
)
from cloudsim_playground.core.power import LinearPowerModel
from cloudsim_playground.evaluation import SimulationAnalyzer
from cloudsim_playground.scheduling import SpaceSharedScheduler


def finish_times(cloudlets):
    return {c.cloudlet_id: c.finish_time for c in cloudlets}


def assert_capacity_respected(hosts):
    for host in hosts:
        vms = host.vms.values()
        assert sum(vm.pes for vm in vms) <= host.num_pes
        assert sum(vm.ram for vm in vms) <= host.ram
        assert sum(vm.bandwidth for vm in vms) <= host.bandwidth
        assert sum(vm.size for vm in vms) <= host.storage
        assert host.ram_used == sum(vm.ram for vm in vms)
        assert host.num_used_pes == sum(vm.pes for vm in vms)


class TestTimeSharedExecution:
    def test_two_cloudlets_share_one_vm(self, build, small_host, make_vm):
        cloudlets = [Cloudlet(0, 10_000), Cloudlet(1, 20_000)]
        setup = build([small_host], [make_vm(0)], cloudlets)

        final_clock = setup.run()

        broker = setup.broker
        assert finish_times(broker.cloudlets_received) == {0: 10.0, 1: 20.0}
        assert [c.cloudlet_id for c in broker.cloudlets_received] == [0, 1]
        assert final_clock == 20.0
        for cloudlet in broker.cloudlets_received:
            assert cloudlet.status == CloudletStatus.FINISHED
            assert cloudlet.remaining_length == 0
            assert cloudlet.finish_time >= cloudlet.start_time >= cloudlet.submission_time
            assert cloudlet.host_id == 0
            assert cloudlet.vm_id == 0

    def test_vms_destroyed_after_all_cloudlets_return(self, build, small_host, make_vm):
        vm = make_vm(0)
        setup = build([small_host], [vm], [Cloudlet(0, 10_000)])

        setup.run()

        assert vm.state == VmState.DESTROYED
        assert small_host.num_used_pes == 0
        assert small_host.ram_used == 0

    def test_round_robin_binding(self, build, make_vm):
        hosts = [Host.with_uniform_pes(i, 4, 1000, 8192, 10_000, 1_000_000) for i in range(2)]
        vms = [make_vm(i) for i in range(3)]
        cloudlets = [Cloudlet(i, 10_000) for i in range(5)]
        setup = build(hosts, vms, cloudlets)

        setup.run()

        assert [c.vm_id for c in cloudlets] == [0, 1, 2, 0, 1]
        assert [vm.host_id for vm in vms] == [None, None, None]
        assert setup.broker.placed_vm_ids == [0, 1, 2]

    def test_explicit_binding_is_kept(self, build, small_host, make_vm):
        cloudlets = [Cloudlet(0, 10_000, vm_id=1), Cloudlet(1, 10_000)]
        setup = build([small_host], [make_vm(0), make_vm(1)], cloudlets)

        setup.run()

        assert [c.vm_id for c in cloudlets] == [1, 0]

    def test_capacity_never_exceeded(self, build, make_vm):
        hosts = [Host.with_uniform_pes(i, 4, 1000, 4096, 10_000, 1_000_000) for i in range(2)]
        vms = [make_vm(i, pes=1) for i in range(6)]
        cloudlets = [Cloudlet(i, 5_000 * (i + 1)) for i in range(6)]
        setup = build(hosts, vms, cloudlets)
        setup.simulation.subscribe(lambda event: assert_capacity_respected(hosts))

        setup.run()

        # 4096 MB per host fits two 2048 MB VMs
        assert len(setup.broker.vms_created) == 4
        assert setup.broker.unplaced_vm_ids == [4, 5]
        assert len(setup.broker.cloudlets_received) == 6


class TestSpaceSharedExecution:
    def test_queued_cloudlet_starts_when_pe_frees(self, build, small_host, make_vm):
        vm = make_vm(0, scheduler=SpaceSharedScheduler())
        cloudlets = [Cloudlet(i, 10_000) for i in range(3)]
        setup = build([small_host], [vm], cloudlets)

        setup.run()

        assert finish_times(cloudlets) == {0: 10.0, 1: 10.0, 2: 20.0}
        assert cloudlets[2].start_time == 10.0
        assert cloudlets[2].submission_time == 0.0


class TestPlacementFailures:
    def test_oversized_vm_is_unplaced(self, build, small_host, make_vm):
        big = make_vm(1, pes=8)
        setup = build([small_host], [make_vm(0), big], [Cloudlet(0, 10_000)])

        setup.run()

        broker = setup.broker
        assert broker.unplaced_vm_ids == [1]
        assert broker.placed_vm_ids == [0]
        assert big.state == VmState.UNPLACED
        assert big.host is None
        assert finish_times(broker.cloudlets_received) == {0: 10.0}

    def test_cloudlet_bound_to_unplaced_vm_fails(self, build, small_host, make_vm):
        cloudlets = [Cloudlet(0, 10_000, vm_id=1), Cloudlet(1, 10_000, vm_id=0)]
        setup = build([small_host], [make_vm(0), make_vm(1, pes=8)], cloudlets)

        setup.run()

        broker = setup.broker
        assert [c.cloudlet_id for c in broker.cloudlets_failed] == [0]
        assert broker.cloudlets_failed[0].status == CloudletStatus.FAILED
        assert "not placed" in broker.cloudlets_failed[0].failure_reason
        assert [c.cloudlet_id for c in broker.cloudlets_received] == [1]

    def test_no_placed_vm_fails_every_cloudlet(self, build, small_host, make_vm):
        setup = build([small_host], [make_vm(0, pes=8)], [Cloudlet(0, 10_000), Cloudlet(1, 10_000)])

        setup.run()

        assert setup.broker.cloudlets_received == []
        assert [c.cloudlet_id for c in setup.broker.cloudlets_failed] == [0, 1]

    def test_cloudlet_needing_more_pes_than_vm_fails(self, build, small_host, make_vm):
        setup = build([small_host], [make_vm(0)], [Cloudlet(0, 10_000, pes=4)])

        setup.run()

        assert setup.broker.cloudlets_failed[0].cloudlet_id == 0


class TestMultipleBrokers:
    def test_same_vm_id_from_two_brokers(self, small_host, make_vm):
        simulation = Simulation("two-users")
        datacenter = Datacenter("Datacenter_0", [small_host])
        simulation.add_entity(datacenter)
        brokers = [DatacenterBroker(f"Broker_{i}", datacenter_id=datacenter.entity_id) for i in range(2)]
        for broker in brokers:
            simulation.add_entity(broker)
            broker.submit_vm_list([make_vm(0)])
            broker.submit_cloudlet_list([Cloudlet(0, 10_000)])

        resident = []
        simulation.subscribe(
            lambda e: resident.append((len(small_host.vms), small_host.num_used_pes, small_host.ram_used)),
            EventType.CLOUDLET_SUBMIT,
        )
        simulation.run()

        assert resident[-1] == (2, 4, 4096)
        for broker in brokers:
            vm = broker.vms_created[0]
            cloudlet = broker.cloudlets_received[0]
            assert vm.state == VmState.DESTROYED
            assert cloudlet.broker_id == broker.entity_id
            assert cloudlet.finish_time == 10.0
        assert brokers[0].vms_created[0] is not brokers[1].vms_created[0]
        assert small_host.vms == {}
        assert small_host.ram_used == 0
        assert small_host.num_used_pes == 0


class TestCloudletControl:
    def test_pause_and_resume(self, build, small_host, make_vm):
        cloudlet = Cloudlet(0, 10_000)
        setup = build([small_host], [make_vm(0)], [cloudlet])
        setup.broker.pause_cloudlet(0, delay=2.0)
        setup.broker.resume_cloudlet(0, delay=5.0)

        setup.run()

        assert cloudlet.status == CloudletStatus.FINISHED
        assert cloudlet.finish_time == pytest.approx(13.0)
        assert cloudlet.start_time == 0.0

    def test_cancel_running_cloudlet(self, build, small_host, make_vm):
        keep, drop = Cloudlet(0, 10_000), Cloudlet(1, 10_000)
        setup = build([small_host], [make_vm(0)], [keep, drop])
        setup.broker.cancel_cloudlet(1, delay=4.0)

        setup.run()

        broker = setup.broker
        assert broker.cloudlets_cancelled == [drop]
        assert drop.status == CloudletStatus.CANCELED
        assert drop.finish_time == 4.0
        assert drop.remaining_length == pytest.approx(6_000)
        assert broker.cloudlets_received == [keep]

    def test_cancel_before_start_never_submits(self, build, small_host, make_vm):
        dropped = Cloudlet(1, 10_000)
        setup = build([small_host], [make_vm(0)], [Cloudlet(0, 10_000), dropped])
        setup.broker.cancel_cloudlet(1)

        setup.run()

        submitted = [r.subject for r in setup.simulation.trace if r.event_type == "cloudlet_submit"]
        assert submitted == [0]
        assert dropped.status == CloudletStatus.CANCELED
        assert dropped.start_time is None


class TestHostFailure:
    def test_failure_fails_resident_cloudlets(self, build, make_vm):
        hosts = [Host.with_uniform_pes(i, 2, 1000, 8192, 10_000, 1_000_000) for i in range(2)]
        cloudlets = [Cloudlet(0, 10_000), Cloudlet(1, 10_000)]
        setup = build(hosts, [make_vm(0), make_vm(1)], cloudlets)
        setup.datacenter.fail_host(0, delay=5.0)

        setup.run()

        broker = setup.broker
        assert [c.cloudlet_id for c in broker.cloudlets_failed] == [0]
        assert broker.cloudlets_failed[0].finish_time == 5.0
        assert "host 0 failed" in broker.cloudlets_failed[0].failure_reason
        assert finish_times(broker.cloudlets_received) == {1: 10.0}
        assert not hosts[0].is_active
        assert hosts[0].num_used_pes == 0


class TestEnergyAccounting:
    def test_half_utilized_host_for_an_hour(self, build, power_host, make_vm):
        # One 2-PE VM on a 4-PE host keeps PE utilization at 50%
        setup = build([power_host], [make_vm(0)], [Cloudlet(0, 3_600_000)])

        final_clock = setup.run()

        assert final_clock == 3600.0
        assert power_host.energy_meter.energy_wh == pytest.approx(42.5)
        assert setup.datacenter.energy_wh == pytest.approx(42.5)

    def test_energy_accrues_up_to_run_horizon(self, build, power_host, make_vm):
        setup = build([power_host], [make_vm(0)], [Cloudlet(0, 3_600_000)])

        assert setup.run(until=1800.0) == 1800.0
        assert power_host.energy_meter.energy_wh == pytest.approx(42.5 / 2)
        assert setup.broker.cloudlets_received == []

    def test_failing_power_model_does_not_abort_run(self, build, make_vm):
        class TableOnlyAtIdle(LinearPowerModel):
            def get_power(self, utilization):
                return {0.0: self.static_power}[utilization]

        host = Host.with_uniform_pes(0, num_pes=4, mips_per_pe=1000, ram=8192, bandwidth=10_000,
                                     storage=1_000_000, power_model=TableOnlyAtIdle(35.0, 50.0))
        setup = build([host], [make_vm(0)], [Cloudlet(0, 3_600_000)])

        assert setup.run() == 3600.0
        assert setup.broker.cloudlets_received[0].status == CloudletStatus.FINISHED
        assert host.energy_meter.energy_wh == pytest.approx(35.0)
        assert host.energy_meter.lookup_failures >= 1

    def test_mips_weighted_utilization(self, build, power_host, make_vm):
        setup = build([power_host], [make_vm(0)], [Cloudlet(0, 3_600_000)],
                      utilization_metric=UtilizationMetric.MIPS_WEIGHTED)

        setup.run()

        # One 1-PE cloudlet uses 1000 of 4000 host MIPS
        assert power_host.energy_meter.average_utilization() == pytest.approx(0.25)
        assert power_host.energy_meter.energy_wh == pytest.approx(35 + 0.25 * 15)

    def test_scheduling_interval_adds_periodic_updates(self, build, power_host, make_vm):
        setup = build([power_host], [make_vm(0)], [Cloudlet(0, 35_000)], scheduling_interval=10.0)

        setup.run()

        updates = [r.time for r in setup.simulation.trace if r.event_type == "update_processing"]
        assert updates == [10.0, 20.0, 30.0, 35.0]
        assert setup.broker.cloudlets_received[0].finish_time == 35.0

    def test_no_interval_only_updates_at_completions(self, build, small_host, make_vm):
        setup = build([small_host], [make_vm(0)], [Cloudlet(0, 10_000), Cloudlet(1, 20_000)])

        setup.run()

        updates = [r.time for r in setup.simulation.trace if r.event_type == "update_processing"]
        assert updates == [10.0, 20.0]


class TestReporting:
    def test_report_is_idempotent(self, build, power_host, make_vm):
        setup = build([power_host], [make_vm(0)], [Cloudlet(0, 10_000), Cloudlet(1, 20_000)])
        setup.run()
        analyzer = SimulationAnalyzer()

        first = analyzer.collect(setup.simulation, setup.datacenter, setup.broker)
        second = analyzer.collect(setup.simulation, setup.datacenter, setup.broker)

        assert first == second
        assert [r.cloudlet_id for r in first.cloudlets] == [0, 1]
        assert first.cloudlets[1].cpu_time == 20.0
        assert first.cloudlets[0].host_id == 0

    def test_runs_are_deterministic(self, build, make_vm):
        def run_once():
            hosts = [Host.with_uniform_pes(i, 4, 1000, 8192, 10_000, 1_000_000,
                                           power_model=LinearPowerModel(35, 50)) for i in range(2)]
            vms = [make_vm(i) for i in range(3)]
            cloudlets = [Cloudlet(i, 7_000 * (i % 4 + 1)) for i in range(9)]
            setup = build(hosts, vms, cloudlets, scheduling_interval=5.0)
            setup.run()
            received = [(c.cloudlet_id, c.finish_time) for c in setup.broker.cloudlets_received]
            return received, setup.simulation.trace, setup.datacenter.energy_wh

        assert run_once() == run_once()

    def test_observer_sees_every_event_type_used(self, build, small_host, make_vm):
        setup = build([small_host], [make_vm(0)], [Cloudlet(0, 10_000)])
        seen = set()
        setup.simulation.subscribe(lambda event: seen.add(event.event_type))

        setup.run()

        assert {
            EventType.VM_CREATE,
            EventType.VM_CREATE_ACK,
            EventType.CLOUDLET_SUBMIT,
            EventType.UPDATE_PROCESSING,
            EventType.CLOUDLET_RETURN,
            EventType.VM_DESTROY,
        } == seen
