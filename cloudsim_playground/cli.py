"""Command-line interface for the cloud workload simulator."""

import sys
import typer
from typing import Optional
from pathlib import Path
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from loguru import logger

from .evaluation.metrics import SimulationAnalyzer, SimulationResult
from .scenarios import SCENARIOS, build_simulation, get_scenario, list_scenarios
from .utils.config import load_config, save_config, save_results

app = typer.Typer(name="cloudsim-playground", help="Discrete-event cloud workload simulator")
console = Console()


def setup_logging(verbose: bool) -> None:
    """Route loguru output: DEBUG to a log file plus INFO on the console when verbose."""
    logger.remove()
    if verbose:
        logger.add("logs/simulation_{time}.log", level="DEBUG")
        logger.add(lambda msg: console.print(msg, style="dim", end=""), level="INFO")
    else:
        logger.add(sys.stderr, level="WARNING")


@app.command()
def run(
    scenario: str = typer.Argument("basic", help="Canned scenario name"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Scenario configuration file"),
    until: Optional[float] = typer.Option(None, "--until", "-u", help="Stop at this simulated time"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run a canned scenario or a scenario configuration file."""

    setup_logging(verbose)

    if config is not None:
        scenario_config = load_config(config)
        console.print(f"📋 Loaded configuration from {config}")
    else:
        try:
            scenario_config = get_scenario(scenario)
        except ValueError as e:
            console.print(f"❌ {e}", style="bold red")
            raise typer.Exit(code=1)
        console.print(f"📋 Using canned scenario [bold]{scenario}[/bold]")

    setup = build_simulation(scenario_config)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(f"Simulating {scenario_config.name}...", total=None)
        final_clock = setup.simulation.run(until=until)
        progress.update(task, description=f"Simulation finished at {final_clock:.2f}s")

    analyzer = SimulationAnalyzer()
    result = analyzer.collect(setup.simulation, setup.datacenter, setup.broker)
    analysis = analyzer.summarize(result)

    display_cloudlet_results(result)
    display_energy_report(result)
    display_results_summary(analysis)

    if output:
        analysis['result'] = result.to_dict()
        save_results(analysis, output, analyzer.cloudlets_frame(result), analyzer.hosts_frame(result))
        console.print(f"💾 Results saved to {output}")

    console.print("✅ Simulation completed successfully!", style="bold green")


@app.command()
def scenarios() -> None:
    """List the canned scenarios."""

    table = Table(title="Canned Scenarios")
    table.add_column("Name", style="cyan")
    table.add_column("Description", style="green")

    for name, description in list_scenarios().items():
        table.add_row(name, description)

    console.print(table)


@app.command()
def export(
    scenario: str = typer.Argument(..., help="Canned scenario name"),
    path: Path = typer.Argument(..., help="Destination file (.yaml, .yml or .json)"),
) -> None:
    """Write a canned scenario as a configuration file."""

    if scenario not in SCENARIOS:
        console.print(f"❌ Unknown scenario: {scenario}", style="bold red")
        raise typer.Exit(code=1)
    try:
        save_config(get_scenario(scenario), path)
    except ValueError as e:
        console.print(f"❌ {e}", style="bold red")
        raise typer.Exit(code=1)
    console.print(f"💾 Scenario {scenario} written to {path}")


def _fmt(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.2f}"


def display_cloudlet_results(result: SimulationResult) -> None:
    """Display finished and failed cloudlets."""

    table = Table(title="Cloudlet Execution Results")
    table.add_column("Cloudlet ID", style="cyan")
    table.add_column("Status")
    table.add_column("Datacenter ID")
    table.add_column("VM ID")
    table.add_column("Host ID")
    table.add_column("CPU Time", style="green")
    table.add_column("Start Time", style="yellow")
    table.add_column("Finish Time", style="yellow")

    records = result.cloudlets + result.failed_cloudlets + result.cancelled_cloudlets
    for record in records:
        style = "green" if record.status == "FINISHED" else "red"
        table.add_row(
            str(record.cloudlet_id),
            f"[{style}]{record.status}[/{style}]",
            str(record.datacenter_id),
            str(record.vm_id),
            str(record.host_id),
            _fmt(record.cpu_time),
            _fmt(record.start_time),
            _fmt(record.finish_time),
        )

    console.print(table)


def display_energy_report(result: SimulationResult) -> None:
    """Display per-host utilization and energy."""

    table = Table(title=f"Energy Consumption Report ({result.clock:.2f}s simulated)")
    table.add_column("Host ID", style="cyan")
    table.add_column("PEs")
    table.add_column("Utilization (%)", style="green")
    table.add_column("Avg Power (W)", style="yellow")
    table.add_column("Energy (Wh)", style="yellow")

    for host in result.hosts:
        table.add_row(
            str(host.host_id),
            f"{host.used_pes}/{host.total_pes}",
            f"{host.utilization_percent:.2f}",
            f"{host.average_power_w:.2f}",
            f"{host.energy_wh:.4f}",
        )
    table.add_row("Total", "", "", "", f"{result.total_energy_wh:.4f}", style="bold")

    console.print(table)


def display_results_summary(analysis: dict) -> None:
    """Display simulation results summary."""

    table = Table(title="Simulation Results Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Unit", style="yellow")

    summary = analysis.get('summary', {})
    cloudlet_metrics = analysis.get('cloudlet_metrics', {})
    energy_metrics = analysis.get('energy_metrics', {})

    metrics = [
        ("Simulation Duration", f"{summary.get('simulation_duration', 0):.2f}", "seconds"),
        ("Finished Cloudlets", f"{summary.get('finished_cloudlets', 0)}", "count"),
        ("Failed Cloudlets", f"{summary.get('failed_cloudlets', 0)}", "count"),
        ("Unplaced VMs", f"{summary.get('unplaced_vms', 0)}", "count"),
        ("Average CPU Time", f"{cloudlet_metrics.get('avg_cpu_time', 0):.2f}", "seconds"),
        ("Makespan", f"{cloudlet_metrics.get('makespan', 0):.2f}", "seconds"),
        ("VM Memory + Storage Cost", f"{summary.get('vm_cost', 0):.2f}", "units"),
        ("Total Cost", f"{summary.get('total_cost', 0):.2f}", "units"),
        ("Total Energy", f"{energy_metrics.get('total_energy_wh', 0):.4f}", "Wh"),
    ]

    for metric, value, unit in metrics:
        table.add_row(metric, value, unit)

    console.print(table)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
