"""Result collection and analysis."""

from .metrics import (
    SimulationAnalyzer,
    MetricsCalculator,
    SimulationResult,
    CloudletRecord,
    HostEnergyReport,
)

__all__ = [
    "SimulationAnalyzer",
    "MetricsCalculator",
    "SimulationResult",
    "CloudletRecord",
    "HostEnergyReport",
]
