"""Utility modules for the simulator."""

from .config import (
    load_config,
    save_config,
    save_results,
    ScenarioConfig,
    DatacenterConfig,
    HostConfig,
    VmConfig,
    CloudletConfig,
    PowerModelConfig,
    UtilizationModelConfig,
)

__all__ = [
    "load_config",
    "save_config",
    "save_results",
    "ScenarioConfig",
    "DatacenterConfig",
    "HostConfig",
    "VmConfig",
    "CloudletConfig",
    "PowerModelConfig",
    "UtilizationModelConfig",
]
