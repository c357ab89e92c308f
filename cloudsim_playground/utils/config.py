"""Configuration management utilities."""

from typing import Dict, Any, List, Literal, Optional
from pathlib import Path
import yaml
import json
import pandas as pd
from pydantic import BaseModel, Field, field_validator
from loguru import logger


class PowerModelConfig(BaseModel):
    """Host power model parameters, in Watts."""

    kind: Literal["linear", "spec"] = Field(default="linear", description="Power model shape")
    static_power: float = Field(default=35.0, ge=0, description="Power at 0% utilization")
    max_power: float = Field(default=50.0, ge=0, description="Power at 100% utilization")
    table: Optional[List[float]] = Field(
        default=None, description="SPECpower table at 0%, 10%, ..., 100% (kind=spec)"
    )

    @field_validator("max_power")
    @classmethod
    def validate_max_power(cls, v: float, info) -> float:
        static = info.data.get("static_power")
        if static is not None and v < static:
            raise ValueError(f"max_power ({v}) must be >= static_power ({static})")
        return v

    @field_validator("table")
    @classmethod
    def validate_table(cls, v: Optional[List[float]]) -> Optional[List[float]]:
        if v is not None and len(v) != 11:
            raise ValueError(f"SPECpower table needs 11 entries, got {len(v)}")
        return v


class UtilizationModelConfig(BaseModel):
    """Utilization model for one resource dimension of a cloudlet."""

    kind: Literal["full", "null", "stochastic", "trace"] = Field(default="full")
    seed: Optional[int] = Field(default=None, description="Seed for the stochastic model")
    samples: Optional[List[float]] = Field(default=None, description="Inline trace in percent")
    trace_file: Optional[Path] = Field(default=None, description="Trace file, one percent value per line")
    interval: float = Field(default=300.0, gt=0, description="Seconds between trace samples")


class HostConfig(BaseModel):
    """A group of identical hosts."""

    count: int = Field(default=1, ge=1, description="Number of identical hosts")
    pes: int = Field(default=4, ge=1, description="Processing elements per host")
    mips_per_pe: float = Field(default=1000.0, gt=0)
    ram: int = Field(default=8192, ge=0, description="RAM in MB")
    bandwidth: int = Field(default=10000, ge=0)
    storage: int = Field(default=1_000_000, ge=0, description="Storage in MB")
    power_model: Optional[PowerModelConfig] = None


class DatacenterConfig(BaseModel):
    """Datacenter characteristics, host pool and policies."""

    name: str = "Datacenter_0"
    architecture: str = "x86"
    os: str = "Linux"
    vmm: str = "Xen"
    time_zone: float = 10.0
    cost_per_second: float = Field(default=3.0, ge=0)
    cost_per_memory: float = Field(default=0.05, ge=0)
    cost_per_storage: float = Field(default=0.001, ge=0)
    cost_per_bandwidth: float = Field(default=0.0, ge=0)
    scheduling_interval: float = Field(default=0.0, ge=0, description="Periodic update interval, 0 disables")
    allocation_policy: Literal["first_fit", "best_fit", "spread"] = "first_fit"
    utilization_metric: Literal["pe_count", "mips_weighted"] = "pe_count"
    hosts: List[HostConfig] = Field(default_factory=lambda: [HostConfig()], min_length=1)


class VmConfig(BaseModel):
    """A group of identical VMs."""

    count: int = Field(default=1, ge=1)
    mips: float = Field(default=1000.0, gt=0, description="MIPS per PE")
    pes: int = Field(default=2, ge=1)
    ram: int = Field(default=2048, ge=0)
    bandwidth: int = Field(default=1000, ge=0)
    size: int = Field(default=10000, ge=0, description="Image size in MB")
    vmm: str = "Xen"
    cloudlet_scheduler: Literal["time_shared", "space_shared"] = "time_shared"


class CloudletConfig(BaseModel):
    """A group of identical cloudlets."""

    count: int = Field(default=1, ge=1)
    length: float = Field(..., gt=0, description="Length in MI")
    pes: int = Field(default=1, ge=1)
    file_size: int = Field(default=300, ge=0)
    output_size: int = Field(default=300, ge=0)
    vm_id: Optional[int] = Field(default=None, description="Explicit VM binding, round-robin when unset")
    utilization_cpu: UtilizationModelConfig = Field(default_factory=UtilizationModelConfig)
    utilization_ram: UtilizationModelConfig = Field(default_factory=UtilizationModelConfig)
    utilization_bw: UtilizationModelConfig = Field(default_factory=UtilizationModelConfig)


class ScenarioConfig(BaseModel):
    """Main configuration class: one datacenter, one broker."""

    name: str = "scenario"
    description: str = ""
    record_trace: bool = True
    datacenter: DatacenterConfig = Field(default_factory=DatacenterConfig)
    vms: List[VmConfig] = Field(default_factory=list)
    cloudlets: List[CloudletConfig] = Field(default_factory=list)


def load_config(config_path: Path) -> ScenarioConfig:
    """Load configuration from file."""

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        if config_path.suffix.lower() in ['.yaml', '.yml']:
            config_data = yaml.safe_load(f)
        elif config_path.suffix.lower() == '.json':
            config_data = json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    config = ScenarioConfig.model_validate(config_data or {})

    logger.info(f"Configuration loaded: {config.name}, "
                f"{sum(h.count for h in config.datacenter.hosts)} hosts, "
                f"{sum(v.count for v in config.vms)} VMs, "
                f"{sum(c.count for c in config.cloudlets)} cloudlets")

    return config


def save_config(config: ScenarioConfig, config_path: Path) -> None:
    """Save configuration to file."""

    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode="json", exclude_none=True)

    with open(config_path, 'w') as f:
        if config_path.suffix.lower() in ['.yaml', '.yml']:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)
        elif config_path.suffix.lower() == '.json':
            json.dump(config_dict, f, indent=2)
        else:
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

    logger.info(f"Configuration saved to {config_path}")


def save_results(
    analysis: Dict[str, Any],
    output_dir: Path,
    cloudlets: Optional[pd.DataFrame] = None,
    hosts: Optional[pd.DataFrame] = None,
) -> None:
    """Save simulation results to files."""

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    results_file = output_dir / "simulation_results.json"
    with open(results_file, 'w') as f:
        json.dump(analysis, f, indent=2, default=str)

    logger.info(f"Results saved to {results_file}")

    if cloudlets is not None:
        cloudlets.to_csv(output_dir / "cloudlets.csv", index=False)
    if hosts is not None:
        hosts.to_csv(output_dir / "hosts.csv", index=False)
        logger.info(f"Host energy report saved to {output_dir / 'hosts.csv'}")
