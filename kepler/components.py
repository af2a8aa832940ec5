"""Selection of the node component power source."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from kepler.rapl import PowerMSR, PowerSysfs
from kepler.sources import ApmXgeneSysfs, NodeComponentsEnergy, PowerEstimate

__all__ = ["ComponentPower"]

logger = logging.getLogger(__name__)


class _PowerSource(Protocol):
    def is_system_collection_supported(self) -> bool: ...

    def stop_power(self) -> None: ...

    def get_energy_from_dram(self) -> int: ...

    def get_energy_from_core(self) -> int: ...

    def get_energy_from_uncore(self) -> int: ...

    def get_energy_from_package(self) -> int: ...

    def get_node_components_energy(self) -> Dict[int, NodeComponentsEnergy]: ...


@dataclass
class ComponentPower:
    """Chooses the first working power source and delegates readings to it."""

    sysfs: Any = field(default_factory=PowerSysfs)
    msr: Any = field(default_factory=PowerMSR)
    apm_xgene: Any = field(default_factory=ApmXgeneSysfs)
    estimate: Any = field(default_factory=PowerEstimate)
    enabled_msr: bool = False
    active: Optional[_PowerSource] = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.active = self.sysfs

    def initialize(self) -> _PowerSource:
        """Select the power source in order sysfs, MSR, X-Gene, estimate."""
        if self.sysfs.is_system_collection_supported():
            logger.info("use sysfs to obtain power")
            self.active = self.sysfs
        elif self.msr.is_system_collection_supported() and self.enabled_msr:
            logger.info("use MSR to obtain power")
            self.active = self.msr
        elif self.apm_xgene.is_system_collection_supported():
            logger.info("use Ampere Xgene sysfs to obtain power")
            self.active = self.apm_xgene
        else:
            logger.info("Not able to obtain power, use estimate method")
            self.active = self.estimate
        return self.active

    def is_system_collection_supported(self) -> bool:
        return self.active.is_system_collection_supported()

    def stop_power(self) -> None:
        self.active.stop_power()

    def get_energy_from_dram(self) -> int:
        return self.active.get_energy_from_dram()

    def get_energy_from_core(self) -> int:
        return self.active.get_energy_from_core()

    def get_energy_from_uncore(self) -> int:
        return self.active.get_energy_from_uncore()

    def get_energy_from_package(self) -> int:
        return self.active.get_energy_from_package()

    def get_node_components_energy(self) -> Dict[int, NodeComponentsEnergy]:
        return self.active.get_node_components_energy()