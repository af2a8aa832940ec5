"""Node component energy readings from simple sources."""

from __future__ import annotations

import glob
import os
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

__all__ = [
    "NodeComponentsEnergy",
    "PowerDummy",
    "PowerEstimate",
    "ApmXgeneSysfs",
    "read_dram_gb",
]

_DRAM_PATTERN = re.compile(r"MemTotal:\s+([0-9]+)")
_POWER_LABEL_PATTERN = "/sys/class/hwmon/hwmon*/power*_label"
_CPU_POWER_LABEL = "CPU power"
_UJ_TO_MJ = 1000


@dataclass(frozen=True)
class NodeComponentsEnergy:
    """Energy per RAPL component in millijoules."""

    core: int = 0
    dram: int = 0
    uncore: int = 0
    pkg: int = 0

    def __str__(self) -> str:
        return (
            f"Pkg: {self.pkg} (Core: {self.core}, Uncore: {self.uncore}) "
            f"DRAM: {self.dram}"
        )


@dataclass
class PowerDummy:
    """Fixed readings for tests and functional checks."""

    supported: bool = False
    stopped: bool = field(default=False, init=False)

    def is_system_collection_supported(self) -> bool:
        return self.supported

    def stop_power(self) -> None:
        self.stopped = True

    def get_energy_from_dram(self) -> int:
        return 1

    def get_energy_from_core(self) -> int:
        return 5

    def get_energy_from_uncore(self) -> int:
        return 0

    def get_energy_from_package(self) -> int:
        return 8

    def get_node_components_energy(self) -> Dict[int, NodeComponentsEnergy]:
        return {0: NodeComponentsEnergy(pkg=8, core=5, dram=1)}


def read_dram_gb(meminfo_path: str = "/proc/meminfo") -> int:
    """Return total memory in GB read from a meminfo file.

    Raises ValueError if no MemTotal entry opens the file.
    """
    with open(meminfo_path, encoding="utf-8") as handle:
        text = handle.read()
    match = _DRAM_PATTERN.match(text)
    if match is None:
        raise ValueError("no memory info found")
    return int(match.group(1).strip()) // (1024 * 1024)


@dataclass
class PowerEstimate:
    """Energy estimated from elapsed time and per-thread power figures."""

    dram_in_gb: int = 0
    cpu_cores: int = field(default_factory=lambda: os.cpu_count() or 1)
    per_thread_min_power: float = 0.0
    per_thread_max_power: float = 0.0
    per_gb_power: float = 0.0
    clock: Callable[[], float] = time.monotonic
    start_time: float = field(init=False)

    def __post_init__(self) -> None:
        self.start_time = self.clock()

    def _elapsed(self) -> float:
        return self.clock() - self.start_time

    def is_system_collection_supported(self) -> bool:
        return False

    def stop_power(self) -> None:
        self.start_time = self.clock()

    def get_energy_from_dram(self) -> int:
        joules = int(self.dram_in_gb * self.per_gb_power * self._elapsed())
        return joules * 1000 // 3600

    def get_energy_from_core(self) -> int:
        average = (self.per_thread_min_power + self.per_thread_max_power) / 2
        joules = int(self.cpu_cores * self._elapsed() * average)
        return joules * 1000 // 3600

    def get_energy_from_uncore(self) -> int:
        return 0

    def get_energy_from_package(self) -> int:
        return self.get_energy_from_core()

    def get_node_components_energy(self) -> Dict[int, NodeComponentsEnergy]:
        core = self.get_energy_from_core()
        dram = self.get_energy_from_dram()
        return {0: NodeComponentsEnergy(core=core, dram=dram, uncore=0, pkg=core)}


@dataclass
class ApmXgeneSysfs:
    """CPU energy from the Ampere X-Gene hwmon power input."""

    label_pattern: str = _POWER_LABEL_PATTERN
    clock: Callable[[], float] = time.monotonic
    power_input_path: Optional[str] = None
    _curr_time: Optional[float] = field(default=None, init=False, repr=False)

    def is_system_collection_supported(self) -> bool:
        for label_file in sorted(glob.glob(self.label_pattern)):
            try:
                with open(label_file, encoding="utf-8") as handle:
                    label = handle.read().strip()
            except OSError:
                continue
            if label == _CPU_POWER_LABEL:
                self.power_input_path = label_file.replace("label", "input", 1)
                return True
        return False

    def stop_power(self) -> None:
        """Forget the last reading time so the next reading starts afresh."""
        self._curr_time = None

    def get_energy_from_dram(self) -> int:
        return 0

    def get_energy_from_core(self) -> int:
        """Return core energy in mJ since the previous call (0 on first call)."""
        now = self.clock()
        if self._curr_time is None:
            self._curr_time = now
            return 0
        seconds = now - self._curr_time
        self._curr_time = now
        if self.power_input_path is None:
            raise FileNotFoundError("no power input file detected")
        with open(self.power_input_path, encoding="utf-8") as handle:
            power = float(handle.read().strip())
        # power is reported in uJ/s
        return int(power * seconds) // _UJ_TO_MJ

    def get_energy_from_uncore(self) -> int:
        return 0

    def get_energy_from_package(self) -> int:
        return 0

    def get_node_components_energy(self) -> Dict[int, NodeComponentsEnergy]:
        try:
            core = self.get_energy_from_core()
        except (OSError, ValueError):
            core = 0
        dram = self.get_energy_from_dram()
        return {0: NodeComponentsEnergy(core=core, dram=dram, uncore=0, pkg=core)}