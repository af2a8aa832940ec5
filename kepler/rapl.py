"""RAPL energy readings from the powercap sysfs tree and from MSRs."""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Dict

from kepler.sources import NodeComponentsEnergy
from kepler.utils import determine_host_byte_order

__all__ = ["PowerSysfs", "PowerMSR"]

logger = logging.getLogger(__name__)

_ENERGY_FILE = "energy_uj"
_NUM_RAPL_EVENTS = 3

DRAM_EVENT = "dram"
CORE_EVENT = "core"
UNCORE_EVENT = "uncore"
PACKAGE_EVENT = "package"

_UNSIGNED = re.compile(r"[0-9]+")

MSR_RAPL_POWER_UNIT = 0x606
MSR_PKG_ENERGY_STATUS = 0x611
MSR_DRAM_ENERGY_STATUS = 0x619
MSR_PP0_ENERGY_STATUS = 0x639
MSR_PP1_ENERGY_STATUS = 0x641


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8", errors="replace") as handle:
        return handle.read()


@dataclass
class PowerSysfs:
    """Energy per RAPL domain read from the powercap sysfs interface."""

    powercap_root: str = "/sys/class/powercap/intel-rapl"
    cpu_root: str = "/sys/devices/system/cpu"
    cpuinfo_path: str = "/proc/cpuinfo"
    event_paths: Dict[str, Dict[str, str]] = field(default_factory=dict, init=False)
    stopped: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.detect_event_paths()

    def _package_path(self, package: int) -> str:
        return os.path.join(self.powercap_root, f"intel-rapl:{package}") + os.sep

    def _event_path(self, package: int, event: int) -> str:
        return (
            os.path.join(
                self.powercap_root,
                f"intel-rapl:{package}",
                f"intel-rapl:{package}:{event}",
            )
            + os.sep
        )

    def _num_cpus(self) -> int:
        try:
            text = _read_text(self.cpuinfo_path)
        except OSError as exc:
            logger.debug("%s", exc)
            return 0
        return text.count("processor")

    def _num_packages(self) -> int:
        packages = set()
        for cpu in range(self._num_cpus()):
            path = os.path.join(
                self.cpu_root, f"cpu{cpu}", "topology", "physical_package_id"
            )
            try:
                text = _read_text(path)
            except OSError:
                break
            try:
                packages.add(int(text.strip()))
            except ValueError:
                continue
        return len(packages)

    def detect_event_paths(self) -> Dict[str, Dict[str, str]]:
        """Discover package and event directories; return the mapping found."""
        self.event_paths = {}
        for package in range(self._num_packages()):
            package_path = self._package_path(package)
            try:
                package_name = _read_text(package_path + "name").strip()
            except OSError:
                continue
            subtree = {package_name: package_path}
            for event in range(_NUM_RAPL_EVENTS):
                event_path = self._event_path(package, event)
                try:
                    event_name = _read_text(event_path + "name").strip()
                except OSError:
                    continue
                subtree[event_name] = event_path
            self.event_paths[package_name] = subtree
        return self.event_paths

    def has_event(self, event: str) -> bool:
        """Return True if any package exposes an event of exactly this name."""
        return any(event in subtree for subtree in self.event_paths.values())

    def read_event_energy(self, event_name: str) -> Dict[str, int]:
        """Return energy in mJ per package for events whose name starts with event_name."""
        energy: Dict[str, int] = {}
        for package_id, subtree in self.event_paths.items():
            for event, path in subtree.items():
                if not event.startswith(event_name):
                    continue
                try:
                    text = _read_text(path + _ENERGY_FILE).strip()
                except OSError as exc:
                    logger.debug("%s", exc)
                    continue
                if not _UNSIGNED.fullmatch(text):
                    logger.debug("invalid energy value %r in %s", text, path)
                    continue
                energy[package_id] = int(text) // 1000
        return energy

    def _get_energy(self, event: str) -> int:
        if not self.has_event(event):
            raise LookupError(f"could not read RAPL energy for {event}")
        return sum(self.read_event_energy(event).values())

    def is_system_collection_supported(self) -> bool:
        try:
            _read_text(self._package_path(0) + _ENERGY_FILE)
        except OSError:
            return False
        return True

    def stop_power(self) -> None:
        """Mark the collection as stopped; sysfs files hold no open handles."""
        self.stopped = True

    def get_energy_from_dram(self) -> int:
        return self._get_energy(DRAM_EVENT)

    def get_energy_from_core(self) -> int:
        return self._get_energy(CORE_EVENT)

    def get_energy_from_uncore(self) -> int:
        return self._get_energy(UNCORE_EVENT)

    def get_energy_from_package(self) -> int:
        return self._get_energy(PACKAGE_EVENT)

    def get_node_components_energy(self) -> Dict[int, NodeComponentsEnergy]:
        pkg_energies = self.read_event_energy(PACKAGE_EVENT)
        core_energies = self.read_event_energy(CORE_EVENT)
        dram_energies = self.read_event_energy(DRAM_EVENT)
        uncore_energies = self.read_event_energy(UNCORE_EVENT)

        result: Dict[int, NodeComponentsEnergy] = {}
        for package_id, pkg_energy in pkg_energies.items():
            suffix = package_id.split("-")[-1]
            try:
                index = int(suffix)
            except ValueError:
                index = 0
            result[index] = NodeComponentsEnergy(
                core=core_energies.get(package_id, 0),
                dram=dram_energies.get(package_id, 0),
                uncore=uncore_energies.get(package_id, 0),
                pkg=pkg_energy,
            )
        return result


@dataclass
class PowerMSR:
    """Energy per RAPL domain read from model-specific registers."""

    msr_path_template: str = "/dev/cpu/%d/msr"
    topology_path_template: str = (
        "/sys/devices/system/cpu/cpu%d/topology/physical_package_id"
    )
    cpu_count: int = field(default_factory=lambda: os.cpu_count() or 1)
    package_map: Dict[int, int] = field(default_factory=dict, init=False)
    cpu_energy_units: Dict[int, float] = field(default_factory=dict, init=False)
    dram_energy_units: Dict[int, float] = field(default_factory=dict, init=False)
    power_units: float = field(default=0.0, init=False)
    time_units: float = field(default=0.0, init=False)
    _fds: Dict[int, int] = field(default_factory=dict, init=False, repr=False)

    @property
    def packages(self) -> list:
        """Package ids found on the host, in ascending order."""
        return sorted(self.package_map)

    def _map_package_and_core(self) -> None:
        self.package_map = {}
        for core in range(self.cpu_count):
            path = self.topology_path_template % core
            try:
                text = _read_text(path)
            except OSError as exc:
                raise OSError(f"failed to read topology {path}: {exc}") from exc
            self.package_map[int(text.strip())] = core

    def _open_all(self) -> None:
        for package_id, core in self.package_map.items():
            path = self.msr_path_template % core
            try:
                self._fds[package_id] = os.open(path, os.O_RDONLY)
            except OSError as exc:
                raise OSError(f"failed to open path {path}: {exc}") from exc

    def read_msr(self, package_id: int, msr: int) -> int:
        """Return the 64-bit value of an MSR on the given package."""
        fd = self._fds.get(package_id)
        if fd is None:
            raise LookupError(f"no cpu core or msr found in package {package_id}")
        data = os.pread(fd, 8, msr)
        if len(data) != 8:
            raise OSError(f"wrong bytes: {len(data)}")
        return int.from_bytes(data, determine_host_byte_order())

    def init_units(self) -> None:
        """Open the MSR devices and read the energy units of each package."""
        self.stop_power()
        self._map_package_and_core()
        self._open_all()
        self.cpu_energy_units = {}
        self.dram_energy_units = {}
        for package_id in self.packages:
            try:
                result = self.read_msr(package_id, MSR_RAPL_POWER_UNIT)
            except (OSError, LookupError) as exc:
                raise OSError(f"failed to read power unit: {exc}") from exc
            self.power_units = math.pow(0.5, result & 0xF)
            self.time_units = math.pow(0.5, (result >> 16) & 0xF)
            self.cpu_energy_units[package_id] = 1 / math.pow(2, (result & 0x1F00) >> 8)
            self.dram_energy_units[package_id] = math.pow(0.5, (result >> 8) & 0x1F)

    def _read_pkg(self, package_id: int) -> int:
        result = self.read_msr(package_id, MSR_PKG_ENERGY_STATUS)
        return int(self.cpu_energy_units[package_id] * result)

    def _read_core(self, package_id: int) -> int:
        result = self.read_msr(package_id, MSR_PP0_ENERGY_STATUS)
        return int(self.cpu_energy_units[package_id] * result * 1000)

    def _read_uncore(self, package_id: int) -> int:
        result = self.read_msr(package_id, MSR_PP1_ENERGY_STATUS)
        return int(self.cpu_energy_units[package_id] * result * 1000)

    def _read_dram(self, package_id: int) -> int:
        result = self.read_msr(package_id, MSR_DRAM_ENERGY_STATUS)
        return int(self.dram_energy_units[package_id] * result * 1000)

    def _read_all(self, reader: Callable[[int], int]) -> int:
        return sum(reader(package_id) for package_id in self.packages)

    def is_system_collection_supported(self) -> bool:
        try:
            self.init_units()
        except (OSError, ValueError, LookupError) as exc:
            logger.debug("%s", exc)
            return False
        return True

    def stop_power(self) -> None:
        for fd in self._fds.values():
            try:
                os.close(fd)
            except OSError:
                pass
        self._fds = {}

    def get_energy_from_dram(self) -> int:
        return self._read_all(self._read_dram)

    def get_energy_from_core(self) -> int:
        return self._read_all(self._read_core)

    def get_energy_from_uncore(self) -> int:
        return self._read_all(self._read_uncore)

    def get_energy_from_package(self) -> int:
        return self._read_all(self._read_pkg)

    def get_node_components_energy(self) -> Dict[int, NodeComponentsEnergy]:
        def safe(reader: Callable[[int], int], package_id: int) -> int:
            try:
                return reader(package_id)
            except (OSError, LookupError):
                return 0

        return {
            package_id: NodeComponentsEnergy(
                core=safe(self._read_core, package_id),
                dram=safe(self._read_dram, package_id),
                uncore=safe(self._read_uncore, package_id),
                pkg=safe(self._read_pkg, package_id),
            )
            for package_id in self.packages
        }