"""Platform power from ACPI/hwmon sensors and CPU core frequencies."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

__all__ = [
    "ACPI",
    "find_acpi_power_path",
    "read_cpu_core_frequency",
    "read_power_from_sensor",
]

logger = logging.getLogger(__name__)

FREQ_PATH_DIR = "/sys/devices/system/cpu/cpufreq/"
HWMON_POWER_PATH = "/sys/class/hwmon/hwmon2/device/"
ACPI_POWER_PATH = "/sys/devices/LNXSYSTM:00"
ACPI_POWER_FILE_PREFIX = "power"
ACPI_POWER_FILE_SUFFIX = "_average"
POLLING_INTERVAL = 3.0
SENSOR_ID_PREFIX = "energy"

_SKIPPED_FRAGMENTS = ("INTL", "PNP", "input", "device:", "wakeup")


def _skip_dir(name: str) -> bool:
    return name == "power" or any(fragment in name for fragment in _SKIPPED_FRAGMENTS)


def find_acpi_power_path(root: str = ACPI_POWER_PATH) -> Optional[str]:
    """Return the directory of the last power average file under root.

    Directories that hold no platform sensor are skipped and symbolic links
    are not followed. Returns None if root cannot be walked or nothing is
    found. The returned path ends with a separator.
    """
    found: Optional[str] = None

    def walk(path: str) -> None:
        nonlocal found
        with os.scandir(path) as entries:
            ordered = sorted(entries, key=lambda entry: entry.name)
        for entry in ordered:
            if entry.is_dir(follow_symlinks=False):
                if not _skip_dir(entry.name):
                    walk(entry.path)
            elif ACPI_POWER_FILE_SUFFIX in entry.name:
                found = os.path.join(path, "")

    try:
        if not _skip_dir(os.path.basename(os.path.normpath(root))):
            walk(root)
    except OSError as exc:
        logger.debug("Could not find any ACPI power meter path: %s", exc)
        return None
    return found


def read_cpu_core_frequency(freq_dir: str = FREQ_PATH_DIR) -> Dict[int, int]:
    """Return the current frequency of each cpufreq policy, keyed by index.

    Unreadable policies are left out; unparsable ones read as 0.
    """
    try:
        count = len(os.listdir(freq_dir))
    except OSError as exc:
        logger.warning("%s", exc)
        return {}
    frequencies: Dict[int, int] = {}
    for index in range(count):
        path = os.path.join(freq_dir, f"policy{index}", "scaling_cur_freq")
        try:
            with open(path, encoding="utf-8") as handle:
                text = handle.read().strip()
        except OSError:
            continue
        frequencies[index] = int(text) if text.isdigit() else 0
    return frequencies


def read_power_from_sensor(power_path: str, num_cpus: int) -> Dict[str, float]:
    """Return the power of each sensor in milliwatts.

    Sensors are read from power1_average upwards until a file is missing.
    Raises ValueError if a sensor value is not an unsigned integer.
    """
    power: Dict[str, float] = {}
    for index in range(1, num_cpus + 1):
        path = f"{power_path}{ACPI_POWER_FILE_PREFIX}{index}{ACPI_POWER_FILE_SUFFIX}"
        try:
            with open(path, encoding="utf-8") as handle:
                text = handle.read().strip()
        except OSError:
            break
        if not text.isdigit():
            raise ValueError(f"invalid sensor value {text!r} in {path}")
        # the sensor reports microwatts
        power[f"{SENSOR_ID_PREFIX}{index}"] = int(text) / 1000
    return power


@dataclass
class ACPI:
    """Power meter accumulating platform energy from ACPI/hwmon sensors."""

    hwmon_power_path: str = HWMON_POWER_PATH
    acpi_root: str = ACPI_POWER_PATH
    freq_dir: str = FREQ_PATH_DIR
    num_cpus: int = field(default_factory=lambda: os.cpu_count() or 1)
    polling_interval: float = POLLING_INTERVAL
    power_path: Optional[str] = field(default=None, init=False)
    collect_energy: bool = field(default=False, init=False)
    _system_energy: Dict[str, float] = field(default_factory=dict, init=False, repr=False)
    _cpu_core_frequency: Dict[int, int] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.power_path = self.hwmon_power_path
        if self.is_power_supported():
            self.collect_energy = True
            logger.debug("Using the HWMON power meter path: %s", self.power_path)
            return
        self.power_path = find_acpi_power_path(self.acpi_root)
        if self.power_path:
            self.collect_energy = True
            logger.debug("Using the ACPI power meter path: %s", self.power_path)
        else:
            logger.info("Could not find any ACPI power meter path. Is it a VM?")

    def _collect(self, is_ebpf_enabled: bool) -> bool:
        """Take one sample; return False when there is nothing left to do."""
        if not is_ebpf_enabled:
            frequencies = read_cpu_core_frequency(self.freq_dir)
            with self._lock:
                self._cpu_core_frequency.update(frequencies)
        if self.collect_energy:
            try:
                sensor_power = read_power_from_sensor(self.power_path or "", self.num_cpus)
            except ValueError:
                logger.info(
                    "Disabling the ACPI power meter collection. "
                    "This might be related to a kernel bug."
                )
                self.collect_energy = False
            else:
                with self._lock:
                    for sensor_id, power in sensor_power.items():
                        # mJ = mW * s
                        self._system_energy[sensor_id] = (
                            self._system_energy.get(sensor_id, 0.0)
                            + power * self.polling_interval
                        )
        return not (is_ebpf_enabled and not self.collect_energy)

    def _loop(self, is_ebpf_enabled: bool) -> None:
        while not self._stop.is_set():
            if not self._collect(is_ebpf_enabled):
                return
            if self._stop.wait(self.polling_interval):
                return

    def run(self, is_ebpf_enabled: bool) -> None:
        """Start sampling in a background thread."""
        self._thread = threading.Thread(
            target=self._loop, args=(is_ebpf_enabled,), daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the background sampling."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(self.polling_interval, 1.0) * 2)

    def get_cpu_core_frequency(self) -> Dict[int, int]:
        """Return a copy of the latest CPU core frequencies."""
        with self._lock:
            return dict(self._cpu_core_frequency)

    def is_power_supported(self) -> bool:
        """Return True if the first power sensor file can be read."""
        if not self.power_path:
            return False
        path = f"{self.power_path}{ACPI_POWER_FILE_PREFIX}1{ACPI_POWER_FILE_SUFFIX}"
        try:
            with open(path, "rb") as handle:
                handle.read()
        except OSError:
            return False
        return True

    def get_energy_from_host(self) -> Dict[str, float]:
        """Return the accumulated energy per sensor in mJ and reset the counters."""
        with self._lock:
            energy = dict(self._system_energy)
            for sensor_id in self._system_energy:
                self._system_energy[sensor_id] = 0.0
        return energy