import sys

import pytest

from kepler.rapl import (
    MSR_DRAM_ENERGY_STATUS,
    MSR_PKG_ENERGY_STATUS,
    MSR_PP0_ENERGY_STATUS,
    MSR_PP1_ENERGY_STATUS,
    MSR_RAPL_POWER_UNIT,
    PowerMSR,
    PowerSysfs,
)
from kepler.sources import NodeComponentsEnergy


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


def _build_sysfs(tmp_path, packages):
    powercap = tmp_path / "powercap"
    cpu_root = tmp_path / "cpu"
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text("".join(f"processor\t: {i}\n" for i in range(len(packages))))
    for index, events in enumerate(packages):
        _write(cpu_root / f"cpu{index}" / "topology" / "physical_package_id", f"{index}\n")
        package_dir = powercap / f"intel-rapl:{index}"
        _write(package_dir / "name", f"package-{index}\n")
        _write(package_dir / "energy_uj", f"{events['package']}\n")
        others = [(name, value) for name, value in events.items() if name != "package"]
        for sub, (name, value) in enumerate(others):
            event_dir = package_dir / f"intel-rapl:{index}:{sub}"
            _write(event_dir / "name", f"{name}\n")
            _write(event_dir / "energy_uj", f"{value}\n")
    return PowerSysfs(
        powercap_root=str(powercap),
        cpu_root=str(cpu_root),
        cpuinfo_path=str(cpuinfo),
    )


def test_sysfs_detects_event_paths(tmp_path):
    sysfs = _build_sysfs(tmp_path, [{"package": 9000, "core": 7000, "dram": 2000}])
    assert set(sysfs.event_paths) == {"package-0"}
    assert set(sysfs.event_paths["package-0"]) == {"package-0", "core", "dram"}
    assert sysfs.has_event("core")
    assert not sysfs.has_event("uncore")


def test_sysfs_node_components_energy(tmp_path):
    sysfs = _build_sysfs(tmp_path, [{"package": 9000, "core": 7000, "dram": 2000}])
    energies = sysfs.get_node_components_energy()
    assert energies == {0: NodeComponentsEnergy(core=7, dram=2, uncore=0, pkg=9)}
    assert sysfs.get_energy_from_core() == energies[0].core
    assert sysfs.get_energy_from_dram() == energies[0].dram


def test_sysfs_sums_over_packages(tmp_path):
    sysfs = _build_sysfs(
        tmp_path,
        [
            {"package": 9000, "core": 7000, "dram": 2000},
            {"package": 8000, "core": 4000, "dram": 3000},
        ],
    )
    energies = sysfs.get_node_components_energy()
    assert set(energies) == {0, 1}
    assert sysfs.get_energy_from_core() == sum(e.core for e in energies.values())
    assert sysfs.get_energy_from_dram() == sum(e.dram for e in energies.values())


def test_sysfs_missing_event_raises(tmp_path):
    sysfs = _build_sysfs(tmp_path, [{"package": 9000, "core": 7000}])
    with pytest.raises(LookupError):
        sysfs.get_energy_from_uncore()
    # package entries are named "package-N", so no exact "package" event exists
    with pytest.raises(LookupError):
        sysfs.get_energy_from_package()


def test_sysfs_supported_only_with_energy_file(tmp_path):
    sysfs = _build_sysfs(tmp_path, [{"package": 9000, "core": 7000}])
    assert sysfs.is_system_collection_supported() is True
    empty = PowerSysfs(
        powercap_root=str(tmp_path / "none"),
        cpu_root=str(tmp_path / "none"),
        cpuinfo_path=str(tmp_path / "none" / "cpuinfo"),
    )
    assert empty.event_paths == {}
    assert empty.is_system_collection_supported() is False
    with pytest.raises(LookupError):
        empty.get_energy_from_core()


def test_sysfs_skips_invalid_energy(tmp_path):
    sysfs = _build_sysfs(tmp_path, [{"package": 9000, "core": "garbage"}])
    assert sysfs.read_event_energy("core") == {}
    assert sysfs.get_energy_from_core() == 0


def _write_msr(path, registers):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as handle:
        for offset, value in registers.items():
            handle.seek(offset)
            handle.write(value.to_bytes(8, sys.byteorder))


def _build_msr(tmp_path, registers):
    _write(tmp_path / "cpu0" / "topology" / "physical_package_id", "0\n")
    _write_msr(tmp_path / "dev" / "0" / "msr", registers)
    return PowerMSR(
        msr_path_template=str(tmp_path / "dev" / "%d" / "msr"),
        topology_path_template=str(tmp_path / "cpu%d" / "topology" / "physical_package_id"),
        cpu_count=1,
    )


FULL_REGISTERS = {
    MSR_RAPL_POWER_UNIT: 0,
    MSR_PKG_ENERGY_STATUS: 100,
    MSR_PP0_ENERGY_STATUS: 100,
    MSR_PP1_ENERGY_STATUS: 40,
    MSR_DRAM_ENERGY_STATUS: 20,
}


def test_msr_reads_register_values(tmp_path):
    msr = _build_msr(tmp_path, FULL_REGISTERS)
    try:
        assert msr.is_system_collection_supported() is True
        assert msr.packages == [0]
        assert msr.read_msr(0, MSR_PKG_ENERGY_STATUS) == 100
        assert msr.read_msr(0, MSR_DRAM_ENERGY_STATUS) == 20
        assert msr.cpu_energy_units[0] == 1.0
    finally:
        msr.stop_power()


def test_msr_core_is_scaled_to_millijoules(tmp_path):
    msr = _build_msr(tmp_path, FULL_REGISTERS)
    try:
        msr.init_units()
        # package energy is not scaled, the other domains are multiplied by 1000
        assert msr.get_energy_from_core() == msr.get_energy_from_package() * 1000
        energies = msr.get_node_components_energy()
        assert energies[0].core == msr.get_energy_from_core()
        assert energies[0].uncore == msr.get_energy_from_uncore()
        assert energies[0].dram == msr.get_energy_from_dram()
        assert energies[0].pkg == msr.get_energy_from_package()
    finally:
        msr.stop_power()


def test_msr_short_read_raises(tmp_path):
    msr = _build_msr(tmp_path, {MSR_RAPL_POWER_UNIT: 0})
    try:
        msr.init_units()
        with pytest.raises(OSError):
            msr.get_energy_from_package()
        assert msr.get_node_components_energy() == {0: NodeComponentsEnergy()}
    finally:
        msr.stop_power()


def test_msr_unsupported_without_topology(tmp_path):
    msr = PowerMSR(
        msr_path_template=str(tmp_path / "dev" / "%d" / "msr"),
        topology_path_template=str(tmp_path / "cpu%d" / "physical_package_id"),
        cpu_count=1,
    )
    assert msr.is_system_collection_supported() is False
    with pytest.raises(OSError):
        msr.init_units()


def test_msr_read_after_stop_raises(tmp_path):
    msr = _build_msr(tmp_path, FULL_REGISTERS)
    msr.init_units()
    msr.stop_power()
    with pytest.raises(LookupError):
        msr.read_msr(0, MSR_PKG_ENERGY_STATUS)