from kepler.components import ComponentPower
from kepler.sources import NodeComponentsEnergy, PowerDummy, PowerEstimate


def _make(sysfs=False, msr=False, apm=False, enabled_msr=False):
    return ComponentPower(
        sysfs=PowerDummy(supported=sysfs),
        msr=PowerDummy(supported=msr),
        apm_xgene=PowerDummy(supported=apm),
        estimate=PowerEstimate(clock=lambda: 0.0),
        enabled_msr=enabled_msr,
    )


def test_sysfs_preferred_when_supported():
    power = _make(sysfs=True, msr=True, apm=True, enabled_msr=True)
    assert power.initialize() is power.sysfs
    assert power.active is power.sysfs


def test_msr_chosen_when_enabled():
    power = _make(msr=True, apm=True, enabled_msr=True)
    assert power.initialize() is power.msr


def test_msr_skipped_when_not_enabled():
    power = _make(msr=True, apm=True, enabled_msr=False)
    assert power.initialize() is power.apm_xgene


def test_estimate_is_fallback():
    power = _make()
    assert power.initialize() is power.estimate
    assert power.is_system_collection_supported() is False
    assert power.get_energy_from_uncore() == 0
    assert power.get_node_components_energy() == {
        0: NodeComponentsEnergy(core=0, dram=0, uncore=0, pkg=0)
    }


def test_readings_are_delegated():
    power = _make(sysfs=True)
    power.initialize()
    assert power.is_system_collection_supported() is True
    assert power.get_energy_from_dram() == 1
    assert power.get_energy_from_core() == 5
    assert power.get_energy_from_uncore() == 0
    assert power.get_energy_from_package() == 8
    assert power.get_node_components_energy() == {
        0: NodeComponentsEnergy(pkg=8, core=5, dram=1)
    }


def test_default_source_before_initialize_is_sysfs():
    power = _make(apm=True)
    assert power.active is power.sysfs
    power.stop_power()
    assert power.get_energy_from_core() == power.sysfs.get_energy_from_core()