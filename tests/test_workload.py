import pytest

from kepler.lr import ModelError
from kepler.sidecar import EstimatorError
from kepler.workload import (
    WorkloadEnergy,
    estimate_component_powers,
    estimate_total_power,
    estimate_workload_energy,
    metrics_to_array,
)


def _component_func(powers):
    def func(usage_values, metadata_values):
        return powers

    return func


def _total_func(powers):
    def func(usage_values, metadata_values):
        return powers

    return func


def _failing(exc):
    def func(usage_values, metadata_values):
        raise exc

    return func


def test_metrics_to_array_keeps_ids_aligned():
    metrics = {"a": [1, 2], "b": [3, 4], "c": [5, 6]}
    values, ids = metrics_to_array(metrics)
    assert len(values) == len(ids) == 3
    for workload_id, row in zip(ids, values):
        assert row == [float(v) for v in metrics[workload_id]]


def test_metrics_to_array_empty():
    assert metrics_to_array({}) == ([], [])


def test_estimate_total_power_without_function():
    assert estimate_total_power(None, [[1.0]], []) is None


def test_estimate_total_power_empty_result_is_invalid():
    assert estimate_total_power(_total_func([]), [[1.0]], []) is None


@pytest.mark.parametrize("exc", [ModelError("x"), EstimatorError("y")])
def test_estimate_total_power_error_is_invalid(exc):
    assert estimate_total_power(_failing(exc), [[1.0]], []) is None


def test_estimate_total_power_returns_values():
    assert estimate_total_power(_total_func([3.0, 4.0]), [[1.0], [2.0]], []) == [3.0, 4.0]


def test_estimate_component_powers_converts_to_millijoules():
    func = _component_func({"pkg": [1.0, 2.0], "core": [0.5, 1.0], "dram": [0.25, 0.0]})
    result = estimate_component_powers(func, [[1.0], [2.0]], [])
    assert len(result) == 2
    assert result[0].pkg == 1000
    assert result[0].core == 500
    assert result[0].dram == 250
    assert result[1].pkg == 2000


def test_estimate_component_powers_fills_missing_rows_with_zero():
    func = _component_func({"pkg": [1.0]})
    result = estimate_component_powers(func, [[1.0], [2.0]], [])
    assert result[1].pkg == 0
    assert result[1].core == 0


def test_estimate_component_powers_unavailable():
    assert estimate_component_powers(None, [[1.0]], []) is None
    assert estimate_component_powers(_failing(ModelError("bad")), [[1.0]], []) is None


def test_estimate_workload_energy_without_component_model():
    assert estimate_workload_energy({"a": [1.0]}, _total_func([1.0]), None) == {}


def test_estimate_workload_energy_other_from_total():
    metrics = {"containerA": [1.0]}
    comp = _component_func({"pkg": [1.0], "core": [1.0], "dram": [0.5]})
    result = estimate_workload_energy(metrics, _total_func([5000.0]), comp, ["Sandy Bridge"])
    energy = result["containerA"]
    assert energy.pkg == 1000
    assert energy.dram == 500
    assert energy.other == 5000 - energy.pkg - energy.dram


def test_estimate_workload_energy_other_never_negative():
    metrics = {1: [1.0]}
    comp = _component_func({"pkg": [1.0], "core": [1.0]})
    result = estimate_workload_energy(metrics, _total_func([3.0]), comp)
    assert result[1].other == 0


def test_estimate_workload_energy_without_total_model():
    metrics = {"a": [1.0], "b": [2.0]}
    comp = _component_func({"pkg": [1.0, 2.0], "core": [1.0, 2.0]})
    result = estimate_workload_energy(metrics, None, comp)
    assert set(result) == {"a", "b"}
    assert all(energy.other == 0 for energy in result.values())
    assert isinstance(result["a"], WorkloadEnergy)
    assert result["a"].core == result["a"].pkg