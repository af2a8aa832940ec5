"""Container and process energy from trained power models.

The model functions take a matrix of usage values, one row per workload,
and return powers in the same row order. The helpers here keep the
workload ids aligned with those rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, List, Mapping, Optional, Sequence, Tuple

from kepler.lr import ModelError
from kepler.model import fill_rapl_power, get_component_power
from kepler.sidecar import EstimatorError
from kepler.sources import NodeComponentsEnergy

__all__ = [
    "WorkloadEnergy",
    "metrics_to_array",
    "estimate_total_power",
    "estimate_component_powers",
    "estimate_workload_energy",
]

logger = logging.getLogger(__name__)

TotalPowerFunc = Callable[[Sequence[Sequence[float]], Sequence[str]], List[float]]
ComponentPowerFunc = Callable[
    [Sequence[Sequence[float]], Sequence[str]], Dict[str, List[float]]
]

_ESTIMATE_ERRORS = (ModelError, EstimatorError)


@dataclass(frozen=True)
class WorkloadEnergy:
    """Dynamic energy of one container or process per component, in mJ."""

    core: int = 0
    dram: int = 0
    uncore: int = 0
    pkg: int = 0
    other: int = 0


def metrics_to_array(
    metrics: Mapping[Hashable, Sequence[float]],
) -> Tuple[List[List[float]], List[Hashable]]:
    """Split workload usage values into a matrix and the matching id list."""
    values: List[List[float]] = []
    ids: List[Hashable] = []
    for workload_id, usage in metrics.items():
        values.append([float(value) for value in usage])
        ids.append(workload_id)
    return values, ids


def estimate_total_power(
    total_func: Optional[TotalPowerFunc],
    usage_values: Sequence[Sequence[float]],
    metadata_values: Sequence[str],
) -> Optional[List[float]]:
    """Return the estimated total power per row, or None if unavailable."""
    if total_func is None:
        return None
    try:
        powers = total_func(usage_values, metadata_values)
    except _ESTIMATE_ERRORS as exc:
        logger.debug("total power estimation failed: %s", exc)
        return None
    if not powers:
        return None
    return list(powers)


def estimate_component_powers(
    component_func: Optional[ComponentPowerFunc],
    usage_values: Sequence[Sequence[float]],
    metadata_values: Sequence[str],
) -> Optional[List[NodeComponentsEnergy]]:
    """Return the estimated RAPL energy per row, or None if unavailable."""
    if component_func is None:
        return None
    try:
        powers = component_func(usage_values, metadata_values)
    except _ESTIMATE_ERRORS as exc:
        logger.debug("component power estimation failed: %s", exc)
        return None
    return [
        fill_rapl_power(
            get_component_power(powers, "pkg", index),
            get_component_power(powers, "core", index),
            get_component_power(powers, "uncore", index),
            get_component_power(powers, "dram", index),
        )
        for index in range(len(usage_values))
    ]


def estimate_workload_energy(
    metrics: Mapping[Hashable, Sequence[float]],
    total_func: Optional[TotalPowerFunc],
    component_func: Optional[ComponentPowerFunc],
    metadata_values: Sequence[str] = (),
) -> Dict[Hashable, WorkloadEnergy]:
    """Return the estimated energy of each workload keyed by its id.

    Returns an empty mapping when no component model is available. The
    "other" energy is the total power less package and DRAM, and stays 0
    without a usable total model.
    """
    usage_values, ids = metrics_to_array(metrics)
    total_powers = estimate_total_power(total_func, usage_values, metadata_values)
    component_powers = estimate_component_powers(
        component_func, usage_values, metadata_values
    )
    if component_powers is None:
        logger.debug("No component power model")
        return {}

    result: Dict[Hashable, WorkloadEnergy] = {}
    for index, (workload_id, component) in enumerate(zip(ids, component_powers)):
        other = 0
        if total_powers is not None and index < len(total_powers):
            other = max(0, int(total_powers[index]) - component.pkg - component.dram)
        result[workload_id] = WorkloadEnergy(
            core=component.core,
            dram=component.dram,
            uncore=component.uncore,
            pkg=component.pkg,
            other=other,
        )
    return result