"""Node power estimation through trained power models.

Builds estimate functions backed by the local linear regressor or the
estimator sidecar, and turns their raw predictions into node energy values.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from kepler.lr import LinearRegressor, ModelError
from kepler.sidecar import EstimatorError, EstimatorSidecarConnector
from kepler.sources import NodeComponentsEnergy
from kepler.types import ModelConfig, ModelOutputType

__all__ = [
    "ESTIMATOR_SIDECAR_SOCKET",
    "ESTIMATOR_ACPI_SENSOR_ID",
    "DEFAULT_ABS_COMP_URL",
    "DEFAULT_DYN_COMP_URL",
    "get_component_power",
    "fill_rapl_power",
    "node_usage_to_matrix",
    "with_default_init_url",
    "init_estimate_function",
    "estimate_node_platform_power",
    "estimate_node_component_powers",
]

logger = logging.getLogger(__name__)

ESTIMATOR_SIDECAR_SOCKET = "/tmp/estimator.sock"
ESTIMATOR_ACPI_SENSOR_ID = "estimator"
DEFAULT_ABS_COMP_URL = "/var/lib/kepler/data/KerasCompWeightFullPipeline.json"
DEFAULT_DYN_COMP_URL = "/var/lib/kepler/data/ScikitMixed.json"

_JOULE_TO_MILLIJOULE = 1000

TotalPowerFunc = Callable[[Sequence[Sequence[float]], Sequence[str]], List[float]]
ComponentPowerFunc = Callable[
    [Sequence[Sequence[float]], Sequence[str]], Dict[str, List[float]]
]
EstimateFunc = Union[TotalPowerFunc, ComponentPowerFunc]

_ESTIMATE_ERRORS = (ModelError, EstimatorError)


def get_component_power(
    powers: Mapping[str, Sequence[float]], component_key: str, index: int
) -> int:
    """Return the component power at index in mJ, or 0 when it is missing."""
    values = powers.get(component_key, [])
    if index >= len(values):
        return 0
    return max(0, int(values[index] * _JOULE_TO_MILLIJOULE))


def fill_rapl_power(
    pkg_power: int, core_power: int, uncore_power: int, dram_power: int
) -> NodeComponentsEnergy:
    """Fill in a missing package or core power from the other components."""
    if pkg_power < core_power + uncore_power:
        pkg_power = core_power + uncore_power
    if core_power == 0:
        core_power = pkg_power - uncore_power
    return NodeComponentsEnergy(
        core=core_power, uncore=uncore_power, dram=dram_power, pkg=pkg_power
    )


def node_usage_to_matrix(
    resource_usage: Mapping[str, float], metric_names: Sequence[str]
) -> List[List[float]]:
    """Return the node resource usage as a one-row matrix in metric order."""
    return [[float(resource_usage.get(name, 0.0)) for name in metric_names]]


def with_default_init_url(model_config: ModelConfig, default_url: str) -> ModelConfig:
    """Return the config with its initial model URL defaulted when empty."""
    if model_config.init_model_url:
        return model_config
    return dataclasses.replace(model_config, init_model_url=default_url)


def init_estimate_function(
    model_config: ModelConfig,
    archive_type: ModelOutputType,
    model_weight_type: ModelOutputType,
    usage_metrics: Sequence[str],
    system_features: Sequence[str],
    system_values: Sequence[str],
    is_total_power: bool,
    model_server_endpoint: str = "",
    sidecar_socket: str = ESTIMATOR_SIDECAR_SOCKET,
) -> Tuple[bool, Optional[EstimateFunc]]:
    """Build the estimate function for one power model.

    Returns whether the model is usable together with the function. With the
    sidecar, no function is returned unless the sidecar answered.
    """
    if model_config.use_estimator_sidecar:
        connector = EstimatorSidecarConnector(
            socket=sidecar_socket,
            usage_metrics=list(usage_metrics),
            output_type=archive_type,
            system_features=list(system_features),
            model_name=model_config.selected_model,
            select_filter=model_config.select_filter,
        )
        valid = connector.initialize(system_values)
        estimate_func: Optional[EstimateFunc] = None
        if valid:
            estimate_func = (
                connector.get_total_power
                if is_total_power
                else connector.get_component_power
            )
        logger.debug("Model %s initiated (%s)", archive_type, valid)
        return valid, estimate_func

    regressor = LinearRegressor(
        endpoint=model_server_endpoint,
        usage_metrics=list(usage_metrics),
        output_type=model_weight_type,
        system_features=list(system_features),
        model_name=model_config.selected_model,
        select_filter=model_config.select_filter,
        init_model_url=model_config.init_model_url,
    )
    valid = regressor.initialize()
    estimate_func = (
        regressor.get_total_power if is_total_power else regressor.get_component_power
    )
    logger.debug("Model %s initiated (%s)", model_weight_type, valid)
    return valid, estimate_func


def estimate_node_platform_power(
    estimate_func: Optional[TotalPowerFunc],
    usage_values: Sequence[Sequence[float]],
    metadata_values: Sequence[str],
) -> Dict[str, float]:
    """Return the estimated node platform power keyed by the estimator sensor."""
    platform_energy = {ESTIMATOR_ACPI_SENSOR_ID: 0.0}
    if estimate_func is None:
        return platform_energy
    try:
        powers = estimate_func(usage_values, metadata_values)
    except _ESTIMATE_ERRORS as exc:
        logger.debug("node platform power estimation failed: %s", exc)
        return platform_energy
    if powers:
        platform_energy[ESTIMATOR_ACPI_SENSOR_ID] = powers[0]
    return platform_energy


def estimate_node_component_powers(
    estimate_func: Optional[ComponentPowerFunc],
    usage_values: Sequence[Sequence[float]],
    metadata_values: Sequence[str],
) -> Dict[int, NodeComponentsEnergy]:
    """Return the estimated RAPL energy of the node, assumed to have one socket."""
    socket_id = 0
    if estimate_func is None:
        return {}
    try:
        powers = estimate_func(usage_values, metadata_values)
    except _ESTIMATE_ERRORS as exc:
        logger.debug("node component power estimation failed: %s", exc)
        return {}
    return {
        socket_id: fill_rapl_power(
            get_component_power(powers, "pkg", socket_id),
            get_component_power(powers, "core", socket_id),
            get_component_power(powers, "uncore", socket_id),
            get_component_power(powers, "dram", socket_id),
        )
    }