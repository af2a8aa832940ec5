"""Helpers to share node energy among workloads by resource usage ratio."""

from __future__ import annotations

import math
from typing import List, Sequence

__all__ = ["get_sum_metric_values", "get_energy_ratio"]


def get_sum_metric_values(metric_values: Sequence[Sequence[float]]) -> List[float]:
    """Return the column sums of a metric matrix.

    The width is that of the first row; a longer row raises ValueError.
    """
    if not metric_values:
        return []
    sums = [0.0] * len(metric_values[0])
    for row in metric_values:
        if len(row) > len(sums):
            raise ValueError(
                f"row has {len(row)} values, expected at most {len(sums)}"
            )
        for index, value in enumerate(row):
            sums[index] += value
    return sums


def get_energy_ratio(
    res_usage: float,
    node_total_res_usage: float,
    node_res_energy_utilization: float,
    total_number: float,
) -> int:
    """Return a workload's share of node energy, rounded up to an integer.

    The share follows the usage ratio when the node total is positive;
    otherwise the energy is split evenly over total_number workloads.
    """
    if node_total_res_usage > 0:
        power = (res_usage / node_total_res_usage) * node_res_energy_utilization
    else:
        power = node_res_energy_utilization / total_number
    return max(0, math.ceil(power))