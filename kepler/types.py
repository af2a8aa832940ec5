"""Power-model output types and model configuration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

__all__ = [
    "ModelOutputType",
    "ModelConfig",
    "is_weight_type",
    "is_component_type",
]


class ModelOutputType(IntEnum):
    """Kind of result a power model produces."""

    AbsPower = 1
    AbsModelWeight = 2
    AbsComponentPower = 3
    AbsComponentModelWeight = 4
    DynPower = 5
    DynModelWeight = 6
    DynComponentPower = 7
    DynComponentModelWeight = 8

    def __str__(self) -> str:
        return self.name

    def __format__(self, format_spec: str) -> str:
        return format(str(self), format_spec)


_WEIGHT_TYPES = frozenset(
    {
        ModelOutputType.AbsModelWeight,
        ModelOutputType.AbsComponentModelWeight,
        ModelOutputType.DynModelWeight,
        ModelOutputType.DynComponentModelWeight,
    }
)

_COMPONENT_TYPES = frozenset(
    {
        ModelOutputType.AbsComponentModelWeight,
        ModelOutputType.AbsComponentPower,
        ModelOutputType.DynComponentModelWeight,
        ModelOutputType.DynComponentPower,
    }
)


def is_weight_type(output_type: ModelOutputType) -> bool:
    """Return True if the output type describes model weights."""
    return output_type in _WEIGHT_TYPES


def is_component_type(output_type: ModelOutputType) -> bool:
    """Return True if the output type is split per power component."""
    return output_type in _COMPONENT_TYPES


@dataclass
class ModelConfig:
    """Settings that select and locate a power model."""

    use_estimator_sidecar: bool = False
    selected_model: str = ""
    select_filter: str = ""
    init_model_url: str = ""