import pytest

from kepler.types import (
    ModelConfig,
    ModelOutputType,
    is_component_type,
    is_weight_type,
)

WEIGHT_TYPES = [
    ModelOutputType.AbsModelWeight,
    ModelOutputType.AbsComponentModelWeight,
    ModelOutputType.DynModelWeight,
    ModelOutputType.DynComponentModelWeight,
]

COMPONENT_TYPES = [
    ModelOutputType.AbsComponentModelWeight,
    ModelOutputType.AbsComponentPower,
    ModelOutputType.DynComponentModelWeight,
    ModelOutputType.DynComponentPower,
]


def test_names_in_order():
    names = [str(ModelOutputType(value)) for value in range(1, 9)]
    assert names == [
        "AbsPower",
        "AbsModelWeight",
        "AbsComponentPower",
        "AbsComponentModelWeight",
        "DynPower",
        "DynModelWeight",
        "DynComponentPower",
        "DynComponentModelWeight",
    ]


def test_values_start_at_one_and_are_consecutive():
    assert ModelOutputType(1) is ModelOutputType.AbsPower
    assert ModelOutputType(8) is ModelOutputType.DynComponentModelWeight
    with pytest.raises(ValueError):
        ModelOutputType(0)
    with pytest.raises(ValueError):
        ModelOutputType(9)


def test_format_uses_name():
    assert format(ModelOutputType(5)) == "DynPower"


@pytest.mark.parametrize("output_type", list(ModelOutputType))
def test_is_weight_type(output_type):
    assert is_weight_type(output_type) == (output_type in WEIGHT_TYPES)


@pytest.mark.parametrize("output_type", list(ModelOutputType))
def test_is_component_type(output_type):
    assert is_component_type(output_type) == (output_type in COMPONENT_TYPES)


def test_weight_types_end_with_model_weight():
    for output_type in ModelOutputType:
        assert is_weight_type(output_type) == str(output_type).endswith("ModelWeight")


def test_model_config_defaults():
    config = ModelConfig()
    assert config.use_estimator_sidecar is False
    assert config.selected_model == ""
    assert config.select_filter == ""
    assert config.init_model_url == ""


def test_model_config_equality():
    a = ModelConfig(True, "model", "filter", "/data/model.json")
    b = ModelConfig(
        use_estimator_sidecar=True,
        selected_model="model",
        select_filter="filter",
        init_model_url="/data/model.json",
    )
    assert a == b