"""Power estimation by linear regression over trained model weights.

Weights come from a model server or from an initial model location,
which is either a local file (an absolute path) or a URL.
"""

from __future__ import annotations

import json
import logging
import math
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from kepler.types import ModelOutputType, is_component_type

__all__ = [
    "ModelError",
    "CategoricalFeature",
    "NormalizedNumericalFeature",
    "ModelWeights",
    "ModelRequest",
    "LinearRegressor",
    "parse_model_weights",
    "parse_component_model_weights",
]

logger = logging.getLogger(__name__)


class ModelError(Exception):
    """Raised when model weights cannot be obtained or applied."""


@dataclass(frozen=True)
class CategoricalFeature:
    """Weight attached to one value of a categorical feature."""

    weight: float = 0.0


@dataclass(frozen=True)
class NormalizedNumericalFeature:
    """Normalisation parameters and weight of a numerical feature."""

    mean: float = 0.0
    variance: float = 0.0
    weight: float = 0.0


def _normalize(value: float, mean: float, variance: float) -> float:
    diff = value - mean
    if variance < 0:
        return math.nan
    std = math.sqrt(variance)
    if std:
        return diff / std
    if diff:
        return math.copysign(math.inf, diff)
    return math.nan


@dataclass
class ModelWeights:
    """Bias, categorical and numerical weights of one linear model."""

    bias_weight: float = 0.0
    categorical_variables: Dict[str, Dict[str, CategoricalFeature]] = field(
        default_factory=dict
    )
    numerical_variables: Dict[str, NormalizedNumericalFeature] = field(
        default_factory=dict
    )

    def predict(
        self,
        usage_metrics: Sequence[str],
        usage_values: Sequence[Sequence[float]],
        system_features: Sequence[str],
        system_values: Sequence[str],
    ) -> List[float]:
        """Return one predicted power per row of usage values."""
        base_power = self.bias_weight
        for index, feature in enumerate(system_features):
            coefficients = self.categorical_variables.get(feature, {})
            base_power += coefficients.get(
                system_values[index], CategoricalFeature()
            ).weight

        numerical = [
            self.numerical_variables.get(metric, NormalizedNumericalFeature())
            for metric in usage_metrics
        ]
        powers = []
        for row in usage_values:
            power = base_power
            for value, coeff in zip(row, numerical):
                if coeff.weight == 0:
                    continue
                power += coeff.weight * _normalize(value, coeff.mean, coeff.variance)
            powers.append(power)
        return powers


ComponentModelWeights = Dict[str, ModelWeights]


def _load_json(data: Union[str, bytes, bytearray, Dict[str, Any], None]) -> Any:
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8", errors="replace")
    if isinstance(data, str):
        try:
            return json.loads(data)
        except json.JSONDecodeError as exc:
            raise ModelError(f"model unmarshal error: {exc} ({data})") from exc
    return data


def _mapping(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ModelError(f"model unmarshal error: {what} is not an object")
    return value


def _number(value: Any, what: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ModelError(f"model unmarshal error: {what} is not a number")
    return float(value)


def _weights_from_object(obj: Any) -> ModelWeights:
    root = _mapping(obj, "model weights")
    all_weights = _mapping(root.get("All_Weights"), "All_Weights")

    categorical: Dict[str, Dict[str, CategoricalFeature]] = {}
    for feature, values in _mapping(
        all_weights.get("Categorical_Variables"), "Categorical_Variables"
    ).items():
        categorical[feature] = {
            name: CategoricalFeature(
                weight=_number(_mapping(entry, name).get("weight"), "weight")
            )
            for name, entry in _mapping(values, feature).items()
        }

    numerical: Dict[str, NormalizedNumericalFeature] = {}
    for metric, entry in _mapping(
        all_weights.get("Numerical_Variables"), "Numerical_Variables"
    ).items():
        entry = _mapping(entry, metric)
        numerical[metric] = NormalizedNumericalFeature(
            mean=_number(entry.get("mean"), "mean"),
            variance=_number(entry.get("variance"), "variance"),
            weight=_number(entry.get("weight"), "weight"),
        )

    return ModelWeights(
        bias_weight=_number(all_weights.get("Bias_Weight"), "Bias_Weight"),
        categorical_variables=categorical,
        numerical_variables=numerical,
    )


def parse_model_weights(data: Union[str, bytes, Dict[str, Any], None]) -> ModelWeights:
    """Parse a single model's weights from JSON text, bytes or a decoded object."""
    return _weights_from_object(_load_json(data))


def parse_component_model_weights(
    data: Union[str, bytes, Dict[str, Any], None],
) -> ComponentModelWeights:
    """Parse weights keyed by power component from JSON text, bytes or an object."""
    obj = _mapping(_load_json(data), "component model weights")
    return {component: _weights_from_object(value) for component, value in obj.items()}


@dataclass
class ModelRequest:
    """Request sent to the model server for model weights."""

    model_name: str = ""
    metric_names: List[str] = field(default_factory=list)
    select_filter: str = ""
    output_type: str = ""

    def to_json(self) -> str:
        return json.dumps(
            {
                "model_name": self.model_name,
                "metrics": list(self.metric_names),
                "filter": self.select_filter,
                "output_type": self.output_type,
            }
        )


@dataclass
class LinearRegressor:
    """Power estimator applying linear-regression model weights."""

    endpoint: str = ""
    usage_metrics: List[str] = field(default_factory=list)
    output_type: ModelOutputType = ModelOutputType.AbsPower
    system_features: List[str] = field(default_factory=list)
    model_name: str = ""
    select_filter: str = ""
    init_model_url: str = ""
    model_server_enabled: bool = True
    timeout: Optional[float] = None
    valid: bool = field(default=False, init=False)
    model_weight: Union[ModelWeights, ComponentModelWeights, None] = field(
        default=None, init=False, repr=False
    )

    def initialize(self) -> bool:
        """Obtain model weights; return True if they were found."""
        weight = None
        error: Optional[Exception] = None
        if self.model_server_enabled and self.endpoint:
            try:
                weight = self._get_weight_from_server()
            except ModelError as exc:
                error = exc
            logger.debug("LR Model (%s): weight from server: %s", self.output_type, weight)
        if weight is None and self.init_model_url:
            try:
                weight = self._load_weight_from_url_or_local()
            except ModelError as exc:
                error = exc
            logger.debug(
                "LR Model (%s): weight from %s: %s",
                self.output_type,
                self.init_model_url,
                weight,
            )
        if weight is not None:
            self.valid = True
            self.model_weight = weight
        else:
            if error is None:
                logger.debug("LR Model (%s): no config", self.output_type)
            else:
                logger.debug("LR Model (%s): %s", self.output_type, error)
            self.valid = False
        return self.valid

    def _parse_weights(self, body: bytes) -> Union[ModelWeights, ComponentModelWeights]:
        if is_component_type(self.output_type):
            return parse_component_model_weights(body)
        return parse_model_weights(body)

    def _get_weight_from_server(self) -> Union[ModelWeights, ComponentModelWeights]:
        model_request = ModelRequest(
            model_name=self.model_name,
            metric_names=[*self.usage_metrics, *self.system_features],
            select_filter=self.select_filter,
            output_type=str(self.output_type),
        )
        request = urllib.request.Request(
            self.endpoint,
            data=model_request.to_json().encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json; charset=UTF-8"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
                reason = response.reason
                body = response.read()
        except urllib.error.HTTPError as exc:
            exc.close()
            raise ModelError(
                f"status not ok: {exc.code} {exc.reason} ({model_request})"
            ) from exc
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise ModelError(f"connection error: {exc} ({self.endpoint})") from exc
        if status != 200:
            raise ModelError(f"status not ok: {status} {reason} ({model_request})")
        return self._parse_weights(body)

    def _load_weight_from_url_or_local(
        self,
    ) -> Union[ModelWeights, ComponentModelWeights]:
        if self.init_model_url.startswith("/"):
            body = self._load_weight_from_local()
        else:
            body = self._load_weight_from_url()
        return self._parse_weights(body)

    def _load_weight_from_local(self) -> bytes:
        try:
            with open(self.init_model_url, "rb") as handle:
                return handle.read()
        except OSError as exc:
            raise ModelError(str(exc)) from exc

    def _load_weight_from_url(self) -> bytes:
        try:
            with urllib.request.urlopen(
                self.init_model_url, timeout=self.timeout
            ) as response:
                return response.read()
        except urllib.error.HTTPError as exc:
            with exc:
                return exc.read()
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise ModelError(
                f"connection error: {exc} ({self.init_model_url})"
            ) from exc

    def get_total_power(
        self, usage_values: Sequence[Sequence[float]], system_values: Sequence[str]
    ) -> List[float]:
        """Return the predicted total power for each usage row."""
        if not self.valid:
            raise ModelError(f"invalid power model call: {self.output_type}")
        if not isinstance(self.model_weight, ModelWeights):
            raise ModelError(f"model Weight for model type {self.output_type} is nil")
        return self.model_weight.predict(
            self.usage_metrics, usage_values, self.system_features, system_values
        )

    def get_component_power(
        self, usage_values: Sequence[Sequence[float]], system_values: Sequence[str]
    ) -> Dict[str, List[float]]:
        """Return the predicted power of each component for each usage row."""
        if not self.valid:
            raise ModelError(f"invalid power model call: {self.output_type}")
        if not isinstance(self.model_weight, dict):
            raise ModelError(
                f"model Weight for model type {self.output_type} is not per component"
            )
        return {
            component: weight.predict(
                self.usage_metrics, usage_values, self.system_features, system_values
            )
            for component, weight in self.model_weight.items()
        }