"""Power estimation through the estimator sidecar over a Unix socket."""

from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from kepler.types import ModelOutputType, is_component_type

__all__ = ["EstimatorError", "PowerRequest", "EstimatorSidecarConnector"]

logger = logging.getLogger(__name__)

_READ_SIZE = 4096


class EstimatorError(Exception):
    """Raised when the estimator sidecar cannot produce powers."""


@dataclass
class PowerRequest:
    """Request asking the estimator to apply a model to usage values."""

    usage_metrics: List[str] = field(default_factory=list)
    usage_values: List[List[float]] = field(default_factory=list)
    output_type: str = ""
    system_features: List[str] = field(default_factory=list)
    system_values: List[str] = field(default_factory=list)
    model_name: str = ""
    select_filter: str = ""

    def to_json(self) -> str:
        return json.dumps(
            {
                "metrics": list(self.usage_metrics),
                "values": [list(row) for row in self.usage_values],
                "output_type": self.output_type,
                "system_features": list(self.system_features),
                "system_values": list(self.system_values),
                "model_name": self.model_name,
                "filter": self.select_filter,
            }
        )


def _float_list(value: Any) -> List[float]:
    if value is None:
        return []
    if not isinstance(value, list) or any(
        isinstance(item, bool) or not isinstance(item, (int, float)) for item in value
    ):
        raise EstimatorError("estimator unmarshal error: powers are not a list of numbers")
    return [float(item) for item in value]


@dataclass
class EstimatorSidecarConnector:
    """Power estimator backed by the estimator sidecar."""

    socket: str = ""
    usage_metrics: List[str] = field(default_factory=list)
    output_type: ModelOutputType = ModelOutputType.AbsPower
    system_features: List[str] = field(default_factory=list)
    model_name: str = ""
    select_filter: str = ""
    timeout: Optional[float] = None
    valid: bool = field(default=False, init=False)
    is_component: bool = field(default=False, init=False)

    def initialize(self, system_values: Sequence[str]) -> bool:
        """Probe the sidecar with zero usage; return True if it answers."""
        usage_values = [[0.0] * len(self.usage_metrics)]
        self.is_component = is_component_type(self.output_type)
        try:
            self._make_request(usage_values, system_values)
        except EstimatorError as exc:
            logger.debug("estimator sidecar unavailable: %s", exc)
            self.valid = False
        else:
            self.valid = True
        return self.valid

    def _make_request(
        self, usage_values: Sequence[Sequence[float]], system_values: Sequence[str]
    ) -> Union[List[float], Dict[str, List[float]]]:
        request = PowerRequest(
            usage_metrics=list(self.usage_metrics),
            usage_values=[list(row) for row in usage_values],
            output_type=str(self.output_type),
            system_features=list(self.system_features),
            system_values=list(system_values),
            model_name=self.model_name,
            select_filter=self.select_filter,
        )
        payload = request.to_json().encode("utf-8")
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as conn:
                conn.settimeout(self.timeout)
                conn.connect(self.socket)
                conn.sendall(payload)
                data = conn.recv(_READ_SIZE)
        except OSError as exc:
            raise EstimatorError(f"estimator connection error: {exc}") from exc
        if not data:
            raise EstimatorError("estimator read error: EOF")

        text = data.decode("utf-8", errors="replace")
        try:
            response = json.loads(text)
        except json.JSONDecodeError as exc:
            raise EstimatorError(f"estimator unmarshal error: {exc} ({text})") from exc
        if response is None:
            response = {}
        if not isinstance(response, dict):
            raise EstimatorError(f"estimator unmarshal error: ({text})")

        powers = response.get("powers")
        if self.is_component:
            if powers is None:
                return {}
            if not isinstance(powers, dict):
                raise EstimatorError(
                    "estimator unmarshal error: component powers are not an object"
                )
            return {component: _float_list(values) for component, values in powers.items()}
        return _float_list(powers)

    def get_total_power(
        self, usage_values: Sequence[Sequence[float]], system_values: Sequence[str]
    ) -> List[float]:
        """Return the total power the sidecar predicts for each usage row."""
        if not self.valid:
            raise EstimatorError(f"invalid power model call: {self.output_type}")
        powers = self._make_request(usage_values, system_values)
        if not isinstance(powers, list):
            raise EstimatorError(f"unexpected component powers for {self.output_type}")
        return powers

    def get_component_power(
        self, usage_values: Sequence[Sequence[float]], system_values: Sequence[str]
    ) -> Dict[str, List[float]]:
        """Return the per-component powers the sidecar predicts for each row."""
        if not self.valid:
            raise EstimatorError(f"invalid power model call: {self.output_type}")
        powers = self._make_request(usage_values, system_values)
        if not isinstance(powers, dict):
            raise EstimatorError(f"unexpected total powers for {self.output_type}")
        return powers