"""Pod list and resource usage metrics read from the kubelet API."""

from __future__ import annotations

import json
import os
import re
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from kepler.utils import SYSTEM_PROCESS_NAME, SYSTEM_PROCESS_NAMESPACE

__all__ = [
    "SERVICE_ACCOUNT_TOKEN_PATH",
    "NODE_CPU_USAGE_METRIC",
    "NODE_MEMORY_USAGE_METRIC",
    "CONTAINER_CPU_USAGE_METRIC",
    "CONTAINER_MEMORY_USAGE_METRIC",
    "KubeletError",
    "KubeletMetrics",
    "KubeletPodLister",
    "parse_metrics",
]

SERVICE_ACCOUNT_TOKEN_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
NODE_ENV = "NODE_NAME"
KUBELET_PORT_ENV = "KUBELET_PORT"

NODE_CPU_USAGE_METRIC = "node_cpu_usage_seconds_total"
NODE_MEMORY_USAGE_METRIC = "node_memory_working_set_bytes"
CONTAINER_CPU_USAGE_METRIC = "container_cpu_usage_seconds_total"
CONTAINER_MEMORY_USAGE_METRIC = "container_memory_working_set_bytes"

_POD_LABEL = "pod"
_CONTAINER_LABEL = "container"
_NAMESPACE_LABEL = "namespace"

_METRIC_TYPES = frozenset({"counter", "gauge", "histogram", "summary", "untyped"})
_VALUED_TYPES = frozenset({"counter", "gauge"})
_COMPOSITE_SUFFIXES = ("_bucket", "_sum", "_count")

_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME_RE = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}
_BLANKS = " \t"


class KubeletError(Exception):
    """Raised when the kubelet cannot be reached or its answer parsed."""


@dataclass
class KubeletMetrics:
    """Resource usage reported by the kubelet.

    Container values are keyed by "namespace/pod/container"; the usage not
    accounted to any container is attributed to the system container.
    """

    container_cpu: Dict[str, float] = field(default_factory=dict)
    container_mem: Dict[str, float] = field(default_factory=dict)
    node_cpu: float = 0.0
    node_mem: float = 0.0


@dataclass
class _Family:
    type: str = "untyped"
    samples: List[Tuple[Dict[str, str], float]] = field(default_factory=list)


def _skip_blanks(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _BLANKS:
        pos += 1
    return pos


def _parse_labels(line: str, pos: int) -> Tuple[Dict[str, str], int]:
    labels: Dict[str, str] = {}
    pos += 1
    while True:
        pos = _skip_blanks(line, pos)
        if pos >= len(line):
            raise KubeletError(f"failed to parse: unterminated label set in {line!r}")
        if line[pos] == "}":
            return labels, pos + 1
        match = _LABEL_NAME_RE.match(line, pos)
        if match is None:
            raise KubeletError(f"failed to parse: invalid label name in {line!r}")
        name = match.group()
        pos = _skip_blanks(line, match.end())
        if line[pos : pos + 1] != "=":
            raise KubeletError(f"failed to parse: expected '=' after label {name!r}")
        pos = _skip_blanks(line, pos + 1)
        if line[pos : pos + 1] != '"':
            raise KubeletError(f"failed to parse: expected quoted value for {name!r}")
        pos += 1
        chars: List[str] = []
        while True:
            if pos >= len(line):
                raise KubeletError(f"failed to parse: unterminated value for {name!r}")
            char = line[pos]
            if char == "\\":
                escaped = line[pos + 1 : pos + 2]
                if escaped not in _ESCAPES:
                    raise KubeletError(
                        f"failed to parse: invalid escape in value for {name!r}"
                    )
                chars.append(_ESCAPES[escaped])
                pos += 2
            elif char == '"':
                pos += 1
                break
            else:
                chars.append(char)
                pos += 1
        if name in labels:
            raise KubeletError(f"failed to parse: duplicate label {name!r}")
        labels[name] = "".join(chars)
        pos = _skip_blanks(line, pos)
        if line[pos : pos + 1] == ",":
            pos += 1
        elif line[pos : pos + 1] != "}":
            raise KubeletError(f"failed to parse: expected ',' or '}}' in {line!r}")


def _parse_sample(line: str) -> Tuple[str, Dict[str, str], float]:
    match = _NAME_RE.match(line)
    if match is None:
        raise KubeletError(f"failed to parse: invalid metric name in {line!r}")
    name = match.group()
    pos = match.end()
    labels: Dict[str, str] = {}
    if line[pos : pos + 1] == "{":
        labels, pos = _parse_labels(line, pos)
    if pos < len(line) and line[pos] not in _BLANKS:
        raise KubeletError(f"failed to parse: unexpected character in {line!r}")
    fields = line[pos:].split()
    if not 1 <= len(fields) <= 2:
        raise KubeletError(f"failed to parse: expected value and timestamp in {line!r}")
    try:
        value = float(fields[0])
    except ValueError as exc:
        raise KubeletError(f"failed to parse: invalid value in {line!r}") from exc
    if len(fields) == 2:
        try:
            int(fields[1])
        except ValueError as exc:
            raise KubeletError(f"failed to parse: invalid timestamp in {line!r}") from exc
    return name, labels, value


def _family_for(families: Dict[str, _Family], name: str) -> _Family:
    if name in families:
        return families[name]
    for suffix in _COMPOSITE_SUFFIXES:
        base = name[: -len(suffix)] if name.endswith(suffix) else None
        if base and base in families and families[base].type in ("histogram", "summary"):
            return families[base]
    return families.setdefault(name, _Family())


def _parse_families(text: str) -> Dict[str, _Family]:
    families: Dict[str, _Family] = {}
    typed: set = set()
    for raw in text.splitlines():
        line = raw.strip(_BLANKS)
        if not line:
            continue
        if line.startswith("#"):
            parts = line[1:].split(None, 3)
            if len(parts) >= 2 and parts[0] == "TYPE":
                if len(parts) != 3:
                    raise KubeletError(f"failed to parse: invalid TYPE line {line!r}")
                name, metric_type = parts[1], parts[2].lower()
                if metric_type not in _METRIC_TYPES:
                    raise KubeletError(f"failed to parse: unknown metric type {parts[2]!r}")
                if name in typed:
                    raise KubeletError(f"failed to parse: second TYPE line for {name!r}")
                if name in families and families[name].samples:
                    raise KubeletError(f"failed to parse: TYPE line for {name!r} after samples")
                typed.add(name)
                families.setdefault(name, _Family()).type = metric_type
            continue
        name, labels, value = _parse_sample(line)
        _family_for(families, name).samples.append((labels, value))
    return families


def _container_key(labels: Dict[str, str]) -> str:
    return "/".join(
        (
            labels.get(_NAMESPACE_LABEL, ""),
            labels.get(_POD_LABEL, ""),
            labels.get(_CONTAINER_LABEL, ""),
        )
    )


def parse_metrics(text: Union[str, bytes]) -> KubeletMetrics:
    """Parse kubelet resource metrics in the Prometheus text format."""
    if isinstance(text, (bytes, bytearray)):
        text = text.decode("utf-8", errors="replace")
    families = _parse_families(text)
    metrics = KubeletMetrics()
    total_cpu = 0.0
    total_mem = 0.0
    for name, family in families.items():
        for labels, sample_value in family.samples:
            value = sample_value if family.type in _VALUED_TYPES else 0.0
            if name == NODE_CPU_USAGE_METRIC:
                metrics.node_cpu = value
            elif name == NODE_MEMORY_USAGE_METRIC:
                metrics.node_mem = value
            elif name == CONTAINER_CPU_USAGE_METRIC:
                metrics.container_cpu[_container_key(labels)] = value
                total_cpu += value
            elif name == CONTAINER_MEMORY_USAGE_METRIC:
                metrics.container_mem[_container_key(labels)] = value
                total_mem += value
    system_key = f"{SYSTEM_PROCESS_NAMESPACE}/{SYSTEM_PROCESS_NAME}"
    metrics.container_cpu[system_key] = metrics.node_cpu - total_cpu
    metrics.container_mem[system_key] = metrics.node_mem - total_mem
    return metrics


@dataclass
class KubeletPodLister:
    """Client of the kubelet API on the local node."""

    node_name: str = field(
        default_factory=lambda: os.environ.get(NODE_ENV) or "localhost"
    )
    port: str = field(default_factory=lambda: os.environ.get(KUBELET_PORT_ENV) or "10250")
    token_path: str = SERVICE_ACCOUNT_TOKEN_PATH
    scheme: str = "https"
    timeout: Optional[float] = None

    @property
    def pod_url(self) -> str:
        return f"{self.scheme}://{self.node_name}:{self.port}/pods"

    @property
    def metrics_url(self) -> str:
        return f"{self.scheme}://{self.node_name}:{self.port}/metrics/resource"

    def _get(self, url: str) -> bytes:
        try:
            with open(self.token_path, encoding="utf-8") as handle:
                token = handle.read().strip()
        except OSError as exc:
            raise KubeletError(f'failed to read from "{self.token_path}": {exc}') from exc
        request = urllib.request.Request(
            url, headers={"Authorization": f"Bearer {token}"}, method="GET"
        )
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        try:
            with urllib.request.urlopen(
                request, timeout=self.timeout, context=context
            ) as response:
                return response.read()
        except urllib.error.HTTPError as exc:
            with exc:
                return exc.read()
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise KubeletError(f'failed to get response from "{url}": {exc}') from exc

    def list_pods(self) -> List[Dict[str, Any]]:
        """Return the pods the kubelet runs, as decoded JSON objects."""
        body = self._get(self.pod_url)
        try:
            pod_list = json.loads(body.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as exc:
            raise KubeletError(f"failed to parse response body: {exc}") from exc
        if pod_list is None:
            return []
        if not isinstance(pod_list, dict):
            raise KubeletError("failed to parse response body: not a pod list")
        items = pod_list.get("items") or []
        if not isinstance(items, list):
            raise KubeletError("failed to parse response body: items is not a list")
        return items

    def list_metrics(self) -> KubeletMetrics:
        """Return the node and container resource usage from the kubelet."""
        return parse_metrics(self._get(self.metrics_url))

    def get_available_metrics(self) -> List[str]:
        """Return the container metric names if the kubelet answers, else []."""
        try:
            self.list_metrics()
        except KubeletError:
            return []
        return [CONTAINER_CPU_USAGE_METRIC, CONTAINER_MEMORY_USAGE_METRIC]