"""Energy readings from RAPL, ACPI and hwmon sources, kubelet metrics, and power-model estimation for nodes, containers and processes."""

__version__ = "0.1.0"

__all__ = [
    "acpi",
    "components",
    "kubelet",
    "lr",
    "model",
    "rapl",
    "ratio",
    "sidecar",
    "sources",
    "types",
    "utils",
    "workload",
]