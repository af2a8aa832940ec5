# kepler

Energy accounting building blocks for Linux nodes, containers and processes.

The package reads component energy counters where the machine exposes them
(Intel RAPL through the powercap sysfs tree or model-specific registers,
Ampere X-Gene hwmon, ACPI/hwmon power meters). Where none is available it
falls back to an estimate from elapsed time and configured per-thread and
per-GB power figures. It also applies trained linear-regression power models
and shares node energy over workloads. Energy values are in millijoules.

The package uses only the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `kepler.types`: `ModelOutputType` (`AbsPower`, `AbsModelWeight`,
  `AbsComponentPower`, `AbsComponentModelWeight`, `DynPower`,
  `DynModelWeight`, `DynComponentPower`, `DynComponentModelWeight`),
  `ModelConfig`, `is_weight_type` and `is_component_type`.
- `kepler.utils`: `create_temp_file`, `create_temp_dir`,
  `determine_host_byte_order` (returns `"little"` or `"big"`), and
  `get_path_from_pid`, which returns the first line of a cgroup file that
  names a pod, `containerd` or `crio`.
- `kepler.sources`: `NodeComponentsEnergy` (`core`, `dram`, `uncore`, `pkg`),
  and the energy sources `PowerDummy`, `PowerEstimate` and `ApmXgeneSysfs`.
  `read_dram_gb` reads the installed memory in GB from a meminfo file.
- `kepler.rapl`: `PowerSysfs`, which reads `energy_uj` files under
  `/sys/class/powercap/intel-rapl`, and `PowerMSR`, which reads the RAPL
  registers through `/dev/cpu/N/msr`.
- `kepler.components`: `ComponentPower`. Its `initialize()` picks the first
  source that works, in the order sysfs, MSR (only with `enabled_msr=True`),
  X-Gene, estimate, and the `get_energy_from_*()` and
  `get_node_components_energy()` methods read from that source.
- `kepler.lr`: `LinearRegressor`. `initialize()` fetches model weights from a
  model server (`endpoint`) or loads them from `init_model_url`, a local file
  when it starts with `/` and a URL otherwise. `get_total_power()` and
  `get_component_power()` predict from usage rows. `parse_model_weights` and
  `parse_component_model_weights` read weight JSON. Failures raise
  `ModelError`.
- `kepler.sidecar`: `EstimatorSidecarConnector`, which sends a `PowerRequest`
  to an estimator over a Unix socket. Failures raise `EstimatorError`.
- `kepler.model`: `init_estimate_function`, which builds an estimate function
  from a `ModelConfig`, plus `estimate_node_platform_power`,
  `estimate_node_component_powers`, `get_component_power`, `fill_rapl_power`,
  `node_usage_to_matrix` and `with_default_init_url`.
- `kepler.workload`: `estimate_workload_energy`, which returns a
  `WorkloadEnergy` per container or process id from total and component
  model functions, with `metrics_to_array`, `estimate_total_power` and
  `estimate_component_powers`.
- `kepler.ratio`: `get_energy_ratio`, a workload's share of node energy by
  usage ratio (rounded up, split evenly when node usage is zero), and
  `get_sum_metric_values`.
- `kepler.kubelet`: `KubeletPodLister` (`list_pods`, `list_metrics`,
  `get_available_metrics`) and `parse_metrics`, which reads kubelet resource
  metrics in the Prometheus text format into `KubeletMetrics`. Usage not
  accounted to any container goes to the `system/system_processes` key.
  Failures raise `KubeletError`. The node name and port come from the
  `NODE_NAME` and `KUBELET_PORT` environment variables (defaults `localhost`
  and `10250`).
- `kepler.acpi`: `ACPI`, which samples power sensors and CPU core
  frequencies in a background thread (`run`, `stop`) and hands out the
  accumulated energy with `get_energy_from_host()`. The functions
  `find_acpi_power_path`, `read_cpu_core_frequency` and
  `read_power_from_sensor` are also available on their own.

## Examples

Reading node component energy from the best available source:

```python
from kepler.components import ComponentPower

power = ComponentPower()
power.initialize()
for socket, energy in power.get_node_components_energy().items():
    print(socket, energy)
```

Predicting with a linear-regression model stored locally:

```python
from kepler.lr import LinearRegressor
from kepler.types import ModelOutputType

regressor = LinearRegressor(
    usage_metrics=["cpu_cycles"],
    output_type=ModelOutputType.DynComponentModelWeight,
    system_features=["cpu_architecture"],
    init_model_url="/var/lib/kepler/data/ScikitMixed.json",
)
if regressor.initialize():
    print(regressor.get_component_power([[1.0]], ["Sandy Bridge"]))
```

Parsing kubelet resource metrics:

```python
from kepler.kubelet import parse_metrics

text = """\
# TYPE node_cpu_usage_seconds_total counter
node_cpu_usage_seconds_total 120.5
# TYPE container_cpu_usage_seconds_total counter
container_cpu_usage_seconds_total{container="app",namespace="default",pod="web"} 20.5
"""
metrics = parse_metrics(text)
print(metrics.node_cpu, metrics.container_cpu)
```

## What the package does not do

- It has no command-line program, no metrics endpoint and no exporter; it is
  a library to be called from your own code.
- It has no collector loop that gathers node, container and process metrics
  on a schedule and feeds them through the models. The pieces above compute
  values from what you pass in.
- It does not read GPU power or per-process GPU usage, and it does not gather
  eBPF, hardware-counter or cgroup usage figures.