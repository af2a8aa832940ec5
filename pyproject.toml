[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kepler"
version = "0.1.0"
description = "Node, container and process energy estimation from RAPL, ACPI, kubelet metrics and trained power models"
requires-python = ">=3.10"
dependencies = []
keywords = ["energy", "power", "rapl", "acpi", "kubelet", "monitoring", "estimation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kepler"]

[tool.pytest.ini_options]
addopts = "-ra"
