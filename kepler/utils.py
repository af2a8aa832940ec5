"""Small helpers shared across the package."""

from __future__ import annotations

import os
import sys
import tempfile

__all__ = [
    "SYSTEM_PROCESS_NAME",
    "SYSTEM_PROCESS_NAMESPACE",
    "VERSION",
    "create_temp_file",
    "create_temp_dir",
    "determine_host_byte_order",
    "get_path_from_pid",
]

SYSTEM_PROCESS_NAME = "system_processes"
SYSTEM_PROCESS_NAMESPACE = "system"

# Set at build time; empty when not stamped.
VERSION = ""

_CGROUP_MARKERS = ("pod", "containerd", "crio")


def create_temp_file(contents: str) -> str:
    """Write contents to a new temporary file and return its path."""
    fd, path = tempfile.mkstemp()
    with os.fdopen(fd, "w") as handle:
        handle.write(contents)
    return path


def create_temp_dir() -> str:
    """Create a new temporary directory and return its path."""
    return tempfile.mkdtemp()


def determine_host_byte_order() -> str:
    """Return the host byte order as "little" or "big"."""
    return "little" if sys.byteorder == "little" else "big"


def get_path_from_pid(search_path: str, pid: int) -> str:
    """Return the first cgroup line naming a pod or container runtime.

    ``search_path`` holds a ``%d`` placeholder for the pid.
    Raises OSError if the file cannot be opened and LookupError if no
    line matches.
    """
    try:
        path = search_path % pid
    except TypeError:
        path = search_path
    try:
        handle = open(path, encoding="utf-8", errors="replace")
    except OSError as exc:
        raise OSError(
            f"failed to open cgroup description file for pid {pid}: {exc}"
        ) from exc
    with handle:
        for raw in handle:
            line = raw.rstrip("\r\n")
            if any(marker in line for marker in _CGROUP_MARKERS):
                return line
    raise LookupError(f"could not find cgroup description entry for pid {pid}")