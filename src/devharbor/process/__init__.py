"""Dev-server process supervision, port handling and ghost reconciliation."""

from .inspector import ProcessInfo, ProcessInspector, PsutilInspector
from .ports import MAX_PORT, PortAllocator, probe_port
from .reconciler import GhostReconciler
from .registry import ProcessRegistry
from .sniffer import scan_for_port, sanitize_output
from .supervisor import ProcessSupervisor, build_child_env, build_launch_command

__all__ = [
    "build_child_env",
    "build_launch_command",
    "GhostReconciler",
    "MAX_PORT",
    "PortAllocator",
    "ProcessInfo",
    "ProcessInspector",
    "ProcessRegistry",
    "ProcessSupervisor",
    "PsutilInspector",
    "probe_port",
    "sanitize_output",
    "scan_for_port",
]
