"""
Thread Profiling

Samples every live thread's stack and aggregates the backtraces into
per-bucket call trees for the collector.
"""

from tracewire.profiling.commands import (
    IgnoredCommand,
    StartProfiler,
    StopProfiler,
    parse_command,
    parse_commands,
)
from tracewire.profiling.node import Frame, Node, aggregate, parse_backtrace
from tracewire.profiling.profile import (
    Bucket,
    ThreadProfile,
    label_thread,
    tag_thread,
)
from tracewire.profiling.profiler import ThreadProfiler

__all__ = [
    "Frame",
    "Node",
    "aggregate",
    "parse_backtrace",
    "Bucket",
    "ThreadProfile",
    "label_thread",
    "tag_thread",
    "ThreadProfiler",
    "StartProfiler",
    "StopProfiler",
    "IgnoredCommand",
    "parse_command",
    "parse_commands",
]
