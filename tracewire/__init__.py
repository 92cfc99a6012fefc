"""
Tracewire - telemetry core for an in-process monitoring agent.

- Thread profiler: samples every live thread and aggregates call trees
- Collector client: marshals, sends and classifies collector requests
"""

__version__ = "1.0.0"

from tracewire.core.config import TracewireConfig
from tracewire.profiling.profiler import ThreadProfiler
from tracewire.collector.client import CollectorClient
from tracewire.agent import TelemetryAgent

__all__ = [
    "TracewireConfig",
    "ThreadProfiler",
    "CollectorClient",
    "TelemetryAgent",
    "__version__",
]
