"""
Tracewire core: configuration, logging and the error taxonomy.
"""

from tracewire.core.config import TracewireConfig, get_config, set_config
from tracewire.core.errors import (
    CallerContractError,
    CollectorError,
    NotConnectedError,
    ProfileNotFinishedError,
    ProfilerBusyError,
    SerializationError,
    ServerConnectionError,
    TracewireError,
    UnrecoverableServerError,
)
from tracewire.core.logging import setup_logging

__all__ = [
    "TracewireConfig",
    "get_config",
    "set_config",
    "setup_logging",
    "TracewireError",
    "CallerContractError",
    "NotConnectedError",
    "ProfilerBusyError",
    "ProfileNotFinishedError",
    "ServerConnectionError",
    "UnrecoverableServerError",
    "CollectorError",
    "SerializationError",
]
