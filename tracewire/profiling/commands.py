"""
Agent commands sent by the collector.

Raw commands arrive as ``[command_id, {"name": ..., "arguments": {...}}]``.
Each recognized name parses into its own variant with defaults filled in for
missing, mistyped or non-positive arguments; anything else becomes an IgnoredCommand.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog

from tracewire.profiling.profile import DEFAULT_DURATION, DEFAULT_SAMPLE_PERIOD

logger = structlog.get_logger(__name__)

START_PROFILER = "start_profiler"
STOP_PROFILER = "stop_profiler"


@dataclass(frozen=True)
class StartProfiler:
    """Start a thread profiling session."""
    command_id: int
    profile_id: int = -1
    sample_period: float = DEFAULT_SAMPLE_PERIOD
    duration: float = DEFAULT_DURATION
    # Consumed by the instrumentation layer, carried along untouched
    only_runnable_threads: bool = False
    only_request_threads: bool = False
    profile_agent_code: bool = False

    def options(self) -> Dict[str, bool]:
        return {
            "only_runnable_threads": self.only_runnable_threads,
            "only_request_threads": self.only_request_threads,
            "profile_agent_code": self.profile_agent_code,
        }


@dataclass(frozen=True)
class StopProfiler:
    """Stop the running session, optionally discarding its data."""
    command_id: int
    profile_id: Optional[int] = None
    report_data: bool = True


@dataclass(frozen=True)
class IgnoredCommand:
    """An unknown or malformed command."""
    command_id: Optional[int]
    reason: str


AgentCommand = Union[StartProfiler, StopProfiler, IgnoredCommand]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _int_arg(arguments: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    value = arguments.get(key)
    return value if isinstance(value, int) and not isinstance(value, bool) else default


def _positive_float_arg(arguments: Dict[str, Any], key: str, default: float) -> float:
    value = arguments.get(key)
    return value if _is_number(value) and value > 0 else default


def _bool_arg(arguments: Dict[str, Any], key: str, default: bool) -> bool:
    value = arguments.get(key)
    return value if isinstance(value, bool) else default


def parse_command(raw: Any) -> AgentCommand:
    """Turn one raw collector command into its variant."""
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        return IgnoredCommand(command_id=None, reason="not a [command_id, body] pair")

    command_id, body = raw
    if not isinstance(command_id, int) or isinstance(command_id, bool):
        return IgnoredCommand(command_id=None, reason="command id is not an integer")
    if not isinstance(body, dict):
        return IgnoredCommand(command_id=command_id, reason="command body is not a mapping")

    name = body.get("name")
    arguments = body.get("arguments")
    if not isinstance(arguments, dict):
        arguments = {}

    if name == START_PROFILER:
        return StartProfiler(
            command_id=command_id,
            profile_id=_int_arg(arguments, "profile_id", -1),
            sample_period=_positive_float_arg(arguments, "sample_period", DEFAULT_SAMPLE_PERIOD),
            duration=_positive_float_arg(arguments, "duration", DEFAULT_DURATION),
            only_runnable_threads=_bool_arg(arguments, "only_runnable_threads", False),
            only_request_threads=_bool_arg(arguments, "only_request_threads", False),
            profile_agent_code=_bool_arg(arguments, "profile_agent_code", False),
        )
    if name == STOP_PROFILER:
        return StopProfiler(
            command_id=command_id,
            profile_id=_int_arg(arguments, "profile_id", None),
            report_data=_bool_arg(arguments, "report_data", True),
        )
    if name is None:
        return IgnoredCommand(command_id=command_id, reason="missing command name")
    return IgnoredCommand(command_id=command_id, reason=f"unknown command {name!r}")


def parse_commands(raw_commands: Optional[Iterable[Any]]) -> List[AgentCommand]:
    if not raw_commands:
        return []
    return [parse_command(raw) for raw in raw_commands]
