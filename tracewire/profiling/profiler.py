"""
Thread Profiler - session manager.

Holds at most one ThreadProfile at a time. Sessions are started and stopped by
local calls or by commands polled from the collector.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Iterable, Optional

import structlog

from tracewire.core.errors import CallerContractError, ProfilerBusyError
from tracewire.profiling.commands import (
    IgnoredCommand,
    StartProfiler,
    StopProfiler,
    parse_commands,
)
from tracewire.profiling.profile import DEFAULT_SAMPLE_PERIOD, ThreadProfile

logger = structlog.get_logger(__name__)

CommandCallback = Callable[[int, Optional[Exception]], Any]


class ThreadProfiler:
    """
    Owns the single current thread profile.

    A profile stays in the slot after it finishes so it can be harvested and
    sent; ``start`` fails with ProfilerBusyError until then.
    """

    def __init__(
        self,
        *,
        count_total_samples: bool = False,
        stop_join_timeout: float = 5.0,
    ):
        self.count_total_samples = count_total_samples
        self.stop_join_timeout = stop_join_timeout
        self._profile: Optional[ThreadProfile] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Any) -> "ThreadProfiler":
        return cls(
            count_total_samples=config.profiler.count_total_samples,
            stop_join_timeout=config.profiler.stop_join_timeout,
        )

    @property
    def profile(self) -> Optional[ThreadProfile]:
        return self._profile

    @property
    def running(self) -> bool:
        return self._profile is not None

    @property
    def finished(self) -> bool:
        profile = self._profile
        return profile is not None and profile.finished

    def start(
        self,
        profile_id: int,
        duration: float,
        interval: float = DEFAULT_SAMPLE_PERIOD,
        **options: Any,
    ) -> ThreadProfile:
        """Create and run a new profile; raise ProfilerBusyError if one is held."""
        with self._lock:
            if self._profile is not None:
                raise ProfilerBusyError(self._profile.profile_id)
            profile = ThreadProfile(
                profile_id,
                duration,
                interval,
                count_total_samples=self.count_total_samples,
                stop_join_timeout=self.stop_join_timeout,
                options=options,
            )
            self._profile = profile

        try:
            profile.run()
        except Exception:
            with self._lock:
                if self._profile is profile:
                    self._profile = None
            raise
        return profile

    def stop(self, report_data: bool = True) -> Optional[ThreadProfile]:
        """Stop the current profile. Without ``report_data`` it is dropped."""
        profile = self._profile
        if profile is None:
            return None

        profile.stop(report_data=report_data)

        if not report_data:
            with self._lock:
                if self._profile is profile:
                    self._profile = None
            return None
        return profile

    def harvest(self) -> Optional[ThreadProfile]:
        """Release and return the current profile once it has finished."""
        with self._lock:
            profile = self._profile
            if profile is None or not profile.finished:
                return None
            self._profile = None
        return profile

    # -- Commands ------------------------------------------------------------

    def respond_to_commands(
        self,
        commands: Optional[Iterable[Any]],
        callback: Optional[CommandCallback] = None,
    ) -> None:
        """
        Dispatch collector commands.

        Malformed or unknown commands are skipped. For each dispatched command
        ``callback(command_id, error)`` is invoked, with ``error`` None on success.
        """
        for command in parse_commands(commands):
            if isinstance(command, IgnoredCommand):
                logger.debug(
                    "agent_command_ignored",
                    command_id=command.command_id,
                    reason=command.reason,
                )
                continue

            error: Optional[Exception] = None
            try:
                self._dispatch(command)
            except CallerContractError as exc:
                logger.warning(
                    "agent_command_failed",
                    command_id=command.command_id,
                    error=str(exc),
                )
                error = exc

            if callback is not None:
                callback(command.command_id, error)

    def _dispatch(self, command: Any) -> None:
        if isinstance(command, StartProfiler):
            self.start(
                command.profile_id,
                command.duration,
                command.sample_period,
                **command.options(),
            )
        elif isinstance(command, StopProfiler):
            self.stop(report_data=command.report_data)
