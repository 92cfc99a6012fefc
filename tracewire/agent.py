"""
Tracewire agent harvest loop.

Connects to the collector, polls for agent commands, hands them to the thread
profiler, reports each command's outcome and ships finished profiles.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

import structlog

from tracewire import __version__
from tracewire.collector.client import CollectorClient
from tracewire.core.config import TracewireConfig, get_config
from tracewire.core.errors import (
    CollectorError,
    ServerConnectionError,
    UnrecoverableServerError,
)
from tracewire.profiling.profiler import ThreadProfiler

logger = structlog.get_logger(__name__)

_COLLECTOR_ERRORS = (ServerConnectionError, UnrecoverableServerError, CollectorError)


class TelemetryAgent:
    """
    Drives one agent run against the collector.

    ``run_cycle`` is one harvest: poll commands, then submit a finished
    profile if there is one. ``run`` repeats it every
    ``agent.command_poll_interval`` seconds until ``stop`` is called.
    """

    def __init__(
        self,
        config: Optional[TracewireConfig] = None,
        client: Optional[CollectorClient] = None,
        profiler: Optional[ThreadProfiler] = None,
    ):
        self.config = config or get_config()
        self.client = client or CollectorClient.from_config(self.config)
        self.profiler = profiler or ThreadProfiler.from_config(self.config)

        self._running = False
        self._stats = {
            "cycles": 0,
            "commands_processed": 0,
            "profiles_sent": 0,
            "profiles_dropped": 0,
        }

    def connect_settings(self) -> Dict[str, Any]:
        """Identity sent with the connect handshake."""
        agent = self.config.agent
        return {
            "pid": agent.pid,
            "host": agent.host,
            "app_name": list(agent.app_name),
            "language": agent.language,
            "agent_version": __version__,
            "settings": {
                "profiler.enabled": self.config.profiler.enabled,
                "collector.marshal_format": self.config.collector.marshal_format,
            },
        }

    async def start(self) -> Any:
        """Connect to the collector."""
        return await self.client.connect(self.connect_settings())

    async def check_for_agent_commands(self) -> int:
        """Poll and dispatch agent commands; returns how many were handled."""
        if not self.config.profiler.enabled:
            return 0

        try:
            commands = await self.client.get_agent_commands()
        except _COLLECTOR_ERRORS as exc:
            logger.warning("agent_command_poll_failed", error=str(exc))
            return 0

        results: List[Tuple[int, Optional[Exception]]] = []
        # Stopping a profile joins its sampling thread
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            self.profiler.respond_to_commands,
            commands,
            lambda command_id, error: results.append((command_id, error)),
        )

        for command_id, error in results:
            try:
                await self.client.agent_command_results(command_id, error)
            except _COLLECTOR_ERRORS as exc:
                logger.warning(
                    "agent_command_result_failed",
                    command_id=command_id,
                    error=str(exc),
                )

        self._stats["commands_processed"] += len(results)
        return len(results)

    async def harvest_profile(self) -> bool:
        """
        Send the current profile if it has finished.

        A transient failure keeps the profile for the next cycle; a rejected
        payload is dropped.
        """
        profile = self.profiler.profile
        if profile is None or not profile.finished:
            return False

        try:
            await self.client.profile_data(profile)
        except UnrecoverableServerError as exc:
            self.profiler.harvest()
            self._stats["profiles_dropped"] += 1
            logger.error(
                "profile_dropped",
                profile_id=profile.profile_id,
                error=str(exc),
            )
            return False
        except (ServerConnectionError, CollectorError) as exc:
            logger.warning(
                "profile_send_failed",
                profile_id=profile.profile_id,
                error=str(exc),
            )
            return False

        self.profiler.harvest()
        self._stats["profiles_sent"] += 1
        logger.info(
            "profile_sent",
            profile_id=profile.profile_id,
            poll_count=profile.poll_count,
            sample_count=profile.sample_count,
        )
        return True

    async def run_cycle(self) -> None:
        self._stats["cycles"] += 1
        await self.check_for_agent_commands()
        await self.harvest_profile()

    async def run(self) -> None:
        """
        Harvest until stopped.

        Connecting happens inside the cycle, so a collector that is down at
        startup is retried every poll interval.
        """
        self._running = True

        while self._running:
            try:
                if not self.client.connected:
                    await self.start()
                await self.run_cycle()
            except _COLLECTOR_ERRORS as exc:
                logger.warning("harvest_cycle_collector_error", error=str(exc))
            except Exception:
                logger.exception("harvest_cycle_failed")
            await asyncio.sleep(self.config.agent.command_poll_interval)

    def stop(self) -> None:
        self._running = False

    async def shutdown(self) -> None:
        """Discard any running profile, end the run and close the client."""
        self.stop()
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.profiler.stop, False)
        try:
            await self.client.shutdown(time.time())
        except _COLLECTOR_ERRORS as exc:
            logger.warning("collector_shutdown_failed", error=str(exc))
        finally:
            await self.client.close()

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "profiler_running": self.profiler.running,
            "client": self.client.get_stats(),
        }
