"""
Collector Protocol Client

Async client for the collector's request/response protocol:

* One coroutine per remote method
* Redirect-host resolution once per agent run
* Pluggable marshalling (JSON or msgpack)
* Classification of failures into transient, unrecoverable and
  collector-reported errors
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import httpx
import structlog

from tracewire.collector.marshal import IDENTITY, Marshaller, marshaller_for
from tracewire.core.errors import (
    NotConnectedError,
    ProfileNotFinishedError,
    ServerConnectionError,
    UnrecoverableServerError,
)
from tracewire.profiling.profile import ThreadProfile

logger = structlog.get_logger(__name__)

REMOTE_PATH = "/agent_listener/invoke_raw_method"
UNRECOVERABLE_STATUSES = frozenset({413, 415})

Timestamp = Union[datetime, float, int]


def _epoch(value: Timestamp) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


@dataclass
class CollectorServer:
    """Collector address. ``ip`` is a cached resolution of ``name``."""

    name: str
    port: int = 443
    ip: Optional[str] = None
    ssl: bool = True

    @property
    def base_url(self) -> str:
        scheme = "https" if self.ssl else "http"
        return f"{scheme}://{self.ip or self.name}:{self.port}"

    @classmethod
    def from_host(cls, host: str, template: "CollectorServer") -> "CollectorServer":
        """Point at ``host`` (optionally ``host:port``), forgetting any cached ip."""
        name, _, port = host.partition(":")
        return cls(
            name=name,
            port=int(port) if port.isdigit() else template.port,
            ip=None,
            ssl=template.ssl,
        )

    def __str__(self) -> str:
        return f"{self.name}:{self.port}"


class CollectorClient:
    """
    Client for one agent run against the collector.

    ``connect`` must succeed before any data-submission method; those raise
    NotConnectedError otherwise.
    """

    def __init__(
        self,
        license_key: str,
        collector: CollectorServer,
        *,
        marshaller: Optional[Marshaller] = None,
        timeout: float = 120.0,
        protocol_version: int = 9,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.license_key = license_key
        self.collector = collector
        self.marshaller = marshaller or marshaller_for("json")
        self.request_timeout = timeout
        self.protocol_version = protocol_version

        self.agent_id: Optional[Any] = None
        self.server_config: Optional[Any] = None
        self._redirect_resolved = False

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_count = 0
        self._error_count = 0

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "CollectorClient":
        collector = CollectorServer(
            name=config.collector.host,
            port=config.collector.port,
            ip=config.collector.ip,
            ssl=config.collector.ssl,
        )
        return cls(
            config.license_key,
            collector,
            marshaller=marshaller_for(config.collector.marshal_format),
            timeout=config.collector.timeout,
            protocol_version=config.collector.protocol_version,
            **kwargs,
        )

    # -- Lifecycle -----------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.request_timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "CollectorClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self.agent_id is not None

    # -- Remote methods ------------------------------------------------------

    async def get_redirect_host(self) -> Optional[str]:
        """Ask the configured collector which host should serve this run."""
        return await self._invoke_remote("get_redirect_host", [])

    async def connect(self, settings: Optional[Dict[str, Any]] = None) -> Any:
        """
        Handshake with the collector and record the assigned run id.

        The redirect host is only looked up until the first connect succeeds;
        after that every request of the run goes to the same collector.
        """
        if not self._redirect_resolved:
            host = await self.get_redirect_host()
            if host:
                previous = self.collector
                self.collector = CollectorServer.from_host(host, previous)
                logger.info(
                    "collector_redirected",
                    previous=str(previous),
                    collector=str(self.collector),
                )

        response = await self._invoke_remote("connect", [settings or {}])
        if isinstance(response, dict):
            self.agent_id = response.get("agent_run_id")
            self.server_config = response.get("config")
        self._redirect_resolved = True

        logger.info("collector_connected", agent_run_id=self.agent_id, collector=str(self.collector))
        return response

    async def shutdown(self, time_: Timestamp) -> Any:
        """End the agent run. A client that never connected has nothing to end."""
        if self.agent_id is None:
            logger.debug("collector_shutdown_skipped")
            return None

        response = await self._invoke_remote("shutdown", [self.agent_id, int(_epoch(time_))])
        self.agent_id = None
        self._redirect_resolved = False
        return response

    async def metric_data(
        self,
        last_harvest_time: Timestamp,
        now: Timestamp,
        unsent_timeslice_data: Any,
    ) -> Any:
        self._require_connection("metric_data")
        return await self._invoke_remote(
            "metric_data",
            [self.agent_id, _epoch(last_harvest_time), _epoch(now), unsent_timeslice_data],
        )

    async def error_data(self, unsent_errors: List[Any]) -> Any:
        self._require_connection("error_data")
        return await self._invoke_remote("error_data", [self.agent_id, unsent_errors])

    async def transaction_sample_data(self, traces: List[Any]) -> Any:
        self._require_connection("transaction_sample_data")
        return await self._invoke_remote("transaction_sample_data", [self.agent_id, traces])

    async def sql_trace_data(self, sql_traces: List[Any]) -> Any:
        self._require_connection("sql_trace_data")
        return await self._invoke_remote("sql_trace_data", [sql_traces])

    async def profile_data(self, profile: ThreadProfile) -> Any:
        """Submit a finished thread profile."""
        self._require_connection("profile_data")
        if not profile.finished:
            raise ProfileNotFinishedError(profile.profile_id)
        return await self._invoke_remote(
            "profile_data", profile.to_compressed_array(self.agent_id)
        )

    async def get_agent_commands(self) -> List[Any]:
        """Poll pending commands; anything but a list counts as no commands."""
        self._require_connection("get_agent_commands")
        commands = await self._invoke_remote("get_agent_commands", [self.agent_id])
        if not isinstance(commands, list):
            logger.debug("agent_commands_empty", response_type=type(commands).__name__)
            return []
        return commands

    async def agent_command_results(
        self,
        command_id: int,
        error: Optional[Union[str, Exception]] = None,
    ) -> Any:
        """Report the outcome of one agent command."""
        self._require_connection("agent_command_results")
        result: Dict[str, Any] = {"error": str(error)} if error else {}
        return await self._invoke_remote(
            "agent_command_results",
            [self.agent_id, {str(command_id): result}],
        )

    # -- Core request helper -------------------------------------------------

    def _require_connection(self, method: str) -> None:
        if self.agent_id is None:
            raise NotConnectedError(method)

    def _params(self, method: str) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "method": method,
            "license_key": self.license_key,
            "marshal_format": self.marshaller.format,
            "protocol_version": self.protocol_version,
        }
        if self.agent_id is not None:
            params["run_id"] = self.agent_id
        return params

    async def _invoke_remote(self, method: str, args: List[Any]) -> Any:
        """POST ``args`` to the collector and decode the response."""
        body, encoding = self.marshaller.dump(args)
        headers = {"Content-Type": self.marshaller.content_type}
        if encoding != IDENTITY:
            headers["Content-Encoding"] = encoding

        url = f"{self.collector.base_url}{REMOTE_PATH}"
        client = await self._ensure_client()
        self._request_count += 1
        started = time.perf_counter()

        try:
            response = await client.post(
                url,
                params=self._params(method),
                content=body,
                headers=headers,
            )
        except httpx.TransportError as exc:
            self._error_count += 1
            logger.warning(
                "collector_request_error",
                method=method,
                collector=str(self.collector),
                error=str(exc),
            )
            raise ServerConnectionError(
                f"Recoverable error connecting to {self.collector} on {method}: {exc!r}"
            ) from exc

        logger.debug(
            "collector_request_complete",
            method=method,
            status=response.status_code,
            request_bytes=len(body),
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return self._check_response(method, response)

    def _check_response(self, method: str, response: httpx.Response) -> Any:
        status = response.status_code

        if status == 200:
            return self.marshaller.load(response.content)

        self._error_count += 1
        if status in UNRECOVERABLE_STATUSES:
            logger.error(
                "collector_rejected_payload",
                method=method,
                status=status,
            )
            raise UnrecoverableServerError(
                f"{status}: {response.reason_phrase} on {method}",
                status_code=status,
            )

        logger.warning("collector_request_failed", method=method, status=status)
        raise ServerConnectionError(
            f"Unexpected response from {self.collector} on {method}: "
            f"{status} {response.reason_phrase}",
            status_code=status,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        return {
            "collector": str(self.collector),
            "agent_run_id": self.agent_id,
            "marshal_format": self.marshaller.format,
            "requests": self._request_count,
            "errors": self._error_count,
        }
