"""
Shared fixtures for tracewire tests.

FakeCollector routes requests by their ``method`` query parameter and answers
in whichever marshal format the request asked for.
"""

import json
from typing import Any, Dict, List, Tuple

import httpx
import msgpack
import pytest


class FakeCollector:
    """In-memory collector behind an httpx.MockTransport."""

    def __init__(self):
        self.routes: Dict[str, Tuple[Any, int]] = {}
        self.requests: List[httpx.Request] = []
        self.failure: Exception = None

    def respond_to(self, method: str, payload: Any, status: int = 200) -> None:
        self.routes[method] = (payload, status)

    def reset(self) -> None:
        self.routes.clear()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failure is not None:
            raise self.failure

        method = request.url.params.get("method")
        if method not in self.routes:
            return httpx.Response(404, content=b"not found")

        payload, status = self.routes[method]
        if isinstance(payload, bytes):
            body = payload
        elif request.url.params.get("marshal_format") == "msgpack":
            body = msgpack.packb(payload, use_bin_type=True)
        else:
            body = json.dumps(payload).encode("utf-8")
        return httpx.Response(status, content=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_for(self, method: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.params.get("method") == method]

    @staticmethod
    def json_body(request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture
def collector():
    """A collector that redirects to localhost and hands out run id 1."""
    fake = FakeCollector()
    fake.respond_to("get_redirect_host", "localhost")
    fake.respond_to("connect", {"config": "some config directives", "agent_run_id": 1})
    return fake


@pytest.fixture
def server():
    from tracewire.collector.client import CollectorServer

    return CollectorServer("somewhere.example.com", 30303, "10.10.10.10", ssl=False)


@pytest.fixture
def service(collector, server):
    from tracewire.collector.client import CollectorClient

    return CollectorClient("license-key", server, transport=collector.transport)


@pytest.fixture
def profiler():
    """A profiler whose session is discarded after the test."""
    from tracewire.profiling.profiler import ThreadProfiler

    profiler = ThreadProfiler(stop_join_timeout=2.0)
    yield profiler
    profiler.stop(report_data=False)
