"""
Thread Profile - one sampling session.

A background thread polls the stack of every live thread in the process at a
fixed interval and merges each backtrace into a per-bucket call-tree forest:

- agent: threads labelled as belonging to the agent itself
- request: threads the instrumentation tagged as servicing a request
- background: threads the instrumentation tagged as background work
- other: everything else
"""

from __future__ import annotations

import base64
import json
import sys
import threading
import time
import zlib
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from tracewire.profiling.node import (
    BacktraceEntry,
    Forest,
    Node,
    aggregate,
    extract_backtrace,
    forest_to_array,
)

logger = structlog.get_logger(__name__)

DEFAULT_SAMPLE_PERIOD = 0.1  # seconds
DEFAULT_DURATION = 120.0  # seconds

AGENT_LABEL_ATTRIBUTE = "tracewire_label"
BUCKET_ATTRIBUTE = "tracewire_bucket"


class Bucket(str, Enum):
    """Thread classification for aggregation."""
    AGENT = "agent"
    REQUEST = "request"
    BACKGROUND = "background"
    OTHER = "other"


# Slot order of the compressed forest blob
WIRE_BUCKETS = (Bucket.OTHER, Bucket.REQUEST, Bucket.AGENT, Bucket.BACKGROUND)


def label_thread(thread: threading.Thread, label: str) -> None:
    """Mark ``thread`` as agent-owned; its samples go to the agent bucket."""
    setattr(thread, AGENT_LABEL_ATTRIBUTE, label)


def tag_thread(thread: threading.Thread, bucket: Bucket) -> None:
    """Tag ``thread`` as request or background work."""
    setattr(thread, BUCKET_ATTRIBUTE, Bucket(bucket))


def bucket_for_thread(thread: Optional[threading.Thread]) -> Bucket:
    if thread is None:
        return Bucket.OTHER
    if getattr(thread, AGENT_LABEL_ATTRIBUTE, None):
        return Bucket.AGENT
    tagged = getattr(thread, BUCKET_ATTRIBUTE, None)
    if tagged in (Bucket.REQUEST, Bucket.BACKGROUND):
        return Bucket(tagged)
    return Bucket.OTHER


def _now_ms() -> float:
    return time.time() * 1000.0


class ThreadProfile:
    """
    A single thread profiling session.

    ``run`` returns immediately with the sampling thread; ``stop`` ends the
    session early. Forests are only mutated by the sampling thread, so read them
    once ``finished`` is true.
    """

    def __init__(
        self,
        profile_id: int,
        duration: float,
        interval: float = DEFAULT_SAMPLE_PERIOD,
        *,
        count_total_samples: bool = False,
        stop_join_timeout: float = 5.0,
        options: Optional[Dict[str, Any]] = None,
    ):
        if interval <= 0:
            raise ValueError(f"Sample interval must be positive, got {interval!r}")
        self.profile_id = profile_id
        self.duration = duration
        self.interval = interval
        self.count_total_samples = count_total_samples
        self.stop_join_timeout = stop_join_timeout
        self.options = dict(options or {})

        self.start_time: Optional[float] = None
        self.stop_time: Optional[float] = None
        self.poll_count = 0
        self.sample_count = 0
        self.traces: Dict[Bucket, Forest] = {bucket: {} for bucket in Bucket}

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._finished = threading.Event()
        self._state_lock = threading.Lock()
        self._stop_requested = False
        self._report_data = True

    # -- State ---------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._finished.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set() and self.stop_time is not None

    @property
    def has_data(self) -> bool:
        return self._report_data and any(self.traces[bucket] for bucket in Bucket)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the sampling loop exits."""
        return self._finished.wait(timeout)

    # -- Lifecycle -----------------------------------------------------------

    def run(self) -> threading.Thread:
        """Start the sampling loop on a dedicated daemon thread."""
        with self._state_lock:
            if self._thread is not None:
                raise RuntimeError(f"Profile {self.profile_id} was already started")

            thread = threading.Thread(
                target=self._sampling_loop,
                name=f"tracewire-profile-{self.profile_id}",
                daemon=True,
            )
            label_thread(thread, "Thread Profiler")
            self._thread = thread
            self.start_time = _now_ms()

        thread.start()
        logger.info(
            "thread_profile_started",
            profile_id=self.profile_id,
            duration=self.duration,
            interval=self.interval,
            **self.options,
        )
        return thread

    def stop(self, report_data: bool = True) -> bool:
        """
        Request the sampling loop to exit.

        Only the first call is effective. When called from another thread this
        waits for the loop to finish. With ``report_data`` false the aggregated
        forests are thrown away.

        Returns True if this call stopped the profile.
        """
        with self._state_lock:
            if self._stop_requested:
                return False
            self._stop_requested = True
            self._report_data = report_data
            thread = self._thread

        self._stop_event.set()

        if thread is None:
            # Never started
            self._finish()
        elif thread is not threading.current_thread():
            thread.join(self.stop_join_timeout)
            if thread.is_alive():
                logger.warning(
                    "thread_profile_stop_timeout",
                    profile_id=self.profile_id,
                    timeout=self.stop_join_timeout,
                )

        if not report_data and self._finished.is_set():
            self.traces = {bucket: {} for bucket in Bucket}

        logger.info(
            "thread_profile_stopped",
            profile_id=self.profile_id,
            report_data=report_data,
        )
        return True

    # -- Sampling ------------------------------------------------------------

    def _sampling_loop(self) -> None:
        started = time.monotonic()
        next_poll = started

        try:
            while True:
                try:
                    self._poll()
                except Exception:
                    logger.exception("thread_profile_poll_failed", profile_id=self.profile_id)

                if self._stop_event.is_set() or time.monotonic() - started >= self.duration:
                    break

                next_poll += self.interval
                delay = next_poll - time.monotonic()
                if delay < 0:
                    # Fell behind; resume from now instead of bursting
                    next_poll = time.monotonic()
                    delay = 0.0

                if self._stop_event.wait(delay):
                    break
        finally:
            self._finish()

    def _poll(self) -> None:
        """Sample every live thread once."""
        threads = {thread.ident: thread for thread in threading.enumerate()}
        samples = 0

        for thread_id, frame in sys._current_frames().items():
            backtrace = extract_backtrace(frame)
            if not backtrace:
                continue
            bucket = bucket_for_thread(threads.get(thread_id))
            self.aggregate(backtrace, self.traces[bucket])
            samples += 1

        self.sample_count += samples
        self.poll_count += 1

    def _finish(self) -> None:
        if not self._report_data:
            self.traces = {bucket: {} for bucket in Bucket}
        self.stop_time = _now_ms()
        self._finished.set()
        logger.debug(
            "thread_profile_finished",
            profile_id=self.profile_id,
            poll_count=self.poll_count,
            sample_count=self.sample_count,
        )

    # -- Aggregation ---------------------------------------------------------

    def aggregate(
        self,
        backtrace: List[BacktraceEntry],
        forest: Optional[Forest] = None,
        runnable: bool = True,
    ) -> Optional[Node]:
        """Merge ``backtrace`` (innermost first) into ``forest``."""
        return aggregate(
            backtrace,
            forest,
            runnable=runnable,
            count_total=self.count_total_samples,
        )

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> Dict[str, List[Any]]:
        """Forests in wire slot order, keyed by upper-case bucket name."""
        return {
            bucket.value.upper(): forest_to_array(self.traces[bucket])
            for bucket in WIRE_BUCKETS
        }

    @staticmethod
    def compress(text: str) -> str:
        """Deflate ``text`` and base64 encode the result."""
        return base64.encodebytes(zlib.compress(text.encode("utf-8"))).decode("ascii")

    @staticmethod
    def decompress(blob: str) -> str:
        return zlib.decompress(base64.b64decode(blob)).decode("utf-8")

    def to_compressed_array(self, agent_run_id: Any) -> List[Any]:
        """Outbound payload for the collector's profile_data method."""
        return [
            agent_run_id,
            [[
                self.profile_id,
                self.start_time,
                self.stop_time,
                self.poll_count,
                self.compress(json.dumps(self.to_dict())),
                self.sample_count,
                0,
            ]],
        ]

    def __repr__(self) -> str:
        state = "finished" if self.finished else "running" if self.running else "created"
        return f"<ThreadProfile id={self.profile_id} {state} polls={self.poll_count}>"
