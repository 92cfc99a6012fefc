"""
Request/response marshalling for the collector protocol.

Two interchangeable encodings share the dump/load contract:

- JsonMarshaller: structured text
- MsgpackMarshaller: compact binary; bodies over 64 KiB are deflated

Collector responses wrap their result as ``{"return_value": ...}`` or report a
fault as ``{"exception": {"error_type": ..., "message": ...}}``.
"""

from __future__ import annotations

import json
import zlib
from abc import ABC, abstractmethod
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Tuple

import msgpack
import structlog

from tracewire.core.errors import CollectorError, SerializationError

logger = structlog.get_logger(__name__)

COMPRESSION_THRESHOLD = 64 * 1024  # bytes

IDENTITY = "identity"
DEFLATE = "deflate"


def _encode_default(obj: Any) -> Any:
    """Fallback encoding for types neither codec handles natively."""
    if isinstance(obj, datetime):
        return obj.timestamp()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not serializable")


class Marshaller(ABC):
    """Encodes request bodies and decodes collector responses."""

    format: str = ""
    content_type: str = "application/octet-stream"

    @abstractmethod
    def dump(self, payload: Any) -> Tuple[bytes, str]:
        """Encode ``payload``; returns the body and its content encoding."""

    @abstractmethod
    def _decode(self, data: bytes) -> Any:
        """Decode a raw body."""

    def load(self, data: bytes, encoding: str = IDENTITY) -> Any:
        """Decode a response body and unwrap its return value."""
        if not data:
            return None
        if encoding == DEFLATE:
            try:
                data = zlib.decompress(data)
            except zlib.error as exc:
                raise SerializationError(f"Could not inflate response body: {exc}") from exc
        return self.return_value_for(self._decode(data))

    @staticmethod
    def return_value_for(obj: Any) -> Any:
        if isinstance(obj, dict):
            if "exception" in obj:
                fault = obj["exception"]
                if isinstance(fault, dict):
                    raise CollectorError(
                        str(fault.get("error_type", "UnknownError")),
                        str(fault.get("message", "")),
                    )
                raise CollectorError("UnknownError", str(fault))
            if "return_value" in obj:
                return obj["return_value"]
        return obj


class JsonMarshaller(Marshaller):
    """Human-diffable JSON bodies."""

    format = "json"
    content_type = "application/json"

    def dump(self, payload: Any) -> Tuple[bytes, str]:
        return json.dumps(payload, default=_encode_default).encode("utf-8"), IDENTITY

    def _decode(self, data: bytes) -> Any:
        try:
            return json.loads(data)
        except ValueError as exc:
            raise SerializationError(f"Invalid JSON in collector response: {exc}") from exc


class MsgpackMarshaller(Marshaller):
    """Compact msgpack bodies, deflated above the compression threshold."""

    format = "msgpack"
    content_type = "application/x-msgpack"

    def __init__(self, compression_threshold: int = COMPRESSION_THRESHOLD):
        self.compression_threshold = compression_threshold

    def dump(self, payload: Any) -> Tuple[bytes, str]:
        data = msgpack.packb(payload, use_bin_type=True, default=_encode_default)
        if len(data) > self.compression_threshold:
            compressed = zlib.compress(data)
            logger.debug(
                "payload_compressed",
                original_bytes=len(data),
                compressed_bytes=len(compressed),
            )
            return compressed, DEFLATE
        return data, IDENTITY

    def _decode(self, data: bytes) -> Any:
        try:
            return msgpack.unpackb(data, raw=False, strict_map_key=False)
        except (msgpack.UnpackException, ValueError) as exc:
            raise SerializationError(f"Invalid msgpack in collector response: {exc}") from exc


_MARSHALLERS = {
    JsonMarshaller.format: JsonMarshaller,
    MsgpackMarshaller.format: MsgpackMarshaller,
}


def marshaller_for(marshal_format: str) -> Marshaller:
    """Build the marshaller for a configured ``marshal_format``."""
    try:
        return _MARSHALLERS[marshal_format]()
    except KeyError:
        raise ValueError(f"Unknown marshal format: {marshal_format!r}") from None
