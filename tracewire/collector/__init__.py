"""
Collector protocol client and marshalling.
"""

from tracewire.collector.client import CollectorClient, CollectorServer
from tracewire.collector.marshal import (
    COMPRESSION_THRESHOLD,
    JsonMarshaller,
    Marshaller,
    MsgpackMarshaller,
    marshaller_for,
)

__all__ = [
    "CollectorClient",
    "CollectorServer",
    "Marshaller",
    "JsonMarshaller",
    "MsgpackMarshaller",
    "marshaller_for",
    "COMPRESSION_THRESHOLD",
]
