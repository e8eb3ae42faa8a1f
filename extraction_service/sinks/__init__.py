"""Ingest sinks for normalized records."""

from .base import IngestAck, IngestSink
from .http import HttpIngestSink, build_sink

__all__ = ["IngestAck", "IngestSink", "HttpIngestSink", "build_sink"]
