"""Unified hotel/room schema, validation and site mappers."""

__all__ = [
    "schema",
    "validation",
    "mappers",
    "payloads",
    "logging_utils",
]

__version__ = "0.1.0"
