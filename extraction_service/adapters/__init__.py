"""Extractor adapters and their registry."""

from .base import ExtractorAdapter, collect_rows
from .registry import AdapterRegistry, get_adapter_registry, load_adapter_modules

__all__ = ["ExtractorAdapter", "collect_rows", "AdapterRegistry", "get_adapter_registry", "load_adapter_modules"]
