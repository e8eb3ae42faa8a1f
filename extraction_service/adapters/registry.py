"""Adapter registry keyed by site."""

from __future__ import annotations

import importlib
import logging
from typing import Dict, Iterable, List, Optional, Union

from hotel_rates.schema import Site

from .base import ExtractorAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    def __init__(self) -> None:
        self._adapters: Dict[Site, ExtractorAdapter] = {}

    def register(self, adapter: ExtractorAdapter, site: Optional[Union[Site, str]] = None) -> ExtractorAdapter:
        key = Site(site or adapter.site)
        if key in self._adapters:
            logger.warning("Replacing adapter", extra={"site": key.value})
        self._adapters[key] = adapter
        return adapter

    def get(self, site: Union[Site, str]) -> ExtractorAdapter:
        """Return the adapter for ``site``; raises ``LookupError`` when none is registered."""

        try:
            return self._adapters[Site(site)]
        except KeyError:
            raise LookupError(f"No extractor adapter registered for {Site(site).value}") from None

    def sites(self) -> List[Site]:
        return sorted(self._adapters, key=lambda site: site.value)

    def __contains__(self, site: object) -> bool:
        try:
            return Site(site) in self._adapters
        except ValueError:
            return False


def load_adapter_modules(modules: Iterable[str]) -> List[str]:
    """Import modules that register adapters as an import side effect."""

    loaded = []
    for name in modules:
        importlib.import_module(name)
        loaded.append(name)
        logger.info("Loaded adapter module", extra={"module": name})
    return loaded


_global_registry: Optional[AdapterRegistry] = None


def get_adapter_registry() -> AdapterRegistry:
    global _global_registry
    if _global_registry is None:
        _global_registry = AdapterRegistry()
    return _global_registry


__all__ = ["AdapterRegistry", "get_adapter_registry", "load_adapter_modules"]
