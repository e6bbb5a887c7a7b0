"""
================================================================================
MangaLink v1.0 - Platform Registry
================================================================================
Central registry of every platform adapter.

  - Auto-discovers adapter classes in the sources/ directory
  - Shares one HTTP transport between adapters
  - Hands adapters the token and reading-progress stores
  - get(id), others(exclude), keys() for the discovery manager
================================================================================
"""

import os
import importlib
import logging
import pkgutil
import threading
from typing import Any, Dict, Iterable, List, Optional

from .base import BasePlatformAdapter, source_log

logger = logging.getLogger(__name__)

_NON_ADAPTER_MODULES = ('base', 'http_client', '__init__')


class UnknownPlatformError(ValueError):
    """No adapter is registered under the requested id."""


def discover_adapter_classes() -> List[type]:
    """
    Scan the sources/ directory for BasePlatformAdapter subclasses.

    Modules that fail to import are skipped and logged.
    """
    classes = []
    sources_dir = os.path.dirname(__file__)

    for _, module_name, _ in pkgutil.iter_modules([sources_dir]):
        if module_name in _NON_ADAPTER_MODULES:
            continue
        try:
            module = importlib.import_module(f'.{module_name}', __name__)
        except Exception as e:
            source_log(f"⚠️ Failed to load platform module '{module_name}': {e}")
            continue

        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if (isinstance(attr, type)
                    and issubclass(attr, BasePlatformAdapter)
                    and attr is not BasePlatformAdapter
                    and attr.__module__ == module.__name__
                    and not getattr(attr, '__abstractmethods__', None)):
                classes.append(attr)

    return sorted(classes, key=lambda cls: cls.id)


class PlatformRegistry:
    """
    Registry of platform adapters keyed by id.

    Usage:
        registry = PlatformRegistry(tokens=store.tokens, progress=store.progress)
        adapter = registry.get("mangalib")
        for target in registry.others("mangalib"):
            ...
    """

    def __init__(
        self,
        adapters: Optional[Iterable[BasePlatformAdapter]] = None,
        transport=None,
        tokens=None,
        progress=None,
        enabled: Optional[Iterable[str]] = None,
    ):
        self._adapters: Dict[str, BasePlatformAdapter] = {}
        self._lock = threading.Lock()
        self.transport = transport

        if adapters is None:
            if self.transport is None:
                from .http_client import HttpxTransport
                self.transport = HttpxTransport()
            adapters = [
                cls(transport=self.transport, tokens=tokens, progress=progress)
                for cls in discover_adapter_classes()
            ]

        wanted = set(enabled or [])
        for adapter in adapters:
            if wanted and adapter.id not in wanted:
                continue
            self.register(adapter)

        missing = wanted - set(self._adapters)
        if missing:
            logger.warning(f"Unknown platforms in configuration: {', '.join(sorted(missing))}")

        source_log(f"📚 Loaded {len(self._adapters)} platforms: {', '.join(self.keys())}")

    def register(self, adapter: BasePlatformAdapter) -> None:
        with self._lock:
            self._adapters[adapter.id] = adapter

    def configure(self, **options: Any) -> None:
        """Apply network settings (timeout, attempts, backoff) to every adapter."""
        for adapter in self._adapters.values():
            adapter.configure(**options)

    def get(self, platform_id: str) -> BasePlatformAdapter:
        adapter = self._adapters.get(platform_id)
        if adapter is None:
            raise UnknownPlatformError(f"Unknown platform: {platform_id}")
        return adapter

    def __contains__(self, platform_id: str) -> bool:
        return platform_id in self._adapters

    def keys(self) -> List[str]:
        return sorted(self._adapters)

    def others(self, exclude: str) -> List[BasePlatformAdapter]:
        """Every adapter except `exclude`, in id order."""
        return [self._adapters[key] for key in self.keys() if key != exclude]

    def detect(self, url: str) -> Optional[BasePlatformAdapter]:
        """Find the adapter whose URL patterns match."""
        for key in self.keys():
            if self._adapters[key].matches_url(url):
                return self._adapters[key]
        return None

    def get_health_info(self) -> List[Dict[str, Any]]:
        return [self._adapters[key].get_health_info() for key in self.keys()]

    async def close(self) -> None:
        closed = set()
        for adapter in self._adapters.values():
            transport = adapter.transport
            if id(transport) in closed:
                continue
            closed.add(id(transport))
            await adapter.close()


# Global registry instance
_registry: Optional[PlatformRegistry] = None


def get_platform_registry(**kwargs) -> PlatformRegistry:
    """Get or create the global PlatformRegistry instance."""
    global _registry
    if _registry is None:
        _registry = PlatformRegistry(**kwargs)
    return _registry
