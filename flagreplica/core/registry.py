"""
Named backend factories, one registry per kind of store.
"""
from __future__ import annotations

from typing import Any, Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class PluginRegistry(Generic[T]):
    """
    Maps backend names from configuration to factories.

    Example usage:
    ```python
    data_store_backends.register("memory", create_memory_store, default=True)
    data_store_backends.register("consul", create_consul_store)

    store = data_store_backends.get("consul", config={"url": "http://consul:8500", "prefix": "prod"})
    ```
    """

    def __init__(self, name: str):
        self.name = name
        self._factories: dict[str, Callable[..., T]] = {}
        self._default: str | None = None

    @property
    def default(self) -> str | None:
        """Backend used when no name is given; the first registered unless overridden."""
        return self._default

    def register(
        self,
        name: str,
        factory: Callable[..., T],
        *,
        default: bool = False,
    ) -> None:
        """
        Args:
            name: Backend name as it appears in settings
            factory: Called with the backend's config as keyword arguments
            default: Make this the backend used when no name is given
        """
        if name in self._factories:
            logger.warning("Replacing registered backend", registry=self.name, backend=name)
        self._factories[name] = factory
        if default or self._default is None:
            self._default = name
        logger.debug("Registered backend", registry=self.name, backend=name)

    def get(self, name: str | None = None, *, config: dict[str, Any] | None = None) -> T:
        """Build a backend; raises ValueError for a name nobody registered."""
        backend = name or self._default
        factory = self._factories.get(backend) if backend else None
        if factory is None:
            known = ", ".join(sorted(self._factories)) or "none"
            raise ValueError(f"Unknown {self.name} backend {backend!r} (registered: {known})")
        return factory(**(config or {}))


data_store_backends = PluginRegistry[Any]("data store")
big_segment_backends = PluginRegistry[Any]("big segment store")
