"""Health checks for the replica's backing stores."""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

from ..core.big_segments import BigSegmentStoreWrapper, BigSegmentsStatus
from ..core.interfaces.store import DataStore

logger = structlog.get_logger()


class HealthStatus(str, Enum):
    """Health status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    latency_ms: Optional[float] = None
    message: Optional[str] = None
    details: dict = field(default_factory=dict)


@dataclass
class SystemHealth:
    """Overall replica health status."""

    status: HealthStatus
    components: list[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "components": {
                c.name: {
                    "status": c.status.value,
                    "latency_ms": c.latency_ms,
                    "message": c.message,
                    **c.details,
                }
                for c in self.components
            },
        }


async def check_data_store(store: DataStore, slow_ms: float = 100) -> ComponentHealth:
    """Check data store reachability and whether it holds a full data set."""
    name = f"data_store:{store.describe()}"
    start = time.perf_counter()
    if not await store.is_available():
        logger.error("Data store health check failed", store=store.describe())
        return ComponentHealth(name=name, status=HealthStatus.UNHEALTHY, message="Unavailable")
    latency = (time.perf_counter() - start) * 1000

    initialized = await store.is_initialized()
    if not initialized:
        status, message = HealthStatus.DEGRADED, "Not initialized"
    elif latency >= slow_ms:
        status, message = HealthStatus.DEGRADED, "Slow response"
    else:
        status, message = HealthStatus.HEALTHY, "Connected"

    return ComponentHealth(
        name=name,
        status=status,
        latency_ms=round(latency, 2),
        message=message,
        details={"initialized": initialized},
    )


async def check_big_segment_store(wrapper: BigSegmentStoreWrapper) -> ComponentHealth:
    """Map Big Segment store status onto a health status."""
    status = await wrapper.get_status()
    if status == BigSegmentsStatus.HEALTHY:
        return ComponentHealth(name="big_segments", status=HealthStatus.HEALTHY, message="Up to date")
    if status == BigSegmentsStatus.STALE:
        return ComponentHealth(name="big_segments", status=HealthStatus.DEGRADED, message="Stale")
    return ComponentHealth(name="big_segments", status=HealthStatus.UNHEALTHY, message="Store error")


class HealthChecker:
    """
    Runs a set of named checks concurrently.

    Usage:
        checker = HealthChecker()
        checker.add_check("store", lambda: check_data_store(store))
        health = await checker.run()
    """

    def __init__(self):
        self.checks: dict[str, Callable[[], Awaitable[ComponentHealth]]] = {}

    def add_check(self, name: str, check_fn: Callable[[], Awaitable[ComponentHealth]]) -> None:
        """Add a health check function."""
        self.checks[name] = check_fn

    async def run(self) -> SystemHealth:
        """Run all health checks concurrently."""
        results = await asyncio.gather(
            *[check() for check in self.checks.values()],
            return_exceptions=True
        )

        components = []
        for name, result in zip(self.checks.keys(), results):
            if isinstance(result, Exception):
                components.append(ComponentHealth(
                    name=name,
                    status=HealthStatus.UNHEALTHY,
                    message=str(result)[:100],
                ))
            else:
                components.append(result)

        statuses = [c.status for c in components]
        if HealthStatus.UNHEALTHY in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        return SystemHealth(status=overall, components=components)
