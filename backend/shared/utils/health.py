"""
Dependency checks for the detailed health endpoint.

A check is a blocking callable that raises when its dependency is down.
Checks run concurrently in worker threads, each with its own timeout.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from shared.config.logging import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class CheckResult:
    status: HealthStatus
    latency_ms: float
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value, "latency_ms": round(self.latency_ms, 2)}
        if self.error:
            result["error"] = self.error
        return result


async def run_check(name: str, check: Callable[[], Any], timeout: float) -> CheckResult:
    started = time.perf_counter()
    try:
        await asyncio.wait_for(asyncio.to_thread(check), timeout=timeout)
    except asyncio.TimeoutError:
        error = f"timeout after {timeout}s"
    except Exception as e:
        error = str(e)
    else:
        return CheckResult(HealthStatus.HEALTHY, (time.perf_counter() - started) * 1000)

    logger.warning("Health check failed", component=name, error=error)
    return CheckResult(HealthStatus.UNHEALTHY, (time.perf_counter() - started) * 1000, error)


async def check_dependencies(checks: dict[str, Callable[[], Any]], timeout: float = 3.0) -> dict[str, Any]:
    """
    Returns:
        {"status": "healthy" | "degraded", "components": {name: result}}
    """
    results = await asyncio.gather(*(run_check(name, check, timeout) for name, check in checks.items()))
    components = dict(zip(checks, results))
    healthy = all(result.status == HealthStatus.HEALTHY for result in results)
    return {
        "status": (HealthStatus.HEALTHY if healthy else HealthStatus.DEGRADED).value,
        "components": {name: result.to_dict() for name, result in components.items()},
    }
