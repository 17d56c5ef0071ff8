"""
Health endpoints for the order service.

Liveness, readiness and startup probes plus a JSON metrics document.
Readiness runs every registered check; the service registers its own
(datastore connectivity, background job freshness) next to the built-in
disk and memory checks.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union
import inspect
import os
import time
from datetime import datetime, timezone
from enum import Enum
import psutil
import logging

logger = logging.getLogger(__name__)

CheckResult = Dict[str, Any]
Check = Callable[[], Union[CheckResult, Awaitable[CheckResult]]]
MetricsProvider = Callable[[], Dict[str, Any]]

DISK_FAIL_GB, DISK_WARN_GB = 1, 5
MEMORY_FAIL_MB, MEMORY_WARN_MB = 100, 500


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


def check_result(status_val: HealthStatus, component_type: str, **fields: Any) -> CheckResult:
    return {"status": status_val, "componentType": component_type, "time": _now(), **fields}


def _threshold(value: float, fail_below: float, warn_below: float) -> HealthStatus:
    if value < fail_below:
        return HealthStatus.FAIL
    if value < warn_below:
        return HealthStatus.WARN
    return HealthStatus.PASS


def disk_space_check(path: str = "/") -> CheckResult:
    try:
        free_gb = psutil.disk_usage(path).free / (1024 ** 3)
    except OSError as e:
        return check_result(HealthStatus.WARN, "system", output=str(e))
    return check_result(
        _threshold(free_gb, DISK_FAIL_GB, DISK_WARN_GB), "system",
        observedValue=f"{free_gb:.2f}", observedUnit="GB",
    )


def memory_check() -> CheckResult:
    available_mb = psutil.virtual_memory().available / (1024 ** 2)
    return check_result(
        _threshold(available_mb, MEMORY_FAIL_MB, MEMORY_WARN_MB), "system",
        observedValue=f"{available_mb:.2f}", observedUnit="MB",
    )


def datastore_check(ping: Callable[[], Awaitable[bool]]) -> Check:
    """Wrap an async ping into a timed readiness check"""

    async def check() -> CheckResult:
        started = time.perf_counter()
        try:
            reachable = await ping()
        except Exception as e:
            logger.error(f"Datastore health check failed: {e}")
            return check_result(HealthStatus.FAIL, "datastore", output=str(e))
        elapsed_ms = (time.perf_counter() - started) * 1000
        return check_result(
            HealthStatus.PASS if reachable else HealthStatus.FAIL, "datastore",
            observedValue=f"{elapsed_ms:.2f}", observedUnit="ms",
        )

    return check


def overall_status(checks: Dict[str, CheckResult]) -> HealthStatus:
    statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
    if HealthStatus.FAIL in statuses:
        return HealthStatus.FAIL
    if HealthStatus.WARN in statuses:
        return HealthStatus.WARN
    return HealthStatus.PASS


class ServiceHealth:
    """Builds the health router for one service instance"""

    def __init__(
        self,
        service_name: str,
        version: str = "1.0.0",
        metrics_provider: Optional[MetricsProvider] = None,
        required_settings: Optional[Dict[str, Any]] = None,
    ):
        self.service_name = service_name
        self.version = version
        self.metrics_provider = metrics_provider
        self.required_settings = required_settings or {}
        self.start_time = time.time()
        self.checks_performed = 0
        self._checks: List[Tuple[str, Check, bool]] = [
            ("storage:disk_space", disk_space_check, False),
            ("system:memory", memory_check, False),
        ]

    def add_check(self, name: str, check: Check, startup: bool = False) -> None:
        """Register a readiness check; ``startup`` also runs it in the startup probe"""
        self._checks.append((name, check, startup))

    async def run_checks(self, startup_only: bool = False) -> Dict[str, CheckResult]:
        self.checks_performed += 1
        results = {}
        for name, check, startup in self._checks:
            if startup_only and not startup:
                continue
            result = check()
            if inspect.isawaitable(result):
                result = await result
            results[name] = result
        return results

    def settings_check(self) -> CheckResult:
        missing = [name for name, value in self.required_settings.items() if not value]
        if missing:
            return check_result(HealthStatus.FAIL, "configuration", output=f"Missing settings: {', '.join(missing)}")
        return check_result(HealthStatus.PASS, "configuration")

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        async def health_check() -> Dict[str, Any]:
            """Lightweight liveness answer for load balancers"""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now(),
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        async def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        async def readiness() -> JSONResponse:
            checks = await self.run_checks()
            overall = overall_status(checks)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE if overall == HealthStatus.FAIL else status.HTTP_200_OK,
                content={
                    "status": overall,
                    "serviceId": self.service_name,
                    "version": self.version,
                    "checks": checks,
                    "timestamp": _now(),
                },
            )

        @router.get("/health/startup")
        async def startup():
            checks = await self.run_checks(startup_only=True)
            checks["config:settings"] = self.settings_check()
            if overall_status(checks) == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks},
                )
            return {"status": "started", "checks": checks}

        @router.get("/metrics")
        async def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()
            document = {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": round(time.time() - self.start_time, 3),
                "checks_performed": self.checks_performed,
                "timestamp": _now(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads(),
                },
            }
            if self.metrics_provider is not None:
                document.update(self.metrics_provider())
            return document

        return router
