"""
Health and readiness probes for the settlement service.

Response bodies follow the draft "Health Check Response Format for HTTP
APIs"; the routes line up with Kubernetes liveness, readiness and startup
probes.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from typing import Dict, Any, Optional
import os
import time
from datetime import datetime, timezone
from enum import Enum
import psutil
import logging

logger = logging.getLogger(__name__)

def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"

class ServiceHealth:
    """Builds the health router around the service's own database engine"""

    def __init__(
        self,
        service_name: str,
        version: str = "1.0.0",
        engine: Optional[Engine] = None,
        required_config: Optional[Dict[str, Any]] = None,
    ):
        self.service_name = service_name
        self.version = version
        self.engine = engine
        self.required_config = required_config or {}
        self.start_time = time.time()
        self.checks_performed = 0
        self.last_check_time = None

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        def health_check() -> Dict[str, Any]:
            """Lightweight liveness check for load balancers"""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now()
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            """Checks every dependency the service needs to take traffic"""
            checks = self.readiness_checks()
            overall_status = self.overall_status(checks)
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE if overall_status == HealthStatus.FAIL else status.HTTP_200_OK

            return JSONResponse(status_code=status_code, content={
                "status": overall_status.value,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "checks": checks,
                "serviceId": self.service_name,
                "description": f"{self.service_name} microservice",
                "timestamp": _now()
            })

        @router.get("/health/startup")
        def startup():
            checks = self.startup_checks()
            if self.overall_status(checks) == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks}
                )
            return {"status": "started", "checks": checks}

        @router.get("/metrics")
        def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": time.time() - self.start_time,
                "checks_performed": self.checks_performed,
                "timestamp": _now(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "memory_vms_bytes": memory.vms,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads()
                }
            }

        return router

    def readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        self.last_check_time = time.time()
        return {
            "database:connectivity": self._check_database(),
            "storage:disk_space": self._check_disk_space(),
            "system:memory": self._check_memory(),
        }

    def startup_checks(self) -> Dict[str, Dict[str, Any]]:
        return {
            "database:migrations": self._check_migrations(),
            "config:environment": self._check_config(),
        }

    def _check_database(self) -> Dict[str, Any]:
        if self.engine is None:
            return {"status": HealthStatus.WARN.value, "componentType": "datastore",
                    "output": "No database engine configured", "time": _now()}
        try:
            start_time = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return {
                "status": HealthStatus.PASS.value,
                "componentType": "datastore",
                "observedValue": f"{(time.time() - start_time) * 1000:.2f}ms",
                "observedUnit": "ms",
                "time": _now()
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": HealthStatus.FAIL.value, "componentType": "datastore",
                    "output": str(e), "time": _now()}

    def _check_disk_space(self) -> Dict[str, Any]:
        try:
            free_gb = psutil.disk_usage('/').free / (1024 ** 3)
            return {
                "status": self._grade(free_gb, fail_below=1, warn_below=5).value,
                "componentType": "system",
                "observedValue": f"{free_gb:.2f}",
                "observedUnit": "GB",
                "time": _now()
            }
        except Exception as e:
            return {"status": HealthStatus.WARN.value, "componentType": "system",
                    "output": str(e), "time": _now()}

    def _check_memory(self) -> Dict[str, Any]:
        try:
            available_mb = psutil.virtual_memory().available / (1024 ** 2)
            return {
                "status": self._grade(available_mb, fail_below=100, warn_below=500).value,
                "componentType": "system",
                "observedValue": f"{available_mb:.2f}",
                "observedUnit": "MB",
                "time": _now()
            }
        except Exception as e:
            return {"status": HealthStatus.WARN.value, "componentType": "system",
                    "output": str(e), "time": _now()}

    def _check_migrations(self) -> Dict[str, Any]:
        if self.engine is None:
            return {"status": HealthStatus.WARN.value, "componentType": "datastore",
                    "output": "No database engine configured", "time": _now()}
        try:
            if inspect(self.engine).has_table("alembic_version"):
                return {"status": HealthStatus.PASS.value, "componentType": "datastore", "time": _now()}
            return {"status": HealthStatus.WARN.value, "componentType": "datastore",
                    "output": "Migrations table not found", "time": _now()}
        except Exception as e:
            return {"status": HealthStatus.FAIL.value, "componentType": "datastore",
                    "output": str(e), "time": _now()}

    def _check_config(self) -> Dict[str, Any]:
        missing = [name for name, value in self.required_config.items() if not value]
        if missing:
            return {
                "status": HealthStatus.FAIL.value,
                "componentType": "configuration",
                "output": f"Missing configuration: {', '.join(missing)}",
                "time": _now()
            }
        return {"status": HealthStatus.PASS.value, "componentType": "configuration", "time": _now()}

    @staticmethod
    def _grade(value: float, fail_below: float, warn_below: float) -> HealthStatus:
        if value < fail_below:
            return HealthStatus.FAIL
        if value < warn_below:
            return HealthStatus.WARN
        return HealthStatus.PASS

    @staticmethod
    def overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = {check.get("status", HealthStatus.PASS.value) for check in checks.values()}
        if HealthStatus.FAIL.value in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN.value in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
