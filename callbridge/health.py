"""
Liveness and readiness checks.
"""
from datetime import datetime, timezone
from typing import Dict, Any
import psutil
from .logging import get_logger
from .services.call_correlator import CallCorrelator

logger = get_logger()


class HealthChecker:
    """
    Health checker for the CallBridge service.

    Readiness requires a connected bus and a reachable result store.
    """

    def __init__(self, service_name: str = "callbridge", version: str = "0.1.0"):
        self.service_name = service_name
        self.version = version

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def liveness(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._timestamp(),
        }

    async def readiness(self, correlator: CallCorrelator) -> Dict[str, Any]:
        """
        Readiness check.

        Checks:
        - Bus adapter connection
        - Result store reachability (if configured)
        - Memory availability

        Returns:
            dict: Readiness status with detailed check results
        """
        checks = {
            "bus": await self._check_bus(correlator),
            "result_store": await self._check_store(correlator),
            "memory": self._check_memory(),
        }
        ready = all(check["status"] != "error" for check in checks.values())

        return {
            "status": "ready" if ready else "not_ready",
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._timestamp(),
            "in_flight_calls": len(correlator.in_flight),
            "checks": checks,
        }

    async def _check_bus(self, correlator: CallCorrelator) -> Dict[str, Any]:
        adapter = type(correlator.bus).__name__
        if await correlator.bus.health_check():
            return {"status": "ok", "adapter": adapter}
        return {"status": "error", "adapter": adapter, "error": "not connected"}

    async def _check_store(self, correlator: CallCorrelator) -> Dict[str, Any]:
        if correlator.store is None:
            return {"status": "skipped", "message": "No result store configured"}
        store = type(correlator.store).__name__
        if await correlator.store.health_check():
            return {"status": "ok", "store": store}
        return {"status": "error", "store": store, "error": "unreachable"}

    def _check_memory(self, threshold_mb: float = 50.0) -> Dict[str, Any]:
        """
        Check available memory.

        Args:
            threshold_mb: Minimum available memory in MB (default: 50.0)
        """
        try:
            memory = psutil.virtual_memory()
        except OSError as e:
            logger.warning("memory_health_check_failed", error=str(e))
            return {"status": "error", "error": str(e)}

        available_mb = memory.available / (1024**2)
        if available_mb < threshold_mb:
            status = "error"
        elif available_mb < threshold_mb * 2:
            status = "warning"
        else:
            status = "ok"

        return {
            "status": status,
            "available_mb": round(available_mb, 2),
            "total_mb": round(memory.total / (1024**2), 2),
            "used_percent": memory.percent,
        }
