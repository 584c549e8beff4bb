"""
Health check endpoints for liveness and readiness probes.
"""
import contextlib
from datetime import datetime, timezone
from typing import Any, Callable, Dict
import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from . import __version__
from .logging import SERVICE_NAME, get_logger
from .metrics import Metrics

logger = get_logger()


class HealthChecker:
    """
    Health checker for the consumer service.

    Provides:
    - Liveness checks (is the process running?)
    - Readiness checks (is the consumption loop running?)
    """

    def __init__(
        self,
        state_provider: Callable[[], str],
        service_name: str = SERVICE_NAME,
        version: str = __version__,
    ):
        self.state_provider = state_provider
        self.service_name = service_name
        self.version = version

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def liveness(self) -> Dict[str, Any]:
        """
        Liveness check - basic health check.

        Returns:
            dict: Health status with service info and timestamp
        """
        return {
            "status": "ok",
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._timestamp(),
        }

    def readiness(self) -> Dict[str, Any]:
        """
        Readiness check - ready while the consumption loop is running.

        Returns:
            dict: Readiness status with the loop state
        """
        state = self.state_provider()
        return {
            "status": "ready" if state == "running" else "not_ready",
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._timestamp(),
            "checks": {"consumer": {"state": state}},
        }


def create_health_app(checker: HealthChecker, metrics: Metrics) -> FastAPI:
    """Build the health and metrics HTTP app."""
    app = FastAPI(title="Kafka Node Events", version=checker.version)

    @app.get("/health")
    async def health():
        """Liveness probe. Returns 200 if the process is running."""
        logger.debug("health_check_liveness")
        return checker.liveness()

    @app.get("/health/ready")
    async def health_ready():
        """
        Readiness probe.

        Returns:
            200: Consumption loop is running
            503: Loop is connecting, failed or stopping
        """
        logger.debug("health_check_readiness")
        metrics.update_system_metrics()
        result = checker.readiness()
        status_code = 200 if result["status"] == "ready" else 503
        return JSONResponse(result, status_code=status_code)

    app.mount("/metrics", make_asgi_app(registry=metrics.registry))
    return app


class HealthServer(uvicorn.Server):
    """Uvicorn server that leaves signal handling to the host process."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self):
        pass


def build_health_server(app: FastAPI, port: int) -> HealthServer:
    config = uvicorn.Config(app, host="0.0.0.0", port=port, log_config=None, access_log=False)
    return HealthServer(config)
