"""
Base service class for gateway services.
"""

import os
import time
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException, RateLimitError
from shared.logging import configure_logging, get_logger
from shared.metrics import get_metrics_collector
from shared.tracing import configure_tracing

VERSION = "1.0.0"


def exception_response(exc: AccessLayerException) -> JSONResponse:
    """Render an ``AccessLayerException`` with its status code.

    Rate limit errors also carry ``Retry-After`` and ``retry-after-seconds``.
    """
    headers: Dict[str, str] = {}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = headers["retry-after-seconds"] = str(exc.retry_after_seconds)

    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump(), headers=headers)


class BaseService:
    """FastAPI app with logging, tracing, metrics, health and error handlers wired in.

    Subclasses add routes and override ``_check_dependencies``.
    """

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)

        if self.config.enable_tracing:
            configure_tracing(service_name, self.config.otel_exporter, self.config.enable_console_tracing)

        local = self.config.env == "local"
        self.app = FastAPI(
            title=f"{service_name.title()} Service",
            description=f"Session gateway - {service_name.title()} Service",
            version=VERSION,
            docs_url="/docs" if local else None,
            redoc_url="/redoc" if local else None,
        )
        # Credentialed CORS needs explicit origins; a wildcard is rejected by browsers.
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self.app.middleware("http")(self._observe_request)
        self.app.add_api_route("/health", self._health, methods=["GET"])
        self.app.add_api_route("/metrics", self._metrics_endpoint, methods=["GET"])
        self.app.add_exception_handler(AccessLayerException, self._handle_access_error)
        self.app.add_exception_handler(Exception, self._handle_unexpected_error)

    async def _observe_request(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - started

        route = request.scope.get("route")
        self.metrics.record_http_request(
            request.method, route.path if route else request.url.path, response.status_code, duration
        )
        self.logger.info(
            "HTTP request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2)
        )
        return response

    async def _health(self) -> JSONResponse:
        """Report 200 when every dependency is ok, 503 otherwise."""
        dependencies = await self._check_dependencies()
        status = "ok" if all(value == "ok" for value in dependencies.values()) else "degraded"
        self.metrics.record_health_check(status)

        return JSONResponse(
            status_code=200 if status == "ok" else 503,
            content={
                "service": self.service_name,
                "status": status,
                "uptime_seconds": time.time() - self._start_time,
                "dependencies": dependencies,
                "version": VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }
        )

    async def _metrics_endpoint(self) -> Response:
        return Response(content=self.metrics.export(), media_type=CONTENT_TYPE_LATEST)

    async def _handle_access_error(self, request: Request, exc: AccessLayerException) -> JSONResponse:
        log = self.logger.error if exc.status_code >= 500 else self.logger.warning
        log("Request failed", path=request.url.path, code=exc.code, message=exc.message, details=exc.details)
        self.metrics.record_error(exc.code)
        return exception_response(exc)

    async def _handle_unexpected_error(self, request: Request, exc: Exception) -> JSONResponse:
        self.logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
        self.metrics.record_error("INTERNAL_ERROR")
        return JSONResponse(
            status_code=500,
            content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}
        )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def run(self):
        """Serve the app with uvicorn."""
        import uvicorn
        uvicorn.run(self.app, host=self.config.host, port=self.config.port, log_level=self.config.log_level.lower())
