"""Observability module for logging, metrics, and error tracking."""

import logging
import json
import sys
import time
from typing import Any, Dict
from datetime import datetime, timezone

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Request, Response

from .config import Settings

# Prometheus metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'Duration of HTTP requests in seconds',
    ['method', 'endpoint']
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging on stdout."""
    logging.basicConfig(
        level=level,
        format='%(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    for handler in logging.getLogger().handlers:
        handler.setFormatter(JSONFormatter())

    logger = logging.getLogger("grievance")
    logger.setLevel(level)
    logger.info("Structured JSON logging configured")


def init_sentry(settings: Settings) -> None:
    """Initialize Sentry error tracking when a DSN is configured."""
    if not settings.sentry_dsn:
        logging.getLogger("grievance").info("Sentry DSN not configured, skipping initialization")
        return
    try:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=0.1,
            # OTP codes and student emails must not leave the service.
            send_default_pii=False,
        )
        logging.getLogger("grievance").info("Sentry initialized successfully")
    except Exception as e:
        logging.getLogger("grievance").error("Failed to initialize Sentry: %s", e)


def setup_metrics_middleware(app):
    """Add Prometheus metrics middleware to FastAPI app."""
    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template, not the raw path, so complaint ids don't explode label cardinality.
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        method = request.method

        http_requests_total.labels(method=method, endpoint=endpoint, status=response.status_code).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)
        return response


def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def get_health_check(storage_provider: str = "local") -> Dict[str, Any]:
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "storage": storage_provider,
    }
