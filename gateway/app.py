#!/usr/bin/env python3
"""
FastAPI Gateway for the Visitor Beacon Collector

HTTP surface of the collector:
- Beacon ingest with burst aggregation and VPN/proxy scoring
- Immediate page-view and tracked-link notifications
- Webhook self-test
- Health and Prometheus metrics endpoints
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

import click
import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.concurrency import run_in_threadpool

from collector.core.errors import SinkError
from collector.core.processors.decoder import decode_event
from collector.core.sinks.formatter import (
    build_link_click_payload, build_page_view_payload, build_self_test_payload
)
from gateway.config import APIConfig, GatewayConfig
from gateway.schemas import ErrorDetail, ErrorResponse, HealthResponse, HealthStatus, SelfTestResponse
from gateway.service import CollectorService

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = structlog.get_logger(__name__)

WEBHOOK_MISSING = "❌ ERROR: DISCORD_WEBHOOK_URL is not set"

# Prometheus metrics
REQUEST_COUNT = Counter(
    'gateway_requests_total',
    'Total gateway requests',
    ['method', 'endpoint', 'status']
)
REQUEST_DURATION = Histogram(
    'gateway_request_duration_seconds',
    'Request duration in seconds',
    ['endpoint']
)
ACTIVE_REQUESTS = Gauge(
    'gateway_active_requests',
    'Number of active requests'
)
ERROR_COUNT = Counter(
    'gateway_errors_total',
    'Total errors',
    ['error_type', 'endpoint']
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_body(raw: bytes) -> dict:
    """Beacon bodies are best-effort JSON; anything else decodes to {}."""
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def _peer(request: Request) -> Optional[str]:
    return getattr(request.client, "host", None)


def get_service(request: Request) -> CollectorService:
    return request.app.state.service


def create_app(
    config: Optional[GatewayConfig] = None,
    service_factory: Optional[Callable[[GatewayConfig], CollectorService]] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        config: Gateway configuration (read from the environment at startup if None)
        service_factory: Builds the CollectorService; tests inject fakes through it
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown."""
        logger.info("Starting beacon collector gateway")
        try:
            cfg = config or GatewayConfig.from_env()

            log_level = cfg.logging.level.upper()
            logging.getLogger().setLevel(getattr(logging, log_level, logging.INFO))
            logger.info("Configuration loaded",
                        service=cfg.logging.service_name,
                        environment=cfg.environment,
                        log_level=log_level,
                        aggregation_window_ms=cfg.collector.aggregation_window_ms,
                        hold_ms=cfg.collector.hold_ms)

            factory = service_factory or CollectorService
            app.state.config = cfg
            app.state.service = factory(cfg)
            app.state.started_at = time.perf_counter()

            if not app.state.service.sink_configured:
                logger.warning("DISCORD_WEBHOOK_URL is not set; beacons will be rejected")
            logger.info("Service startup completed")
        except Exception as e:
            logger.error("Service startup failed", error=str(e))
            raise

        try:
            yield
        finally:
            logger.info("Shutting down beacon collector gateway")
            try:
                app.state.service.close()
            except Exception as e:
                logger.warning("Collector service close failed", error=str(e))
            logger.info("Service shutdown completed")

    api_config = config.api if config else APIConfig()
    app = FastAPI(
        title=api_config.title,
        description=api_config.description,
        version=api_config.version,
        lifespan=lifespan,
    )

    # Beacons are sent cross-origin from the tracked sites
    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_config.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        """Request middleware for logging, timing, and metrics."""
        start_time = time.perf_counter()
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        ACTIVE_REQUESTS.inc()

        method = request.method
        path = request.url.path
        status_code: int = 500
        response: Optional[Response] = None

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            ERROR_COUNT.labels(error_type="unhandled", endpoint=path).inc()
            logger.exception("Request failed with exception", request_id=request_id, error=str(e))
            raise
        finally:
            ACTIVE_REQUESTS.dec()
            duration = time.perf_counter() - start_time

            REQUEST_COUNT.labels(method=method, endpoint=path, status=str(status_code)).inc()
            REQUEST_DURATION.labels(endpoint=path).observe(duration)

            logger.debug("Request completed", request_id=request_id, method=method, path=path,
                         status_code=status_code, duration_ms=duration * 1000.0)

            if response is not None:
                response.headers["X-Request-ID"] = request_id

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions (uses given status)."""
        request_id = getattr(request.state, 'request_id', 'unknown')
        ERROR_COUNT.labels(error_type="http", endpoint=request.url.path).inc()

        error_detail = ErrorDetail(
            error_code=f"HTTP_{exc.status_code}",
            error_message=str(exc.detail),
            error_type="http",
            timestamp=_now(),
            request_id=request_id
        )
        payload = ErrorResponse(error=error_detail)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump(mode='json'))

    # === Beacon Endpoints ===

    @app.api_route("/api/alert", methods=["GET", "POST", "OPTIONS"])
    async def alert(request: Request):
        """Ingest a beacon; the burst is delivered later, after it goes quiet."""
        if request.method == "OPTIONS":
            return Response(status_code=204)

        service = get_service(request)
        if not service.sink_configured:
            return PlainTextResponse(WEBHOOK_MISSING, status_code=500)

        body = _parse_body(await request.body()) if request.method == "POST" else {}
        event = decode_event(request.headers, body, url_path=str(request.url.path), peer=_peer(request))

        try:
            result = await run_in_threadpool(service.ingest, event)
            logger.info("Beacon ingested",
                        request_id=request.state.request_id,
                        key=result.key,
                        outcome=result.outcome,
                        count=result.count)
        except Exception as e:
            ERROR_COUNT.labels(error_type="ingest", endpoint="/api/alert").inc()
            logger.exception("Beacon ingest failed", request_id=request.state.request_id, error=str(e))

        if request.method == "GET":
            return PlainTextResponse("ok")
        return Response(status_code=204)

    @app.api_route("/api/ping", methods=["GET", "POST"])
    async def ping(request: Request, background_tasks: BackgroundTasks):
        """Immediate, non-aggregated page-view notification."""
        service = get_service(request)
        if not service.sink_configured:
            return Response(status_code=500)

        body = _parse_body(await request.body()) if request.method != "GET" else {}
        event = decode_event(request.headers, body,
                             url_path=request.headers.get("x-pathname") or "unknown",
                             peer=_peer(request))
        background_tasks.add_task(service.notify, build_page_view_payload(event, _now()), "page_view")
        return Response(status_code=204)

    @app.get("/api/go")
    async def go(request: Request, background_tasks: BackgroundTasks):
        """Tracked link: notify, then always redirect."""
        service = get_service(request)
        destination = request.app.state.config.api.destination_url

        if service.sink_configured:
            event = decode_event(request.headers, {}, url_path=str(request.url.path), peer=_peer(request))
            background_tasks.add_task(service.notify,
                                      build_link_click_payload(event, destination, _now()),
                                      "link_click")
        else:
            logger.error("Missing DISCORD_WEBHOOK_URL")

        return RedirectResponse(destination, status_code=302)

    @app.get("/api/selftest", response_model=SelfTestResponse)
    async def selftest(request: Request):
        """Post a self-test message straight to the webhook."""
        service = get_service(request)
        if not service.sink_configured:
            payload = SelfTestResponse(ok=False, error="Missing DISCORD_WEBHOOK_URL env var")
            return JSONResponse(status_code=500, content=payload.model_dump(exclude_none=True))

        try:
            response = await run_in_threadpool(service.sink.post, build_self_test_payload(_now()))
        except SinkError as e:
            payload = SelfTestResponse(ok=False, error=str(e))
            return JSONResponse(status_code=500, content=payload.model_dump(exclude_none=True))

        ok = 200 <= response.status_code < 300
        return SelfTestResponse(
            ok=ok,
            status=response.status_code,
            note="If ok=true, check your Discord channel for a self-test message.",
            discord_response_snippet=(response.text or "")[:200],
        )

    # === Health and Monitoring Endpoints ===

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        service = get_service(request)
        sink_configured = service.sink_configured
        return HealthResponse(
            status=HealthStatus.HEALTHY if sink_configured else HealthStatus.DEGRADED,
            timestamp=_now(),
            version=request.app.version,
            uptime_seconds=time.perf_counter() - request.app.state.started_at,
            sink_configured=sink_configured,
            bursts=service.store.stats(),
            pending_timers=service.store.flush_scheduler.pending(),
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root(request: Request):
        """Root endpoint with service information."""
        return {
            "service": request.app.title,
            "version": request.app.version,
            "status": "healthy",
            "endpoints": {
                "ingest": "/api/alert",
                "ping": "/api/ping",
                "tracked_link": "/api/go",
                "selftest": "/api/selftest",
                "health": "/health",
                "metrics": "/metrics",
            }
        }

    return app


# ASGI entry point for `uvicorn gateway.app:app`
app = create_app(GatewayConfig.from_env())


@click.command()
@click.option('--host', default=None, help='Bind address (defaults to API_HOST or 0.0.0.0)')
@click.option('--port', default=None, type=int, help='Bind port (defaults to API_PORT or 8080)')
@click.option('--window-ms', default=None, type=int, help='Aggregation window in milliseconds')
@click.option('--hold-ms', default=None, type=int, help='Post-flush hold in milliseconds')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(host, port, window_ms, hold_ms, verbose):
    """Run the visitor beacon collector."""
    import uvicorn

    config = GatewayConfig.from_env()
    if window_ms is not None:
        config.collector.aggregation_window_ms = window_ms
    if hold_ms is not None:
        config.collector.hold_ms = hold_ms
    if verbose:
        config.logging.level = "DEBUG"

    uvicorn.run(
        create_app(config),
        host=host or config.api.host,
        port=port or config.api.port,
    )


if __name__ == "__main__":
    main()
