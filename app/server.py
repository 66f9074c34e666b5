import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

from app.app_proxy.route import build_proxy_router
from app.config import GatewayConfig
from app.fallback.route import register_fallback

logger = logging.getLogger("uvicorn.error")


BODY_EVENT_TYPE = "http.response.body"


def _is_body_send_span(span: ReadableSpan) -> bool:
    return bool(span.attributes) and span.attributes.get("asgi.event.type") == BODY_EVENT_TYPE


class FilteringSpanExporter(SpanExporter):
    """
    Drops the per-chunk ``http send`` spans of the ASGI instrumentation.

    SPA bundles and blog media leave ``FileResponse``/proxy responses in many
    body chunks, each traced as its own child span; only the request and
    ``proxy_request`` spans reach the collector.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [span for span in spans if not _is_body_send_span(span)]
        if not kept:
            return SpanExportResult.SUCCESS
        return self.exporter.export(kept)

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def configure_tracing(config: GatewayConfig) -> TracerProvider:
    """Install the process-wide tracer provider, exporting over OTLP when configured."""
    tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": config.service_name})
    )
    if config.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(
            endpoint=config.otlp_endpoint,
            headers=(config.otlp_headers.split(",") if config.otlp_headers else None),
        )
        tracer_provider.add_span_processor(
            BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
        )
        logger.info(f"[Gateway] Exporting traces to {config.otlp_endpoint}")
    trace.set_tracer_provider(tracer_provider)
    return tracer_provider


def configure_metrics(app: FastAPI, config: GatewayConfig) -> CollectorRegistry:
    """Expose Prometheus metrics for the app on its own registry."""
    registry = CollectorRegistry()
    instrumentator = Instrumentator(
        excluded_handlers=[config.metrics_path],
        registry=registry,
    )
    instrumentator.instrument(app).expose(
        app, endpoint=config.metrics_path, include_in_schema=False
    )

    # Add app_name to the metrics
    app_info = Info("gateway_app_info", "Application Info", registry=registry)
    app_info.info({"app_name": config.service_name})
    return registry


def create_app(
    config: GatewayConfig,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Route order matters: the blog proxy and the metrics endpoint are
    registered before the catch-all static/SPA mount.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[Gateway] Blog service URL: {config.upstream_url}")
        logger.info(f"[Gateway] Serving SPA from {config.static_root}")
        yield

    # Docs are disabled, their paths belong to the SPA
    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.config = config

    app.include_router(build_proxy_router(config, upstream_transport))

    if config.metrics_path:
        app.state.metrics_registry = configure_metrics(app, config)

    FastAPIInstrumentor.instrument_app(
        app,
        excluded_urls=config.metrics_path or "",
    )

    register_fallback(app, config)
    return app
