"""Logging and tracing utilities for the ticket lifecycle API."""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from app.core.config import Settings

TRACER_NAME = "app.tickets"

_tracer_provider: TracerProvider | None = None


def parse_otlp_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas; malformed items are ignored."""

    headers: dict[str, str] = {}
    for item in (header_string or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def configure_logging(settings: Settings) -> logging.Logger:
    """Configure root and lifecycle loggers based on settings."""

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": settings.log_format},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                }
            },
            "loggers": {
                # Reconstruction warnings about skipped audit entries must stay visible.
                "app.tickets": {"level": min(level, logging.WARNING), "propagate": True},
            },
            "root": {"handlers": ["default"], "level": level},
        }
    )

    logger = logging.getLogger(settings.app_name)
    logger.setLevel(level)
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP exporting tracer provider when tracing is enabled."""

    global _tracer_provider

    if _tracer_provider is not None or not settings.otel_enabled:
        return None

    provider = TracerProvider(resource=Resource(attributes={"service.name": settings.otel_service_name}))
    exporter_kwargs: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_otlp_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    return provider


def get_tracer() -> trace.Tracer:
    """Tracer for lifecycle operations; a no-op tracer until ``init_tracer`` runs."""

    return trace.get_tracer(TRACER_NAME)


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _tracer_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _tracer_provider:
        _tracer_provider = None
