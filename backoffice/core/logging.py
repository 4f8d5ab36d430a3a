"""Logging and tracing setup for the back-office API.

Log output goes through the standard library (``dictConfig``); traces are
exported over OTLP/HTTP only when ``otel_enabled`` is set. Services always
create spans through ``opentelemetry.trace``; without a configured provider
those spans are no-ops.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from backoffice.core.config import Settings

APP_LOGGER = "backoffice"

_TRACER_INITIALISED = False


def parse_pairs(value: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` settings strings; malformed items are skipped."""

    pairs: dict[str, str] = {}
    for item in (value or "").split(","):
        key, separator, raw = item.partition("=")
        if not separator or not key.strip():
            continue
        pairs[key.strip()] = raw.strip()
    return pairs


def _level(name: str | None, default: int = logging.INFO) -> int:
    resolved = logging.getLevelName((name or "").strip().upper())
    return resolved if isinstance(resolved, int) else default


def configure_logging(settings: Settings) -> logging.Logger:
    """Route all loggers to stderr and apply per-logger overrides from ``log_levels``."""

    level = _level(settings.log_level)
    overrides = {
        name: {"level": _level(raw, logging.WARNING)} for name, raw in parse_pairs(settings.log_levels).items()
    }
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                }
            },
            "root": {"handlers": ["default"], "level": level},
            "loggers": overrides,
        }
    )

    logger = logging.getLogger(APP_LOGGER)
    logger.setLevel(level)
    logger.info("Logging configured for %s (%s)", settings.app_name, settings.environment)
    return logger


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP tracer provider once; ``None`` when tracing is disabled."""

    global _TRACER_INITIALISED

    if _TRACER_INITIALISED or not settings.otel_enabled:
        return None

    resource = Resource(
        attributes={
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)

    exporter_kwargs: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_pairs(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    trace.set_tracer_provider(provider)
    _TRACER_INITIALISED = True
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    if provider is None:
        return

    global _TRACER_INITIALISED
    provider.shutdown()
    _TRACER_INITIALISED = False


def span_attributes(**values: Any) -> dict[str, Any]:
    """Prefix keys with ``backoffice.`` and drop empty values, which OpenTelemetry rejects."""

    return {f"{APP_LOGGER}.{key}": value for key, value in values.items() if value is not None}
