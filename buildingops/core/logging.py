"""Logging and tracing setup for the buildingops API."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from buildingops.core.config import Settings

# Third-party loggers kept at WARNING whatever the application level is.
QUIET_LOGGERS = ("asyncpg", "httpx", "opentelemetry")

_provider: TracerProvider | None = None


def parse_otlp_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas, skipping malformed items."""

    headers: dict[str, str] = {}
    for item in (header_string or "").split(","):
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers


def logging_config(settings: Settings) -> dict[str, Any]:
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"plain": {"format": settings.log_format}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "plain", "level": level},
        },
        "loggers": {
            "buildingops": {"level": level},
            **{name: {"level": logging.WARNING} for name in QUIET_LOGGERS},
        },
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Install the logging config and return the application logger."""

    config = logging_config(settings)
    dictConfig(config)
    logger = logging.getLogger(settings.app_name)
    logger.setLevel(config["root"]["level"])
    return logger


def tracer_resource(settings: Settings) -> Resource:
    return Resource(
        attributes={
            "service.name": settings.otel_service_name,
            "service.namespace": "buildingops",
            "deployment.environment": settings.environment,
        }
    )


def exporter_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        options["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_otlp_headers(settings.otel_exporter_otlp_headers)
    if headers:
        options["headers"] = headers
    return options


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install the OTLP tracer provider once; ``None`` while tracing is disabled."""

    global _provider

    if not settings.otel_enabled:
        return None
    if _provider is None:
        _provider = TracerProvider(resource=tracer_resource(settings))
        _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_options(settings))))
        trace.set_tracer_provider(_provider)
    return _provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _provider:
        _provider = None
