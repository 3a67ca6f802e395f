"""
Observability Tracing — collaborator call timing + optional OpenTelemetry

Every slow external call of the pipeline (PDF extraction, LLM enrichment,
search indexing) is wrapped with ``@traced(name)``. The decorator always
logs timing and errors; when OTEL export is configured it also opens a
span so the calls show up in Jaeger / Tempo / Datadog.

Supported backends:

  LangSmith (hosted):
    - LANGCHAIN_TRACING_V2=true, LANGCHAIN_API_KEY, LANGCHAIN_PROJECT
    - Picks up the enrichment model calls automatically via LangChain

  OTEL (OpenTelemetry) generic:
    - OTEL_ENABLED=true and OTEL_EXPORTER_OTLP_ENDPOINT=http://collector:4318
    - Requires opentelemetry-sdk + opentelemetry-exporter-otlp
"""

from __future__ import annotations

import functools
import logging
import os
import time
from typing import Any, Callable, Coroutine, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])

_tracer: Any = None


class TracingConfig:
    """
    Initialise tracing backends. Call once per worker process::

        from paperflow.observability.tracing import TracingConfig
        TracingConfig.init()
    """

    _initialised: bool = False

    @classmethod
    def init(cls) -> None:
        if cls._initialised:
            return
        cls._initialised = True

        cls._log_langsmith()
        cls._init_otel()

    @staticmethod
    def _log_langsmith() -> None:
        # LangChain reads these variables itself; nothing to wire.
        if os.environ.get("LANGCHAIN_TRACING_V2") == "true":
            logger.info(
                "LangSmith tracing active (from env) | project=%s",
                os.environ.get("LANGCHAIN_PROJECT", "default"),
            )
        else:
            logger.debug("LangSmith tracing disabled (LANGCHAIN_TRACING_V2 not set)")

    @staticmethod
    def _init_otel() -> None:
        global _tracer
        from paperflow.core.config import settings

        if not settings.otel_enabled or not settings.otel_exporter_otlp_endpoint:
            logger.debug("OTEL tracing disabled")
            return

        try:
            from opentelemetry import trace                                       # type: ignore
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter  # type: ignore
            from opentelemetry.sdk.trace import TracerProvider                    # type: ignore
            from opentelemetry.sdk.trace.export import BatchSpanProcessor        # type: ignore

            provider = TracerProvider()
            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint))
            )
            trace.set_tracer_provider(provider)
            _tracer = trace.get_tracer("paperflow")

            logger.info("OTEL tracing enabled | endpoint=%s", settings.otel_exporter_otlp_endpoint)
        except ImportError:
            logger.warning(
                "opentelemetry-sdk / opentelemetry-exporter-otlp not installed. "
                "Run: pip install paperflow[otel]"
            )
        except Exception as exc:
            logger.warning("OTEL tracing init failed: %s", exc)


def traced(name: str | None = None) -> Callable[[F], F]:
    """
    Instrument an async function with timing and error logging.

    Usage::

        @traced("ocr.extract")
        async def _call(self, document):
            ...
    """
    def decorator(func: F) -> F:
        span_name = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if _tracer is None:
                return await _timed(span_name, func, args, kwargs)
            with _tracer.start_as_current_span(span_name):
                return await _timed(span_name, func, args, kwargs)

        return wrapper  # type: ignore[return-value]
    return decorator


async def _timed(span_name: str, func: Callable, args: tuple, kwargs: dict) -> Any:
    t0 = time.perf_counter()
    try:
        result = await func(*args, **kwargs)
    except Exception as exc:
        logger.warning(
            "trace | span=%s elapsed_ms=%.1f error=%s: %s",
            span_name, (time.perf_counter() - t0) * 1000, type(exc).__name__, exc,
        )
        raise
    logger.debug("trace | span=%s elapsed_ms=%.1f ok", span_name, (time.perf_counter() - t0) * 1000)
    return result
