"""
Observability Package — Tracing

Provides:
  TracingConfig   — LangSmith / OpenTelemetry initialisation
  traced          — decorator for instrumenting collaborator calls

Usage::

    # At worker startup (celery worker_process_init):
    from paperflow.observability import TracingConfig
    TracingConfig.init()
"""

from paperflow.observability.tracing import TracingConfig, traced

__all__ = ["TracingConfig", "traced"]
