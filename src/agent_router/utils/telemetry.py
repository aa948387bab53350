"""Telemetry utilities for logging, metrics, and tracing.

This module provides centralized observability infrastructure including:
- Structured logging with secret redaction
- Prometheus metrics collection
- OpenTelemetry tracing setup
- Performance measurement utilities
"""

import logging
import re
import time
from typing import Any

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from structlog.processors import JSONRenderer

# Prometheus metrics
ACTIONS_TOTAL = Counter(
    "agent_router_actions_total",
    "Total number of action requests handled",
    ["action", "result"],
)

OPERATION_LATENCY = Histogram(
    "agent_router_operation_duration_seconds",
    "Operation latency in seconds",
    ["operation"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0],
)

AGENT_UPDATES_TOTAL = Counter(
    "agent_router_agent_updates_total",
    "Committed agent mutations by resulting status",
    ["status"],
)

AGENTS_GAUGE = Gauge(
    "agent_router_agents_count",
    "Number of agents held by the registry",
)

SUBSCRIBERS_GAUGE = Gauge(
    "agent_router_subscribers_count",
    "Number of connected subscribers",
)

BROADCAST_MESSAGES = Counter(
    "agent_router_broadcast_messages_total",
    "Messages offered to subscriber outboxes",
    ["outcome"],
)

SUBSCRIBERS_PRUNED = Counter(
    "agent_router_subscribers_pruned_total",
    "Subscribers removed by the hub",
    ["reason"],
)

OBSERVER_FAILURES = Counter(
    "agent_router_observer_failures_total",
    "Change observers that raised during notification",
)

# Secret-bearing keys and token-like strings for redaction
SECRET_KEYS = frozenset(
    {"token", "secret", "password", "authorization", "x-agenthud-token", "auth_token"}
)
TOKEN_PATTERN = re.compile(r"\b[A-Za-z0-9_\-]{32,}\b")


def redact_secrets(text: Any) -> Any:
    """Redact token-like strings from text.

    Args:
        text: Input text that may contain secrets

    Returns:
        Text with long token-like runs replaced, or original input if not a string

    Example:
        >>> redact_secrets("token is Zm9vYmFyYmF6cXV4Zm9vYmFyYmF6cXV4MTIzNDU2")
        'token is [REDACTED_TOKEN]'
    """
    if not isinstance(text, str):
        return text
    return TOKEN_PATTERN.sub("[REDACTED_TOKEN]", text)


def secret_redaction_processor(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor to redact secrets from log events.

    Args:
        logger: Logger instance (unused)
        method_name: Log method name (unused)
        event_dict: Event dictionary to process

    Returns:
        Event dictionary with secret values masked
    """

    def redact_value(key: str, value: Any) -> Any:
        if key.lower() in SECRET_KEYS and value is not None:
            return "[REDACTED]"
        if isinstance(value, str):
            return redact_secrets(value)
        elif isinstance(value, dict):
            return {k: redact_value(str(k), v) for k, v in value.items()}
        elif isinstance(value, list):
            return [redact_value(key, item) for item in value]
        return value

    return {key: redact_value(key, value) for key, value in event_dict.items()}


def setup_logging(
    log_level: str = "INFO",
    enable_redaction: bool = True,
    log_format: str = "json",
) -> None:
    """Initialize structured logging with secret redaction.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_redaction: Whether to enable the secret redaction processor
        log_format: "json" for machine-readable lines, "text" for console output
    """
    logging.basicConfig(format="%(message)s", level=log_level.upper())

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if enable_redaction:
        processors.append(secret_redaction_processor)

    if log_format == "text":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_tracing(
    service_name: str = "agent-router",
    otlp_endpoint: str | None = None,
    enable_fastapi_instrumentation: bool = True,
    app: Any = None,
) -> None:
    """Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP endpoint URL (if None, uses console exporter)
        enable_fastapi_instrumentation: Whether to instrument the FastAPI app
        app: FastAPI application to instrument
    """
    from agent_router import __version__

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
        }
    )

    tracer_provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(tracer_provider)

    exporter: OTLPSpanExporter | ConsoleSpanExporter
    if otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()

    tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

    if enable_fastapi_instrumentation and app is not None:
        try:
            FastAPIInstrumentor.instrument_app(app)
        except Exception as e:
            get_logger("agent_router.telemetry").warning(
                "Failed to instrument FastAPI", error=str(e)
            )


def get_tracer(name: str) -> trace.Tracer:
    """Get OpenTelemetry tracer for a component.

    Args:
        name: Tracer name (typically module name)

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name)


def get_logger(name: str, **context: Any) -> Any:
    """Get a structured logger with optional context.

    Args:
        name: Logger name
        **context: Additional context to bind to logger

    Returns:
        Bound logger with context
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


def log_operation(
    logger: Any,
    operation: str,
    status: str = "success",
    agent_id: str | None = None,
    latency_ms: float | None = None,
    **extra_context: Any,
) -> None:
    """Log an operation with standardized fields for observability.

    Args:
        logger: Structured logger instance
        operation: Operation name
        status: Operation status (success, error, warning)
        agent_id: Agent identifier
        latency_ms: Operation latency in milliseconds
        **extra_context: Additional context fields
    """
    log_data: dict[str, Any] = {
        "operation": operation,
        "status": status,
        **extra_context,
    }
    if agent_id is not None:
        log_data["agent_id"] = agent_id
    if latency_ms is not None:
        log_data["latency_ms"] = latency_ms

    if status == "error":
        logger.error("Operation completed", **log_data)
    elif status == "warning":
        logger.warning("Operation completed", **log_data)
    else:
        logger.info("Operation completed", **log_data)


class PerformanceTimer:
    """Context manager for measuring operation performance.

    Records the latency histogram, logs timing information and wraps the
    operation in a tracing span.
    """

    def __init__(
        self,
        operation: str,
        agent_id: str | None = None,
        logger: Any = None,
        record_metrics: bool = True,
        create_span: bool = True,
        tracer_name: str = "agent_router.performance",
    ):
        self.operation = operation
        self.agent_id = agent_id
        self.logger = logger or get_logger("agent_router.performance")
        self.record_metrics = record_metrics
        self.create_span = create_span
        self.tracer = get_tracer(tracer_name) if create_span else None
        self.span: trace.Span | None = None
        self.start_time: float | None = None
        self.end_time: float | None = None

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()

        if self.create_span and self.tracer:
            self.span = self.tracer.start_span(self.operation)
            if self.agent_id:
                self.span.set_attribute("agent_id", self.agent_id)

        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()
        duration = self.end_time - (self.start_time or 0)

        status = "error" if exc_type else "success"

        if self.record_metrics:
            OPERATION_LATENCY.labels(operation=self.operation).observe(duration)

        if self.span:
            self.span.set_attribute("duration_seconds", duration)
            self.span.set_attribute("status", status)

            if exc_type:
                self.span.set_status(trace.Status(trace.StatusCode.ERROR, str(exc_val)))
                self.span.record_exception(exc_val)
            else:
                self.span.set_status(trace.Status(trace.StatusCode.OK))

            self.span.end()

        extra: dict[str, Any] = {}
        if exc_type:
            extra["error_type"] = exc_type.__name__
            extra["error"] = str(exc_val)

        log_operation(
            self.logger,
            self.operation,
            status="warning" if exc_type else "success",
            agent_id=self.agent_id,
            latency_ms=duration * 1000,
            **extra,
        )

    @property
    def duration(self) -> float | None:
        """Get operation duration in seconds."""
        if self.start_time is not None and self.end_time is not None:
            return self.end_time - self.start_time
        return None


def record_action(action: str, result: str) -> None:
    """Record the outcome of one action request.

    Args:
        action: Requested action name
        result: "success" or the error code class (e.g. "INVALID_AGENT")
    """
    ACTIONS_TOTAL.labels(action=action, result=result).inc()


def record_agent_update(status: str, agent_count: int) -> None:
    """Record a committed registry mutation."""
    AGENT_UPDATES_TOTAL.labels(status=status).inc()
    AGENTS_GAUGE.set(agent_count)


def record_broadcast(outcome: str, count: int = 1) -> None:
    """Record messages offered to subscriber outboxes.

    Args:
        outcome: "queued", "skipped" or "dropped"
        count: Number of subscribers affected
    """
    if count:
        BROADCAST_MESSAGES.labels(outcome=outcome).inc(count)


def record_subscriber_pruned(reason: str) -> None:
    """Record a subscriber removed by the hub."""
    SUBSCRIBERS_PRUNED.labels(reason=reason).inc()


def update_subscriber_count(count: int) -> None:
    """Update the connected-subscriber gauge."""
    SUBSCRIBERS_GAUGE.set(count)


def record_observer_failure() -> None:
    """Record a change observer raising during notification."""
    OBSERVER_FAILURES.inc()


def start_metrics_server(port: int = 9090) -> None:
    """Start Prometheus metrics HTTP server.

    Args:
        port: Port to serve metrics on
    """
    start_http_server(port)
