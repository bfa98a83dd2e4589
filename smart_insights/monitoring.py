# smart_insights/monitoring.py
"""
Centralized monitoring: Prometheus metrics, structured JSON logging, optional Sentry.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import os
import logging
import time
from typing import Tuple

import sentry_sdk
from pythonjsonlogger import jsonlogger
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "smart-insights", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(threadName)s %(message)s"
            )
        else:
            fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = setup_logger()

# --- Sentry (optional)
if SENTRY_DSN:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "insights_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "insights_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["endpoint"],
)

ORCHESTRATION_COUNTER = Counter(
    "insights_orchestrations_total",
    "Finished orchestrations",
    ["outcome"],
)

STEP_LATENCY = Histogram(
    "insights_step_latency_seconds",
    "Latency of each orchestration step",
    ["step"],
)

LLM_CALLS = Counter(
    "insights_llm_calls_total",
    "LLM completion calls",
    ["provider", "outcome"],
)

LLM_TOKENS = Counter(
    "insights_llm_tokens_total",
    "Tokens reported by LLM providers",
    ["provider", "kind"],
)

ORCHESTRATIONS_IN_FLIGHT = Gauge(
    "insights_orchestrations_in_flight",
    "Orchestrations currently holding an admission slot",
)

LAST_QUERY_ROWS = Gauge(
    "insights_last_query_rows",
    "Rows returned by the last executed query",
)


# --- Helper wrappers (never crash the app)
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    try:
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    except Exception:
        pass


def observe_step(start_ts: float, step: str):
    try:
        STEP_LATENCY.labels(step=step).observe(time.time() - start_ts)
    except Exception:
        pass


def inc_orchestration(outcome: str):
    try:
        ORCHESTRATION_COUNTER.labels(outcome=outcome).inc()
    except Exception:
        pass


def inc_llm_call(provider: str, outcome: str):
    try:
        LLM_CALLS.labels(provider=provider, outcome=outcome).inc()
    except Exception:
        pass


def add_llm_tokens(provider: str, prompt_tokens: int, completion_tokens: int):
    try:
        LLM_TOKENS.labels(provider=provider, kind="prompt").inc(prompt_tokens)
        LLM_TOKENS.labels(provider=provider, kind="completion").inc(completion_tokens)
    except Exception:
        pass


def set_in_flight(n: int):
    try:
        ORCHESTRATIONS_IN_FLIGHT.set(n)
    except Exception:
        pass


def set_last_query_rows(n: int):
    try:
        LAST_QUERY_ROWS.set(n)
    except Exception:
        pass


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Return (body_bytes, content_type) for Prometheus scrape."""
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception:
        return b"", CONTENT_TYPE_LATEST
