# aether/monitoring.py
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

from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)
from pythonjsonlogger import jsonlogger

try:
    import sentry_sdk
    _HAS_SENTRY = True
except ImportError:
    _HAS_SENTRY = False

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "aether", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            fmt = jsonlogger.JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            )
            handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


logger = setup_logger()

# --- Sentry (optional)
if SENTRY_DSN and _HAS_SENTRY:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "aether_http_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "aether_http_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
)

GUARD_VERDICTS = Counter(
    "aether_guard_verdicts_total",
    "Content guard verdicts",
    ["surface", "verdict"],
)

HELP_REQUESTS = Counter(
    "aether_help_requests_total",
    "Help requests submitted to the ledger",
)

MATCH_OUTCOMES = Counter(
    "aether_match_outcomes_total",
    "Acceptance attempts on pending requests",
    ["outcome"],
)

SUSPENSIONS = Counter(
    "aether_suspensions_total",
    "Client suspensions imposed",
    ["reason"],
)

REPORTS = Counter(
    "aether_reports_total",
    "Participant reports filed",
)

REWRITE_COUNTER = Counter(
    "aether_rewrite_total",
    "Best-effort text rewrite attempts",
    ["outcome"],
)

REWRITE_LATENCY = Histogram(
    "aether_rewrite_latency_seconds",
    "Text rewrite latency",
)

ACTIVE_SUBSCRIPTIONS = Gauge(
    "aether_active_subscriptions",
    "Live subscriptions currently registered",
)


# --- Helper wrappers (never crash the app)
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    try:
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    except Exception:
        pass


def observe_rewrite(start_ts: float, outcome: str):
    try:
        REWRITE_LATENCY.observe(time.time() - start_ts)
        REWRITE_COUNTER.labels(outcome=outcome).inc()
    except Exception:
        pass


def inc_guard_verdict(surface: str, verdict: str):
    try:
        GUARD_VERDICTS.labels(surface=surface, verdict=verdict).inc()
    except Exception:
        pass


def inc_help_request():
    try:
        HELP_REQUESTS.inc()
    except Exception:
        pass


def inc_match(outcome: str):
    try:
        MATCH_OUTCOMES.labels(outcome=outcome).inc()
    except Exception:
        pass


def inc_suspension(reason: str):
    try:
        SUSPENSIONS.labels(reason=reason).inc()
    except Exception:
        pass


def inc_report():
    try:
        REPORTS.inc()
    except Exception:
        pass


def set_active_subscriptions(n: int):
    try:
        ACTIVE_SUBSCRIPTIONS.set(n)
    except Exception:
        pass


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Return (body_bytes, content_type) for Prometheus scrape."""
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception:
        return b"", CONTENT_TYPE_LATEST
