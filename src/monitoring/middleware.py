"""
Flask middleware for request logging and metrics.

Each request gets an id (taken from X-Request-ID when the client sends one),
its caller identity is put in the logging context, and on completion a
counter and a latency histogram are recorded against the matched route
template so request ids in URLs do not explode label cardinality.
"""

import time
import uuid

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, get_logger, set_request_context
from monitoring.metrics import metrics

logger = get_logger("guardian_recovery.request")

REQUEST_ID_HEADER = "X-Request-ID"
UNMATCHED_ROUTE = "<unmatched>"


def _route_label() -> str:
    rule = request.url_rule
    return rule.rule if rule is not None else UNMATCHED_ROUTE


class RequestTelemetry:
    """Installs before/after/teardown hooks on a Flask app."""

    def __init__(self, app: Flask | None = None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.before_request(self._start)
        app.after_request(self._finish)
        app.teardown_request(self._teardown)

    @staticmethod
    def _start() -> None:
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        g.start_time = time.perf_counter()
        set_request_context(
            request_id=g.request_id,
            method=request.method,
            caller=request.headers.get("X-Caller-Id"),
        )
        metrics.increment_gauge("http_requests_active")

    @staticmethod
    def _finish(response: Response) -> Response:
        elapsed_ms = (time.perf_counter() - g.get("start_time", time.perf_counter())) * 1000
        route = _route_label()

        metrics.increment(
            "http_requests_total",
            labels={"method": request.method, "route": route, "status": response.status_code},
        )
        metrics.timing("http_request_duration_ms", elapsed_ms, labels={"method": request.method, "route": route})

        if response.status_code >= 500:
            level = logger.error
        elif response.status_code >= 400:
            level = logger.warning
        else:
            level = logger.info
        level(
            "%s %s -> %d",
            request.method,
            request.path,
            response.status_code,
            extra={"route": route, "status_code": response.status_code, "duration_ms": round(elapsed_ms, 2)},
        )

        response.headers[REQUEST_ID_HEADER] = g.get("request_id", "")
        return response

    @staticmethod
    def _teardown(exception=None) -> None:
        clear_request_context()
        metrics.decrement_gauge("http_requests_active")
        if exception is not None:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={"request_id": g.get("request_id", "unknown"), "route": _route_label()},
            )


def setup_request_logging(app: Flask) -> RequestTelemetry:
    """Attach request logging and metrics to ``app``."""
    return RequestTelemetry(app)
