"""Flask application exposing health and log-ingestion routes for the debug console."""

import datetime
import logging
import threading
import time
import traceback

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from cls_shipper.config import AppConfig, LoggingConfig, ServerConfig
from cls_shipper.errors import AppError
from cls_shipper.log_fields import ErrorCategory
from cls_shipper.logger import active_transport, log_error_with_category
from cls_shipper.models import entry_from_dict
from cls_shipper.validator import LogValidator

logger = logging.getLogger(__name__)

MAX_INGEST_BATCH = 1000
CLIENT_LOG_MODULE = "web"


def create_app(config: AppConfig | None = None, transport=None) -> Flask:
    """Flask application factory.

    *transport* defaults to the one installed by ``configure_logging``; with
    no transport, posted entries are validated and counted as dropped.
    """
    app = Flask(__name__)

    if config is None:
        config = AppConfig(server=ServerConfig(), logging=LoggingConfig())
    if transport is None:
        transport = active_transport()

    validator = LogValidator()
    started = time.monotonic()
    lock = threading.Lock()
    counters = {"dropped": 0}

    app.config["components"] = {
        "config": config,
        "transport": transport,
        "validator": validator,
    }

    # --- Error handling ---

    @app.errorhandler(Exception)
    def handle_error(err):
        body = {"success": False, "error": "Internal Server Error"}

        if isinstance(err, AppError):
            status = err.status_code
            body["error"] = err.message
            if config.logging.app_env == "development":
                body["stack"] = "".join(
                    traceback.format_exception(type(err), err, err.__traceback__)
                )
        elif isinstance(err, HTTPException):
            status = err.code or 500
            body["error"] = err.name
            body["message"] = err.description
        elif isinstance(err, (TypeError, ValueError)):
            status = 400
            body["error"] = "Invalid Input"
            body["message"] = str(err)
        else:
            status = 500

        category = ErrorCategory.CLIENT_INPUT if status < 500 else ErrorCategory.SYSTEM_INTERNAL
        log_error_with_category(
            logger, err, category, {"path": request.path, "method": request.method}
        )
        return jsonify(body), status

    # --- Routes ---

    @app.route("/health")
    def health():
        checks = {"clsTransport": transport is None or not transport.closed}
        return jsonify({
            "status": "healthy" if all(checks.values()) else "unhealthy",
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "uptime": time.monotonic() - started,
            "checks": checks,
            "cls": transport.stats() if transport is not None else None,
        })

    @app.route("/api/logs", methods=["POST"])
    def ingest_logs():
        payload = request.get_json(silent=True)
        if payload is None:
            raise AppError("Request body must be a JSON object or array", 400)

        raw_entries = payload if isinstance(payload, list) else [payload]
        if len(raw_entries) > MAX_INGEST_BATCH:
            raise AppError(f"At most {MAX_INGEST_BATCH} entries per request", 400)

        errors = []
        for index, raw in enumerate(raw_entries):
            is_valid, messages = validator.validate(raw)
            if not is_valid:
                errors.append({"index": index, "errors": messages})
        if errors:
            return jsonify({"status": "invalid", "errors": errors}), 400

        if transport is None:
            with lock:
                counters["dropped"] += len(raw_entries)
            return jsonify({"status": "accepted", "accepted": len(raw_entries), "forwarded": False}), 202

        for raw in raw_entries:
            entry = entry_from_dict(raw)
            if entry.module is None:
                entry.module = CLIENT_LOG_MODULE
            transport.write(entry)

        logger.debug("Accepted %d client log entries", len(raw_entries))
        return jsonify({"status": "accepted", "accepted": len(raw_entries), "forwarded": True}), 202

    @app.route("/api/logs/flush", methods=["POST"])
    def flush_logs():
        if transport is None:
            raise AppError("CLS transport is not configured", 503)

        delivered = transport.flush()
        return jsonify({
            "success": delivered,
            "pending": transport.pending_count,
        }), 200 if delivered else 502

    @app.route("/api/logs/stats")
    def log_stats():
        with lock:
            dropped = counters["dropped"]
        return jsonify({
            "cls": transport.stats() if transport is not None else None,
            "validation": validator.get_stats(),
            "dropped": dropped,
        })

    return app
