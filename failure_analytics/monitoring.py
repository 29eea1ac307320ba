"""
Logging and request monitoring.

Provides:
- Structured JSON logging (LOG_FORMAT=json) with correlation and organization ids
- Request correlation ids (X-Correlation-ID) and latency logging
- Database health check for /health
"""

import os
import time
import json
import uuid
import logging
from typing import Dict, Any
from datetime import datetime

from flask import Flask, request, g, has_request_context

from .database import DATABASE_TYPE, driver_errors, get_standalone_connection

logger = logging.getLogger(__name__)

ORGANIZATION_HEADER = 'X-Organization-Id'
CORRELATION_HEADER = 'X-Correlation-ID'


# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------

class JSONLogFormatter(logging.Formatter):
    """
    JSON log formatter for log aggregation.

    One JSON object per line, with correlation and organization ids taken
    from the record or the active request.
    """

    def format(self, record):
        log_entry = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'component': os.environ.get('APP_NAME', 'failure-analytics'),
        }

        correlation_id = getattr(record, 'correlation_id', None)
        organization_id = getattr(record, 'organization_id', None)
        if has_request_context():
            correlation_id = correlation_id or getattr(g, 'correlation_id', None)
            organization_id = organization_id or getattr(g, 'organization_id', None)
        if correlation_id:
            log_entry['correlation_id'] = correlation_id
        if organization_id:
            log_entry['organization_id'] = organization_id

        # Add exception info
        if record.exc_info and record.exc_info[0]:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
            }

        return json.dumps(log_entry)


def configure_logging(app: Flask):
    """Configure log level and format from app config."""
    log_level = str(app.config.get('LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, log_level, logging.INFO)
    use_json = str(app.config.get('LOG_FORMAT', 'text')).lower() == 'json'

    if use_json:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONLogFormatter())
        app.logger.handlers = [handler]
        logging.root.handlers = [handler]
        app.logger.info("Structured JSON logging configured")
    elif not logging.root.handlers:
        logging.basicConfig(format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    app.logger.setLevel(level)
    logging.getLogger('failure_analytics').setLevel(level)


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

def register_request_context(app: Flask):
    """Attach correlation/organization ids to each request and log its latency."""

    @app.before_request
    def start_timer():
        g.request_start_time = time.time()
        g.correlation_id = request.headers.get(CORRELATION_HEADER) or f"req-{uuid.uuid4().hex[:12]}"
        g.organization_id = request.headers.get(ORGANIZATION_HEADER, '').strip()

    @app.after_request
    def log_request(response):
        start = getattr(g, 'request_start_time', None)
        if start:
            latency_ms = (time.time() - start) * 1000
            response.headers[CORRELATION_HEADER] = g.correlation_id
            response.headers['X-Response-Time'] = f"{latency_ms:.2f}ms"
            logger.info(
                f"{request.method} {request.path} -> {response.status_code} "
                f"in {latency_ms:.2f}ms"
            )
        return response

    logger.debug("Request context middleware registered")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

def check_database_health(database_path: str = None) -> Dict[str, Any]:
    """Check database connectivity and that the schema is present."""
    start = time.time()
    try:
        conn = get_standalone_connection(database_path)
        try:
            conn.execute("SELECT COUNT(*) AS total FROM failure_records WHERE 1 = 0")
        finally:
            conn.close()
        return {
            'status': 'healthy',
            'latency_ms': round((time.time() - start) * 1000, 2),
            'type': DATABASE_TYPE,
        }
    except driver_errors() as e:
        logger.error(f"Database health check failed: {e}")
        return {
            'status': 'unhealthy',
            'error': str(e),
            'latency_ms': round((time.time() - start) * 1000, 2),
            'type': DATABASE_TYPE,
        }
