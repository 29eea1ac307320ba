"""
Tests for logging, request context and health checks.
"""
import json
import logging
import os
import sys
import tempfile

from failure_analytics.monitoring import JSONLogFormatter, check_database_health


class TestJSONLogFormatter:
    """Tests for structured log output."""

    def test_format(self):
        """Test a record is rendered as one JSON object."""
        record = logging.LogRecord('failure_analytics.store', logging.WARNING, __file__, 10,
                                   'Store rejected %s', ('write',), None)
        record.organization_id = 'org-1'
        entry = json.loads(JSONLogFormatter().format(record))
        assert entry['level'] == 'WARNING'
        assert entry['logger'] == 'failure_analytics.store'
        assert entry['message'] == 'Store rejected write'
        assert entry['organization_id'] == 'org-1'
        assert 'correlation_id' not in entry

    def test_exception_info(self):
        """Test exceptions are summarised."""
        try:
            raise RuntimeError('boom')
        except RuntimeError:
            record = logging.LogRecord('x', logging.ERROR, __file__, 1, 'failed', (), sys.exc_info())
        entry = json.loads(JSONLogFormatter().format(record))
        assert entry['exception'] == {'type': 'RuntimeError', 'message': 'boom'}


class TestRequestContext:
    """Tests for correlation ids."""

    def test_correlation_id_echoed(self, client, headers):
        """Test a supplied correlation id is returned."""
        response = client.get('/api/failure-codes', headers={**headers, 'X-Correlation-ID': 'abc-123'})
        assert response.headers['X-Correlation-ID'] == 'abc-123'
        assert 'X-Response-Time' in response.headers

    def test_correlation_id_generated(self, client, headers):
        """Test a correlation id is generated when missing."""
        response = client.get('/api/failure-codes', headers=headers)
        assert response.headers['X-Correlation-ID'].startswith('req-')


class TestHealth:
    """Tests for database health."""

    def test_healthy(self, db_path):
        """Test a database with the schema."""
        assert check_database_health(db_path)['status'] == 'healthy'

    def test_missing_schema(self):
        """Test a database without tables."""
        db_fd, path = tempfile.mkstemp(suffix='.db')
        try:
            assert check_database_health(path)['status'] == 'unhealthy'
        finally:
            os.close(db_fd)
            os.unlink(path)

    def test_health_endpoint(self, client):
        """Test the health endpoint."""
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['database']['info']['type'] == 'sqlite'
