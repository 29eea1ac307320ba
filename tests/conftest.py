"""
Pytest fixtures for failure analytics tests.
"""
import os
import tempfile
from datetime import date, timedelta

import pytest

# Set test environment variables before importing the package
os.environ['DATABASE_TYPE'] = 'sqlite'
os.environ['LOG_LEVEL'] = 'WARNING'
os.environ.setdefault(
    'ANALYTICS_CONFIG_FILE',
    os.path.join(tempfile.gettempdir(), 'failure_analytics_test_config.json')
)

from failure_analytics import config_manager, create_app  # noqa: E402
from failure_analytics.database import init_db  # noqa: E402
from failure_analytics.services import build_services  # noqa: E402

ORG = 'org-1'
OTHER_ORG = 'org-2'


def days_ago(days: int) -> str:
    return (date.today() - timedelta(days=days)).isoformat()


@pytest.fixture(autouse=True)
def config_file(tmp_path, monkeypatch):
    """Point the runtime configuration at a per-test file."""
    path = str(tmp_path / 'config.json')
    monkeypatch.setattr(config_manager, 'CONFIG_FILE', path)
    return path


@pytest.fixture
def db_path():
    """Temporary SQLite database with the schema applied."""
    db_fd, path = tempfile.mkstemp(suffix='.db')
    init_db(path)
    yield path
    os.close(db_fd)
    os.unlink(path)


@pytest.fixture
def services(db_path):
    return build_services(db_path)


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def taxonomy(services):
    return services.taxonomy


@pytest.fixture
def records(services):
    return services.records


@pytest.fixture
def rca(services):
    return services.rca


@pytest.fixture
def app(db_path):
    """Create and configure a test application instance."""
    flask_app = create_app('testing', db_path)
    yield flask_app


@pytest.fixture
def client(app):
    """Create a test client for the application."""
    return app.test_client()


@pytest.fixture
def headers():
    return {'X-Organization-Id': ORG}


@pytest.fixture
def failure_code(taxonomy):
    """An active mechanical failure code."""
    return taxonomy.create_failure_code(ORG, {
        'code': 'MECH-001',
        'name': 'Bearing failure',
        'description': 'Bearing seized or worn',
        'category': 'mechanical',
        'severity': 'major',
        'common_causes': ['Lubrication', 'Misalignment'],
        'suggested_actions': ['Replace bearing'],
    })


@pytest.fixture
def electrical_code(taxonomy):
    return taxonomy.create_failure_code(ORG, {
        'code': 'ELEC-001',
        'name': 'Motor burnout',
        'category': 'electrical',
        'severity': 'critical',
    })


@pytest.fixture
def root_cause(taxonomy):
    return taxonomy.create_root_cause(ORG, {
        'code': 'RC-LUB',
        'name': 'Insufficient lubrication',
        'category': 'equipment',
    })


@pytest.fixture
def action_taken(taxonomy):
    return taxonomy.create_action_taken(ORG, {
        'code': 'ACT-REPL',
        'name': 'Replace component',
    })


@pytest.fixture
def failure_record_data(failure_code):
    """Minimal valid failure record payload."""
    return {
        'equipment_id': 'E1',
        'equipment_name': 'Pump 1',
        'failure_code_id': failure_code.id,
        'failure_date': days_ago(30),
        'downtime_hours': 10,
        'repair_hours': 4,
        'parts_cost': 100.0,
        'labor_cost': 50.0,
    }


@pytest.fixture
def failure_record(records, failure_record_data):
    return records.create(ORG, failure_record_data)


@pytest.fixture
def e1_records(records, failure_code):
    """Two failures on E1 with downtime [10, 20] and repair [4, 6]."""
    first = records.create(ORG, {
        'equipment_id': 'E1', 'equipment_name': 'Pump 1',
        'failure_code_id': failure_code.id, 'failure_date': days_ago(40),
        'downtime_hours': 10, 'repair_hours': 4,
    })
    second = records.create(ORG, {
        'equipment_id': 'E1', 'equipment_name': 'Pump 1',
        'failure_code_id': failure_code.id, 'failure_date': days_ago(10),
        'downtime_hours': 20, 'repair_hours': 6,
    })
    return [first, second]
