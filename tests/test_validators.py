"""
Unit tests for input validators.
"""
from datetime import date, datetime, timedelta

from failure_analytics.models import FailureSeverity
from failure_analytics.validators import (
    is_date_only,
    next_day,
    normalize_date,
    parse_date,
    validate_configuration,
    validate_enum,
    validate_failure_date,
    validate_non_negative,
    validate_organization_id,
    validate_required_fields,
)


class TestParseDate:
    """Tests for parse_date function."""

    def test_iso_date(self):
        """Test date-only strings."""
        assert parse_date('2024-01-15') == datetime(2024, 1, 15)

    def test_iso_datetime_with_z(self):
        """Test UTC datetimes."""
        parsed = parse_date('2024-01-15T10:30:00Z')
        assert parsed.hour == 10
        assert parsed.tzinfo is not None

    def test_date_object(self):
        """Test date objects."""
        assert parse_date(date(2024, 1, 15)) == datetime(2024, 1, 15)

    def test_invalid(self):
        """Test unparseable input."""
        assert parse_date('15/01/2024') is None
        assert parse_date(None) is None

    def test_next_day(self):
        """Test the exclusive end-of-day bound."""
        assert next_day('2024-02-28') == '2024-02-29'
        assert next_day('garbage') is None


class TestNormalizeDate:
    """Tests for canonical date text."""

    def test_unpadded_date(self):
        """Test date-only input becomes YYYY-MM-DD."""
        assert normalize_date('2024-3-5') == '2024-03-05'
        assert normalize_date(' 2024-03-05 ') == '2024-03-05'
        assert normalize_date(date(2024, 3, 5)) == '2024-03-05'

    def test_datetime_kept_with_time(self):
        """Test datetimes keep their time and offset."""
        assert normalize_date('2024-01-15T10:30:00Z') == '2024-01-15T10:30:00+00:00'
        assert normalize_date(datetime(2024, 1, 15, 10, 30)) == '2024-01-15T10:30:00'

    def test_unparseable_passed_through(self):
        """Test invalid text is left for validation to reject."""
        assert normalize_date('not-a-date') == 'not-a-date'
        assert normalize_date(None) is None

    def test_is_date_only(self):
        """Test date-only detection."""
        assert is_date_only('2024-03-05') is True
        assert is_date_only('20240305') is True
        assert is_date_only(date(2024, 3, 5)) is True
        assert is_date_only('2024-03-05T00:00:00') is False
        assert is_date_only(datetime(2024, 3, 5)) is False


class TestValidateOrganizationId:
    """Tests for validate_organization_id function."""

    def test_valid(self):
        """Test valid organization IDs."""
        for org in ['org-1', 'ACME_Plant.2', 'tenant:42']:
            is_valid, error = validate_organization_id(org)
            assert is_valid is True
            assert error is None

    def test_empty(self):
        """Test empty organization ID."""
        is_valid, error = validate_organization_id('')
        assert is_valid is False
        assert 'required' in error.lower()

    def test_too_long(self):
        """Test organization ID that's too long."""
        is_valid, error = validate_organization_id('a' * 65)
        assert is_valid is False
        assert 'too long' in error.lower()

    def test_invalid_characters(self):
        """Test organization ID with invalid characters."""
        is_valid, error = validate_organization_id('org 1; drop')
        assert is_valid is False
        assert 'invalid characters' in error.lower()


class TestValidateFields:
    """Tests for required fields and measures."""

    def test_required_present(self):
        """Test all required fields present."""
        is_valid, _ = validate_required_fields({'a': 1, 'b': 'x'}, ['a', 'b'])
        assert is_valid is True

    def test_required_missing(self):
        """Test missing and empty fields are both reported."""
        is_valid, error = validate_required_fields({'a': ''}, ['a', 'b'])
        assert is_valid is False
        assert 'a, b' in error

    def test_zero_is_present(self):
        """Test zero counts as a value."""
        is_valid, _ = validate_required_fields({'a': 0}, ['a'])
        assert is_valid is True

    def test_negative_measure(self):
        """Test negative downtime."""
        is_valid, error = validate_non_negative({'downtime_hours': -0.5})
        assert is_valid is False
        assert 'downtime_hours' in error

    def test_non_numeric_measure(self):
        """Test non-numeric cost."""
        is_valid, error = validate_non_negative({'parts_cost': '12'})
        assert is_valid is False
        assert 'number' in error

    def test_zero_measures(self):
        """Test zero is allowed."""
        is_valid, _ = validate_non_negative({'downtime_hours': 0, 'repair_hours': 0.0})
        assert is_valid is True


class TestValidateFailureDate:
    """Tests for validate_failure_date function."""

    def test_today(self):
        """Test today is allowed."""
        is_valid, _ = validate_failure_date(date.today().isoformat())
        assert is_valid is True

    def test_tomorrow(self):
        """Test tomorrow is rejected."""
        is_valid, error = validate_failure_date((date.today() + timedelta(days=1)).isoformat())
        assert is_valid is False
        assert 'future' in error

    def test_future_datetime(self):
        """Test datetimes are compared against now."""
        now = datetime(2024, 5, 1, 12, 0)
        is_valid, _ = validate_failure_date('2024-05-01T13:00:00', now=now)
        assert is_valid is False
        is_valid, _ = validate_failure_date('2024-05-01T11:00:00', now=now)
        assert is_valid is True

    def test_missing_and_malformed(self):
        """Test missing and malformed dates."""
        assert validate_failure_date(None)[0] is False
        assert validate_failure_date('yesterday')[0] is False


class TestValidateEnum:
    """Tests for validate_enum function."""

    def test_valid(self):
        """Test a vocabulary member."""
        assert validate_enum('major', FailureSeverity, 'severity') == (True, None)

    def test_invalid(self):
        """Test a value outside the vocabulary."""
        is_valid, error = validate_enum('huge', FailureSeverity, 'severity')
        assert is_valid is False
        assert 'must be one of' in error


class TestValidateConfiguration:
    """Tests for validate_configuration function."""

    def test_valid(self):
        """Test a valid configuration."""
        is_valid, _ = validate_configuration({
            'operating_hours': {'hours_per_year': 6000, 'hours_per_month': 500},
            'trend_window_months': 12,
            'ranking_limit': 3,
        })
        assert is_valid is True

    def test_empty(self):
        """Test empty configuration."""
        assert validate_configuration({})[0] is False
        assert validate_configuration(None)[0] is False

    def test_non_positive_hours(self):
        """Test zero operating hours."""
        is_valid, error = validate_configuration({'operating_hours': {'hours_per_year': 0}})
        assert is_valid is False
        assert 'hours_per_year' in error

    def test_invalid_window(self):
        """Test non-integer window."""
        is_valid, error = validate_configuration({'trend_window_months': 1.5})
        assert is_valid is False
        assert 'trend_window_months' in error
