"""
Tests for the failure record repository.
"""
import sys
from datetime import date, timedelta

import pytest

from failure_analytics.errors import ReferentialIntegrityError, ValidationError

from conftest import ORG, OTHER_ORG, days_ago


class TestCreateFailureRecord:
    """Tests for creating failure records."""

    def test_create(self, records, failure_record_data):
        """Test a valid record is stored with snapshots filled."""
        record = records.create(ORG, failure_record_data)
        assert record.id
        assert record.failure_code == 'MECH-001'
        assert record.total_cost == 150.0
        assert record.is_recurring is False
        assert record.created_at

    def test_future_date_rejected_before_write(self, records, store, failure_record_data):
        """Test a record dated tomorrow is rejected and nothing is stored."""
        failure_record_data['failure_date'] = (date.today() + timedelta(days=1)).isoformat()
        with pytest.raises(ValidationError):
            records.create(ORG, failure_record_data)
        assert store.count('failure_records', ORG) == 0

    @pytest.mark.parametrize('field', ['equipment_id', 'failure_code_id', 'failure_date'])
    def test_missing_required_field(self, records, failure_record_data, field):
        """Test required fields."""
        del failure_record_data[field]
        with pytest.raises(ValidationError) as exc:
            records.create(ORG, failure_record_data)
        assert field in exc.value.message

    @pytest.mark.parametrize('field', ['downtime_hours', 'repair_hours', 'parts_cost', 'labor_cost'])
    def test_negative_measure(self, records, failure_record_data, field):
        """Test negative hours and costs are rejected."""
        failure_record_data[field] = -1
        with pytest.raises(ValidationError):
            records.create(ORG, failure_record_data)

    def test_unknown_failure_code(self, records, failure_record_data):
        """Test a dangling failure code reference."""
        failure_record_data['failure_code_id'] = 'missing'
        with pytest.raises(ValidationError):
            records.create(ORG, failure_record_data)

    def test_inactive_failure_code(self, records, taxonomy, failure_code, failure_record_data):
        """Test inactive codes cannot be used for new records."""
        taxonomy.deactivate_failure_code(ORG, failure_code.id)
        with pytest.raises(ValidationError):
            records.create(ORG, failure_record_data)

    def test_code_from_other_organization(self, records, failure_record_data):
        """Test references are resolved within the organization."""
        with pytest.raises(ValidationError):
            records.create(OTHER_ORG, failure_record_data)

    def test_missing_organization(self, records, failure_record_data):
        """Test writes need an organization scope."""
        with pytest.raises(ValidationError):
            records.create('', failure_record_data)

    def test_root_cause_and_action_snapshots(self, records, root_cause, action_taken, failure_record_data):
        """Test root cause and action codes are copied onto the record."""
        failure_record_data['root_cause_id'] = root_cause.id
        failure_record_data['action_taken_id'] = action_taken.id
        record = records.create(ORG, failure_record_data)
        assert record.root_cause_code == 'RC-LUB'
        assert record.action_taken_code == 'ACT-REPL'

    def test_quick_view_notes(self, records, failure_record_data):
        """Test inline investigation notes are kept on the record."""
        failure_record_data['five_whys'] = ['Bearing seized', 'No grease']
        failure_record_data['corrective_actions'] = ['Regrease']
        record = records.create(ORG, failure_record_data)
        assert record.five_whys == ['Bearing seized', 'No grease']
        assert record.corrective_actions == ['Regrease']


class TestRecurrence:
    """Tests for recurrence back-references."""

    def test_earlier_previous_failure(self, records, failure_record_data):
        """Test pointing at an earlier failure of the same equipment."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(60)})
        second = records.create(ORG, {
            **failure_record_data,
            'failure_date': days_ago(5),
            'previous_failure_id': first.id,
        })
        assert second.is_recurring is True
        assert second.previous_failure_id == first.id

    def test_reversed_dates_rejected(self, records, failure_record_data):
        """Test the previous failure must be earlier."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(5)})
        with pytest.raises(ValidationError):
            records.create(ORG, {
                **failure_record_data,
                'failure_date': days_ago(60),
                'previous_failure_id': first.id,
            })

    def test_same_date_rejected(self, records, failure_record_data):
        """Test the previous failure must be strictly earlier."""
        first = records.create(ORG, failure_record_data)
        with pytest.raises(ValidationError):
            records.create(ORG, {**failure_record_data, 'previous_failure_id': first.id})

    def test_other_equipment_rejected(self, records, failure_record_data):
        """Test the previous failure must be on the same equipment."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(60)})
        with pytest.raises(ValidationError):
            records.create(ORG, {
                **failure_record_data,
                'equipment_id': 'E2',
                'failure_date': days_ago(5),
                'previous_failure_id': first.id,
            })

    def test_recurrence_chain(self, records, failure_record_data):
        """Test walking the chain back to the first failure."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(90)})
        second = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(60),
                                      'previous_failure_id': first.id})
        third = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(30),
                                     'previous_failure_id': second.id})
        chain = records.recurrence_chain(ORG, third.id)
        assert [r.id for r in chain] == [first.id, second.id, third.id]
        assert [r.id for r in records.recurring_failures(ORG)] == [third.id, second.id]

    def test_previous_failure_cannot_move_after_recurrence(self, records, failure_record_data):
        """Test an earlier failure cannot be re-dated past its recurrence."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(20)})
        second = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(10),
                                      'previous_failure_id': first.id})
        with pytest.raises(ValidationError):
            records.update(ORG, first.id, {'failure_date': days_ago(5)})
        with pytest.raises(ValidationError):
            records.update(ORG, first.id, {'failure_date': days_ago(10)})

        assert records.get(ORG, first.id).failure_date == days_ago(20)
        assert records.get(ORG, second.id).previous_failure_id == first.id

    def test_previous_failure_can_move_earlier(self, records, failure_record_data):
        """Test re-dating that keeps the order is accepted."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(20)})
        records.create(ORG, {**failure_record_data, 'failure_date': days_ago(10),
                             'previous_failure_id': first.id})
        updated = records.update(ORG, first.id, {'failure_date': days_ago(15)})
        assert updated.failure_date == days_ago(15)

    def test_previous_failure_cannot_change_equipment(self, records, failure_record_data):
        """Test an earlier failure cannot move to other equipment while a recurrence points at it."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(20)})
        records.create(ORG, {**failure_record_data, 'failure_date': days_ago(10),
                             'previous_failure_id': first.id})
        with pytest.raises(ValidationError):
            records.update(ORG, first.id, {'equipment_id': 'E9'})
        assert records.get(ORG, first.id).equipment_id == 'E1'

    def test_recurrence_cannot_move_before_previous(self, records, failure_record_data):
        """Test a recurrence cannot be re-dated before the failure it recurs from."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(20)})
        second = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(10),
                                      'previous_failure_id': first.id})
        with pytest.raises(ValidationError):
            records.update(ORG, second.id, {'failure_date': days_ago(25)})


class TestUpdateFailureRecord:
    """Tests for amending failure records."""

    def test_update_description(self, records, failure_record):
        """Test a plain update."""
        updated = records.update(ORG, failure_record.id, {'description': 'Seized bearing'})
        assert updated.description == 'Seized bearing'

    def test_update_unknown(self, records):
        """Test updating a missing record."""
        assert records.update(ORG, 'missing', {'description': 'x'}) is None

    def test_locked_fields_after_analysis(self, records, rca, failure_record):
        """Test equipment, date and downtime are locked once an RCA exists."""
        rca.create(ORG, {'failure_record_id': failure_record.id})
        with pytest.raises(ReferentialIntegrityError):
            records.update(ORG, failure_record.id, {'downtime_hours': 99})
        updated = records.update(ORG, failure_record.id, {'description': 'still editable'})
        assert updated.description == 'still editable'

    def test_locked_fields_without_analysis(self, records, failure_record):
        """Test fields are editable before any RCA."""
        updated = records.update(ORG, failure_record.id, {'downtime_hours': 99})
        assert updated.downtime_hours == 99

    def test_future_date_on_update(self, records, failure_record):
        """Test moving the date into the future."""
        with pytest.raises(ValidationError):
            records.update(ORG, failure_record.id, {
                'failure_date': (date.today() + timedelta(days=3)).isoformat()
            })

    def test_snapshot_not_resynced_on_rename(self, records, taxonomy, failure_code, failure_record):
        """Test code snapshots keep the value they were written with."""
        taxonomy.update_failure_code(ORG, failure_code.id, {'code': 'MECH-100'})
        updated = records.update(ORG, failure_record.id, {'description': 'touched'})
        assert updated.failure_code == 'MECH-001'


class TestDeleteFailureRecord:
    """Tests for deleting failure records."""

    def test_delete(self, records, failure_record):
        """Test deleting an unreferenced record."""
        assert records.delete(ORG, failure_record.id) is True
        assert records.get(ORG, failure_record.id) is None

    def test_delete_unknown(self, records):
        """Test deleting a missing record."""
        assert records.delete(ORG, 'missing') is False

    def test_delete_with_analysis_requires_force(self, records, rca, failure_record):
        """Test referenced records need force and cascade to analyses."""
        analysis = rca.create(ORG, {'failure_record_id': failure_record.id})
        with pytest.raises(ReferentialIntegrityError):
            records.delete(ORG, failure_record.id)
        assert records.delete(ORG, failure_record.id, force=True) is True
        assert rca.get(ORG, analysis.id) is None

    def test_force_delete_clears_recurrence_pointer(self, records, failure_record_data):
        """Test later recurrences lose their back-pointer."""
        first = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(60)})
        second = records.create(ORG, {**failure_record_data, 'failure_date': days_ago(5),
                                      'previous_failure_id': first.id})
        with pytest.raises(ReferentialIntegrityError):
            records.delete(ORG, first.id)
        records.delete(ORG, first.id, force=True)
        assert records.get(ORG, second.id).previous_failure_id is None


class TestQueryFailureRecords:
    """Tests for filtering failure records."""

    def test_newest_first(self, records, e1_records):
        """Test default ordering."""
        results = records.query(ORG)
        assert [r.id for r in results] == [e1_records[1].id, e1_records[0].id]

    def test_ascending(self, records, e1_records):
        """Test ascending ordering."""
        results = records.query(ORG, ascending=True)
        assert [r.id for r in results] == [e1_records[0].id, e1_records[1].id]

    def test_date_range_includes_end_day(self, records, e1_records):
        """Test end_date covers the whole day."""
        results = records.query(ORG, start_date=days_ago(15), end_date=days_ago(10))
        assert [r.id for r in results] == [e1_records[1].id]

    def test_loose_date_stored_canonical(self, records, failure_record_data):
        """Test unpadded dates are stored as YYYY-MM-DD and found by range filters."""
        record = records.create(ORG, {**failure_record_data, 'failure_date': '2024-3-5'})
        assert record.failure_date == '2024-03-05'
        results = records.query(ORG, start_date='2024-03-01', end_date='2024-03-31')
        assert [r.id for r in results] == [record.id]

    @pytest.mark.skipif(sys.version_info < (3, 11), reason="compact ISO dates need Python 3.11")
    def test_compact_date_stored_canonical(self, records, failure_record_data):
        """Test basic-format ISO dates are stored as YYYY-MM-DD."""
        record = records.create(ORG, {**failure_record_data, 'failure_date': '20240901'})
        assert record.failure_date == '2024-09-01'
        results = records.query(ORG, start_date='2024-08-01', end_date='2024-09-30')
        assert [r.id for r in results] == [record.id]

    def test_invalid_date(self, records):
        """Test malformed date filters."""
        with pytest.raises(ValidationError):
            records.query(ORG, start_date='not-a-date')

    def test_equipment_filter(self, records, e1_records):
        """Test filtering by equipment."""
        assert len(records.failures_by_equipment(ORG, 'E1')) == 2
        assert records.failures_by_equipment(ORG, 'E2') == []

    def test_organization_scoping(self, records, e1_records):
        """Test other organizations see nothing."""
        assert records.query(OTHER_ORG) == []
        assert records.get(OTHER_ORG, e1_records[0].id) is None
        assert records.query('') == []
