"""
Unit tests for the failure stats aggregators.
"""
from failure_analytics.models import FailureCode, FailureRecord, RootCause
from failure_analytics.services.stats_service import (
    AvailabilityRanking,
    RankingStrategy,
    failure_metrics,
    overall_stats,
    root_cause_category_stats,
    stats_by_equipment,
    stats_by_failure_code,
    top_failure_code,
)

from conftest import ORG


def make_record(equipment_id='E1', code_id='fc-1', code='MECH-001', failure_date='2024-01-01',
                downtime=0.0, **kwargs):
    return FailureRecord(
        equipment_id=equipment_id,
        failure_code_id=code_id,
        failure_code=code,
        failure_date=failure_date,
        downtime_hours=downtime,
        **kwargs
    )


CODES = [
    FailureCode(id='fc-1', code='MECH-001', name='Bearing failure', category='mechanical', severity='major'),
    FailureCode(id='fc-2', code='ELEC-001', name='Motor burnout', category='electrical', severity='critical'),
]


class TestStatsByFailureCode:
    """Tests for per-code grouping."""

    def test_groups_by_code(self):
        """Test count, downtime and cost per code."""
        records = [
            make_record(downtime=5, parts_cost=10),
            make_record(downtime=3, labor_cost=20),
            make_record(code_id='fc-2', code='ELEC-001', downtime=1),
        ]
        stats = stats_by_failure_code(records, CODES)
        assert [s.failure_code_id for s in stats] == ['fc-1', 'fc-2']
        assert stats[0].count == 2
        assert stats[0].total_downtime == 8
        assert stats[0].total_cost == 30
        assert stats[0].failure_name == 'Bearing failure'

    def test_unknown_code_name(self):
        """Test codes missing from the taxonomy fall back to the snapshot."""
        stats = stats_by_failure_code([make_record(code_id='gone', code='OLD-1')])
        assert stats[0].failure_name == 'OLD-1'

    def test_missing_snapshot(self):
        """Test records without a code snapshot."""
        stats = stats_by_failure_code([make_record(code_id='gone', code='')])
        assert stats[0].failure_code == 'Unknown'


class TestStatsByEquipment:
    """Tests for per-equipment grouping."""

    def test_top_failure_code(self):
        """Test the most frequent code per equipment."""
        records = [
            make_record(code='A'), make_record(code='B'), make_record(code='B'),
            make_record(equipment_id='E2', code='C'),
        ]
        stats = stats_by_equipment(records)
        assert [s.equipment_id for s in stats] == ['E1', 'E2']
        assert stats[0].top_failure_code == 'B'
        assert stats[0].failure_count == 3
        assert stats[1].top_failure_code == 'C'

    def test_tie_keeps_first_encountered(self):
        """Test ties go to the first code seen."""
        assert top_failure_code({'A': 2, 'B': 2}) == 'A'

    def test_empty_histogram(self):
        """Test no codes."""
        assert top_failure_code({}) == 'N/A'


class TestRankings:
    """Tests for top performer and needs attention rankings."""

    def test_availability_ranking(self):
        """Test ranking by availability."""
        records = [
            make_record('E1', downtime=100),
            make_record('E2', downtime=10),
            make_record('E3', downtime=500),
        ]
        stats = overall_stats(records, ranking=AvailabilityRanking(limit=2))
        assert [e['equipment_id'] for e in stats.top_performers] == ['E2', 'E1']
        assert [e['equipment_id'] for e in stats.needs_attention] == ['E3', 'E1']

    def test_custom_strategy(self):
        """Test a pluggable ranking strategy."""
        class NoRanking(RankingStrategy):
            def rank(self, metrics):
                return [], [{'equipment_id': m.equipment_id} for m in metrics]

        stats = overall_stats([make_record('E1')], ranking=NoRanking())
        assert stats.top_performers == []
        assert stats.needs_attention == [{'equipment_id': 'E1'}]

    def test_overall_totals(self):
        """Test pooled totals in overall stats."""
        records = [
            make_record('E1', downtime=10, parts_cost=100),
            make_record('E2', downtime=20, labor_cost=50),
        ]
        stats = overall_stats(records)
        assert stats.total_equipment == 2
        assert stats.total_failures == 2
        assert stats.avg_mtbf == 8760
        assert stats.total_downtime_hours == 30
        assert stats.total_maintenance_cost == 150


class TestFailureMetrics:
    """Tests for headline failure metrics."""

    def test_breakdowns(self):
        """Test category and severity breakdowns."""
        records = [
            make_record(downtime=10, repair_hours=2),
            make_record(downtime=10, repair_hours=4, is_recurring=True),
            make_record(code_id='fc-2', code='ELEC-001', repair_hours=6),
        ]
        metrics = failure_metrics(records, CODES)
        assert metrics['total_failures'] == 3
        assert metrics['avg_mtbf'] == 2920
        assert metrics['avg_mttr'] == 4.0
        assert metrics['recurring_failures'] == 1
        assert metrics['failures_by_category'] == [
            {'category': 'mechanical', 'count': 2},
            {'category': 'electrical', 'count': 1},
        ]
        assert metrics['failures_by_severity'][0] == {'severity': 'major', 'count': 2}

    def test_no_records(self):
        """Test empty input."""
        metrics = failure_metrics([], CODES)
        assert metrics['total_failures'] == 0
        assert metrics['avg_mtbf'] == 8760
        assert metrics['avg_mttr'] == 0


class TestRootCauseCategories:
    """Tests for root cause category counts."""

    def test_counts_per_category(self):
        """Test every category is listed, most frequent first."""
        causes = [RootCause(id='rc-1', code='RC-1', name='Lubrication', category='equipment')]
        records = [make_record(root_cause_id='rc-1'), make_record(root_cause_id='rc-1'), make_record()]
        stats = root_cause_category_stats(records, causes)
        assert len(stats) == 6
        assert stats[0]['id'] == 'equipment'
        assert stats[0]['count'] == 2
        assert all(s['count'] == 0 for s in stats[1:])


class TestFailureStatsService:
    """Tests for store-backed stats."""

    def test_by_failure_code(self, services, e1_records, failure_code):
        """Test stats from stored records use the taxonomy name."""
        stats = services.stats.by_failure_code(ORG)
        assert len(stats) == 1
        assert stats[0].failure_name == failure_code.name
        assert stats[0].count == 2

    def test_overall_ranking_limit_from_configuration(self, services, records, failure_code):
        """Test the configured ranking limit."""
        from failure_analytics.config_manager import set_config
        for equipment_id in ('E1', 'E2', 'E3'):
            records.create(ORG, {
                'equipment_id': equipment_id, 'failure_code_id': failure_code.id,
                'failure_date': '2024-01-01',
            })
        set_config({'ranking_limit': 1})
        stats = services.stats.overall(ORG)
        assert len(stats.top_performers) == 1
        assert len(stats.needs_attention) == 1

    def test_metrics(self, services, e1_records):
        """Test failure metrics from stored records."""
        metrics = services.stats.metrics(ORG)
        assert metrics['total_failures'] == 2
        assert metrics['failures_by_category'] == [{'category': 'mechanical', 'count': 2}]
