"""
Failure Stats Aggregators

Grouping passes over the same failure record collection:
- by failure code: count/downtime/cost per code
- by equipment: count/downtime/cost plus the most frequent failure code
- overall fleet: pooled totals with pluggable top-performer/needs-attention rankings
- failure metrics: totals and breakdown by code category and severity
- root cause categories: records per root-cause category

Every grouping is independent per key; results are sorted by identifier
before they are returned so output order is reproducible.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config_manager import get_config
from ..models import FailureCode, FailureRecord, RootCause, ROOT_CAUSE_CATEGORY_INFO
from .reliability_service import (
    EquipmentReliabilityMetrics,
    OperatingHoursPolicy,
    all_equipment_metrics,
    fleet_metrics,
    round_half_up,
    UNKNOWN_EQUIPMENT_NAME,
)

logger = logging.getLogger(__name__)

UNKNOWN_CODE = 'Unknown'
NO_FAILURE_CODE = 'N/A'
DEFAULT_RANKING_LIMIT = 5


@dataclass
class FailureCodeStats:
    failure_code_id: str
    failure_code: str
    failure_name: str
    count: int
    total_downtime: float
    total_cost: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EquipmentFailureStats:
    equipment_id: str
    equipment_name: str
    failure_count: int
    total_downtime: float
    total_cost: float
    top_failure_code: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OverallReliabilityStats:
    total_equipment: int
    total_failures: int
    avg_mtbf: int
    avg_mttr: float
    avg_availability: float
    total_downtime_hours: float
    total_maintenance_cost: float
    top_performers: List[Dict[str, Any]] = field(default_factory=list)
    needs_attention: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Rankings
# ---------------------------------------------------------------------------

class RankingStrategy(ABC):
    """Selects top-performer and needs-attention equipment from per-unit metrics."""

    @abstractmethod
    def rank(self, metrics: Sequence[EquipmentReliabilityMetrics]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Return (top_performers, needs_attention)."""
        pass


class AvailabilityRanking(RankingStrategy):
    """
    Rank by availability: descending for top performers, ascending for
    needs attention. Ties fall back to equipment_id. A small fleet may
    appear in both lists.
    """

    def __init__(self, limit: int = DEFAULT_RANKING_LIMIT):
        self.limit = limit

    @staticmethod
    def _entry(m: EquipmentReliabilityMetrics) -> Dict[str, Any]:
        return {
            'equipment_id': m.equipment_id,
            'equipment_name': m.equipment_name,
            'availability': m.availability,
        }

    def rank(self, metrics):
        best = sorted(metrics, key=lambda m: (-m.availability, m.equipment_id))
        worst = sorted(metrics, key=lambda m: (m.availability, m.equipment_id))
        return (
            [self._entry(m) for m in best[:self.limit]],
            [self._entry(m) for m in worst[:self.limit]],
        )


# ---------------------------------------------------------------------------
# Aggregations
# ---------------------------------------------------------------------------

def _code_index(failure_codes: Optional[Iterable[FailureCode]]) -> Dict[str, FailureCode]:
    return {fc.id: fc for fc in (failure_codes or []) if fc.id}


def stats_by_failure_code(
    records: Sequence[FailureRecord],
    failure_codes: Optional[Iterable[FailureCode]] = None
) -> List[FailureCodeStats]:
    """Count, downtime and cost per failure_code_id."""
    codes = _code_index(failure_codes)
    groups: Dict[str, Dict[str, Any]] = {}
    for record in records:
        group = groups.setdefault(record.failure_code_id, {
            'code': record.failure_code or UNKNOWN_CODE,
            'count': 0,
            'downtime': 0.0,
            'cost': 0.0,
        })
        group['count'] += 1
        group['downtime'] += record.downtime_hours
        group['cost'] += record.total_cost

    stats = []
    for code_id in sorted(groups):
        group = groups[code_id]
        taxonomy_entry = codes.get(code_id)
        stats.append(FailureCodeStats(
            failure_code_id=code_id,
            failure_code=group['code'],
            failure_name=taxonomy_entry.name if taxonomy_entry else group['code'],
            count=group['count'],
            total_downtime=group['downtime'],
            total_cost=group['cost'],
        ))
    return stats


def top_failure_code(histogram: Dict[str, int]) -> str:
    """Most frequent code; ties go to the first encountered."""
    top_code = NO_FAILURE_CODE
    max_count = 0
    for code, count in histogram.items():
        if count > max_count:
            max_count = count
            top_code = code
    return top_code


def stats_by_equipment(records: Sequence[FailureRecord]) -> List[EquipmentFailureStats]:
    """Count, downtime, cost and most frequent failure code per equipment."""
    groups: Dict[str, Dict[str, Any]] = {}
    for record in records:
        group = groups.setdefault(record.equipment_id, {
            'name': record.equipment_name or UNKNOWN_EQUIPMENT_NAME,
            'count': 0,
            'downtime': 0.0,
            'cost': 0.0,
            'codes': {},
        })
        group['count'] += 1
        group['downtime'] += record.downtime_hours
        group['cost'] += record.total_cost
        code = record.failure_code or UNKNOWN_CODE
        group['codes'][code] = group['codes'].get(code, 0) + 1

    return [
        EquipmentFailureStats(
            equipment_id=equipment_id,
            equipment_name=groups[equipment_id]['name'],
            failure_count=groups[equipment_id]['count'],
            total_downtime=groups[equipment_id]['downtime'],
            total_cost=groups[equipment_id]['cost'],
            top_failure_code=top_failure_code(groups[equipment_id]['codes']),
        )
        for equipment_id in sorted(groups)
    ]


def overall_stats(
    records: Sequence[FailureRecord],
    policy: Optional[OperatingHoursPolicy] = None,
    ranking: Optional[RankingStrategy] = None,
    equipment_count: Optional[int] = None
) -> OverallReliabilityStats:
    """Fleet totals re-derived from pooled figures, plus rankings."""
    policy = policy or OperatingHoursPolicy()
    ranking = ranking or AvailabilityRanking()

    fleet = fleet_metrics(records, policy, equipment_count)
    top_performers, needs_attention = ranking.rank(all_equipment_metrics(records, policy))

    return OverallReliabilityStats(
        total_equipment=fleet.equipment_count,
        total_failures=fleet.total_failures,
        avg_mtbf=fleet.avg_mtbf_hours,
        avg_mttr=fleet.avg_mttr_hours,
        avg_availability=fleet.avg_availability,
        total_downtime_hours=fleet.total_downtime_hours,
        total_maintenance_cost=fleet.total_cost,
        top_performers=top_performers,
        needs_attention=needs_attention,
    )


def _count_ranking(counts: Dict[str, int], key: str) -> List[Dict[str, Any]]:
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{key: name, 'count': count} for name, count in ordered]


def failure_metrics(
    records: Sequence[FailureRecord],
    failure_codes: Optional[Iterable[FailureCode]] = None,
    policy: Optional[OperatingHoursPolicy] = None
) -> Dict[str, Any]:
    """
    Headline failure metrics with breakdowns by failure code category and severity.

    avg_mtbf here divides the annual baseline by the total record count.
    """
    policy = policy or OperatingHoursPolicy()
    codes = _code_index(failure_codes)

    total_failures = len(records)
    total_downtime = sum(r.downtime_hours for r in records)
    total_repair = sum(r.repair_hours for r in records)
    total_cost = sum(r.total_cost for r in records)
    recurring = len([r for r in records if r.is_recurring])

    operating_hours = policy.hours_per_year
    avg_mtbf = operating_hours / total_failures if total_failures > 0 else operating_hours
    avg_mttr = total_repair / total_failures if total_failures > 0 else 0

    by_category: Dict[str, int] = {}
    by_severity: Dict[str, int] = {}
    for record in records:
        code = codes.get(record.failure_code_id)
        if code:
            by_category[code.category.value] = by_category.get(code.category.value, 0) + 1
            by_severity[code.severity.value] = by_severity.get(code.severity.value, 0) + 1

    return {
        'total_failures': total_failures,
        'total_downtime_hours': total_downtime,
        'total_repair_cost': total_cost,
        'avg_mtbf': round_half_up(avg_mtbf),
        'avg_mttr': round_half_up(avg_mttr, 1),
        'recurring_failures': recurring,
        'failures_by_category': _count_ranking(by_category, 'category'),
        'failures_by_severity': _count_ranking(by_severity, 'severity'),
    }


def root_cause_category_stats(
    records: Sequence[FailureRecord],
    root_causes: Iterable[RootCause]
) -> List[Dict[str, Any]]:
    """Records per root-cause category. Every category is listed, most frequent first."""
    causes = {rc.id: rc for rc in root_causes if rc.id}
    counts: Dict[str, int] = {}
    for record in records:
        cause = causes.get(record.root_cause_id) if record.root_cause_id else None
        if cause:
            counts[cause.category.value] = counts.get(cause.category.value, 0) + 1

    stats = [
        {
            'id': category.value,
            'name': name,
            'description': description,
            'count': counts.get(category.value, 0),
        }
        for category, (name, description) in ROOT_CAUSE_CATEGORY_INFO.items()
    ]
    # Stable sort keeps vocabulary order among equal counts
    return sorted(stats, key=lambda s: -s['count'])


class FailureStatsService:
    """Binds the aggregators to stored records and taxonomy for one organization per call."""

    def __init__(self, records, taxonomy, policy: Optional[OperatingHoursPolicy] = None,
                 ranking: Optional[RankingStrategy] = None):
        self.records = records
        self.taxonomy = taxonomy
        self.policy = policy
        self.ranking = ranking

    def _policy(self) -> OperatingHoursPolicy:
        return self.policy or OperatingHoursPolicy.from_config()

    def _ranking(self) -> RankingStrategy:
        if self.ranking:
            return self.ranking
        return AvailabilityRanking(get_config().get('ranking_limit', DEFAULT_RANKING_LIMIT))

    def by_failure_code(self, organization_id: str) -> List[FailureCodeStats]:
        return stats_by_failure_code(
            self.records.query(organization_id),
            self.taxonomy.list_failure_codes(organization_id),
        )

    def by_equipment(self, organization_id: str) -> List[EquipmentFailureStats]:
        return stats_by_equipment(self.records.query(organization_id))

    def overall(self, organization_id: str,
                equipment_count: Optional[int] = None) -> OverallReliabilityStats:
        return overall_stats(
            self.records.query(organization_id),
            self._policy(),
            self._ranking(),
            equipment_count,
        )

    def metrics(self, organization_id: str) -> Dict[str, Any]:
        return failure_metrics(
            self.records.query(organization_id),
            self.taxonomy.list_failure_codes(organization_id),
            self._policy(),
        )

    def root_cause_categories(self, organization_id: str) -> List[Dict[str, Any]]:
        return root_cause_category_stats(
            self.records.query(organization_id),
            self.taxonomy.list_root_causes(organization_id),
        )
