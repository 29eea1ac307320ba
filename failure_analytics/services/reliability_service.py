"""
Reliability Metrics Engine

Derives reliability metrics from failure records:
- MTBF (Mean Time Between Failures)
- MTTR (Mean Time To Repair)
- Availability against a continuous-operation baseline
- Failure frequency trend per equipment unit
- Fleet metrics re-derived from pooled totals

All computation is pure over in-memory record lists. The operating-hour
baseline comes from a single OperatingHoursPolicy so a shift calendar can
replace the constants later without touching call sites.
"""

import logging
import math
import statistics
from collections import OrderedDict
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence

from ..config_manager import get_config
from ..models import FailureRecord
from ..validators import parse_date

logger = logging.getLogger(__name__)

HOURS_PER_YEAR = 8760
HOURS_PER_MONTH = 730
UNKNOWN_EQUIPMENT_NAME = 'Unknown'


@dataclass(frozen=True)
class OperatingHoursPolicy:
    """Assumed operating-hour baseline for availability and MTBF."""
    hours_per_year: float = HOURS_PER_YEAR
    hours_per_month: float = HOURS_PER_MONTH

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> 'OperatingHoursPolicy':
        config = config if config is not None else get_config()
        hours = config.get('operating_hours', {})
        return cls(
            hours_per_year=hours.get('hours_per_year', HOURS_PER_YEAR),
            hours_per_month=hours.get('hours_per_month', HOURS_PER_MONTH),
        )


@dataclass
class ReliabilityFigures:
    """Rounded MTBF/MTTR/availability for one scope."""
    mtbf_hours: int
    mtbf_days: int
    mttr_hours: float
    availability: float


@dataclass
class EquipmentReliabilityMetrics:
    """Reliability metrics for a single equipment unit"""
    equipment_id: str
    equipment_name: str
    failure_count: int
    total_downtime_hours: float
    total_repair_hours: float
    total_cost: float
    mtbf_hours: int
    mtbf_days: int
    mttr_hours: float
    availability: float
    total_operating_hours: float
    trend: str  # 'improving', 'stable', 'declining'
    last_failure_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FleetReliabilityMetrics:
    """Fleet metrics re-derived from pooled totals, not averaged per unit"""
    equipment_count: int
    total_failures: int
    total_downtime_hours: float
    total_repair_hours: float
    total_cost: float
    avg_mtbf_hours: int
    avg_mtbf_days: int
    avg_mttr_hours: float
    avg_availability: float
    total_operating_hours: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def round_half_up(value: float, digits: int = 0):
    """
    Round halves toward positive infinity (0.25 -> 0.3, 182.5 -> 183, -2.5 -> -2).

    Returns an int when digits is 0.
    """
    if digits == 0:
        return int(math.floor(value + 0.5))
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def derive_metrics(
    failure_count: float,
    total_downtime_hours: float,
    total_repair_hours: float,
    operating_hours: float
) -> ReliabilityFigures:
    """
    Apply the reliability formulas to aggregated figures.

    MTBF = operating hours / failures (operating hours when there are none)
    MTTR = repair hours / failures (0 when there are none)
    Availability = (operating hours - downtime) / operating hours * 100

    Availability is not clamped: downtime beyond the baseline yields a
    negative value.
    """
    if failure_count > 0:
        mtbf = operating_hours / failure_count
        mttr = total_repair_hours / failure_count
    else:
        mtbf = operating_hours
        mttr = 0.0

    if operating_hours > 0:
        availability = ((operating_hours - total_downtime_hours) / operating_hours) * 100
    else:
        availability = 100.0

    return ReliabilityFigures(
        mtbf_hours=round_half_up(mtbf),
        mtbf_days=round_half_up(mtbf / 24),
        mttr_hours=round_half_up(mttr, 1),
        availability=round_half_up(availability, 1),
    )


def _sorted_by_date(records: Sequence[FailureRecord]) -> List[FailureRecord]:
    return sorted(records, key=lambda r: (r.failure_date, r.id or ''))


def calculate_failure_trend(records: Sequence[FailureRecord]) -> str:
    """
    Calculate trend based on failure frequency.

    Compares the mean time between failures of the older and newer halves
    of the history. Needs at least four dated records.
    """
    parsed = (parse_date(r.failure_date) for r in records)
    dates = sorted(d.replace(tzinfo=None) for d in parsed if d is not None)
    if len(dates) < 4:
        return 'stable'

    # Compare first half vs second half
    mid = len(dates) // 2
    first_half = dates[:mid]
    second_half = dates[mid:]

    def avg_tbf(half):
        if len(half) < 2:
            return float('inf')
        tbfs = [(half[i] - half[i - 1]).total_seconds() / 86400 for i in range(1, len(half))]
        return statistics.mean(tbfs)

    first_avg = avg_tbf(first_half)
    second_avg = avg_tbf(second_half)

    if second_avg > first_avg * 1.2:
        return 'improving'
    elif second_avg < first_avg * 0.8:
        return 'declining'
    else:
        return 'stable'


def equipment_metrics(
    records: Sequence[FailureRecord],
    policy: Optional[OperatingHoursPolicy] = None
) -> Optional[EquipmentReliabilityMetrics]:
    """
    Metrics for the records of one equipment unit.

    Returns None when there are no records: "no data" is distinct from a
    unit with a perfect record.
    """
    if not records:
        return None
    policy = policy or OperatingHoursPolicy()

    ordered = _sorted_by_date(records)
    newest = ordered[-1]

    failure_count = len(records)
    total_downtime = sum(r.downtime_hours for r in records)
    total_repair = sum(r.repair_hours for r in records)
    total_cost = sum(r.total_cost for r in records)
    figures = derive_metrics(failure_count, total_downtime, total_repair, policy.hours_per_year)

    return EquipmentReliabilityMetrics(
        equipment_id=newest.equipment_id,
        equipment_name=newest.equipment_name or UNKNOWN_EQUIPMENT_NAME,
        failure_count=failure_count,
        total_downtime_hours=total_downtime,
        total_repair_hours=total_repair,
        total_cost=total_cost,
        mtbf_hours=figures.mtbf_hours,
        mtbf_days=figures.mtbf_days,
        mttr_hours=figures.mttr_hours,
        availability=figures.availability,
        total_operating_hours=policy.hours_per_year,
        trend=calculate_failure_trend(ordered),
        last_failure_date=newest.failure_date,
    )


def group_by_equipment(records: Sequence[FailureRecord]) -> 'OrderedDict[str, List[FailureRecord]]':
    """Group records by equipment_id, keyed in sorted id order."""
    groups: Dict[str, List[FailureRecord]] = {}
    for record in records:
        groups.setdefault(record.equipment_id, []).append(record)
    return OrderedDict(sorted(groups.items()))


def all_equipment_metrics(
    records: Sequence[FailureRecord],
    policy: Optional[OperatingHoursPolicy] = None
) -> List[EquipmentReliabilityMetrics]:
    """Per-unit metrics for every equipment with at least one failure, sorted by equipment_id."""
    policy = policy or OperatingHoursPolicy()
    return [equipment_metrics(group, policy) for group in group_by_equipment(records).values()]


def fleet_metrics(
    records: Sequence[FailureRecord],
    policy: Optional[OperatingHoursPolicy] = None,
    equipment_count: Optional[int] = None
) -> FleetReliabilityMetrics:
    """
    Fleet metrics re-derived from pooled totals.

    avg MTBF = hours_per_year / (total failures / equipment count)
    avg availability applies the availability formula to downtime per unit.
    equipment_count defaults to the number of distinct equipment with failures.
    """
    policy = policy or OperatingHoursPolicy()
    operating_hours = policy.hours_per_year

    if equipment_count is None:
        equipment_count = len({r.equipment_id for r in records})

    total_failures = len(records)
    total_downtime = sum(r.downtime_hours for r in records)
    total_repair = sum(r.repair_hours for r in records)
    total_cost = sum(r.total_cost for r in records)

    if total_failures > 0:
        avg_mtbf = operating_hours / (total_failures / max(equipment_count, 1))
        avg_mttr = total_repair / total_failures
    else:
        avg_mtbf = operating_hours
        avg_mttr = 0.0

    if equipment_count > 0:
        avg_availability = ((operating_hours - (total_downtime / equipment_count)) / operating_hours) * 100
    else:
        avg_availability = 100.0

    return FleetReliabilityMetrics(
        equipment_count=equipment_count,
        total_failures=total_failures,
        total_downtime_hours=total_downtime,
        total_repair_hours=total_repair,
        total_cost=total_cost,
        avg_mtbf_hours=round_half_up(avg_mtbf),
        avg_mtbf_days=round_half_up(avg_mtbf / 24),
        avg_mttr_hours=round_half_up(avg_mttr, 1),
        avg_availability=round_half_up(avg_availability, 1),
        total_operating_hours=operating_hours,
    )


class ReliabilityEngineeringService:
    """
    Service for reliability engineering calculations over stored failure records.

    Binds the pure engine to the failure record repository for one
    organization scope per call.
    """

    def __init__(self, records, policy: Optional[OperatingHoursPolicy] = None):
        self.records = records
        self.policy = policy

    def _policy(self) -> OperatingHoursPolicy:
        return self.policy or OperatingHoursPolicy.from_config()

    def equipment_reliability(self, organization_id: str,
                              equipment_id: str) -> Optional[EquipmentReliabilityMetrics]:
        if not equipment_id:
            return None
        failures = self.records.failures_by_equipment(organization_id, equipment_id)
        return equipment_metrics(failures, self._policy())

    def all_equipment_reliability(self, organization_id: str) -> List[EquipmentReliabilityMetrics]:
        return all_equipment_metrics(self.records.query(organization_id), self._policy())

    def fleet_reliability(self, organization_id: str,
                          equipment_count: Optional[int] = None) -> FleetReliabilityMetrics:
        return fleet_metrics(self.records.query(organization_id), self._policy(), equipment_count)

    def mtbf_analysis(self, organization_id: str, equipment_id: Optional[str] = None):
        """MTBF view for one unit (dict or None) or for every unit (list)."""
        def view(m: EquipmentReliabilityMetrics) -> Dict[str, Any]:
            return {
                'equipment_id': m.equipment_id,
                'equipment_name': m.equipment_name,
                'mtbf_hours': m.mtbf_hours,
                'mtbf_days': m.mtbf_days,
                'failure_count': m.failure_count,
                'total_operating_hours': m.total_operating_hours,
                'trend': m.trend,
            }

        if equipment_id:
            metrics = self.equipment_reliability(organization_id, equipment_id)
            return view(metrics) if metrics else None
        return [view(m) for m in self.all_equipment_reliability(organization_id)]

    def mttr_analysis(self, organization_id: str, equipment_id: Optional[str] = None):
        """MTTR view for one unit (dict or None) or for every unit (list)."""
        def view(m: EquipmentReliabilityMetrics) -> Dict[str, Any]:
            return {
                'equipment_id': m.equipment_id,
                'equipment_name': m.equipment_name,
                'mttr_hours': m.mttr_hours,
                'failure_count': m.failure_count,
                'total_repair_hours': m.total_repair_hours,
                'avg_cost_per_repair': m.total_cost / m.failure_count if m.failure_count > 0 else 0,
            }

        if equipment_id:
            metrics = self.equipment_reliability(organization_id, equipment_id)
            return view(metrics) if metrics else None
        return [view(m) for m in self.all_equipment_reliability(organization_id)]
