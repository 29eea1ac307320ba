"""
Monthly reliability trends.

Buckets failure records by the YYYY-MM prefix of failure_date inside a
trailing window and re-runs the reliability formulas per bucket with the
monthly operating-hour baseline. Months without failures are omitted, so
callers must not assume a contiguous series.
"""

import calendar
import logging
from dataclasses import dataclass, asdict
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from ..config_manager import get_config
from ..models import FailureRecord
from .reliability_service import OperatingHoursPolicy, derive_metrics

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MONTHS = 6


@dataclass
class ReliabilityTrendPoint:
    month: str
    mtbf: int
    mttr: float
    availability: float
    failure_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def months_before(as_of: date, months: int) -> date:
    """Same day `months` calendar months earlier, clamped to the month's last day."""
    total = as_of.year * 12 + (as_of.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    day = min(as_of.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def window_start(window_months: int = DEFAULT_WINDOW_MONTHS, as_of: Optional[date] = None) -> str:
    """ISO date of the first day included in the trailing window."""
    return months_before(as_of or date.today(), window_months).isoformat()


def monthly_trends(
    records: Sequence[FailureRecord],
    policy: Optional[OperatingHoursPolicy] = None,
    window_months: int = DEFAULT_WINDOW_MONTHS,
    as_of: Optional[date] = None
) -> List[ReliabilityTrendPoint]:
    """Per-month MTBF/MTTR/availability, ascending by month."""
    policy = policy or OperatingHoursPolicy()
    cutoff = window_start(window_months, as_of)

    buckets: Dict[str, Dict[str, float]] = {}
    for record in records:
        if record.failure_date[:10] < cutoff:
            continue
        month = record.failure_date[:7]
        bucket = buckets.setdefault(month, {'failures': 0, 'downtime': 0.0, 'repair': 0.0})
        bucket['failures'] += 1
        bucket['downtime'] += record.downtime_hours
        bucket['repair'] += record.repair_hours

    points = []
    for month in sorted(buckets):
        data = buckets[month]
        figures = derive_metrics(data['failures'], data['downtime'], data['repair'], policy.hours_per_month)
        points.append(ReliabilityTrendPoint(
            month=month,
            mtbf=figures.mtbf_hours,
            mttr=figures.mttr_hours,
            availability=figures.availability,
            failure_count=int(data['failures']),
        ))
    return points


class ReliabilityTrendService:
    """Fetches the trailing window for an organization and aggregates it by month."""

    def __init__(self, records, policy: Optional[OperatingHoursPolicy] = None):
        self.records = records
        self.policy = policy

    def trends(
        self,
        organization_id: str,
        window_months: Optional[int] = None,
        as_of: Optional[date] = None,
        equipment_id: Optional[str] = None
    ) -> List[ReliabilityTrendPoint]:
        config = get_config()
        if window_months is None:
            window_months = config.get('trend_window_months', DEFAULT_WINDOW_MONTHS)
        policy = self.policy or OperatingHoursPolicy.from_config(config)

        failures = self.records.query(
            organization_id,
            equipment_id=equipment_id,
            start_date=window_start(window_months, as_of),
            ascending=True,
        )
        logger.debug(f"Trend window of {window_months} months: {len(failures)} failures for {organization_id}")
        return monthly_trends(failures, policy, window_months, as_of)
