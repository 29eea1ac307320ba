from dataclasses import dataclass
from typing import Optional

from ..store import SqlRecordStore
from .failure_record_service import FailureRecordRepository
from .rca_service import RootCauseAnalysisService
from .reliability_service import OperatingHoursPolicy, ReliabilityEngineeringService
from .stats_service import FailureStatsService, RankingStrategy
from .taxonomy_service import TaxonomyService
from .trend_service import ReliabilityTrendService


@dataclass
class Services:
    """Engine components wired to one record store."""
    store: SqlRecordStore
    taxonomy: TaxonomyService
    records: FailureRecordRepository
    rca: RootCauseAnalysisService
    reliability: ReliabilityEngineeringService
    trends: ReliabilityTrendService
    stats: FailureStatsService


def build_services(
    database_path: Optional[str] = None,
    policy: Optional[OperatingHoursPolicy] = None,
    ranking: Optional[RankingStrategy] = None
) -> Services:
    """
    Wire the engine to a store.

    Without an explicit policy/ranking, each call reads the runtime
    configuration so changes through /api/configuration take effect.
    """
    store = SqlRecordStore(database_path)
    taxonomy = TaxonomyService(store)
    records = FailureRecordRepository(store, taxonomy)
    return Services(
        store=store,
        taxonomy=taxonomy,
        records=records,
        rca=RootCauseAnalysisService(store, records),
        reliability=ReliabilityEngineeringService(records, policy),
        trends=ReliabilityTrendService(records, policy),
        stats=FailureStatsService(records, taxonomy, policy, ranking),
    )


# Singleton instance
_services = None


def get_services() -> Services:
    """Get or create the default service container."""
    global _services
    if _services is None:
        _services = build_services()
    return _services
