"""Engagement and HR rollups, trend classification and read queries."""
from .aggregation import AggregationEngine, engagement_score
from .hr_metrics import HRMetrics
from .queries import QueryFacade
from .trend import AbsoluteThreshold, RelativeThreshold, Trend, classify_trend, compare_windows
from .webinars import WebinarService

__all__ = [
    "AggregationEngine",
    "engagement_score",
    "HRMetrics",
    "QueryFacade",
    "AbsoluteThreshold",
    "RelativeThreshold",
    "Trend",
    "classify_trend",
    "compare_windows",
    "WebinarService",
]
