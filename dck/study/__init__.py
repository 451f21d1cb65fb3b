"""
Study: scheduling and metrics.

- retention_engine: FSRS-4.5 card scheduling
- metrics: Card statistics and session history analytics
"""

from dck.study.retention_engine import (
    CardState,
    FSRSScheduler,
    Rating,
    State,
    days_until_due,
    is_due,
    is_new,
    parse_rating,
)
from dck.study.metrics import (
    DocumentMetrics,
    HistoryMetrics,
    OverallMetrics,
    SessionMetrics,
    aggregate,
    calculate_overall_metrics,
    document_metrics,
    load_session_history,
)

__all__ = [
    # Scheduling
    "CardState",
    "FSRSScheduler",
    "Rating",
    "State",
    "days_until_due",
    "is_due",
    "is_new",
    "parse_rating",
    # Metrics
    "DocumentMetrics",
    "OverallMetrics",
    "SessionMetrics",
    "HistoryMetrics",
    "aggregate",
    "document_metrics",
    "calculate_overall_metrics",
    "load_session_history",
]
