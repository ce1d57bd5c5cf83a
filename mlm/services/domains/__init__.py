"""Domain services wrapping the partner repository."""
from .metrics import MetricsService, RecalculationSummary, SalesSummary
from .rank import LinkIssue, RankService, rank_matches_filter

__all__ = [
    "RankService",
    "LinkIssue",
    "rank_matches_filter",
    "MetricsService",
    "RecalculationSummary",
    "SalesSummary",
]
