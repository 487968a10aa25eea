"""Mini README: Balance derivation and refresh coordination.

``calculator`` holds the single implementation of the site balance formula;
``coordinator`` decides when it runs and what viewers are shown while it
does. ``retry`` wraps ledger reads in bounded exponential backoff.
"""

from .calculator import BalanceCalculator, BalanceSummary, SiteTransactions, summarise
from .coordinator import (
    RefreshCoordinator,
    RefreshTrigger,
    SummaryStatus,
    SummaryView,
    ViewerSession,
)

__all__ = [
    "BalanceCalculator",
    "BalanceSummary",
    "RefreshCoordinator",
    "RefreshTrigger",
    "SiteTransactions",
    "SummaryStatus",
    "SummaryView",
    "ViewerSession",
    "summarise",
]
