"""Domain models and pure computations for the exit-ladder planner.

Holdings are replayed from the transaction ledger, ladders are derived from
holdings and forecasts from ladders. Nothing here touches persistence, so all
of it can be recomputed freely.
"""

__all__ = [
    "alerts",
    "cost_basis",
    "errors",
    "forecast",
    "ladder",
    "ledger",
    "rules",
]
