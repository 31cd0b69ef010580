# Usage モジュール
from src.usage.usage_tracker import (
    OPERATIONS,
    InMemoryUsageTracker,
    UsageEvent,
    UsageMetrics,
    UsageSummary,
    UsageTracker,
    track_usage_safely,
)

__all__ = [
    "OPERATIONS",
    "InMemoryUsageTracker",
    "UsageEvent",
    "UsageMetrics",
    "UsageSummary",
    "UsageTracker",
    "track_usage_safely",
]
