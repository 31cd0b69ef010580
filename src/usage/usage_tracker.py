# 使用量トラッキング
"""
使用量トラッキングモジュール

ルーティング判断や実行結果の課金・分析用の記録先。
記録はベストエフォートで、失敗してもリクエスト処理を失敗させない
（track_usage_safely 経由で呼び出す）。
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

OPERATIONS = ("ml_route", "batch_ml_route", "analytics", "api_call")


@dataclass(frozen=True)
class UsageMetrics:
    """1回の操作の使用量

    Attributes:
        cost: コスト（USD）
        response_time: 処理時間（ミリ秒）
        successful: 成功したか
        error_code: 失敗時のエラーコード
        error_message: 失敗時のメッセージ
        user_agent: クライアントの User-Agent
        ip_address: クライアントのIPアドレス
    """

    cost: float = 0.0
    response_time: Optional[float] = None
    successful: bool = True
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class UsageEvent:
    """記録済みの使用量イベント"""

    app_id: str
    operation: str
    metrics: UsageMetrics
    recorded_at: datetime


@dataclass
class UsageSummary:
    """アプリ・課金期間ごとの集計"""

    app_id: str
    billing_period: str
    requests_count: int = 0
    ml_routing_count: int = 0
    batch_routing_count: int = 0
    analytics_count: int = 0
    total_cost: float = 0.0
    successful_requests: int = 0
    failed_requests: int = 0
    error_codes: Dict[str, int] = field(default_factory=dict)


class UsageTracker(ABC):
    """使用量の記録先インターフェース"""

    @abstractmethod
    async def track_usage(self, app_id: str, operation: str, metrics: UsageMetrics) -> None:
        """使用量を記録"""


def billing_period_of(moment: datetime) -> str:
    """課金期間キー（YYYY-MM）"""
    return moment.strftime("%Y-%m")


class InMemoryUsageTracker(UsageTracker):
    """インメモリの使用量トラッカー（スレッドセーフ）

    使用例:
        tracker = InMemoryUsageTracker()
        await tracker.track_usage("app_1", "ml_route", UsageMetrics(cost=0.001))
        summary = tracker.get_summary("app_1")
    """

    def __init__(self, max_events: int = 10000):
        self.max_events = max_events
        self._events: List[UsageEvent] = []
        self._summaries: Dict[Tuple[str, str], UsageSummary] = {}
        self._lock = threading.Lock()

    async def track_usage(self, app_id: str, operation: str, metrics: UsageMetrics) -> None:
        if operation not in OPERATIONS:
            raise ValueError(f"Invalid operation '{operation}'. Valid operations: {list(OPERATIONS)}")

        now = datetime.now()
        period = billing_period_of(now)

        with self._lock:
            self._events.append(UsageEvent(app_id, operation, metrics, now))
            if len(self._events) > self.max_events:
                del self._events[: len(self._events) - self.max_events]

            key = (app_id, period)
            summary = self._summaries.get(key)
            if summary is None:
                summary = UsageSummary(app_id=app_id, billing_period=period)
                self._summaries[key] = summary

            summary.requests_count += 1
            summary.total_cost += metrics.cost or 0.0
            if operation == "ml_route":
                summary.ml_routing_count += 1
            elif operation == "batch_ml_route":
                summary.batch_routing_count += 1
            elif operation == "analytics":
                summary.analytics_count += 1

            if metrics.successful:
                summary.successful_requests += 1
            else:
                summary.failed_requests += 1
                if metrics.error_code:
                    summary.error_codes[metrics.error_code] = (
                        summary.error_codes.get(metrics.error_code, 0) + 1
                    )

    def get_summary(self, app_id: str, billing_period: Optional[str] = None) -> UsageSummary:
        """集計を取得（記録がなければ空の集計）"""
        period = billing_period or billing_period_of(datetime.now())
        with self._lock:
            summary = self._summaries.get((app_id, period))
            if summary is None:
                return UsageSummary(app_id=app_id, billing_period=period)
            return UsageSummary(
                app_id=summary.app_id,
                billing_period=summary.billing_period,
                requests_count=summary.requests_count,
                ml_routing_count=summary.ml_routing_count,
                batch_routing_count=summary.batch_routing_count,
                analytics_count=summary.analytics_count,
                total_cost=summary.total_cost,
                successful_requests=summary.successful_requests,
                failed_requests=summary.failed_requests,
                error_codes=dict(summary.error_codes),
            )

    def get_events(self, app_id: Optional[str] = None) -> List[UsageEvent]:
        with self._lock:
            if app_id is None:
                return list(self._events)
            return [e for e in self._events if e.app_id == app_id]


async def track_usage_safely(
    tracker: Optional[UsageTracker],
    app_id: str,
    operation: str,
    metrics: UsageMetrics,
) -> bool:
    """使用量を記録し、失敗してもログのみで例外を伝播しない

    Returns:
        記録に成功した場合 True
    """
    if tracker is None:
        return False
    try:
        await tracker.track_usage(app_id, operation, metrics)
        return True
    except Exception as e:
        logger.warning(f"使用量の記録に失敗: app_id={app_id}, operation={operation}, error={e}")
        return False
