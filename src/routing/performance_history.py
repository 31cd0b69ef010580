# 実測性能の履歴
"""
性能履歴モジュール

実行後の実測値をモデルごとに保持し、十分な観測がある場合は
ベースラインの代わりに新しさで重み付けした平均を推定に使う。

重み: 1 / (1 + 経過日数)
確信度: サンプル数 (最大10件で1.0) * 0.6 + 新しさ (14日で0) * 0.4
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Tuple

from src.config.routing_config import RoutingConfig
from src.models.metrics import MetricActual
from src.models.routing import Provider

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60
CONFIDENCE_DECAY_DAYS = 14


@dataclass(frozen=True)
class Observation:
    """1回の実行の実測値"""

    timestamp: float
    cost: float
    response_time: float
    quality: float


@dataclass(frozen=True)
class HistoricalEstimate:
    """履歴から計算した推定値（複雑度補正前）"""

    cost: float
    response_time: float
    quality: float
    confidence: float
    sample_count: int


class PerformanceHistory:
    """モデルごとの実測履歴（スレッドセーフ）

    使用例:
        history = PerformanceHistory(config)
        history.record(Provider.OPENAI, "gpt-4o-mini", MetricActual(0.0004, 1500, 0.9))
        estimate = history.estimate(Provider.OPENAI, "gpt-4o-mini")  # 観測不足なら None
    """

    def __init__(
        self,
        config: Optional[RoutingConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or RoutingConfig()
        self._clock = clock
        self._history: Dict[Tuple[Provider, str], Deque[Observation]] = {}
        self._lock = threading.Lock()

    def record(self, provider: Provider, model: str, actual: MetricActual) -> None:
        """実測値を記録（上限を超えた古い観測は破棄）"""
        observation = Observation(
            timestamp=self._clock(),
            cost=actual.cost,
            response_time=actual.response_time,
            quality=actual.quality,
        )
        with self._lock:
            key = (provider, model)
            if key not in self._history:
                self._history[key] = deque(maxlen=self.config.max_observations_per_model)
            self._history[key].append(observation)

        logger.debug(
            f"観測を記録: provider={provider.value}, model={model}, "
            f"cost={actual.cost}, response_time={actual.response_time}"
        )

    def sample_count(self, provider: Provider, model: str) -> int:
        with self._lock:
            return len(self._history.get((provider, model), ()))

    def estimate(self, provider: Provider, model: str) -> Optional[HistoricalEstimate]:
        """新しい観測が十分にあれば重み付き平均を返す。なければ None"""
        now = self._clock()
        max_age = self.config.observation_max_age_days * SECONDS_PER_DAY

        with self._lock:
            observations: List[Observation] = [
                o for o in self._history.get((provider, model), ())
                if now - o.timestamp < max_age
            ]

        if len(observations) < self.config.min_observations_for_prediction:
            return None

        ages_days = [max(0.0, now - o.timestamp) / SECONDS_PER_DAY for o in observations]
        weights = [1.0 / (1.0 + age) for age in ages_days]
        total_weight = sum(weights)

        cost = sum(o.cost * w for o, w in zip(observations, weights)) / total_weight
        response_time = sum(o.response_time * w for o, w in zip(observations, weights)) / total_weight
        quality = sum(o.quality * w for o, w in zip(observations, weights)) / total_weight

        sample_confidence = min(1.0, len(observations) / 10)
        recency_confidence = sum(
            max(0.0, 1.0 - age / CONFIDENCE_DECAY_DAYS) for age in ages_days
        ) / len(ages_days)

        return HistoricalEstimate(
            cost=cost,
            response_time=response_time,
            quality=quality,
            confidence=sample_confidence * 0.6 + recency_confidence * 0.4,
            sample_count=len(observations),
        )

    def clear(self) -> None:
        """履歴をクリア（テスト用）"""
        with self._lock:
            self._history.clear()
