# ルーティングサービス
"""
RoutingService: 認証コンテキスト付きのルーティング窓口

処理フロー（route）:
    1. レート制限・機能フラグ（ml_routing）の確認
    2. 実行中の A/Bテストがユーザーを割り当てれば、そのバリアントを使う
       （APIキーが解決でき、許可/拒否リストと数値制約を満たす場合のみ）
    3. それ以外はエンジンの判断
    4. 使用量の記録（ベストエフォート。失敗してもリクエストは失敗させない）

実行後の実測値は record_outcome() でエンジンの履歴と A/Bテストの結果に反映する。
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from src.ab_testing.errors import TestNotRunning
from src.ab_testing.framework import ABTestingFramework
from src.ab_testing.models import ABTestResult, Variant
from src.models.metrics import MetricActual, MetricPrediction
from src.models.routing import (
    AuthContext,
    OptimizeFor,
    RoutingDecision,
    RoutingRequest,
)
from src.routing.engine import RoutingEngine
from src.routing.errors import FeatureNotAvailable, RateLimitExceeded, RoutingError
from src.routing.features import extract_features
from src.usage.usage_tracker import UsageMetrics, UsageTracker, track_usage_safely

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50


@dataclass(frozen=True)
class BatchRoutingResult:
    """バッチルーティングの結果"""

    batch_id: str
    decisions: List[RoutingDecision]
    total_estimated_cost: float
    avg_estimated_latency: float
    provider_distribution: Dict[str, int] = field(default_factory=dict)
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "batch_id": self.batch_id,
            "decisions": [d.to_dict() for d in self.decisions],
            "batch_metrics": {
                "total_estimated_cost": round(self.total_estimated_cost, 4),
                "avg_estimated_latency": round(self.avg_estimated_latency),
                "provider_distribution": dict(self.provider_distribution),
                "processing_time_ms": round(self.processing_time_ms, 1),
            },
        }


class RoutingService:
    """ルーティングサービス

    使用例:
        service = RoutingService(engine, framework, InMemoryUsageTracker())
        decision = await service.route(request, auth)
        # ... プロバイダーを呼び出す ...
        await service.record_outcome(decision, request, auth, MetricActual(0.0004, 1200, 0.9))

    Attributes:
        engine: ルーティングエンジン
        framework: A/Bテスト（None なら実験を使わない）
        usage_tracker: 使用量の記録先（None なら記録しない）
    """

    def __init__(
        self,
        engine: RoutingEngine,
        framework: Optional[ABTestingFramework] = None,
        usage_tracker: Optional[UsageTracker] = None,
    ):
        self.engine = engine
        self.framework = framework
        self.usage_tracker = usage_tracker

    async def route(
        self,
        request: RoutingRequest,
        auth_context: AuthContext,
        user_segments: Optional[Iterable[str]] = None,
    ) -> RoutingDecision:
        """1件のリクエストをルーティング

        Raises:
            RateLimitExceeded: レート制限中の場合
            FeatureNotAvailable: ティアで ml_routing が無効な場合
            ConstraintUnsatisfiable / NoCandidateMeetsConstraints: 候補がない場合
        """
        started = time.perf_counter()
        try:
            self._check_access(auth_context, "ml_routing", 1)
            decision = self._decide(request, auth_context, user_segments)
        except RoutingError as e:
            await self._track_failure(auth_context, "ml_route", e, started)
            raise

        await track_usage_safely(
            self.usage_tracker,
            auth_context.app_id,
            "ml_route",
            UsageMetrics(
                cost=decision.estimated_cost,
                response_time=_elapsed_ms(started),
                successful=True,
                user_agent=request.metadata.get("user_agent"),
                ip_address=request.metadata.get("ip_address"),
            ),
        )
        return decision

    async def batch_route(
        self,
        requests: Sequence[RoutingRequest],
        auth_context: AuthContext,
        optimize_for: Optional[OptimizeFor] = None,
        load_balance: bool = False,
        priority_order: Optional[Sequence[int]] = None,
        user_segments: Optional[Iterable[str]] = None,
    ) -> BatchRoutingResult:
        """複数リクエストを並行にルーティング

        Args:
            requests: リクエスト（1-50件）
            auth_context: 認証コンテキスト
            optimize_for: 指定時は全リクエストの最適化目標を上書き
            load_balance: 1プロバイダーへの集中を次点候補で分散する
            priority_order: 先頭に並べるリクエストのインデックス（残りは元の順）

        Raises:
            ValueError: 件数が範囲外の場合
            RateLimitExceeded: レート制限中、または残りリクエスト数が足りない場合
            FeatureNotAvailable: ティアで batch_routing が無効な場合
        """
        if not requests or len(requests) > MAX_BATCH_SIZE:
            raise ValueError(f"バッチは1-{MAX_BATCH_SIZE}件である必要があります: {len(requests)}")

        started = time.perf_counter()
        batch_id = str(uuid4())
        segments = list(user_segments) if user_segments is not None else None

        try:
            self._check_access(auth_context, "batch_routing", len(requests))
            prepared = [
                _with_batch_metadata(r, batch_id, i, len(requests), optimize_for)
                for i, r in enumerate(requests)
            ]
            decisions = await asyncio.gather(*(
                asyncio.to_thread(self._decide, r, auth_context, segments) for r in prepared
            ))
        except RoutingError as e:
            await self._track_failure(auth_context, "batch_ml_route", e, started)
            raise

        decisions = list(decisions)
        if load_balance:
            decisions = self._apply_load_balancing(decisions)
        if priority_order:
            decisions = _apply_priority_order(decisions, priority_order)

        distribution: Dict[str, int] = {}
        for decision in decisions:
            distribution[decision.provider.value] = distribution.get(decision.provider.value, 0) + 1

        total_cost = sum(d.estimated_cost for d in decisions)
        result = BatchRoutingResult(
            batch_id=batch_id,
            decisions=decisions,
            total_estimated_cost=total_cost,
            avg_estimated_latency=sum(d.estimated_latency for d in decisions) / len(decisions),
            provider_distribution=distribution,
            processing_time_ms=_elapsed_ms(started),
        )

        await track_usage_safely(
            self.usage_tracker,
            auth_context.app_id,
            "batch_ml_route",
            UsageMetrics(cost=total_cost, response_time=result.processing_time_ms, successful=True),
        )
        logger.info(
            f"バッチルーティング完了: batch_id={batch_id}, size={len(decisions)}, "
            f"distribution={distribution}"
        )
        return result

    async def record_outcome(
        self,
        decision: RoutingDecision,
        request: RoutingRequest,
        auth_context: AuthContext,
        actual: MetricActual,
        actual_response: Optional[Dict] = None,
    ) -> Optional[ABTestResult]:
        """実測値をエンジンの履歴に反映し、実験経由なら A/Bテストの結果として記録

        Returns:
            記録した ABTestResult（実験経由でない、またはテストが終了済みなら None）
        """
        self.engine.record_observation(decision.provider, decision.model, actual)

        if decision.experiment is None or self.framework is None:
            return None

        test_id, variant = decision.experiment
        result = ABTestResult.build(
            test_id=test_id,
            variant=Variant(variant),
            user_id=auth_context.user_id,
            request_id=decision.request_id,
            timestamp=time.time(),
            prediction=MetricPrediction(
                cost=decision.estimated_cost,
                response_time=decision.estimated_latency,
                quality=decision.estimated_quality,
                confidence=decision.confidence,
            ),
            actual=actual,
            request=request,
            actual_response=actual_response,
        )
        try:
            self.framework.record_result(result)
        except TestNotRunning as e:
            logger.info(f"終了したテストの結果は記録しない: test_id={test_id}, {e}")
            return None
        return result

    # ===== Private Methods =====

    def _check_access(self, auth_context: AuthContext, feature: str, request_count: int) -> None:
        remaining = auth_context.remaining_requests
        if auth_context.is_rate_limited or (remaining is not None and remaining < request_count):
            raise RateLimitExceeded(
                f"Rate limit exceeded: remaining={remaining}, "
                f"requested={request_count}, reset={auth_context.rate_limit_reset_time}"
            )
        if not auth_context.has_feature(feature):
            raise FeatureNotAvailable(
                f"Feature '{feature}' is not available in tier '{auth_context.tier}'"
            )

    def _decide(
        self,
        request: RoutingRequest,
        auth_context: AuthContext,
        user_segments: Optional[List[str]],
    ) -> RoutingDecision:
        experiment_decision = self._experiment_decision(request, auth_context, user_segments)
        if experiment_decision is not None:
            return experiment_decision
        return self.engine.route(request, auth_context)

    def _experiment_decision(
        self,
        request: RoutingRequest,
        auth_context: AuthContext,
        user_segments: Optional[List[str]],
    ) -> Optional[RoutingDecision]:
        """割り当てられたバリアントが制約を満たせば、その判断を返す"""
        if self.framework is None:
            return None

        request_type = extract_features(request).request_type.value
        assignment = self.framework.find_assignment(
            auth_context.user_id, request_type, user_segments
        )
        if assignment is None:
            return None

        config, variant = assignment
        target = config.variant(variant)
        constraints = request.constraints

        if not self.engine.api_key_resolver.is_available(target.provider):
            logger.warning(
                f"バリアントのプロバイダーが利用できないためエンジンの判断を使用: "
                f"test_id={config.id}, provider={target.provider.value}"
            )
            return None
        if not constraints.allows_provider(target.provider):
            return None

        estimate = self.engine.estimate_for(target.provider, target.model, request)
        if not constraints.is_satisfied_by(
            estimate.estimated_cost, estimate.estimated_quality, estimate.estimated_latency
        ):
            logger.debug(f"バリアントが制約を満たさない: test_id={config.id}, variant={variant.value}")
            return None

        return RoutingDecision(
            request_id=str(uuid4()),
            provider=target.provider,
            model=target.model,
            estimated_cost=estimate.estimated_cost,
            estimated_latency=estimate.estimated_latency,
            estimated_quality=estimate.estimated_quality,
            confidence=estimate.confidence,
            reasoning=f"A/B test '{config.name}': variant {variant.value} ({estimate.reasoning})",
            optimization_type=request.optimize_for,
            experiment=(config.id, variant.value),
        )

    def _apply_load_balancing(self, decisions: List[RoutingDecision]) -> List[RoutingDecision]:
        """1プロバイダーが上限割合を超えたら、より使われていない次点候補に振り替える

        実験経由の判断は振り替えない。次点候補は制約を満たすものだけなので
        振り替え後も制約は守られる。
        """
        threshold = len(decisions) * self.engine.config.batch_load_balance_ratio
        counts: Dict[str, int] = {}
        balanced = []

        for decision in decisions:
            provider = decision.provider.value
            current = counts.get(provider, 0)
            counts[provider] = current + 1

            if decision.experiment is None and current > threshold and decision.alternatives:
                alternative = next(
                    (a for a in decision.alternatives if counts.get(a.provider.value, 0) < current),
                    None,
                )
                if alternative is not None:
                    counts[provider] = current
                    counts[alternative.provider.value] = counts.get(alternative.provider.value, 0) + 1
                    decision = RoutingDecision(
                        request_id=decision.request_id,
                        provider=alternative.provider,
                        model=alternative.model,
                        estimated_cost=alternative.estimated_cost,
                        estimated_latency=alternative.estimated_latency,
                        estimated_quality=alternative.estimated_quality,
                        confidence=alternative.confidence,
                        reasoning=f"Load balanced: {alternative.reasoning}",
                        optimization_type=decision.optimization_type,
                        alternatives=tuple(a for a in decision.alternatives if a is not alternative),
                    )

            balanced.append(decision)

        return balanced

    async def _track_failure(
        self,
        auth_context: AuthContext,
        operation: str,
        error: RoutingError,
        started: float,
    ) -> None:
        logger.info(f"ルーティング失敗: app_id={auth_context.app_id}, code={error.code}, {error}")
        await track_usage_safely(
            self.usage_tracker,
            auth_context.app_id,
            operation,
            UsageMetrics(
                response_time=_elapsed_ms(started),
                successful=False,
                error_code=error.code,
                error_message=str(error),
            ),
        )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def _with_batch_metadata(
    request: RoutingRequest,
    batch_id: str,
    index: int,
    size: int,
    optimize_for: Optional[OptimizeFor],
) -> RoutingRequest:
    metadata = dict(request.metadata)
    metadata.update({"batch_id": batch_id, "batch_index": index, "batch_size": size})
    return RoutingRequest(
        messages=request.messages,
        optimize_for=optimize_for or request.optimize_for,
        constraints=request.constraints,
        metadata=metadata,
    )


def _apply_priority_order(
    decisions: List[RoutingDecision],
    priority_order: Sequence[int],
) -> List[RoutingDecision]:
    """指定インデックスを先頭に、残りを元の順で後ろに並べる（範囲外・重複は無視）"""
    seen = set()
    ordered = []
    for index in priority_order:
        if 0 <= index < len(decisions) and index not in seen:
            seen.add(index)
            ordered.append(decisions[index])
    ordered.extend(d for i, d in enumerate(decisions) if i not in seen)
    return ordered
