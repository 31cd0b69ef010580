# ルーティングエンジン
"""
ルーティングエンジンモジュール

チャットリクエストと制約から、最適なプロバイダー/モデルを選択する。

処理フロー:
    1. 候補生成: ティアで見えるモデル ∩ APIキーが解決できるプロバイダー
                 − 拒否リスト ∩ 許可リスト
       → 空なら ConstraintUnsatisfiable
    2. 推定: ベースライン（または実測履歴）× 複雑度補正
    3. 制約フィルタ: max_cost / min_quality / max_response_time
       → 空なら NoCandidateMeetsConstraints（制約を無視したフォールバックはしない）
    4. スコアリング:
       - cost: 推定コスト昇順
       - speed: 推定レイテンシ昇順
       - quality: 推定品質降順
       - balanced: 正規化スコアの重み付き和（デフォルト均等重み）降順
           cost_score    = 1 - min(1, cost / max_cost_normalizer)
           speed_score   = 1 - min(1, latency / max_latency_normalizer_ms)
           quality_score = quality
       同点はプロバイダー名、モデル名の辞書順

副作用なし。使用量の記録は呼び出し側（RoutingService）が行う。
"""

import logging
from typing import List, Optional, Tuple
from uuid import uuid4

from src.config.routing_config import RoutingConfig
from src.models.metrics import MetricActual
from src.models.routing import (
    AuthContext,
    CandidateEstimate,
    OptimizeFor,
    Provider,
    RoutingDecision,
    RoutingRequest,
)
from src.routing.api_keys import ApiKeyResolver, EnvApiKeyResolver
from src.routing.errors import ConstraintUnsatisfiable, NoCandidateMeetsConstraints
from src.routing.features import RequestFeatures, extract_features
from src.routing.performance_history import PerformanceHistory
from src.routing.provider_catalog import ModelProfile, ProviderCatalog

logger = logging.getLogger(__name__)

BASELINE_CONFIDENCE = 0.5
MAX_ALTERNATIVES = 3

# 実測履歴ベースの推定に掛ける複雑度補正の係数
HISTORICAL_COMPLEXITY_FACTOR = 0.3
HISTORICAL_QUALITY_FACTOR = 0.1


class RoutingEngine:
    """ルーティングエンジン

    使用例:
        engine = RoutingEngine(
            catalog=ProviderCatalog(),
            api_key_resolver=EnvApiKeyResolver(),
        )
        request = RoutingRequest(
            messages=(ChatMessage("user", "このデータを分析して"),),
            optimize_for=OptimizeFor.COST,
            constraints=RoutingConstraints(max_cost=0.01),
        )
        auth = AuthContext.for_tier("app_1", "user_1", "DEVELOPER")
        decision = engine.route(request, auth)

    Attributes:
        catalog: プロバイダー能力テーブル
        api_key_resolver: プロバイダーの認証情報解決
        history: 実測性能の履歴
        config: ルーティング設定
    """

    def __init__(
        self,
        catalog: Optional[ProviderCatalog] = None,
        api_key_resolver: Optional[ApiKeyResolver] = None,
        history: Optional[PerformanceHistory] = None,
        config: Optional[RoutingConfig] = None,
    ):
        self.config = config or RoutingConfig()
        self.catalog = catalog or ProviderCatalog()
        self.api_key_resolver = api_key_resolver or EnvApiKeyResolver()
        self.history = history or PerformanceHistory(self.config)

    def route(self, request: RoutingRequest, auth_context: AuthContext) -> RoutingDecision:
        """ルーティング判断を行う

        Args:
            request: ルーティングリクエスト
            auth_context: 認証コンテキスト（ティアを使用）

        Returns:
            RoutingDecision: 全ての制約を満たす判断結果

        Raises:
            ConstraintUnsatisfiable: 候補生成の段階で候補がない場合
            NoCandidateMeetsConstraints: 数値制約で全候補が除外された場合
        """
        ranked = self.rank_candidates(request, auth_context)
        selected = ranked[0]
        alternatives = tuple(ranked[1:1 + MAX_ALTERNATIVES])

        decision = RoutingDecision(
            request_id=str(uuid4()),
            provider=selected.provider,
            model=selected.model,
            estimated_cost=selected.estimated_cost,
            estimated_latency=selected.estimated_latency,
            estimated_quality=selected.estimated_quality,
            confidence=selected.confidence,
            reasoning=self._generate_reasoning(selected, request.optimize_for, len(ranked)),
            optimization_type=request.optimize_for,
            alternatives=alternatives,
        )

        logger.debug(
            f"ルーティング判断: provider={decision.provider.value}, model={decision.model}, "
            f"optimize_for={request.optimize_for.value}, candidates={len(ranked)}"
        )
        return decision

    def rank_candidates(
        self,
        request: RoutingRequest,
        auth_context: AuthContext,
    ) -> List[CandidateEstimate]:
        """制約を満たす候補をスコア順に返す（先頭が選択対象）

        Raises:
            ConstraintUnsatisfiable: 候補生成の段階で候補がない場合
            NoCandidateMeetsConstraints: 数値制約で全候補が除外された場合
        """
        features = extract_features(request)
        profiles = self._generate_candidates(request, auth_context)

        estimates = [self._estimate(profile, features) for profile in profiles]

        constraints = request.constraints
        feasible = [
            e for e in estimates
            if constraints.is_satisfied_by(e.estimated_cost, e.estimated_quality, e.estimated_latency)
        ]

        if not feasible:
            raise NoCandidateMeetsConstraints(
                f"No candidate meets constraints (max_cost={constraints.max_cost}, "
                f"min_quality={constraints.min_quality}, "
                f"max_response_time={constraints.max_response_time}) "
                f"among {len(estimates)} candidates"
            )

        feasible.sort(key=lambda e: self._sort_key(e, request.optimize_for))
        return feasible

    def estimate_for(
        self,
        provider: Provider,
        model: str,
        request: RoutingRequest,
    ) -> CandidateEstimate:
        """指定したプロバイダー/モデルの推定値（A/Bテストのバリアント用）"""
        profile = self.catalog.get_or_fallback(provider, model)
        return self._estimate(profile, extract_features(request))

    def record_observation(self, provider: Provider, model: str, actual: MetricActual) -> None:
        """実行結果をフィードバックして以後の推定に反映"""
        self.history.record(provider, model, actual)

    def balanced_score(self, estimate: CandidateEstimate) -> float:
        """balanced 最適化のスコア（0.0-1.0、高いほど良い）"""
        weights = self.config.balanced_weights
        cost_score = 1.0 - min(1.0, estimate.estimated_cost / self.config.max_cost_normalizer)
        speed_score = 1.0 - min(
            1.0, estimate.estimated_latency / self.config.max_latency_normalizer_ms
        )
        quality_score = estimate.estimated_quality
        return (
            cost_score * weights["cost"]
            + speed_score * weights["speed"]
            + quality_score * weights["quality"]
        )

    # ===== Private Methods =====

    def _generate_candidates(
        self,
        request: RoutingRequest,
        auth_context: AuthContext,
    ) -> List[ModelProfile]:
        """ティア・APIキー・許可/拒否リストで候補を絞り込む"""
        tier_models = self.catalog.models_for_tier(auth_context.tier)
        if not tier_models:
            raise ConstraintUnsatisfiable(
                f"No models are available for tier '{auth_context.tier}'"
            )

        available_providers = {
            p.provider for p in tier_models if self.api_key_resolver.is_available(p.provider)
        }
        if not available_providers:
            raise ConstraintUnsatisfiable("No provider credentials are configured")

        constraints = request.constraints
        candidates = [
            p for p in tier_models
            if p.provider in available_providers and constraints.allows_provider(p.provider)
        ]

        if not candidates:
            raise ConstraintUnsatisfiable(
                f"Provider lists exclude every available provider "
                f"(available={sorted(p.value for p in available_providers)}, "
                f"preferred={sorted(p.value for p in constraints.preferred_providers)}, "
                f"excluded={sorted(p.value for p in constraints.excluded_providers)})"
            )

        return candidates

    def _estimate(self, profile: ModelProfile, features: RequestFeatures) -> CandidateEstimate:
        """ベースラインまたは実測履歴から推定値を計算"""
        complexity = features.complexity_score
        historical = self.history.estimate(profile.provider, profile.model)

        if historical is None:
            multiplier = 1.0 + complexity
            return CandidateEstimate(
                provider=profile.provider,
                model=profile.model,
                estimated_cost=profile.base_cost * multiplier,
                estimated_latency=profile.base_latency_ms * multiplier,
                estimated_quality=profile.base_quality,
                confidence=BASELINE_CONFIDENCE,
                reasoning="Baseline estimate",
            )

        multiplier = 1.0 + complexity * HISTORICAL_COMPLEXITY_FACTOR
        return CandidateEstimate(
            provider=profile.provider,
            model=profile.model,
            estimated_cost=historical.cost * multiplier,
            estimated_latency=historical.response_time * multiplier,
            estimated_quality=min(
                1.0, historical.quality * (1.0 + complexity * HISTORICAL_QUALITY_FACTOR)
            ),
            confidence=historical.confidence,
            reasoning=f"Based on {historical.sample_count} recent executions",
        )

    def _sort_key(self, estimate: CandidateEstimate, optimize_for: OptimizeFor) -> Tuple:
        tie_breaker = (estimate.provider.value, estimate.model)
        if optimize_for == OptimizeFor.COST:
            return (estimate.estimated_cost,) + tie_breaker
        if optimize_for == OptimizeFor.SPEED:
            return (estimate.estimated_latency,) + tie_breaker
        if optimize_for == OptimizeFor.QUALITY:
            return (-estimate.estimated_quality,) + tie_breaker
        return (-self.balanced_score(estimate),) + tie_breaker

    def _generate_reasoning(
        self,
        selected: CandidateEstimate,
        optimize_for: OptimizeFor,
        candidate_count: int,
    ) -> str:
        """選択理由を生成"""
        if optimize_for == OptimizeFor.COST:
            reason = f"lowest estimated cost (${selected.estimated_cost:.4f})"
        elif optimize_for == OptimizeFor.SPEED:
            reason = f"fastest estimated response ({selected.estimated_latency:.0f}ms)"
        elif optimize_for == OptimizeFor.QUALITY:
            reason = f"highest estimated quality ({selected.estimated_quality:.2f})"
        else:
            reason = f"best balanced score ({self.balanced_score(selected):.3f})"

        return (
            f"Optimized for {optimize_for.value}: {reason} "
            f"among {candidate_count} candidates, {round(selected.confidence * 100)}% confidence"
        )
