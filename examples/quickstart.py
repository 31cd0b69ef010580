#!/usr/bin/env python3
"""
MLルーティング - クイックスタートサンプル

ルーティング判断と A/Bテストを、実際のプロバイダーを呼ばずに試す最小構成サンプルです。
APIキーは StaticApiKeyResolver.all_providers() で全プロバイダー分を仮に用意します。

実行方法:
    # プロジェクトルートから実行
    python examples/quickstart.py
"""

import asyncio
import logging
import os
import random
import sys

# examples/ ディレクトリから実行しても動作するように
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from src.ab_testing import ABTestConfig, ABTestingFramework, VariantConfig  # noqa: E402
from src.models.metrics import MetricActual  # noqa: E402
from src.models.routing import (  # noqa: E402
    AuthContext,
    ChatMessage,
    OptimizeFor,
    Provider,
    RoutingConstraints,
    RoutingRequest,
)
from src.routing import RoutingEngine, RoutingService, StaticApiKeyResolver  # noqa: E402
from src.usage import InMemoryUsageTracker  # noqa: E402


# ============================================
# Step 1: 単発のルーティング
# ============================================
def route_once(engine: RoutingEngine, auth: AuthContext) -> None:
    """最適化目標ごとに選ばれるモデルを表示します"""
    print("\n--- Step 1: ルーティング ---")
    for optimize_for in OptimizeFor:
        request = RoutingRequest(
            messages=(ChatMessage("user", "この売上データを分析して要点をまとめて"),),
            optimize_for=optimize_for,
            constraints=RoutingConstraints(max_cost=0.05),
        )
        decision = engine.route(request, auth)
        print(
            f"  {optimize_for.value:>8}: {decision.provider.value}/{decision.model} "
            f"(cost=${decision.estimated_cost:.5f}, latency={decision.estimated_latency:.0f}ms)"
        )


# ============================================
# Step 2: A/Bテスト
# ============================================
async def run_experiment(service: RoutingService, framework: ABTestingFramework, auth: AuthContext) -> None:
    """2つのモデルを比較し、実測値を記録して分析します"""
    print("\n--- Step 2: A/Bテスト ---")
    config = framework.create_test(ABTestConfig(
        id="quickstart",
        name="gpt-4o-mini vs claude-3-haiku",
        variant_a=VariantConfig(Provider.OPENAI, "gpt-4o-mini"),
        variant_b=VariantConfig(Provider.ANTHROPIC, "claude-3-haiku-20240307"),
        min_sample_size=30,
    ))
    framework.start_test(config.id)

    rng = random.Random(42)
    mean_cost = {"A": 0.0010, "B": 0.0008}
    for i in range(200):
        user_auth = AuthContext.for_tier(auth.app_id, f"user_{i}", auth.tier)
        request = RoutingRequest(messages=(ChatMessage("user", f"質問 {i}"),))
        decision = await service.route(request, user_auth)
        if decision.experiment is None:
            continue
        variant = decision.experiment[1]
        actual = MetricActual(
            cost=max(0.0, rng.gauss(mean_cost[variant], 0.0001)),
            response_time=max(1.0, rng.gauss(800.0, 50.0)),
            quality=min(1.0, max(0.0, rng.gauss(0.85, 0.02))),
        )
        await service.record_outcome(decision, request, user_auth, actual)

    analysis = framework.get_test_analysis(config.id)
    if analysis is None:
        print("  結果がありません")
        return
    print(f"  状態: {analysis.status.value}")
    print(f"  推奨: {analysis.recommendation.value}")
    print(f"  p値: {analysis.p_value:.4g}, 効果量: {analysis.effect:+.3f}")


def main() -> None:
    logging.basicConfig(level=logging.WARNING)

    engine = RoutingEngine(api_key_resolver=StaticApiKeyResolver.all_providers())
    auth = AuthContext.for_tier("quickstart_app", "user_0", "PROFESSIONAL")
    route_once(engine, auth)

    with ABTestingFramework(auto_start_scheduler=False) as framework:
        tracker = InMemoryUsageTracker()
        service = RoutingService(engine, framework, tracker)
        asyncio.run(run_experiment(service, framework, auth))

        summary = tracker.get_summary(auth.app_id)
        print(f"\n使用量: {summary.requests_count} リクエスト, 合計コスト ${summary.total_cost:.4f}")


if __name__ == "__main__":
    main()
