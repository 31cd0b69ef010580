# RoutingService テスト
"""
ルーティングサービスの単体テスト

検証観点:
- レート制限・機能フラグのチェックと失敗の使用量記録
- A/Bテストのバリアントによる判断の置き換え（制約を満たす場合のみ）
- 実測値のフィードバック（履歴と A/Bテスト結果）
- バッチ: 件数制限、最適化目標の上書き、優先順、負荷分散
- 使用量記録の失敗がリクエストを失敗させないこと
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.ab_testing.framework import ABTestingFramework
from src.ab_testing.models import ABTestConfig, Variant, VariantConfig
from src.config.routing_config import RoutingConfig
from src.models.metrics import MetricActual
from src.models.routing import (
    AuthContext,
    ChatMessage,
    OptimizeFor,
    Provider,
    RoutingConstraints,
    RoutingRequest,
)
from src.routing.api_keys import StaticApiKeyResolver
from src.routing.engine import RoutingEngine
from src.routing.errors import (
    FeatureNotAvailable,
    NoCandidateMeetsConstraints,
    RateLimitExceeded,
)
from src.routing.service import MAX_BATCH_SIZE, RoutingService
from src.usage.usage_tracker import InMemoryUsageTracker


def make_request(
    optimize_for: OptimizeFor = OptimizeFor.BALANCED,
    content: str = "Hello",
    metadata=None,
    **constraints,
) -> RoutingRequest:
    return RoutingRequest(
        messages=(ChatMessage("user", content),),
        optimize_for=optimize_for,
        constraints=RoutingConstraints(**constraints),
        metadata=metadata or {},
    )


def make_test_config(test_id: str = "svc-test", **overrides) -> ABTestConfig:
    values = dict(
        id=test_id,
        name="flash vs haiku",
        variant_a=VariantConfig(Provider.GOOGLE, "gemini-1.5-flash"),
        variant_b=VariantConfig(Provider.ANTHROPIC, "claude-3-haiku-20240307"),
    )
    values.update(overrides)
    return ABTestConfig(**values)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def engine():
    return RoutingEngine(
        api_key_resolver=StaticApiKeyResolver.all_providers(),
        config=RoutingConfig(),
    )


@pytest.fixture
def tracker():
    return InMemoryUsageTracker()


@pytest.fixture
def framework():
    fw = ABTestingFramework(auto_start_scheduler=False)
    yield fw
    fw.destroy()


@pytest.fixture
def service(engine, tracker):
    return RoutingService(engine, usage_tracker=tracker)


@pytest.fixture
def experiment_service(engine, framework, tracker):
    framework.create_test(make_test_config())
    framework.start_test("svc-test")
    return RoutingService(engine, framework=framework, usage_tracker=tracker)


@pytest.fixture
def auth():
    return AuthContext.for_tier("app-1", "user-1", "DEVELOPER")


# ============================================================================
# アクセス制御
# ============================================================================


class TestAccessChecks:
    """レート制限・機能フラグのテスト"""

    @pytest.mark.asyncio
    async def test_rate_limited(self, service, tracker):
        auth = AuthContext.for_tier("app-1", "user-1", "DEVELOPER", is_rate_limited=True)

        with pytest.raises(RateLimitExceeded):
            await service.route(make_request(), auth)

        summary = tracker.get_summary("app-1")
        assert summary.failed_requests == 1
        assert summary.error_codes == {"RATE_LIMIT_EXCEEDED": 1}

    @pytest.mark.asyncio
    async def test_no_remaining_requests(self, service):
        auth = AuthContext.for_tier("app-1", "user-1", "DEVELOPER", remaining_requests=0)

        with pytest.raises(RateLimitExceeded):
            await service.route(make_request(), auth)

    @pytest.mark.asyncio
    async def test_unreported_remaining_is_unlimited(self, service):
        """remaining_requests を報告しないコンテキストはレート制限しない"""
        auth = AuthContext(
            app_id="app-1",
            user_id="user-1",
            tier="DEVELOPER",
            features={"ml_routing": True, "batch_routing": True},
        )

        decision = await service.route(make_request(), auth)
        batch = await service.batch_route([make_request(), make_request()], auth)

        assert decision.model
        assert len(batch.decisions) == 2

    @pytest.mark.asyncio
    async def test_community_has_no_ml_routing(self, service, tracker):
        auth = AuthContext.for_tier("app-1", "user-1", "COMMUNITY")

        with pytest.raises(FeatureNotAvailable):
            await service.route(make_request(), auth)

        assert tracker.get_summary("app-1").error_codes == {"FEATURE_NOT_AVAILABLE": 1}


# ============================================================================
# route
# ============================================================================


class TestRoute:
    """route のテスト"""

    @pytest.mark.asyncio
    async def test_success_tracks_usage(self, service, tracker, auth):
        request = make_request(
            OptimizeFor.COST,
            metadata={"user_agent": "pytest", "ip_address": "127.0.0.1"},
        )

        decision = await service.route(request, auth)

        assert decision.model == "gpt-4o-mini"
        summary = tracker.get_summary("app-1")
        assert summary.ml_routing_count == 1
        assert summary.successful_requests == 1
        assert summary.total_cost == pytest.approx(decision.estimated_cost)
        [event] = tracker.get_events("app-1")
        assert event.metrics.user_agent == "pytest"
        assert event.metrics.ip_address == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_constraint_failure_tracked(self, service, tracker, auth):
        with pytest.raises(NoCandidateMeetsConstraints):
            await service.route(make_request(max_cost=0.0001), auth)

        assert tracker.get_summary("app-1").error_codes == {"NO_CANDIDATE_MEETS_CONSTRAINTS": 1}

    @pytest.mark.asyncio
    async def test_tracker_failure_does_not_fail_request(self, engine, auth):
        """使用量の記録に失敗してもルーティングは成功する"""
        tracker = MagicMock()
        tracker.track_usage = AsyncMock(side_effect=RuntimeError("tracker down"))
        service = RoutingService(engine, usage_tracker=tracker)

        decision = await service.route(make_request(), auth)

        assert decision.provider in Provider
        tracker.track_usage.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_tracker(self, engine, auth):
        decision = await RoutingService(engine).route(make_request(), auth)

        assert decision.experiment is None


# ============================================================================
# A/Bテスト連携
# ============================================================================


class TestExperimentRouting:
    """A/Bテストのバリアントによるルーティングのテスト"""

    @pytest.mark.asyncio
    async def test_assigned_variant_used(self, experiment_service, framework, auth):
        decision = await experiment_service.route(make_request(OptimizeFor.COST), auth)

        test_id, variant = decision.experiment
        target = framework.get_variant_config(test_id, Variant(variant))
        assert test_id == "svc-test"
        assert decision.provider == target.provider
        assert decision.model == target.model
        assert decision.reasoning.startswith("A/B test 'flash vs haiku': variant")

    @pytest.mark.asyncio
    async def test_same_user_same_variant(self, experiment_service, auth):
        first = await experiment_service.route(make_request(), auth)
        second = await experiment_service.route(make_request(), auth)

        assert first.experiment == second.experiment

    @pytest.mark.asyncio
    async def test_variant_violating_constraints_falls_back(self, engine, framework, auth):
        """バリアントが制約を満たさなければエンジンの判断を使う"""
        framework.create_test(make_test_config(
            "expensive",
            variant_a=VariantConfig(Provider.OPENAI, "gpt-4o"),
            variant_b=VariantConfig(Provider.ANTHROPIC, "claude-3-5-sonnet-20241022"),
        ))
        framework.start_test("expensive")
        service = RoutingService(engine, framework=framework)

        decision = await service.route(make_request(OptimizeFor.COST, max_cost=0.005), auth)

        assert decision.experiment is None
        assert decision.estimated_cost <= 0.005

    @pytest.mark.asyncio
    async def test_excluded_variant_provider_falls_back(self, experiment_service, auth):
        request = make_request(excluded_providers=[Provider.GOOGLE, Provider.ANTHROPIC])

        decision = await experiment_service.route(request, auth)

        assert decision.experiment is None
        assert decision.provider == Provider.OPENAI

    @pytest.mark.asyncio
    async def test_variant_without_credentials_falls_back(self, framework, auth):
        engine = RoutingEngine(api_key_resolver=StaticApiKeyResolver({Provider.OPENAI: "key"}))
        framework.create_test(make_test_config())
        framework.start_test("svc-test")
        service = RoutingService(engine, framework=framework)

        decision = await service.route(make_request(), auth)

        assert decision.experiment is None
        assert decision.provider == Provider.OPENAI

    @pytest.mark.asyncio
    async def test_paused_test_not_used(self, experiment_service, framework, auth):
        framework.pause_test("svc-test")

        decision = await experiment_service.route(make_request(), auth)

        assert decision.experiment is None


# ============================================================================
# record_outcome
# ============================================================================


class TestRecordOutcome:
    """record_outcome のテスト"""

    @pytest.mark.asyncio
    async def test_records_experiment_result(self, experiment_service, framework, engine, auth):
        request = make_request()
        decision = await experiment_service.route(request, auth)

        result = await experiment_service.record_outcome(
            decision, request, auth, MetricActual(0.0008, 1500.0, 0.85)
        )

        assert result.test_id == "svc-test"
        assert result.variant.value == decision.experiment[1]
        assert result.user_id == "user-1"
        assert result.request_id == decision.request_id
        assert framework.store.result_count("svc-test") == 1
        assert engine.history.sample_count(decision.provider, decision.model) == 1

    @pytest.mark.asyncio
    async def test_non_experiment_decision_updates_history_only(self, service, engine, auth):
        request = make_request(OptimizeFor.COST)
        decision = await service.route(request, auth)

        result = await service.record_outcome(decision, request, auth, MetricActual(0.0004, 1200.0, 0.9))

        assert result is None
        assert engine.history.sample_count(Provider.OPENAI, "gpt-4o-mini") == 1

    @pytest.mark.asyncio
    async def test_result_after_stop_dropped(self, experiment_service, framework, auth):
        """テスト停止後に届いた実測値は記録しない"""
        request = make_request()
        decision = await experiment_service.route(request, auth)
        framework.stop_test("svc-test")

        result = await experiment_service.record_outcome(
            decision, request, auth, MetricActual(0.0008, 1500.0, 0.85)
        )

        assert result is None
        assert framework.store.result_count("svc-test") == 0


# ============================================================================
# batch_route
# ============================================================================


class TestBatchRoute:
    """batch_route のテスト"""

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, service, auth):
        with pytest.raises(ValueError):
            await service.batch_route([], auth)

    @pytest.mark.asyncio
    async def test_oversized_batch_rejected(self, service, auth):
        with pytest.raises(ValueError):
            await service.batch_route([make_request()] * (MAX_BATCH_SIZE + 1), auth)

    @pytest.mark.asyncio
    async def test_insufficient_remaining_requests(self, service, tracker):
        auth = AuthContext.for_tier("app-1", "user-1", "DEVELOPER", remaining_requests=2)

        with pytest.raises(RateLimitExceeded):
            await service.batch_route([make_request()] * 3, auth)

        assert tracker.get_summary("app-1").error_codes == {"RATE_LIMIT_EXCEEDED": 1}

    @pytest.mark.asyncio
    async def test_community_has_no_batch_routing(self, service):
        auth = AuthContext.for_tier("app-1", "user-1", "COMMUNITY")

        with pytest.raises(FeatureNotAvailable):
            await service.batch_route([make_request()], auth)

    @pytest.mark.asyncio
    async def test_batch_metrics(self, service, tracker, auth):
        result = await service.batch_route([make_request(OptimizeFor.COST)] * 4, auth)

        assert len(result.decisions) == 4
        assert result.provider_distribution == {"OPENAI": 4}
        assert result.total_estimated_cost == pytest.approx(
            sum(d.estimated_cost for d in result.decisions)
        )
        assert tracker.get_summary("app-1").batch_routing_count == 1
        assert result.to_dict()["batch_metrics"]["provider_distribution"] == {"OPENAI": 4}

    @pytest.mark.asyncio
    async def test_optimize_for_override(self, service, auth):
        requests = [make_request(OptimizeFor.COST), make_request(OptimizeFor.QUALITY)]

        result = await service.batch_route(requests, auth, optimize_for=OptimizeFor.SPEED)

        assert [d.model for d in result.decisions] == ["gemini-1.5-flash", "gemini-1.5-flash"]
        assert all(d.optimization_type == OptimizeFor.SPEED for d in result.decisions)

    @pytest.mark.asyncio
    async def test_priority_order(self, service, auth):
        """指定インデックスが先頭、残りは元の順。範囲外と重複は無視"""
        requests = [
            make_request(OptimizeFor.COST),
            make_request(OptimizeFor.SPEED),
            make_request(OptimizeFor.QUALITY),
        ]

        result = await service.batch_route(requests, auth, priority_order=[2, 0, 5, 2])

        assert [d.model for d in result.decisions] == [
            "claude-3-5-sonnet-20241022",
            "gpt-4o-mini",
            "gemini-1.5-flash",
        ]

    @pytest.mark.asyncio
    async def test_load_balancing_spreads_providers(self, service, auth):
        requests = [make_request(OptimizeFor.COST)] * 9

        unbalanced = await service.batch_route(requests, auth)
        balanced = await service.batch_route(requests, auth, load_balance=True)

        assert unbalanced.provider_distribution == {"OPENAI": 9}
        assert balanced.provider_distribution["OPENAI"] <= 4
        assert sum(balanced.provider_distribution.values()) == 9
        assert len(balanced.provider_distribution) >= 2

    @pytest.mark.asyncio
    async def test_load_balancing_respects_constraints(self, service, auth):
        requests = [make_request(OptimizeFor.COST, max_cost=0.001)] * 9

        result = await service.batch_route(requests, auth, load_balance=True)

        assert all(d.estimated_cost <= 0.001 for d in result.decisions)

    @pytest.mark.asyncio
    async def test_batch_uses_experiments(self, experiment_service, auth):
        result = await experiment_service.batch_route([make_request()] * 3, auth, load_balance=True)

        assert all(d.experiment is not None for d in result.decisions)
        assert len({d.experiment for d in result.decisions}) == 1
