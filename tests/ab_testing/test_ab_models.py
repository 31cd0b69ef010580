# A/Bテストのデータモデル テスト
"""
ABTestConfig / ABTestResult / ABTestAnalysis の単体テスト

検証観点:
- 設定の検証（重み・有意水準・トラフィック配分・自動停止ルール）
- 辞書（YAML/DB）との相互変換
- 結果のメトリクス値と予測精度
"""

import pytest

from src.ab_testing.errors import InvalidTestConfig
from src.ab_testing.models import (
    ABTestConfig,
    ABTestResult,
    ABTestStatus,
    AutoStopPolicy,
    MetricName,
    Variant,
    VariantConfig,
)
from src.models.metrics import MetricActual, MetricPrediction
from src.models.routing import ChatMessage, Provider, RoutingRequest


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def config():
    """標準的なテスト設定"""
    return ABTestConfig(
        id="test-1",
        name="mini vs haiku",
        variant_a=VariantConfig(Provider.OPENAI, "gpt-4o-mini"),
        variant_b=VariantConfig(Provider.ANTHROPIC, "claude-3-haiku-20240307"),
        min_sample_size=30,
    )


# ============================================================================
# ABTestConfig.validate
# ============================================================================


class TestConfigValidation:
    """設定の検証テスト"""

    def test_valid_config_passes(self, config):
        """正常な設定は例外を出さない"""
        config.validate()

    def test_negative_weight_rejected(self, config):
        """負の重みは不正"""
        invalid = ABTestConfig(
            id=config.id,
            name=config.name,
            variant_a=VariantConfig(Provider.OPENAI, "gpt-4o-mini", weight=-1.0),
            variant_b=config.variant_b,
        )
        with pytest.raises(InvalidTestConfig):
            invalid.validate()

    def test_zero_total_weight_rejected(self, config):
        """重みの合計が0は不正"""
        invalid = ABTestConfig(
            id=config.id,
            name=config.name,
            variant_a=VariantConfig(Provider.OPENAI, "gpt-4o-mini", weight=0.0),
            variant_b=VariantConfig(Provider.ANTHROPIC, "claude-3-haiku-20240307", weight=0.0),
        )
        with pytest.raises(InvalidTestConfig, match="positive"):
            invalid.validate()

    def test_identical_variants_rejected(self, config):
        """同じプロバイダー/モデルのバリアントは不正"""
        invalid = ABTestConfig(
            id=config.id,
            name=config.name,
            variant_a=config.variant_a,
            variant_b=VariantConfig(Provider.OPENAI, "gpt-4o-mini", weight=2.0),
        )
        with pytest.raises(InvalidTestConfig, match="differ"):
            invalid.validate()

    @pytest.mark.parametrize("level", [0.0, 1.0, -0.1, 1.5])
    def test_significance_level_out_of_range(self, config, level):
        """有意水準は (0, 1) の範囲"""
        invalid = ABTestConfig(
            id=config.id,
            name=config.name,
            variant_a=config.variant_a,
            variant_b=config.variant_b,
            significance_level=level,
        )
        with pytest.raises(InvalidTestConfig):
            invalid.validate()

    @pytest.mark.parametrize("allocation", [-0.1, 1.01])
    def test_traffic_allocation_out_of_range(self, config, allocation):
        """トラフィック配分は 0.0-1.0"""
        invalid = ABTestConfig(
            id=config.id,
            name=config.name,
            variant_a=config.variant_a,
            variant_b=config.variant_b,
            traffic_allocation=allocation,
        )
        with pytest.raises(InvalidTestConfig):
            invalid.validate()

    def test_non_positive_min_sample_size_rejected(self, config):
        """最小サンプル数は正の整数"""
        invalid = ABTestConfig(
            id=config.id,
            name=config.name,
            variant_a=config.variant_a,
            variant_b=config.variant_b,
            min_sample_size=0,
        )
        with pytest.raises(InvalidTestConfig):
            invalid.validate()

    @pytest.mark.parametrize("threshold", [0.0, 1.5])
    def test_futility_threshold_out_of_range(self, config, threshold):
        """futility_threshold は (0, 1]"""
        invalid = ABTestConfig(
            id=config.id,
            name=config.name,
            variant_a=config.variant_a,
            variant_b=config.variant_b,
            auto_stop=AutoStopPolicy(enabled=True, futility_threshold=threshold),
        )
        with pytest.raises(InvalidTestConfig, match="futility"):
            invalid.validate()

    def test_invalid_config_is_value_error(self, config):
        """InvalidTestConfig は ValueError としても捕捉できる"""
        invalid = ABTestConfig(id="", name="", variant_a=config.variant_a, variant_b=config.variant_b)
        with pytest.raises(ValueError):
            invalid.validate()


# ============================================================================
# 辞書との変換
# ============================================================================


class TestConfigFromDict:
    """ABTestConfig.from_dict のテスト"""

    def test_minimal_dict_uses_defaults(self):
        """必須項目のみの辞書はデフォルト値で補完される"""
        config = ABTestConfig.from_dict({
            "id": "t",
            "name": "n",
            "variant_a": {"provider": "openai", "model": "gpt-4o-mini"},
            "variant_b": {"provider": "GOOGLE", "model": "gemini-1.5-flash"},
        })

        assert config.variant_a.provider == Provider.OPENAI
        assert config.variant_b.provider == Provider.GOOGLE
        assert config.variant_a.weight == 1.0
        assert config.status == ABTestStatus.DRAFT
        assert config.primary_metric == MetricName.COST
        assert config.user_segments is None
        assert config.auto_stop.enabled is False

    def test_full_dict(self):
        """フィルタ・メトリクス・自動停止ルールを読み込む"""
        config = ABTestConfig.from_dict({
            "id": "t",
            "name": "n",
            "variant_a": {"provider": "OPENAI", "model": "gpt-4o-mini", "weight": 3},
            "variant_b": {"provider": "ANTHROPIC", "model": "claude-3-haiku-20240307"},
            "user_segments": ["beta", "internal"],
            "request_types": ["simple_chat"],
            "primary_metric": "quality",
            "secondary_metrics": ["cost", "responseTime"],
            "auto_stop": {"enabled": True, "winner_threshold": 0.1, "futility_threshold": 0.25},
        })

        assert config.variant_a.weight == 3.0
        assert config.user_segments == frozenset({"beta", "internal"})
        assert config.request_types == frozenset({"simple_chat"})
        assert config.primary_metric == MetricName.QUALITY
        assert config.secondary_metrics == (MetricName.COST, MetricName.RESPONSE_TIME)
        assert config.auto_stop == AutoStopPolicy(True, 0.1, 0.25)

    def test_missing_variant_raises(self):
        """バリアントがない場合は InvalidTestConfig"""
        with pytest.raises(InvalidTestConfig):
            ABTestConfig.from_dict({"id": "t", "name": "n", "variant_a": {"provider": "OPENAI", "model": "x"}})

    def test_unknown_provider_raises(self):
        """未知のプロバイダーは InvalidTestConfig"""
        with pytest.raises(InvalidTestConfig):
            ABTestConfig.from_dict({
                "id": "t",
                "name": "n",
                "variant_a": {"provider": "MISTRAL", "model": "x"},
                "variant_b": {"provider": "OPENAI", "model": "y"},
            })

    def test_round_trip_preserves_lifecycle_fields(self, config):
        """to_dict → from_dict で状態・勝者も保たれる"""
        completed = config.with_status(
            ABTestStatus.COMPLETED,
            start_time=100.0,
            end_time=200.0,
            stop_reason="done",
            winner=Variant.B,
        )

        assert ABTestConfig.from_dict(completed.to_dict()) == completed


class TestConfigHelpers:
    """補助メソッドのテスト"""

    def test_variant_lookup(self, config):
        assert config.variant(Variant.A) is config.variant_a
        assert config.variant(Variant.B) is config.variant_b

    def test_terminal_statuses(self, config):
        """completed / stopped のみ終端"""
        assert not config.is_terminal
        assert not config.with_status(ABTestStatus.PAUSED).is_terminal
        assert config.with_status(ABTestStatus.COMPLETED).is_terminal
        assert config.with_status(ABTestStatus.STOPPED).is_terminal

    def test_with_status_returns_new_instance(self, config):
        """with_status は元の設定を変更しない"""
        running = config.with_status(ABTestStatus.RUNNING, start_time=1.0)

        assert config.status == ABTestStatus.DRAFT
        assert running.status == ABTestStatus.RUNNING
        assert running.start_time == 1.0


# ============================================================================
# ABTestResult
# ============================================================================


class TestABTestResult:
    """ABTestResult のテスト"""

    @pytest.fixture
    def result(self):
        return ABTestResult.build(
            test_id="test-1",
            variant=Variant.B,
            user_id="user-1",
            request_id="req-1",
            timestamp=1000.0,
            prediction=MetricPrediction(cost=0.001, response_time=1000.0, quality=0.8),
            actual=MetricActual(cost=0.002, response_time=1000.0, quality=0.8),
            request=RoutingRequest(messages=(ChatMessage("user", "Hello"),)),
        )

    def test_build_computes_accuracy(self, result):
        """予測と実測から項目ごとの精度を計算する"""
        assert result.cost_accuracy == pytest.approx(0.5)
        assert result.time_accuracy == pytest.approx(1.0)
        assert result.quality_accuracy == pytest.approx(1.0)

    def test_metric_values(self, result):
        """メトリクス名から値を取り出す"""
        assert result.metric_value(MetricName.COST) == 0.002
        assert result.metric_value(MetricName.RESPONSE_TIME) == 1000.0
        assert result.metric_value(MetricName.QUALITY) == 0.8
        assert result.metric_value(MetricName.ACCURACY) == pytest.approx(2.5 / 3)

    def test_missing_user_satisfaction_is_none(self, result):
        """満足度の未回答は None"""
        assert result.metric_value(MetricName.USER_SATISFACTION) is None

    def test_round_trip(self, result):
        """to_dict → from_dict で同じ結果に戻る"""
        restored = ABTestResult.from_dict(result.to_dict())

        assert restored.variant == Variant.B
        assert restored.actual_cost == result.actual_cost
        assert restored.cost_accuracy == result.cost_accuracy
        assert restored.request.user_text == "Hello"
