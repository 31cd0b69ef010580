# RoutingConfig テスト

import os
from unittest.mock import patch

import pytest

from src.config.routing_config import (
    OPTIMIZATION_TYPES,
    TIER_LIMITS,
    TIER_MODEL_ACCESS,
    RoutingConfig,
)


class TestDefaults:
    """デフォルト値のテスト"""

    def test_default_values(self):
        with patch.dict(os.environ, {}, clear=True):
            config = RoutingConfig()

        assert config.analysis_interval_seconds == 60.0
        assert config.default_optimize_for == "balanced"
        assert config.min_observations_for_prediction == 5
        assert config.max_observations_per_model == 100
        assert config.observation_max_age_days == 7
        assert sum(config.balanced_weights.values()) == pytest.approx(1.0)

    def test_defaults_are_valid(self):
        with patch.dict(os.environ, {}, clear=True):
            RoutingConfig().validate()

    def test_balanced_weights_not_shared(self):
        first = RoutingConfig()
        second = RoutingConfig()
        first.balanced_weights["cost"] = 1.0

        assert second.balanced_weights["cost"] == pytest.approx(1 / 3)


class TestEnvironment:
    """環境変数による上書きのテスト"""

    def test_analysis_interval_from_env(self):
        with patch.dict(os.environ, {"ROUTING_ANALYSIS_INTERVAL": "5"}):
            assert RoutingConfig().analysis_interval_seconds == 5.0

    def test_optimize_for_from_env(self):
        with patch.dict(os.environ, {"ROUTING_OPTIMIZE_FOR": "cost"}):
            assert RoutingConfig().default_optimize_for == "cost"


class TestValidate:
    """validate のテスト"""

    @pytest.fixture(autouse=True)
    def clean_env(self):
        with patch.dict(os.environ, {}, clear=True):
            yield

    def test_non_positive_interval(self):
        with pytest.raises(ValueError, match="analysis_interval_seconds"):
            RoutingConfig(analysis_interval_seconds=0).validate()

    def test_unknown_optimize_for(self):
        with pytest.raises(ValueError, match="default_optimize_for"):
            RoutingConfig(default_optimize_for="latency").validate()

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="合計"):
            RoutingConfig(balanced_weights={"cost": 0.5, "speed": 0.5, "quality": 0.5}).validate()

    def test_weights_must_have_all_keys(self):
        with pytest.raises(ValueError):
            RoutingConfig(balanced_weights={"cost": 1.0}).validate()

    def test_load_balance_ratio_range(self):
        with pytest.raises(ValueError):
            RoutingConfig(batch_load_balance_ratio=0.0).validate()


class TestTierTables:
    """ティア定義の整合性テスト"""

    def test_every_tier_has_model_access(self):
        assert set(TIER_LIMITS) == set(TIER_MODEL_ACCESS)

    def test_community_features(self):
        features = TIER_LIMITS["COMMUNITY"]["features"]

        assert features["ml_routing"] is False
        assert features["batch_routing"] is False

    def test_optimization_types(self):
        assert OPTIMIZATION_TYPES == ["cost", "speed", "quality", "balanced"]
