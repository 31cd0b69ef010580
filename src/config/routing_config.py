# ルーティング & A/Bテスト パラメータ設定

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class RoutingConfig:
    """ルーティングエンジン・A/Bテストフレームワークの設定

    環境変数:
        ROUTING_ANALYSIS_INTERVAL: 定期分析の間隔（秒）
        ROUTING_OPTIMIZE_FOR: デフォルトの最適化目標

    使用例:
        config = RoutingConfig()  # 環境変数から上書き
        config = RoutingConfig(analysis_interval_seconds=5.0)
        config.validate()
    """

    # === 定期分析 ===
    analysis_interval_seconds: float = 60.0
    """実行中テストを再分析する間隔（秒）"""

    # === スコアリング ===
    default_optimize_for: str = "balanced"
    """リクエストで指定がない場合の最適化目標"""

    max_cost_normalizer: float = 0.1
    """balanced スコアのコスト正規化上限（USD/リクエスト）"""

    max_latency_normalizer_ms: float = 5000.0
    """balanced スコアのレイテンシ正規化上限（ミリ秒）"""

    balanced_weights: Dict[str, float] = field(
        default_factory=lambda: {"cost": 1 / 3, "speed": 1 / 3, "quality": 1 / 3}
    )
    """balanced 最適化時の重み（合計1.0）"""

    # === 学習 ===
    min_observations_for_prediction: int = 5
    """実測ベースの予測に切り替える最小観測数"""

    max_observations_per_model: int = 100
    """モデルごとに保持する観測数の上限"""

    observation_max_age_days: int = 7
    """予測に使用する観測の最大経過日数"""

    # === バッチ ===
    batch_load_balance_ratio: float = 1 / 3
    """1プロバイダーに集中を許すバッチ内の割合"""

    def __post_init__(self) -> None:
        """初期化後の処理: 環境変数から設定を取得"""
        env_interval = os.getenv("ROUTING_ANALYSIS_INTERVAL")
        if env_interval:
            self.analysis_interval_seconds = float(env_interval)

        env_optimize = os.getenv("ROUTING_OPTIMIZE_FOR")
        if env_optimize:
            self.default_optimize_for = env_optimize

    def validate(self) -> None:
        """設定値を検証

        Raises:
            ValueError: 値が無効な場合
        """
        if self.analysis_interval_seconds <= 0:
            raise ValueError(
                f"analysis_interval_seconds は正の数である必要があります: {self.analysis_interval_seconds}"
            )

        if self.default_optimize_for not in OPTIMIZATION_TYPES:
            raise ValueError(
                f"default_optimize_for は {OPTIMIZATION_TYPES} のいずれかです: {self.default_optimize_for}"
            )

        if self.max_cost_normalizer <= 0 or self.max_latency_normalizer_ms <= 0:
            raise ValueError("正規化上限は正の数である必要があります")

        if set(self.balanced_weights) != {"cost", "speed", "quality"}:
            raise ValueError("balanced_weights には cost/speed/quality を指定してください")

        total = sum(self.balanced_weights.values())
        if not (0.99 <= total <= 1.01):  # 浮動小数点誤差を考慮
            raise ValueError(f"balanced_weights の合計は1.0である必要があります: {total}")

        if self.min_observations_for_prediction <= 0:
            raise ValueError("min_observations_for_prediction は正の整数である必要があります")

        if not (0.0 < self.batch_load_balance_ratio <= 1.0):
            raise ValueError("batch_load_balance_ratio は (0, 1] の範囲である必要があります")


OPTIMIZATION_TYPES: List[str] = ["cost", "speed", "quality", "balanced"]

# === ティア別の制限と機能 ===
TIER_LIMITS: Dict[str, Dict[str, Any]] = {
    "COMMUNITY": {
        "requests_per_minute": 10,
        "features": {
            "ml_routing": False,
            "batch_routing": False,
            "analytics": False,
            "custom_models": False,
        },
    },
    "DEVELOPER": {
        "requests_per_minute": 100,
        "features": {
            "ml_routing": True,
            "batch_routing": True,
            "analytics": True,
            "custom_models": False,
        },
    },
    "PROFESSIONAL": {
        "requests_per_minute": 500,
        "features": {
            "ml_routing": True,
            "batch_routing": True,
            "analytics": True,
            "custom_models": True,
        },
    },
    "ENTERPRISE": {
        "requests_per_minute": 1000,
        "features": {
            "ml_routing": True,
            "batch_routing": True,
            "analytics": True,
            "custom_models": True,
        },
    },
}

# === ティア別に利用可能なモデルクラス ===
TIER_MODEL_ACCESS: Dict[str, List[str]] = {
    "COMMUNITY": ["economy"],
    "DEVELOPER": ["economy", "standard"],
    "PROFESSIONAL": ["economy", "standard", "premium"],
    "ENTERPRISE": ["economy", "standard", "premium"],
}

# === APIキーの環境変数名 ===
PROVIDER_API_KEY_ENV: Dict[str, str] = {
    "OPENAI": "OPENAI_API_KEY",
    "ANTHROPIC": "ANTHROPIC_API_KEY",
    "GOOGLE": "GOOGLE_API_KEY",
}

