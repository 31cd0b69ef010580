# プロバイダー能力テーブル
"""
プロバイダーカタログモジュール

プロバイダー/モデルごとのベースライン（コスト・レイテンシ・品質）と
ティアごとの利用可否を管理する。

モデルクラス:
- economy: 全ティアで利用可能
- standard: DEVELOPER 以上
- premium: PROFESSIONAL 以上
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from src.config.routing_config import TIER_MODEL_ACCESS
from src.models.routing import Provider


@dataclass(frozen=True)
class ModelProfile:
    """モデルのベースライン性能

    Attributes:
        provider: プロバイダー
        model: モデル名
        model_class: economy / standard / premium
        base_cost: 1リクエストあたりの基準コスト（USD）
        base_latency_ms: 基準レスポンス時間（ミリ秒）
        base_quality: 基準品質（0.0-1.0）
    """

    provider: Provider
    model: str
    model_class: str
    base_cost: float
    base_latency_ms: float
    base_quality: float


DEFAULT_MODEL_PROFILES: Tuple[ModelProfile, ...] = (
    # OpenAI
    ModelProfile(Provider.OPENAI, "gpt-4o-mini", "economy", 0.0003, 1800, 0.85),
    ModelProfile(Provider.OPENAI, "gpt-3.5-turbo", "economy", 0.002, 2000, 0.80),
    ModelProfile(Provider.OPENAI, "gpt-4o", "standard", 0.01, 2000, 0.90),
    ModelProfile(Provider.OPENAI, "gpt-4", "premium", 0.03, 2000, 0.90),
    # Anthropic
    ModelProfile(Provider.ANTHROPIC, "claude-3-haiku-20240307", "economy", 0.001, 2200, 0.88),
    ModelProfile(Provider.ANTHROPIC, "claude-3-5-sonnet-20241022", "standard", 0.01, 2500, 0.95),
    ModelProfile(Provider.ANTHROPIC, "claude-sonnet-4-20250514", "premium", 0.01, 2500, 0.95),
    # Google
    ModelProfile(Provider.GOOGLE, "gemini-1.5-flash", "economy", 0.0007, 1600, 0.82),
    ModelProfile(Provider.GOOGLE, "gemini-pro", "economy", 0.001, 1800, 0.80),
    ModelProfile(Provider.GOOGLE, "gemini-1.5-pro", "standard", 0.0025, 1800, 0.85),
)

# カタログにないモデルのベースライン
FALLBACK_COST = 0.01
FALLBACK_LATENCY_MS = 2000.0
FALLBACK_QUALITY = 0.8


class ProviderCatalog:
    """プロバイダー/モデルの能力テーブル

    使用例:
        catalog = ProviderCatalog()
        models = catalog.models_for_tier("DEVELOPER")
        profile = catalog.get(Provider.OPENAI, "gpt-4o-mini")
    """

    def __init__(
        self,
        profiles: Optional[Iterable[ModelProfile]] = None,
        tier_access: Optional[Dict[str, List[str]]] = None,
    ):
        self._profiles: Dict[Tuple[Provider, str], ModelProfile] = {}
        for profile in profiles if profiles is not None else DEFAULT_MODEL_PROFILES:
            self._profiles[(profile.provider, profile.model)] = profile
        self.tier_access = tier_access or TIER_MODEL_ACCESS

    def get(self, provider: Provider, model: str) -> Optional[ModelProfile]:
        return self._profiles.get((provider, model))

    def get_or_fallback(self, provider: Provider, model: str) -> ModelProfile:
        """カタログにないモデルはフォールバック値のプロファイルを返す"""
        profile = self.get(provider, model)
        if profile is not None:
            return profile
        return ModelProfile(
            provider, model, "standard", FALLBACK_COST, FALLBACK_LATENCY_MS, FALLBACK_QUALITY
        )

    def all_models(self) -> List[ModelProfile]:
        """プロバイダー名・モデル名順の全モデル"""
        return sorted(self._profiles.values(), key=lambda p: (p.provider.value, p.model))

    def models_for_tier(self, tier: str) -> List[ModelProfile]:
        """ティアで利用可能なモデル（未知のティアは空）"""
        allowed_classes = set(self.tier_access.get(tier.upper(), []))
        return [p for p in self.all_models() if p.model_class in allowed_classes]

    def models_for_provider(self, provider: Provider) -> List[ModelProfile]:
        return [p for p in self.all_models() if p.provider == provider]
