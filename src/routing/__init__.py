# ルーティングモジュール
"""
ルーティングモジュール

チャットリクエストと制約から、プロバイダー/モデルを選択する。

コンポーネント:
- RoutingEngine: 候補生成・推定・制約フィルタ・スコアリング
- RoutingService: 認証コンテキスト・A/Bテスト・使用量記録を組み合わせた窓口
- ProviderCatalog: プロバイダー/モデルの能力テーブル
- PerformanceHistory: 実測値の履歴（推定の学習）
- ApiKeyResolver: プロバイダーの認証情報解決
"""

from src.routing.api_keys import ApiKeyResolver, EnvApiKeyResolver, StaticApiKeyResolver
from src.routing.engine import RoutingEngine
from src.routing.errors import (
    ConstraintUnsatisfiable,
    FeatureNotAvailable,
    NoCandidateMeetsConstraints,
    RateLimitExceeded,
    RoutingError,
)
from src.routing.features import RequestFeatures, RequestType, extract_features
from src.routing.performance_history import PerformanceHistory
from src.routing.provider_catalog import ModelProfile, ProviderCatalog
from src.routing.service import BatchRoutingResult, RoutingService

__all__ = [
    "RoutingEngine",
    "RoutingService",
    "BatchRoutingResult",
    "ProviderCatalog",
    "ModelProfile",
    "PerformanceHistory",
    "ApiKeyResolver",
    "EnvApiKeyResolver",
    "StaticApiKeyResolver",
    "RequestFeatures",
    "RequestType",
    "extract_features",
    "RoutingError",
    "ConstraintUnsatisfiable",
    "NoCandidateMeetsConstraints",
    "FeatureNotAvailable",
    "RateLimitExceeded",
]
