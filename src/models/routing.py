# ルーティングモデル定義
# リクエスト・制約・判断結果・認証コンテキストのデータクラス

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from src.config.routing_config import TIER_LIMITS


class Provider(str, Enum):
    """LLMプロバイダー"""
    OPENAI = "OPENAI"
    ANTHROPIC = "ANTHROPIC"
    GOOGLE = "GOOGLE"


class OptimizeFor(str, Enum):
    """最適化目標"""
    COST = "cost"
    SPEED = "speed"
    QUALITY = "quality"
    BALANCED = "balanced"


VALID_ROLES = frozenset({"system", "user", "assistant"})


@dataclass(frozen=True)
class ChatMessage:
    """チャットメッセージ"""

    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise ValueError(f"role は system/user/assistant のいずれかです: {self.role}")
        if not self.content:
            raise ValueError("メッセージの content は空にできません")


def _to_provider_set(values: Optional[Iterable[Any]]) -> FrozenSet[Provider]:
    if not values:
        return frozenset()
    return frozenset(Provider(v.value if isinstance(v, Provider) else str(v).upper()) for v in values)


@dataclass(frozen=True)
class RoutingConstraints:
    """ルーティング制約

    全ての項目は任意。指定された項目のみが候補の除外に使われる。
    構築時に全項目を検証する。

    Attributes:
        max_cost: 許容する推定コストの上限（USD、正の数）。超える候補は除外。
        min_quality: 要求する推定品質の下限（0.0-1.0）。下回る候補は除外。
        max_response_time: 許容する推定レイテンシの上限（ミリ秒、正の数）。超える候補は除外。
        preferred_providers: 指定時はこのプロバイダーのみを候補にする（許可リスト）。
        excluded_providers: このプロバイダーを候補から外す（拒否リスト）。
    """

    max_cost: Optional[float] = None
    min_quality: Optional[float] = None
    max_response_time: Optional[float] = None
    preferred_providers: FrozenSet[Provider] = field(default_factory=frozenset)
    excluded_providers: FrozenSet[Provider] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.max_cost is not None and self.max_cost <= 0:
            raise ValueError(f"max_cost は正の数である必要があります: {self.max_cost}")
        if self.min_quality is not None and not (0.0 <= self.min_quality <= 1.0):
            raise ValueError(f"min_quality は 0.0-1.0 の範囲である必要があります: {self.min_quality}")
        if self.max_response_time is not None and self.max_response_time <= 0:
            raise ValueError(
                f"max_response_time は正の数である必要があります: {self.max_response_time}"
            )
        # list などで渡された場合も frozenset[Provider] に正規化
        object.__setattr__(self, "preferred_providers", _to_provider_set(self.preferred_providers))
        object.__setattr__(self, "excluded_providers", _to_provider_set(self.excluded_providers))

    def allows_provider(self, provider: Provider) -> bool:
        """許可/拒否リストを満たすか"""
        if provider in self.excluded_providers:
            return False
        if self.preferred_providers and provider not in self.preferred_providers:
            return False
        return True

    def is_satisfied_by(self, cost: float, quality: float, response_time: float) -> bool:
        """推定値が数値制約を全て満たすか"""
        if self.max_cost is not None and cost > self.max_cost:
            return False
        if self.min_quality is not None and quality < self.min_quality:
            return False
        if self.max_response_time is not None and response_time > self.max_response_time:
            return False
        return True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> RoutingConstraints:
        """辞書から構築（camelCase / snake_case 両対応）"""
        if not data:
            return cls()
        return cls(
            max_cost=data.get("max_cost", data.get("maxCost")),
            min_quality=data.get("min_quality", data.get("minQuality")),
            max_response_time=data.get("max_response_time", data.get("maxResponseTime")),
            preferred_providers=data.get("preferred_providers", data.get("preferredProviders")),
            excluded_providers=data.get("excluded_providers", data.get("excludeProviders")),
        )


@dataclass(frozen=True)
class RoutingRequest:
    """ルーティングリクエスト（構築後は不変）"""

    messages: Tuple[ChatMessage, ...]
    optimize_for: OptimizeFor = OptimizeFor.BALANCED
    constraints: RoutingConstraints = field(default_factory=RoutingConstraints)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        messages = tuple(self.messages)
        if not messages:
            raise ValueError("messages には1件以上のメッセージが必要です")
        object.__setattr__(self, "messages", messages)
        object.__setattr__(self, "optimize_for", OptimizeFor(self.optimize_for))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def user_text(self) -> str:
        """user ロールのメッセージを連結したテキスト"""
        return " ".join(m.content for m in self.messages if m.role == "user")

    def to_dict(self) -> Dict[str, Any]:
        constraints = self.constraints
        return {
            "messages": [{"role": m.role, "content": m.content} for m in self.messages],
            "optimize_for": self.optimize_for.value,
            "constraints": {
                "max_cost": constraints.max_cost,
                "min_quality": constraints.min_quality,
                "max_response_time": constraints.max_response_time,
                "preferred_providers": sorted(p.value for p in constraints.preferred_providers),
                "excluded_providers": sorted(p.value for p in constraints.excluded_providers),
            },
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        default_optimize_for: Any = OptimizeFor.BALANCED,
    ) -> RoutingRequest:
        """辞書（YAML/JSON）から構築

        optimize_for がない場合は default_optimize_for（RoutingConfig.default_optimize_for など）を使う。
        """
        messages = [
            ChatMessage(role=m["role"], content=m["content"])
            for m in data.get("messages", [])
        ]
        return cls(
            messages=tuple(messages),
            optimize_for=OptimizeFor(data.get("optimize_for", data.get("optimizeFor", default_optimize_for))),
            constraints=RoutingConstraints.from_dict(data.get("constraints")),
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True)
class CandidateEstimate:
    """プロバイダー/モデル候補の推定値"""

    provider: Provider
    model: str
    estimated_cost: float
    estimated_latency: float
    estimated_quality: float
    confidence: float
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "model": self.model,
            "estimated_cost": round(self.estimated_cost, 6),
            "estimated_latency": round(self.estimated_latency),
            "estimated_quality": round(self.estimated_quality, 4),
            "confidence": round(self.confidence, 2),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class RoutingDecision:
    """ルーティング判断結果（リクエストごとに1回生成され、変更されない）

    Attributes:
        request_id: リクエストID
        provider: 選択されたプロバイダー
        model: 選択されたモデル
        estimated_cost: 推定コスト（USD）
        estimated_latency: 推定レイテンシ（ミリ秒）
        estimated_quality: 推定品質（0.0-1.0）
        confidence: 推定の確信度
        reasoning: 選択理由
        optimization_type: 適用した最適化目標
        alternatives: 次点の候補（最大3件）
        experiment: A/Bテスト経由の場合 (test_id, variant)
    """

    request_id: str
    provider: Provider
    model: str
    estimated_cost: float
    estimated_latency: float
    estimated_quality: float
    confidence: float
    reasoning: str
    optimization_type: OptimizeFor
    alternatives: Tuple[CandidateEstimate, ...] = ()
    experiment: Optional[Tuple[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "request_id": self.request_id,
            "provider": self.provider.value,
            "model": self.model,
            "estimated_cost": round(self.estimated_cost, 6),
            "estimated_latency": round(self.estimated_latency),
            "estimated_quality": round(self.estimated_quality, 4),
            "confidence": round(self.confidence, 2),
            "reasoning": self.reasoning,
            "optimization_type": self.optimization_type.value,
            "alternatives": [alt.to_dict() for alt in self.alternatives],
        }
        if self.experiment:
            data["experiment"] = {"test_id": self.experiment[0], "variant": self.experiment[1]}
        return data


@dataclass
class AuthContext:
    """認証ミドルウェアが生成するコンテキスト

    Attributes:
        app_id: アプリケーションID（使用量記録のキー）
        user_id: ユーザーID（バリアント割り当てのキー）
        tier: 契約ティア（COMMUNITY/DEVELOPER/PROFESSIONAL/ENTERPRISE）
        features: ティアの機能フラグ
        remaining_requests: 残りリクエスト数（None はミドルウェアが報告していない = 制限なし）
        rate_limit_reset_time: レート制限のリセット時刻
        is_rate_limited: レート制限中か
    """

    app_id: str
    user_id: str
    tier: str
    features: Dict[str, bool] = field(default_factory=dict)
    remaining_requests: Optional[int] = None
    rate_limit_reset_time: Optional[datetime] = None
    is_rate_limited: bool = False

    def has_feature(self, name: str) -> bool:
        return bool(self.features.get(name, False))

    @classmethod
    def for_tier(
        cls,
        app_id: str,
        user_id: str,
        tier: str,
        remaining_requests: Optional[int] = None,
        rate_limit_reset_time: Optional[datetime] = None,
        is_rate_limited: bool = False,
    ) -> AuthContext:
        """TIER_LIMITS から機能フラグを埋めて構築

        Raises:
            ValueError: 未知のティアの場合
        """
        tier = tier.upper()
        if tier not in TIER_LIMITS:
            raise ValueError(f"未知のティアです: {tier}. 有効なティア: {list(TIER_LIMITS.keys())}")
        limits = TIER_LIMITS[tier]
        if remaining_requests is None:
            remaining_requests = limits["requests_per_minute"]
        return cls(
            app_id=app_id,
            user_id=user_id,
            tier=tier,
            features=dict(limits["features"]),
            remaining_requests=remaining_requests,
            rate_limit_reset_time=rate_limit_reset_time,
            is_rate_limited=is_rate_limited,
        )

