# A/Bテストのデータモデル
"""
A/Bテストのデータモデル

- ABTestConfig: テスト設定（不変。状態遷移はストアが新しいインスタンスに置き換える）
- ABTestResult: 実験に参加した1リクエストの結果（追記のみ）
- ABTestAnalysis: 結果集合から導出される分析（キャッシュのみ、正本ではない）
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from src.ab_testing.errors import InvalidTestConfig
from src.models.metrics import MetricActual, MetricPrediction, compute_accuracy
from src.models.routing import Provider, RoutingRequest


class ABTestStatus(str, Enum):
    """テストのライフサイクル状態"""
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    STOPPED = "stopped"


class Variant(str, Enum):
    """バリアント"""
    A = "A"
    B = "B"


class MetricName(str, Enum):
    """評価メトリクス"""
    COST = "cost"
    RESPONSE_TIME = "responseTime"
    QUALITY = "quality"
    ACCURACY = "accuracy"
    USER_SATISFACTION = "userSatisfaction"


class AnalysisStatus(str, Enum):
    """分析結果の状態"""
    INSUFFICIENT_DATA = "insufficient_data"
    NO_SIGNIFICANT_DIFFERENCE = "no_significant_difference"
    VARIANT_A_WINS = "variant_a_wins"
    VARIANT_B_WINS = "variant_b_wins"
    INCONCLUSIVE = "inconclusive"


class Recommendation(str, Enum):
    """推奨アクション"""
    CONTINUE_TEST = "continue_test"
    CHOOSE_VARIANT_A = "choose_variant_a"
    CHOOSE_VARIANT_B = "choose_variant_b"
    NO_CLEAR_WINNER = "no_clear_winner"
    STOP_TEST = "stop_test"


TERMINAL_STATUSES = frozenset({ABTestStatus.COMPLETED, ABTestStatus.STOPPED})


@dataclass(frozen=True)
class VariantConfig:
    """バリアントのルーティング先と配分の重み"""

    provider: Provider
    model: str
    weight: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {"provider": self.provider.value, "model": self.model, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VariantConfig:
        return cls(
            provider=Provider(str(data["provider"]).upper()),
            model=data["model"],
            weight=float(data.get("weight", 1.0)),
        )


@dataclass(frozen=True)
class AutoStopPolicy:
    """自動停止ルール

    Attributes:
        enabled: 自動停止を行うか
        winner_threshold: 有意かつ相対効果量の絶対値がこの値以上なら completed にする
        futility_threshold: max_duration に対するこの割合の時間が経過しても
            有意差がなければ stopped にする（0 < x <= 1）
    """

    enabled: bool = False
    winner_threshold: float = 0.05
    futility_threshold: float = 0.5


@dataclass(frozen=True)
class ABTestConfig:
    """A/Bテスト設定

    Attributes:
        id: テストID
        name: テスト名
        variant_a: バリアントA
        variant_b: バリアントB
        description: 説明
        hypothesis: 仮説
        min_sample_size: バリアントあたりの最小サンプル数
        max_duration_seconds: 最大実施期間（秒）
        significance_level: 有意水準 α
        minimum_detectable_effect: 検出したい最小の相対効果量
        traffic_allocation: 実験に参加させるユーザーの割合（0.0-1.0）
        user_segments: 対象ユーザーセグメント（None は全ユーザー）
        request_types: 対象リクエスト種別（None は全種別）
        primary_metric: 勝者判定に使うメトリクス
        secondary_metrics: 監視用のメトリクス
        status: ライフサイクル状態
        start_time / end_time: 開始・終了時刻（UNIX時刻）
        stop_reason: 停止・完了の理由
        winner: 自動停止で決まった勝者
        auto_stop: 自動停止ルール
    """

    id: str
    name: str
    variant_a: VariantConfig
    variant_b: VariantConfig
    description: str = ""
    hypothesis: str = ""
    min_sample_size: int = 100
    max_duration_seconds: float = 14 * 24 * 60 * 60
    significance_level: float = 0.05
    minimum_detectable_effect: float = 0.05
    traffic_allocation: float = 1.0
    user_segments: Optional[FrozenSet[str]] = None
    request_types: Optional[FrozenSet[str]] = None
    primary_metric: MetricName = MetricName.COST
    secondary_metrics: Tuple[MetricName, ...] = ()
    status: ABTestStatus = ABTestStatus.DRAFT
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    stop_reason: Optional[str] = None
    winner: Optional[Variant] = None
    auto_stop: AutoStopPolicy = field(default_factory=AutoStopPolicy)

    def validate(self) -> None:
        """設定を検証

        Raises:
            InvalidTestConfig: 設定が不正な場合
        """
        if not self.id or not self.name:
            raise InvalidTestConfig("id and name are required")

        if self.variant_a.weight < 0 or self.variant_b.weight < 0:
            raise InvalidTestConfig(
                f"Variant weights must be non-negative "
                f"(A={self.variant_a.weight}, B={self.variant_b.weight})"
            )
        if self.variant_a.weight + self.variant_b.weight <= 0:
            raise InvalidTestConfig("At least one variant weight must be positive")

        if (
            self.variant_a.provider == self.variant_b.provider
            and self.variant_a.model == self.variant_b.model
        ):
            raise InvalidTestConfig("Variants must differ in provider or model")

        if not (0.0 < self.significance_level < 1.0):
            raise InvalidTestConfig(
                f"Significance level must be in (0, 1), got {self.significance_level}"
            )
        if self.min_sample_size <= 0:
            raise InvalidTestConfig(
                f"Minimum sample size must be positive, got {self.min_sample_size}"
            )
        if self.max_duration_seconds <= 0:
            raise InvalidTestConfig(
                f"Max duration must be positive, got {self.max_duration_seconds}"
            )
        if not (0.0 <= self.traffic_allocation <= 1.0):
            raise InvalidTestConfig(
                f"Traffic allocation must be between 0 and 1, got {self.traffic_allocation}"
            )
        if self.minimum_detectable_effect < 0:
            raise InvalidTestConfig("Minimum detectable effect must be non-negative")

        if self.auto_stop.winner_threshold < 0:
            raise InvalidTestConfig("Auto-stop winner threshold must be non-negative")
        if not (0.0 < self.auto_stop.futility_threshold <= 1.0):
            raise InvalidTestConfig(
                f"Auto-stop futility threshold must be in (0, 1], "
                f"got {self.auto_stop.futility_threshold}"
            )

    def variant(self, variant: Variant) -> VariantConfig:
        return self.variant_a if variant == Variant.A else self.variant_b

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def with_status(self, status: ABTestStatus, **changes: Any) -> ABTestConfig:
        return replace(self, status=status, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "hypothesis": self.hypothesis,
            "variant_a": self.variant_a.to_dict(),
            "variant_b": self.variant_b.to_dict(),
            "min_sample_size": self.min_sample_size,
            "max_duration_seconds": self.max_duration_seconds,
            "significance_level": self.significance_level,
            "minimum_detectable_effect": self.minimum_detectable_effect,
            "traffic_allocation": self.traffic_allocation,
            "user_segments": sorted(self.user_segments) if self.user_segments is not None else None,
            "request_types": sorted(self.request_types) if self.request_types is not None else None,
            "primary_metric": self.primary_metric.value,
            "secondary_metrics": [m.value for m in self.secondary_metrics],
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "stop_reason": self.stop_reason,
            "winner": self.winner.value if self.winner else None,
            "auto_stop": {
                "enabled": self.auto_stop.enabled,
                "winner_threshold": self.auto_stop.winner_threshold,
                "futility_threshold": self.auto_stop.futility_threshold,
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ABTestConfig:
        """辞書（YAML/DB）から構築

        Raises:
            InvalidTestConfig: 必須項目の欠落や値の型が不正な場合
        """
        try:
            auto_stop = data.get("auto_stop") or {}
            segments = data.get("user_segments")
            request_types = data.get("request_types")
            winner = data.get("winner")
            return cls(
                id=str(data["id"]),
                name=str(data["name"]),
                description=data.get("description", ""),
                hypothesis=data.get("hypothesis", ""),
                variant_a=VariantConfig.from_dict(data["variant_a"]),
                variant_b=VariantConfig.from_dict(data["variant_b"]),
                min_sample_size=int(data.get("min_sample_size", 100)),
                max_duration_seconds=float(data.get("max_duration_seconds", 14 * 24 * 60 * 60)),
                significance_level=float(data.get("significance_level", 0.05)),
                minimum_detectable_effect=float(data.get("minimum_detectable_effect", 0.05)),
                traffic_allocation=float(data.get("traffic_allocation", 1.0)),
                user_segments=frozenset(segments) if segments is not None else None,
                request_types=frozenset(request_types) if request_types is not None else None,
                primary_metric=MetricName(data.get("primary_metric", "cost")),
                secondary_metrics=tuple(MetricName(m) for m in data.get("secondary_metrics", [])),
                status=ABTestStatus(data.get("status", "draft")),
                start_time=data.get("start_time"),
                end_time=data.get("end_time"),
                stop_reason=data.get("stop_reason"),
                winner=Variant(winner) if winner else None,
                auto_stop=AutoStopPolicy(
                    enabled=bool(auto_stop.get("enabled", False)),
                    winner_threshold=float(auto_stop.get("winner_threshold", 0.05)),
                    futility_threshold=float(auto_stop.get("futility_threshold", 0.5)),
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTestConfig(f"Invalid test config: {e}") from e


@dataclass(frozen=True)
class ABTestResult:
    """実験に参加した1リクエストの結果（挿入後は変更しない）

    Attributes:
        test_id / variant / user_id / request_id / timestamp: 識別情報
        request: 元のルーティングリクエスト
        prediction: エンジンの予測値
        actual_response: 実際のレスポンス（プロバイダーの応答概要）
        actual_cost / actual_response_time / actual_quality: 実測値
        user_satisfaction: ユーザー満足度（任意）
        cost_accuracy / time_accuracy / quality_accuracy: 予測精度（0.0-1.0）
    """

    test_id: str
    variant: Variant
    user_id: str
    request_id: str
    timestamp: float
    request: Optional[RoutingRequest]
    prediction: MetricPrediction
    actual_response: Mapping[str, Any]
    actual_cost: float
    actual_response_time: float
    actual_quality: float
    user_satisfaction: Optional[float] = None
    cost_accuracy: float = 0.0
    time_accuracy: float = 0.0
    quality_accuracy: float = 0.0

    @classmethod
    def build(
        cls,
        test_id: str,
        variant: Variant,
        user_id: str,
        request_id: str,
        timestamp: float,
        prediction: MetricPrediction,
        actual: MetricActual,
        request: Optional[RoutingRequest] = None,
        actual_response: Optional[Mapping[str, Any]] = None,
    ) -> ABTestResult:
        """予測と実測から精度を計算して結果を作成"""
        accuracy = compute_accuracy(prediction, actual)
        return cls(
            test_id=test_id,
            variant=Variant(variant),
            user_id=user_id,
            request_id=request_id,
            timestamp=timestamp,
            request=request,
            prediction=prediction,
            actual_response=dict(actual_response or {}),
            actual_cost=actual.cost,
            actual_response_time=actual.response_time,
            actual_quality=actual.quality,
            user_satisfaction=actual.user_satisfaction,
            cost_accuracy=accuracy.cost,
            time_accuracy=accuracy.response_time,
            quality_accuracy=accuracy.quality,
        )

    def metric_value(self, metric: MetricName) -> Optional[float]:
        """メトリクス値を取得（userSatisfaction 未回答は None）"""
        if metric == MetricName.COST:
            return self.actual_cost
        if metric == MetricName.RESPONSE_TIME:
            return self.actual_response_time
        if metric == MetricName.QUALITY:
            return self.actual_quality
        if metric == MetricName.ACCURACY:
            return (self.cost_accuracy + self.time_accuracy + self.quality_accuracy) / 3
        if metric == MetricName.USER_SATISFACTION:
            return self.user_satisfaction
        raise ValueError(f"Unknown metric: {metric}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "variant": self.variant.value,
            "user_id": self.user_id,
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "request": self.request.to_dict() if self.request else None,
            "prediction": {
                "cost": self.prediction.cost,
                "response_time": self.prediction.response_time,
                "quality": self.prediction.quality,
                "confidence": self.prediction.confidence,
            },
            "actual_response": dict(self.actual_response),
            "actual_cost": self.actual_cost,
            "actual_response_time": self.actual_response_time,
            "actual_quality": self.actual_quality,
            "user_satisfaction": self.user_satisfaction,
            "cost_accuracy": self.cost_accuracy,
            "time_accuracy": self.time_accuracy,
            "quality_accuracy": self.quality_accuracy,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ABTestResult:
        prediction = data["prediction"]
        request = data.get("request")
        return cls(
            test_id=data["test_id"],
            variant=Variant(data["variant"]),
            user_id=data["user_id"],
            request_id=data["request_id"],
            timestamp=float(data["timestamp"]),
            request=RoutingRequest.from_dict(request) if request else None,
            prediction=MetricPrediction(
                cost=prediction["cost"],
                response_time=prediction["response_time"],
                quality=prediction["quality"],
                confidence=prediction.get("confidence", 0.5),
            ),
            actual_response=data.get("actual_response") or {},
            actual_cost=data["actual_cost"],
            actual_response_time=data["actual_response_time"],
            actual_quality=data["actual_quality"],
            user_satisfaction=data.get("user_satisfaction"),
            cost_accuracy=data.get("cost_accuracy", 0.0),
            time_accuracy=data.get("time_accuracy", 0.0),
            quality_accuracy=data.get("quality_accuracy", 0.0),
        )


@dataclass(frozen=True)
class MetricSummary:
    """バリアントごとの標本統計"""

    mean: float
    std: float
    samples: int

    def to_dict(self) -> Dict[str, Any]:
        return {"mean": self.mean, "std": self.std, "samples": self.samples}


@dataclass(frozen=True)
class PrimaryMetricResult:
    """主要メトリクスの結果

    Attributes:
        metric: メトリクス名
        variant_a / variant_b: 標本統計
        improvement: A に対する B の改善率（%、メトリクスの向きを考慮して正が B の改善）
        confidence_interval: 相対効果量の信頼区間（正規近似）
    """

    metric: MetricName
    variant_a: MetricSummary
    variant_b: MetricSummary
    improvement: float
    confidence_interval: Tuple[float, float]


@dataclass(frozen=True)
class SecondaryMetricResult:
    """副次メトリクスの結果"""

    variant_a: MetricSummary
    variant_b: MetricSummary
    improvement: float
    p_value: float
    is_significant: bool


@dataclass(frozen=True)
class ABTestAnalysis:
    """A/Bテストの分析結果（結果集合と設定の純粋関数）

    Attributes:
        effect: 相対効果量（正は B が A より良い）
        mean_difference: 平均の差（B - A、向きの補正なし）
        p_value: Welch の t検定による両側 p値
        confidence: 1 - p_value
        is_significant: p_value < significance_level かつ最小サンプル数を満たす
        projected_sample_size_needed: minimum_detectable_effect を検出力80%で
            検出するのに必要なバリアントあたりのサンプル数の見積もり
    """

    test_id: str
    status: AnalysisStatus
    primary_metric: MetricName
    sample_sizes: Tuple[int, int]
    means: Tuple[float, float]
    standard_deviations: Tuple[float, float]
    effect: float
    mean_difference: float
    t_statistic: float
    degrees_of_freedom: float
    p_value: float
    confidence: float
    is_significant: bool
    primary_metric_results: PrimaryMetricResult
    secondary_metric_results: Dict[str, SecondaryMetricResult]
    recommendation: Recommendation
    recommendation_reason: str
    projected_sample_size_needed: Optional[int] = None

    @property
    def winner(self) -> Optional[Variant]:
        if self.status == AnalysisStatus.VARIANT_A_WINS:
            return Variant.A
        if self.status == AnalysisStatus.VARIANT_B_WINS:
            return Variant.B
        return None

    def to_dict(self) -> Dict[str, Any]:
        primary = self.primary_metric_results
        return {
            "test_id": self.test_id,
            "status": self.status.value,
            "primary_metric": self.primary_metric.value,
            "sample_sizes": {"variant_a": self.sample_sizes[0], "variant_b": self.sample_sizes[1]},
            "means": {"variant_a": self.means[0], "variant_b": self.means[1]},
            "standard_deviations": {
                "variant_a": self.standard_deviations[0],
                "variant_b": self.standard_deviations[1],
            },
            "effect": self.effect,
            "mean_difference": self.mean_difference,
            "t_statistic": self.t_statistic,
            "degrees_of_freedom": self.degrees_of_freedom,
            "p_value": self.p_value,
            "confidence": self.confidence,
            "is_significant": self.is_significant,
            "primary_metric_results": {
                "variant_a": primary.variant_a.to_dict(),
                "variant_b": primary.variant_b.to_dict(),
                "improvement": primary.improvement,
                "confidence_interval": list(primary.confidence_interval),
            },
            "secondary_metric_results": {
                name: {
                    "variant_a": result.variant_a.to_dict(),
                    "variant_b": result.variant_b.to_dict(),
                    "improvement": result.improvement,
                    "p_value": result.p_value,
                    "is_significant": result.is_significant,
                }
                for name, result in self.secondary_metric_results.items()
            },
            "recommendation": self.recommendation.value,
            "recommendation_reason": self.recommendation_reason,
            "projected_sample_size_needed": self.projected_sample_size_needed,
        }
