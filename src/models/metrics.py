# メトリクスモデル定義
# 予測値と実測値（コスト・レイテンシ・品質）のレコード

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MetricPrediction:
    """ルーティング時の予測値

    Attributes:
        cost: 予測コスト（USD/リクエスト）
        response_time: 予測レスポンス時間（ミリ秒）
        quality: 予測品質（0.0-1.0）
        confidence: 予測の確信度（0.0-1.0）
    """

    cost: float
    response_time: float
    quality: float
    confidence: float = 0.5


@dataclass(frozen=True)
class MetricActual:
    """実行後の実測値

    Attributes:
        cost: 実コスト（USD）
        response_time: 実レスポンス時間（ミリ秒）
        quality: 実品質（0.0-1.0）
        user_satisfaction: ユーザー満足度（1-5、任意）
    """

    cost: float
    response_time: float
    quality: float
    user_satisfaction: Optional[float] = None

    def __post_init__(self) -> None:
        if self.cost < 0:
            raise ValueError(f"cost は非負である必要があります: {self.cost}")
        if self.response_time < 0:
            raise ValueError(f"response_time は非負である必要があります: {self.response_time}")
        if not (0.0 <= self.quality <= 1.0):
            raise ValueError(f"quality は 0.0-1.0 の範囲である必要があります: {self.quality}")


@dataclass(frozen=True)
class MetricAccuracy:
    """予測精度（項目ごと、0.0-1.0）"""

    cost: float
    response_time: float
    quality: float

    @property
    def overall(self) -> float:
        """3項目の平均"""
        return (self.cost + self.response_time + self.quality) / 3


_EPSILON = 1e-9


def field_accuracy(predicted: float, actual: float) -> float:
    """1項目の予測精度を計算

    1 - |予測 - 実測| / |実測| を 0.0-1.0 にクリップする。
    実測が0の場合は予測も0なら1.0、それ以外は0.0。
    """
    if abs(actual) < _EPSILON:
        return 1.0 if abs(predicted) < _EPSILON else 0.0
    error = abs(predicted - actual) / abs(actual)
    return max(0.0, min(1.0, 1.0 - error))


def compute_accuracy(prediction: MetricPrediction, actual: MetricActual) -> MetricAccuracy:
    """予測と実測から項目ごとの精度を計算"""
    return MetricAccuracy(
        cost=field_accuracy(prediction.cost, actual.cost),
        response_time=field_accuracy(prediction.response_time, actual.response_time),
        quality=field_accuracy(prediction.quality, actual.quality),
    )
