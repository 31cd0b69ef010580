# リクエスト特徴量の抽出
"""
リクエスト特徴量モジュール

ルーティングリクエストから推定に使う特徴量を抽出する。

- complexity_score (0.0-1.0): コストとレイテンシの推定倍率に使う
- request_type: A/Bテストの対象リクエスト種別フィルタに使う
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

from src.models.routing import RoutingRequest


class RequestType(str, Enum):
    """リクエスト種別"""
    CODE_GENERATION = "code_generation"
    DATA_PROCESSING = "data_processing"
    CREATIVE_WRITING = "creative_writing"
    TECHNICAL_SUPPORT = "technical_support"
    COMPLEX_ANALYSIS = "complex_analysis"
    SIMPLE_CHAT = "simple_chat"


@dataclass(frozen=True)
class RequestFeatures:
    """リクエスト特徴量"""

    prompt_length: int
    message_count: int
    has_system_message: bool
    complexity_score: float
    request_type: RequestType


# 複雑度を上げるキーワードと加点
_COMPLEXITY_SIGNALS: Dict[float, List[str]] = {
    0.3: ["analyze", "compare", "分析", "比較"],
    0.4: ["code", "function", "コード", "関数"],
    0.2: ["explain", "detail", "説明", "詳細"],
}

# 判定順に評価する（最初にマッチした種別を採用）
_REQUEST_TYPE_KEYWORDS = [
    (RequestType.CODE_GENERATION, ["code", "function", "programming", "コード", "関数", "実装"]),
    (RequestType.DATA_PROCESSING, ["analyze", "data", "report", "データ", "集計", "レポート"]),
    (RequestType.CREATIVE_WRITING, ["write", "story", "creative", "物語", "小説", "文章"]),
    (RequestType.TECHNICAL_SUPPORT, ["help", "support", "problem", "エラー", "問題", "サポート"]),
    (RequestType.COMPLEX_ANALYSIS, ["complex", "difficult", "複雑", "難しい"]),
]

LONG_TEXT_THRESHOLD = 1000
COMPLEX_PROMPT_THRESHOLD = 500


def calculate_complexity(request: RoutingRequest) -> float:
    """複雑度スコアを計算（0.0-1.0）"""
    score = len(request.messages) * 0.1

    total_text = " ".join(m.content for m in request.messages)
    lowered = total_text.lower()
    for points, keywords in _COMPLEXITY_SIGNALS.items():
        if any(keyword in lowered for keyword in keywords):
            score += points

    if len(total_text) > LONG_TEXT_THRESHOLD:
        score += 0.3

    return min(1.0, score)


def classify_request_type(prompt_text: str) -> RequestType:
    """プロンプトからリクエスト種別を判定"""
    text = prompt_text.lower()
    for request_type, keywords in _REQUEST_TYPE_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return request_type

    if len(prompt_text) > COMPLEX_PROMPT_THRESHOLD:
        return RequestType.COMPLEX_ANALYSIS

    return RequestType.SIMPLE_CHAT


def extract_features(request: RoutingRequest) -> RequestFeatures:
    """リクエストから特徴量を抽出"""
    prompt_text = request.user_text
    return RequestFeatures(
        prompt_length=len(prompt_text),
        message_count=len(request.messages),
        has_system_message=any(m.role == "system" for m in request.messages),
        complexity_score=calculate_complexity(request),
        request_type=classify_request_type(prompt_text),
    )
