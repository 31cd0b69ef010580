# バリアント割り当て
"""
バリアント割り当てモジュール

(test_id, user_id) を決定論的にバリアント A/B に割り当てる。

- ハッシュ: SHA-256("{salt}:{test_id}:{user_id}") の先頭8バイト / 2**64 → [0, 1)
  プロセス再起動をまたいで同じ値になる（乱数シードに依存しない）
- トラフィック配分の判定は "allocation"、バリアントの判定は "variant" の
  別ソルトを使い、両者を独立にする
- 割り当て結果（除外を含む）はストアにメモ化され、途中で重みを
  変えても既存ユーザーの割り当ては変わらない
"""

import hashlib
import logging
from typing import Iterable, Optional

from src.ab_testing.models import ABTestConfig, Variant

logger = logging.getLogger(__name__)

ALLOCATION_SALT = "allocation"
VARIANT_SALT = "variant"


def stable_hash(salt: str, test_id: str, user_id: str) -> float:
    """[0, 1) の決定論的ハッシュ値"""
    digest = hashlib.sha256(f"{salt}:{test_id}:{user_id}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / 2 ** 64


def variant_boundary(config: ABTestConfig) -> float:
    """A に割り当てる範囲の上限 weightA / (weightA + weightB)"""
    total = config.variant_a.weight + config.variant_b.weight
    return config.variant_a.weight / total


class VariantAssigner:
    """バリアント割り当て（状態を持たない純粋な計算）

    使用例:
        assigner = VariantAssigner()
        if assigner.is_eligible(config, user_segments=["beta"], request_type="simple_chat"):
            variant = assigner.compute(config, "user_1")  # None はトラフィック対象外
    """

    def is_eligible(
        self,
        config: ABTestConfig,
        user_segments: Optional[Iterable[str]] = None,
        request_type: Optional[str] = None,
    ) -> bool:
        """セグメント・リクエスト種別の条件を満たすか

        フィルタが設定されたテストでは、呼び出し側が値を渡さなければ対象外。
        """
        if config.user_segments is not None:
            if not user_segments or config.user_segments.isdisjoint(user_segments):
                return False

        if config.request_types is not None:
            if request_type is None or request_type not in config.request_types:
                return False

        return True

    def in_traffic(self, config: ABTestConfig, user_id: str) -> bool:
        """トラフィック配分の判定（ユーザーごとに独立なベルヌーイ試行）"""
        if config.traffic_allocation >= 1.0:
            return True
        if config.traffic_allocation <= 0.0:
            return False
        return stable_hash(ALLOCATION_SALT, config.id, user_id) < config.traffic_allocation

    def choose_variant(self, config: ABTestConfig, user_id: str) -> Variant:
        """重みの境界と比較して A/B を選択"""
        value = stable_hash(VARIANT_SALT, config.id, user_id)
        return Variant.A if value < variant_boundary(config) else Variant.B

    def compute(self, config: ABTestConfig, user_id: str) -> Optional[Variant]:
        """トラフィック判定とバリアント選択（対象外なら None）"""
        if not self.in_traffic(config, user_id):
            logger.debug(f"トラフィック対象外: test_id={config.id}, user_id={user_id}")
            return None
        return self.choose_variant(config, user_id)
