# A/Bテストフレームワーク
"""
ABTestingFramework: ストア・割り当て・統計分析・定期スケジューラーをまとめた窓口

プロセス単位のインスタンスとして明示的に生成し、destroy() で
定期分析スレッドを解放する。テストごとに独立したインスタンスを作れる。

自動停止（auto_stop.enabled のテストのみ、定期分析のティックで評価）:
    1. 有意かつ |effect| >= winner_threshold → completed（勝者を記録）
    2. 経過時間 > max_duration → stopped（"Test duration expired"）
    3. 経過時間 >= futility_threshold * max_duration で有意差なし → stopped
"""

import logging
import time
from typing import Callable, Iterable, List, Optional, Tuple

from src.ab_testing.assignment import VariantAssigner
from src.ab_testing.experiment_store import ExperimentStore
from src.ab_testing.models import (
    ABTestAnalysis,
    ABTestConfig,
    ABTestResult,
    ABTestStatus,
    Variant,
    VariantConfig,
)
from src.ab_testing.statistics import StatisticalAnalyzer, require_samples
from src.config.routing_config import RoutingConfig
from src.scheduling.analysis_scheduler import PeriodicAnalysisScheduler

logger = logging.getLogger(__name__)

DURATION_EXPIRED_REASON = "Test duration expired"


class ABTestingFramework:
    """A/Bテストフレームワーク

    使用例:
        with ABTestingFramework() as framework:
            framework.create_test(config)
            framework.start_test(config.id)
            variant = framework.assign_variant(config.id, "user_1")
            framework.record_result(result)
            analysis = framework.get_test_analysis(config.id)

    Attributes:
        store: テストの保存先
        analyzer: 統計分析
        assigner: バリアント割り当て
        config: ルーティング設定（分析間隔）
    """

    def __init__(
        self,
        store: Optional[ExperimentStore] = None,
        analyzer: Optional[StatisticalAnalyzer] = None,
        assigner: Optional[VariantAssigner] = None,
        config: Optional[RoutingConfig] = None,
        clock: Callable[[], float] = time.time,
        auto_start_scheduler: bool = True,
    ):
        self.config = config or RoutingConfig()
        self._clock = clock
        self.store = store or ExperimentStore(clock=clock)
        self.analyzer = analyzer or StatisticalAnalyzer()
        self.assigner = assigner or VariantAssigner()
        self.scheduler = PeriodicAnalysisScheduler(
            self.run_periodic_analysis,
            self.config.analysis_interval_seconds,
        )
        self._destroyed = False

        if auto_start_scheduler:
            self.scheduler.start()

    # ===== ライフサイクル =====

    def create_test(self, config: ABTestConfig) -> ABTestConfig:
        return self.store.create_test(config)

    def start_test(self, test_id: str) -> ABTestConfig:
        return self.store.start_test(test_id)

    def pause_test(self, test_id: str) -> ABTestConfig:
        return self.store.pause_test(test_id)

    def stop_test(self, test_id: str, reason: str = "Manual stop") -> ABTestConfig:
        return self.store.stop_test(test_id, reason)

    def complete_test(
        self,
        test_id: str,
        reason: str = "Completed",
        winner: Optional[Variant] = None,
    ) -> ABTestConfig:
        return self.store.complete_test(test_id, reason, winner)

    def record_result(self, result: ABTestResult) -> None:
        self.store.record_result(result)

    # ===== 分析 =====

    def analyze_test(self, test_id: str, strict: bool = False) -> Optional[ABTestAnalysis]:
        """結果のスナップショットを分析してキャッシュする

        Args:
            test_id: テストID
            strict: True の場合、サンプル不足なら InsufficientData を送出

        Returns:
            ABTestAnalysis。テストがない、または結果が1件もない場合は None
        """
        config = self.store.find_test(test_id)
        if config is None:
            if strict:
                require_samples(None)
            return None

        results = self.store.snapshot_results(test_id)
        analysis = self.analyzer.analyze(config, results, self._clock())
        if analysis is not None:
            self.store.cache_analysis(test_id, analysis, len(results))

        if strict:
            return require_samples(analysis)
        return analysis

    def get_test_analysis(self, test_id: str) -> Optional[ABTestAnalysis]:
        """キャッシュが新しければそれを、古ければ再分析した結果を返す"""
        if self.store.find_test(test_id) is None:
            return None
        if not self.store.is_analysis_stale(test_id):
            return self.store.get_cached_analysis(test_id)
        return self.analyze_test(test_id)

    # ===== 割り当て =====

    def assign_variant(
        self,
        test_id: str,
        user_id: str,
        user_segments: Optional[Iterable[str]] = None,
        request_type: Optional[str] = None,
    ) -> Optional[Variant]:
        """ユーザーのバリアントを返す

        テストがない・running でない・最大期間を超過した・
        対象条件を満たさない・トラフィック対象外の場合は None。
        """
        config = self.store.find_test(test_id)
        if config is None or config.status != ABTestStatus.RUNNING:
            return None
        if self._is_expired(config):
            return None

        if not self.assigner.is_eligible(config, user_segments, request_type):
            return None

        return self.store.assign_once(
            test_id,
            user_id,
            lambda current: self.assigner.compute(current, user_id),
        )

    def get_variant_config(self, test_id: str, variant: Variant) -> Optional[VariantConfig]:
        config = self.store.find_test(test_id)
        if config is None:
            return None
        return config.variant(Variant(variant))

    def find_assignment(
        self,
        user_id: str,
        request_type: Optional[str] = None,
        user_segments: Optional[Iterable[str]] = None,
    ) -> Optional[Tuple[ABTestConfig, Variant]]:
        """ユーザーを割り当てる最初の running テスト（開始が古い順）"""
        segments = list(user_segments) if user_segments is not None else None
        running = sorted(
            self.get_running_tests(),
            key=lambda c: (c.start_time or 0.0, c.id),
        )
        for config in running:
            variant = self.assign_variant(config.id, user_id, segments, request_type)
            if variant is not None:
                return self.store.get_test(config.id), variant
        return None

    def get_all_tests(self) -> List[ABTestConfig]:
        return self.store.get_all_tests()

    def get_running_tests(self) -> List[ABTestConfig]:
        return self.store.get_running_tests()

    # ===== 定期分析 =====

    def run_periodic_analysis(self) -> None:
        """running のテストを分析し自動停止を適用（テストごとに失敗を隔離）"""
        for config in self.get_running_tests():
            try:
                if config.auto_stop.enabled or self.store.is_analysis_stale(config.id):
                    analysis = self.analyze_test(config.id)
                else:
                    analysis = self.store.get_cached_analysis(config.id)
                self.apply_auto_stop(config.id, analysis)
            except Exception:
                logger.exception(f"A/Bテストの定期分析に失敗: test_id={config.id}")

    def apply_auto_stop(
        self,
        test_id: str,
        analysis: Optional[ABTestAnalysis],
    ) -> Optional[ABTestStatus]:
        """自動停止ルールを評価

        最大期間の超過はポリシーの有効・無効にかかわらず停止する。
        勝者による完了と futility による停止はポリシー有効時のみ。

        Returns:
            遷移した場合は新しい状態、しなかった場合は None
        """
        config = self.store.get_test(test_id)
        policy = config.auto_stop
        if config.status != ABTestStatus.RUNNING:
            return None

        is_significant = analysis is not None and analysis.is_significant
        if policy.enabled and is_significant and abs(analysis.effect) >= policy.winner_threshold:
            winner = analysis.winner
            self.store.complete_test(
                test_id,
                reason=(
                    f"Significant winner: variant {winner.value if winner else '-'} "
                    f"(effect={analysis.effect:.4f}, p={analysis.p_value:.4g})"
                ),
                winner=winner,
            )
            return ABTestStatus.COMPLETED

        if self._is_expired(config):
            self.store.stop_test(test_id, DURATION_EXPIRED_REASON)
            return ABTestStatus.STOPPED

        elapsed = self._elapsed(config)
        futility_bound = policy.futility_threshold * config.max_duration_seconds
        if policy.enabled and not is_significant and elapsed >= futility_bound:
            self.store.stop_test(
                test_id,
                f"Futility: no significant difference after {elapsed:.0f}s "
                f"({policy.futility_threshold:.0%} of max duration)",
            )
            return ABTestStatus.STOPPED

        return None

    def _elapsed(self, config: ABTestConfig) -> float:
        if config.start_time is None:
            return 0.0
        return self._clock() - config.start_time

    def _is_expired(self, config: ABTestConfig) -> bool:
        return self._elapsed(config) > config.max_duration_seconds

    # ===== 後始末 =====

    def destroy(self) -> None:
        """定期分析を停止（何度呼んでもよい）"""
        if self._destroyed:
            return
        self._destroyed = True
        self.scheduler.stop()
        logger.info("ABTestingFramework を破棄")

    def __enter__(self) -> "ABTestingFramework":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.destroy()
