# A/Bテストのストア
"""
ExperimentStore: テスト設定・結果ログ・割り当ての所有者

状態遷移:
    draft → running
    running → paused / completed / stopped
    paused → running / completed / stopped
    completed, stopped は終端

排他制御:
    - レジストリロック: テストの追加と検索のみ
    - テストごとのロック: 設定の置き換え、結果の追記、割り当て
    異なるテストへの操作は並行に進む。分析は snapshot_results() の
    コピーに対して行うため、追記と競合しない。
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from src.ab_testing.errors import (
    DuplicateTest,
    InvalidStateTransition,
    TestNotFound,
    TestNotRunning,
)
from src.ab_testing.models import (
    ABTestAnalysis,
    ABTestConfig,
    ABTestResult,
    ABTestStatus,
    Variant,
)
from src.ab_testing.repository import ExperimentRepository, InMemoryExperimentRepository

logger = logging.getLogger(__name__)

START_FROM: FrozenSet[ABTestStatus] = frozenset({ABTestStatus.DRAFT, ABTestStatus.PAUSED})
PAUSE_FROM: FrozenSet[ABTestStatus] = frozenset({ABTestStatus.RUNNING})
END_FROM: FrozenSet[ABTestStatus] = frozenset({ABTestStatus.RUNNING, ABTestStatus.PAUSED})


@dataclass
class _TestState:
    config: ABTestConfig
    results: List[ABTestResult] = field(default_factory=list)
    assignments: Dict[str, Optional[Variant]] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)
    cached_analysis: Optional[ABTestAnalysis] = None
    analyzed_result_count: int = -1


class ExperimentStore:
    """A/Bテストのインメモリレジストリ（リポジトリへライトスルー）

    使用例:
        store = ExperimentStore()
        store.create_test(config)
        store.start_test(config.id)
        store.record_result(result)
        results = store.snapshot_results(config.id)

    Attributes:
        repository: 永続化先
    """

    def __init__(
        self,
        repository: Optional[ExperimentRepository] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository or InMemoryExperimentRepository()
        self._clock = clock
        self._tests: Dict[str, _TestState] = {}
        self._registry_lock = threading.Lock()

    def restore(self) -> int:
        """リポジトリから全テストを読み込む

        Returns:
            読み込んだテスト数
        """
        stored = self.repository.load_all()
        with self._registry_lock:
            for experiment in stored:
                self._tests[experiment.config.id] = _TestState(
                    config=experiment.config,
                    results=list(experiment.results),
                    assignments=dict(experiment.assignments),
                )
        logger.info(f"A/Bテストを復元: {len(stored)}件")
        return len(stored)

    # ===== ライフサイクル =====

    def create_test(self, config: ABTestConfig) -> ABTestConfig:
        """テストを draft で登録

        Raises:
            InvalidTestConfig: 設定が不正な場合
            DuplicateTest: 同じIDが登録済みの場合
        """
        config.validate()
        config = replace(
            config,
            status=ABTestStatus.DRAFT,
            start_time=None,
            end_time=None,
            stop_reason=None,
            winner=None,
        )

        with self._registry_lock:
            if config.id in self._tests:
                raise DuplicateTest(f"Test {config.id} already exists")
            state = _TestState(config=config)
            self._tests[config.id] = state

        # 永続化に失敗したテストはメモリにも残さない
        try:
            with state.lock:
                self.repository.save_config(config)
        except Exception:
            with self._registry_lock:
                if self._tests.get(config.id) is state:
                    del self._tests[config.id]
            raise

        logger.info(f"A/Bテストを作成: id={config.id}, name={config.name}")
        return config

    def start_test(self, test_id: str) -> ABTestConfig:
        """draft / paused のテストを running にする（start_time は初回のみ記録）

        Raises:
            TestNotFound: テストがない場合
            InvalidStateTransition: draft / paused 以外の場合
        """
        def _apply(config: ABTestConfig) -> ABTestConfig:
            start_time = config.start_time if config.start_time is not None else self._clock()
            return config.with_status(ABTestStatus.RUNNING, start_time=start_time)

        return self._transition(test_id, START_FROM, "start", _apply)

    def pause_test(self, test_id: str) -> ABTestConfig:
        """running のテストを一時停止"""
        return self._transition(
            test_id,
            PAUSE_FROM,
            "pause",
            lambda config: config.with_status(ABTestStatus.PAUSED),
        )

    def stop_test(self, test_id: str, reason: str = "Manual stop") -> ABTestConfig:
        """running / paused のテストを stopped にする"""
        return self._transition(
            test_id,
            END_FROM,
            "stop",
            lambda config: config.with_status(
                ABTestStatus.STOPPED, end_time=self._clock(), stop_reason=reason
            ),
        )

    def complete_test(
        self,
        test_id: str,
        reason: str = "Completed",
        winner: Optional[Variant] = None,
    ) -> ABTestConfig:
        """running / paused のテストを completed にする"""
        return self._transition(
            test_id,
            END_FROM,
            "complete",
            lambda config: config.with_status(
                ABTestStatus.COMPLETED,
                end_time=self._clock(),
                stop_reason=reason,
                winner=winner,
            ),
        )

    def update_variant_weights(self, test_id: str, weight_a: float, weight_b: float) -> ABTestConfig:
        """バリアントの重みを変更（既存の割り当てには影響しない）

        Raises:
            InvalidTestConfig: 重みが不正な場合
            InvalidStateTransition: 終了済みのテストの場合
        """
        state = self._get_state(test_id)
        with state.lock:
            if state.config.is_terminal:
                raise InvalidStateTransition(
                    f"Cannot change weights of test {test_id} in '{state.config.status.value}' status"
                )
            updated = replace(
                state.config,
                variant_a=replace(state.config.variant_a, weight=weight_a),
                variant_b=replace(state.config.variant_b, weight=weight_b),
            )
            updated.validate()
            state.config = updated
            self.repository.save_config(updated)

        logger.info(f"重みを変更: test_id={test_id}, A={weight_a}, B={weight_b}")
        return updated

    # ===== 結果 =====

    def record_result(self, result: ABTestResult) -> None:
        """結果を追記（分析は行わない）

        Raises:
            TestNotFound: テストがない場合
            TestNotRunning: running でない場合
        """
        state = self._get_state(result.test_id)
        with state.lock:
            if state.config.status != ABTestStatus.RUNNING:
                raise TestNotRunning(
                    f"Test {result.test_id} is '{state.config.status.value}', not running"
                )
            self.repository.append_result(result)
            state.results.append(result)

        logger.debug(
            f"結果を記録: test_id={result.test_id}, variant={result.variant.value}, "
            f"request_id={result.request_id}"
        )

    def snapshot_results(self, test_id: str) -> Tuple[ABTestResult, ...]:
        """現時点の結果ログのコピー"""
        state = self._get_state(test_id)
        with state.lock:
            return tuple(state.results)

    def result_count(self, test_id: str) -> int:
        state = self._get_state(test_id)
        with state.lock:
            return len(state.results)

    def result_counts(self, test_id: str) -> Dict[Variant, int]:
        """バリアントごとの結果件数"""
        counts = {Variant.A: 0, Variant.B: 0}
        for result in self.snapshot_results(test_id):
            counts[result.variant] += 1
        return counts

    # ===== 参照 =====

    def get_test(self, test_id: str) -> ABTestConfig:
        """
        Raises:
            TestNotFound: テストがない場合
        """
        state = self._get_state(test_id)
        with state.lock:
            return state.config

    def find_test(self, test_id: str) -> Optional[ABTestConfig]:
        with self._registry_lock:
            state = self._tests.get(test_id)
        if state is None:
            return None
        with state.lock:
            return state.config

    def get_all_tests(self) -> List[ABTestConfig]:
        with self._registry_lock:
            states = list(self._tests.values())
        configs = []
        for state in states:
            with state.lock:
                configs.append(state.config)
        return configs

    def get_running_tests(self) -> List[ABTestConfig]:
        return [c for c in self.get_all_tests() if c.status == ABTestStatus.RUNNING]

    # ===== 割り当て =====

    def get_assignment(self, test_id: str, user_id: str) -> Tuple[bool, Optional[Variant]]:
        """(割り当て済みか, バリアント)。対象外として確定した場合は (True, None)"""
        state = self._get_state(test_id)
        with state.lock:
            if user_id in state.assignments:
                return True, state.assignments[user_id]
            return False, None

    def save_assignment(self, test_id: str, user_id: str, variant: Optional[Variant]) -> Optional[Variant]:
        """未割り当てなら保存。既に割り当て済みなら既存の値を返す"""
        state = self._get_state(test_id)
        with state.lock:
            if user_id in state.assignments:
                return state.assignments[user_id]
            self.repository.save_assignment(test_id, user_id, variant)
            state.assignments[user_id] = variant
            return variant

    def assign_once(
        self,
        test_id: str,
        user_id: str,
        compute: Callable[[ABTestConfig], Optional[Variant]],
    ) -> Optional[Variant]:
        """メモ化された割り当てを返す。なければ compute で決めて保存

        同じ (test_id, user_id) への同時呼び出しでも compute は1回だけ実行される。
        """
        state = self._get_state(test_id)
        with state.lock:
            if user_id in state.assignments:
                return state.assignments[user_id]
            variant = compute(state.config)
            self.repository.save_assignment(test_id, user_id, variant)
            state.assignments[user_id] = variant
            return variant

    def assignment_counts(self, test_id: str) -> Dict[Optional[Variant], int]:
        """割り当て結果の件数（None は対象外）"""
        state = self._get_state(test_id)
        with state.lock:
            counts: Dict[Optional[Variant], int] = {Variant.A: 0, Variant.B: 0, None: 0}
            for variant in state.assignments.values():
                counts[variant] += 1
            return counts

    # ===== 分析キャッシュ =====

    def cache_analysis(self, test_id: str, analysis: ABTestAnalysis, result_count: int) -> None:
        """分析結果をキャッシュ（result_count は分析に使った結果件数）"""
        state = self._get_state(test_id)
        with state.lock:
            state.cached_analysis = analysis
            state.analyzed_result_count = result_count

    def get_cached_analysis(self, test_id: str) -> Optional[ABTestAnalysis]:
        state = self._get_state(test_id)
        with state.lock:
            return state.cached_analysis

    def is_analysis_stale(self, test_id: str) -> bool:
        """前回の分析以降に結果が追加された、または状態が変わったか"""
        state = self._get_state(test_id)
        with state.lock:
            return (
                state.cached_analysis is None
                or state.analyzed_result_count != len(state.results)
            )

    # ===== Private Methods =====

    def _get_state(self, test_id: str) -> _TestState:
        with self._registry_lock:
            state = self._tests.get(test_id)
        if state is None:
            raise TestNotFound(f"Test {test_id} not found")
        return state

    def _transition(
        self,
        test_id: str,
        allowed_from: FrozenSet[ABTestStatus],
        action: str,
        apply: Callable[[ABTestConfig], ABTestConfig],
    ) -> ABTestConfig:
        state = self._get_state(test_id)
        with state.lock:
            current = state.config.status
            if current not in allowed_from:
                raise InvalidStateTransition(
                    f"Cannot {action} test {test_id} in '{current.value}' status. "
                    f"Allowed from: {sorted(s.value for s in allowed_from)}"
                )
            updated = apply(state.config)
            self.repository.save_config(updated)
            state.config = updated
            # 推奨は状態にも依存するのでキャッシュを捨てる
            state.cached_analysis = None
            state.analyzed_result_count = -1

        logger.info(
            f"A/Bテストの状態遷移: id={test_id}, {current.value} → {updated.status.value}"
            + (f", reason={updated.stop_reason}" if updated.stop_reason and updated.is_terminal else "")
        )
        return updated
