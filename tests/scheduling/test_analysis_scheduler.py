# PeriodicAnalysisScheduler テスト
"""
定期分析スケジューラーの単体テスト

検証観点:
- ティックごとのコールバック実行と例外の隔離
- バックグラウンドスレッドの開始・停止（冪等）
"""

import threading
from unittest.mock import MagicMock

import pytest

from src.scheduling.analysis_scheduler import PeriodicAnalysisScheduler


class TestInit:
    """初期化のテスト"""

    @pytest.mark.parametrize("interval", [0, -1.0])
    def test_non_positive_interval_rejected(self, interval):
        with pytest.raises(ValueError):
            PeriodicAnalysisScheduler(MagicMock(), interval)

    def test_not_running_initially(self):
        scheduler = PeriodicAnalysisScheduler(MagicMock(), 1.0)

        assert not scheduler.is_running
        assert scheduler.tick_count == 0


class TestTick:
    """tick のテスト"""

    def test_tick_calls_callback(self):
        callback = MagicMock()
        scheduler = PeriodicAnalysisScheduler(callback, 1.0)

        scheduler.tick()
        scheduler.tick()

        assert callback.call_count == 2
        assert scheduler.tick_count == 2

    def test_tick_swallows_exception(self):
        """コールバックの例外はログに残して次のティックへ"""
        callback = MagicMock(side_effect=[RuntimeError("boom"), None])
        scheduler = PeriodicAnalysisScheduler(callback, 1.0)

        scheduler.tick()
        scheduler.tick()

        assert callback.call_count == 2


class TestBackgroundThread:
    """バックグラウンドスレッドのテスト"""

    def test_runs_periodically(self):
        """間隔ごとにコールバックが呼ばれる"""
        fired = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            if len(calls) >= 3:
                fired.set()

        scheduler = PeriodicAnalysisScheduler(callback, 0.01)
        scheduler.start()
        try:
            assert fired.wait(timeout=5.0)
        finally:
            scheduler.stop()

        assert len(calls) >= 3
        assert not scheduler.is_running

    def test_keeps_running_after_failure(self):
        """例外が出てもスケジューラーは止まらない"""
        fired = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")
            fired.set()

        scheduler = PeriodicAnalysisScheduler(callback, 0.01)
        scheduler.start()
        try:
            assert fired.wait(timeout=5.0)
        finally:
            scheduler.stop()

    def test_start_is_idempotent(self):
        scheduler = PeriodicAnalysisScheduler(MagicMock(), 60.0)
        scheduler.start()
        try:
            thread = scheduler._thread
            scheduler.start()

            assert scheduler._thread is thread
        finally:
            scheduler.stop()

    def test_stop_is_idempotent(self):
        scheduler = PeriodicAnalysisScheduler(MagicMock(), 60.0)
        scheduler.start()

        scheduler.stop()
        scheduler.stop()

        assert not scheduler.is_running

    def test_stop_without_start(self):
        PeriodicAnalysisScheduler(MagicMock(), 60.0).stop()

    def test_stop_does_not_wait_for_interval(self):
        """長い間隔でも stop はすぐに戻る"""
        callback = MagicMock()
        scheduler = PeriodicAnalysisScheduler(callback, 3600.0)
        scheduler.start()
        thread = scheduler._thread

        scheduler.stop(timeout=5.0)

        assert not thread.is_alive()
        callback.assert_not_called()

    def test_restart_after_stop(self):
        fired = threading.Event()
        scheduler = PeriodicAnalysisScheduler(fired.set, 0.01)
        scheduler.start()
        scheduler.stop()

        scheduler.start()
        try:
            assert fired.wait(timeout=5.0)
        finally:
            scheduler.stop()
