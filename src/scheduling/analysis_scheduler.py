# 定期分析スケジューラー
"""
PeriodicAnalysisScheduler: 一定間隔でコールバックを実行するバックグラウンドスレッド

リクエスト処理とは独立に動き、分析が遅くてもリクエストを止めない。
stop() は何度呼んでもよく、スレッドの終了を待ってタイマーを解放する。
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicAnalysisScheduler:
    """定期実行スケジューラー

    使用例:
        scheduler = PeriodicAnalysisScheduler(framework.run_periodic_analysis, 60.0)
        scheduler.start()
        ...
        scheduler.stop()

    Attributes:
        callback: 各ティックで呼ぶ関数
        interval_seconds: 実行間隔（秒）
        name: スレッド名
    """

    def __init__(
        self,
        callback: Callable[[], None],
        interval_seconds: float,
        name: str = "ab-test-analysis",
    ):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds は正の数である必要があります: {interval_seconds}")
        self.callback = callback
        self.interval_seconds = interval_seconds
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.tick_count = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """バックグラウンドスレッドを開始（実行中なら何もしない）"""
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.info(f"定期分析を開始: name={self.name}, interval={self.interval_seconds}秒")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """停止してスレッドの終了を待つ（冪等）"""
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()

        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.info(f"定期分析を停止: name={self.name}")

    def tick(self) -> None:
        """コールバックを1回実行（例外はログに残して握りつぶす）"""
        self.tick_count += 1
        try:
            self.callback()
        except Exception:
            logger.exception(f"定期分析でエラー: name={self.name}, tick={self.tick_count}")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.tick()
