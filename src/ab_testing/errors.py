# A/Bテストのエラー定義


class ABTestError(Exception):
    """A/Bテストエラーの基底クラス"""
    pass


class InvalidTestConfig(ABTestError, ValueError):
    """テスト設定が不正な場合のエラー"""
    pass


class DuplicateTest(ABTestError):
    """同じIDのテストが既に存在する場合のエラー"""
    pass


class TestNotFound(ABTestError):
    """テストが見つからない場合のエラー"""
    pass


class InvalidStateTransition(ABTestError):
    """許可されていない状態遷移の場合のエラー"""
    pass


class TestNotRunning(ABTestError):
    """running でないテストに結果を記録しようとした場合のエラー"""
    pass


class InsufficientData(ABTestError):
    """統計的有意性を判定できるだけのサンプルがない場合のエラー"""
    pass


# pytest がテストクラスとして収集しないようにする
TestNotFound.__test__ = False
TestNotRunning.__test__ = False
