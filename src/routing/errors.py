# ルーティングのエラー定義


class RoutingError(Exception):
    """ルーティングエラーの基底クラス

    Attributes:
        code: 使用量記録に残すエラーコード
    """

    code = "ROUTING_ERROR"


class ConstraintUnsatisfiable(RoutingError):
    """許可/拒否リストやティアによって候補が1件も残らない場合のエラー"""

    code = "CONSTRAINT_UNSATISFIABLE"


class NoCandidateMeetsConstraints(RoutingError):
    """コスト・品質・レイテンシ制約を満たす候補がない場合のエラー"""

    code = "NO_CANDIDATE_MEETS_CONSTRAINTS"


class FeatureNotAvailable(RoutingError):
    """ティアで機能が有効になっていない場合のエラー"""

    code = "FEATURE_NOT_AVAILABLE"


class RateLimitExceeded(RoutingError):
    """レート制限中の場合のエラー"""

    code = "RATE_LIMIT_EXCEEDED"
