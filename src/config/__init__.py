# Config モジュール
from src.config.routing_config import (
    OPTIMIZATION_TYPES,
    PROVIDER_API_KEY_ENV,
    TIER_LIMITS,
    TIER_MODEL_ACCESS,
    RoutingConfig,
)

__all__ = [
    "RoutingConfig",
    "OPTIMIZATION_TYPES",
    "PROVIDER_API_KEY_ENV",
    "TIER_LIMITS",
    "TIER_MODEL_ACCESS",
]
