"""YAML loading and minimal schema validation for CLI."""

from __future__ import annotations

from typing import Any, Dict, List

import yaml

from src.ab_testing.models import MetricName
from src.models.routing import Provider, VALID_ROLES
from src.config.routing_config import OPTIMIZATION_TYPES

VALID_PROVIDERS = {p.value for p in Provider}
VALID_METRICS = {m.value for m in MetricName}


class YamlValidationError(ValueError):
    """YAML schema validation error."""


def load_yaml(path: str) -> Dict[str, Any]:
    """Load YAML file and return data."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise YamlValidationError("YAMLのルートはオブジェクトである必要があります")
    return data


def validate_routing_request(data: Dict[str, Any]) -> None:
    """Validate routing request YAML data."""
    _require_fields(data, ["messages"])

    messages = data["messages"]
    if not isinstance(messages, list) or not messages:
        raise YamlValidationError("messages は1件以上の配列で指定してください")
    for message in messages:
        if not isinstance(message, dict):
            raise YamlValidationError("messages の要素はオブジェクトで指定してください")
        _require_fields(message, ["role", "content"], prefix="messages")
        if message["role"] not in VALID_ROLES:
            raise YamlValidationError("messages.role は system/user/assistant のいずれかです")
        if not isinstance(message["content"], str) or not message["content"]:
            raise YamlValidationError("messages.content は空でない文字列で指定してください")

    optimize_for = data.get("optimize_for")
    if optimize_for is not None and optimize_for not in OPTIMIZATION_TYPES:
        raise YamlValidationError(f"optimize_for は {'/'.join(OPTIMIZATION_TYPES)} のいずれかです")

    constraints = data.get("constraints")
    if constraints is None:
        return
    if not isinstance(constraints, dict):
        raise YamlValidationError("constraints はオブジェクトで指定してください")
    for key in ("max_cost", "min_quality", "max_response_time"):
        value = constraints.get(key)
        if value is not None and not isinstance(value, (int, float)):
            raise YamlValidationError(f"constraints.{key} は数値で指定してください")
    for key in ("preferred_providers", "excluded_providers"):
        _validate_providers(constraints.get(key), f"constraints.{key}")


def validate_ab_test_config(data: Dict[str, Any]) -> None:
    """Validate A/B test config YAML data."""
    _require_fields(data, ["id", "name", "variant_a", "variant_b"])

    if not isinstance(data["id"], str) or not data["id"]:
        raise YamlValidationError("id は文字列で指定してください")
    if not isinstance(data["name"], str) or not data["name"]:
        raise YamlValidationError("name は文字列で指定してください")

    for key in ("variant_a", "variant_b"):
        variant = data[key]
        if not isinstance(variant, dict):
            raise YamlValidationError(f"{key} はオブジェクトで指定してください")
        _require_fields(variant, ["provider", "model"], prefix=key)
        if str(variant["provider"]).upper() not in VALID_PROVIDERS:
            raise YamlValidationError(
                f"{key}.provider は {'/'.join(sorted(VALID_PROVIDERS))} のいずれかです"
            )
        weight = variant.get("weight", 1.0)
        if not isinstance(weight, (int, float)) or weight < 0:
            raise YamlValidationError(f"{key}.weight は0以上の数値で指定してください")

    primary = data.get("primary_metric")
    if primary is not None and primary not in VALID_METRICS:
        raise YamlValidationError(f"primary_metric は {'/'.join(sorted(VALID_METRICS))} のいずれかです")

    secondary = data.get("secondary_metrics")
    if secondary is not None:
        if not isinstance(secondary, list) or not all(m in VALID_METRICS for m in secondary):
            raise YamlValidationError("secondary_metrics はメトリクス名の配列で指定してください")

    simulation = data.get("simulation")
    if simulation is not None:
        if not isinstance(simulation, dict):
            raise YamlValidationError("simulation はオブジェクトで指定してください")
        for key in ("variant_a", "variant_b"):
            profile = simulation.get(key)
            if profile is not None and not isinstance(profile, dict):
                raise YamlValidationError(f"simulation.{key} はオブジェクトで指定してください")


def _validate_providers(value: Any, label: str) -> None:
    if value is None:
        return
    if not isinstance(value, list):
        raise YamlValidationError(f"{label} は配列で指定してください")
    invalid = [p for p in value if str(p).upper() not in VALID_PROVIDERS]
    if invalid:
        raise YamlValidationError(f"{label} に未知のプロバイダーがあります: {invalid}")


def _require_fields(data: Dict[str, Any], fields: List[str], prefix: str | None = None) -> None:
    missing = [field for field in fields if field not in data]
    if missing:
        label = f"{prefix}." if prefix else ""
        raise YamlValidationError(f"必須フィールドが不足しています: {', '.join(label + f for f in missing)}")
