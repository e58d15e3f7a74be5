"""JSON rule-set loader.

A rule set is one JSON object holding every record a carrier rule engine
needs, keyed by record kind::

    {
      "category_groups": [...],
      "port_groups": [...],
      "acceptance_rules": [...],
      "classification_bands": [...],
      "transform_rules": [...],
      "surcharge_rules": [...],
      "article_maps": [...]
    }

Every section is optional. Scope lists use the same field names as the
database columns (``port_ids``, ``vehicle_categories`` ...).
"""
from __future__ import annotations

import json
import os
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..settings import Settings
from .repository import InMemoryRuleRepository
from .types import (
    AcceptanceRule,
    CarrierRule,
    CategoryGroup,
    ClassificationBand,
    PortGroup,
    RuleScope,
    SurchargeArticleMap,
    SurchargeRule,
    TransformRule,
)

__all__ = [
    "MissingRuleField",
    "load_rule_set",
]


class MissingRuleField(KeyError):
    """Raised when a rule-set record lacks a required field."""

    def __init__(self, field_path: str):
        super().__init__(field_path)
        self.field_path = field_path

    def __str__(self) -> str:  # pragma: no cover - inherited KeyError repr is noisy
        return f"missing required rule field: {self.field_path}"


_SCOPE_KEYS = (
    "port_ids",
    "port_group_ids",
    "vehicle_categories",
    "category_group_ids",
    "vessel_names",
    "vessel_classes",
)

_REQUIRED_RULE_KEYS = {"id", "carrier_id"}
_REQUIRED_KEYS: Dict[str, set] = {
    "category_groups": {"id", "carrier_id", "code"},
    "port_groups": {"id", "carrier_id", "code"},
    "acceptance_rules": set(_REQUIRED_RULE_KEYS),
    "classification_bands": _REQUIRED_RULE_KEYS | {"outcome_vehicle_category"},
    "transform_rules": _REQUIRED_RULE_KEYS | {"transform_code"},
    "surcharge_rules": _REQUIRED_RULE_KEYS | {"event_code", "name", "calc_mode"},
    "article_maps": _REQUIRED_RULE_KEYS | {"event_code", "article_id"},
}

_ACCEPTANCE_FIELDS = (
    "name",
    "min_length_cm", "min_width_cm", "min_height_cm", "min_cbm", "min_weight_kg",
    "max_length_cm", "max_width_cm", "max_height_cm", "max_cbm", "max_weight_kg",
    "min_is_hard",
    "soft_max_height_cm", "soft_height_requires_approval",
    "soft_max_weight_kg", "soft_weight_requires_approval",
    "must_be_empty", "must_be_self_propelled",
)


def _resolve_rules_path(path: str | os.PathLike[str] | None) -> Path:
    if path is not None:
        return Path(path)
    override = Settings().rules_path
    if override:
        return Path(override)
    raise ValueError("no rule-set path given and CARRIER_RULES_PATH is not set")


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value), "%Y-%m-%d").date()


def _ensure_keys(section: str, index: int, record: Mapping[str, Any]) -> None:
    if not isinstance(record, Mapping):
        raise ValueError(f"invalid record {section}[{index}]: expected an object")
    for key in sorted(_REQUIRED_KEYS[section]):
        if key not in record:
            raise MissingRuleField(f"{section}[{index}].{key}")


def _normalise_common(record: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": int(record["id"]),
        "carrier_id": int(record["carrier_id"]),
        "scope": RuleScope.build(**{key: record.get(key) for key in _SCOPE_KEYS}),
        "priority": int(record.get("priority") or 0),
        "effective_from": _parse_date(record.get("effective_from")),
        "effective_to": _parse_date(record.get("effective_to")),
        "is_active": bool(record.get("is_active", True)),
    }


def _acceptance(record: Mapping[str, Any]) -> AcceptanceRule:
    extra = {key: record[key] for key in _ACCEPTANCE_FIELDS if key in record}
    return AcceptanceRule(**_normalise_common(record), **extra)


def _band(record: Mapping[str, Any]) -> ClassificationBand:
    return ClassificationBand(
        **_normalise_common(record),
        outcome_vehicle_category=record["outcome_vehicle_category"],
        min_cbm=record.get("min_cbm"),
        max_cbm=record.get("max_cbm"),
        max_height_cm=record.get("max_height_cm"),
        rule_logic=record.get("rule_logic") or "AND",
    )


def _transform(record: Mapping[str, Any]) -> TransformRule:
    return TransformRule.from_record(
        **_normalise_common(record),
        transform_code=record["transform_code"],
        params=record.get("params"),
    )


def _surcharge(record: Mapping[str, Any]) -> SurchargeRule:
    return SurchargeRule.from_record(
        **_normalise_common(record),
        event_code=record["event_code"],
        name=record["name"],
        calc_mode=record["calc_mode"],
        params=record.get("params"),
        exclusive_group=record.get("exclusive_group"),
    )


def _article_map(record: Mapping[str, Any]) -> SurchargeArticleMap:
    return SurchargeArticleMap(
        **_normalise_common(record),
        event_code=record["event_code"],
        article_id=int(record["article_id"]),
        qty_mode=record.get("qty_mode"),
    )


_RULE_SECTIONS: Dict[str, Callable[[Mapping[str, Any]], CarrierRule]] = {
    "acceptance_rules": _acceptance,
    "classification_bands": _band,
    "transform_rules": _transform,
    "surcharge_rules": _surcharge,
    "article_maps": _article_map,
}


def _section(data: Mapping[str, Any], name: str) -> List[Mapping[str, Any]]:
    records = data.get(name) or []
    if not isinstance(records, list):
        raise ValueError(f"rule-set section {name!r} must be a list")
    for index, record in enumerate(records):
        _ensure_keys(name, index, record)
    return records


@lru_cache(maxsize=None)
def _load_rule_set(path_str: str) -> InMemoryRuleRepository:
    path = Path(path_str)
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, Mapping):
        raise ValueError("rule set must be a JSON object of record sections")

    rules: List[CarrierRule] = []
    for name, build in _RULE_SECTIONS.items():
        rules.extend(build(record) for record in _section(data, name))

    category_groups = [
        CategoryGroup(
            id=int(g["id"]),
            carrier_id=int(g["carrier_id"]),
            code=g["code"],
            display_name=g.get("display_name"),
            members=frozenset(g.get("members") or ()),
            priority=int(g.get("priority") or 0),
            effective_from=_parse_date(g.get("effective_from")),
            effective_to=_parse_date(g.get("effective_to")),
            is_active=bool(g.get("is_active", True)),
        )
        for g in _section(data, "category_groups")
    ]
    port_groups = [
        PortGroup(
            id=int(g["id"]),
            carrier_id=int(g["carrier_id"]),
            code=g["code"],
            port_ids=frozenset(int(p) for p in g.get("port_ids") or ()),
            effective_from=_parse_date(g.get("effective_from")),
            effective_to=_parse_date(g.get("effective_to")),
            is_active=bool(g.get("is_active", True)),
        )
        for g in _section(data, "port_groups")
    ]
    return InMemoryRuleRepository(rules, category_groups=category_groups, port_groups=port_groups)


def load_rule_set(path: str | os.PathLike[str] | None = None) -> InMemoryRuleRepository:
    """Load (once per path) the rule set at ``path`` or ``$CARRIER_RULES_PATH``."""

    resolved = _resolve_rules_path(path)
    return _load_rule_set(str(resolved))
