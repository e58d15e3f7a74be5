"""Read-only access to carrier rule records.

The resolver depends only on :class:`RuleRepository`. Two implementations
ship here:

  - :class:`InMemoryRuleRepository` holds decoded rules in memory (tests,
    JSON rule sets, or a pre-warmed cache of the database).
  - :class:`SqlRuleRepository` reads the ORM tables in :mod:`freight_rules.models`.

Both apply the same candidate filter: carrier, active flag, effective window,
and wildcard scope matching. Neither orders its output.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..models import (
    CarrierAcceptanceRule,
    CarrierCategoryGroup,
    CarrierClassificationBand,
    CarrierPortGroup,
    CarrierSurchargeArticleMap,
    CarrierSurchargeRule,
    CarrierTransformRule,
)
from .errors import LookupFailure
from .types import (
    AcceptanceRule,
    CarrierRule,
    CategoryGroup,
    ClassificationBand,
    PortGroup,
    RuleKind,
    RuleScope,
    ScopeContext,
    SurchargeArticleMap,
    SurchargeRule,
    TransformRule,
)

logger = logging.getLogger(__name__)

__all__ = [
    "RuleRepository",
    "InMemoryRuleRepository",
    "SqlRuleRepository",
    "is_candidate",
]


class RuleRepository(Protocol):
    def fetch_active_candidates(
        self, kind: RuleKind, scope: ScopeContext, on: date
    ) -> List[CarrierRule]:
        """All effective rules of ``kind`` whose scope admits ``scope``, unordered."""
        ...

    def port_group_ids_for_port(self, carrier_id: int, port_id: int, on: date) -> FrozenSet[int]:
        ...

    def category_groups(self, carrier_id: int, on: date) -> List[CategoryGroup]:
        """Effective category groups for a carrier, highest priority first."""
        ...


def is_candidate(rule: CarrierRule, kind: RuleKind, scope: ScopeContext, on: date) -> bool:
    if rule.carrier_id != scope.carrier_id:
        return False
    if not rule.is_effective(on):
        return False
    if kind is RuleKind.ARTICLE_MAP and getattr(rule, "event_code", None) != scope.event_code:
        return False
    # min > max on any dimension is an authoring error; never offer it as a candidate.
    if kind is RuleKind.ACCEPTANCE and not rule.has_consistent_limits():
        return False
    return rule.scope.matches(scope)


def _group_order(groups: Iterable[CategoryGroup]) -> List[CategoryGroup]:
    return sorted(groups, key=lambda g: (-g.priority, g.id))


# -------------------------------
# In-memory
# -------------------------------

_KIND_BY_TYPE: Dict[type, RuleKind] = {
    AcceptanceRule: RuleKind.ACCEPTANCE,
    ClassificationBand: RuleKind.CLASSIFICATION,
    TransformRule: RuleKind.TRANSFORM,
    SurchargeRule: RuleKind.SURCHARGE,
    SurchargeArticleMap: RuleKind.ARTICLE_MAP,
}


class InMemoryRuleRepository:
    """Immutable rule set held in memory. Safe to share across threads."""

    def __init__(
        self,
        rules: Iterable[CarrierRule] = (),
        *,
        category_groups: Iterable[CategoryGroup] = (),
        port_groups: Iterable[PortGroup] = (),
    ):
        buckets: Dict[RuleKind, List[CarrierRule]] = {kind: [] for kind in RuleKind}
        for rule in rules:
            kind = next((k for t, k in _KIND_BY_TYPE.items() if isinstance(rule, t)), None)
            if kind is None:
                raise TypeError(f"unsupported rule type: {type(rule).__name__}")
            buckets[kind].append(rule)
        self._rules: Dict[RuleKind, Tuple[CarrierRule, ...]] = {k: tuple(v) for k, v in buckets.items()}
        self._category_groups: Tuple[CategoryGroup, ...] = tuple(category_groups)
        self._port_groups: Tuple[PortGroup, ...] = tuple(port_groups)

    def rules(self, kind: RuleKind) -> Tuple[CarrierRule, ...]:
        return self._rules[kind]

    def fetch_active_candidates(
        self, kind: RuleKind, scope: ScopeContext, on: date
    ) -> List[CarrierRule]:
        return [r for r in self._rules[kind] if is_candidate(r, kind, scope, on)]

    def port_group_ids_for_port(self, carrier_id: int, port_id: int, on: date) -> FrozenSet[int]:
        return frozenset(
            g.id
            for g in self._port_groups
            if g.carrier_id == carrier_id and port_id in g.port_ids and g.is_effective(on)
        )

    def category_groups(self, carrier_id: int, on: date) -> List[CategoryGroup]:
        return _group_order(
            g for g in self._category_groups if g.carrier_id == carrier_id and g.is_effective(on)
        )


# -------------------------------
# SQLAlchemy
# -------------------------------

def _int_set(values: Optional[Sequence[Any]]) -> Optional[List[int]]:
    # Scope id lists arrive as ints or numeric strings depending on who wrote them.
    if not values:
        return None
    return [int(v) for v in values]


def _row_scope(row: Any) -> RuleScope:
    return RuleScope.build(
        port_ids=_int_set(row.port_ids),
        port_group_ids=_int_set(row.port_group_ids),
        vehicle_categories=row.vehicle_categories or None,
        category_group_ids=_int_set(row.category_group_ids),
        vessel_names=row.vessel_names or None,
        vessel_classes=row.vessel_classes or None,
    )


def _common(row: Any) -> Dict[str, Any]:
    return {
        "id": row.id,
        "carrier_id": row.carrier_id,
        "scope": _row_scope(row),
        "priority": row.priority or 0,
        "effective_from": row.effective_from,
        "effective_to": row.effective_to,
        "is_active": bool(row.is_active),
    }


def _acceptance_from_row(row: CarrierAcceptanceRule) -> AcceptanceRule:
    return AcceptanceRule(
        **_common(row),
        name=row.name,
        min_length_cm=row.min_length_cm,
        min_width_cm=row.min_width_cm,
        min_height_cm=row.min_height_cm,
        min_cbm=row.min_cbm,
        min_weight_kg=row.min_weight_kg,
        max_length_cm=row.max_length_cm,
        max_width_cm=row.max_width_cm,
        max_height_cm=row.max_height_cm,
        max_cbm=row.max_cbm,
        max_weight_kg=row.max_weight_kg,
        min_is_hard=bool(row.min_is_hard),
        soft_max_height_cm=row.soft_max_height_cm,
        soft_height_requires_approval=bool(row.soft_height_requires_approval),
        soft_max_weight_kg=row.soft_max_weight_kg,
        soft_weight_requires_approval=bool(row.soft_weight_requires_approval),
        must_be_empty=bool(row.must_be_empty),
        must_be_self_propelled=bool(row.must_be_self_propelled),
    )


def _band_from_row(row: CarrierClassificationBand) -> ClassificationBand:
    return ClassificationBand(
        **_common(row),
        outcome_vehicle_category=row.outcome_vehicle_category,
        min_cbm=row.min_cbm,
        max_cbm=row.max_cbm,
        max_height_cm=row.max_height_cm,
        rule_logic=row.rule_logic or "AND",
    )


def _transform_from_row(row: CarrierTransformRule) -> TransformRule:
    return TransformRule.from_record(**_common(row), transform_code=row.transform_code, params=row.params)


def _surcharge_from_row(row: CarrierSurchargeRule) -> SurchargeRule:
    return SurchargeRule.from_record(
        **_common(row),
        event_code=row.event_code,
        name=row.name,
        calc_mode=row.calc_mode,
        params=row.params,
    )


def _article_map_from_row(row: CarrierSurchargeArticleMap) -> SurchargeArticleMap:
    return SurchargeArticleMap(
        **_common(row),
        event_code=row.event_code,
        article_id=row.article_id,
        qty_mode=row.qty_mode,
    )


_TABLES: Dict[RuleKind, Tuple[Any, Callable[[Any], CarrierRule]]] = {
    RuleKind.ACCEPTANCE: (CarrierAcceptanceRule, _acceptance_from_row),
    RuleKind.CLASSIFICATION: (CarrierClassificationBand, _band_from_row),
    RuleKind.TRANSFORM: (CarrierTransformRule, _transform_from_row),
    RuleKind.SURCHARGE: (CarrierSurchargeRule, _surcharge_from_row),
    RuleKind.ARTICLE_MAP: (CarrierSurchargeArticleMap, _article_map_from_row),
}


class SqlRuleRepository:
    """
    Rule lookup against the carrier rule tables.

    Carrier, active flag and effective window are filtered in SQL; the JSON
    scope lists are matched in Python so SQLite and Postgres behave the same.
    Driver errors surface as :class:`LookupFailure`.
    """

    def __init__(self, db: Session):
        self.db = db
        # key: (carrier_id, port_id, date)
        self._port_group_cache: Dict[Tuple[int, int, date], FrozenSet[int]] = {}

    @staticmethod
    def _effective(model: Any, on: date) -> List[Any]:
        return [
            model.is_active.is_(True),
            or_(model.effective_from.is_(None), model.effective_from <= on),
            or_(model.effective_to.is_(None), model.effective_to >= on),
        ]

    def fetch_active_candidates(
        self, kind: RuleKind, scope: ScopeContext, on: date
    ) -> List[CarrierRule]:
        model, convert = _TABLES[kind]
        stmt = select(model).where(model.carrier_id == scope.carrier_id, *self._effective(model, on))
        if kind is RuleKind.ARTICLE_MAP:
            stmt = stmt.where(model.event_code == scope.event_code)
        try:
            rows = self.db.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise LookupFailure(kind.value, scope.carrier_id) from exc

        rules = [convert(row) for row in rows]
        return [r for r in rules if is_candidate(r, kind, scope, on)]

    def port_group_ids_for_port(self, carrier_id: int, port_id: int, on: date) -> FrozenSet[int]:
        key = (carrier_id, port_id, on)
        if key in self._port_group_cache:
            return self._port_group_cache[key]

        stmt = (
            select(CarrierPortGroup)
            .options(selectinload(CarrierPortGroup.members))
            .where(CarrierPortGroup.carrier_id == carrier_id, *self._effective(CarrierPortGroup, on))
        )
        try:
            groups = self.db.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise LookupFailure("port_group", carrier_id) from exc

        ids = frozenset(
            g.id for g in groups if any(m.is_active and m.port_id == port_id for m in g.members)
        )
        self._port_group_cache[key] = ids
        return ids

    def category_groups(self, carrier_id: int, on: date) -> List[CategoryGroup]:
        stmt = (
            select(CarrierCategoryGroup)
            .options(selectinload(CarrierCategoryGroup.members))
            .where(
                CarrierCategoryGroup.carrier_id == carrier_id,
                *self._effective(CarrierCategoryGroup, on),
            )
        )
        try:
            rows = self.db.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise LookupFailure("category_group", carrier_id) from exc

        return _group_order(
            CategoryGroup(
                id=row.id,
                carrier_id=row.carrier_id,
                code=row.code,
                display_name=row.display_name,
                members=frozenset(m.vehicle_category for m in row.members if m.is_active),
                priority=row.priority or 0,
                effective_from=row.effective_from,
                effective_to=row.effective_to,
                is_active=bool(row.is_active),
            )
            for row in rows
        )
