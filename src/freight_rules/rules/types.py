# src/freight_rules/rules/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from .params import (
    CalcMode,
    FlatParams,
    SurchargeParams,
    TransformParams,
    decode_surcharge_params,
    decode_transform_params,
    parse_calc_mode,
)

OVERWIDTH_LM_RECALC = "OVERWIDTH_LM_RECALC"


# -------------------------------
# Helpers
# -------------------------------

def _to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _opt_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return _to_decimal(value)


def _money(x: Decimal | int | float | str) -> Decimal:
    return _to_decimal(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _scope_set(values: Optional[Iterable[Any]]) -> Optional[FrozenSet[Any]]:
    # Empty scope lists are stored as NULL upstream; both mean "any".
    if values is None:
        return None
    if isinstance(values, (str, int)):
        values = [values]
    normalised = frozenset(values)
    return normalised or None


def _coerce(obj: Any, names: Iterable[str], *, optional: bool) -> None:
    for name in names:
        raw = getattr(obj, name)
        value = _opt_decimal(raw) if optional else _to_decimal(raw)
        object.__setattr__(obj, name, value)


class AcceptanceStatus(Enum):
    ALLOWED = "ALLOWED"
    ALLOWED_UPON_REQUEST = "ALLOWED_UPON_REQUEST"
    NOT_ALLOWED = "NOT_ALLOWED"


class RuleKind(Enum):
    ACCEPTANCE = "acceptance"
    CLASSIFICATION = "classification"
    TRANSFORM = "transform"
    SURCHARGE = "surcharge"
    ARTICLE_MAP = "article_map"


# -------------------------------
# Scoping
# -------------------------------

@dataclass(frozen=True)
class ScopeContext:
    """Input side of a rule lookup: what the cargo/voyage actually is."""
    carrier_id: int
    port_id: Optional[int] = None
    vehicle_category: Optional[str] = None
    category_group_id: Optional[int] = None
    vessel_name: Optional[str] = None
    vessel_class: Optional[str] = None
    port_group_ids: FrozenSet[int] = frozenset()
    # Only article maps are keyed by event code.
    event_code: Optional[str] = None


@dataclass(frozen=True)
class RuleScope:
    """Rule side of a lookup. ``None`` on any dimension is a wildcard."""
    port_ids: Optional[FrozenSet[int]] = None
    port_group_ids: Optional[FrozenSet[int]] = None
    vehicle_categories: Optional[FrozenSet[str]] = None
    category_group_ids: Optional[FrozenSet[int]] = None
    vessel_names: Optional[FrozenSet[str]] = None
    vessel_classes: Optional[FrozenSet[str]] = None

    @classmethod
    def build(
        cls,
        *,
        port_ids: Optional[Iterable[int]] = None,
        port_group_ids: Optional[Iterable[int]] = None,
        vehicle_categories: Optional[Iterable[str]] = None,
        category_group_ids: Optional[Iterable[int]] = None,
        vessel_names: Optional[Iterable[str]] = None,
        vessel_classes: Optional[Iterable[str]] = None,
    ) -> "RuleScope":
        return cls(
            port_ids=_scope_set(port_ids),
            port_group_ids=_scope_set(port_group_ids),
            vehicle_categories=_scope_set(vehicle_categories),
            category_group_ids=_scope_set(category_group_ids),
            vessel_names=_scope_set(vessel_names),
            vessel_classes=_scope_set(vessel_classes),
        )

    @property
    def is_port_scoped(self) -> bool:
        return self.port_ids is not None or self.port_group_ids is not None

    def matches_port_directly(self, port_id: Optional[int]) -> bool:
        return port_id is not None and self.port_ids is not None and port_id in self.port_ids

    def matches_port_group(self, port_group_ids: FrozenSet[int]) -> bool:
        return self.port_group_ids is not None and bool(self.port_group_ids & port_group_ids)

    def matches(self, ctx: ScopeContext) -> bool:
        if self.is_port_scoped and not (
            self.matches_port_directly(ctx.port_id) or self.matches_port_group(ctx.port_group_ids)
        ):
            return False
        for allowed, value in (
            (self.vehicle_categories, ctx.vehicle_category),
            (self.category_group_ids, ctx.category_group_id),
            (self.vessel_names, ctx.vessel_name),
            (self.vessel_classes, ctx.vessel_class),
        ):
            if allowed is not None and value not in allowed:
                return False
        return True


# -------------------------------
# Rule records (read-only)
# -------------------------------

@dataclass(frozen=True)
class CarrierRule:
    id: int
    carrier_id: int
    scope: RuleScope = field(default_factory=RuleScope)
    priority: int = 0
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    is_active: bool = True

    def is_effective(self, on: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_from is not None and self.effective_from > on:
            return False
        if self.effective_to is not None and self.effective_to < on:
            return False
        return True


_ACCEPTANCE_LIMITS = (
    "min_length_cm", "min_width_cm", "min_height_cm", "min_cbm", "min_weight_kg",
    "max_length_cm", "max_width_cm", "max_height_cm", "max_cbm", "max_weight_kg",
    "soft_max_height_cm", "soft_max_weight_kg",
)


@dataclass(frozen=True)
class AcceptanceRule(CarrierRule):
    name: Optional[str] = None
    min_length_cm: Optional[Decimal] = None
    min_width_cm: Optional[Decimal] = None
    min_height_cm: Optional[Decimal] = None
    min_cbm: Optional[Decimal] = None
    min_weight_kg: Optional[Decimal] = None
    max_length_cm: Optional[Decimal] = None
    max_width_cm: Optional[Decimal] = None
    max_height_cm: Optional[Decimal] = None
    max_cbm: Optional[Decimal] = None
    max_weight_kg: Optional[Decimal] = None
    min_is_hard: bool = True
    soft_max_height_cm: Optional[Decimal] = None
    soft_height_requires_approval: bool = False
    soft_max_weight_kg: Optional[Decimal] = None
    soft_weight_requires_approval: bool = False
    must_be_empty: bool = False
    must_be_self_propelled: bool = False

    def __post_init__(self) -> None:
        _coerce(self, _ACCEPTANCE_LIMITS, optional=True)

    def has_consistent_limits(self) -> bool:
        """False when any configured minimum is above its maximum."""
        for dim in ("length_cm", "width_cm", "height_cm", "cbm", "weight_kg"):
            lo = getattr(self, f"min_{dim}")
            hi = getattr(self, f"max_{dim}")
            if lo is not None and hi is not None and lo > hi:
                return False
        return True


@dataclass(frozen=True)
class ClassificationBand(CarrierRule):
    outcome_vehicle_category: str = ""
    min_cbm: Optional[Decimal] = None
    max_cbm: Optional[Decimal] = None
    max_height_cm: Optional[Decimal] = None
    rule_logic: str = "AND"

    def __post_init__(self) -> None:
        _coerce(self, ("min_cbm", "max_cbm", "max_height_cm"), optional=True)
        object.__setattr__(self, "rule_logic", (self.rule_logic or "AND").upper())

    def matches_cargo(self, cargo: "CargoInput") -> bool:
        checks: List[bool] = []
        if self.min_cbm is not None:
            checks.append(cargo.cbm >= self.min_cbm)
        if self.max_cbm is not None:
            checks.append(cargo.cbm <= self.max_cbm)
        if self.max_height_cm is not None:
            checks.append(cargo.height_cm <= self.max_height_cm)
        if not checks:
            return False
        if self.rule_logic == "OR":
            return any(checks)
        return all(checks)


@dataclass(frozen=True)
class TransformRule(CarrierRule):
    transform_code: str = OVERWIDTH_LM_RECALC
    params: TransformParams = field(default_factory=TransformParams)

    @classmethod
    def from_record(cls, *, params: Optional[Mapping[str, Any]] = None, **fields: Any) -> "TransformRule":
        return cls(params=decode_transform_params(params, rule_id=fields.get("id")), **fields)


@dataclass(frozen=True)
class SurchargeRule(CarrierRule):
    event_code: str = ""
    name: str = ""
    calc_mode: CalcMode = CalcMode.FLAT
    params: SurchargeParams = field(default_factory=FlatParams)
    exclusive_group: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        *,
        calc_mode: Any,
        params: Optional[Mapping[str, Any]] = None,
        exclusive_group: Optional[str] = None,
        **fields: Any,
    ) -> "SurchargeRule":
        """Build a rule from a stored record, decoding its parameter bag."""
        rule_id = fields.get("id")
        raw = dict(params or {})
        group = exclusive_group or raw.get("exclusive_group") or None
        mode = parse_calc_mode(calc_mode, rule_id=rule_id)
        return cls(
            calc_mode=mode,
            params=decode_surcharge_params(mode, raw, rule_id=rule_id),
            exclusive_group=group,
            **fields,
        )


@dataclass(frozen=True)
class SurchargeArticleMap(CarrierRule):
    event_code: str = ""
    article_id: int = 0
    qty_mode: Optional[str] = None


@dataclass(frozen=True)
class CategoryGroup:
    id: int
    carrier_id: int
    code: str
    display_name: Optional[str] = None
    members: FrozenSet[str] = frozenset()
    priority: int = 0
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    is_active: bool = True

    def is_effective(self, on: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_from is not None and self.effective_from > on:
            return False
        return self.effective_to is None or self.effective_to >= on


@dataclass(frozen=True)
class PortGroup:
    id: int
    carrier_id: int
    code: str
    port_ids: FrozenSet[int] = frozenset()
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    is_active: bool = True

    def is_effective(self, on: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_from is not None and self.effective_from > on:
            return False
        return self.effective_to is None or self.effective_to >= on


# -------------------------------
# Engine input
# -------------------------------

@dataclass(frozen=True)
class CargoInput:
    """One cargo unit to be rated against a carrier's rules."""
    carrier_id: int
    port_id: Optional[int] = None
    category: Optional[str] = None
    category_group_id: Optional[int] = None
    vessel_name: Optional[str] = None
    vessel_class: Optional[str] = None
    length_cm: Decimal = Decimal("0")
    width_cm: Decimal = Decimal("0")
    height_cm: Decimal = Decimal("0")
    weight_kg: Decimal = Decimal("0")
    cbm: Decimal = Decimal("0")
    unit_count: int = 1
    flags: FrozenSet[str] = frozenset()
    commodity_ref: Any = None
    basic_freight: Optional[Decimal] = None

    def __post_init__(self) -> None:
        _coerce(self, ("length_cm", "width_cm", "height_cm", "weight_kg", "cbm"), optional=False)
        _coerce(self, ("basic_freight",), optional=True)
        object.__setattr__(self, "flags", frozenset(self.flags or ()))

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags


# -------------------------------
# Engine output
# -------------------------------

@dataclass
class ChargeableMeasure:
    base_lm: Decimal
    chargeable_lm: Decimal
    applied_transform_rule_id: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SurchargeCalculation:
    quantity: Decimal
    amount_basis: str
    unit_amount: Decimal
    needs_basic_freight: bool = False


@dataclass
class SurchargeEvent:
    event_code: str
    quantity: Decimal
    amount_basis: str
    unit_amount: Decimal
    rule_id: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_code": self.event_code,
            "qty": str(self.quantity),
            "amount_basis": self.amount_basis,
            "amount": str(self.unit_amount),
            "matched_rule_id": self.rule_id,
            "reason": self.reason,
        }


@dataclass
class QuoteLineDraft:
    article_id: int
    quantity: Decimal
    amount_override: Optional[Decimal] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "article_id": self.article_id,
            "qty": str(self.quantity),
            "amount_override": str(self.amount_override) if self.amount_override is not None else None,
            "meta": dict(self.meta),
        }


@dataclass
class AcceptanceResult:
    status: AcceptanceStatus = AcceptanceStatus.ALLOWED
    violations: List[str] = field(default_factory=list)
    approvals_required: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    rule_id: Optional[int] = None


@dataclass
class RuleResult:
    classified_vehicle_category: Optional[str]
    matched_category_group: Optional[str]
    acceptance: AcceptanceResult
    chargeable_measure: ChargeableMeasure
    surcharge_events: List[SurchargeEvent] = field(default_factory=list)
    quote_line_drafts: List[QuoteLineDraft] = field(default_factory=list)

    @property
    def acceptance_status(self) -> AcceptanceStatus:
        return self.acceptance.status

    @property
    def violations(self) -> List[str]:
        return self.acceptance.violations

    @property
    def approvals_required(self) -> List[str]:
        return self.acceptance.approvals_required

    @property
    def warnings(self) -> List[str]:
        return self.acceptance.warnings

    def to_meta(self) -> Dict[str, Any]:
        """Audit payload the quotation layer stores next to the commodity line."""
        measure = self.chargeable_measure
        return {
            "classified_category": self.classified_vehicle_category,
            "matched_category_group": self.matched_category_group,
            "acceptance_status": self.acceptance.status.value,
            "violations": list(self.acceptance.violations),
            "approvals_required": list(self.acceptance.approvals_required),
            "warnings": list(self.acceptance.warnings),
            "base_lm": str(measure.base_lm),
            "chargeable_lm": str(measure.chargeable_lm),
            "transform_reason": measure.meta.get("transform_reason"),
            "applied_transform_rule_id": measure.applied_transform_rule_id,
            "surcharge_events": [e.to_dict() for e in self.surcharge_events],
        }

    def to_payload(self) -> Dict[str, Any]:
        payload = self.to_meta()
        payload["acceptance_rule_id"] = self.acceptance.rule_id
        payload["quote_line_drafts"] = [d.to_dict() for d in self.quote_line_drafts]
        return payload
