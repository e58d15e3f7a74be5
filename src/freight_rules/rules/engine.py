# src/freight_rules/rules/engine.py
"""
Carrier rule engine: one cargo unit in, one :class:`RuleResult` out.

Pipeline (strictly forward, no rule data is mutated):
  1. classify the cargo when it arrives without a vehicle category
  2. derive its category group from carrier membership lists
  3. acceptance check against the most specific AcceptanceRule
  4. chargeable lane meters (base LM, optional overwidth transform)
  5. surcharge events, honouring exclusive groups
  6. quote line drafts for events that have an article mapping

"No rule" is always a normal outcome. Lookup failures propagate.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Set, Tuple

from .chargeable_measure import ChargeableMeasureService, fmt_cm
from .params import CalcMode, WidthLmBasisParams, WidthStepBlocksParams
from .repository import RuleRepository
from .resolver import RuleResolver
from .surcharge_calculator import SurchargeCalculator
from .types import (
    AcceptanceResult,
    AcceptanceRule,
    AcceptanceStatus,
    CargoInput,
    ChargeableMeasure,
    QuoteLineDraft,
    RuleResult,
    ScopeContext,
    SurchargeEvent,
    SurchargeRule,
)

logger = logging.getLogger(__name__)

FLAG_EMPTY = "empty"
FLAG_NON_SELF_PROPELLED = "non_self_propelled"

# (cargo attr, rule limit attr, violation/warning key)
_MIN_CHECKS: Tuple[Tuple[str, str, str], ...] = (
    ("length_cm", "min_length_cm", "min_length_below"),
    ("width_cm", "min_width_cm", "min_width_below"),
    ("height_cm", "min_height_cm", "min_height_below"),
    ("cbm", "min_cbm", "min_cbm_below"),
    ("weight_kg", "min_weight_kg", "min_weight_below"),
)
_HARD_MAX_CHECKS: Tuple[Tuple[str, str, str], ...] = (
    ("length_cm", "max_length_cm", "max_length_exceeded"),
    ("width_cm", "max_width_cm", "max_width_exceeded"),
    ("cbm", "max_cbm", "max_cbm_exceeded"),
)
# (cargo attr, max attr, soft max attr, approval flag attr, approval key, violation key)
_SOFT_MAX_CHECKS: Tuple[Tuple[str, str, str, str, str, str], ...] = (
    ("height_cm", "max_height_cm", "soft_max_height_cm", "soft_height_requires_approval",
     "soft_height_approval", "max_height_exceeded"),
    ("weight_kg", "max_weight_kg", "soft_max_weight_kg", "soft_weight_requires_approval",
     "soft_weight_approval", "max_weight_exceeded"),
)


def evaluate_acceptance(rule: Optional[AcceptanceRule], cargo: CargoInput) -> AcceptanceResult:
    """Apply one acceptance rule to a cargo unit. ``None`` means no restriction."""
    if rule is None:
        return AcceptanceResult()

    violations: List[str] = []
    approvals: List[str] = []
    warnings: List[str] = []

    for cargo_attr, limit_attr, key in _MIN_CHECKS:
        limit = getattr(rule, limit_attr)
        if limit is not None and getattr(cargo, cargo_attr) < limit:
            (violations if rule.min_is_hard else warnings).append(key)

    for cargo_attr, limit_attr, key in _HARD_MAX_CHECKS:
        limit = getattr(rule, limit_attr)
        if limit is not None and getattr(cargo, cargo_attr) > limit:
            violations.append(key)

    for cargo_attr, limit_attr, soft_attr, approval_attr, approval_key, violation_key in _SOFT_MAX_CHECKS:
        limit = getattr(rule, limit_attr)
        value = getattr(cargo, cargo_attr)
        if limit is None or value <= limit:
            continue
        soft_max = getattr(rule, soft_attr)
        if soft_max is not None and value <= soft_max and getattr(rule, approval_attr):
            approvals.append(approval_key)
        else:
            violations.append(violation_key)

    if rule.must_be_empty and not cargo.has_flag(FLAG_EMPTY):
        violations.append("must_be_empty_required")
    if rule.must_be_self_propelled and cargo.has_flag(FLAG_NON_SELF_PROPELLED):
        violations.append("must_be_self_propelled_required")

    if violations:
        status = AcceptanceStatus.NOT_ALLOWED
    elif approvals:
        status = AcceptanceStatus.ALLOWED_UPON_REQUEST
    else:
        status = AcceptanceStatus.ALLOWED

    return AcceptanceResult(
        status=status,
        violations=violations,
        approvals_required=approvals,
        warnings=warnings,
        rule_id=rule.id,
    )


def surcharge_reason(rule: SurchargeRule, cargo: CargoInput) -> str:
    reason = rule.name
    params = rule.params
    if rule.calc_mode is CalcMode.WIDTH_LM_BASIS and isinstance(params, WidthLmBasisParams):
        reason += f" (width {fmt_cm(cargo.width_cm)}cm exceeds {fmt_cm(params.trigger_width_gt_cm)}cm)"
    elif rule.calc_mode is CalcMode.WIDTH_STEP_BLOCKS and isinstance(params, WidthStepBlocksParams):
        blocks = SurchargeCalculator.block_count(params, cargo.width_cm)
        reason += (
            f" ({blocks} blocks × {fmt_cm(params.block_cm)}cm over {fmt_cm(params.threshold_cm)}cm)"
        )
    return reason


class RuleEngine:
    """
    Evaluates cargo against one carrier's rules.

    The engine holds no per-call state; a single instance can serve
    concurrent callers as long as its repository is safe for concurrent reads.
    """

    def __init__(
        self,
        repository: RuleRepository,
        *,
        default_trigger_cm: Decimal = Decimal("250"),
        default_divisor_cm: Decimal = Decimal("250"),
    ):
        self.resolver = RuleResolver(repository)
        self.measure_service = ChargeableMeasureService(
            self.resolver,
            default_trigger_cm=default_trigger_cm,
            default_divisor_cm=default_divisor_cm,
        )
        self.calculator = SurchargeCalculator

    # ---- pipeline steps ----

    def classify(self, cargo: CargoInput, *, on: date) -> Optional[str]:
        if cargo.category is not None:
            return cargo.category
        ctx = self.resolver.scope_for(
            cargo.carrier_id,
            on=on,
            port_id=cargo.port_id,
            category_group_id=cargo.category_group_id,
            vessel_name=cargo.vessel_name,
            vessel_class=cargo.vessel_class,
        )
        for band in self.resolver.resolve_classification_bands(ctx, on=on):
            if band.matches_cargo(cargo):
                logger.debug("Cargo classified as %s by band %s", band.outcome_vehicle_category, band.id)
                return band.outcome_vehicle_category
        return None

    def surcharge_events(
        self,
        ctx: ScopeContext,
        cargo: CargoInput,
        measure: ChargeableMeasure,
        *,
        on: date,
    ) -> List[SurchargeEvent]:
        events: List[SurchargeEvent] = []
        claimed: Set[str] = set()

        for rule in self.resolver.resolve_surcharge_rules(ctx, on=on):
            if rule.exclusive_group and rule.exclusive_group in claimed:
                logger.debug("Surcharge %s skipped: exclusive group %s already claimed", rule.id, rule.exclusive_group)
                continue

            calc = self.calculator.calculate(rule, cargo, measure)
            if calc.needs_basic_freight:
                logger.warning(
                    "Surcharge %s (%s) dropped for carrier %s: no basic freight supplied",
                    rule.id,
                    rule.event_code,
                    cargo.carrier_id,
                )
                continue
            if calc.quantity <= 0:
                continue

            events.append(
                SurchargeEvent(
                    event_code=rule.event_code,
                    quantity=calc.quantity,
                    amount_basis=calc.amount_basis,
                    unit_amount=calc.unit_amount,
                    rule_id=rule.id,
                    reason=surcharge_reason(rule, cargo),
                )
            )
            if rule.exclusive_group:
                claimed.add(rule.exclusive_group)

        return events

    def quote_line_drafts(
        self, ctx: ScopeContext, events: List[SurchargeEvent], *, on: date
    ) -> List[QuoteLineDraft]:
        drafts: List[QuoteLineDraft] = []
        for event in events:
            mapping = self.resolver.resolve_article_map(ctx, event.event_code, on=on)
            if mapping is None:
                logger.debug("No article mapping for event %s; no quote line", event.event_code)
                continue
            drafts.append(
                QuoteLineDraft(
                    article_id=mapping.article_id,
                    quantity=event.quantity,
                    amount_override=event.unit_amount if event.unit_amount > 0 else None,
                    meta={
                        "event_code": event.event_code,
                        "qty_mode": mapping.qty_mode,
                        "reason": event.reason,
                        "matched_rule_id": event.rule_id,
                    },
                )
            )
        return drafts

    # ---- entry point ----

    def process_cargo(self, cargo: CargoInput, on: Optional[date] = None) -> RuleResult:
        on = on or date.today()

        category = self.classify(cargo, on=on)

        group_id = cargo.category_group_id
        group_code: Optional[str] = None
        if group_id is None:
            group = self.resolver.derive_category_group(cargo.carrier_id, category, on=on)
            if group is not None:
                group_id, group_code = group.id, group.code
        else:
            group_code = self.resolver.category_group_code(cargo.carrier_id, group_id, on=on)

        ctx = self.resolver.scope_for(
            cargo.carrier_id,
            on=on,
            port_id=cargo.port_id,
            vehicle_category=category,
            category_group_id=group_id,
            vessel_name=cargo.vessel_name,
            vessel_class=cargo.vessel_class,
        )

        acceptance = evaluate_acceptance(self.resolver.resolve_acceptance_rule(ctx, on=on), cargo)
        measure = self.measure_service.calculate(ctx, cargo.length_cm, cargo.width_cm, on=on)
        events = self.surcharge_events(ctx, cargo, measure, on=on)
        drafts = self.quote_line_drafts(ctx, events, on=on)

        logger.info(
            "Carrier %s cargo evaluated: category=%s status=%s chargeable_lm=%s events=%d drafts=%d",
            cargo.carrier_id,
            category,
            acceptance.status.value,
            measure.chargeable_lm,
            len(events),
            len(drafts),
        )

        return RuleResult(
            classified_vehicle_category=category,
            matched_category_group=group_code,
            acceptance=acceptance,
            chargeable_measure=measure,
            surcharge_events=events,
            quote_line_drafts=drafts,
        )
