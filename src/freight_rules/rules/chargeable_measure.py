# src/freight_rules/rules/chargeable_measure.py
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from .resolver import RuleResolver
from .types import OVERWIDTH_LM_RECALC, ChargeableMeasure, ScopeContext, _to_decimal

logger = logging.getLogger(__name__)

# Standard trailer deck width; narrower cargo is still charged the full width.
LM_WIDTH_FLOOR_M = Decimal("2.5")
LM_DIVISOR_M = Decimal("2.5")


def fmt_cm(value: Decimal) -> str:
    """Render a centimetre value without trailing zeros: 300.00 -> '300'."""
    normalised = value.normalize()
    return format(normalised, "f")


def base_lane_meters(length_cm: Decimal, width_cm: Decimal) -> Decimal:
    length_m = _to_decimal(length_cm) / 100
    width_m = _to_decimal(width_cm) / 100
    return (length_m * max(width_m, LM_WIDTH_FLOOR_M)) / LM_DIVISOR_M


class ChargeableMeasureService:
    """
    Lane-meter measure for one cargo unit.

    The base LM always applies; the first OVERWIDTH_LM_RECALC transform (in
    precedence order) whose width trigger is exceeded replaces it with
    ``(length_cm * width_cm) / (divisor_cm * 100)``.
    """

    def __init__(
        self,
        resolver: RuleResolver,
        *,
        default_trigger_cm: Decimal = Decimal("250"),
        default_divisor_cm: Decimal = Decimal("250"),
    ):
        self.resolver = resolver
        self.default_trigger_cm = _to_decimal(default_trigger_cm)
        self.default_divisor_cm = _to_decimal(default_divisor_cm)

    def calculate(
        self,
        ctx: ScopeContext,
        length_cm: Decimal,
        width_cm: Decimal,
        *,
        on: Optional[date] = None,
    ) -> ChargeableMeasure:
        on = on or date.today()
        length_cm = _to_decimal(length_cm)
        width_cm = _to_decimal(width_cm)
        base_lm = base_lane_meters(length_cm, width_cm)

        for rule in self.resolver.resolve_transform_rules(ctx, on=on):
            if rule.transform_code != OVERWIDTH_LM_RECALC:
                logger.debug("Skipping transform %s with unsupported code %s", rule.id, rule.transform_code)
                continue

            trigger = rule.params.trigger_width_gt_cm
            if trigger is None:
                trigger = self.default_trigger_cm
            if width_cm <= trigger:
                continue

            divisor = rule.params.divisor_cm or self.default_divisor_cm
            chargeable_lm = (length_cm * width_cm) / (divisor * 100)
            reason = f"Overwidth: width {fmt_cm(width_cm)}cm exceeds trigger {fmt_cm(trigger)}cm"
            logger.debug("Transform %s applied: %s (LM %s -> %s)", rule.id, reason, base_lm, chargeable_lm)
            return ChargeableMeasure(
                base_lm=base_lm,
                chargeable_lm=chargeable_lm,
                applied_transform_rule_id=rule.id,
                meta={
                    "transform_reason": reason,
                    "trigger_cm": str(trigger),
                    "divisor_cm": str(divisor),
                },
            )

        return ChargeableMeasure(base_lm=base_lm, chargeable_lm=base_lm)
