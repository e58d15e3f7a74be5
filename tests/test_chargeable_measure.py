from decimal import Decimal

import pytest

from freight_rules.rules.chargeable_measure import (
    ChargeableMeasureService,
    base_lane_meters,
    fmt_cm,
)
from freight_rules.rules.repository import InMemoryRuleRepository
from freight_rules.rules.resolver import RuleResolver
from freight_rules.rules.types import ScopeContext, TransformRule


def _transform(rule_id: int, *, priority: int = 0, code: str = "OVERWIDTH_LM_RECALC", **params) -> TransformRule:
    return TransformRule.from_record(
        id=rule_id, carrier_id=1, priority=priority, transform_code=code, params=params
    )


def _service(*rules: TransformRule, **kwargs) -> ChargeableMeasureService:
    return ChargeableMeasureService(RuleResolver(InMemoryRuleRepository(rules)), **kwargs)


CTX = ScopeContext(carrier_id=1)


@pytest.mark.parametrize(
    "length_cm, width_cm, expected",
    [
        (Decimal("500"), Decimal("300"), Decimal("6")),
        (Decimal("450"), Decimal("180"), Decimal("4.5")),
        (Decimal("600"), Decimal("250"), Decimal("6")),
        (Decimal("400"), Decimal("400"), Decimal("6.4")),
    ],
)
def test_base_lane_meters(length_cm: Decimal, width_cm: Decimal, expected: Decimal) -> None:
    assert base_lane_meters(length_cm, width_cm) == expected


def test_no_transform_configured_keeps_base_lm() -> None:
    measure = _service().calculate(CTX, Decimal("500"), Decimal("300"))

    assert measure.base_lm == Decimal("6")
    assert measure.chargeable_lm == Decimal("6")
    assert measure.applied_transform_rule_id is None
    assert measure.meta == {}


def test_overwidth_transform_recalculates_with_divisor() -> None:
    measure = _service(_transform(7, trigger_width_gt_cm=250, divisor_cm=200)).calculate(
        CTX, Decimal("400"), Decimal("400")
    )

    assert measure.base_lm == Decimal("6.4")
    assert measure.chargeable_lm == Decimal("8")
    assert measure.applied_transform_rule_id == 7
    assert measure.meta["transform_reason"] == "Overwidth: width 400cm exceeds trigger 250cm"
    assert measure.meta["divisor_cm"] == "200"


def test_width_at_trigger_does_not_transform() -> None:
    measure = _service(_transform(7, trigger_width_gt_cm=250, divisor_cm=200)).calculate(
        CTX, Decimal("400"), Decimal("250")
    )

    assert measure.chargeable_lm == measure.base_lm
    assert measure.applied_transform_rule_id is None


def test_only_first_transform_in_priority_order_applies() -> None:
    service = _service(
        _transform(1, priority=1, trigger_width_gt_cm=250, divisor_cm=300),
        _transform(2, priority=10, trigger_width_gt_cm=250, divisor_cm=200),
    )

    measure = service.calculate(CTX, Decimal("400"), Decimal("400"))

    assert measure.applied_transform_rule_id == 2
    assert measure.chargeable_lm == Decimal("8")


def test_untriggered_rule_falls_through_to_next_with_defaults() -> None:
    service = _service(
        _transform(1, priority=5, trigger_width_gt_cm=260, divisor_cm=250),
        _transform(2, priority=1),
        default_divisor_cm=Decimal("200"),
    )

    measure = service.calculate(CTX, Decimal("400"), Decimal("255"))

    assert measure.applied_transform_rule_id == 2
    assert measure.chargeable_lm == Decimal("5.1")
    assert measure.meta["transform_reason"] == "Overwidth: width 255cm exceeds trigger 250cm"


def test_unknown_transform_code_is_ignored() -> None:
    measure = _service(_transform(3, code="HEIGHT_SURCHARGE", trigger_width_gt_cm=100)).calculate(
        CTX, Decimal("400"), Decimal("400")
    )

    assert measure.applied_transform_rule_id is None


def test_transform_for_other_carrier_is_not_a_candidate() -> None:
    other = TransformRule.from_record(
        id=9, carrier_id=2, transform_code="OVERWIDTH_LM_RECALC", params={"divisor_cm": 100}
    )
    measure = _service(other).calculate(CTX, Decimal("400"), Decimal("400"))

    assert measure.applied_transform_rule_id is None


@pytest.mark.parametrize(
    "value, expected",
    [(Decimal("300"), "300"), (Decimal("300.00"), "300"), (Decimal("262.5"), "262.5")],
)
def test_fmt_cm(value: Decimal, expected: str) -> None:
    assert fmt_cm(value) == expected
