from datetime import date

import pytest

from freight_rules.rules.max_dimensions import (
    commodity_types_for,
    resolve_max_dimensions,
    vehicle_category_for,
)
from freight_rules.rules.repository import InMemoryRuleRepository
from freight_rules.rules.resolver import RuleResolver
from freight_rules.rules.types import AcceptanceRule, CategoryGroup, RuleScope

ON = date(2025, 6, 1)


@pytest.mark.parametrize(
    "commodity_type, expected",
    [
        ("Car", "car"),
        ("Big Van", "big_van"),
        ("LM Cargo", "truck"),
        ("Motorcycle", "motorcycle"),
        ("High and Heavy", "high_and_heavy"),
        ("", None),
        (None, None),
    ],
)
def test_vehicle_category_for(commodity_type, expected) -> None:
    assert vehicle_category_for(commodity_type) == expected


def test_commodity_types_for() -> None:
    assert commodity_types_for("truck") == ["Truck", "LM Cargo"]
    assert commodity_types_for("tractor") == []


def _resolver() -> RuleResolver:
    rules = [
        AcceptanceRule(
            id=1,
            carrier_id=1,
            scope=RuleScope.build(vehicle_categories=["big_van"]),
            max_length_cm=750,
            max_height_cm=300,
            effective_from=date(2025, 1, 1),
        ),
        AcceptanceRule(
            id=2,
            carrier_id=1,
            scope=RuleScope.build(port_ids=[12], category_group_ids=[5]),
            max_height_cm=270,
            max_weight_kg=3500,
        ),
    ]
    groups = [CategoryGroup(id=5, carrier_id=1, code="VANS", members=frozenset({"big_van", "small_van"}))]
    return RuleResolver(InMemoryRuleRepository(rules, category_groups=groups))


def test_resolve_max_dimensions_for_commodity() -> None:
    breakdown = resolve_max_dimensions(_resolver(), 1, None, "Big Van", on=ON)

    assert breakdown == {
        "max_length_cm": "750",
        "max_width_cm": None,
        "max_height_cm": "300",
        "max_weight_kg": None,
        "max_cbm": None,
        "carrier_id": 1,
        "port_id": None,
        "vehicle_category": "big_van",
        "rule_id": 1,
        "effective_from": "2025-01-01",
        "effective_to": None,
    }


def test_port_scoped_group_rule_outranks_category_rule() -> None:
    breakdown = resolve_max_dimensions(_resolver(), 1, 12, "Small Van", on=ON)

    assert breakdown["rule_id"] == 2
    assert breakdown["max_weight_kg"] == "3500"


def test_no_rule_returns_none() -> None:
    assert resolve_max_dimensions(_resolver(), 1, None, "Motorcycle", on=ON) is None
    assert resolve_max_dimensions(_resolver(), 1, None, None, on=ON) is None
