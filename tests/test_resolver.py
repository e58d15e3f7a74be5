from datetime import date

import pytest

from freight_rules.rules.repository import InMemoryRuleRepository
from freight_rules.rules.resolver import (
    RuleResolver,
    order_by_precedence,
    score_rule,
    select_most_specific,
)
from freight_rules.rules.types import (
    AcceptanceRule,
    CategoryGroup,
    PortGroup,
    RuleKind,
    RuleScope,
    ScopeContext,
)

ON = date(2025, 6, 1)

CTX = ScopeContext(
    carrier_id=1,
    port_id=12,
    vehicle_category="truck",
    category_group_id=3,
    vessel_name="GRANDE TEMA",
    vessel_class="G5",
    port_group_ids=frozenset({40}),
)


def _rule(rule_id: int, *, priority: int = 0, effective_from=None, effective_to=None, **scope) -> AcceptanceRule:
    return AcceptanceRule(
        id=rule_id,
        carrier_id=1,
        scope=RuleScope.build(**scope),
        priority=priority,
        effective_from=effective_from,
        effective_to=effective_to,
    )


@pytest.mark.parametrize(
    "scope, expected",
    [
        ({}, 0),
        ({"vessel_names": ["GRANDE TEMA"]}, 10),
        ({"port_ids": [12]}, 8),
        ({"port_group_ids": [40]}, 6),
        ({"port_ids": [12], "port_group_ids": [40]}, 8),
        ({"vessel_classes": ["G5"]}, 6),
        ({"vehicle_categories": ["truck", "bus"]}, 2),
        ({"category_group_ids": [3]}, 1),
        ({"vessel_names": ["GRANDE TEMA"], "port_ids": [12], "vehicle_categories": ["truck"]}, 20),
    ],
)
def test_score_rule(scope: dict, expected: int) -> None:
    assert score_rule(_rule(1, **scope), CTX).score == expected


@pytest.mark.parametrize("reverse", [False, True])
def test_vessel_name_beats_port_regardless_of_priority(reverse: bool) -> None:
    vessel_rule = _rule(1, vessel_names=["GRANDE TEMA"])
    port_rule = _rule(2, priority=99, port_ids=[12])
    candidates = [vessel_rule, port_rule]
    if reverse:
        candidates.reverse()

    assert select_most_specific(candidates, CTX) is vessel_rule


def test_direct_port_beats_port_group() -> None:
    group_rule = _rule(1, port_group_ids=[40])
    port_rule = _rule(2, port_ids=[12])

    assert select_most_specific([group_rule, port_rule], CTX) is port_rule


def test_port_group_beats_category() -> None:
    group_rule = _rule(1, port_group_ids=[40])
    category_rule = _rule(2, priority=5, vehicle_categories=["truck"])

    assert select_most_specific([category_rule, group_rule], CTX) is group_rule


def test_equal_score_prefers_priority() -> None:
    low = _rule(5, priority=1, port_ids=[12])
    high = _rule(4, priority=2, port_ids=[12])

    assert select_most_specific([low, high], CTX) is high


def test_equal_priority_prefers_latest_effective_from() -> None:
    older = _rule(5, effective_from=date(2024, 1, 1))
    newer = _rule(4, effective_from=date(2025, 1, 1))
    undated = _rule(6)

    assert select_most_specific([older, undated, newer], CTX) is newer


def test_undated_rules_sort_last() -> None:
    dated = _rule(1, effective_from=date(2020, 1, 1))
    undated = _rule(9)

    assert select_most_specific([undated, dated], CTX) is dated


def test_final_tie_break_is_highest_id() -> None:
    assert select_most_specific([_rule(3), _rule(8), _rule(5)], CTX).id == 8


def test_empty_candidates_resolve_to_none() -> None:
    assert select_most_specific([], CTX) is None


def test_single_candidate_is_returned_as_is() -> None:
    only = _rule(1)
    assert select_most_specific([only], CTX) is only


def test_order_by_precedence() -> None:
    rules = [
        _rule(1, priority=1),
        _rule(2, priority=5, effective_from=date(2024, 1, 1)),
        _rule(3, priority=5, effective_from=date(2025, 1, 1)),
        _rule(4, priority=5),
        _rule(5, priority=5),
    ]

    assert [r.id for r in order_by_precedence(rules)] == [3, 2, 5, 4, 1]


def _resolver(*rules, category_groups=(), port_groups=()) -> RuleResolver:
    return RuleResolver(
        InMemoryRuleRepository(rules, category_groups=category_groups, port_groups=port_groups)
    )


def test_scope_for_expands_port_groups() -> None:
    resolver = _resolver(
        port_groups=[
            PortGroup(id=40, carrier_id=1, code="WAF", port_ids=frozenset({12, 13})),
            PortGroup(id=41, carrier_id=1, code="MED", port_ids=frozenset({20})),
            PortGroup(id=42, carrier_id=1, code="OLD", port_ids=frozenset({12}), is_active=False),
            PortGroup(id=43, carrier_id=2, code="WAF", port_ids=frozenset({12})),
        ]
    )

    ctx = resolver.scope_for(1, on=ON, port_id=12)

    assert ctx.port_group_ids == frozenset({40})


def test_resolve_acceptance_rule_through_port_group() -> None:
    group_rule = _rule(1, port_group_ids=[40])
    other_group = _rule(2, port_group_ids=[41])
    resolver = _resolver(
        group_rule,
        other_group,
        port_groups=[PortGroup(id=40, carrier_id=1, code="WAF", port_ids=frozenset({12}))],
    )

    ctx = resolver.scope_for(1, on=ON, port_id=12, vehicle_category="car")

    assert resolver.resolve_acceptance_rule(ctx, on=ON) is group_rule


def test_derive_category_group_uses_priority_order() -> None:
    resolver = _resolver(
        category_groups=[
            CategoryGroup(id=1, carrier_id=1, code="LOW", members=frozenset({"truck"}), priority=0),
            CategoryGroup(id=2, carrier_id=1, code="HIGH", members=frozenset({"truck"}), priority=5),
            CategoryGroup(id=3, carrier_id=1, code="CARS", members=frozenset({"car"})),
        ]
    )

    assert resolver.derive_category_group(1, "truck", on=ON).code == "HIGH"
    assert resolver.derive_category_group(1, "car", on=ON).code == "CARS"
    assert resolver.derive_category_group(1, "bus", on=ON) is None
    assert resolver.derive_category_group(1, None, on=ON) is None
    assert resolver.category_group_code(1, 3, on=ON) == "CARS"
    assert resolver.category_group_code(1, 99, on=ON) is None


# ---- repository candidate filter ----

def _candidates(rule, ctx=CTX, on=ON):
    return InMemoryRuleRepository([rule]).fetch_active_candidates(RuleKind.ACCEPTANCE, ctx, on)


def test_unscoped_rule_matches_everything_for_carrier() -> None:
    assert _candidates(_rule(1))
    assert _candidates(_rule(1), ScopeContext(carrier_id=1))


def test_rule_for_other_carrier_is_excluded() -> None:
    rule = AcceptanceRule(id=1, carrier_id=2)
    assert _candidates(rule) == []


def test_populated_scope_requires_matching_input() -> None:
    rule = _rule(1, vessel_names=["OTHER"])
    assert _candidates(rule) == []


def test_populated_scope_excludes_input_without_value() -> None:
    rule = _rule(1, vessel_classes=["G5"])
    assert _candidates(rule, ScopeContext(carrier_id=1)) == []


def test_empty_scope_list_is_a_wildcard() -> None:
    assert _candidates(_rule(1, port_ids=[], vehicle_categories=[]))


@pytest.mark.parametrize(
    "effective_from, effective_to, expected",
    [
        (None, None, True),
        (date(2025, 6, 1), None, True),
        (None, date(2025, 6, 1), True),
        (date(2025, 6, 2), None, False),
        (None, date(2025, 5, 31), False),
    ],
)
def test_effective_window(effective_from, effective_to, expected: bool) -> None:
    rule = _rule(1, effective_from=effective_from, effective_to=effective_to)
    assert bool(_candidates(rule)) is expected


def test_inactive_rule_is_excluded() -> None:
    rule = AcceptanceRule(id=1, carrier_id=1, is_active=False)
    assert _candidates(rule) == []


def test_inconsistent_acceptance_rule_is_excluded() -> None:
    rule = AcceptanceRule(id=1, carrier_id=1, min_length_cm=500, max_length_cm=400)
    assert _candidates(rule) == []


def test_unsupported_rule_type_is_rejected() -> None:
    with pytest.raises(TypeError):
        InMemoryRuleRepository([object()])


def test_rule_subclasses_are_bucketed_by_base_kind() -> None:
    class SeasonalAcceptanceRule(AcceptanceRule):
        pass

    repository = InMemoryRuleRepository([SeasonalAcceptanceRule(id=9, carrier_id=1)])

    assert [r.id for r in repository.rules(RuleKind.ACCEPTANCE)] == [9]
