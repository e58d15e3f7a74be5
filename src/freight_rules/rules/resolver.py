"""Rule resolution: pick the most specific rule for a scope.

Candidates come pre-filtered from a :class:`RuleRepository`; this module only
scores and orders them.

Specificity weights (a dimension scores only when the rule constrains it)::

    vessel name       +10
    port (direct)      +8
    port group         +6   (only when there is no direct port match)
    vessel class       +6
    vehicle category   +2
    category group     +1

Ties fall back to priority, then the newest ``effective_from`` (open-ended
rules last), then the highest id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple, TypeVar

from .repository import RuleRepository
from .types import (
    AcceptanceRule,
    CarrierRule,
    CategoryGroup,
    ClassificationBand,
    RuleKind,
    ScopeContext,
    SurchargeArticleMap,
    SurchargeRule,
    TransformRule,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=CarrierRule)

SPECIFICITY_WEIGHTS: Dict[str, int] = {
    "vessel_name": 10,
    "port": 8,
    "port_group": 6,
    "vessel_class": 6,
    "vehicle_category": 2,
    "category_group": 1,
}


@dataclass(frozen=True)
class ScoredRule:
    rule: CarrierRule
    score: int
    matched: Tuple[str, ...] = ()


def score_rule(rule: CarrierRule, ctx: ScopeContext) -> ScoredRule:
    scope = rule.scope
    matched: List[str] = []

    if scope.vessel_names is not None and ctx.vessel_name in scope.vessel_names:
        matched.append("vessel_name")
    if scope.matches_port_directly(ctx.port_id):
        matched.append("port")
    elif scope.matches_port_group(ctx.port_group_ids):
        matched.append("port_group")
    if scope.vessel_classes is not None and ctx.vessel_class in scope.vessel_classes:
        matched.append("vessel_class")
    if scope.vehicle_categories is not None and ctx.vehicle_category in scope.vehicle_categories:
        matched.append("vehicle_category")
    if scope.category_group_ids is not None and ctx.category_group_id in scope.category_group_ids:
        matched.append("category_group")

    score = sum(SPECIFICITY_WEIGHTS[name] for name in matched)
    return ScoredRule(rule=rule, score=score, matched=tuple(matched))


def _recency_key(rule: CarrierRule) -> Tuple[int, int]:
    # Dated rules before open-ended ones, newest first.
    if rule.effective_from is None:
        return (1, 0)
    return (0, -rule.effective_from.toordinal())


def _precedence_key(rule: CarrierRule) -> Tuple[int, Tuple[int, int], int]:
    return (-rule.priority, _recency_key(rule), -rule.id)


def order_by_precedence(candidates: Sequence[R]) -> List[R]:
    """priority desc -> effective_from desc (None last) -> id desc."""
    return sorted(candidates, key=_precedence_key)


def rank_by_specificity(candidates: Sequence[R], ctx: ScopeContext) -> List[ScoredRule]:
    scored = [score_rule(rule, ctx) for rule in candidates]
    return sorted(scored, key=lambda s: (-s.score, *_precedence_key(s.rule)))


def select_most_specific(candidates: Sequence[R], ctx: ScopeContext) -> Optional[R]:
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]
    best = rank_by_specificity(candidates, ctx)[0]
    logger.debug(
        "Selected rule %s (score=%s matched=%s) out of %d candidates",
        best.rule.id,
        best.score,
        ",".join(best.matched) or "-",
        len(candidates),
    )
    return best.rule  # type: ignore[return-value]


class RuleResolver:
    """Looks up candidates through a repository and resolves them for a scope."""

    def __init__(self, repository: RuleRepository):
        self.repository = repository

    def scope_for(
        self,
        carrier_id: int,
        *,
        on: date,
        port_id: Optional[int] = None,
        vehicle_category: Optional[str] = None,
        category_group_id: Optional[int] = None,
        vessel_name: Optional[str] = None,
        vessel_class: Optional[str] = None,
    ) -> ScopeContext:
        """Build a lookup context, expanding the port into its port groups."""
        port_groups = (
            self.repository.port_group_ids_for_port(carrier_id, port_id, on)
            if port_id is not None
            else frozenset()
        )
        return ScopeContext(
            carrier_id=carrier_id,
            port_id=port_id,
            vehicle_category=vehicle_category,
            category_group_id=category_group_id,
            vessel_name=vessel_name,
            vessel_class=vessel_class,
            port_group_ids=frozenset(port_groups),
        )

    # ---- single winners ----

    def resolve_acceptance_rule(self, ctx: ScopeContext, *, on: date) -> Optional[AcceptanceRule]:
        candidates = self.repository.fetch_active_candidates(RuleKind.ACCEPTANCE, ctx, on)
        return select_most_specific(candidates, ctx)

    def resolve_article_map(
        self, ctx: ScopeContext, event_code: str, *, on: date
    ) -> Optional[SurchargeArticleMap]:
        event_ctx = ScopeContext(
            carrier_id=ctx.carrier_id,
            port_id=ctx.port_id,
            vehicle_category=ctx.vehicle_category,
            category_group_id=ctx.category_group_id,
            vessel_name=ctx.vessel_name,
            vessel_class=ctx.vessel_class,
            port_group_ids=ctx.port_group_ids,
            event_code=event_code,
        )
        candidates = self.repository.fetch_active_candidates(RuleKind.ARTICLE_MAP, event_ctx, on)
        return select_most_specific(candidates, event_ctx)

    # ---- ordered lists ----

    def resolve_classification_bands(self, ctx: ScopeContext, *, on: date) -> List[ClassificationBand]:
        candidates = self.repository.fetch_active_candidates(RuleKind.CLASSIFICATION, ctx, on)
        return [s.rule for s in rank_by_specificity(candidates, ctx)]  # type: ignore[misc]

    def resolve_transform_rules(self, ctx: ScopeContext, *, on: date) -> List[TransformRule]:
        return order_by_precedence(self.repository.fetch_active_candidates(RuleKind.TRANSFORM, ctx, on))

    def resolve_surcharge_rules(self, ctx: ScopeContext, *, on: date) -> List[SurchargeRule]:
        return order_by_precedence(self.repository.fetch_active_candidates(RuleKind.SURCHARGE, ctx, on))

    # ---- category groups ----

    def derive_category_group(
        self, carrier_id: int, vehicle_category: Optional[str], *, on: date
    ) -> Optional[CategoryGroup]:
        if not vehicle_category:
            return None
        for group in self.repository.category_groups(carrier_id, on):
            if vehicle_category in group.members:
                return group
        return None

    def category_group_code(self, carrier_id: int, group_id: Optional[int], *, on: date) -> Optional[str]:
        if group_id is None:
            return None
        for group in self.repository.category_groups(carrier_id, on):
            if group.id == group_id:
                return group.code
        return None
