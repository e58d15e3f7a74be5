"""Max-dimension breakdown for a commodity type, built from the acceptance half of the resolver."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from .resolver import RuleResolver

# Commodity types as quoted to customers -> carrier vehicle categories.
COMMODITY_CATEGORIES: Dict[str, str] = {
    "Car": "car",
    "Small Van": "small_van",
    "Big Van": "big_van",
    "SUV": "suv",
    "Truck": "truck",
    "Bus": "bus",
    "LM Cargo": "truck",
    "Motorcycle": "motorcycle",
}

_LIMIT_FIELDS = ("max_length_cm", "max_width_cm", "max_height_cm", "max_weight_kg", "max_cbm")


def vehicle_category_for(commodity_type: Optional[str]) -> Optional[str]:
    if not commodity_type:
        return None
    mapped = COMMODITY_CATEGORIES.get(commodity_type)
    if mapped is not None:
        return mapped
    return commodity_type.strip().lower().replace(" ", "_")


def commodity_types_for(vehicle_category: str) -> List[str]:
    """Reverse lookup; unknown categories map to nothing."""
    return [name for name, category in COMMODITY_CATEGORIES.items() if category == vehicle_category]


def resolve_max_dimensions(
    resolver: RuleResolver,
    carrier_id: int,
    port_id: Optional[int],
    commodity_type: Optional[str],
    *,
    on: Optional[date] = None,
) -> Optional[Dict[str, Any]]:
    """Max limits of the winning acceptance rule, or ``None`` when nothing applies."""

    category = vehicle_category_for(commodity_type)
    if category is None:
        return None

    on = on or date.today()
    group = resolver.derive_category_group(carrier_id, category, on=on)
    ctx = resolver.scope_for(
        carrier_id,
        on=on,
        port_id=port_id,
        vehicle_category=category,
        category_group_id=group.id if group is not None else None,
    )
    rule = resolver.resolve_acceptance_rule(ctx, on=on)
    if rule is None:
        return None

    breakdown: Dict[str, Any] = {
        name: (str(getattr(rule, name)) if getattr(rule, name) is not None else None)
        for name in _LIMIT_FIELDS
    }
    breakdown.update(
        {
            "carrier_id": carrier_id,
            "port_id": port_id,
            "vehicle_category": category,
            "rule_id": rule.id,
            "effective_from": rule.effective_from.isoformat() if rule.effective_from else None,
            "effective_to": rule.effective_to.isoformat() if rule.effective_to else None,
        }
    )
    return breakdown
