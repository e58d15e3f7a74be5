# src/freight_rules/api/routes.py
"""
Carrier rule endpoints.

Notes:
- Rules come from the JSON rule set at CARRIER_RULES_PATH when configured,
  otherwise from the database.
- Decimal values are returned as strings.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterator, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..db import new_session
from ..rules.engine import RuleEngine
from ..rules.errors import ConfigurationError, LookupFailure
from ..rules.max_dimensions import resolve_max_dimensions
from ..rules.repository import RuleRepository, SqlRuleRepository
from ..rules.rules_loader import load_rule_set
from ..rules.types import CargoInput
from ..settings import settings

logger = logging.getLogger("freight-rules-api")

router = APIRouter(prefix="/api/v1/carrier-rules", tags=["Carrier Rules"])

# ============ Pydantic Models ============

class CargoRequest(BaseModel):
    carrier_id: int = Field(..., examples=[1])
    port_id: Optional[int] = Field(None, examples=[12])
    category: Optional[str] = Field(None, examples=["truck"])
    category_group_id: Optional[int] = None
    vessel_name: Optional[str] = None
    vessel_class: Optional[str] = None
    length_cm: Decimal = Field(..., ge=0, examples=[600])
    width_cm: Decimal = Field(..., ge=0, examples=[260])
    height_cm: Decimal = Field(Decimal("0"), ge=0, examples=[285])
    weight_kg: Decimal = Field(Decimal("0"), ge=0, examples=[12000])
    cbm: Decimal = Field(Decimal("0"), ge=0)
    unit_count: int = Field(1, ge=1)
    flags: List[str] = Field(default_factory=list, examples=[["empty"]])
    basic_freight: Optional[Decimal] = Field(None, description="Basic freight amount for percentage surcharges")
    on: Optional[date] = Field(None, description="Evaluation date; defaults to today")

    def to_cargo(self) -> CargoInput:
        return CargoInput(
            carrier_id=self.carrier_id,
            port_id=self.port_id,
            category=self.category,
            category_group_id=self.category_group_id,
            vessel_name=self.vessel_name,
            vessel_class=self.vessel_class,
            length_cm=self.length_cm,
            width_cm=self.width_cm,
            height_cm=self.height_cm,
            weight_kg=self.weight_kg,
            cbm=self.cbm,
            unit_count=self.unit_count,
            flags=frozenset(self.flags),
            basic_freight=self.basic_freight,
        )


# ============ Dependencies ============

def get_repository() -> Iterator[RuleRepository]:
    if settings.rules_path:
        yield load_rule_set(settings.rules_path)
        return
    db = new_session()
    try:
        yield SqlRuleRepository(db)
    finally:
        db.close()


def get_rule_engine(repository: RuleRepository = Depends(get_repository)) -> RuleEngine:
    return RuleEngine(
        repository,
        default_trigger_cm=settings.default_overwidth_trigger_cm,
        default_divisor_cm=settings.default_lm_divisor_cm,
    )


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, LookupFailure):
        logger.exception("Rule lookup failed")
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    logger.exception("Rule configuration error")
    raise HTTPException(status_code=500, detail=str(exc)) from exc


# ============ Routes ============

@router.post("/evaluate")
def evaluate_cargo(request: CargoRequest, engine: RuleEngine = Depends(get_rule_engine)) -> Dict[str, Any]:
    """Run the full rule pipeline for one cargo unit."""
    on = request.on or date.today()
    try:
        result = engine.process_cargo(request.to_cargo(), on=on)
    except (LookupFailure, ConfigurationError) as exc:
        _raise_http(exc)

    payload = result.to_payload()
    payload["evaluated_on"] = on.isoformat()
    return payload


@router.get("/max-dimensions")
def max_dimensions(
    carrier_id: int = Query(...),
    commodity_type: str = Query(..., examples=["Big Van"]),
    port_id: Optional[int] = Query(None),
    on: Optional[date] = Query(None),
    engine: RuleEngine = Depends(get_rule_engine),
) -> Dict[str, Any]:
    try:
        breakdown = resolve_max_dimensions(engine.resolver, carrier_id, port_id, commodity_type, on=on)
    except (LookupFailure, ConfigurationError) as exc:
        _raise_http(exc)

    if breakdown is None:
        raise HTTPException(
            status_code=404,
            detail=f"No acceptance rule for carrier {carrier_id} and commodity '{commodity_type}'",
        )
    return breakdown
