"""Typed parameter bags for surcharge calc modes and transform rules.

Rule records store their parameters as a free-form JSON object. They are
decoded here, once, when a rule is loaded, so the calculator only ever sees
one validated model per calc mode.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError

__all__ = [
    "CalcMode",
    "SurchargeParams",
    "FlatParams",
    "PerUnitParams",
    "PercentOfBasicFreightParams",
    "WeightTier",
    "WeightTierParams",
    "PerTonAboveParams",
    "PerTankParams",
    "PerLmParams",
    "WidthLmBasisParams",
    "WidthStepBlocksParams",
    "TransformParams",
    "PARAMS_BY_MODE",
    "parse_calc_mode",
    "decode_surcharge_params",
    "decode_transform_params",
]


class CalcMode(Enum):
    FLAT = "FLAT"
    PER_UNIT = "PER_UNIT"
    PERCENT_OF_BASIC_FREIGHT = "PERCENT_OF_BASIC_FREIGHT"
    WEIGHT_TIER = "WEIGHT_TIER"
    PER_TON_ABOVE = "PER_TON_ABOVE"
    PER_TANK = "PER_TANK"
    PER_LM = "PER_LM"
    WIDTH_LM_BASIS = "WIDTH_LM_BASIS"
    WIDTH_STEP_BLOCKS = "WIDTH_STEP_BLOCKS"


class SurchargeParams(BaseModel):
    # Unknown keys (exclusive_group, UI hints) are tolerated and dropped.
    model_config = ConfigDict(extra="ignore", frozen=True)


class FlatParams(SurchargeParams):
    amount: Decimal = Decimal("0")


class PerUnitParams(SurchargeParams):
    amount: Decimal = Decimal("0")


class PercentOfBasicFreightParams(SurchargeParams):
    percentage: Decimal = Decimal("0")


class WeightTier(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    min_kg: Optional[Decimal] = None
    max_kg: Optional[Decimal] = None
    amount: Decimal = Decimal("0")
    per_ton_over: Optional[Decimal] = None

    def contains(self, weight_kg: Decimal) -> bool:
        if self.min_kg is not None and weight_kg < self.min_kg:
            return False
        if self.max_kg is not None and weight_kg > self.max_kg:
            return False
        return True


class WeightTierParams(SurchargeParams):
    tiers: List[WeightTier] = Field(default_factory=list)


class PerTonAboveParams(SurchargeParams):
    threshold_kg: Decimal = Decimal("0")
    amount_per_ton: Decimal = Decimal("0")


class PerTankParams(SurchargeParams):
    amount: Decimal = Decimal("0")


class PerLmParams(SurchargeParams):
    amount: Decimal = Decimal("0")


class WidthLmBasisParams(SurchargeParams):
    trigger_width_gt_cm: Decimal = Decimal("250")
    use_chargeable_lm: bool = True
    amount_per_lm: Decimal = Decimal("0")


class WidthStepBlocksParams(SurchargeParams):
    threshold_cm: Decimal = Decimal("250")
    block_cm: Decimal = Field(default=Decimal("25"), gt=0)
    trigger_width_gt_cm: Optional[Decimal] = None
    qty_basis: Literal["LM", "UNIT"] = "LM"
    amount_per_block: Decimal = Decimal("0")

    @property
    def trigger_cm(self) -> Decimal:
        """Width that must be exceeded; falls back to the block threshold."""
        if self.trigger_width_gt_cm is None:
            return self.threshold_cm
        return self.trigger_width_gt_cm


class TransformParams(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    trigger_width_gt_cm: Optional[Decimal] = None
    divisor_cm: Optional[Decimal] = Field(default=None, gt=0)


PARAMS_BY_MODE: Dict[CalcMode, Type[SurchargeParams]] = {
    CalcMode.FLAT: FlatParams,
    CalcMode.PER_UNIT: PerUnitParams,
    CalcMode.PERCENT_OF_BASIC_FREIGHT: PercentOfBasicFreightParams,
    CalcMode.WEIGHT_TIER: WeightTierParams,
    CalcMode.PER_TON_ABOVE: PerTonAboveParams,
    CalcMode.PER_TANK: PerTankParams,
    CalcMode.PER_LM: PerLmParams,
    CalcMode.WIDTH_LM_BASIS: WidthLmBasisParams,
    CalcMode.WIDTH_STEP_BLOCKS: WidthStepBlocksParams,
}


def parse_calc_mode(value: Any, *, rule_id: Optional[int] = None) -> CalcMode:
    if isinstance(value, CalcMode):
        return value
    try:
        return CalcMode(str(value or "").strip().upper())
    except ValueError:
        raise ConfigurationError(
            f"unknown calc_mode: {value!r}", rule_id=rule_id, calc_mode=str(value)
        ) from None


def decode_surcharge_params(
    calc_mode: Any,
    params: Optional[Mapping[str, Any]],
    *,
    rule_id: Optional[int] = None,
) -> SurchargeParams:
    """Validate a raw parameter bag against the model for ``calc_mode``."""

    mode = parse_calc_mode(calc_mode, rule_id=rule_id)
    model = PARAMS_BY_MODE[mode]
    try:
        return model.model_validate(dict(params or {}))
    except ValidationError as exc:
        raise ConfigurationError(
            f"invalid params for {mode.value}: {exc.errors()}",
            rule_id=rule_id,
            calc_mode=mode.value,
        ) from exc


def decode_transform_params(
    params: Optional[Mapping[str, Any]], *, rule_id: Optional[int] = None
) -> TransformParams:
    try:
        return TransformParams.model_validate(dict(params or {}))
    except ValidationError as exc:
        raise ConfigurationError(
            f"invalid transform params: {exc.errors()}", rule_id=rule_id
        ) from exc
