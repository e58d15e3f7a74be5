"""Surcharge quantity / unit amount per calculation mode."""
from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ConfigurationError
from .params import (
    PARAMS_BY_MODE,
    CalcMode,
    FlatParams,
    PercentOfBasicFreightParams,
    PerLmParams,
    PerTankParams,
    PerTonAboveParams,
    PerUnitParams,
    SurchargeParams,
    WeightTier,
    WeightTierParams,
    WidthLmBasisParams,
    WidthStepBlocksParams,
    decode_surcharge_params,
    parse_calc_mode,
)
from .types import CargoInput, ChargeableMeasure, SurchargeCalculation, SurchargeRule, _money

ZERO = Decimal("0")


def _none(mode: CalcMode, *, needs_basic_freight: bool = False) -> SurchargeCalculation:
    return SurchargeCalculation(
        quantity=ZERO,
        amount_basis=mode.value,
        unit_amount=ZERO,
        needs_basic_freight=needs_basic_freight,
    )


class SurchargeCalculator:
    """
    Stateless calculator: one handler per :class:`CalcMode`.

    Every handler returns a :class:`SurchargeCalculation`; a zero quantity
    means "does not apply to this cargo" and the engine drops it.
    """

    _HANDLERS: Dict[CalcMode, Callable[..., SurchargeCalculation]]

    @classmethod
    def calculate(
        cls,
        rule: SurchargeRule,
        cargo: CargoInput,
        measure: ChargeableMeasure,
    ) -> SurchargeCalculation:
        mode = parse_calc_mode(rule.calc_mode, rule_id=rule.id)
        handler = cls._HANDLERS.get(mode)
        if handler is None:  # pragma: no cover - every CalcMode has a handler
            raise ConfigurationError(f"no handler for calc_mode {mode.value}", rule_id=rule.id)
        params = cls._params_for(rule, mode)
        return handler(params, cargo, measure)

    @staticmethod
    def _params_for(rule: SurchargeRule, mode: CalcMode) -> SurchargeParams:
        params: Any = rule.params
        if isinstance(params, PARAMS_BY_MODE[mode]):
            return params
        raw: Optional[Mapping[str, Any]]
        if isinstance(params, SurchargeParams):
            raw = params.model_dump()
        else:
            raw = params
        return decode_surcharge_params(mode, raw, rule_id=rule.id)

    # ---- handlers ----

    @staticmethod
    def _flat(p: FlatParams, cargo: CargoInput, measure: ChargeableMeasure) -> SurchargeCalculation:
        return SurchargeCalculation(Decimal("1"), CalcMode.FLAT.value, p.amount)

    @staticmethod
    def _per_unit(p: PerUnitParams, cargo: CargoInput, measure: ChargeableMeasure) -> SurchargeCalculation:
        return SurchargeCalculation(Decimal(cargo.unit_count), CalcMode.PER_UNIT.value, p.amount)

    @staticmethod
    def _percent_of_basic_freight(
        p: PercentOfBasicFreightParams, cargo: CargoInput, measure: ChargeableMeasure
    ) -> SurchargeCalculation:
        basic = cargo.basic_freight
        if basic is None or basic <= 0:
            return _none(CalcMode.PERCENT_OF_BASIC_FREIGHT, needs_basic_freight=True)
        return SurchargeCalculation(
            Decimal("1"),
            CalcMode.PERCENT_OF_BASIC_FREIGHT.value,
            _money(basic * p.percentage / 100),
        )

    @staticmethod
    def _match_tier(p: WeightTierParams, weight_kg: Decimal) -> Optional[WeightTier]:
        for tier in p.tiers:
            if tier.contains(weight_kg):
                return tier
        # Last open-ended tier catches anything the bounded ones missed.
        catch_all = [t for t in p.tiers if t.max_kg is None]
        return catch_all[-1] if catch_all else None

    @classmethod
    def _weight_tier(
        cls, p: WeightTierParams, cargo: CargoInput, measure: ChargeableMeasure
    ) -> SurchargeCalculation:
        tier = cls._match_tier(p, cargo.weight_kg)
        if tier is None:
            return _none(CalcMode.WEIGHT_TIER)
        amount = tier.amount
        if tier.per_ton_over is not None and tier.min_kg is not None:
            over_kg = max(Decimal("0"), cargo.weight_kg - tier.min_kg)
            amount += over_kg / 1000 * tier.per_ton_over
        return SurchargeCalculation(Decimal("1"), CalcMode.WEIGHT_TIER.value, _money(amount))

    @staticmethod
    def _per_ton_above(
        p: PerTonAboveParams, cargo: CargoInput, measure: ChargeableMeasure
    ) -> SurchargeCalculation:
        if cargo.weight_kg <= p.threshold_kg:
            return _none(CalcMode.PER_TON_ABOVE)
        tons = (cargo.weight_kg - p.threshold_kg) / 1000
        return SurchargeCalculation(tons, CalcMode.PER_TON_ABOVE.value, p.amount_per_ton)

    @staticmethod
    def _per_tank(p: PerTankParams, cargo: CargoInput, measure: ChargeableMeasure) -> SurchargeCalculation:
        return SurchargeCalculation(Decimal(cargo.unit_count), CalcMode.PER_TANK.value, p.amount)

    @staticmethod
    def _per_lm(p: PerLmParams, cargo: CargoInput, measure: ChargeableMeasure) -> SurchargeCalculation:
        return SurchargeCalculation(measure.chargeable_lm, CalcMode.PER_LM.value, p.amount)

    @staticmethod
    def _width_lm_basis(
        p: WidthLmBasisParams, cargo: CargoInput, measure: ChargeableMeasure
    ) -> SurchargeCalculation:
        if cargo.width_cm <= p.trigger_width_gt_cm:
            return _none(CalcMode.WIDTH_LM_BASIS)
        qty = measure.chargeable_lm if p.use_chargeable_lm else measure.base_lm
        return SurchargeCalculation(qty, CalcMode.WIDTH_LM_BASIS.value, p.amount_per_lm)

    @staticmethod
    def block_count(p: WidthStepBlocksParams, width_cm: Decimal) -> int:
        over = max(ZERO, width_cm - p.threshold_cm)
        return math.ceil(over / p.block_cm)

    @classmethod
    def _width_step_blocks(
        cls, p: WidthStepBlocksParams, cargo: CargoInput, measure: ChargeableMeasure
    ) -> SurchargeCalculation:
        if cargo.width_cm <= p.trigger_cm:
            return _none(CalcMode.WIDTH_STEP_BLOCKS)
        blocks = cls.block_count(p, cargo.width_cm)
        basis = measure.base_lm if p.qty_basis == "LM" else Decimal(cargo.unit_count)
        return SurchargeCalculation(blocks * basis, CalcMode.WIDTH_STEP_BLOCKS.value, p.amount_per_block)


SurchargeCalculator._HANDLERS = {
    CalcMode.FLAT: SurchargeCalculator._flat,
    CalcMode.PER_UNIT: SurchargeCalculator._per_unit,
    CalcMode.PERCENT_OF_BASIC_FREIGHT: SurchargeCalculator._percent_of_basic_freight,
    CalcMode.WEIGHT_TIER: SurchargeCalculator._weight_tier,
    CalcMode.PER_TON_ABOVE: SurchargeCalculator._per_ton_above,
    CalcMode.PER_TANK: SurchargeCalculator._per_tank,
    CalcMode.PER_LM: SurchargeCalculator._per_lm,
    CalcMode.WIDTH_LM_BASIS: SurchargeCalculator._width_lm_basis,
    CalcMode.WIDTH_STEP_BLOCKS: SurchargeCalculator._width_step_blocks,
}
