"""Error kinds raised by the carrier rules engine.

"No matching rule" is not an error: resolvers return ``None`` or an empty
list and the engine reads that as "no restriction" / "no charge".
"""
from __future__ import annotations

from typing import Optional

__all__ = [
    "CarrierRuleError",
    "ConfigurationError",
    "LookupFailure",
]


class CarrierRuleError(Exception):
    """Base class for carrier rule failures."""


class ConfigurationError(CarrierRuleError, ValueError):
    """Raised when a rule record cannot be interpreted (unknown calc mode, bad params)."""

    def __init__(
        self,
        message: str,
        *,
        rule_id: Optional[int] = None,
        calc_mode: Optional[str] = None,
    ):
        super().__init__(message)
        self.rule_id = rule_id
        self.calc_mode = calc_mode

    def __str__(self) -> str:
        prefix = f"rule {self.rule_id}: " if self.rule_id is not None else ""
        return f"{prefix}{self.args[0]}"


class LookupFailure(CarrierRuleError):
    """Raised when the rule store could not answer a candidate query."""

    def __init__(self, rule_kind: str, carrier_id: Optional[int] = None):
        super().__init__(rule_kind, carrier_id)
        self.rule_kind = rule_kind
        self.carrier_id = carrier_id

    def __str__(self) -> str:
        return f"rule lookup failed: kind={self.rule_kind} carrier={self.carrier_id}"
