"""
Configuration Schema (``storage_config.schema``).

Responsibility
--------------
Frozen dataclasses describing a billing configuration set: the tariff
table, the fallback pricing and missing-pricing policy, month-counting
minimum, billing cycle labels, dues threshold and rate limits.

Architecture position
---------------------
**Config layer** -- pure data. No YAML, no I/O, no kernel types; prices are
kept as strings exactly as written so the checksum is stable. Bridges in
``storage_config`` turn them into kernel ``CropPricing`` values.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class CropTariffDef:
    """Per-bag tier prices of one crop, as written in configuration."""

    crop_id: str
    price_6m: str
    price_1y: str


@dataclass(frozen=True)
class RateLimitDef:
    """Allowed requests per window for one service action."""

    action: str
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class BillingConfig:
    """
    A validated billing configuration set.

    Guarantees:
        - ``checksum`` is the SHA-256 of the canonical source document.
        - ``crops`` has unique, normalized crop ids.
    """

    config_id: str
    version: int
    effective_from: date
    currency: str
    minimum_months: int
    initial_billing_cycle: str
    completed_billing_cycle: str
    dues_threshold: Decimal
    missing_pricing_policy: str
    default_pricing: CropTariffDef | None
    crops: tuple[CropTariffDef, ...]
    rate_limits: tuple[RateLimitDef, ...]
    checksum: str = ""

    def rate_limit_for(self, action: str) -> RateLimitDef | None:
        for rule in self.rate_limits:
            if rule.action == action:
                return rule
        return None

    @property
    def crop_ids(self) -> tuple[str, ...]:
        return tuple(c.crop_id for c in self.crops)
