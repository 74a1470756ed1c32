"""
storage_engines.tariff -- Rent tariff resolution by commodity.

Responsibility:
    Resolve the per-bag ``CropPricing`` for a crop from an in-memory tariff
    table, applying an explicit, testable policy when no pricing is
    configured. Fetching prices from a database is the caller's concern;
    the table is handed in.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Missing pricing never silently becomes zero rent: ZERO must be chosen
      explicitly, RAISE is the default.
    - Lookup keys are normalized (trimmed, case-folded), so "Paddy " and
      "paddy" resolve to the same tariff.

Failure modes:
    - MissingPricingError under RAISE, or under USE_DEFAULT with no default.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum

from storage_kernel.domain.records import DEFAULT_CURRENCY, CropPricing
from storage_kernel.exceptions import MissingPricingError


class MissingPricingPolicy(str, Enum):
    """What to do when a crop has no configured tariff."""

    RAISE = "raise"  # Fail loudly; avoids under-billing
    USE_DEFAULT = "use_default"  # Fall back to the configured default pricing
    ZERO = "zero"  # Charge no rent (explicit opt-in only)


def normalize_crop_id(crop_id: str) -> str:
    return crop_id.strip().casefold()


class TariffResolver:
    """
    Resolve ``CropPricing`` per crop.

    Contract:
        Pure lookup over the table given at construction. Safe to share
        across threads; never mutated after construction.
    Guarantees:
        - ``resolve`` either returns a CropPricing or raises
          MissingPricingError; it never returns None.
    """

    def __init__(
        self,
        table: Mapping[str, CropPricing],
        default: CropPricing | None = None,
        policy: MissingPricingPolicy = MissingPricingPolicy.RAISE,
        currency: str = DEFAULT_CURRENCY,
    ):
        self._table = {normalize_crop_id(k): v for k, v in table.items()}
        self._default = default
        self._policy = policy
        self._currency = currency

    @property
    def policy(self) -> MissingPricingPolicy:
        return self._policy

    def has_pricing(self, crop_id: str | None) -> bool:
        """True if the crop has its own tariff (ignores fallbacks)."""
        return crop_id is not None and normalize_crop_id(crop_id) in self._table

    def resolve(self, crop_id: str | None, record_id: str | None = None) -> CropPricing:
        """Return the tariff for ``crop_id``, applying the missing-pricing policy."""
        if crop_id is not None:
            pricing = self._table.get(normalize_crop_id(crop_id))
            if pricing is not None:
                return pricing

        match self._policy:
            case MissingPricingPolicy.USE_DEFAULT if self._default is not None:
                return self._default
            case MissingPricingPolicy.ZERO:
                return CropPricing.zero(self._currency)
            case _:
                raise MissingPricingError(crop_id, record_id=record_id)


def resolve_tariff(
    crop_id: str,
    table: Mapping[str, CropPricing],
    default: CropPricing | None = None,
    policy: MissingPricingPolicy = MissingPricingPolicy.RAISE,
) -> CropPricing:
    """Functional form of ``TariffResolver(table, default, policy).resolve(crop_id)``."""
    return TariffResolver(table, default=default, policy=policy).resolve(crop_id)
