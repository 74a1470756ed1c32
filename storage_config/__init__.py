"""
storage_config -- single public entrypoint for billing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``, which returns a frozen ``BillingConfig``, and
    the bridge ``build_tariff_resolver()`` that turns it into the engine's
    ``TariffResolver``.

Architecture position:
    Configuration -- YAML-driven. Sits above ``storage_kernel`` and
    ``storage_engines`` and below ``storage_services``. The kernel and the
    engines MUST NEVER import from ``storage_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ConfigurationError`` -- schema or value validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``STORAGE_CONFIG_TRACE`` log entry with the config id, version,
    checksum and tariff count, tying every rent figure back to the exact
    tariff that produced it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from storage_config.loader import load_yaml_file, parse_billing_config
from storage_config.schema import BillingConfig, CropTariffDef, RateLimitDef
from storage_engines.tariff import MissingPricingPolicy, TariffResolver
from storage_kernel.domain.records import CropPricing

_logger = logging.getLogger("storage_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(config_dir: Path | None = None, name: str = "default") -> BillingConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to configuration sets directory.
            Defaults to storage_config/sets/.
        name: Configuration set name (file stem, ``<name>.yaml``).

    Returns:
        BillingConfig -- validated, frozen.

    Raises:
        FileNotFoundError: If the set does not exist.
        ConfigurationError: If validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    if not sets_dir.is_dir():
        raise FileNotFoundError(f"Configuration sets directory not found: {sets_dir}")

    path = sets_dir / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"No configuration set named {name!r} in {sets_dir}")

    config = parse_billing_config(load_yaml_file(path), source=str(path))

    _logger.info(
        "STORAGE_CONFIG_TRACE",
        extra={
            "trace_type": "STORAGE_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "currency": config.currency,
            "missing_pricing_policy": config.missing_pricing_policy,
            "tariff_count": len(config.crops),
        },
    )

    return config


def _to_pricing(tariff: CropTariffDef, currency: str) -> CropPricing:
    return CropPricing.of(tariff.price_6m, tariff.price_1y, currency)


def build_tariff_resolver(config: BillingConfig) -> TariffResolver:
    """Bridge a ``BillingConfig`` into the engine's ``TariffResolver``."""
    default = (
        _to_pricing(config.default_pricing, config.currency)
        if config.default_pricing is not None
        else None
    )
    return TariffResolver(
        table={c.crop_id: _to_pricing(c, config.currency) for c in config.crops},
        default=default,
        policy=MissingPricingPolicy(config.missing_pricing_policy),
        currency=config.currency,
    )


__all__ = [
    "BillingConfig",
    "CropTariffDef",
    "RateLimitDef",
    "build_tariff_resolver",
    "get_active_config",
]
