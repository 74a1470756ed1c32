"""
Configuration Loader (``storage_config.loader``).

Responsibility
--------------
Loads a billing configuration YAML file and parses it into the typed
``storage_config.schema`` dataclasses. The single public entry point for
runtime config is ``storage_config.get_active_config()``.

Invariants enforced
-------------------
* Required keys are never silently defaulted; every problem found in a
  document is collected and reported together as a ``ConfigurationError``.
* Prices must be non-negative decimals with ``price_1y >= price_6m``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid or missing values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from storage_config.schema import BillingConfig, CropTariffDef, RateLimitDef
from storage_kernel.domain.currency import CurrencyRegistry
from storage_kernel.exceptions import ConfigurationError

MISSING_PRICING_POLICIES = ("raise", "use_default", "zero")

_REQUIRED_KEYS = ("config_id", "version", "effective_from", "currency")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def _parse_price(value: Any, label: str, errors: list[str]) -> Decimal | None:
    # YAML floats would lose precision; quote prices in the source.
    if isinstance(value, float):
        errors.append(f"{label}: prices must be quoted strings or integers, got float {value!r}")
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors.append(f"{label}: not a decimal: {value!r}")
        return None
    if price < 0:
        errors.append(f"{label}: cannot be negative")
        return None
    return price


def parse_crop_tariff(data: dict[str, Any], errors: list[str]) -> CropTariffDef | None:
    """Parse one tariff entry, appending any problems to ``errors``."""
    crop_id = str(data.get("crop_id", "")).strip().casefold()
    label = f"tariff {crop_id or '<missing crop_id>'}"
    if not crop_id:
        errors.append(f"{label}: crop_id is required")
    if "price_6m" not in data or "price_1y" not in data:
        errors.append(f"{label}: price_6m and price_1y are required")
        return None
    price_6m = _parse_price(data["price_6m"], f"{label}.price_6m", errors)
    price_1y = _parse_price(data["price_1y"], f"{label}.price_1y", errors)
    if price_6m is None or price_1y is None or not crop_id:
        return None
    if price_1y < price_6m:
        errors.append(f"{label}: price_1y {price_1y} is below price_6m {price_6m}")
        return None
    return CropTariffDef(crop_id=crop_id, price_6m=str(price_6m), price_1y=str(price_1y))


def parse_rate_limit(data: dict[str, Any], errors: list[str]) -> RateLimitDef | None:
    """Parse one rate limit rule."""
    action = data.get("action")
    limit = data.get("limit")
    window = data.get("window_seconds")
    if not action or not isinstance(limit, int) or not isinstance(window, int):
        errors.append(f"rate limit {data!r}: action, integer limit and window_seconds required")
        return None
    if limit <= 0 or window <= 0:
        errors.append(f"rate limit {action}: limit and window_seconds must be positive")
        return None
    return RateLimitDef(action=action, limit=limit, window_seconds=window)


def parse_billing_config(data: dict[str, Any], source: str = "<memory>") -> BillingConfig:
    """
    Parse and validate a configuration document.

    Raises:
        ConfigurationError: listing every problem found.
    """
    errors: list[str] = []

    for key in _REQUIRED_KEYS:
        if key not in data:
            errors.append(f"missing required key: {key}")
    if errors:
        raise ConfigurationError(source, errors)

    currency = str(data["currency"])
    if not CurrencyRegistry.is_valid(currency):
        errors.append(f"unknown currency: {currency}")

    minimum_months = data.get("minimum_months", 1)
    if not isinstance(minimum_months, int) or minimum_months < 0:
        errors.append(f"minimum_months must be a non-negative integer, got {minimum_months!r}")

    policy = str(data.get("missing_pricing_policy", "raise"))
    if policy not in MISSING_PRICING_POLICIES:
        errors.append(
            f"missing_pricing_policy must be one of {', '.join(MISSING_PRICING_POLICIES)}, "
            f"got {policy!r}"
        )

    threshold = _parse_price(data.get("dues_threshold", "100"), "dues_threshold", errors)

    cycles = data.get("billing_cycles") or {}
    initial_cycle = cycles.get("initial", "6-Month Initial")
    completed_cycle = cycles.get("completed", "Completed")
    if initial_cycle == completed_cycle:
        errors.append("billing_cycles.initial and billing_cycles.completed must differ")

    default_pricing = None
    if data.get("default_pricing") is not None:
        default_pricing = parse_crop_tariff(
            {"crop_id": "default", **data["default_pricing"]}, errors
        )
    if policy == "use_default" and data.get("default_pricing") is None:
        errors.append("missing_pricing_policy use_default requires default_pricing")

    crops: list[CropTariffDef] = []
    seen: set[str] = set()
    for entry in data.get("crops") or []:
        tariff = parse_crop_tariff(entry, errors)
        if tariff is None:
            continue
        if tariff.crop_id in seen:
            errors.append(f"duplicate tariff for crop {tariff.crop_id}")
            continue
        seen.add(tariff.crop_id)
        crops.append(tariff)

    rate_limits = tuple(
        rule
        for rule in (parse_rate_limit(r, errors) for r in data.get("rate_limits") or [])
        if rule is not None
    )

    try:
        effective_from = parse_date(data["effective_from"])
    except ValueError as exc:
        errors.append(f"effective_from: {exc}")
        effective_from = date.min

    if errors:
        raise ConfigurationError(source, errors)

    return BillingConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        effective_from=effective_from,
        currency=currency,
        minimum_months=minimum_months,
        initial_billing_cycle=initial_cycle,
        completed_billing_cycle=completed_cycle,
        dues_threshold=threshold,
        missing_pricing_policy=policy,
        default_pricing=default_pricing,
        crops=tuple(crops),
        rate_limits=rate_limits,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
