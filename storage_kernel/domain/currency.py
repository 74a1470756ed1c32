"""
Currencies a warehouse bills in.

Only the number of decimal places matters to billing: it fixes how rent
and payments are rounded and how close two amounts must be to count as
equal. Codes outside the table are rejected when a ``Money`` is built.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """An ISO 4217 code with its minor-unit precision."""

    code: str
    decimal_places: int
    name: str

    @property
    def rounding_tolerance(self) -> Decimal:
        """One minor unit: 0.01 for INR, 1 for JPY."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyRegistry:
    """Lookup of billing currencies by code."""

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        info.code: info
        for info in (
            CurrencyInfo("INR", 2, "Indian Rupee"),
            CurrencyInfo("NPR", 2, "Nepalese Rupee"),
            CurrencyInfo("BDT", 2, "Bangladeshi Taka"),
            CurrencyInfo("LKR", 2, "Sri Lankan Rupee"),
            CurrencyInfo("PKR", 2, "Pakistani Rupee"),
            CurrencyInfo("BTN", 2, "Bhutanese Ngultrum"),
            CurrencyInfo("USD", 2, "US Dollar"),
            CurrencyInfo("EUR", 2, "Euro"),
            CurrencyInfo("GBP", 2, "Pound Sterling"),
            CurrencyInfo("AED", 2, "UAE Dirham"),
            CurrencyInfo("JPY", 0, "Japanese Yen"),
            CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        )
    }

    @staticmethod
    def _normalize(code: object) -> str | None:
        if not isinstance(code, str) or not code.strip():
            return None
        return code.strip().upper()

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        normalized = cls._normalize(code)
        return cls._CURRENCIES.get(normalized) if normalized else None

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return cls.get_info(code) is not None

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES

    @classmethod
    def get_rounding_tolerance(cls, code: str) -> Decimal:
        return Decimal(1).scaleb(-cls.get_decimal_places(code))

    @classmethod
    def validate(cls, code: str) -> str:
        """Return the normalized code, or raise ``ValueError``."""
        normalized = cls._normalize(code)
        if normalized is None:
            raise ValueError(f"Invalid currency code: {code!r}")
        if len(normalized) != 3:
            raise ValueError(f"Currency code must be 3 characters: {code!r}")
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
        return normalized

    @classmethod
    def codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)
