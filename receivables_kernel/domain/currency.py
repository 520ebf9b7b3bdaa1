"""Currency -- ISO 4217 registry for the working currencies of the ledger."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, for ``Decimal.quantize``."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyRegistry:
    """Registry of the ISO 4217 currencies the ledger accepts."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        # Central America and the Caribbean
        "NIO": CurrencyInfo("NIO", 2, "Nicaraguan Cordoba"),
        "CRC": CurrencyInfo("CRC", 2, "Costa Rican Colon"),
        "HNL": CurrencyInfo("HNL", 2, "Honduran Lempira"),
        "GTQ": CurrencyInfo("GTQ", 2, "Guatemalan Quetzal"),
        "PAB": CurrencyInfo("PAB", 2, "Panamanian Balboa"),
        "DOP": CurrencyInfo("DOP", 2, "Dominican Peso"),
        "SVC": CurrencyInfo("SVC", 2, "Salvadoran Colon"),
        # Rest of the Americas
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "MXN": CurrencyInfo("MXN", 2, "Mexican Peso"),
        "COP": CurrencyInfo("COP", 2, "Colombian Peso"),
        "PEN": CurrencyInfo("PEN", 2, "Peruvian Sol"),
        "BRL": CurrencyInfo("BRL", 2, "Brazilian Real"),
        "ARS": CurrencyInfo("ARS", 2, "Argentine Peso"),
        "CLP": CurrencyInfo("CLP", 0, "Chilean Peso"),
        # Others commonly seen on imported statements
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
    }

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is registered."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)
