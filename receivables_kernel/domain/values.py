"""
Values -- Immutable, self-validating monetary value objects.

Responsibility:
    Currency and Money, the only representation of amounts inside the
    ledger.  Every balance, allocation and aggregate is a Money; raw Decimal
    appears only at the persistence and parsing edges.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by every other domain module.

Invariants enforced:
    - Amounts are Decimal, never binary float.
    - Amounts carry exactly the currency's minor-unit scale; constructing a
      Money with more fractional digits than the currency allows is rejected
      instead of silently rounded.
    - Arithmetic and comparison never mix currencies.

Failure modes:
    - InvalidCurrencyError for unknown currency codes.
    - InvalidAmountError for float, non-finite, non-numeric or over-scale
      amounts, and from ``parse_positive`` for zero or negative input.
    - CurrencyMismatchError when arithmetic or comparison mixes currencies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from receivables_kernel.domain.currency import CurrencyRegistry
from receivables_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidCurrencyError,
)

_NUMERIC_TEXT = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

# NUMERIC(18, 2) holds at most 16 integer digits
MAX_AMOUNT = Decimal(10) ** 16


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Normalized (stripped, uppercased) and validated against CurrencyRegistry
    on construction.
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if isinstance(self.code, str) else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise InvalidCurrencyError(self.code)
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.decimal_places)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


def _coerce_currency(currency: str | Currency) -> Currency:
    if isinstance(currency, Currency):
        return currency
    return Currency(currency)


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency.  The amount is stored at
        the currency's scale (``Money.of("400", "NIO")`` holds ``400.00``).
        Negative amounts are representable (signed statement amounts) but
        document balances are kept >= 0 by the ledger.

    Non-goals:
        - Does NOT convert between currencies.
        - Does NOT round implicitly; use ``Money.quantized`` for computed
          values that need rounding.
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

        amount = self.amount
        if isinstance(amount, bool) or isinstance(amount, float):
            raise InvalidAmountError(amount, "binary floating point amounts are not accepted")
        if not isinstance(amount, Decimal):
            try:
                amount = Decimal(str(amount))
            except (InvalidOperation, ValueError) as e:
                raise InvalidAmountError(self.amount, "not a number") from e
        if not amount.is_finite():
            raise InvalidAmountError(self.amount, "amount must be finite")

        quantum = self.currency.quantum
        try:
            scaled = amount.quantize(quantum)
        except InvalidOperation as e:
            raise InvalidAmountError(self.amount, "amount is too large") from e
        if scaled != amount:
            raise InvalidAmountError(
                self.amount,
                f"more than {self.currency.decimal_places} fractional digits "
                f"for {self.currency.code}",
            )
        object.__setattr__(self, "amount", scaled)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """Create Money from an exact amount (no float allowed)."""
        return cls(amount=amount, currency=_coerce_currency(currency))

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        return cls(amount=Decimal("0"), currency=_coerce_currency(currency))

    @classmethod
    def quantized(
        cls,
        amount: Decimal | str | int,
        currency: str | Currency,
        rounding: str = ROUND_HALF_UP,
    ) -> Money:
        """Create Money from a computed amount, rounding to the currency scale."""
        currency = _coerce_currency(currency)
        if isinstance(amount, float):
            raise InvalidAmountError(amount, "binary floating point amounts are not accepted")
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        try:
            value = value.quantize(currency.quantum, rounding=rounding)
        except InvalidOperation as e:
            raise InvalidAmountError(amount, "amount is too large") from e
        return cls(amount=value, currency=currency)

    @classmethod
    def parse_positive(
        cls,
        value: Any,
        currency: str | Currency,
        field: str = "amount",
    ) -> Money:
        """
        Convert untrusted input into a strictly positive Money.

        Accepts Decimal, int, or numeric text.  Text may use a comma as the
        decimal separator when it contains no dot ("1500,50").  Rejects
        floats, booleans, blank or non-numeric text, non-finite values,
        zero, negatives, amounts of 10**16 or more, and more fractional
        digits than the currency scale.

        Raises:
            InvalidAmountError: on any of the rejections above.
        """
        currency = _coerce_currency(currency)

        if value is None or isinstance(value, bool):
            raise InvalidAmountError(value, "amount is required", field)
        if isinstance(value, float):
            raise InvalidAmountError(value, "binary floating point amounts are not accepted", field)

        if isinstance(value, str):
            text = value.strip().replace(" ", "")
            if "," in text and "." not in text and text.count(",") == 1:
                text = text.replace(",", ".")
            if not _NUMERIC_TEXT.match(text):
                raise InvalidAmountError(value, "not a number", field)
            amount = Decimal(text)
        elif isinstance(value, (int, Decimal)):
            amount = Decimal(value)
        else:
            raise InvalidAmountError(value, f"unsupported type {type(value).__name__}", field)

        if not amount.is_finite():
            raise InvalidAmountError(value, "amount must be finite", field)
        if amount <= 0:
            raise InvalidAmountError(value, "amount must be greater than zero", field)
        if amount >= MAX_AMOUNT:
            raise InvalidAmountError(value, "amount is too large", field)
        if amount.quantize(currency.quantum) != amount:
            raise InvalidAmountError(
                value,
                f"more than {currency.decimal_places} fractional digits for {currency.code}",
                field,
            )
        return cls(amount=amount, currency=currency)

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency.code, other.currency.code)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount), currency=self.currency)

    def subtract_clamped(self, other: Money) -> Money:
        """Subtract, flooring the result at zero (balance arithmetic)."""
        result = self - other
        if result.is_negative:
            return Money.zero(self.currency)
        return result

    @staticmethod
    def min(first: Money, *others: Money) -> Money:
        """Smallest of the given amounts (same currency)."""
        smallest = first
        for other in others:
            if other < smallest:
                smallest = other
        return smallest

    @staticmethod
    def sum(values: Any, currency: str | Currency) -> Money:
        """Sum an iterable of Money, starting from zero in ``currency``."""
        total = Money.zero(currency)
        for value in values:
            total = total + value
        return total

    def ratio_to(self, other: Money, places: int = 4) -> Decimal:
        """``self / other`` as a Decimal rounded half-up; 0 when other <= 0."""
        self._check_currency(other)
        quantum = Decimal(1).scaleb(-places)
        if other.amount <= 0:
            return Decimal(0).quantize(quantum)
        return (self.amount / other.amount).quantize(quantum, rounding=ROUND_HALF_UP)

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"
