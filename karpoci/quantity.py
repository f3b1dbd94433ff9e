"""Exact resource quantities in the Kubernetes notation ("100m", "1Gi", "1e3")."""

from __future__ import annotations

import functools
import math
import re
from enum import Enum
from fractions import Fraction
from typing import Mapping, Union

__all__ = ["Format", "Quantity", "parse_quantity", "max_resources"]


class Format(str, Enum):
    """How a quantity is written back out."""

    DECIMAL_SI = "DecimalSI"
    BINARY_SI = "BinarySI"
    DECIMAL_EXPONENT = "DecimalExponent"


_BINARY_SUFFIXES = {"Ki": 1, "Mi": 2, "Gi": 3, "Ti": 4, "Pi": 5, "Ei": 6}
_BINARY_BY_POWER = {0: "", **{power: suffix for suffix, power in _BINARY_SUFFIXES.items()}}
_DECIMAL_SUFFIXES = {
    "n": -9, "u": -6, "m": -3, "": 0, "k": 3, "M": 6, "G": 9, "T": 12, "P": 15, "E": 18,
}
_DECIMAL_BY_EXPONENT = {exponent: suffix for suffix, exponent in _DECIMAL_SUFFIXES.items()}
_NUMBER = re.compile(r"([+-]?)(\d*)(?:\.(\d*))?(.*)", re.DOTALL)
_EXPONENT = re.compile(r"[eE]([+-]?\d+)")
_NANO = 10**9

Number = Union[int, Fraction, float]


def _round_to_nano(amount: Fraction) -> Fraction:
    """Round away from zero to the nearest nano unit."""
    scaled = amount * _NANO
    if scaled.denominator == 1:
        return amount
    magnitude = math.ceil(abs(scaled))
    return Fraction(magnitude if amount > 0 else -magnitude, _NANO)


@functools.total_ordering
class Quantity:
    """An exact amount of a resource plus the notation it prints in."""

    __slots__ = ("_amount", "_format")

    def __init__(self, amount: Number = 0, fmt: Format = Format.DECIMAL_SI) -> None:
        self._amount = _round_to_nano(Fraction(amount))
        self._format = Format(fmt)

    @classmethod
    def parse(cls, text: str) -> "Quantity":
        """Parse a quantity such as "100Mi", "1.5", "250m" or "1e3"."""
        match = _NUMBER.fullmatch(text) if text else None
        if match is None:
            raise ValueError(f"quantities must match the regular expression, got {text!r}")
        sign, whole, fraction, suffix = match.groups()
        fraction = fraction or ""
        if not whole and not fraction:
            raise ValueError(f"quantity {text!r} has no digits")
        denominator = 10 ** len(fraction)
        number = Fraction(int(whole or "0") * denominator + int(fraction or "0"), denominator)

        if suffix in _BINARY_SUFFIXES:
            amount = number * 1024 ** _BINARY_SUFFIXES[suffix]
            fmt = Format.BINARY_SI
        elif suffix in _DECIMAL_SUFFIXES:
            amount = number * Fraction(10) ** _DECIMAL_SUFFIXES[suffix]
            fmt = Format.DECIMAL_SI
        else:
            exponent = _EXPONENT.fullmatch(suffix)
            if exponent is None:
                raise ValueError(f"unable to parse quantity's suffix in {text!r}")
            amount = number * Fraction(10) ** int(exponent.group(1))
            fmt = Format.DECIMAL_EXPONENT
        if sign == "-":
            amount = -amount
        return cls(amount, fmt)

    @classmethod
    def scaled(cls, value: int, exponent: int) -> "Quantity":
        """Build value * 10**exponent in decimal notation."""
        return cls(Fraction(value) * Fraction(10) ** exponent, Format.DECIMAL_SI)

    @property
    def amount(self) -> Fraction:
        return self._amount

    @property
    def format(self) -> Format:
        return self._format

    @property
    def value(self) -> int:
        """The amount rounded up, away from zero, to a whole number."""
        magnitude = math.ceil(abs(self._amount))
        return magnitude if self._amount >= 0 else -magnitude

    @property
    def milli_value(self) -> int:
        """The amount in thousandths, rounded away from zero."""
        scaled = abs(self._amount) * 1000
        magnitude = math.ceil(scaled)
        return magnitude if self._amount >= 0 else -magnitude

    def as_float(self) -> float:
        return float(self._amount)

    def is_zero(self) -> bool:
        return self._amount == 0

    def __add__(self, other: "Quantity") -> "Quantity":
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self._amount + other._amount, self._format)

    def __sub__(self, other: "Quantity") -> "Quantity":
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self._amount - other._amount, self._format)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Quantity):
            return NotImplemented
        return self._amount == other._amount

    def __lt__(self, other: "Quantity") -> bool:
        if not isinstance(other, Quantity):
            return NotImplemented
        return self._amount < other._amount

    def __hash__(self) -> int:
        return hash(self._amount)

    def __str__(self) -> str:
        amount = self._amount
        if amount == 0:
            return "0"
        fmt = self._format
        if fmt is Format.BINARY_SI:
            if amount.denominator == 1 and abs(amount) >= 1024:
                mantissa = int(amount)
                power = 0
                while power < 6 and mantissa % 1024 == 0:
                    mantissa //= 1024
                    power += 1
                return f"{mantissa}{_BINARY_BY_POWER[power]}"
            fmt = Format.DECIMAL_SI

        mantissa = int(amount * _NANO)
        exponent = -9
        while exponent < 18 and mantissa % 1000 == 0:
            mantissa //= 1000
            exponent += 3
        if fmt is Format.DECIMAL_EXPONENT:
            suffix = f"e{exponent}" if exponent else ""
        else:
            suffix = _DECIMAL_BY_EXPONENT[exponent]
        return f"{mantissa}{suffix}"

    def __repr__(self) -> str:
        return f"Quantity({str(self)!r})"


def parse_quantity(text: str) -> Quantity:
    """Parse a quantity string; raise ValueError if it is malformed."""
    return Quantity.parse(text)


def max_resources(*args: Mapping[str, Quantity]) -> dict[str, Quantity]:
    """Merge resource lists, keeping the largest quantity seen for each name."""
    merged: dict[str, Quantity] = {}
    for resources in args:
        for name, quantity in resources.items():
            current = merged.get(name)
            if current is None or quantity > current:
                merged[name] = quantity
    return merged