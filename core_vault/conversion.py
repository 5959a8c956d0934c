"""
Fixed-Point Conversion Module

Converts between native-asset units (18 decimals) and the unit of account
(USD, 6 decimals) using an 8-decimal oracle price. All arithmetic is done on
Python ints, so intermediates never overflow. NEVER uses float.

Division always floors, so a round trip never returns more
native currency than went in:

    unit_to_native(native_to_unit(x, p), p) <= x
"""

from dataclasses import dataclass


NATIVE_DECIMALS = 18
PRICE_DECIMALS = 8
ACCOUNTING_DECIMALS = 6

# 18 + 8 - 20 = 6
SCALE_EXPONENT = NATIVE_DECIMALS + PRICE_DECIMALS - ACCOUNTING_DECIMALS
SCALE = 10 ** SCALE_EXPONENT


def _check_operands(amount: int, price: int) -> None:
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
    if price <= 0:
        raise ValueError(f"Price must be positive, got {price}")


def native_to_unit(amount_native: int, price: int, scale: int = SCALE) -> int:
    """Native units -> unit of account, floored"""
    _check_operands(amount_native, price)
    return amount_native * price // scale


def unit_to_native(amount_unit: int, price: int, scale: int = SCALE) -> int:
    """Unit of account -> native units, floored"""
    _check_operands(amount_unit, price)
    return amount_unit * scale // price


@dataclass(frozen=True)
class FixedPointConverter:
    """
    Converter bound to a specific decimals configuration.

    The scale exponent is derived so that
    native_decimals + price_decimals - scale_exponent == accounting_decimals.
    """
    native_decimals: int = NATIVE_DECIMALS
    price_decimals: int = PRICE_DECIMALS
    accounting_decimals: int = ACCOUNTING_DECIMALS

    def __post_init__(self):
        if self.scale_exponent < 0:
            raise ValueError(
                f"Accounting decimals {self.accounting_decimals} exceed "
                f"native + price decimals ({self.native_decimals} + {self.price_decimals})"
            )

    @property
    def scale_exponent(self) -> int:
        return self.native_decimals + self.price_decimals - self.accounting_decimals

    @property
    def scale(self) -> int:
        return 10 ** self.scale_exponent

    def to_unit(self, amount_native: int, price: int) -> int:
        return native_to_unit(amount_native, price, self.scale)

    def to_native(self, amount_unit: int, price: int) -> int:
        return unit_to_native(amount_unit, price, self.scale)


def format_units(amount: int, decimals: int = ACCOUNTING_DECIMALS) -> str:
    """
    Format a fixed-point integer for display, e.g. 39561400 -> "39.561400"
    """
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10 ** decimals)
    if decimals == 0:
        return f"{sign}{whole:,}"
    return f"{sign}{whole:,}.{frac:0{decimals}d}"
