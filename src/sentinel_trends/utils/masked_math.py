"""
Masked-array arithmetic helpers

Every helper returns a numpy masked array in which domain violations
(division by zero, log of non-positive values, overflow) are masked
instead of turning into NaN or Inf.
"""

import numpy as np

from ..exceptions import DomainError

# Written under masked pixels when a band is exported
NODATA_FILL = -9999.0


def as_masked(values) -> np.ma.MaskedArray:
    """Copy to a float64 masked array, masking any non-finite value"""
    return np.ma.masked_invalid(np.ma.array(values, dtype=np.float64, copy=True))


def _finalize(data: np.ndarray, invalid: np.ndarray) -> np.ma.MaskedArray:
    invalid = invalid | ~np.isfinite(data)
    return np.ma.array(np.where(invalid, 0.0, data), mask=invalid, fill_value=NODATA_FILL)


def safe_divide(numerator, denominator) -> np.ma.MaskedArray:
    """Element-wise ratio; a zero or masked denominator gives a masked pixel"""
    num = as_masked(numerator)
    den = as_masked(denominator)
    invalid = np.ma.getmaskarray(num) | np.ma.getmaskarray(den) | (den.filled(0.0) == 0.0)

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        ratio = num.filled(0.0) / np.where(invalid, 1.0, den.filled(1.0))

    return _finalize(ratio, invalid)


def normalized_difference(a, b) -> np.ma.MaskedArray:
    """(a - b) / (a + b)"""
    a = as_masked(a)
    b = as_masked(b)
    return safe_divide(a - b, a + b)


def power_to_db(power, strict: bool = False) -> np.ma.MaskedArray:
    """
    Convert linear power to decibels: 10 * log10(power)

    Args:
        power: Linear backscatter values
        strict: Raise DomainError on non-positive values instead of masking them

    Returns:
        Masked array in dB
    """
    p = as_masked(power)
    already_masked = np.ma.getmaskarray(p)
    non_positive = ~already_masked & (p.filled(1.0) <= 0.0)

    if strict and non_positive.any():
        raise DomainError(
            f"{int(non_positive.sum())} non-positive power values cannot be converted to dB"
        )

    invalid = already_masked | non_positive
    with np.errstate(divide="ignore", invalid="ignore"):
        db = 10.0 * np.log10(np.where(invalid, 1.0, p.filled(1.0)))

    return _finalize(db, invalid)


def db_to_power(db) -> np.ma.MaskedArray:
    """Inverse of power_to_db: 10 ** (dB / 10)"""
    d = as_masked(db)
    invalid = np.ma.getmaskarray(d)
    with np.errstate(over="ignore", invalid="ignore"):
        power = np.power(10.0, d.filled(0.0) / 10.0)
    return _finalize(power, invalid)
