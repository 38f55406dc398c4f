"""Unit conversions for storage quantities."""

from __future__ import annotations

import bitmath

__all__ = ["bytes_to_quantity", "quantity_to_bytes"]


def quantity_to_bytes(quantity: str) -> int:
    """Convert a Kubernetes storage quantity to a number of bytes.

    Parameters
    ----------
    quantity
        Amount of storage as a string, such as ``10Gi`` or ``500M``.

    Returns
    -------
    int
        Equivalent number of bytes.

    Raises
    ------
    ValueError
        Raised if the input string is not a valid byte specification.
    """
    quantity = quantity.strip()
    if not quantity:
        raise ValueError("Empty storage quantity")
    return int(bitmath.parse_string_unsafe(quantity).bytes)


def bytes_to_quantity(size: int) -> str:
    """Format a number of bytes as a Kubernetes binary quantity.

    Used for human-readable error messages, so the result is rounded to at
    most two decimal places.

    Parameters
    ----------
    size
        Size in bytes.

    Returns
    -------
    str
        Size using the largest binary suffix that keeps the value at least
        one, such as ``20Gi``.
    """
    if abs(size) < 1024:
        return str(size)
    best = bitmath.Byte(abs(size)).best_prefix(system=bitmath.NIST)
    sign = "-" if size < 0 else ""
    value = round(best.value, 2)
    return f"{sign}{value:g}{best.unit.removesuffix('B')}"
