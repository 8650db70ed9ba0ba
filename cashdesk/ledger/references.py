"""
Reference Codes

Human-readable sequential identifiers such as DEP-202401-0007:
a semantic prefix (stem + year-month) and a zero-padded counter.

The next counter is derived from the references already stored. There is
no locking, so two creations at the same moment can produce the same code.
"""

from datetime import date
from typing import Iterable, Optional


def expense_reference_prefix(on: date, stem: str = "DEP") -> str:
    """DEP-YYYYMM for the month of `on`."""
    return f"{stem}-{on.strftime('%Y%m')}"


def parse_counter(reference: Optional[str], prefix: str, separator: str = "-") -> Optional[int]:
    """Numeric counter of a reference under `prefix`, or None."""
    if not reference:
        return None
    head = prefix + separator
    reference = str(reference).strip()
    if not reference.startswith(head):
        return None
    suffix = reference[len(head):]
    if not (suffix.isascii() and suffix.isdigit()):
        return None
    return int(suffix)


def next_reference(
    existing: Iterable[Optional[str]],
    prefix: str,
    width: int = 4,
    separator: str = "-",
) -> str:
    """
    Next reference under `prefix`.

    >>> next_reference(["DEP-202401-0001", "DEP-202401-0003"], "DEP-202401")
    'DEP-202401-0004'
    """
    counters = [
        counter
        for counter in (parse_counter(ref, prefix, separator) for ref in existing)
        if counter is not None
    ]
    next_number = max(counters) + 1 if counters else 1
    return f"{prefix}{separator}{str(next_number).zfill(width)}"
