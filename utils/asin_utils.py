"""
ASIN utilities.

Used for seed validation and for building identifier batches for the
catalog provider.
"""

import re
from typing import Iterable, Iterator, Optional

# Amazon standard identifiers handled here: "B" + 9 letters/digits
ASIN_PATTERN = re.compile(r"^B[0-9A-Z]{9}$")


def normalize_asin(asin: Optional[str]) -> Optional[str]:
    """
    Normalize an ASIN for comparison and storage.

    - " b01kjeocdw " → "B01KJEOCDW"

    Args:
        asin: Raw identifier (any case, may have whitespace)

    Returns:
        Uppercase, trimmed identifier, or None if input is empty
    """
    if not asin:
        return None

    asin = asin.strip().upper()
    return asin or None


def is_valid_asin(asin: Optional[str]) -> bool:
    """Check an identifier against the ASIN format (case-insensitive)."""
    normalized = normalize_asin(asin)
    return bool(normalized and ASIN_PATTERN.match(normalized))


def unique_asins(asins: Iterable[str], exclude: Iterable[str] = ()) -> list[str]:
    """
    Normalize and de-duplicate ASINs, keeping first-seen order.

    Args:
        asins: Identifiers as returned by the provider
        exclude: Identifiers to drop (seed, variations, ...)

    Returns:
        Ordered list with no duplicates and nothing from exclude
    """
    seen = {normalize_asin(a) for a in exclude}
    result = []
    for asin in asins:
        normalized = normalize_asin(asin)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


def chunked(items: list[str], size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of at most size items."""
    if size < 1:
        raise ValueError("size must be >= 1")
    for start in range(0, len(items), size):
        yield items[start:start + size]
