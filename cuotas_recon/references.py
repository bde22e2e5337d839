"""
Reference and amount matching.

Bank exports truncate or prefix reference numbers inconsistently ("18" +
the real 12-digit reference, leading zeros, spaces). Eight consecutive
digits are treated as enough to identify a transfer.
"""
from __future__ import annotations

import re
from collections import defaultdict
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

WINDOW = 8

_WS = re.compile(r"\s+")
_NON_DIGIT = re.compile(r"\D")

T = TypeVar("T")


def _ref_text(ref: Any) -> str:
    if ref is None:
        return ""
    # Excel hands long numeric references back as floats
    if isinstance(ref, float) and ref.is_integer():
        return str(int(ref))
    return str(ref)


def normalize_reference(ref: Any) -> str:
    """Remove whitespace and leading zeros, lowercase."""
    return _WS.sub("", _ref_text(ref)).lstrip("0").lower()


def reference_digits(ref: Any) -> str:
    return _NON_DIGIT.sub("", normalize_reference(ref))


def _windows(digits: str) -> Iterable[str]:
    for i in range(len(digits) - WINDOW + 1):
        yield digits[i:i + WINDOW]


def references_match(ref1: Any, ref2: Any) -> bool:
    """
    Exact match, containment, equal last 8 digits, or any shared run of
    8 consecutive digits (checked in both directions).
    """
    n1 = normalize_reference(ref1)
    n2 = normalize_reference(ref2)
    if not n1 or not n2:
        return False

    if n1 == n2:
        return True

    d1 = _NON_DIGIT.sub("", n1)
    d2 = _NON_DIGIT.sub("", n2)
    if len(d1) < WINDOW and len(d2) < WINDOW:
        return False

    if n2 in n1 or n1 in n2:
        return True

    if len(d1) >= WINDOW and len(d2) >= WINDOW and d1[-WINDOW:] == d2[-WINDOW:]:
        return True

    if any(w in d2 for w in _windows(d1)):
        return True
    if any(w in d1 for w in _windows(d2)):
        return True

    return False


def amounts_match(amount1: Optional[float], amount2: Optional[float], tolerance: float = 0.01) -> bool:
    """|a - b| <= tolerance, inclusive at the cent."""
    if amount1 is None or amount2 is None:
        return False
    # round() keeps 100.01 vs 100.00 inside a 0.01 tolerance
    return round(abs(amount1 - amount2), 9) <= tolerance


class ReferenceIndex(Generic[T]):
    """
    Hash index over items carrying a reference.

    Items are bucketed by normalized reference and by every 8-digit window of
    their digits; items with fewer than 8 digits go to a list that is always
    scanned. ``candidates`` therefore returns every item that
    ``references_match`` could accept (plus some it will reject), in the
    order the items were added.
    """

    def __init__(self, items: Sequence[T], get_ref: Callable[[T], Any]):
        self._items = list(items)
        self._get_ref = get_ref
        self._by_key: Dict[str, List[int]] = defaultdict(list)
        self._short: List[int] = []

        for pos, item in enumerate(self._items):
            norm = normalize_reference(get_ref(item))
            if not norm:
                continue
            self._by_key["n:" + norm].append(pos)
            digits = _NON_DIGIT.sub("", norm)
            if len(digits) < WINDOW:
                self._short.append(pos)
                continue
            for w in set(_windows(digits)):
                self._by_key["w:" + w].append(pos)

    def __len__(self) -> int:
        return len(self._items)

    def candidates(self, ref: Any) -> List[T]:
        norm = normalize_reference(ref)
        if not norm:
            return []
        digits = _NON_DIGIT.sub("", norm)
        if len(digits) < WINDOW:
            # A short reference can sit inside any longer one
            return list(self._items)

        hits = set(self._by_key.get("n:" + norm, ()))
        hits.update(self._short)
        for w in set(_windows(digits)):
            hits.update(self._by_key.get("w:" + w, ()))
        return [self._items[i] for i in sorted(hits)]

    def matches(self, ref: Any) -> List[T]:
        return [item for item in self.candidates(ref) if references_match(ref, self._get_ref(item))]
