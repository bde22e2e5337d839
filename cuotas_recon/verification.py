"""
Bank verification.

A payment and a bank line are linked when their references match
(``references_match``) and one of the bank amounts (Debe/Haber) equals one
of the payment amounts (VES/USD) within tolerance. The link is checked in
both directions:

- VERIFICACION (payment side): is this payment in the bank statement?
- CONCILIADO (bank side): does this bank line belong to a recorded payment?

The ``verify_in_*`` functions scan rows linearly and resolve headers on each
call. The lookups (``BankLookup`` / ``PaymentLookup``) are built once per
pass on a ``ReferenceIndex`` and give the same answers in near O(n).
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, List, Optional, Sequence

from .adapters import Row, parse_bank_statement, parse_payment_records
from .models import BankStatementLine, PaymentRecord, Verification
from .normalize import to_amount
from .references import ReferenceIndex, amounts_match, references_match

logger = logging.getLogger(__name__)

SI = Verification.SI.value
NO = Verification.NO.value


def _present(values: Iterable[Optional[float]]) -> List[float]:
    return [v for v in values if v is not None]


def _any_amount_match(left: Iterable[Optional[float]], right: Iterable[Optional[float]], tolerance: float) -> bool:
    right = _present(right)
    return any(amounts_match(a, b, tolerance) for a in _present(left) for b in right)


def _line_matches_payment(
    line: BankStatementLine,
    reference: Any,
    amount_ves: Optional[float],
    amount_usd: Optional[float],
    tolerance: float = 0.01,
) -> bool:
    if not line.referencia or not references_match(reference, line.referencia):
        return False
    return _any_amount_match((line.debe, line.haber), (amount_ves, amount_usd), tolerance)


# =============================================================================
# Linear scans (row-level API)
# =============================================================================

def verify_in_bank_statements(
    reference: Any,
    amount_ves: Any,
    amount_usd: Any,
    bank_rows: Sequence[Row],
    bank_headers: Optional[Sequence[str]] = None,
    tolerance: float = 0.01,
) -> str:
    """'SI' when a bank row matches the payment's reference and amount, else 'NO'."""
    if not bank_rows:
        return NO
    ves, usd = to_amount(amount_ves), to_amount(amount_usd)
    if not reference or (ves is None and usd is None):
        return NO

    for line in parse_bank_statement(bank_rows, bank_headers):
        if _line_matches_payment(line, reference, ves, usd, tolerance):
            return SI
    return NO


def verify_in_payment_records(
    bank_ref: Any,
    bank_debe: Any,
    bank_haber: Any,
    payment_rows: Sequence[Row],
    payment_headers: Optional[Sequence[str]] = None,
    tolerance: float = 0.01,
) -> str:
    """Reverse lookup: 'SI' when a payment record matches the bank line."""
    if not payment_rows:
        return NO
    payments = parse_payment_records(payment_rows, payment_headers)
    return SI if find_matching_payment_record(bank_ref, bank_debe, bank_haber, payments, tolerance) else NO


def find_matching_payment_record(
    bank_ref: Any,
    bank_debe: Any,
    bank_haber: Any,
    payments: Sequence[PaymentRecord],
    tolerance: float = 0.01,
) -> Optional[PaymentRecord]:
    """First payment (file order) linked to the given bank line."""
    debe, haber = to_amount(bank_debe), to_amount(bank_haber)
    if not bank_ref or (debe is None and haber is None):
        return None
    for p in payments:
        if p.referencia and references_match(bank_ref, p.referencia) and \
                _any_amount_match((debe, haber), (p.monto_ves, p.monto_usd), tolerance):
            return p
    return None


# =============================================================================
# Indexed lookups (pipeline API)
# =============================================================================

class BankLookup:
    """Bank lines indexed by reference, built once per reconciliation pass."""

    def __init__(self, lines: Sequence[BankStatementLine], tolerance: float = 0.01):
        self.tolerance = tolerance
        self._index = ReferenceIndex(lines, lambda line: line.referencia)

    def __len__(self) -> int:
        return len(self._index)

    def find(self, reference: Any, amount_ves: Optional[float], amount_usd: Optional[float]) -> Optional[BankStatementLine]:
        if not reference or (amount_ves is None and amount_usd is None):
            return None
        for line in self._index.matches(reference):
            if _any_amount_match((line.debe, line.haber), (amount_ves, amount_usd), self.tolerance):
                return line
        return None

    def verify(self, payment: PaymentRecord) -> str:
        if not len(self):
            return NO
        return SI if self.find(payment.referencia, payment.monto_ves, payment.monto_usd) else NO


class PaymentLookup:
    """Payment records indexed by reference, for the bank-side CONCILIADO column."""

    def __init__(self, payments: Sequence[PaymentRecord], tolerance: float = 0.01):
        self.tolerance = tolerance
        self._index = ReferenceIndex(payments, lambda p: p.referencia)

    def __len__(self) -> int:
        return len(self._index)

    def find(self, line: BankStatementLine) -> Optional[PaymentRecord]:
        if not line.referencia or (line.debe is None and line.haber is None):
            return None
        for p in self._index.matches(line.referencia):
            if _any_amount_match((line.debe, line.haber), (p.monto_ves, p.monto_usd), self.tolerance):
                return p
        return None


def verify_payments(
    payments: Sequence[PaymentRecord],
    bank_lines: Sequence[BankStatementLine],
    tolerance: float = 0.01,
) -> List[PaymentRecord]:
    """
    Payments with VERIFICACION recomputed against the bank statement.
    With no bank statement loaded the stored flag is kept.
    """
    if not bank_lines:
        return list(payments)
    lookup = BankLookup(bank_lines, tolerance)
    out = [replace(p, verificacion=lookup.verify(p)) for p in payments]
    verified = sum(1 for p in out if p.verificacion == SI)
    logger.info("Verified %d of %d payments against %d bank lines", verified, len(out), len(bank_lines))
    return out


def conciliate_bank_lines(
    bank_lines: Sequence[BankStatementLine],
    payments: Sequence[PaymentRecord],
    tolerance: float = 0.01,
) -> List[BankStatementLine]:
    """Bank lines with CONCILIADO set and the matched order/cuota attached."""
    lookup = PaymentLookup(payments, tolerance)
    out = []
    for line in bank_lines:
        match = lookup.find(line)
        if match is None:
            out.append(replace(line, conciliado=NO, orden=None, cuota=None))
        else:
            out.append(replace(line, conciliado=SI, orden=match.orden, cuota=match.cuota_pagada))
    conciliated = sum(1 for line in out if line.conciliado == SI)
    logger.info("Conciliated %d of %d bank lines", conciliated, len(out))
    return out
