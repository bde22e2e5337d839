"""
Payment-to-installment matching.

Two passes over the same payment records:

(a) schedule enrichment: every scheduled cuota gets the first payment (file
    order) whose order matches and whose "Cuota Pagada" list contains it.
(b) payment-based synthesis: every payment row is split evenly across the
    cuotas it lists and aggregated per (orden, cuota); one installment is
    emitted per key. Keys with no schedule entry become "other channel"
    receipts.

Splitting by count (not by each cuota's scheduled amount) is a business rule:
"3,4,5" for $300 means $100 per cuota.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .adapters import (
    OrderColumns,
    PaymentColumns,
    Row,
    cell,
    headers_of,
    orders_by_number,
    text,
)
from .models import Installment, PaymentDetails, PaymentRecord, PaymentSplitInfo, Verification
from .normalize import normalize_number, parse_excel_date

logger = logging.getLogger(__name__)

UNASSIGNED = -1
SPLIT_TOLERANCE = 0.01

_INT_PREFIX = re.compile(r"[+-]?\d+")

Key = Tuple[str, int]


def parse_cuota_numbers(value: Any) -> List[int]:
    """ "3, 4,5" -> [3, 4, 5]; parts that don't start with a number are dropped."""
    out = []
    for part in text(value).split(","):
        m = _INT_PREFIX.match(part.strip())
        if m:
            out.append(int(m.group(0)))
    return out


# -----------------------------
# (a) schedule enrichment
# -----------------------------
def build_first_payment_index(payments: Sequence[PaymentRecord]) -> Dict[Key, PaymentRecord]:
    """(orden, cuota) -> first payment record listing that cuota."""
    index: Dict[Key, PaymentRecord] = {}
    for p in payments:
        orden = p.orden.strip()
        for n in parse_cuota_numbers(p.cuota_pagada):
            index.setdefault((orden, n), p)
    return index


def enrich_schedule_installments(
    installments: Sequence[Installment],
    index: Dict[Key, PaymentRecord],
) -> List[Installment]:
    out = []
    matched = 0
    for inst in installments:
        payment = index.get((inst.orden.strip(), inst.numero_cuota))
        if payment is not None and payment.fecha_transaccion is not None:
            matched += 1
            inst = replace(
                inst,
                fecha_pago_real=payment.fecha_transaccion,
                payment_details=PaymentDetails.from_payment(payment),
                verificacion=payment.verificacion or Verification.UNKNOWN.value,
            )
        out.append(inst)
    logger.info("Matched %d of %d scheduled installments to payments", matched, len(out))
    return out


# -----------------------------
# (b) payment-based synthesis
# -----------------------------
@dataclass
class _Aggregate:
    first: PaymentRecord
    total: float = 0.0
    has_verified: bool = False
    contributors: List[PaymentRecord] = field(default_factory=list)


def aggregate_payments(payments: Sequence[PaymentRecord]) -> Dict[Key, _Aggregate]:
    """Split each payment across its cuotas and fold per (orden, cuota), first-seen first."""
    groups: Dict[Key, _Aggregate] = {}
    for p in payments:
        orden = p.orden.strip()
        if not orden:
            continue
        cuotas = parse_cuota_numbers(p.cuota_pagada) or [UNASSIGNED]
        amount = p.monto_usd if p.monto_usd is not None else 0.0
        per_cuota = amount / len(cuotas)
        for n in cuotas:
            agg = groups.get((orden, n))
            if agg is None:
                agg = groups[(orden, n)] = _Aggregate(first=p)
            agg.total += per_cuota
            agg.has_verified = agg.has_verified or p.verificacion == Verification.SI.value
            agg.contributors.append(p)
    return groups


def synthesize_payment_installments(
    payments: Sequence[PaymentRecord],
    schedule: Sequence[Installment],
    orders: Sequence[Row] = (),
    order_headers: Optional[Sequence[str]] = None,
    splits: Optional[Dict[str, PaymentSplitInfo]] = None,
) -> List[Installment]:
    """
    One payment-based installment per (orden, cuota) found in the payments.

    monto is the scheduled amount when the cuota is on the schedule, otherwise
    the summed payments. verificacion is SI when any contributing payment is
    verified, else the first payment's flag. Due dates only come from
    active orders; a cancelled order's payments get none.
    """
    schedule_by_key = {inst.key: inst for inst in schedule}
    cols = OrderColumns.resolve(headers_of(orders, order_headers)) if orders else None
    order_rows = orders_by_number(orders, order_headers, active_only=True) if orders else {}
    splits = splits or {}

    out: List[Installment] = []
    for (orden, n), agg in aggregate_payments(payments).items():
        scheduled = schedule_by_key.get((orden, n))
        fecha_cuota = scheduled.fecha_cuota if scheduled else _order_due_date(order_rows.get(orden), cols, n)
        first = agg.first
        out.append(Installment(
            orden=orden,
            numero_cuota=n,
            monto=scheduled.monto if scheduled else agg.total,
            fecha_cuota=fecha_cuota,
            estado_cuota="Done",
            fecha_pago=None,
            fecha_pago_real=first.fecha_transaccion,
            is_payment_based=True,
            payment_details=PaymentDetails.from_payment(first),
            verificacion=Verification.SI.value if agg.has_verified else (first.verificacion or Verification.UNKNOWN.value),
            monto_pagado=agg.total,
            split_info=splits.get(f"{first.referencia}-{orden}-{n}"),
        ))
    logger.info("Synthesized %d payment-based installments from %d payments", len(out), len(payments))
    return out


def _order_due_date(row: Optional[Row], cols: Optional[OrderColumns], n: int) -> Optional[datetime]:
    if row is None or cols is None or n < 0:
        return None
    return parse_excel_date(cell(row, cols.cuota_date_header(n)))


# -----------------------------
# Split report
# -----------------------------
def calculate_payment_splits(
    payment_rows: Sequence[Row],
    headers: Optional[Sequence[str]],
    orders: Sequence[Row] = (),
    order_headers: Optional[Sequence[str]] = None,
) -> Dict[str, PaymentSplitInfo]:
    """
    Group payment rows by reference and divide the payment across every cuota
    the group lists. Keys look like "{referencia}-{orden}-{cuota}".

    The amount is the first row's USD amount, or its VES amount when there is
    no positive USD amount. Each split is compared with the scheduled
    "Cuota N" amount of the order and flagged when it does not cover it.
    """
    cols = PaymentColumns.resolve(headers_of(payment_rows, headers))
    if not cols.referencia or not cols.orden or not cols.cuota:
        return {}

    by_reference: Dict[str, List[Row]] = {}
    for row in payment_rows:
        ref = text(cell(row, cols.referencia))
        if ref:
            by_reference.setdefault(ref, []).append(row)

    order_cols = OrderColumns.resolve(headers_of(orders, order_headers)) if orders else None
    order_rows = orders_by_number(orders, order_headers, active_only=True) if orders else {}

    out: Dict[str, PaymentSplitInfo] = {}
    for ref, rows in by_reference.items():
        original, currency = _group_amount(rows[0], cols)
        if not original:
            continue

        cuotas: List[Tuple[str, str]] = []
        for row in rows:
            orden = text(cell(row, cols.orden))
            value = text(cell(row, cols.cuota))
            if not orden or not value:
                continue
            cuotas.extend((orden, c.strip()) for c in value.split(",") if c.strip())
        if not cuotas:
            continue

        split = original / len(cuotas)
        for orden, cuota in cuotas:
            expected = _expected_amount(order_rows.get(orden), order_cols, cuota)
            warning = None
            if expected is not None:
                if split < expected - SPLIT_TOLERANCE:
                    warning = f"Monto dividido (${split:.2f}) no cubre la cuota esperada (${expected:.2f})"
                elif abs(split - expected) > SPLIT_TOLERANCE:
                    warning = f"Diferencia de ${abs(split - expected):.2f} entre monto dividido y cuota esperada"
            out[f"{ref}-{orden}-{cuota}"] = PaymentSplitInfo(
                original_amount=original,
                split_amount=split,
                number_of_cuotas=len(cuotas),
                expected_cuota_amount=expected,
                has_warning=warning is not None,
                warning_message=warning,
                currency=currency,
            )
    return out


def _group_amount(row: Row, cols: PaymentColumns) -> Tuple[float, str]:
    usd = normalize_number(cell(row, cols.monto_usd))
    if usd > 0:
        return usd, "USD"
    ves = normalize_number(cell(row, cols.monto_ves))
    if ves > 0:
        return ves, "VES"
    return 0.0, "USD"


def _expected_amount(row: Optional[Row], cols: Optional[OrderColumns], cuota: str) -> Optional[float]:
    if row is None or cols is None:
        return None
    nums = parse_cuota_numbers(cuota)
    if not nums:
        return None
    header = cols.cuota_amount_header(nums[0])
    amount = normalize_number(cell(row, header))
    return amount if amount > 0 else None


def get_payment_split_key(record: PaymentRecord) -> str:
    """Split key of a record; multi-cuota records use their first cuota."""
    parts = [c.strip() for c in record.cuota_pagada.split(",") if c.strip()]
    first = parts[0] if parts else record.cuota_pagada
    return f"{record.referencia}-{record.orden}-{first}"
