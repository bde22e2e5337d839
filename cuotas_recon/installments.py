"""
Installment extraction: wide order rows -> one record per scheduled cuota.
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence

from .adapters import OrderColumns, Row, cell, headers_of, is_cancelled_order, text
from .models import EstadoCuota, Installment
from .normalize import normalize_number, parse_excel_date, to_date

logger = logging.getLogger(__name__)


def extract_installments(
    orders: Sequence[Row],
    headers: Optional[Sequence[str]] = None,
    max_installments: int = 14,
) -> List[Installment]:
    """
    Convert order rows (up to ``max_installments`` positional cuota columns)
    into Installment records.

    Cancelled orders are skipped. A cuota is emitted only when its amount is
    > 0 and it has a due date. Cuota 0 (initial payment) is not part of the
    schedule and is never emitted here.
    """
    cols = OrderColumns.resolve(headers_of(orders, headers), max_installments)
    if not cols.orden:
        logger.warning("Orders have no order-number column; no installments extracted")
        return []

    out: List[Installment] = []
    skipped_cancelled = 0
    for row in orders:
        if is_cancelled_order(row, cols.status):
            skipped_cancelled += 1
            continue
        orden = text(cell(row, cols.orden))

        for i in range(1, max_installments + 1):
            fecha_h, monto_h, estado_h, pago_h = cols.cuotas[i]
            monto = normalize_number(cell(row, monto_h))
            if math.isnan(monto) or monto <= 0:
                continue
            fecha_cuota = parse_excel_date(cell(row, fecha_h))
            if fecha_cuota is None:
                continue
            out.append(Installment(
                orden=orden,
                numero_cuota=i,
                monto=monto,
                fecha_cuota=fecha_cuota,
                estado_cuota=text(cell(row, estado_h)),
                fecha_pago=parse_excel_date(cell(row, pago_h)),
            ))

    logger.info("Extracted %d installments (%d cancelled orders skipped)", len(out), skipped_cancelled)
    return out


def refresh_estado_cuota(installment: Installment, today: date, grace_days: int = 3) -> Installment:
    """
    Bring a Scheduled/Graced cuota up to date:
    - paid on or before its due date -> Done
    - unpaid and due more than ``grace_days`` ago -> Delayed
    """
    estado = (installment.estado_cuota or "").strip().lower()
    if estado not in (EstadoCuota.SCHEDULED.value.lower(), EstadoCuota.GRACED.value.lower()):
        return installment

    due = to_date(installment.fecha_cuota)
    paid = to_date(installment.payment_date)
    if due is None:
        return installment

    if paid is not None and paid <= due:
        return replace(installment, estado_cuota=EstadoCuota.DONE.value)
    if paid is None and due < today - timedelta(days=grace_days):
        return replace(installment, estado_cuota=EstadoCuota.DELAYED.value)
    return installment


def refresh_estados(installments: Iterable[Installment], today: date, grace_days: int = 3) -> List[Installment]:
    return [refresh_estado_cuota(i, today, grace_days) for i in installments]


def filter_installments_by_date_range(
    installments: Iterable[Installment],
    start: datetime | date,
    end: datetime | date,
) -> List[Installment]:
    """
    Keep installments whose effective date is within [start, end].
    Effective date: fecha_pago_real, else fecha_pago, else fecha_cuota.
    """
    lo, hi = to_date(start), to_date(end)
    out = []
    for inst in installments:
        d = to_date(inst.fecha_pago_real or inst.fecha_pago or inst.fecha_cuota)
        if d is None:
            continue
        if (lo is None or d >= lo) and (hi is None or d <= hi):
            out.append(inst)
    return out


def calculate_total_amount(installments: Iterable[Installment]) -> float:
    total = 0.0
    for inst in installments:
        if inst.monto is not None and not math.isnan(inst.monto):
            total += inst.monto
    return total
