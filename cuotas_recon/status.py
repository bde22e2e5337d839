"""
Installment status classification.

A pure function of four values (due date, payment date from the payment
records, payment date from the orders sheet, recorded state). No clock, no
I/O: the same inputs always give the same label.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Any, Iterable, List, Optional

from .models import EstadoCuota, Installment, InstallmentStatus
from .normalize import to_date

EARLY_DAYS = 15
LATE_DAYS = 2


def classify_status(
    fecha_cuota: Any,
    fecha_pago_real: Any,
    fecha_pago: Any,
    estado_cuota: Optional[str],
    early_days: int = EARLY_DAYS,
    late_days: int = LATE_DAYS,
) -> str:
    """
    Priority order:
      no payment date + Done     -> NO DEPOSITADO
      no payment date + Delayed  -> ATRASADO
      no payment date            -> "" (pending)
      payment but no due date    -> OTRO ALIADO
      >= early_days early and due in a later month -> ADELANTADO
      > late_days late           -> ATRASADO
      otherwise                  -> A TIEMPO
    """
    paid_on: Optional[date] = to_date(fecha_pago_real) or to_date(fecha_pago)
    estado = (estado_cuota or "").strip().lower()

    if paid_on is None:
        if estado == EstadoCuota.DONE.value.lower():
            return InstallmentStatus.NO_DEPOSITADO.value
        if estado == EstadoCuota.DELAYED.value.lower():
            return InstallmentStatus.ATRASADO.value
        return InstallmentStatus.PENDIENTE.value

    due: Optional[date] = to_date(fecha_cuota)
    if due is None:
        return InstallmentStatus.OTRO_ALIADO.value

    days_diff = (paid_on - due).days
    due_period = (due.year, due.month)
    paid_period = (paid_on.year, paid_on.month)

    if days_diff <= -early_days and due_period > paid_period:
        return InstallmentStatus.ADELANTADO.value
    if days_diff > late_days:
        return InstallmentStatus.ATRASADO.value
    return InstallmentStatus.A_TIEMPO.value


def calculate_installment_status(installment: Installment, early_days: int = EARLY_DAYS, late_days: int = LATE_DAYS) -> str:
    return classify_status(
        installment.fecha_cuota,
        installment.fecha_pago_real,
        installment.fecha_pago,
        installment.estado_cuota,
        early_days=early_days,
        late_days=late_days,
    )


def apply_statuses(installments: Iterable[Installment], early_days: int = EARLY_DAYS, late_days: int = LATE_DAYS) -> List[Installment]:
    return [
        replace(inst, status=calculate_installment_status(inst, early_days, late_days))
        for inst in installments
    ]
