"""
Monthly reconciliation report (Reporte Mensual) and the weekly expected-income view.

Filters come in two layers: the master filter (applies everywhere) and the
local filter of the report tab. The effective window is their intersection.
"Cuotas adelantadas" (both of them) only follow the master filter so the
figure does not move when a tab narrows its own range.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .adapters import (
    OrderColumns,
    Row,
    cancelled_order_numbers,
    cell,
    headers_of,
    is_cancelled_order,
    orders_by_number,
    text,
)
from .engine import ReconResult
from .models import (
    BankStatementLine,
    Dataset,
    Installment,
    InstallmentStatus,
    MonthlyReport,
    PaymentRecord,
    Verification,
)
from .normalize import format_date, get_monday, get_sunday, normalize_number, parse_excel_date, to_date

logger = logging.getLogger(__name__)

SI = Verification.SI.value


@dataclass(frozen=True)
class ReportFilters:
    master_from: Optional[date] = None
    master_to: Optional[date] = None
    master_orden: str = ""
    local_from: Optional[date] = None
    local_to: Optional[date] = None
    local_orden: str = ""

    def effective_window(self) -> Tuple[Optional[date], Optional[date]]:
        """Intersection of both windows; the most restrictive bound wins."""
        lows = [d for d in (self.master_from, self.local_from) if d is not None]
        highs = [d for d in (self.master_to, self.local_to) if d is not None]
        return (max(lows) if lows else None, min(highs) if highs else None)

    def master_window(self) -> Tuple[Optional[date], Optional[date]]:
        return self.master_from, self.master_to

    def order_terms(self, master_only: bool = False) -> List[str]:
        terms = [self.master_orden] if master_only else [self.master_orden, self.local_orden]
        return [t.strip().lower() for t in terms if t and t.strip()]


@dataclass(frozen=True)
class ReportAdjustments:
    """Line items supplied by the caller; they default to 0."""
    devoluciones: float = 0.0
    iva: float = 0.0
    islr: float = 0.0
    factoring: float = 0.0
    cupones: float = 0.0


# -----------------------------
# Filter helpers
# -----------------------------
def _in_window(value: Any, window: Tuple[Optional[date], Optional[date]]) -> bool:
    lo, hi = window
    if lo is None and hi is None:
        return True
    d = to_date(value)
    if d is None:
        return False
    return (lo is None or d >= lo) and (hi is None or d <= hi)


def _order_ok(orden: str, terms: Sequence[str]) -> bool:
    o = (orden or "").lower()
    return all(t in o for t in terms)


def _safe_sum(values: Iterable[Optional[float]]) -> float:
    total = 0.0
    for v in values:
        if v is None or (isinstance(v, float) and math.isnan(v)):
            continue
        total += v
    return total


# -----------------------------
# Line items
# -----------------------------
def sales_totals(
    rows: Sequence[Row],
    headers: Optional[Sequence[str]],
    window: Tuple[Optional[date], Optional[date]] = (None, None),
    terms: Sequence[str] = (),
) -> Tuple[float, float]:
    """(Ventas Totales, Monto Pagado en Caja) over non-cancelled orders."""
    cols = OrderColumns.resolve(headers_of(rows, headers), 0)
    ventas = caja = 0.0
    for row in rows:
        if is_cancelled_order(row, cols.status):
            continue
        if not _order_ok(text(cell(row, cols.orden)), terms):
            continue
        if not _in_window(parse_excel_date(cell(row, cols.purchase_date)), window):
            continue
        ventas += _safe_sum([normalize_number(cell(row, cols.sale_total))])
        caja += _safe_sum([normalize_number(cell(row, cols.initial_payment))])
    return ventas, caja


def received_in_bank(payments: Iterable[PaymentRecord]) -> float:
    return _safe_sum(p.monto_usd for p in payments if p.verificacion == SI)


def initial_payments(payments: Iterable[PaymentRecord], known_orders: Iterable[str]) -> float:
    """Verified payments for cuota "0" alone, of active orders in the orders sheet."""
    known = set(known_orders)
    return _safe_sum(
        p.monto_usd for p in payments
        if p.verificacion == SI and p.cuota_pagada.strip() == "0" and p.orden.strip() in known
    )


def sum_by_status(installments: Iterable[Installment], status: InstallmentStatus) -> float:
    return _safe_sum(i.monto for i in installments if i.status == status.value)


def compute_monthly_report(
    result: ReconResult,
    filters: Optional[ReportFilters] = None,
    adjustments: Optional[ReportAdjustments] = None,
) -> MonthlyReport:
    """
    Waterfall over one reconciliation result.

    Sales come from the marketplace sheet when one is loaded, otherwise from
    the orders sheet. Payments are dated by transaction date, schedule
    installments by due date, payment-based installments by payment date.
    """
    filters = filters or ReportFilters()
    adjustments = adjustments or ReportAdjustments()
    window = filters.effective_window()
    master = filters.master_window()
    terms = filters.order_terms()
    master_terms = filters.order_terms(master_only=True)

    snap = result.snapshot
    sales: Dataset = snap.marketplace if len(snap.marketplace) else snap.orders
    ventas, caja = sales_totals(sales.rows, sales.headers, window, terms)
    cancelled = cancelled_order_numbers(snap.orders.rows, snap.orders.headers)
    payment_based = [i for i in result.payment_based if i.orden not in cancelled]

    payments = [
        p for p in result.payments
        if _order_ok(p.orden, terms) and _in_window(p.fecha_transaccion, window)
    ]
    schedule = [i for i in result.schedule if _order_ok(i.orden, terms) and _in_window(i.fecha_cuota, window)]
    schedule_master = [
        i for i in result.schedule
        if _order_ok(i.orden, master_terms) and _in_window(i.fecha_cuota, master)
    ]
    by_payment = [
        i for i in payment_based
        if _order_ok(i.orden, terms) and _in_window(i.payment_date, window)
    ]
    by_payment_master = [
        i for i in payment_based
        if _order_ok(i.orden, master_terms) and _in_window(i.payment_date, master)
    ]

    report = MonthlyReport(
        ventas_totales=ventas,
        monto_pagado_en_caja=caja,
        recibido_en_banco=received_in_bank(payments),
        cuotas_adelantadas_clientes=sum_by_status(schedule_master, InstallmentStatus.ADELANTADO),
        pago_inicial_clientes_app=initial_payments(
            payments, orders_by_number(snap.orders.rows, snap.orders.headers, active_only=True)
        ),
        devoluciones_errores_pago=adjustments.devoluciones,
        depositos_otros_aliados=_safe_sum(
            i.monto for i in by_payment
            if i.status == InstallmentStatus.OTRO_ALIADO.value and i.verificacion == SI
        ),
        cuentas_por_cobrar=_safe_sum(i.monto for i in schedule),
        cuotas_adelantadas_periodos_anteriores=sum_by_status(by_payment_master, InstallmentStatus.ADELANTADO),
        iva=adjustments.iva,
        islr=adjustments.islr,
        factoring=adjustments.factoring,
        cupones=adjustments.cupones,
    )
    report.calculate()
    logger.info("Monthly report: banco neto %.2f, CxC neto %.2f, subtotal %.2f",
                report.banco_neto, report.cuentas_por_cobrar_neto, report.subtotal)
    return report


# -----------------------------
# Sheet summaries
# -----------------------------
ACTIVE_BALANCE = 0.01


def orders_summary(
    rows: Sequence[Row],
    headers: Optional[Sequence[str]],
    window: Tuple[Optional[date], Optional[date]] = (None, None),
    terms: Sequence[str] = (),
) -> Dict[str, Any]:
    """
    Totals of the orders sheet, split into active and cancelled orders.

    An order is active while its balance (sale total minus initial payment
    minus every "Pagado de cuota N") is above one cent. Only positive balances
    add to ``saldo_pendiente``; overpayments do not offset other orders.
    Cancelled orders only feed the ``*_canceladas`` figures.
    """
    cols = OrderColumns.resolve(headers_of(rows, headers))
    out = {
        "ordenes": 0,
        "ordenes_activas": 0,
        "monto_ventas": 0.0,
        "pago_inicial": 0.0,
        "cuotas_pagadas": 0.0,
        "total_pagos": 0.0,
        "saldo_pendiente": 0.0,
        "ordenes_canceladas": 0,
        "venta_total_canceladas": 0.0,
        "monto_inicial_canceladas": 0.0,
    }
    for row in rows:
        if not _order_ok(text(cell(row, cols.orden)), terms):
            continue
        if not _in_window(parse_excel_date(cell(row, cols.purchase_date)), window):
            continue
        venta = _safe_sum([normalize_number(cell(row, cols.sale_total))])
        inicial = _safe_sum([normalize_number(cell(row, cols.initial_payment))])

        if is_cancelled_order(row, cols.status):
            out["ordenes_canceladas"] += 1
            out["venta_total_canceladas"] += venta
            out["monto_inicial_canceladas"] += inicial
            continue

        cuotas = _safe_sum(normalize_number(cell(row, h)) for h in cols.paid.values() if h)
        saldo = venta - inicial - cuotas
        out["ordenes"] += 1
        out["monto_ventas"] += venta
        out["pago_inicial"] += inicial
        out["cuotas_pagadas"] += cuotas
        out["total_pagos"] += inicial + cuotas
        if saldo > 0:
            out["saldo_pendiente"] += saldo
        if saldo > ACTIVE_BALANCE:
            out["ordenes_activas"] += 1
    return out


def payment_records_summary(payments: Iterable[PaymentRecord]) -> Dict[str, Any]:
    """Distinct (orden, cuota) pairs paid and the total paid in USD; "4,5,6" counts three cuotas."""
    paid = set()
    records = 0
    total = 0.0
    for p in payments:
        records += 1
        total += _safe_sum([p.monto_usd])
        orden = p.orden.strip()
        if not orden:
            continue
        for c in p.cuota_pagada.split(","):
            if c.strip():
                paid.add((orden, c.strip()))
    return {"registros": records, "cuotas_pagadas": len(paid), "total_pagado_usd": total}


def bank_statement_summary(lines: Sequence[BankStatementLine]) -> Dict[str, float]:
    """
    Opening and closing balance of the statement.

    The first line's balance already includes its own movement, so the
    opening balance is ``saldo - haber + debe`` of that line and the closing
    balance is ``saldo_inicial - total debe + total haber``.
    """
    if not lines:
        return {"saldo_inicial": 0.0, "debe": 0.0, "haber": 0.0, "saldo_final": 0.0}
    first = lines[0]
    saldo_inicial = _safe_sum([first.saldo]) - _safe_sum([first.haber]) + _safe_sum([first.debe])
    debe = _safe_sum(line.debe for line in lines)
    haber = _safe_sum(line.haber for line in lines)
    return {
        "saldo_inicial": saldo_inicial,
        "debe": debe,
        "haber": haber,
        "saldo_final": saldo_inicial - debe + haber,
    }


def compute_summaries(result: ReconResult, filters: Optional[ReportFilters] = None) -> Dict[str, Any]:
    """Orders, payment records and bank statement summaries under the effective filters."""
    filters = filters or ReportFilters()
    window = filters.effective_window()
    terms = filters.order_terms()
    orders = result.snapshot.orders
    payments = [
        p for p in result.payments
        if _order_ok(p.orden, terms) and _in_window(p.fecha_transaccion, window)
    ]
    bank = [line for line in result.bank_lines if _in_window(line.fecha, window)]
    return {
        "ordenes": orders_summary(orders.rows, orders.headers, window, terms),
        "pagos": payment_records_summary(payments),
        "banco": bank_statement_summary(bank),
    }


# -----------------------------
# Weekly view
# -----------------------------
def weekly_expected_income(installments: Iterable[Installment], today: Optional[date] = None) -> Dict[str, Any]:
    """Schedule installments due Monday..Sunday of the week containing ``today``."""
    today = today or date.today()
    monday, sunday = get_monday(today), get_sunday(today)
    due = [
        i for i in installments
        if not i.is_payment_based and _in_window(i.fecha_cuota, (monday, sunday))
    ]
    due.sort(key=lambda i: (to_date(i.fecha_cuota), i.orden, i.numero_cuota))
    paid = [i for i in due if i.payment_date is not None]
    return {
        "desde": format_date(monday),
        "hasta": format_date(sunday),
        "cuotas": len(due),
        "total_esperado": _safe_sum(i.monto for i in due),
        "total_pagado": _safe_sum(i.monto for i in paid),
        "installments": [i.to_dict() for i in due],
    }
