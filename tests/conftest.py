from __future__ import annotations

from datetime import datetime

import pytest

from cuotas_recon.engine import SourceSnapshot
from cuotas_recon.models import Dataset

ORDER_HEADERS = [
    "Orden", "STATUS ORDEN", "FECHA DE COMPRA", "Venta total", "PAGO INICIAL",
    "Fecha cuota 1", "Cuota 1", "Fecha cuota 2", "Cuota 2",
]
PAYMENT_HEADERS = [
    "# Orden", "# Cuota Pagada", "# Referencia", "Fecha de Transaccion",
    "Monto Pagado en USD", "Monto Pagado en VES",
]
BANK_HEADERS = ["Fecha", "Referencia", "Descripción", "Debe", "Haber"]


def payment(orden, cuota, ref, fecha, usd, ves=None):
    return {
        "# Orden": orden,
        "# Cuota Pagada": cuota,
        "# Referencia": ref,
        "Fecha de Transaccion": fecha,
        "Monto Pagado en USD": usd,
        "Monto Pagado en VES": ves,
    }


def bank_line(ref, debe=None, haber=None, fecha=None):
    return {"Fecha": fecha, "Referencia": ref, "Descripción": "TRANSF", "Debe": debe, "Haber": haber}


@pytest.fixture
def report_snapshot() -> SourceSnapshot:
    """
    A1: active, sold 1000 with 200 down; cuota 1 due 20/02 paid 18/02,
        cuota 2 due 20/03 paid 10/02 (early, previous month).
    C1: cancelled.
    Z9: a payment for an order that is not in the orders sheet.
    """
    orders = Dataset(ORDER_HEADERS, [
        {
            "Orden": "A1", "STATUS ORDEN": "Active", "FECHA DE COMPRA": datetime(2025, 1, 5),
            "Venta total": 1000, "PAGO INICIAL": 200,
            "Fecha cuota 1": datetime(2025, 2, 20), "Cuota 1": 400,
            "Fecha cuota 2": datetime(2025, 3, 20), "Cuota 2": 400,
        },
        {
            "Orden": "C1", "STATUS ORDEN": "Cancelled", "FECHA DE COMPRA": datetime(2025, 1, 6),
            "Venta total": 500, "PAGO INICIAL": 100,
        },
    ], "orders.xlsx")
    payments = Dataset(PAYMENT_HEADERS, [
        payment("A1", "0", "11112222", datetime(2025, 1, 5), 200),
        payment("A1", "1", "33334444", datetime(2025, 2, 18), 400),
        payment("A1", "2", "55556666", datetime(2025, 2, 10), 400),
        payment("Z9", "1", "77778888", datetime(2025, 3, 1), 50),
    ], "pagos.xlsx")
    bank = Dataset(BANK_HEADERS, [
        bank_line("0011112222", debe=200),
        bank_line("33334444", debe=400),
        bank_line("55556666", debe=400),
        bank_line("77778888", debe=50),
        bank_line("99990000", debe=10),
    ], "banco.xlsx")
    return SourceSnapshot(orders=orders, payments=payments, bank=bank)
