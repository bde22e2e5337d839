from datetime import date, datetime

import pytest

from cuotas_recon.engine import SourceSnapshot, reconcile
from cuotas_recon.models import BankStatementLine, Dataset, Installment, MonthlyReport, PaymentRecord
from cuotas_recon.report import (
    ReportAdjustments,
    ReportFilters,
    bank_statement_summary,
    compute_monthly_report,
    compute_summaries,
    orders_summary,
    payment_records_summary,
    sales_totals,
    weekly_expected_income,
)

from .conftest import BANK_HEADERS, ORDER_HEADERS, PAYMENT_HEADERS, bank_line, payment

TODAY = date(2025, 3, 10)


def test_effective_window_is_the_intersection():
    f = ReportFilters(master_from=date(2025, 1, 1), master_to=date(2025, 3, 31),
                      local_from=date(2025, 2, 1), local_to=date(2025, 4, 30))
    assert f.effective_window() == (date(2025, 2, 1), date(2025, 3, 31))
    assert ReportFilters().effective_window() == (None, None)
    assert ReportFilters(local_to=date(2025, 1, 1)).effective_window() == (None, date(2025, 1, 1))


def test_monthly_report_without_filters(report_snapshot):
    report = compute_monthly_report(reconcile(report_snapshot, today=TODAY))

    assert report.ventas_totales == 1000.0           # cancelled order excluded
    assert report.monto_pagado_en_caja == 200.0
    assert report.monto_financiado == 800.0
    assert report.porcentaje_financiado == pytest.approx(80.0)

    assert report.recibido_en_banco == 1050.0
    assert report.cuotas_adelantadas_clientes == 400.0
    assert report.pago_inicial_clientes_app == 200.0
    assert report.devoluciones_errores_pago == 0.0
    assert report.depositos_otros_aliados == 50.0
    assert report.banco_neto == 400.0

    assert report.cuentas_por_cobrar == 800.0
    assert report.cuotas_adelantadas_periodos_anteriores == 400.0
    assert report.cuentas_por_cobrar_neto == 400.0
    assert report.subtotal == 0.0
    assert report.resultado == 0.0


def test_monthly_report_with_master_window(report_snapshot):
    filters = ReportFilters(master_from=date(2025, 3, 1), master_to=date(2025, 3, 31))
    report = compute_monthly_report(reconcile(report_snapshot, today=TODAY), filters)

    assert report.ventas_totales == 0.0
    assert report.recibido_en_banco == 50.0
    assert report.cuotas_adelantadas_clientes == 400.0
    assert report.pago_inicial_clientes_app == 0.0
    assert report.depositos_otros_aliados == 50.0
    assert report.banco_neto == -400.0
    assert report.cuentas_por_cobrar == 400.0
    # paid in February, outside the master window
    assert report.cuotas_adelantadas_periodos_anteriores == 0.0
    assert report.subtotal == -800.0


def test_local_filter_does_not_move_adelantadas(report_snapshot):
    result = reconcile(report_snapshot, today=TODAY)
    local = ReportFilters(local_from=date(2025, 2, 1), local_to=date(2025, 2, 28))
    report = compute_monthly_report(result, local)
    assert report.cuotas_adelantadas_clientes == 400.0
    assert report.cuotas_adelantadas_periodos_anteriores == 400.0
    assert report.cuentas_por_cobrar == 400.0   # only cuota 1 is due in February


def test_cancelled_order_payments_stay_out_of_the_waterfall(report_snapshot):
    orders = Dataset(ORDER_HEADERS, report_snapshot.orders.rows[:1] + [{
        "Orden": "C1", "STATUS ORDEN": "Cancelled", "FECHA DE COMPRA": datetime(2025, 1, 6),
        "Venta total": 500, "PAGO INICIAL": 100,
        "Fecha cuota 1": datetime(2025, 3, 20), "Cuota 1": 400,
    }])
    payments = Dataset(PAYMENT_HEADERS, report_snapshot.payments.rows + [
        payment("C1", "0", "44440000", datetime(2025, 1, 6), 100),
        payment("C1", "1", "44441111", datetime(2025, 2, 10), 400),
    ])
    bank = Dataset(BANK_HEADERS, report_snapshot.bank.rows + [
        bank_line("44440000", debe=100),
        bank_line("44441111", debe=400),
    ])
    result = reconcile(SourceSnapshot(orders, payments, bank), today=TODAY)
    report = compute_monthly_report(result)

    assert report.cuotas_adelantadas_periodos_anteriores == 400.0   # A1 cuota 2 only
    assert report.pago_inicial_clientes_app == 200.0
    assert report.depositos_otros_aliados == 50.0
    assert report.cuentas_por_cobrar_neto == 400.0
    c1 = [i for i in result.payment_based if i.orden == "C1"]
    assert c1 and all(i.fecha_cuota is None for i in c1)


def test_order_filter(report_snapshot):
    report = compute_monthly_report(reconcile(report_snapshot, today=TODAY), ReportFilters(master_orden="z9"))
    assert report.recibido_en_banco == 50.0
    assert report.cuentas_por_cobrar == 0.0
    assert report.ventas_totales == 0.0


def test_adjustments_feed_resultado(report_snapshot):
    adjustments = ReportAdjustments(devoluciones=10, iva=5, islr=1, factoring=2, cupones=3)
    report = compute_monthly_report(reconcile(report_snapshot, today=TODAY), adjustments=adjustments)
    assert report.banco_neto == 390.0
    assert report.total_ajustes == 11.0
    assert report.resultado == report.subtotal - 11.0


def test_marketplace_sheet_drives_sales_when_loaded(report_snapshot):
    marketplace = Dataset(["Orden", "Total USD", "PAGO INICIAL", "STATUS ORDEN"], [
        {"Orden": "M1", "Total USD": "1.500,00", "PAGO INICIAL": 300, "STATUS ORDEN": "Delivered"},
        {"Orden": "M2", "Total USD": 700, "PAGO INICIAL": "n/a", "STATUS ORDEN": "Cancelada"},
    ])
    snap = SourceSnapshot(report_snapshot.orders, report_snapshot.payments, report_snapshot.bank, marketplace)
    report = compute_monthly_report(reconcile(snap, today=TODAY))
    assert report.ventas_totales == 1500.0
    assert report.monto_pagado_en_caja == 300.0


def test_sales_totals_ignore_unparseable_amounts():
    rows = [{"Orden": "1", "Venta total": "abc", "PAGO INICIAL": None}, {"Orden": "2", "Venta total": 10}]
    assert sales_totals(rows, ["Orden", "Venta total", "PAGO INICIAL"]) == (10.0, 0.0)


def test_percentage_is_zero_without_sales():
    report = MonthlyReport()
    report.calculate()
    assert report.porcentaje_financiado == 0.0


def test_weekly_expected_income():
    items = [
        Installment(orden="1", numero_cuota=1, monto=100.0, fecha_cuota=datetime(2025, 3, 10)),
        Installment(orden="2", numero_cuota=1, monto=50.0, fecha_cuota=datetime(2025, 3, 16),
                    fecha_pago_real=datetime(2025, 3, 12)),
        Installment(orden="3", numero_cuota=1, monto=70.0, fecha_cuota=datetime(2025, 3, 17)),
        Installment(orden="4", numero_cuota=1, monto=30.0, fecha_cuota=datetime(2025, 3, 11), is_payment_based=True),
    ]
    week = weekly_expected_income(items, date(2025, 3, 12))
    assert (week["desde"], week["hasta"]) == ("10/03/2025", "16/03/2025")
    assert week["cuotas"] == 2
    assert week["total_esperado"] == 150.0
    assert week["total_pagado"] == 50.0


def test_orders_summary_splits_active_and_cancelled():
    headers = ["Orden", "STATUS ORDEN", "Venta total", "PAGO INICIAL", "Pagado de cuota 1", "Pagado de cuota 2"]
    rows = [
        {"Orden": "O1", "Venta total": 1000, "PAGO INICIAL": 200, "Pagado de cuota 1": 400, "Pagado de cuota 2": 400},
        {"Orden": "O2", "Venta total": 500, "PAGO INICIAL": 100, "Pagado de cuota 1": "n/a"},
        {"Orden": "O3", "Venta total": 300, "PAGO INICIAL": 0, "Pagado de cuota 1": 350},
        {"Orden": "O4", "STATUS ORDEN": "Cancelada", "Venta total": 700, "PAGO INICIAL": 70, "Pagado de cuota 1": 70},
    ]
    summary = orders_summary(rows, headers)

    assert summary["ordenes"] == 3
    assert summary["ordenes_activas"] == 1
    assert summary["monto_ventas"] == 1800.0
    assert summary["pago_inicial"] == 300.0
    assert summary["cuotas_pagadas"] == 1150.0
    assert summary["total_pagos"] == 1450.0
    assert summary["saldo_pendiente"] == 400.0   # O3's overpayment does not offset O2
    assert summary["ordenes_canceladas"] == 1
    assert summary["venta_total_canceladas"] == 700.0
    assert summary["monto_inicial_canceladas"] == 70.0


def test_payment_records_summary_counts_each_listed_cuota():
    records = [
        PaymentRecord(orden="1001", cuota_pagada="4,5,6", monto_usd=300.0),
        PaymentRecord(orden="1001", cuota_pagada="5"),
        PaymentRecord(orden="1002", cuota_pagada="1", monto_usd=50.0),
        PaymentRecord(orden="", cuota_pagada="1", monto_usd=10.0),
    ]
    assert payment_records_summary(records) == {"registros": 4, "cuotas_pagadas": 4, "total_pagado_usd": 360.0}


def test_bank_statement_summary_balances():
    lines = [
        BankStatementLine(referencia="1", debe=100.0, saldo=900.0),
        BankStatementLine(referencia="2", haber=50.0, saldo=950.0),
    ]
    assert bank_statement_summary(lines) == {"saldo_inicial": 1000.0, "debe": 100.0, "haber": 50.0, "saldo_final": 950.0}
    assert bank_statement_summary([])["saldo_final"] == 0.0


def test_compute_summaries(report_snapshot):
    summaries = compute_summaries(reconcile(report_snapshot, today=TODAY))
    assert summaries["ordenes"]["ordenes"] == 1
    assert summaries["ordenes"]["ordenes_canceladas"] == 1
    assert summaries["pagos"]["cuotas_pagadas"] == 4
    assert summaries["pagos"]["total_pagado_usd"] == 1050.0
    assert summaries["banco"]["debe"] == 1060.0

    march = compute_summaries(
        reconcile(report_snapshot, today=TODAY),
        ReportFilters(master_from=date(2025, 3, 1), master_to=date(2025, 3, 31)),
    )
    assert march["pagos"] == {"registros": 1, "cuotas_pagadas": 1, "total_pagado_usd": 50.0}
