from datetime import date, datetime

from cuotas_recon.engine import ReconCache, SourceSnapshot, reconcile
from cuotas_recon.models import Dataset, Installment

from .conftest import BANK_HEADERS, PAYMENT_HEADERS, bank_line, payment

TODAY = date(2025, 3, 10)


def _end_to_end_snapshot() -> SourceSnapshot:
    orders = Dataset(["Orden", "Cuota 1", "Fecha cuota 1"],
                     [{"Orden": "1001", "Cuota 1": 100, "Fecha cuota 1": datetime(2025, 3, 1)}])
    payments = Dataset(PAYMENT_HEADERS, [payment("1001", "1", "555555551234", datetime(2025, 3, 1), 100)])
    bank = Dataset(BANK_HEADERS, [bank_line("99555555551234", debe=100)])
    return SourceSnapshot(orders=orders, payments=payments, bank=bank)


def test_end_to_end_prefixed_bank_reference():
    result = reconcile(_end_to_end_snapshot(), today=TODAY)

    assert len(result.schedule) == 1
    inst = result.schedule[0]
    assert inst.verificacion == "SI"
    assert inst.status == "A TIEMPO"
    assert inst.fecha_pago_real == datetime(2025, 3, 1)

    assert [p.verificacion for p in result.payments] == ["SI"]
    line = result.bank_lines[0]
    assert (line.conciliado, line.orden, line.cuota) == ("SI", "1001", "1")

    assert len(result.payment_based) == 1
    assert result.payment_based[0].status == "A TIEMPO"


def test_reconcile_scenario(report_snapshot):
    result = reconcile(report_snapshot, today=TODAY)
    sched = {i.numero_cuota: i.status for i in result.schedule}
    assert sched == {1: "A TIEMPO", 2: "ADELANTADO"}

    by_key = {i.key: i for i in result.payment_based}
    assert by_key[("A1", 0)].fecha_cuota == datetime(2025, 1, 5)
    assert by_key[("A1", 0)].monto == 200.0
    assert by_key[("Z9", 1)].status == "OTRO ALIADO"
    assert by_key[("Z9", 1)].verificacion == "SI"
    assert [b.conciliado for b in result.bank_lines] == ["SI", "SI", "SI", "SI", "NO"]

    counts = result.counts()
    assert counts["payments_verified"] == 4
    assert counts["bank_lines_conciliated"] == 4


def test_reconcile_refreshes_overdue_estado():
    orders = Dataset(["Orden", "Cuota 1", "Fecha cuota 1", "Estado cuota 1"],
                     [{"Orden": "1", "Cuota 1": 10, "Fecha cuota 1": datetime(2025, 3, 1), "Estado cuota 1": "Scheduled"}])
    result = reconcile(SourceSnapshot(orders=orders), today=TODAY)
    inst = result.schedule[0]
    assert inst.estado_cuota == "Delayed"
    assert inst.status == "ATRASADO"


def test_empty_snapshot_gives_empty_result():
    result = reconcile(SourceSnapshot(), today=TODAY)
    assert result.installments == []
    assert result.installments_df().empty
    assert list(result.bank_df().columns)[:2] == ["fecha", "referencia"]


def test_cache_dict_uses_iso_dates_and_decimal_strings():
    cached = reconcile(_end_to_end_snapshot(), today=TODAY).to_cache_dict()
    inst = cached["installments"][0]
    assert inst["fecha_cuota"] == "2025-03-01"
    assert inst["monto"] == "100.0"
    assert cached["bank_lines"][0]["debe"] == "100.0"

    restored = Installment.from_cache_dict(inst)
    assert restored.monto == 100.0
    assert restored.fecha_cuota == datetime(2025, 3, 1)


def test_cache_dict_keeps_split_info():
    payments = Dataset(PAYMENT_HEADERS, [payment("1001", "1,2", "REF200", datetime(2025, 3, 1), 200)])
    result = reconcile(SourceSnapshot(payments=payments), today=TODAY)
    cached = [i for i in result.to_cache_dict()["installments"] if i["is_payment_based"]]

    restored = [Installment.from_cache_dict(i) for i in cached]
    assert [i.split_info for i in restored] == [i.split_info for i in result.payment_based]
    assert restored[0].split_info.split_amount == 100.0


def test_snapshot_hash_is_content_based():
    a, b = _end_to_end_snapshot(), _end_to_end_snapshot()
    assert a.snapshot_hash() == b.snapshot_hash()
    b.payments.rows[0]["Monto Pagado en USD"] = 101
    assert a.snapshot_hash() != b.snapshot_hash()


def test_cache_reuses_result_until_sources_change():
    cache = ReconCache()
    snap = _end_to_end_snapshot()
    first = cache.get_or_compute(snap, today=TODAY)
    assert cache.get_or_compute(_end_to_end_snapshot(), today=TODAY) is first
    assert cache.get_or_compute(snap, today=TODAY, force=True) is not first

    changed = _end_to_end_snapshot()
    changed.bank.rows.clear()
    second = cache.get_or_compute(changed, today=TODAY)
    assert second is not first
    assert second.schedule[0].verificacion == "-"
    assert cache.result is second


def test_cache_recomputes_for_a_new_day():
    cache = ReconCache()
    first = cache.get_or_compute(_end_to_end_snapshot(), today=TODAY)
    assert cache.get_or_compute(_end_to_end_snapshot(), today=date(2025, 3, 11)) is not first
