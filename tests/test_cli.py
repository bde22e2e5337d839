from dataclasses import replace
from datetime import date

import pytest
from openpyxl import load_workbook

from cuotas_recon import cli
from cuotas_recon.settings import DEFAULT_SETTINGS

ORDERS_CSV = "Orden,Cuota 1,Fecha cuota 1\n1001,100,01/03/2025\n"
PAYMENTS_CSV = (
    "# Orden,# Cuota Pagada,# Referencia,Fecha de Transaccion,Monto Pagado en USD\n"
    "1001,1,555555551234,01/03/2025,100\n"
)
BANK_CSV = "Fecha,Referencia,Debe,Haber\n01/03/2025,99555555551234,100,\n"


@pytest.fixture
def sheets(tmp_path):
    paths = {}
    for name, content in (("orders", ORDERS_CSV), ("payments", PAYMENTS_CSV), ("bank", BANK_CSV)):
        p = tmp_path / f"{name}.csv"
        p.write_text(content, encoding="utf-8")
        paths[name] = str(p)
    return paths


def test_run_names_output_after_business_date(tmp_path, monkeypatch, sheets):
    out_dir = tmp_path / "out"
    monkeypatch.setattr(cli, "DEFAULT_SETTINGS", replace(DEFAULT_SETTINGS, output_dir=str(out_dir)))
    monkeypatch.setattr(cli, "business_today", lambda tz: date(2025, 3, 10))

    cli.main(["run", "--orders", sheets["orders"], "--payments", sheets["payments"], "--bank", sheets["bank"]])

    out = out_dir / "conciliacion_2025-03-10.xlsx"
    assert out.exists()
    assert load_workbook(out).sheetnames == ["Resumen", "Cuotas", "Pagos", "Banco"]


def test_run_rejects_bad_filter_date(tmp_path, sheets):
    with pytest.raises(SystemExit):
        cli.main([
            "run", "--orders", sheets["orders"], "--payments", sheets["payments"], "--bank", sheets["bank"],
            "--out", str(tmp_path / "x.xlsx"), "--from", "2025-03-01",
        ])
