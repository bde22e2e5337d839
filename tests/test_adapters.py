import pytest

from cuotas_recon.adapters import OrderColumns, read_sheet, resolve_header, text


@pytest.mark.parametrize("headers", [["# Orden"], ["#Orden"], ["Orden"], ["  orden "]])
def test_resolve_header_variants(headers):
    assert resolve_header(headers, ["# Orden", "Orden"]) == headers[0]


def test_resolve_header_substring_with_exclusions():
    headers = ["Estado Orden", "Número de Orden del cliente"]
    assert resolve_header(headers, ["Orden"], exclude=["estado"]) == "Número de Orden del cliente"
    assert resolve_header(headers, ["Factura"]) is None


def test_cuota_columns_are_exact():
    cols = OrderColumns.resolve(["Orden", "Cuota 10", "Fecha cuota 10"], max_installments=10)
    assert cols.cuotas[1] == (None, None, None, None)
    assert cols.cuota_amount_header(10) == "Cuota 10"
    assert cols.cuota_date_header(10) == "Fecha cuota 10"


def test_text():
    assert text(1001.0) == "1001"
    assert text(float("nan")) == ""
    assert text(" x ") == "x"
    assert text(None) == ""


def test_read_sheet_csv():
    headers, rows = read_sheet(b"Orden,Cuota 1\n1001,100\n", "orders.csv")
    assert headers == ["Orden", "Cuota 1"]
    assert rows == [{"Orden": "1001", "Cuota 1": "100"}]


def test_read_sheet_latin1_csv():
    headers, _ = read_sheet("Descripción,Debe\nPago,1\n".encode("latin-1"), "banco.csv")
    assert headers == ["Descripción", "Debe"]


@pytest.mark.parametrize("content, name", [
    (b"", "orders.csv"),
    (b"Orden\n", "orders.csv"),
    (b"Orden\n1\n", "orders.pdf"),
])
def test_read_sheet_rejects(content, name):
    with pytest.raises(ValueError):
        read_sheet(content, name)
