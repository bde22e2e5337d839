"""
Source Adapters

Each adapter turns rows of one spreadsheet source into typed records.
Column names vary between exports ("# Orden", "#Orden", "Orden"), so every
lookup goes through ``resolve_header``.

Supported sources:
- Orders (wide format, one row per order, "Cuota 1".."Cuota 14")
- Payment records (one row per transaction)
- Bank statements (Debe / Haber / Saldo)
- Marketplace orders (sales totals for the monthly report)
"""
from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

import numpy as np
import pandas as pd

from .models import BankStatementLine, PaymentRecord, Verification
from .normalize import parse_excel_date, to_amount

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


# =============================================================================
# Header resolution
# =============================================================================

def _header_key(name: Any) -> str:
    return re.sub(r"[\s#_]+", " ", str(name)).strip().lower()


def resolve_header(
    headers: Sequence[str],
    candidates: Sequence[str],
    exclude: Sequence[str] = (),
) -> Optional[str]:
    """
    Find the header that best matches one of the candidate names.

    Pass 1 compares names ignoring case, '#', '_' and spacing ("# Orden" ==
    "#Orden" == "orden"). Pass 2 accepts headers that contain a candidate,
    skipping any header that contains an ``exclude`` term.
    """
    keyed = [(h, _header_key(h)) for h in headers if h is not None]
    excluded = [_header_key(e) for e in exclude]

    for cand in candidates:
        ck = _header_key(cand)
        for h, hk in keyed:
            if hk == ck:
                return h

    for cand in candidates:
        ck = _header_key(cand)
        for h, hk in keyed:
            if ck in hk and not any(e in hk for e in excluded):
                return h
    return None


def headers_of(rows: Sequence[Row], headers: Optional[Sequence[str]] = None) -> List[str]:
    """Explicit headers, or the union of row keys in first-seen order."""
    if headers:
        return list(headers)
    seen: Dict[str, None] = {}
    for row in rows:
        for k in row.keys():
            seen.setdefault(k, None)
    return list(seen)


def cell(row: Row, header: Optional[str]) -> Any:
    if not header:
        return None
    return row.get(header)


def text(value: Any) -> str:
    """Cell to trimmed text; Excel floats like 1001.0 become "1001"."""
    if value is None:
        return ""
    if isinstance(value, float):
        if np.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


# Candidate names per logical field
ORDER_NUMBER = ["Orden", "# Orden", "ORDEN", "Número de Orden", "Order"]
ORDER_STATUS = ["STATUS ORDEN", "Status Orden", "Estado Orden", "Estado"]
PURCHASE_DATE = ["FECHA DE COMPRA", "Fecha de Compra", "Fecha Compra"]
INITIAL_PAYMENT = ["PAGO INICIAL", "Pago en Caja", "Pago Inicial"]
SALE_TOTAL = ["Total Venta", "Venta Total", "TOTAL", "Total"]

PAY_ORDER = ["# Orden", "#Orden", "Orden"]
PAY_CUOTA = ["# Cuota Pagada", "#CuotaPagada", "Cuota Pagada", "Cuota"]
PAY_REFERENCE = ["# Referencia", "#Referencia", "Referencia"]
PAY_DATE = ["Fecha de Transaccion", "Fecha de Transacción", "Fecha Transaccion"]
PAY_USD = ["Monto Pagado en USD", "Monto USD", "Monto"]
PAY_VES = ["Monto Pagado en VES", "Monto VES"]
PAY_METHOD = ["Método de Pago", "Metodo de Pago"]
PAY_RATE = ["Tasa de Cambio"]
VERIFICATION_COL = ["VERIFICACION", "Verificación"]

BANK_DATE = ["Fecha"]
BANK_REFERENCE = ["Referencia"]
BANK_DEBE = ["Debe"]
BANK_HABER = ["Haber"]
BANK_SALDO = ["Saldo"]
BANK_DESC = ["Descripción", "Descripcion", "Concepto", "Detalle"]


# =============================================================================
# Column maps
# =============================================================================

@dataclass(frozen=True)
class OrderColumns:
    orden: Optional[str]
    status: Optional[str]
    purchase_date: Optional[str]
    initial_payment: Optional[str]
    sale_total: Optional[str]
    # index -> (fecha cuota, cuota, estado cuota, fecha de pago cuota)
    cuotas: Dict[int, Tuple[Optional[str], Optional[str], Optional[str], Optional[str]]]
    # index -> "Pagado de cuota N"
    paid: Dict[int, Optional[str]] = field(default_factory=dict)

    @classmethod
    def resolve(cls, headers: Sequence[str], max_installments: int = 14) -> "OrderColumns":
        cuotas = {}
        for i in range(1, max_installments + 1):
            # exact-name pass only: "Cuota 1" must not pick "Cuota 10"
            cuotas[i] = (
                _exact(headers, f"Fecha cuota {i}"),
                _exact(headers, f"Cuota {i}"),
                _exact(headers, f"Estado cuota {i}"),
                _exact(headers, f"Fecha de pago cuota {i}"),
            )
        return cls(
            orden=resolve_header(headers, ORDER_NUMBER, exclude=["status", "estado", "cuota", "fecha"]),
            status=resolve_header(headers, ORDER_STATUS, exclude=["cuota", "pago", "entrega"]),
            purchase_date=resolve_header(headers, PURCHASE_DATE),
            initial_payment=resolve_header(headers, INITIAL_PAYMENT, exclude=["estado", "fecha"]),
            sale_total=resolve_header(headers, SALE_TOTAL, exclude=["pagado", "cuota"]),
            cuotas=cuotas,
            paid={i: _exact(headers, f"Pagado de cuota {i}") for i in range(1, max_installments + 1)},
        )

    def cuota_date_header(self, n: int) -> Optional[str]:
        if n == 0:
            return self.purchase_date
        return self.cuotas.get(n, (None, None, None, None))[0]

    def cuota_amount_header(self, n: int) -> Optional[str]:
        if n == 0:
            return self.initial_payment
        return self.cuotas.get(n, (None, None, None, None))[1]


def _exact(headers: Sequence[str], name: str) -> Optional[str]:
    key = _header_key(name)
    for h in headers:
        if h is not None and _header_key(h) == key:
            return h
    return None


@dataclass(frozen=True)
class PaymentColumns:
    orden: Optional[str]
    cuota: Optional[str]
    referencia: Optional[str]
    fecha: Optional[str]
    monto_usd: Optional[str]
    monto_ves: Optional[str]
    metodo: Optional[str]
    tasa: Optional[str]
    verificacion: Optional[str]

    @classmethod
    def resolve(cls, headers: Sequence[str]) -> "PaymentColumns":
        return cls(
            orden=resolve_header(headers, PAY_ORDER, exclude=["cuota"]),
            cuota=resolve_header(headers, PAY_CUOTA, exclude=["monto", "fecha"]),
            referencia=resolve_header(headers, PAY_REFERENCE),
            fecha=resolve_header(headers, PAY_DATE),
            monto_usd=resolve_header(headers, PAY_USD, exclude=["ves"]),
            monto_ves=resolve_header(headers, PAY_VES),
            metodo=resolve_header(headers, PAY_METHOD),
            tasa=resolve_header(headers, PAY_RATE),
            verificacion=resolve_header(headers, VERIFICATION_COL),
        )


@dataclass(frozen=True)
class BankColumns:
    fecha: Optional[str]
    referencia: Optional[str]
    debe: Optional[str]
    haber: Optional[str]
    saldo: Optional[str]
    descripcion: Optional[str]

    @classmethod
    def resolve(cls, headers: Sequence[str]) -> "BankColumns":
        return cls(
            fecha=resolve_header(headers, BANK_DATE),
            referencia=resolve_header(headers, BANK_REFERENCE),
            debe=resolve_header(headers, BANK_DEBE),
            haber=resolve_header(headers, BANK_HABER),
            saldo=resolve_header(headers, BANK_SALDO),
            descripcion=resolve_header(headers, BANK_DESC),
        )


# =============================================================================
# Row parsing
# =============================================================================

def parse_payment_records(rows: Sequence[Row], headers: Optional[Sequence[str]] = None) -> List[PaymentRecord]:
    """Typed payment records, in file order. Rows without an order number are dropped."""
    cols = PaymentColumns.resolve(headers_of(rows, headers))
    if not cols.orden:
        logger.warning("Payment records have no order column; nothing to parse")
        return []

    out: List[PaymentRecord] = []
    for idx, row in enumerate(rows):
        orden = text(cell(row, cols.orden))
        if not orden:
            continue
        out.append(PaymentRecord(
            orden=orden,
            cuota_pagada=text(cell(row, cols.cuota)),
            referencia=text(cell(row, cols.referencia)),
            fecha_transaccion=parse_excel_date(cell(row, cols.fecha)),
            monto_usd=to_amount(cell(row, cols.monto_usd)),
            monto_ves=to_amount(cell(row, cols.monto_ves)),
            metodo_pago=text(cell(row, cols.metodo)),
            tasa_cambio=to_amount(cell(row, cols.tasa)),
            verificacion=text(cell(row, cols.verificacion)) or Verification.UNKNOWN.value,
            row_index=idx,
        ))
    return out


def parse_bank_statement(rows: Sequence[Row], headers: Optional[Sequence[str]] = None) -> List[BankStatementLine]:
    cols = BankColumns.resolve(headers_of(rows, headers))
    if not cols.referencia:
        logger.warning("Bank statement has no reference column; nothing to parse")
        return []

    out: List[BankStatementLine] = []
    for idx, row in enumerate(rows):
        out.append(BankStatementLine(
            referencia=text(cell(row, cols.referencia)),
            fecha=parse_excel_date(cell(row, cols.fecha)),
            debe=to_amount(cell(row, cols.debe)),
            haber=to_amount(cell(row, cols.haber)),
            saldo=to_amount(cell(row, cols.saldo)),
            descripcion=text(cell(row, cols.descripcion)),
            row_index=idx,
        ))
    return out


def is_cancelled_order(row: Row, status_header: Optional[str]) -> bool:
    return "cancel" in text(cell(row, status_header)).lower()


def orders_by_number(
    rows: Sequence[Row],
    headers: Optional[Sequence[str]] = None,
    active_only: bool = False,
) -> Dict[str, Row]:
    """Order number -> row (last row wins). ``active_only`` drops cancelled orders."""
    cols = OrderColumns.resolve(headers_of(rows, headers), 0)
    out: Dict[str, Row] = {}
    for r in rows:
        key = text(cell(r, cols.orden))
        if key:
            out[key] = r
    if active_only:
        out = {k: r for k, r in out.items() if not is_cancelled_order(r, cols.status)}
    return out


def cancelled_order_numbers(rows: Sequence[Row], headers: Optional[Sequence[str]] = None) -> Set[str]:
    every = orders_by_number(rows, headers)
    return set(every) - set(orders_by_number(rows, headers, active_only=True))


# =============================================================================
# Sheet reading
# =============================================================================

def _clean_value(v: Any) -> Any:
    if v is None:
        return None
    if isinstance(v, float) and np.isnan(v):
        return None
    if v is pd.NaT:
        return None
    if isinstance(v, pd.Timestamp):
        return v.to_pydatetime()
    if isinstance(v, np.generic):
        return v.item()
    return v


def frame_to_rows(df: pd.DataFrame) -> Tuple[List[str], List[Row]]:
    headers = [str(c).strip() for c in df.columns]
    df = df.copy()
    df.columns = headers
    rows = [{k: _clean_value(v) for k, v in rec.items()} for rec in df.to_dict(orient="records")]
    return headers, rows


def read_sheet(source: Union[str, Path, bytes, io.BytesIO], filename: Optional[str] = None) -> Tuple[List[str], List[Row]]:
    """
    Read the first sheet of an xlsx/xls/csv into (headers, rows).

    Raises ValueError on unsupported types and empty files; the caller shows
    the message to the user.
    """
    name = filename or (str(source) if isinstance(source, (str, Path)) else "")
    ext = Path(name).suffix.lower()
    if isinstance(source, bytes):
        source = io.BytesIO(source)

    try:
        if ext in [".xlsx", ".xls"]:
            df = pd.read_excel(source, sheet_name=0)
        elif ext == ".csv":
            df = _read_csv(source)
        else:
            raise ValueError(f"Solo se permiten archivos Excel (.xlsx, .xls) o CSV: {name}")
    except pd.errors.EmptyDataError:
        raise ValueError(f"El archivo está vacío: {name}")

    if len(df.columns) == 0:
        raise ValueError(f"El archivo no contiene encabezados válidos: {name}")
    if df.empty:
        raise ValueError(f"El archivo está vacío: {name}")

    headers, rows = frame_to_rows(df)
    logger.info("Read %d rows from %s", len(rows), name)
    return headers, rows


def _read_csv(source) -> pd.DataFrame:
    # Try different encodings
    for encoding in ["utf-8", "latin-1", "cp1252"]:
        try:
            if hasattr(source, "seek"):
                source.seek(0)
            return pd.read_csv(source, encoding=encoding, dtype=str, keep_default_na=False)
        except UnicodeDecodeError:
            continue
    raise ValueError("No se pudo decodificar el archivo CSV")
