"""
Output Formatting

Writes a reconciliation pass to Excel:
- Resumen: monthly waterfall (Reporte Mensual) and pass counts
- Cuotas: every installment with its STATUS and VERIFICACION
- Pagos: payment records with VERIFICACION
- Banco: bank statement lines with CONCILIADO
"""
from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .engine import ReconResult
from .models import InstallmentStatus, MonthlyReport, Verification


# =============================================================================
# Style Constants
# =============================================================================

HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")

GREEN_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
YELLOW_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
RED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
BLUE_FILL = PatternFill(start_color="DDEBF7", end_color="DDEBF7", fill_type="solid")

THIN_BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)

CURRENCY_FORMAT = '_("$"* #,##0.00_);_("$"* (#,##0.00);_("$"* "-"??_);_(@_)'
PERCENT_FORMAT = '0.00%'
DATE_FORMAT = 'DD/MM/YYYY'

# Waterfall rows that are totals (bold)
_TOTAL_LINES = {"Monto Financiado", "Banco neto", "Cuentas por Cobrar Neto", "Subtotal", "Resultado"}


def get_status_fill(status: Optional[str]) -> Optional[PatternFill]:
    """Fill color for a STATUS label"""
    if status in (InstallmentStatus.A_TIEMPO.value, InstallmentStatus.ADELANTADO.value):
        return GREEN_FILL
    if status == InstallmentStatus.OTRO_ALIADO.value:
        return BLUE_FILL
    if status == InstallmentStatus.ATRASADO.value:
        return YELLOW_FILL
    if status == InstallmentStatus.NO_DEPOSITADO.value:
        return RED_FILL
    return None


def get_flag_fill(flag: Optional[str]) -> Optional[PatternFill]:
    """Fill color for VERIFICACION / CONCILIADO"""
    if flag == Verification.SI.value:
        return GREEN_FILL
    if flag == Verification.NO.value:
        return RED_FILL
    return None


# =============================================================================
# Main Output Function
# =============================================================================

def write_recon_xlsx(
    output: io.BytesIO | Path,
    result: ReconResult,
    report: MonthlyReport,
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    """Write one reconciliation pass (and its monthly report) to Excel."""
    meta = meta or {}
    wb = Workbook()
    wb.remove(wb.active)

    _create_summary_sheet(wb, result, report, meta)
    _create_table_sheet(wb, "Cuotas", result.installments_df(), flag_col="verificacion", status_col="status")
    _create_table_sheet(wb, "Pagos", result.payments_df(), flag_col="verificacion")
    _create_table_sheet(wb, "Banco", result.bank_df(), flag_col="conciliado")

    if isinstance(output, io.BytesIO):
        wb.save(output)
        output.seek(0)
    else:
        wb.save(str(output))


# =============================================================================
# Summary Sheet
# =============================================================================

def _create_summary_sheet(wb: Workbook, result: ReconResult, report: MonthlyReport, meta: Dict):
    ws = wb.create_sheet("Resumen")

    ws["A1"] = "Reporte Mensual"
    ws["A1"].font = Font(bold=True, size=14)
    ws["A2"] = f"Periodo: {meta.get('period', 'Todos')}"
    ws["A3"] = f"Calculado: {result.calculated_at.strftime('%d/%m/%Y %H:%M')}"

    row = 5
    for col, header in enumerate(["Concepto", "Monto"], 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER

    row += 1
    for label, value in report.lines():
        label_cell = ws.cell(row=row, column=1, value=label)
        value_cell = ws.cell(row=row, column=2, value=value)
        if label.startswith("%"):
            value_cell.value = value / 100
            value_cell.number_format = PERCENT_FORMAT
        else:
            value_cell.number_format = CURRENCY_FORMAT
        if label in _TOTAL_LINES:
            label_cell.font = Font(bold=True)
            value_cell.font = Font(bold=True)
        label_cell.border = THIN_BORDER
        value_cell.border = THIN_BORDER
        row += 1

    row += 1
    ws[f"A{row}"] = "Conteos"
    ws[f"A{row}"].font = Font(bold=True)
    row += 1
    for key, value in result.counts().items():
        ws.cell(row=row, column=1, value=key)
        ws.cell(row=row, column=2, value=value)
        row += 1

    _auto_width(ws)


# =============================================================================
# Table Sheets
# =============================================================================

_CURRENCY_COLS = {"monto", "monto_pagado", "monto_usd", "monto_ves", "debe", "haber", "saldo"}
_DATE_COLS = {"fecha", "fecha_cuota", "fecha_pago", "fecha_pago_real", "fecha_transaccion"}


def _create_table_sheet(
    wb: Workbook,
    title: str,
    df: pd.DataFrame,
    flag_col: Optional[str] = None,
    status_col: Optional[str] = None,
):
    ws = wb.create_sheet(title)
    headers: List[str] = list(df.columns)

    for col, header in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col, value=header.upper())
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center")

    for r, record in enumerate(df.to_dict(orient="records"), 2):
        for col, header in enumerate(headers, 1):
            value = _cell_value(record.get(header), header)
            cell = ws.cell(row=r, column=col, value=value)
            if header in _CURRENCY_COLS:
                cell.number_format = CURRENCY_FORMAT
            elif header in _DATE_COLS and value is not None:
                cell.number_format = DATE_FORMAT
            fill = None
            if header == flag_col:
                fill = get_flag_fill(value)
            elif header == status_col:
                fill = get_status_fill(value)
            if fill is not None:
                cell.fill = fill

    ws.freeze_panes = "A2"
    _auto_width(ws)


def _cell_value(value: Any, header: str) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if header in _DATE_COLS and isinstance(value, str):
        return pd.Timestamp(value).to_pydatetime()
    return value


# =============================================================================
# Helpers
# =============================================================================

def _auto_width(ws):
    """Auto-adjust column widths"""
    for column in ws.columns:
        max_length = 0
        column_letter = get_column_letter(column[0].column)
        for cell in column:
            if cell.value is not None:
                max_length = max(max_length, len(str(cell.value)))
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)
