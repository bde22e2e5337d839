from __future__ import annotations

import io
import logging
import math
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
import pytz
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from .adapters import read_sheet
from .engine import ReconCache, ReconResult
from .models import Dataset, DatasetKind
from .normalize import business_today, parse_ddmmyyyy, parse_excel_date
from .outputs import write_recon_xlsx
from .report import (
    ReportAdjustments,
    ReportFilters,
    compute_monthly_report,
    compute_summaries,
    weekly_expected_income,
)
from .settings import DEFAULT_SETTINGS, ReconSettings
from .storage import DatasetStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Cuotas Recon API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_settings: ReconSettings = DEFAULT_SETTINGS
_store = DatasetStore(_settings.data_dir)
_cache = ReconCache()


# ============================================================================
# Helper Functions
# ============================================================================

def _kind(dataset: str) -> DatasetKind:
    try:
        return DatasetKind(dataset)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown dataset: {dataset}")


def _parse_filter_date(s: Optional[str]) -> Optional[date]:
    """Filter dates arrive as DD/MM/YYYY (or ISO)."""
    if not s:
        return None
    d = parse_ddmmyyyy(s) or parse_excel_date(s)
    if d is None:
        raise HTTPException(status_code=400, detail=f"Invalid date: {s}")
    return d.date()


def convert_numpy(obj):
    """Convert numpy types (and NaN) to JSON-safe Python values"""
    if isinstance(obj, dict):
        return {k: convert_numpy(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [convert_numpy(item) for item in obj]
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return None if np.isnan(obj) else float(obj)
    elif isinstance(obj, float) and math.isnan(obj):
        return None
    elif isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return obj


def _records(df: pd.DataFrame, limit: Optional[int] = None):
    if limit is not None:
        df = df.head(limit)
    return convert_numpy(df.to_dict(orient="records"))


def _result(force: bool = False) -> ReconResult:
    return _cache.get_or_compute(_store.snapshot(), _settings, business_today(_settings.timezone), force=force)


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/health")
def health():
    """Simple health check endpoint"""
    return {"ok": True, "status": "running"}


@app.post("/upload/{dataset}")
async def upload(dataset: str, file: UploadFile = File(...)):
    """Upload an xlsx/csv sheet and merge it into the stored dataset."""
    kind = _kind(dataset)
    content = await file.read()
    try:
        headers, rows = read_sheet(content, file.filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = _store.upload(kind, Dataset(headers, rows, file.filename or ""))
    return {"ok": True, "dataset": kind.value, "file_name": file.filename, **result.to_dict()}


@app.get("/datasets/{dataset}")
def get_dataset(dataset: str, limit: Optional[int] = None):
    ds = _store.get(_kind(dataset))
    rows = ds.rows if limit is None else ds.rows[:limit]
    return {
        "dataset": dataset,
        "file_name": ds.file_name,
        "headers": ds.headers,
        "row_count": len(ds),
        "rows": convert_numpy(rows),
    }


@app.delete("/datasets/{dataset}")
def clear_dataset(dataset: str):
    _store.clear(_kind(dataset))
    return {"ok": True, "dataset": dataset}


@app.post("/reconcile")
def run_reconcile(force: bool = False):
    """Run (or reuse) the reconciliation pass for the stored datasets."""
    result = _result(force=force)
    return convert_numpy(result.metadata())


@app.get("/cache/metadata")
def cache_metadata():
    result = _cache.result
    if result is None:
        raise HTTPException(status_code=404, detail="No reconciliation has been run")
    return convert_numpy(result.metadata())


@app.get("/installments")
def list_installments(
    payment_based: Optional[bool] = None,
    status: Optional[str] = None,
    orden: Optional[str] = None,
    limit: Optional[int] = None,
):
    df = _result().installments_df(payment_based)
    if status is not None:
        df = df[df["status"] == status]
    if orden:
        df = df[df["orden"].astype(str).str.contains(orden, case=False, regex=False)]
    return {"count": int(len(df)), "installments": _records(df, limit)}


@app.get("/payments")
def list_payments(verificacion: Optional[str] = None, limit: Optional[int] = None):
    result = _result()
    df = result.payments_df()
    if verificacion is not None:
        df = df[df["verificacion"] == verificacion]
    splits = {k: v.to_dict() for k, v in result.splits.items()}
    return {"count": int(len(df)), "payments": _records(df, limit), "splits": splits}


@app.get("/bank")
def list_bank(conciliado: Optional[str] = None, limit: Optional[int] = None):
    df = _result().bank_df()
    if conciliado is not None:
        df = df[df["conciliado"] == conciliado]
    return {"count": int(len(df)), "bank_lines": _records(df, limit)}


def _filters(
    master_from: Optional[str], master_to: Optional[str], master_orden: Optional[str],
    local_from: Optional[str], local_to: Optional[str], local_orden: Optional[str],
) -> ReportFilters:
    return ReportFilters(
        master_from=_parse_filter_date(master_from),
        master_to=_parse_filter_date(master_to),
        master_orden=master_orden or "",
        local_from=_parse_filter_date(local_from),
        local_to=_parse_filter_date(local_to),
        local_orden=local_orden or "",
    )


@app.get("/report/monthly")
def monthly_report(
    master_from: Optional[str] = None,
    master_to: Optional[str] = None,
    master_orden: Optional[str] = None,
    local_from: Optional[str] = None,
    local_to: Optional[str] = None,
    local_orden: Optional[str] = None,
    devoluciones: float = 0.0,
    iva: float = 0.0,
    islr: float = 0.0,
    factoring: float = 0.0,
    cupones: float = 0.0,
):
    filters = _filters(master_from, master_to, master_orden, local_from, local_to, local_orden)
    adjustments = ReportAdjustments(devoluciones, iva, islr, factoring, cupones)
    report = compute_monthly_report(_result(), filters, adjustments)
    return {
        "report": report.to_dict(),
        "lines": [{"label": label, "value": value} for label, value in report.lines()],
    }


@app.get("/report/weekly")
def weekly_report():
    result = _result()
    return convert_numpy(weekly_expected_income(result.schedule, result.today))


@app.get("/report/summary")
def summary_report(
    master_from: Optional[str] = None,
    master_to: Optional[str] = None,
    master_orden: Optional[str] = None,
    local_from: Optional[str] = None,
    local_to: Optional[str] = None,
    local_orden: Optional[str] = None,
):
    """Orders, payment records and bank statement totals"""
    filters = _filters(master_from, master_to, master_orden, local_from, local_to, local_orden)
    return convert_numpy(compute_summaries(_result(), filters))


@app.get("/export")
def export(
    master_from: Optional[str] = None,
    master_to: Optional[str] = None,
    master_orden: Optional[str] = None,
):
    """Download the current reconciliation as an Excel file"""
    filters = _filters(master_from, master_to, master_orden, None, None, None)
    result = _result()
    report = compute_monthly_report(result, filters)

    bio = io.BytesIO()
    write_recon_xlsx(bio, result, report, {"period": f"{master_from or '...'} - {master_to or '...'}"})
    fname = f"conciliacion_{result.today.isoformat()}.xlsx"
    return StreamingResponse(
        bio,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{fname}"'},
    )


class SettingsUpdate(BaseModel):
    data_dir: Optional[str] = None
    output_dir: Optional[str] = None
    amount_tolerance: Optional[float] = None
    max_installments: Optional[int] = None
    early_days: Optional[int] = None
    late_days: Optional[int] = None
    delay_grace_days: Optional[int] = None
    timezone: Optional[str] = None


def _settings_dict(s: ReconSettings) -> Dict[str, Any]:
    return {
        "data_dir": s.data_dir,
        "output_dir": s.output_dir,
        "amount_tolerance": s.amount_tolerance,
        "max_installments": s.max_installments,
        "early_days": s.early_days,
        "late_days": s.late_days,
        "delay_grace_days": s.delay_grace_days,
        "timezone": s.timezone,
    }


@app.get("/settings")
def get_settings():
    return _settings_dict(_settings)


@app.patch("/settings")
def update_settings(updates: SettingsUpdate):
    """Update backend settings"""
    global _settings, _store

    changes = {k: v for k, v in updates.dict().items() if v is not None}
    if "timezone" in changes:
        try:
            pytz.timezone(changes["timezone"])
        except pytz.UnknownTimeZoneError:
            raise HTTPException(status_code=400, detail=f"Unknown timezone: {changes['timezone']}")

    _settings = replace(_settings, **changes)
    if "data_dir" in changes:
        _store = DatasetStore(_settings.data_dir)
        logger.info("Data directory set to %s", _settings.data_dir)
    # Results depend on the settings; the next request recomputes
    _cache.invalidate()

    return {"ok": True, "settings": _settings_dict(_settings)}
