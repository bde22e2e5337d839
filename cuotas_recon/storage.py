"""
Dataset storage and upload merge rules.

- Orders: merged per order number, the uploaded row replaces the stored one
- Payment records: merged per (orden, cuota pagada); rows missing either are rejected
- Bank statements: replaced on upload, deduplicated by normalized reference (last wins)
- Marketplace orders: replaced on upload, deduplicated by order number (first wins)

Datasets are kept in memory and written to ``<data_dir>/<kind>.json``.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .adapters import (
    BankColumns,
    OrderColumns,
    PaymentColumns,
    Row,
    cell,
    headers_of,
    resolve_header,
    text,
)
from .engine import SourceSnapshot
from .models import Dataset, DatasetKind, MergeResult, SkippedRecord
from .references import normalize_reference

logger = logging.getLogger(__name__)


def _merged_headers(old: List[str], new: List[str]) -> List[str]:
    out = list(old)
    out.extend(h for h in new if h not in out)
    return out


# -----------------------------
# Merge rules
# -----------------------------
def merge_orders(existing: Dataset, incoming: Dataset) -> Tuple[Dataset, MergeResult]:
    """Upsert orders by order number; the uploaded row replaces the stored row wholesale."""
    headers = headers_of(incoming.rows, incoming.headers)
    order_h = OrderColumns.resolve(headers, 0).orden
    old_h = OrderColumns.resolve(headers_of(existing.rows, existing.headers), 0).orden

    by_number: Dict[str, Row] = {}
    for row in existing.rows:
        key = text(cell(row, old_h))
        if key:
            by_number[key] = row

    result = MergeResult()
    for idx, row in enumerate(incoming.rows):
        key = text(cell(row, order_h))
        if not key:
            result.skipped += 1
            result.skipped_records.append(SkippedRecord("(vacío)", "", "Falta número de orden", idx + 2))
            continue
        if key in by_number:
            result.updated += 1
        else:
            result.added += 1
        by_number[key] = row

    merged = Dataset(_merged_headers(existing.headers, headers), list(by_number.values()), incoming.file_name)
    result.total = len(merged.rows)
    return merged, result


def merge_payment_records(existing: Dataset, incoming: Dataset) -> Tuple[Dataset, MergeResult]:
    """
    Upsert payment rows by (orden, cuota pagada). Rows missing either field are
    rejected; a key repeated inside the same upload keeps its first row.
    """
    headers = headers_of(incoming.rows, incoming.headers)
    cols = PaymentColumns.resolve(headers)
    old_cols = PaymentColumns.resolve(headers_of(existing.rows, existing.headers))

    by_key: Dict[Tuple[str, str], Row] = {}
    for row in existing.rows:
        key = (text(cell(row, old_cols.orden)), text(cell(row, old_cols.cuota)))
        if all(key):
            by_key.setdefault(key, row)

    result = MergeResult()
    seen = set()
    for idx, row in enumerate(incoming.rows):
        orden = text(cell(row, cols.orden))
        cuota = text(cell(row, cols.cuota))
        if not orden or not cuota:
            result.skipped += 1
            result.skipped_records.append(SkippedRecord(
                orden or "(vacío)", cuota or "(vacío)", "Falta número de orden o cuota", idx + 2))
            continue
        key = (orden, cuota)
        if key in seen:
            result.skipped += 1
            result.skipped_records.append(SkippedRecord(orden, cuota, "Duplicado dentro del mismo archivo", idx + 2))
            continue
        seen.add(key)
        if key in by_key:
            result.updated += 1
        else:
            result.added += 1
        by_key[key] = row

    if result.skipped:
        logger.warning("Payment upload: %d rows skipped", result.skipped)

    merged = Dataset(_merged_headers(existing.headers, headers), list(by_key.values()), incoming.file_name)
    result.total = len(merged.rows)
    return merged, result


def dedupe_bank_statement(incoming: Dataset) -> Tuple[Dataset, MergeResult]:
    """Keep the last line per normalized reference; lines without reference are kept."""
    headers = headers_of(incoming.rows, incoming.headers)
    ref_h = BankColumns.resolve(headers).referencia

    kept: Dict[Any, Row] = {}
    for idx, row in enumerate(incoming.rows):
        ref = normalize_reference(cell(row, ref_h))
        key = ("ref", ref) if ref else ("row", idx)
        # re-insert so the surviving line sits where its last occurrence was
        kept.pop(key, None)
        kept[key] = row

    rows = list(kept.values())
    result = MergeResult(added=len(rows), skipped=len(incoming.rows) - len(rows), total=len(rows))
    return Dataset(headers, rows, incoming.file_name), result


def dedupe_marketplace_orders(incoming: Dataset) -> Tuple[Dataset, MergeResult]:
    headers = headers_of(incoming.rows, incoming.headers)
    order_h = resolve_header(headers, ["Orden", "# Orden", "Order"], exclude=["estado", "status", "fecha"])

    kept: Dict[Any, Row] = {}
    for idx, row in enumerate(incoming.rows):
        num = text(cell(row, order_h))
        kept.setdefault(num or ("row", idx), row)

    rows = list(kept.values())
    result = MergeResult(added=len(rows), skipped=len(incoming.rows) - len(rows), total=len(rows))
    return Dataset(headers, rows, incoming.file_name), result


# -----------------------------
# Store
# -----------------------------
def _json_default(obj: Any):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, np.generic):
        return obj.item()
    return str(obj)


class DatasetStore:
    """The four source datasets. Writes replace a dataset wholesale under a lock."""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = Path(data_dir) if data_dir else None
        self._lock = threading.Lock()
        self._data: Dict[DatasetKind, Dataset] = {k: Dataset() for k in DatasetKind}
        if self.data_dir:
            self._load()

    def get(self, kind: DatasetKind | str) -> Dataset:
        return self._data[DatasetKind(kind)]

    def upload(self, kind: DatasetKind | str, incoming: Dataset) -> MergeResult:
        kind = DatasetKind(kind)
        with self._lock:
            current = self._data[kind]
            if kind == DatasetKind.ORDERS:
                merged, result = merge_orders(current, incoming)
            elif kind == DatasetKind.PAYMENTS:
                merged, result = merge_payment_records(current, incoming)
            elif kind == DatasetKind.BANK:
                merged, result = dedupe_bank_statement(incoming)
            else:
                merged, result = dedupe_marketplace_orders(incoming)
            self._data[kind] = merged
            self._save(kind)
        logger.info("Uploaded %s (%s): +%d ~%d skipped=%d total=%d", kind.value, incoming.file_name,
                    result.added, result.updated, result.skipped, result.total)
        return result

    def clear(self, kind: DatasetKind | str) -> None:
        kind = DatasetKind(kind)
        with self._lock:
            self._data[kind] = Dataset()
            self._save(kind)

    def snapshot(self) -> SourceSnapshot:
        with self._lock:
            return SourceSnapshot(
                orders=self._data[DatasetKind.ORDERS],
                payments=self._data[DatasetKind.PAYMENTS],
                bank=self._data[DatasetKind.BANK],
                marketplace=self._data[DatasetKind.MARKETPLACE],
            )

    def _path(self, kind: DatasetKind) -> Path:
        return self.data_dir / f"{kind.value}.json"

    def _save(self, kind: DatasetKind) -> None:
        if not self.data_dir:
            return
        self.data_dir.mkdir(parents=True, exist_ok=True)
        with open(self._path(kind), "w", encoding="utf-8") as f:
            json.dump(self._data[kind].to_dict(), f, default=_json_default, ensure_ascii=False)

    def _load(self) -> None:
        for kind in DatasetKind:
            p = self._path(kind)
            if not p.exists():
                continue
            try:
                with open(p, "r", encoding="utf-8") as f:
                    self._data[kind] = Dataset.from_dict(json.load(f))
            except (OSError, ValueError) as e:
                logger.error("Could not load %s: %s", p, e)
