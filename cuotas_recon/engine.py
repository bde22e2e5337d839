from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from .adapters import parse_bank_statement, parse_payment_records
from .installments import extract_installments, refresh_estados
from .models import BankStatementLine, Dataset, Installment, PaymentRecord, PaymentSplitInfo, Verification
from .normalize import business_today
from .payments import (
    build_first_payment_index,
    calculate_payment_splits,
    enrich_schedule_installments,
    synthesize_payment_installments,
)
from .settings import DEFAULT_SETTINGS, ReconSettings
from .status import apply_statuses
from .verification import conciliate_bank_lines, verify_payments

logger = logging.getLogger(__name__)


# -----------------------------
# Inputs
# -----------------------------
@dataclass(frozen=True)
class SourceSnapshot:
    """The four source datasets as they were when a pass started."""
    orders: Dataset = field(default_factory=Dataset)
    payments: Dataset = field(default_factory=Dataset)
    bank: Dataset = field(default_factory=Dataset)
    marketplace: Dataset = field(default_factory=Dataset)

    def snapshot_hash(self) -> str:
        payload = {
            name: {"headers": ds.headers, "rows": ds.rows}
            for name, ds in (
                ("orders", self.orders),
                ("payments", self.payments),
                ("bank", self.bank),
                ("marketplace", self.marketplace),
            )
        }
        raw = json.dumps(payload, sort_keys=True, default=str, ensure_ascii=False)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# -----------------------------
# Outputs
# -----------------------------
@dataclass
class ReconResult:
    snapshot: SourceSnapshot
    schedule: List[Installment]
    payment_based: List[Installment]
    payments: List[PaymentRecord]
    bank_lines: List[BankStatementLine]
    splits: Dict[str, PaymentSplitInfo]
    source_hash: str
    today: date
    calculated_at: datetime

    @property
    def installments(self) -> List[Installment]:
        return self.schedule + self.payment_based

    def counts(self) -> Dict[str, int]:
        return {
            "schedule_installments": len(self.schedule),
            "payment_installments": len(self.payment_based),
            "payments": len(self.payments),
            "payments_verified": sum(1 for p in self.payments if p.verificacion == Verification.SI.value),
            "bank_lines": len(self.bank_lines),
            "bank_lines_conciliated": sum(1 for b in self.bank_lines if b.conciliado == Verification.SI.value),
            "split_warnings": sum(1 for s in self.splits.values() if s.has_warning),
        }

    def metadata(self) -> Dict[str, Any]:
        return {
            "source_hash": self.source_hash,
            "calculated_at": self.calculated_at.isoformat(),
            "today": self.today.isoformat(),
            "counts": self.counts(),
        }

    def to_cache_dict(self) -> Dict[str, Any]:
        """Storage shape: YYYY-MM-DD dates and decimals as strings."""
        return {
            **self.metadata(),
            "installments": [i.to_cache_dict() for i in self.installments],
            "bank_lines": [b.to_cache_dict() for b in self.bank_lines],
        }

    # DataFrame views (export + API listing)
    def installments_df(self, payment_based: Optional[bool] = None) -> pd.DataFrame:
        if payment_based is None:
            items = self.installments
        else:
            items = self.payment_based if payment_based else self.schedule
        return _frame([_installment_row(i) for i in items], INSTALLMENT_COLUMNS)

    def payments_df(self) -> pd.DataFrame:
        return _frame([p.to_dict() for p in self.payments], PAYMENT_COLUMNS)

    def bank_df(self) -> pd.DataFrame:
        return _frame([b.to_dict() for b in self.bank_lines], BANK_COLUMNS)


INSTALLMENT_COLUMNS = [
    "orden", "numero_cuota", "monto", "fecha_cuota", "estado_cuota", "fecha_pago",
    "fecha_pago_real", "referencia", "metodo_pago", "monto_pagado", "verificacion",
    "status", "is_payment_based", "split_warning",
]
PAYMENT_COLUMNS = [
    "orden", "cuota_pagada", "referencia", "fecha_transaccion", "monto_usd",
    "monto_ves", "metodo_pago", "tasa_cambio", "verificacion",
]
BANK_COLUMNS = ["fecha", "referencia", "descripcion", "debe", "haber", "saldo", "conciliado", "orden", "cuota"]


def _installment_row(inst: Installment) -> Dict[str, Any]:
    d = inst.to_dict()
    details = inst.payment_details
    d["referencia"] = details.referencia if details else ""
    d["metodo_pago"] = details.metodo_pago if details else ""
    d["split_warning"] = inst.split_info.warning_message if inst.split_info else None
    return d


def _frame(rows: List[Dict[str, Any]], columns: List[str]) -> pd.DataFrame:
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows)[columns]


# -----------------------------
# Pipeline
# -----------------------------
def reconcile(
    snapshot: SourceSnapshot,
    settings: ReconSettings = DEFAULT_SETTINGS,
    today: Optional[date] = None,
) -> ReconResult:
    """
    One full pass over a snapshot. Each stage returns new records; nothing
    from a previous pass is reused.
    """
    today = today or business_today(settings.timezone)
    tol = settings.amount_tolerance
    orders, pay_ds, bank_ds = snapshot.orders, snapshot.payments, snapshot.bank

    payments = parse_payment_records(pay_ds.rows, pay_ds.headers)
    bank_lines = parse_bank_statement(bank_ds.rows, bank_ds.headers)

    payments = verify_payments(payments, bank_lines, tol)
    bank_lines = conciliate_bank_lines(bank_lines, payments, tol) if bank_lines else []

    schedule = extract_installments(orders.rows, orders.headers, settings.max_installments)
    schedule = enrich_schedule_installments(schedule, build_first_payment_index(payments))

    splits = calculate_payment_splits(pay_ds.rows, pay_ds.headers, orders.rows, orders.headers)
    payment_based = synthesize_payment_installments(payments, schedule, orders.rows, orders.headers, splits)

    schedule = refresh_estados(schedule, today, settings.delay_grace_days)
    schedule = apply_statuses(schedule, settings.early_days, settings.late_days)
    payment_based = apply_statuses(payment_based, settings.early_days, settings.late_days)

    return ReconResult(
        snapshot=snapshot,
        schedule=schedule,
        payment_based=payment_based,
        payments=payments,
        bank_lines=bank_lines,
        splits=splits,
        source_hash=snapshot.snapshot_hash(),
        today=today,
        calculated_at=datetime.now(),
    )


class ReconCache:
    """
    Holds the last ReconResult. A new pass runs only when the source hash,
    the business date or the settings change; the result is replaced whole.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._key: Optional[Tuple[str, date, ReconSettings]] = None
        self._result: Optional[ReconResult] = None

    @property
    def result(self) -> Optional[ReconResult]:
        return self._result

    def invalidate(self) -> None:
        with self._lock:
            self._key = None
            self._result = None

    def get_or_compute(
        self,
        snapshot: SourceSnapshot,
        settings: ReconSettings = DEFAULT_SETTINGS,
        today: Optional[date] = None,
        force: bool = False,
    ) -> ReconResult:
        today = today or business_today(settings.timezone)
        key = (snapshot.snapshot_hash(), today, settings)
        with self._lock:
            if not force and self._result is not None and self._key == key:
                return self._result

        logger.info("Recomputing reconciliation (hash %s)", key[0][:12])
        result = reconcile(snapshot, settings, today)
        with self._lock:
            self._key, self._result = key, result
        return result
