"""
Reconciliation Data Models

This module defines the records the reconciliation pipeline passes around:
- Source rows are parsed into PaymentRecord / BankStatementLine objects
- Orders (wide format) become Installment objects (long format)
- Payments can also synthesize "payment-based" Installment objects
- The monthly report is a waterfall of MonthlyReport line items

Key concepts:
- Records are immutable snapshots; pipeline stages return new copies
- Dates are naive datetimes at midnight, amounts are floats (None = no value)
- ``to_cache_dict`` is the storage shape: ISO dates and decimals as strings
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .normalize import decimal_str, iso_date, parse_decimal_str, parse_excel_date


# =============================================================================
# Enums
# =============================================================================

class InstallmentStatus(str, Enum):
    """Timing status of an installment (STATUS column)"""
    ADELANTADO = "ADELANTADO"        # Paid >= 15 days early, in an earlier month
    A_TIEMPO = "A TIEMPO"            # Paid within the grace window
    ATRASADO = "ATRASADO"            # Paid late, or marked Delayed
    OTRO_ALIADO = "OTRO ALIADO"      # Payment without a scheduled cuota
    NO_DEPOSITADO = "NO DEPOSITADO"  # Marked Done but no payment date
    PENDIENTE = ""                   # Nothing to say yet


class Verification(str, Enum):
    """VERIFICACION / CONCILIADO flag"""
    SI = "SI"
    NO = "NO"
    UNKNOWN = "-"


class EstadoCuota(str, Enum):
    """Recorded installment state as exported by the order system"""
    SCHEDULED = "Scheduled"
    GRACED = "Graced"
    DONE = "Done"
    DELAYED = "Delayed"


class DatasetKind(str, Enum):
    ORDERS = "orders"
    PAYMENTS = "payments"
    BANK = "bank"
    MARKETPLACE = "marketplace"


# =============================================================================
# Source records
# =============================================================================

@dataclass
class Dataset:
    """One uploaded sheet as delivered by the upload layer: headers + row dicts"""
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    file_name: str = ""

    def __len__(self) -> int:
        return len(self.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {"headers": self.headers, "rows": self.rows, "file_name": self.file_name, "row_count": len(self.rows)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Dataset":
        return cls(headers=list(d.get("headers") or []), rows=list(d.get("rows") or []), file_name=d.get("file_name") or "")


@dataclass(frozen=True)
class PaymentRecord:
    """
    One row of the payment-records sheet.
    ``cuota_pagada`` is kept as text: "3,4,5" means one transaction for three cuotas.
    """
    orden: str
    cuota_pagada: str
    referencia: str = ""
    fecha_transaccion: Optional[datetime] = None
    monto_usd: Optional[float] = None
    monto_ves: Optional[float] = None
    metodo_pago: str = ""
    tasa_cambio: Optional[float] = None
    verificacion: str = Verification.UNKNOWN.value
    row_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orden": self.orden,
            "cuota_pagada": self.cuota_pagada,
            "referencia": self.referencia,
            "fecha_transaccion": iso_date(self.fecha_transaccion),
            "monto_usd": self.monto_usd,
            "monto_ves": self.monto_ves,
            "metodo_pago": self.metodo_pago,
            "tasa_cambio": self.tasa_cambio,
            "verificacion": self.verificacion,
        }


@dataclass(frozen=True)
class BankStatementLine:
    """One line of the bank account statement"""
    referencia: str
    fecha: Optional[datetime] = None
    debe: Optional[float] = None
    haber: Optional[float] = None
    saldo: Optional[float] = None
    descripcion: str = ""
    conciliado: str = Verification.UNKNOWN.value
    # Filled when a payment record matches this line
    orden: Optional[str] = None
    cuota: Optional[str] = None
    row_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fecha": iso_date(self.fecha),
            "referencia": self.referencia,
            "debe": self.debe,
            "haber": self.haber,
            "saldo": self.saldo,
            "descripcion": self.descripcion,
            "conciliado": self.conciliado,
            "orden": self.orden,
            "cuota": self.cuota,
        }

    def to_cache_dict(self) -> Dict[str, Any]:
        d = self.to_dict()
        for k in ("debe", "haber", "saldo"):
            d[k] = decimal_str(d[k])
        return d


# =============================================================================
# Derived records
# =============================================================================

@dataclass(frozen=True)
class PaymentDetails:
    referencia: str = ""
    metodo_pago: str = ""
    monto_pagado_usd: Optional[float] = None
    monto_pagado_ves: Optional[float] = None
    tasa_cambio: Optional[float] = None

    @classmethod
    def from_payment(cls, payment: PaymentRecord) -> "PaymentDetails":
        return cls(
            referencia=payment.referencia,
            metodo_pago=payment.metodo_pago,
            monto_pagado_usd=payment.monto_usd,
            monto_pagado_ves=payment.monto_ves,
            tasa_cambio=payment.tasa_cambio,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "referencia": self.referencia,
            "metodo_pago": self.metodo_pago,
            "monto_pagado_usd": self.monto_pagado_usd,
            "monto_pagado_ves": self.monto_pagado_ves,
            "tasa_cambio": self.tasa_cambio,
        }


@dataclass(frozen=True)
class PaymentSplitInfo:
    """How a multi-cuota payment was divided"""
    original_amount: float
    split_amount: float
    number_of_cuotas: int
    expected_cuota_amount: Optional[float] = None
    has_warning: bool = False
    warning_message: Optional[str] = None
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_amount": self.original_amount,
            "split_amount": self.split_amount,
            "number_of_cuotas": self.number_of_cuotas,
            "expected_cuota_amount": self.expected_cuota_amount,
            "has_warning": self.has_warning,
            "warning_message": self.warning_message,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class Installment:
    """
    One cuota of one order (long format).

    numero_cuota: 0 = initial payment, 1..14 = regular, -1 = unassigned.
    Schedule installments always have monto > 0 and a fecha_cuota; payment-based
    ones (is_payment_based=True) may have neither a schedule date nor a schedule amount.
    """
    orden: str
    numero_cuota: int
    monto: float
    fecha_cuota: Optional[datetime] = None
    estado_cuota: str = ""
    fecha_pago: Optional[datetime] = None
    fecha_pago_real: Optional[datetime] = None
    is_payment_based: bool = False
    payment_details: Optional[PaymentDetails] = None
    verificacion: str = Verification.UNKNOWN.value
    status: Optional[str] = None
    # Sum of every payment applied to this (orden, cuota); payment-based only
    monto_pagado: Optional[float] = None
    split_info: Optional[PaymentSplitInfo] = None

    @property
    def key(self) -> tuple:
        return (self.orden, self.numero_cuota)

    @property
    def payment_date(self) -> Optional[datetime]:
        return self.fecha_pago_real or self.fecha_pago

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orden": self.orden,
            "numero_cuota": self.numero_cuota,
            "monto": self.monto,
            "fecha_cuota": iso_date(self.fecha_cuota),
            "estado_cuota": self.estado_cuota,
            "fecha_pago": iso_date(self.fecha_pago),
            "fecha_pago_real": iso_date(self.fecha_pago_real),
            "is_payment_based": self.is_payment_based,
            "payment_details": self.payment_details.to_dict() if self.payment_details else None,
            "verificacion": self.verificacion,
            "status": self.status,
            "monto_pagado": self.monto_pagado,
            "split_info": self.split_info.to_dict() if self.split_info else None,
        }

    def to_cache_dict(self) -> Dict[str, Any]:
        d = self.to_dict()
        d["monto"] = decimal_str(self.monto)
        d["monto_pagado"] = decimal_str(self.monto_pagado)
        return d

    @classmethod
    def from_cache_dict(cls, d: Dict[str, Any]) -> "Installment":
        details = d.get("payment_details")
        split = d.get("split_info")
        return cls(
            orden=str(d["orden"]),
            numero_cuota=int(d["numero_cuota"]),
            monto=parse_decimal_str(d.get("monto")) or 0.0,
            fecha_cuota=parse_excel_date(d.get("fecha_cuota")),
            estado_cuota=d.get("estado_cuota") or "",
            fecha_pago=parse_excel_date(d.get("fecha_pago")),
            fecha_pago_real=parse_excel_date(d.get("fecha_pago_real")),
            is_payment_based=bool(d.get("is_payment_based")),
            payment_details=PaymentDetails(**details) if details else None,
            verificacion=d.get("verificacion") or Verification.UNKNOWN.value,
            status=d.get("status"),
            monto_pagado=parse_decimal_str(d.get("monto_pagado")),
            split_info=PaymentSplitInfo(**split) if split else None,
        )


# =============================================================================
# Upload bookkeeping
# =============================================================================

@dataclass
class SkippedRecord:
    orden: str
    cuota: str
    reason: str
    file_row: int

    def to_dict(self) -> Dict[str, Any]:
        return {"orden": self.orden, "cuota": self.cuota, "reason": self.reason, "file_row": self.file_row}


@dataclass
class MergeResult:
    added: int = 0
    updated: int = 0
    skipped: int = 0
    total: int = 0
    skipped_records: List[SkippedRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "updated": self.updated,
            "skipped": self.skipped,
            "total": self.total,
            "skipped_records": [s.to_dict() for s in self.skipped_records],
        }


# =============================================================================
# Monthly report
# =============================================================================

@dataclass
class MonthlyReport:
    """
    Waterfall financial summary (Reporte Mensual).
    Sales block -> bank block -> receivables block -> subtotal -> adjustments.
    """
    ventas_totales: float = 0.0
    monto_pagado_en_caja: float = 0.0
    monto_financiado: float = 0.0
    porcentaje_financiado: float = 0.0

    recibido_en_banco: float = 0.0
    cuotas_adelantadas_clientes: float = 0.0
    pago_inicial_clientes_app: float = 0.0
    devoluciones_errores_pago: float = 0.0
    depositos_otros_aliados: float = 0.0
    banco_neto: float = 0.0

    cuentas_por_cobrar: float = 0.0
    cuotas_adelantadas_periodos_anteriores: float = 0.0
    cuentas_por_cobrar_neto: float = 0.0

    subtotal: float = 0.0

    # Placeholders supplied by the caller
    iva: float = 0.0
    islr: float = 0.0
    factoring: float = 0.0
    cupones: float = 0.0
    total_ajustes: float = 0.0
    resultado: float = 0.0

    def calculate(self):
        """Calculate derived fields"""
        self.monto_financiado = self.ventas_totales - self.monto_pagado_en_caja
        self.porcentaje_financiado = (
            self.monto_financiado / self.ventas_totales * 100 if self.ventas_totales else 0.0
        )
        self.banco_neto = (self.recibido_en_banco - self.cuotas_adelantadas_clientes -
                           self.pago_inicial_clientes_app - self.devoluciones_errores_pago -
                           self.depositos_otros_aliados)
        self.cuentas_por_cobrar_neto = self.cuentas_por_cobrar - self.cuotas_adelantadas_periodos_anteriores
        self.subtotal = self.banco_neto - self.cuentas_por_cobrar_neto
        self.total_ajustes = self.iva + self.islr + self.factoring + self.cupones
        self.resultado = self.subtotal - self.total_ajustes

    def lines(self) -> List[tuple]:
        """(label, value) rows in display order"""
        return [
            ("Ventas Totales", self.ventas_totales),
            ("Monto Pagado en Caja", self.monto_pagado_en_caja),
            ("Monto Financiado", self.monto_financiado),
            ("% Financiado", self.porcentaje_financiado),
            ("Recibido en Banco", self.recibido_en_banco),
            ("Cuotas adelantadas de clientes", self.cuotas_adelantadas_clientes),
            ("Pago inicial de clientes en App", self.pago_inicial_clientes_app),
            ("Devoluciones por errores de pago", self.devoluciones_errores_pago),
            ("Depósitos de otros aliados", self.depositos_otros_aliados),
            ("Banco neto", self.banco_neto),
            ("Cuentas por Cobrar", self.cuentas_por_cobrar),
            ("Cuotas adelantadas en periodos anteriores", self.cuotas_adelantadas_periodos_anteriores),
            ("Cuentas por Cobrar Neto", self.cuentas_por_cobrar_neto),
            ("Subtotal", self.subtotal),
            ("IVA", self.iva),
            ("ISLR", self.islr),
            ("Factoring", self.factoring),
            ("Cupones", self.cupones),
            ("Resultado", self.resultado),
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ventas_totales": self.ventas_totales,
            "monto_pagado_en_caja": self.monto_pagado_en_caja,
            "monto_financiado": self.monto_financiado,
            "porcentaje_financiado": self.porcentaje_financiado,
            "recibido_en_banco": self.recibido_en_banco,
            "cuotas_adelantadas_clientes": self.cuotas_adelantadas_clientes,
            "pago_inicial_clientes_app": self.pago_inicial_clientes_app,
            "devoluciones_errores_pago": self.devoluciones_errores_pago,
            "depositos_otros_aliados": self.depositos_otros_aliados,
            "banco_neto": self.banco_neto,
            "cuentas_por_cobrar": self.cuentas_por_cobrar,
            "cuotas_adelantadas_periodos_anteriores": self.cuotas_adelantadas_periodos_anteriores,
            "cuentas_por_cobrar_neto": self.cuentas_por_cobrar_neto,
            "subtotal": self.subtotal,
            "iva": self.iva,
            "islr": self.islr,
            "factoring": self.factoring,
            "cupones": self.cupones,
            "total_ajustes": self.total_ajustes,
            "resultado": self.resultado,
        }
