from __future__ import annotations

import os
from dataclasses import dataclass

# NOTE:
# - Paths can be relative to the working directory or absolute.
# - You can override ANY value with environment variables if you prefer.
#
# Suggested env overrides:
#   RECON_DATA_DIR          (uploaded datasets, JSON)
#   RECON_OUTPUT_DIR        (xlsx exports)
#   RECON_AMOUNT_TOL        (float, default 0.01)
#   RECON_MAX_CUOTAS        (int, default 14)
#   RECON_EARLY_DAYS        (int, default 15)
#   RECON_LATE_DAYS         (int, default 2)
#   RECON_DELAY_GRACE_DAYS  (int, default 3)
#   RECON_TIMEZONE          (default America/Caracas)
#   RECON_PORT              (default 8000)


@dataclass(frozen=True)
class ReconSettings:
    # Where the four uploaded datasets are kept between runs
    data_dir: str = os.environ.get("RECON_DATA_DIR", "data")

    # Output folder for reconciliation exports (xlsx)
    output_dir: str = os.environ.get("RECON_OUTPUT_DIR", os.path.join("data", "_output"))

    # Matching tolerance between bank and payment amounts
    amount_tolerance: float = float(os.environ.get("RECON_AMOUNT_TOL", "0.01"))

    # Positional installment columns in the orders sheet ("Cuota 1" .. "Cuota 14")
    max_installments: int = int(os.environ.get("RECON_MAX_CUOTAS", "14"))

    # Status policy
    early_days: int = int(os.environ.get("RECON_EARLY_DAYS", "15"))
    late_days: int = int(os.environ.get("RECON_LATE_DAYS", "2"))
    # Unpaid Scheduled/Graced cuotas become Delayed this many days after due date
    delay_grace_days: int = int(os.environ.get("RECON_DELAY_GRACE_DAYS", "3"))

    # "Today" is evaluated in the business timezone
    timezone: str = os.environ.get("RECON_TIMEZONE", "America/Caracas")

    port: int = int(os.environ.get("RECON_PORT", "8000"))


DEFAULT_SETTINGS = ReconSettings()
