from __future__ import annotations

import argparse
import io
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from .adapters import read_sheet
from .engine import SourceSnapshot, reconcile
from .models import Dataset
from .normalize import business_today
from .outputs import write_recon_xlsx
from .report import ReportFilters, compute_monthly_report
from .settings import DEFAULT_SETTINGS
from .storage import dedupe_bank_statement, dedupe_marketplace_orders, merge_orders, merge_payment_records

logger = logging.getLogger(__name__)


def _load(path: Optional[str]) -> Dataset:
    if not path:
        return Dataset()
    headers, rows = read_sheet(path)
    return Dataset(headers, rows, Path(path).name)


def _filter_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%d/%m/%Y").date()
    except ValueError:
        raise SystemExit(f"Fecha inválida (DD/MM/YYYY): {value}")


def run(args) -> Path:
    # Uploads go through the same merge rules as the service
    orders, _ = merge_orders(Dataset(), _load(args.orders))
    payments, skipped = merge_payment_records(Dataset(), _load(args.payments))
    bank, _ = dedupe_bank_statement(_load(args.bank))
    marketplace, _ = dedupe_marketplace_orders(_load(args.marketplace))
    for s in skipped.skipped_records:
        logger.warning("Fila %d omitida (%s / %s): %s", s.file_row, s.orden, s.cuota, s.reason)

    today = business_today(DEFAULT_SETTINGS.timezone)
    snapshot = SourceSnapshot(orders=orders, payments=payments, bank=bank, marketplace=marketplace)
    result = reconcile(snapshot, DEFAULT_SETTINGS, today)

    filters = ReportFilters(
        master_from=_filter_date(args.date_from),
        master_to=_filter_date(args.date_to),
        master_orden=args.orden or "",
    )
    report = compute_monthly_report(result, filters)

    out = Path(args.out) if args.out else Path(DEFAULT_SETTINGS.output_dir) / f"conciliacion_{today.isoformat()}.xlsx"
    out.parent.mkdir(parents=True, exist_ok=True)
    bio = io.BytesIO()
    period = f"{args.date_from or '...'} - {args.date_to or '...'}"
    write_recon_xlsx(bio, result, report, {"period": period})
    out.write_bytes(bio.getvalue())
    logger.info("Wrote: %s", out)
    return out


def main(argv=None):
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    ap = argparse.ArgumentParser(prog="cuotas-recon")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Reconcile the given sheets and write an xlsx report")
    p.add_argument("--orders", required=True)
    p.add_argument("--payments", required=True)
    p.add_argument("--bank", required=True)
    p.add_argument("--marketplace")
    p.add_argument("--out")
    p.add_argument("--from", dest="date_from", help="DD/MM/YYYY")
    p.add_argument("--to", dest="date_to", help="DD/MM/YYYY")
    p.add_argument("--orden")

    args = ap.parse_args(argv)
    if args.command == "run":
        try:
            run(args)
        except ValueError as e:
            logger.error("%s", e)
            raise SystemExit(1)


if __name__ == "__main__":
    main()
