"""Installment reconciliation package.

Reconciles the order schedule, payment records and bank statements of an
installment-sales business. Run the service standalone via Uvicorn:

    python -m uvicorn cuotas_recon.api_app:app --host 127.0.0.1 --port 8000

or reconcile files directly with ``cuotas-recon run``.
"""

__version__ = "1.0.0"
