"""Invoice reconciliation keyed by fiscal UUID."""

from reconciliation.engine import InvoiceReconciler

__all__ = ["InvoiceReconciler"]
