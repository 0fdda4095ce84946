"""Assignment orchestrators.

- InvoiceAssignmentService: attachment -> invoice (+ client), batch sweep over operations
- ClientAssignmentService: attachment -> client on the operation, batch sweep over
  operations without a client

Usage:
    from assignment import InvoiceAssignmentService
    from storage.blobs import LocalBlobStore
    from storage.db import SqliteStore

    service = InvoiceAssignmentService(SqliteStore("invoice_intake.db"), LocalBlobStore("blobs"))
    summary = service.process_operations()
    print(summary.invoices_created, summary.errors)
"""

from assignment.clients import ClientAssignmentService
from assignment.invoices import InvoiceAssignmentService

__all__ = [
    "ClientAssignmentService",
    "InvoiceAssignmentService",
]
