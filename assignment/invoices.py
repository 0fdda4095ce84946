"""Invoice-creation orchestrator.

Per attachment: fetch the bytes, extract the CFDI, reconcile it against the
invoices table by fiscal UUID, and link the invoice to the operation.
The batch sweep runs that for every invoice candidate of a page of
operations, strictly one after another.
"""

import time
import uuid
from typing import List, Optional

from client_resolver.resolver import ClientResolver
from core.config import DEFAULT_CONFIG, PipelineConfig
from core.errors import (
    BlobFetchFailure,
    ExtractionSkipped,
    MissingFiscalIdentifier,
    PersistenceFailure,
)
from core.observability.logging import (
    get_logger,
    log_batch_event,
    log_stage_complete,
    with_correlation,
)
from core.observability.metrics import record_outcome, record_processing_time
from assignment.attachments import invoice_candidates, load_document
from models.outcomes import (
    AssignmentAction,
    AttachmentOutcome,
    InvoiceBatchSummary,
    ReconciliationAction,
)
from models.records import OperationRecord
from reconciliation.engine import InvoiceReconciler
from storage.blobs import BlobStore
from storage.db import SqliteStore


logger = get_logger(__name__)

FLAVOR = "invoice"


class InvoiceAssignmentService:
    """Creates invoices from operation attachments.

    Example:
        service = InvoiceAssignmentService(store, LocalBlobStore("blobs"))
        outcome = service.process_attachment(
            operation_id="op-001",
            attachment_id="att-9",
            filename="factura_A123.xml",
            storage_key="op-001/factura_A123.xml",
        )
        print(outcome.action)  # created-and-assigned
    """

    def __init__(
        self,
        store: SqliteStore,
        blobs: BlobStore,
        config: PipelineConfig = DEFAULT_CONFIG,
    ):
        self.store = store
        self.blobs = blobs
        self.config = config
        self.reconciler = InvoiceReconciler(store, ClientResolver(store, config), config)

    def process_attachment(
        self,
        operation_id: str,
        attachment_id: str,
        filename: str,
        storage_key: str,
        mime_type: Optional[str] = None,
    ) -> AttachmentOutcome:
        """Run the full pipeline for one attachment.

        Never raises; every failure becomes an `error` or `skipped` outcome.
        """
        start = time.time()
        ids = {"operation_id": operation_id, "attachment_id": attachment_id}

        with with_correlation(flavor=FLAVOR, filename=filename, **ids):
            outcome = self._process(operation_id, attachment_id, filename, storage_key, mime_type, ids)

            duration_ms = (time.time() - start) * 1000
            record_outcome(FLAVOR, outcome.action.value)
            record_processing_time("attachment", duration_ms)
            log_stage_complete(
                "attachment",
                duration_ms,
                action=outcome.action.value,
                reasoning=outcome.reasoning,
            )
        return outcome

    def _process(
        self,
        operation_id: str,
        attachment_id: str,
        filename: str,
        storage_key: str,
        mime_type: Optional[str],
        ids: dict,
    ) -> AttachmentOutcome:
        try:
            operation = self.store.get_operation(operation_id)
            if operation is None:
                return AttachmentOutcome.error("operation not found", **ids)

            document = load_document(self.blobs, storage_key, filename, mime_type, self.config)

            if not document.fiscal_uuid:
                raise MissingFiscalIdentifier()

            with with_correlation(fiscal_uuid=document.fiscal_uuid):
                result = self.reconciler.reconcile(
                    document,
                    operation_id=operation_id,
                    source_attachment_id=attachment_id,
                )

        except ExtractionSkipped as exc:
            logger.info(f"Skipping {filename}: {exc.reason}")
            return AttachmentOutcome.skipped(exc.reason, **ids)
        except MissingFiscalIdentifier as exc:
            logger.warning(f"Invoice in {filename} has no fiscal UUID; cannot check uniqueness")
            return AttachmentOutcome.error(exc.reason, **ids)
        except BlobFetchFailure as exc:
            logger.warning(f"Could not fetch {filename}: {exc}")
            return AttachmentOutcome.error(f"could not fetch attachment: {exc}", **ids)
        except PersistenceFailure as exc:
            logger.error(f"Persistence failure for {filename}: {exc}")
            return AttachmentOutcome.error(f"persistence failure: {exc}", **ids)
        except Exception as exc:
            logger.exception(f"Unexpected error processing {filename}")
            return AttachmentOutcome.error(f"unexpected error: {exc}", **ids)

        if result.action == ReconciliationAction.ALREADY_INGESTED:
            action = AssignmentAction.ASSIGNED_EXISTING
            reasoning = "invoice already ingested from this fiscal UUID"
        elif result.action == ReconciliationAction.CORRECTED:
            action = AssignmentAction.CREATED_AND_ASSIGNED
            reasoning = "manually entered invoice corrected from CFDI"
        else:
            action = AssignmentAction.CREATED_AND_ASSIGNED
            reasoning = "invoice created from CFDI"

        return AttachmentOutcome(
            success=True,
            action=action,
            reasoning=reasoning,
            client_id=result.client_id,
            invoice_id=result.invoice_id,
            fiscal_uuid=result.fiscal_uuid,
            confidence=document.confidence,
            **ids,
        )

    def _operations_to_sweep(self, operation_ids: Optional[List[str]], offset: int) -> List[OperationRecord]:
        if operation_ids:
            operations = [self.store.get_operation(op_id) for op_id in operation_ids]
            return [op for op in operations if op is not None]
        return self.store.list_operations(limit=self.config.batch_page_size, offset=offset)

    def process_operations(
        self,
        operation_ids: Optional[List[str]] = None,
        offset: int = 0,
    ) -> InvoiceBatchSummary:
        """Sweep operations for invoice attachments.

        Args:
            operation_ids: Operations to process (default: one page of all operations)
            offset: Operations to skip before the page, oldest first. Ignored
                when operation_ids is given

        Returns:
            InvoiceBatchSummary with processed/created/assigned/error counters
        """
        summary = InvoiceBatchSummary()
        batch_id = f"invoices-{uuid.uuid4().hex[:8]}"

        with with_correlation(batch_id=batch_id, flavor=FLAVOR):
            try:
                operations = self._operations_to_sweep(operation_ids, offset)
            except PersistenceFailure as exc:
                logger.error(f"Could not list operations: {exc}")
                summary.errors += 1
                return summary

            log_batch_event("Invoice sweep started", operations=len(operations))

            for operation in operations:
                try:
                    candidates = invoice_candidates(self.store.list_attachments(operation.id))

                    for attachment in candidates:
                        outcome = self.process_attachment(
                            operation_id=operation.id,
                            attachment_id=attachment.id,
                            filename=attachment.filename,
                            storage_key=attachment.storage_key,
                            mime_type=attachment.mime_type,
                        )
                        summary.processed += 1
                        summary.outcomes.append(outcome)

                        if outcome.success:
                            if outcome.action == AssignmentAction.CREATED_AND_ASSIGNED:
                                summary.invoices_created += 1
                            elif outcome.action == AssignmentAction.ASSIGNED_EXISTING:
                                summary.invoices_assigned += 1
                        elif outcome.action == AssignmentAction.ERROR:
                            summary.errors += 1

                except Exception:
                    logger.exception(f"Error processing operation {operation.id}")
                    summary.errors += 1

            log_batch_event(
                "Invoice sweep complete",
                processed=summary.processed,
                invoices_created=summary.invoices_created,
                invoices_assigned=summary.invoices_assigned,
                errors=summary.errors,
            )

        return summary
