"""Client-assignment orchestrator.

Per attachment: extract the CFDI receptor, match or create the client, and
assign it to the operation. No invoice is written. The batch sweep targets
operations without a client and stops at the first attachment that
produces an assignment.
"""

import time
import uuid
from typing import Optional

from client_resolver.resolver import ClientResolver
from core.config import DEFAULT_CONFIG, PipelineConfig
from core.errors import BlobFetchFailure, ExtractionSkipped, PersistenceFailure
from core.observability.logging import (
    get_logger,
    log_batch_event,
    log_stage_complete,
    with_correlation,
)
from core.observability.metrics import record_outcome, record_processing_time
from assignment.attachments import invoice_candidates, load_document
from models.outcomes import AssignmentAction, AttachmentOutcome, ClientBatchSummary
from storage.blobs import BlobStore
from storage.db import SqliteStore


logger = get_logger(__name__)

FLAVOR = "client"

ALREADY_ASSIGNED_REASON = "operation already has a client assigned"


class ClientAssignmentService:
    """Assigns clients to operations from their invoice attachments."""

    def __init__(
        self,
        store: SqliteStore,
        blobs: BlobStore,
        config: PipelineConfig = DEFAULT_CONFIG,
    ):
        self.store = store
        self.blobs = blobs
        self.config = config
        self.resolver = ClientResolver(store, config)

    def process_attachment(
        self,
        operation_id: str,
        attachment_id: str,
        filename: str,
        storage_key: str,
        mime_type: Optional[str] = None,
    ) -> AttachmentOutcome:
        """Assign a client to an operation from one attachment.

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
            if operation.client_id:
                logger.info(f"Operation already has client {operation.client_id}")
                return AttachmentOutcome.skipped(ALREADY_ASSIGNED_REASON, client_id=operation.client_id, **ids)

            document = load_document(self.blobs, storage_key, filename, mime_type, self.config)

            resolution = self.resolver.resolve_client(
                document.counterparty,
                invoice_currency=document.currency,
                source_attachment_id=attachment_id,
            )
            self.store.update_operation(operation_id, {"client_id": resolution.client.id})

        except ExtractionSkipped as exc:
            logger.info(f"Skipping {filename}: {exc.reason}")
            return AttachmentOutcome.skipped(exc.reason, **ids)
        except BlobFetchFailure as exc:
            logger.warning(f"Could not fetch {filename}: {exc}")
            return AttachmentOutcome.error(f"could not fetch attachment: {exc}", **ids)
        except PersistenceFailure as exc:
            logger.error(f"Persistence failure for {filename}: {exc}")
            return AttachmentOutcome.error(f"persistence failure: {exc}", **ids)
        except Exception as exc:
            logger.exception(f"Unexpected error processing {filename}")
            return AttachmentOutcome.error(f"unexpected error: {exc}", **ids)

        if resolution.created:
            action = AssignmentAction.CREATED_AND_ASSIGNED
            reasoning = f"client {resolution.client.name} created and assigned from invoice"
        else:
            action = AssignmentAction.ASSIGNED_EXISTING
            reasoning = f"client {resolution.client.name} assigned from invoice"

        logger.info(reasoning, extra_fields={"client_id": resolution.client.id})
        return AttachmentOutcome(
            success=True,
            action=action,
            reasoning=reasoning,
            client_id=resolution.client.id,
            fiscal_uuid=document.fiscal_uuid,
            confidence=resolution.match.confidence if resolution.match.matched else document.confidence,
            **ids,
        )

    def process_unassigned_operations(self) -> ClientBatchSummary:
        """Sweep one page of operations without a client.

        Returns:
            ClientBatchSummary with processed/assigned/created/error counters
        """
        summary = ClientBatchSummary()
        batch_id = f"clients-{uuid.uuid4().hex[:8]}"

        with with_correlation(batch_id=batch_id, flavor=FLAVOR):
            try:
                operations = self.store.list_operations_without_client(limit=self.config.batch_page_size)
            except PersistenceFailure as exc:
                logger.error(f"Could not list operations: {exc}")
                summary.errors += 1
                return summary

            log_batch_event("Client sweep started", operations=len(operations))

            for operation in operations:
                summary.processed += 1
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
                        summary.outcomes.append(outcome)

                        if outcome.success:
                            if outcome.action == AssignmentAction.CREATED_AND_ASSIGNED:
                                summary.created += 1
                            summary.assigned += 1
                            break
                        elif outcome.action == AssignmentAction.ERROR:
                            summary.errors += 1

                except Exception:
                    logger.exception(f"Error processing operation {operation.id}")
                    summary.errors += 1

            log_batch_event(
                "Client sweep complete",
                processed=summary.processed,
                assigned=summary.assigned,
                created=summary.created,
                errors=summary.errors,
            )

        return summary
