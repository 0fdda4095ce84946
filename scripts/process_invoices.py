"""
Command-line entry point for the CFDI ingestion pipeline.

Subcommands:
- init-db: Create the SQLite schema
- add-operation: Register an operation
- attach: Store a file as an attachment of an operation
- extract: Print the extracted document for a local file (no writes)
- sweep-invoices: Create invoices from operation attachments
- sweep-clients: Assign clients to operations that have none

Examples:
    python scripts/process_invoices.py init-db
    python scripts/process_invoices.py add-operation "NAVI-0001234"
    python scripts/process_invoices.py attach <operation_id> factura_A123.xml
    python scripts/process_invoices.py extract factura_A123.xml
    python scripts/process_invoices.py sweep-invoices --operation <operation_id>
    python scripts/process_invoices.py sweep-invoices --offset 50
"""

import argparse
import json
import logging
import mimetypes
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).resolve().parents[1]))

from assignment import ClientAssignmentService, InvoiceAssignmentService
from core.config import PipelineConfig, load_config
from core.errors import ExtractionSkipped
from core.observability import configure_logging, get_metrics
from extraction.runner import extract_invoice
from models.records import AttachmentRecord, OperationRecord
from storage.blobs import LocalBlobStore
from storage.db import SqliteStore


def build_store(config: PipelineConfig) -> SqliteStore:
    store = SqliteStore(config.db_path)
    store.init_db()
    return store


def cmd_init_db(args, config: PipelineConfig) -> int:
    build_store(config)
    print(f"Initialized database at {config.db_path}")
    return 0


def cmd_add_operation(args, config: PipelineConfig) -> int:
    store = build_store(config)
    operation = store.create_operation(OperationRecord(name=args.name, client_id=args.client))
    print(operation.id)
    return 0


def cmd_attach(args, config: PipelineConfig) -> int:
    store = build_store(config)
    if store.get_operation(args.operation_id) is None:
        print(f"Operation not found: {args.operation_id}")
        return 1

    path = Path(args.file)
    data = path.read_bytes()
    blobs = LocalBlobStore(config.blob_root)
    ref = blobs.put_bytes(data, f"{args.operation_id}/{path.name}")
    if not blobs.verify(ref):
        print(f"Stored copy of {path.name} does not match its hash {ref.content_hash}")
        return 1

    attachment = store.add_attachment(AttachmentRecord(
        operation_id=args.operation_id,
        filename=path.name,
        mime_type=mimetypes.guess_type(path.name)[0],
        size_bytes=len(data),
        storage_key=ref.storage_key,
    ))
    print(attachment.id)
    return 0


def cmd_extract(args, config: PipelineConfig) -> int:
    path = Path(args.file)
    try:
        document = extract_invoice(path.read_bytes(), path.name, mimetypes.guess_type(path.name)[0], config=config)
    except ExtractionSkipped as exc:
        print(f"Skipped: {exc.reason}")
        return 1
    print(document.model_dump_json(indent=2))
    return 0


def cmd_sweep_invoices(args, config: PipelineConfig) -> int:
    service = InvoiceAssignmentService(build_store(config), LocalBlobStore(config.blob_root), config)
    summary = service.process_operations(args.operation or None, offset=args.offset)

    print("=" * 60)
    print("INVOICE SWEEP")
    print("=" * 60)
    print(f"  Processed:          {summary.processed}")
    print(f"  Invoices created:   {summary.invoices_created}")
    print(f"  Invoices assigned:  {summary.invoices_assigned}")
    print(f"  Errors:             {summary.errors}")
    if args.verbose:
        for outcome in summary.outcomes:
            print(f"  [{outcome.action.value}] {outcome.attachment_id}: {outcome.reasoning}")
    return 0 if summary.errors == 0 else 2


def cmd_sweep_clients(args, config: PipelineConfig) -> int:
    service = ClientAssignmentService(build_store(config), LocalBlobStore(config.blob_root), config)
    summary = service.process_unassigned_operations()

    print("=" * 60)
    print("CLIENT SWEEP")
    print("=" * 60)
    print(f"  Processed:  {summary.processed}")
    print(f"  Assigned:   {summary.assigned}")
    print(f"  Created:    {summary.created}")
    print(f"  Errors:     {summary.errors}")
    if args.verbose:
        for outcome in summary.outcomes:
            print(f"  [{outcome.action.value}] {outcome.attachment_id}: {outcome.reasoning}")
    return 0 if summary.errors == 0 else 2


def main() -> int:
    parser = argparse.ArgumentParser(description="CFDI invoice ingestion pipeline")
    parser.add_argument("--env-file", type=Path, help="Path to a .env file")
    parser.add_argument("--metrics", action="store_true", help="Print metrics summary on exit")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database schema")

    add_op = subparsers.add_parser("add-operation", help="Register an operation")
    add_op.add_argument("name")
    add_op.add_argument("--client", help="Client id already assigned to the operation")

    attach = subparsers.add_parser("attach", help="Attach a file to an operation")
    attach.add_argument("operation_id")
    attach.add_argument("file")

    extract = subparsers.add_parser("extract", help="Extract a local file and print the result")
    extract.add_argument("file")

    sweep_invoices = subparsers.add_parser("sweep-invoices", help="Create invoices from attachments")
    sweep_invoices.add_argument("--operation", action="append", help="Operation id (repeatable)")
    sweep_invoices.add_argument("--offset", type=int, default=0, help="Operations to skip before the page")
    sweep_invoices.add_argument("-v", "--verbose", action="store_true")

    sweep_clients = subparsers.add_parser("sweep-clients", help="Assign clients to operations")
    sweep_clients.add_argument("-v", "--verbose", action="store_true")

    args = parser.parse_args()

    config = load_config(args.env_file)
    configure_logging(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        json_format=config.log_json,
        force=True,
    )

    commands = {
        "init-db": cmd_init_db,
        "add-operation": cmd_add_operation,
        "attach": cmd_attach,
        "extract": cmd_extract,
        "sweep-invoices": cmd_sweep_invoices,
        "sweep-clients": cmd_sweep_clients,
    }
    exit_code = commands[args.command](args, config)

    if args.metrics:
        print(json.dumps(get_metrics().get_summary(), indent=2, default=str))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
