"""Command-line interface for document processing and CSV export.

Provides subcommands for running single documents or folders through the
document-to-ledger pipeline, exporting batch outcomes to CSV, and checking
GSTINs.
"""

import argparse
import csv
import json
import sys
import time
from pathlib import Path
from typing import Any

from src.models import IncomingDocument, SourceChannel
from src.pipeline import DocumentPipeline
from src.utils.config import load_config
from src.utils.logger import get_logger, setup_logging
from src.validation.gstin import validate_gstin

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.tiff", "*.tif", "*.pdf")
_META_COLUMNS = [
    "filename",
    "document_id",
    "status",
    "disposition",
    "document_type",
    "invoice_type",
    "confidence",
    "review_reason",
    "journal_entry_id",
    "processing_time_s",
    "error",
]


def _find_documents(input_dir: Path) -> list[Path]:
    """Find all supported document files in a directory.

    Args:
        input_dir: Directory to scan for documents.

    Returns:
        Sorted list of document file paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _build_pipeline(config_path: Path | None) -> DocumentPipeline:
    config = load_config(config_path)
    return DocumentPipeline.from_config(config)


def process_file(
    pipeline: DocumentPipeline,
    file_path: Path,
    client_id: str,
    accountant_id: str,
    invoice_type: str | None = None,
) -> dict[str, Any]:
    """Store one file and run it through the pipeline.

    Args:
        pipeline: Configured document pipeline.
        file_path: Path to the document file.
        client_id: Client the document belongs to.
        accountant_id: Accountant serving the client.
        invoice_type: Optional ``sales`` or ``purchase`` override.

    Returns:
        The serialized processing outcome.
    """
    metadata = {"invoice_type": invoice_type} if invoice_type else {}
    document = IncomingDocument(
        client_id=client_id,
        accountant_id=accountant_id,
        filename=file_path.name,
        source=SourceChannel.API,
        metadata=metadata,
    )
    pipeline.storage.save(document.id, file_path.read_bytes())
    outcome = pipeline.process(document)
    return outcome.to_dict()


def _summary_row(file_path: Path, outcome: dict[str, Any]) -> dict[str, object]:
    confidence = outcome.get("confidence") or {}
    row: dict[str, object] = {
        "filename": file_path.name,
        "document_id": outcome["document_id"],
        "status": "success",
        "disposition": outcome["disposition"],
        "document_type": outcome["document_type"],
        "invoice_type": outcome.get("invoice_type"),
        "confidence": confidence.get("weighted_score"),
        "review_reason": confidence.get("review_reason"),
        "journal_entry_id": outcome.get("journal_entry_id"),
        "error": None,
    }
    for name, value in (outcome.get("fields") or {}).items():
        if name not in row and isinstance(value, str | int | float):
            row[name] = value
    return row


def process_folder(
    input_dir: Path,
    output_csv: Path,
    client_id: str,
    accountant_id: str,
    invoice_type: str | None = None,
    config_path: Path | None = None,
    verbose: bool = False,
) -> dict[str, int]:
    """Process all documents in a folder and export outcomes to CSV.

    Args:
        input_dir: Directory containing document files.
        output_csv: Path for the output CSV file.
        client_id: Client the documents belong to.
        accountant_id: Accountant serving the client.
        invoice_type: Optional ``sales`` or ``purchase`` override.
        config_path: Alternative configuration file.
        verbose: Whether to print per-file progress.

    Returns:
        Summary dict with total, successful, failed and per-disposition counts.
    """
    files = _find_documents(input_dir)
    if not files:
        logger.warning("No documents found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    pipeline = _build_pipeline(config_path)
    logger.info("Found %d documents to process", len(files))

    results: list[dict[str, object]] = []
    dispositions: dict[str, int] = {}
    successful = 0
    failed = 0

    for i, file_path in enumerate(files, 1):
        if verbose:
            print(f"Processing [{i}/{len(files)}]: {file_path.name}")

        start_time = time.time()
        try:
            outcome = process_file(pipeline, file_path, client_id, accountant_id, invoice_type)
            row = _summary_row(file_path, outcome)
            row["processing_time_s"] = round(time.time() - start_time, 2)
            results.append(row)
            disposition = str(outcome["disposition"])
            dispositions[disposition] = dispositions.get(disposition, 0) + 1
            successful += 1
        except Exception as exc:
            logger.error("Failed to process %s: %s", file_path.name, exc)
            results.append(
                {
                    "filename": file_path.name,
                    "status": "failed",
                    "error": str(exc),
                }
            )
            failed += 1

    _write_csv(results, output_csv)
    logger.info("Results written to %s", output_csv)

    summary = {"total": len(files), "successful": successful, "failed": failed, **dispositions}
    _print_summary(summary, output_csv)
    return summary


def _write_csv(results: list[dict[str, object]], output_path: Path) -> None:
    """Write processing outcomes to a CSV file.

    Args:
        results: List of result dictionaries.
        output_path: Path for the output CSV file.
    """
    if not results:
        return

    all_keys: set[str] = set()
    for r in results:
        all_keys.update(r.keys())

    field_columns = sorted(all_keys - set(_META_COLUMNS))
    columns = [c for c in _META_COLUMNS if c in all_keys] + field_columns

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(results)


def _print_summary(summary: dict[str, int], output_csv: Path) -> None:
    print(f"\n{'=' * 50}")
    print("Batch Processing Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    for key, count in summary.items():
        if key not in ("total", "successful", "failed"):
            print(f"  {key}: {count}")
    print(f"Output:     {output_csv}")


def check_gstins(values: list[str]) -> bool:
    """Print a validity line per GSTIN.

    Returns:
        True if every GSTIN is valid.
    """
    all_valid = True
    for value in values:
        check = validate_gstin(value)
        status = "VALID" if check.valid else "INVALID"
        state = f" ({check.state_name})" if check.valid and check.state_name else ""
        print(f"{check.gstin or value}: {status}{state} - {check.message}")
        all_valid = all_valid and check.valid
    return all_valid


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="Document Ledger Processor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", "--config", type=Path, help="Configuration YAML file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    tenant = argparse.ArgumentParser(add_help=False)
    tenant.add_argument("--client-id", required=True, help="Client the documents belong to")
    tenant.add_argument("--accountant-id", required=True, help="Accountant serving the client")
    tenant.add_argument(
        "-t",
        "--invoice-type",
        choices=["sales", "purchase"],
        help="Treat invoices as sales or purchases instead of inferring it",
    )

    batch_parser = subparsers.add_parser(
        "batch", parents=[tenant], help="Process a folder of documents"
    )
    batch_parser.add_argument(
        "input_dir", type=Path, help="Input directory with documents"
    )
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output CSV file (default: results.csv)",
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    single_parser = subparsers.add_parser(
        "process", parents=[tenant], help="Process a single document"
    )
    single_parser.add_argument("file", type=Path, help="Document file to process")
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    gstin_parser = subparsers.add_parser("gstin", help="Validate one or more GSTINs")
    gstin_parser.add_argument("gstins", nargs="+", help="GSTINs to check")

    args = parser.parse_args(argv)

    setup_logging()

    if args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        process_folder(
            args.input_dir,
            args.output,
            args.client_id,
            args.accountant_id,
            args.invoice_type,
            args.config,
            args.verbose,
        )
    elif args.command == "process":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        pipeline = _build_pipeline(args.config)
        result = process_file(
            pipeline, args.file, args.client_id, args.accountant_id, args.invoice_type
        )
        output_str = json.dumps(result, indent=2, default=str)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str)
            print(f"Output written to {args.output}")
        else:
            print(output_str)
    elif args.command == "gstin":
        if not check_gstins(args.gstins):
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
