"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..einvoice import ParseResult, process_invoice_file
from ..einvoice.codes import DOCUMENT_TYPES, PAYMENT_METHODS, label
from ..services import InvoiceImportService, StatementImportService
from ..state_store import StateStore
from ..statements import StatementReadError, WindowError, build_orchestrator

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-ingest",
        description="Ingest Italian e-invoices and bank statement PDFs",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    # parse-invoice command
    parse_invoice_parser = subparsers.add_parser(
        "parse-invoice", help="Parse an XML, P7M or ZIP invoice file without storing it"
    )
    parse_invoice_parser.add_argument("file", type=Path, help="Invoice file")
    parse_invoice_parser.add_argument("--json", action="store_true", help="Print JSON output")
    parse_invoice_parser.add_argument(
        "--include-xml", action="store_true", help="Include the decoded XML in JSON output"
    )

    # import-invoices command
    import_invoices_parser = subparsers.add_parser(
        "import-invoices", help="Parse and store an invoice file"
    )
    import_invoices_parser.add_argument("file", type=Path, help="Invoice file")

    # parse-statement command
    parse_statement_parser = subparsers.add_parser(
        "parse-statement", help="Extract transactions from a bank statement PDF"
    )
    parse_statement_parser.add_argument("pdf", type=Path, help="Statement PDF")
    parse_statement_parser.add_argument(
        "--remote",
        action="store_true",
        help="Send windows to the configured window endpoint instead of running locally",
    )
    parse_statement_parser.add_argument("--json", action="store_true", help="Print JSON output")

    # import-statement command
    import_statement_parser = subparsers.add_parser(
        "import-statement", help="Extract and store bank statement transactions"
    )
    import_statement_parser.add_argument("pdf", type=Path, help="Statement PDF")
    import_statement_parser.add_argument("--iban", type=str, help="Account IBAN")
    import_statement_parser.add_argument(
        "--account-name", type=str, help="Account name when no IBAN is given"
    )
    import_statement_parser.add_argument(
        "--remote",
        action="store_true",
        help="Send windows to the configured window endpoint instead of running locally",
    )

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the window endpoint / API server")
    serve_parser.add_argument("--host", type=str, help="Host to bind (default: from config)")
    serve_parser.add_argument("--port", type=int, help="Port to listen on (default: from config)")

    # status command
    subparsers.add_parser("status", help="Show storage statistics")

    return parser


def print_progress(event: dict) -> None:
    """Print window progress events as they arrive."""
    kind = event.get("type")
    if kind == "progress":
        print(
            f"  ⏳ [{event.get('chunk')}/{event.get('total')}] {event.get('message', '')} "
            f"({event.get('found', 0)} found)"
        )
    elif kind == "waiting":
        print(f"  ⏸  {event.get('message', '')}")
    elif kind == "chunk_error":
        print(f"  ⚠️  Chunk {event.get('chunk')} failed: {event.get('error', '')}")


def _print_invoice_result(result: ParseResult) -> None:
    if result.data is None:
        print(f"  ❌ {result.filename} [{result.method}]: {result.error}")
        return

    invoice = result.data
    print(f"  📄 {result.filename} [{result.method}] FatturaPA {invoice.version or '?'}")
    print(f"     Supplier: {invoice.supplier.name} ({invoice.supplier.vat_id})")
    print(f"     Customer: {invoice.customer.name} ({invoice.customer.vat_id})")
    for body in invoice.bodies:
        print(
            f"     → {label(DOCUMENT_TYPES, body.document_type)} n. {body.number} "
            f"del {body.date}: {body.total_amount} {body.currency}"
        )
        print(f"       {len(body.lines)} line(s), {len(body.vat_summary)} VAT summary row(s)")
        for payment in body.payments:
            print(
                f"       Payment: {label(PAYMENT_METHODS, payment.method)} "
                f"{payment.amount} due {payment.due_date or '-'}"
            )


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ Config already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_parse_invoice(path: Path, as_json: bool, include_xml: bool) -> int:
    """Parse an invoice file and print the result."""
    results = process_invoice_file(path.name, path.read_bytes())

    if as_json:
        print(json.dumps([r.to_dict(include_xml=include_xml) for r in results], indent=2))
    else:
        print(f"🧾 {path.name}: {len(results)} document(s)")
        for result in results:
            _print_invoice_result(result)

    return 0 if any(r.data is not None for r in results) else 1


def cmd_import_invoices(config: Config, path: Path) -> int:
    """Parse and store an invoice file."""
    store = StateStore(config.state_db_path)
    service = InvoiceImportService(store, max_reported_errors=config.statements.max_reported_errors)

    print(f"🧾 Importing {path.name}...")
    results, summary = service.import_file(path.name, path.read_bytes())
    for result in results:
        _print_invoice_result(result)

    _print_summary(summary)
    return 0 if summary.error_count == 0 else 1


def cmd_parse_statement(config: Config, path: Path, remote: bool, as_json: bool) -> int:
    """Extract transactions from a statement PDF."""
    try:
        orchestrator = build_orchestrator(
            config, remote=remote, on_event=None if as_json else print_progress
        )
    except ConfigValidationError as e:
        print(f"❌ {e}")
        return 1

    if not as_json:
        print(f"🏦 Extracting {path.name} ({'remote' if remote else 'local'})...")

    try:
        with orchestrator:
            result = orchestrator.run(path.read_bytes())
    except (StatementReadError, WindowError) as e:
        logger.error("Statement extraction failed: %s", e)
        print(f"❌ Extraction failed: {e}")
        return 1

    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    for tx in result.transactions:
        print(f"  {tx.date}  {tx.amount:>12}  {tx.transaction_type.value:<12} {tx.description[:60]}")
    for warning in result.warnings:
        print(f"  ⚠️  {warning}")
    print(
        f"\n✓ {len(result.transactions)} transaction(s) from {result.total_chunks} chunk(s) "
        f"in {result.windows} window(s)"
    )
    if result.failed_chunks:
        print(f"⚠️  Failed chunks: {', '.join(str(n) for n in result.failed_chunks)}")
    return 0


def cmd_import_statement(
    config: Config,
    path: Path,
    iban: str | None,
    account_name: str | None,
    remote: bool,
) -> int:
    """Extract and store transactions from a statement PDF."""
    try:
        orchestrator = build_orchestrator(config, remote=remote, on_event=print_progress)
    except ConfigValidationError as e:
        print(f"❌ {e}")
        return 1

    store = StateStore(config.state_db_path)
    service = StatementImportService(
        store,
        batch_size=config.statements.save_batch_size,
        max_reported_errors=config.statements.max_reported_errors,
    )

    print(f"🏦 Importing {path.name} ({'remote' if remote else 'local'})...")
    try:
        with orchestrator:
            result, summary = service.import_statement(
                path.read_bytes(),
                orchestrator,
                iban=iban,
                account_name=account_name,
                filename=path.name,
            )
    except (StatementReadError, WindowError) as e:
        logger.error("Statement import failed: %s", e)
        print(f"❌ Import failed: {e}")
        return 1

    print(f"  Extracted: {len(result.transactions)} transaction(s) in {result.windows} window(s)")
    _print_summary(summary)
    return 0 if summary.saved or not summary.error_count else 1


def _print_summary(summary) -> None:
    print(
        f"\n✓ Saved: {summary.saved}, Duplicates: {summary.duplicates}, "
        f"Failed: {summary.failed} ({summary.status.value})"
    )
    for error in summary.errors:
        print(f"   - {error}")
    hidden = summary.error_count - len(summary.errors)
    if hidden > 0:
        print(f"   ... and {hidden} more error(s)")


def cmd_serve(config: Config, config_path: Path, host: str | None, port: int | None) -> int:
    """Start the API server."""
    from ..web.app import run_server

    try:
        run_server(
            host=host or config.server.host,
            port=port or config.server.port,
            config_path=str(config_path),
            token=config.server.token,
        )
    except KeyboardInterrupt:
        print("\n✓ Server stopped")

    return 0


def cmd_status(config: Config) -> int:
    """Show storage statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Ingestion Status")
    print("=" * 40)
    print(f"  Invoices stored:        {stats['invoices_total']}")
    print(f"  Bank accounts:          {stats['bank_accounts_total']}")
    print(f"  Transactions stored:    {stats['transactions_total']}")
    print(f"  Import batches:         {stats['import_batches_total']}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)
    if parsed.command == "parse-invoice":
        return cmd_parse_invoice(parsed.file, parsed.json, parsed.include_xml)

    # Load config
    try:
        config = load_config(parsed.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    # Route to command
    if parsed.command == "import-invoices":
        return cmd_import_invoices(config, parsed.file)
    elif parsed.command == "parse-statement":
        return cmd_parse_statement(config, parsed.pdf, parsed.remote, parsed.json)
    elif parsed.command == "import-statement":
        return cmd_import_statement(
            config, parsed.pdf, parsed.iban, parsed.account_name, parsed.remote
        )
    elif parsed.command == "serve":
        return cmd_serve(config, parsed.config, parsed.host, parsed.port)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
