"""Command line interface for the key manager.

Every command builds a CredentialClient from the resolved configuration,
runs one async operation and maps the outcome to an exit code:
0 for success (or nothing to do), 1 for errors and batches where every key
failed, 2 for batches where only some keys failed.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, List, Optional

import structlog
import typer

from .client.credential_client import CredentialClient
from .client.models import CredentialRecord, KeyManagerError
from .config import ManagerConfig, configure_logging
from .executor.batch_executor import BatchExecutor, TargetSource
from .executor.models import BatchOperation, BatchOutcome, BatchResult, OperationKind
from .ingestion.key_file import read_account_file, read_key_file
from .safety.confirmation_manager import ConfirmationManager
from .safety.validator import (
    generate_key_name,
    today,
    validate_date,
    validate_email,
    validate_limit,
    validate_tags,
)
from .selection.key_selector import filter_records
from .selection.models import SelectionCriterion

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[ManagerConfig], CredentialClient]

EXIT_FAILED = 1
EXIT_PARTIAL = 2


def default_client_factory(config: ManagerConfig) -> CredentialClient:
    return CredentialClient.from_provisioning_key(
        config.require_provisioning_key(),
        base_url=config.base_url,
        retry_config=config.retry_config(),
    )


def confirm_on_terminal(preview: str) -> bool:
    """Show the preview on stderr and ask for a yes/no answer."""
    typer.echo(preview, err=True)
    return typer.confirm("Proceed?", default=False, err=True)


def exit_code_for(result: BatchResult) -> int:
    outcome = result.outcome
    if outcome == BatchOutcome.FAILED:
        return EXIT_FAILED
    if outcome == BatchOutcome.PARTIAL:
        return EXIT_PARTIAL
    return 0


def _progress_printer(label: str) -> Callable[[Any, bool, Optional[str]], None]:
    def progress(target: Any, ok: bool, error: Optional[str]) -> None:
        if ok:
            typer.echo(f"✓ {label}: {target}", err=True)
        else:
            typer.echo(f"✗ {label} failed for {target}: {error}", err=True)

    return progress


def _echo_issued(keys: List[Dict[str, Any]]) -> None:
    typer.echo(json.dumps(keys, indent=2))
    typer.echo(
        "IMPORTANT: Distribute new keys to users. The secrets are not shown again.",
        err=True,
    )


def _record_row(record: CredentialRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json")


def _render_table(records: List[CredentialRecord]) -> str:
    header = f"{'NAME':<40} {'HASH':<20} {'DISABLED':<8} {'LIMIT':>10} {'USAGE':>10}"
    lines = [header]
    for r in records:
        limit = "-" if r.limit is None else f"{r.limit:.2f}"
        lines.append(
            f"{r.name[:40]:<40} {r.hash[:20]:<20} {str(r.disabled):<8} "
            f"{limit:>10} {r.usage:>10.2f}"
        )
    return "\n".join(lines)


def create_app(client_factory: Optional[ClientFactory] = None) -> typer.Typer:
    """Create the Typer CLI application."""
    factory = client_factory or default_client_factory
    app = typer.Typer(
        name="key-manager",
        help="Manage provisioning-API keys: create, list, enable, disable, limit, rotate, delete",
        add_completion=False,
        no_args_is_help=True,
    )

    @app.callback()
    def main_options(
        ctx: typer.Context,
        provisioning_key: Optional[str] = typer.Option(
            None,
            "--provisioning-key",
            "-k",
            help="Provisioning API key (default: OPENROUTER_PROVISIONING_KEY)",
        ),
        config_file: Optional[Path] = typer.Option(
            None,
            "--config",
            "-c",
            help="Path to YAML configuration file",
        ),
    ) -> None:
        ctx.obj = {"provisioning_key": provisioning_key, "config_file": config_file}

    def run(ctx: typer.Context, action: Callable[[CredentialClient], Coroutine[Any, Any, int]]) -> None:
        """Build a client, run ``action`` and exit with its code."""
        try:
            config = ManagerConfig.load(
                ctx.obj["config_file"], provisioning_key=ctx.obj["provisioning_key"]
            )
            if ctx.obj["config_file"]:
                configure_logging(config.log_level, config.development_mode)
            client = factory(config)

            async def runner() -> int:
                async with client:
                    return await action(client)

            code = asyncio.run(runner())
        except KeyManagerError as e:
            logger.debug("Command failed", error_code=e.error_code, error=e.message)
            typer.echo(f"Error: {e.message}", err=True)
            raise typer.Exit(EXIT_FAILED)

        if code:
            raise typer.Exit(code)

    def run_batch(
        ctx: typer.Context,
        operation: BatchOperation,
        source: Callable[[], TargetSource],
        yes: bool,
    ) -> None:
        async def action(client: CredentialClient) -> int:
            executor = BatchExecutor(
                client, confirmation_manager=ConfirmationManager(confirm_on_terminal)
            )

            result = await executor.run(
                operation,
                source(),
                skip_confirmation=yes,
                progress_callback=_progress_printer(operation.kind.value),
            )

            if result.cancelled:
                typer.echo("Operation cancelled", err=True)
                return 0

            if result.rotated:
                _echo_issued(
                    [
                        {"name": r.name, "hash": r.new_hash, "key": r.secret, "limit": r.limit}
                        for r in result.rotated
                    ]
                )
                typer.echo("Old keys are no longer valid.", err=True)

            typer.echo(
                f"{len(result.succeeded)} key(s) succeeded, {len(result.failed)} failed",
                err=True,
            )
            return exit_code_for(result)

        run(ctx, action)

    @app.command()
    def create(
        ctx: typer.Context,
        limit: float = typer.Option(..., "--limit", "-l", help="Spending limit in US dollars"),
        name: Optional[str] = typer.Option(None, "--name", "-n", help="Explicit key name"),
        email: Optional[str] = typer.Option(None, "--email", "-e", help="Email used to build the name"),
        tags: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Tag added to the name"),
        issued: Optional[str] = typer.Option(None, "--date", "-d", help="Issue date YYYY-MM-DD (default today)"),
    ) -> None:
        """Create a single API key."""

        async def action(client: CredentialClient) -> int:
            validate_limit(limit)
            key_name = name
            if not key_name:
                if not email:
                    typer.echo("Error: either --name or --email is required", err=True)
                    return EXIT_FAILED
                key_name = generate_key_name(
                    validate_email(email),
                    validate_tags(tags or []),
                    validate_date(issued) if issued else today(),
                )

            created = await client.create(key_name, limit)
            typer.echo(
                json.dumps({"name": key_name, "hash": created.hash, "key": created.secret, "limit": limit}, indent=2)
            )
            return 0

        run(ctx, action)

    @app.command()
    def get(ctx: typer.Context, key_hash: str = typer.Argument(..., metavar="HASH")) -> None:
        """Show one key by hash."""

        async def action(client: CredentialClient) -> int:
            record = await client.get(key_hash)
            typer.echo(json.dumps(_record_row(record), indent=2))
            return 0

        run(ctx, action)

    @app.command("list")
    def list_keys(
        ctx: typer.Context,
        pattern: Optional[str] = typer.Option(None, "--pattern", "-p", help="Filter by glob pattern"),
        include_disabled: bool = typer.Option(False, "--include-disabled", help="Include disabled keys"),
        output_format: str = typer.Option("table", "--format", "-f", help="Output format: table or json"),
    ) -> None:
        """List API keys with usage information."""

        async def action(client: CredentialClient) -> int:
            records = await client.list(include_disabled=include_disabled)
            if pattern:
                records = filter_records(records, pattern)

            if output_format == "json":
                typer.echo(json.dumps([_record_row(r) for r in records], indent=2))
            else:
                typer.echo(_render_table(records))
            return 0

        if output_format not in ("table", "json"):
            typer.echo("Error: Format must be one of: table, json", err=True)
            raise typer.Exit(EXIT_FAILED)
        run(ctx, action)

    def selection_command(kind: OperationKind, help_text: str) -> None:
        @app.command(kind.value.replace("_", "-"), help=help_text)
        def command(
            ctx: typer.Context,
            pattern: Optional[str] = typer.Option(None, "--pattern", "-p", help="Filter by glob pattern"),
            key_hash: Optional[str] = typer.Option(None, "--hash", help="Exact key hash"),
            yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
        ) -> None:
            criterion = SelectionCriterion(hash=key_hash, pattern=pattern)
            run_batch(ctx, BatchOperation(kind=kind), lambda: criterion, yes)

    def bulk_command(kind: OperationKind, help_text: str) -> None:
        @app.command(f"bulk-{kind.value.replace('_', '-')}", help=help_text)
        def command(
            ctx: typer.Context,
            key_file: Path = typer.Argument(..., help="CSV/TSV/JSON file with name and hash columns"),
            delimiter: Optional[str] = typer.Option(None, "--delimiter", help="Field delimiter"),
            header: bool = typer.Option(True, "--header/--no-header", help="First row names the columns"),
            yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
        ) -> None:
            run_batch(
                ctx,
                BatchOperation(kind=kind),
                lambda: read_key_file(key_file, delimiter=delimiter, has_header=header),
                yes,
            )

    selection_command(OperationKind.ENABLE, "Enable API key(s).")
    selection_command(OperationKind.DISABLE, "Disable API key(s).")
    selection_command(OperationKind.DELETE, "Delete API key(s).")
    selection_command(OperationKind.ROTATE, "Rotate API key(s): delete old, create new with same name and limit.")
    bulk_command(OperationKind.ENABLE, "Enable the keys listed in a file.")
    bulk_command(OperationKind.DISABLE, "Disable the keys listed in a file.")
    bulk_command(OperationKind.DELETE, "Delete the keys listed in a file.")
    bulk_command(OperationKind.ROTATE, "Rotate the keys listed in a file.")

    @app.command("set-limit")
    def set_limit(
        ctx: typer.Context,
        limit: float = typer.Option(..., "--limit", "-l", help="New spending limit in US dollars"),
        pattern: Optional[str] = typer.Option(None, "--pattern", "-p", help="Filter by glob pattern"),
        key_hash: Optional[str] = typer.Option(None, "--hash", help="Exact key hash"),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    ) -> None:
        """Set the spending limit of API key(s)."""
        try:
            validate_limit(limit)
        except KeyManagerError as e:
            typer.echo(f"Error: {e.message}", err=True)
            raise typer.Exit(EXIT_FAILED)
        criterion = SelectionCriterion(hash=key_hash, pattern=pattern)
        run_batch(ctx, BatchOperation(kind=OperationKind.SET_LIMIT, limit=limit), lambda: criterion, yes)

    @app.command("bulk-set-limit")
    def bulk_set_limit(
        ctx: typer.Context,
        key_file: Path = typer.Argument(..., help="CSV/TSV/JSON file with name and hash columns"),
        limit: float = typer.Option(..., "--limit", "-l", help="New spending limit in US dollars"),
        delimiter: Optional[str] = typer.Option(None, "--delimiter", help="Field delimiter"),
        header: bool = typer.Option(True, "--header/--no-header", help="First row names the columns"),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    ) -> None:
        """Set the spending limit of the keys listed in a file."""
        try:
            validate_limit(limit)
        except KeyManagerError as e:
            typer.echo(f"Error: {e.message}", err=True)
            raise typer.Exit(EXIT_FAILED)
        run_batch(
            ctx,
            BatchOperation(kind=OperationKind.SET_LIMIT, limit=limit),
            lambda: read_key_file(key_file, delimiter=delimiter, has_header=header),
            yes,
        )

    @app.command("bulk-create")
    def bulk_create(
        ctx: typer.Context,
        account_file: Path = typer.Argument(..., help="CSV/TSV file: email, then optional tag columns"),
        limit: float = typer.Option(..., "--limit", "-l", help="Spending limit in US dollars"),
        issued: Optional[str] = typer.Option(None, "--date", "-d", help="Issue date YYYY-MM-DD (default today)"),
        delimiter: Optional[str] = typer.Option(None, "--delimiter", help="Field delimiter"),
        header: bool = typer.Option(True, "--header/--no-header", help="First row names the columns"),
    ) -> None:
        """Create one key per account listed in a file."""

        async def action(client: CredentialClient) -> int:
            validate_limit(limit)
            issue_date = validate_date(issued) if issued else today()
            accounts = read_account_file(account_file, delimiter=delimiter, has_header=header)
            typer.echo(f"Found {len(accounts)} account(s)", err=True)

            result = await BatchExecutor(client).create_batch(
                accounts, limit, issue_date, progress_callback=_progress_printer("create")
            )

            if result.created:
                _echo_issued(
                    [
                        {"name": k.name, "hash": k.hash, "key": k.secret, "limit": k.limit}
                        for k in result.created
                    ]
                )
            typer.echo(
                f"{len(result.succeeded)} key(s) created, {len(result.failed)} failed",
                err=True,
            )
            return exit_code_for(result)

        run(ctx, action)

    return app


def main() -> None:
    """Main entry point for the key manager CLI."""
    try:
        config = ManagerConfig()
        configure_logging(config.log_level, config.development_mode)
    except ValueError:
        configure_logging()
    app = create_app()
    app()


if __name__ == "__main__":
    main()
