"""Command-line interface for ``statement_ingest``.

The root callback loads ``.env`` from the working directory (never overriding
variables that are already set) and configures logging once; subcommands then
read ``DATABASE_URL`` unless ``--database-url`` is given.

Every command prints tab-separated records to stdout. Errors go to stderr with
exit code 1.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .errors import ImportRejected, StatementError
from .logging_setup import configure_logging
from .models import MatcherKind

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Import pt-BR bank statements, deduplicate them and classify transactions by rule.",
)
accounts_app = typer.Typer(no_args_is_help=True, help="Manage accounts.")
rules_app = typer.Typer(no_args_is_help=True, help="Manage classification rules.")
app.add_typer(accounts_app, name="accounts")
app.add_typer(rules_app, name="rules")


@dataclass(slots=True)
class _CliState:
    database_url: str | None = None


def _state(ctx: typer.Context) -> _CliState:
    obj = ctx.find_root().obj
    return obj if isinstance(obj, _CliState) else _CliState()


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(1)


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turn expected failures into a stderr message and exit code 1."""

    try:
        yield
    except ImportRejected as exc:
        typer.echo(f"Error: statement rejected ({len(exc.errors)} line error(s))", err=True)
        for err in exc.errors:
            typer.echo(f"  {err}", err=True)
        raise typer.Exit(1) from exc
    except (StatementError, ValidationError, SQLAlchemyError, ValueError, RuntimeError) as exc:
        raise _fail(str(exc)) from exc


# ---- import ------------------------------------------------------------------


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Option("--file", help="Statement file (CSV) to import.")],
    account: Annotated[int, typer.Option("--account", help="Account id the statement belongs to.")],
    month: Annotated[int, typer.Option("--month", min=1, max=12, help="Reporting month.")],
    year: Annotated[int, typer.Option("--year", help="Reporting year.")],
    no_classify: Annotated[
        bool, typer.Option("--no-classify", help="Store rows without classifying them.")
    ] = False,
    uploaded_by: Annotated[
        str | None, typer.Option("--uploaded-by", help="Who uploaded the file.")
    ] = None,
) -> None:
    """Import a statement; re-running with the same file returns the same batch."""

    from .api import build_pipeline
    from .models import ReportingPeriod

    try:
        data = file.read_bytes()
    except FileNotFoundError:
        raise _fail(f"File not found: {file}") from None
    except PermissionError:
        raise _fail(f"Permission denied: {file}") from None

    with _reported_errors():
        period = ReportingPeriod(month=month, year=year)
        pipeline = build_pipeline(database_url=_state(ctx).database_url)
        report = pipeline.import_statement(
            data, account, period, uploaded_by=uploaded_by, classify=not no_classify
        )

    b = report.batch
    typer.echo(
        f"batch={b.id}\tstatus={b.status.value}\tperiod={b.period}\trows={b.row_count}"
        f"\tinserted={report.inserted}\tskipped={report.skipped_duplicates}"
        f"\tclassified={report.classified}\treused={str(report.reused).lower()}"
    )


# ---- accounts ----------------------------------------------------------------


@accounts_app.command("add")
def accounts_add_cmd(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Display name.")],
    bank: Annotated[str | None, typer.Option("--bank", help="Bank name.")] = None,
    number: Annotated[str | None, typer.Option("--number", help="Account number.")] = None,
) -> None:
    from .persistence import SqlAlchemyLedgerStore

    with _reported_errors():
        store = SqlAlchemyLedgerStore(database_url=_state(ctx).database_url)
        acc = store.create_account(name, bank_name=bank, account_number=number)
    typer.echo(f"{acc.id}\t{acc.name}\t{acc.bank_name or ''}")


@accounts_app.command("list")
def accounts_list_cmd(ctx: typer.Context) -> None:
    from .persistence import SqlAlchemyLedgerStore

    with _reported_errors():
        accounts = SqlAlchemyLedgerStore(database_url=_state(ctx).database_url).list_accounts()
    for acc in accounts:
        typer.echo(f"{acc.id}\t{acc.name}\t{acc.bank_name or ''}\t{acc.status.value}")


# ---- rules -------------------------------------------------------------------


def _print_rule(rule) -> None:
    typer.echo(
        f"{rule.id}\t{rule.name}\t{rule.kind.value}\t{rule.pattern}\t{rule.category}"
        f"\tpriority={rule.priority}\tenabled={str(rule.enabled).lower()}\tv{rule.version}"
    )


@rules_app.command("add")
def rules_add_cmd(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Unique rule name.")],
    pattern: Annotated[str, typer.Option("--pattern", help="Substring or regular expression.")],
    category: Annotated[str, typer.Option("--category", help="Category assigned on match.")],
    kind: Annotated[MatcherKind, typer.Option("--kind")] = MatcherKind.CONTAINS,
    priority: Annotated[int, typer.Option("--priority", help="Higher wins.")] = 0,
    disabled: Annotated[bool, typer.Option("--disabled", help="Create disabled.")] = False,
    description: Annotated[str | None, typer.Option("--description")] = None,
    created_by: Annotated[str | None, typer.Option("--created-by")] = None,
) -> None:
    from db.client import session_scope

    from .models import RuleInput
    from .rules import create_rule

    with _reported_errors():
        data = RuleInput(
            name=name,
            pattern=pattern,
            kind=kind,
            category=category,
            priority=priority,
            enabled=not disabled,
            description=description,
            created_by=created_by,
        )
        with session_scope(database_url=_state(ctx).database_url) as session:
            rule = create_rule(session, data)
    _print_rule(rule)


@rules_app.command("list")
def rules_list_cmd(
    ctx: typer.Context,
    enabled_only: Annotated[
        bool, typer.Option("--enabled-only", help="Only list enabled rules.")
    ] = False,
) -> None:
    from db.client import session_scope

    from .rules import list_rules

    with _reported_errors():
        with session_scope(database_url=_state(ctx).database_url) as session:
            rules = list_rules(session, enabled=True if enabled_only else None)
    for rule in rules:
        _print_rule(rule)


@rules_app.command("update")
def rules_update_cmd(
    ctx: typer.Context,
    rule_id: Annotated[int, typer.Argument(help="Rule id.")],
    pattern: Annotated[str | None, typer.Option("--pattern")] = None,
    kind: Annotated[MatcherKind | None, typer.Option("--kind")] = None,
    category: Annotated[str | None, typer.Option("--category")] = None,
    priority: Annotated[int | None, typer.Option("--priority")] = None,
    description: Annotated[str | None, typer.Option("--description")] = None,
) -> None:
    """Change a rule; its version is incremented."""

    from db.client import session_scope

    from .models import RuleUpdate
    from .rules import update_rule

    with _reported_errors():
        changes = RuleUpdate(
            pattern=pattern,
            kind=kind,
            category=category,
            priority=priority,
            description=description,
        )
        with session_scope(database_url=_state(ctx).database_url) as session:
            rule = update_rule(session, rule_id, changes)
    _print_rule(rule)


def _set_enabled(ctx: typer.Context, rule_id: int, enabled: bool) -> None:
    from db.client import session_scope

    from .rules import set_rule_enabled

    with _reported_errors():
        with session_scope(database_url=_state(ctx).database_url) as session:
            rule = set_rule_enabled(session, rule_id, enabled)
    _print_rule(rule)


@rules_app.command("enable")
def rules_enable_cmd(ctx: typer.Context, rule_id: Annotated[int, typer.Argument()]) -> None:
    _set_enabled(ctx, rule_id, True)


@rules_app.command("disable")
def rules_disable_cmd(ctx: typer.Context, rule_id: Annotated[int, typer.Argument()]) -> None:
    _set_enabled(ctx, rule_id, False)


@rules_app.command("test")
def rules_test_cmd(
    pattern: Annotated[str, typer.Argument(help="Pattern to try.")],
    descriptor: Annotated[str, typer.Argument(help="Transaction descriptor.")],
    kind: Annotated[MatcherKind, typer.Option("--kind")] = MatcherKind.CONTAINS,
) -> None:
    """Try a pattern against a descriptor without storing anything."""

    from .rules import try_rule

    with _reported_errors():
        result = try_rule(pattern, kind, descriptor)
    typer.echo(f"{str(result.matched).lower()}\t{result.reason}")


# ---- classification ----------------------------------------------------------


@app.command("classify")
def classify_cmd(
    ctx: typer.Context,
    descriptor: Annotated[str, typer.Argument(help="Transaction descriptor to classify.")],
    explain: Annotated[
        bool, typer.Option("--explain", help="List every matching rule in priority order.")
    ] = False,
) -> None:
    """Classify a descriptor against the enabled rules (nothing is stored)."""

    from .classification import ClassificationService
    from .persistence import SqlAlchemyLedgerStore

    with _reported_errors():
        store = SqlAlchemyLedgerStore(database_url=_state(ctx).database_url)
        service = ClassificationService(store)
        results = service.explain(descriptor) if explain else []
        if not results:
            results = [service.classify(descriptor)]
    for res in results:
        typer.echo(
            f"{res.source.value}\t{res.category or ''}\t{res.rule_name or ''}\t{res.rationale}"
        )


@app.command("reclassify")
def reclassify_cmd(
    ctx: typer.Context,
    batch: Annotated[int, typer.Option("--batch", help="Import batch id.")],
) -> None:
    """Re-run classification on a batch (manual overrides are kept)."""

    from .api import build_pipeline

    with _reported_errors():
        summary = build_pipeline(database_url=_state(ctx).database_url).reclassify_batch(batch)
    counts = "\t".join(f"{src.value}={n}" for src, n in sorted(summary.by_source.items()))
    typer.echo(f"batch={summary.batch.id}\ttotal={summary.total}\t{counts}")


@app.command("override")
def override_cmd(
    ctx: typer.Context,
    transaction: Annotated[int, typer.Option("--transaction", help="Transaction id.")],
    category: Annotated[str, typer.Option("--category", help="Category to assign.")],
    actor: Annotated[str, typer.Option("--actor", help="Who is making the change.")],
    reason: Annotated[str | None, typer.Option("--reason")] = None,
) -> None:
    from db.client import session_scope

    from .overrides import apply_override

    with _reported_errors():
        with session_scope(database_url=_state(ctx).database_url) as session:
            rec = apply_override(
                session, transaction, category=category, actor=actor, reason=reason
            )
    typer.echo(
        f"{rec.transaction_id}\t{rec.previous_category or ''}\t->\t{rec.new_category}\t{rec.actor}"
    )


@app.command("unclassified")
def unclassified_cmd(
    ctx: typer.Context,
    account: Annotated[int | None, typer.Option("--account", help="Filter by account id.")] = None,
    limit: Annotated[int, typer.Option("--limit", min=1)] = 1000,
) -> None:
    """List transactions no rule matched."""

    from .persistence import SqlAlchemyLedgerStore

    with _reported_errors():
        store = SqlAlchemyLedgerStore(database_url=_state(ctx).database_url)
        rows = store.list_unclassified(account, limit=limit)
    for t in rows:
        typer.echo(f"{t.id}\t{t.date.isoformat()}\t{t.descriptor}\t{t.amount}")


@app.command("periods")
def periods_cmd(
    ctx: typer.Context,
    account: Annotated[int | None, typer.Option("--account", help="Filter by account id.")] = None,
) -> None:
    """List uploaded reporting periods, most recent first."""

    from .persistence import SqlAlchemyLedgerStore

    with _reported_errors():
        periods = SqlAlchemyLedgerStore(database_url=_state(ctx).database_url).uploaded_periods(
            account
        )
    for p in periods:
        typer.echo(str(p))


@app.callback()
def _root(
    ctx: typer.Context,
    database_url: Annotated[
        str | None,
        typer.Option("--database-url", help="Override DATABASE_URL (falls back to env var)."),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override STATEMENT_INGEST_LOG_LEVEL."),
    ] = None,
) -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)
    ctx.obj = _CliState(database_url=database_url)


if __name__ == "__main__":  # pragma: no cover - exercised via the console script
    app()
