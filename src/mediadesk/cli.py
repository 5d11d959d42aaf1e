"""CLI interface for mediadesk."""

import logging
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from mediadesk.accounts import AccountManager
from mediadesk.config import load_config, merge_cli_overrides
from mediadesk.content.completeness import evaluate
from mediadesk.content.models import EntityKind, EntityStatus, OperatorRole
from mediadesk.coordinator import OperationResult, Outcome, ProgressEvent
from mediadesk.errors import MediadeskError
from mediadesk.factory import Services, build_services
from mediadesk.session import SessionContext

app = typer.Typer(
    name="mediadesk",
    help="Manage studio content, media assets and operator accounts.",
)
users_app = typer.Typer(help="Manage operator accounts.")
app.add_typer(users_app, name="users")

console = Console()
logger = logging.getLogger(__name__)

_OUTCOME_STYLE = {
    Outcome.OK: "green",
    Outcome.INCOMPLETE: "yellow",
    Outcome.CANCELLED: "yellow",
    Outcome.PARTIAL_FAILURE: "red",
    Outcome.FATAL_INCONSISTENCY: "bold red",
}


class _State:
    """Options shared by every command."""

    def __init__(self) -> None:
        self.config_path: Path | None = None
        self.token: str | None = None
        self.overrides: dict[str, object] = {}
        self._services: Services | None = None

    @property
    def services(self) -> Services:
        if self._services is None:
            config = merge_cli_overrides(load_config(self.config_path), **self.overrides)
            _apply_log_level(config.logging.level)
            self._services = build_services(config)
        return self._services

    def session(self) -> SessionContext:
        return self.services.session_for(self.token)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from mediadesk import __version__

        console.print(f"mediadesk {__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose)],
        force=True,
    )
    if not verbose:
        for noisy in ("botocore", "boto3", "urllib3", "s3transfer"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def _apply_log_level(level: str) -> None:
    """Set the root level from the loaded config (``--verbose`` arrives as DEBUG)."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        logger.warning("Unknown log level %r, keeping current level", level)
        return
    logging.getLogger().setLevel(numeric)


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a .mediadesk.toml file."),
    ] = None,
    token: Annotated[
        Optional[str],
        typer.Option(
            "--token",
            envvar="MEDIADESK_SESSION_TOKEN",
            help="Session token of the acting operator.",
        ),
    ] = None,
    storage: Annotated[
        Optional[str],
        typer.Option("--storage", help="Asset storage backend: local or spaces."),
    ] = None,
    records: Annotated[
        Optional[str],
        typer.Option("--records", help="Record store backend: json or postgrest."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """mediadesk - staged content operations for the studio site."""
    _setup_logging(verbose)
    state = _State()
    state.config_path = config
    state.token = token
    state.overrides = {
        "storage_backend": storage,
        "records_backend": records,
        "log_level": "DEBUG" if verbose else None,
    }
    ctx.obj = state
    ctx.call_on_close(lambda: state._services.close() if state._services else None)


def _state(ctx: typer.Context) -> _State:
    return ctx.obj if isinstance(ctx.obj, _State) else _State()


def _fail(exc: Exception) -> NoReturn:
    console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(1)


def _run_with_progress(description: str, run) -> OperationResult:
    """Run *run(on_progress)* under a live progress bar."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=100)

        def on_progress(event: ProgressEvent) -> None:
            suffix = " (after retry)" if event.retried else ""
            progress.update(
                task,
                completed=event.percent_complete,
                description=f"{event.step_name}: {event.status.value}{suffix}",
            )

        return run(on_progress)


def _report(result: OperationResult) -> None:
    style = _OUTCOME_STYLE.get(result.outcome, "white")
    console.print(f"[{style}]{result.operation}: {result.outcome.value}[/{style}]")
    for line in result.summary():
        console.print(f"  - {line}")
    if result.missing:
        console.print(f"  Missing: {', '.join(result.missing)}")
    if result.detail and not result.ok:
        console.print(f"  {result.detail}")
    if result.retryable:
        console.print("  [yellow]Safe to retry.[/yellow]")
    if result.outcome is Outcome.FATAL_INCONSISTENCY:
        raise typer.Exit(2)
    if not result.ok:
        raise typer.Exit(1)


# ── Content commands ─────────────────────────────────────────────


@app.command(name="evaluate")
def evaluate_cmd(
    ctx: typer.Context,
    entity_id: Annotated[str, typer.Argument(help="Entity id.")],
) -> None:
    """Show whether an entity is ready to publish."""
    state = _state(ctx)
    try:
        entity = state.services.lifecycle.get_entity(state.session(), entity_id)
    except MediadeskError as exc:
        _fail(exc)
    report = evaluate(entity)
    if report.complete:
        console.print(f"[green]{entity.kind.value} {entity_id} is ready to publish[/green]")
        return
    console.print(f"[yellow]{entity.kind.value} {entity_id} is incomplete[/yellow]")
    for field in report.missing:
        console.print(f"  - {field}")
    raise typer.Exit(1)


@app.command(name="list")
def list_cmd(
    ctx: typer.Context,
    kind: Annotated[EntityKind, typer.Argument(help="Entity kind.")],
    status: Annotated[
        Optional[EntityStatus],
        typer.Option("--status", "-s", help="Only entities with this status."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows.")] = 20,
    offset: Annotated[int, typer.Option("--offset", help="Rows to skip.")] = 0,
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON.")] = False,
) -> None:
    """List entities of one kind, newest first."""
    state = _state(ctx)
    try:
        entities = state.services.lifecycle.list_entities(
            state.session(), kind, status=status, offset=offset, limit=limit
        )
    except MediadeskError as exc:
        _fail(exc)

    if as_json:
        console.print_json(data=[e.model_dump(mode="json") for e in entities])
        return
    if not entities:
        console.print(f"[yellow]No {kind.value} entities found.[/yellow]")
        return

    table = Table(title=kind.table)
    table.add_column("id")
    table.add_column(kind.identifying_field)
    table.add_column("status")
    table.add_column("assets", justify="right")
    table.add_column("created")
    for entity in entities:
        table.add_row(
            entity.id,
            entity.identifying_value,
            entity.status.value,
            str(len(entity.assets)),
            entity.created_at.strftime("%Y-%m-%d"),
        )
    console.print(table)


@app.command(name="publish")
def publish_cmd(
    ctx: typer.Context,
    entity_id: Annotated[str, typer.Argument(help="Entity id.")],
) -> None:
    """Publish a draft once it passes the completeness check."""
    state = _state(ctx)
    try:
        result = state.services.lifecycle.publish(state.session(), entity_id)
    except MediadeskError as exc:
        _fail(exc)
    _report(result)


@app.command(name="unpublish")
def unpublish_cmd(
    ctx: typer.Context,
    entity_id: Annotated[str, typer.Argument(help="Entity id.")],
) -> None:
    """Return a published entity to draft."""
    state = _state(ctx)
    try:
        result = state.services.lifecycle.unpublish(state.session(), entity_id)
    except MediadeskError as exc:
        _fail(exc)
    _report(result)


@app.command(name="delete")
def delete_cmd(
    ctx: typer.Context,
    entity_id: Annotated[str, typer.Argument(help="Entity id.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Delete an entity together with every asset it owns."""
    state = _state(ctx)
    if not yes:
        typer.confirm(f"Delete {entity_id} and all of its assets?", abort=True)
    try:
        session = state.session()
        lifecycle = state.services.lifecycle
        result = _run_with_progress(
            f"Deleting {entity_id}",
            lambda on_progress: lifecycle.delete_entity(session, entity_id, on_progress),
        )
    except MediadeskError as exc:
        _fail(exc)
    _report(result)


# ── Account commands ─────────────────────────────────────────────


def _accounts(state: _State) -> AccountManager:
    accounts = state.services.accounts
    if accounts is None:
        _fail(MediadeskError("No identity provider configured (set SUPABASE_URL)"))
    return accounts


@users_app.command(name="list")
def users_list_cmd(ctx: typer.Context) -> None:
    """List operator profiles."""
    state = _state(ctx)
    try:
        profiles = _accounts(state).list_profiles(state.session())
    except MediadeskError as exc:
        _fail(exc)

    if not profiles:
        console.print("[yellow]No operator profiles.[/yellow]")
        return
    table = Table(title="operators")
    table.add_column("id")
    table.add_column("email")
    table.add_column("role")
    table.add_column("status")
    for profile in profiles:
        table.add_row(profile.id, profile.email, profile.role.value, profile.status.value)
    console.print(table)


@users_app.command(name="invite")
def users_invite_cmd(
    ctx: typer.Context,
    email: Annotated[str, typer.Argument(help="Email address to invite.")],
    role: Annotated[
        OperatorRole,
        typer.Option("--role", "-r", help="Role for the new operator."),
    ] = OperatorRole.EDITOR,
) -> None:
    """Invite a new operator."""
    state = _state(ctx)
    try:
        accounts = _accounts(state)
        session = state.session()
        result = _run_with_progress(
            f"Inviting {email}",
            lambda on_progress: accounts.invite_account(session, email, role, on_progress),
        )
    except (MediadeskError, ValueError) as exc:
        _fail(exc)
    _report(result)


@users_app.command(name="deprovision")
def users_deprovision_cmd(
    ctx: typer.Context,
    account_id: Annotated[str, typer.Argument(help="Account id to remove.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Remove an operator's profile and identity account."""
    state = _state(ctx)
    if not yes:
        typer.confirm(f"Deprovision account {account_id}?", abort=True)
    try:
        accounts = _accounts(state)
        session = state.session()
        result = _run_with_progress(
            f"Deprovisioning {account_id}",
            lambda on_progress: accounts.deprovision_account(session, account_id, on_progress),
        )
    except MediadeskError as exc:
        _fail(exc)
    _report(result)


@users_app.command(name="check")
def users_check_cmd(
    ctx: typer.Context,
    email: Annotated[str, typer.Argument(help="Email address to look up.")],
) -> None:
    """Show whether an email exists in the identity store, profiles, or both."""
    state = _state(ctx)
    try:
        check = _accounts(state).check_user(state.session(), email)
    except MediadeskError as exc:
        _fail(exc)
    console.print_json(data=check.model_dump(mode="json"))
    if not check.consistent:
        console.print(f"[yellow]{email} exists only in {check.presence.value}[/yellow]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
