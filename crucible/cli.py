"""Crucible CLI — Typer + Rich terminal interface.

Commands: run, status, findings, check, config, history, projects, dashboard.
All output is Rich-powered with color-coded panels and tables.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import uuid
from datetime import UTC, datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from crucible import __version__
from crucible.cli_display import (
    LoopProgressPrinter,
    findings_table,
    rejections_table,
    render_outcome,
    rounds_table,
    runs_table,
    state_panel,
)
from crucible.config_loader import default_config_path, load_config
from crucible.errors import LoopBusy, WorkspaceError
from crucible.schemas.config import CrucibleConfig
from crucible.schemas.loop import LoopState, LoopStatus
from crucible.workspace import Workspace, normalize_project_id

console = Console()

# Process exit codes for `crucible run`
EXIT_CONVERGED = 0
EXIT_NOT_CONVERGED = 1
EXIT_CIRCUIT_BREAKER = 2
EXIT_ABORTED = 3

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="crucible",
    help="Adversarial review loop: a reviewer agent critiques, a coding agent fixes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    name="config",
    help="Show loop and channel configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")

history_app = typer.Typer(
    name="history",
    help="Query the run history.",
    no_args_is_help=True,
)
app.add_typer(history_app, name="history")

projects_app = typer.Typer(
    name="projects",
    help="Manage the project registry.",
    no_args_is_help=True,
)
app.add_typer(projects_app, name="projects")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"crucible {__version__}")
        raise typer.Exit()


# ── App Callback ────────────────────────────────────────────────


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log debug output (wire traffic, retries, persistence).",
    ),
) -> None:
    """Crucible — run critique→fix rounds until the reviewer finds nothing blocking."""
    if verbose:
        from rich.logging import RichHandler

        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
            force=True,
        )


# ── Helpers ──────────────────────────────────────────────────────


def _load_config(config_path: Path | None = None) -> CrucibleConfig:
    """Load configuration, exit on error."""
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _workspace() -> Workspace:
    return Workspace.discover()


def _resolve_project(workspace: Workspace, project: str | None) -> str:
    """Return a validated project id, falling back to the active project."""
    from crucible.registry import ProjectRegistry

    if project is None:
        project = ProjectRegistry(workspace.registry_path).active_project()
        if project is None:
            console.print(
                "[red]No project given and no active project.[/red]\n"
                "Pass a project id or run [bold]crucible projects add <id>[/bold]."
            )
            raise typer.Exit(1) from None
    try:
        return normalize_project_id(project)
    except WorkspaceError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None


def _load_state(workspace: Workspace, project_id: str) -> LoopState | None:
    from crucible.loop.ledger import LoopLedger

    try:
        return LoopLedger(workspace, project_id).load_state()
    except ValueError as e:
        console.print(f"[red]Error reading loop state:[/red] {e}")
        raise typer.Exit(1) from None


def exit_code_for(state: LoopState) -> int:
    """Map a final loop state to the `crucible run` exit code."""
    if state.status == LoopStatus.CONVERGED:
        return EXIT_CONVERGED
    if state.status == LoopStatus.CIRCUIT_BREAKER:
        return EXIT_CIRCUIT_BREAKER
    if state.status == LoopStatus.ABORTED:
        return EXIT_ABORTED
    return EXIT_NOT_CONVERGED


# ── crucible run ─────────────────────────────────────────────────


@app.command()
def run(
    project: str = typer.Argument(
        None, help="Project id (defaults to the active project)",
    ),
    max_rounds: int = typer.Option(
        None, "--max-rounds", "-r", min=1,
        help="Maximum critique→fix rounds (overrides config)",
    ),
    resume: bool = typer.Option(
        False, "--resume",
        help="Continue the persisted loop instead of starting fresh",
    ),
    diff_file: Path = typer.Option(
        None, "--diff-file",
        help="Review this diff file instead of the git working tree",
    ),
    base: str = typer.Option(
        None, "--base",
        help="Git ref to diff against (overrides config)",
    ),
    config_file: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file",
    ),
    rules: list[str] = typer.Option(
        None, "--rule",
        help="Rule id under rules/ to review against (repeatable; default: all)",
    ),
    stream: bool = typer.Option(
        False, "--stream",
        help="Print every channel event as it arrives",
    ),
    dashboard: bool = typer.Option(
        False, "--dashboard",
        help="Serve the live dashboard while the loop runs",
    ),
    port: int = typer.Option(8420, "--port", help="Dashboard port"),
) -> None:
    """Run the adversarial loop for a project.

    Exit code: 0 converged, 1 not converged, 2 circuit breaker, 3 aborted.
    """
    from crucible.changes import ChangeSource, DiffFileSource, GitChangeSource
    from crucible.channel.backend import SubprocessBackend
    from crucible.dashboard.events import LoopEventEmitter
    from crucible.loop.controller import AdversarialLoop
    from crucible.loop.ledger import LoopLedger
    from crucible.registry import ProjectRegistry
    from crucible.review.critique import CritiqueInvoker
    from crucible.review.remediation import RemediationInvoker

    config = _load_config(config_file)
    if max_rounds is not None:
        config.loop.max_rounds = max_rounds
    if base:
        config.base_ref = base

    workspace = _workspace()
    project_id = _resolve_project(workspace, project)

    source: ChangeSource
    if diff_file is not None:
        if not diff_file.is_file():
            console.print(f"[red]Diff file not found:[/red] {diff_file}")
            raise typer.Exit(1) from None
        source = DiffFileSource(diff_file)
    else:
        git = GitChangeSource(workspace.project_root, config.base_ref)
        if not git.is_git_repo():
            console.print(
                f"[red]Not a git repository:[/red] {workspace.project_root}\n"
                "Set CRUCIBLE_PROJECT_ROOT or pass [bold]--diff-file[/bold]."
            )
            raise typer.Exit(1) from None
        source = git

    if resume:
        # Fail before launching anything if the persisted state is unreadable
        _load_state(workspace, project_id)

    rule_set = workspace.load_rule_set(rules or None)

    emitter = LoopEventEmitter()
    emitter.add_listener(LoopProgressPrinter(console, show_channel=stream).create_listener())

    dash_server = None
    if dashboard:
        try:
            from crucible.dashboard.server import DashboardServer

            dash_server = DashboardServer(port=port, workspace=workspace, config=config)
            dash_server.start()
            emitter.add_listener(dash_server.create_listener())
            console.print(f"[dim]Dashboard ready: {dash_server.url}[/dim]")
        except ImportError:
            console.print(
                "[yellow]Dashboard requires extra deps.[/yellow] "
                "pip install crucible\\[dashboard]"
            )
            dash_server = None
        except RuntimeError as e:
            console.print(f"[yellow]{e}[/yellow]")
            dash_server = None

    backend = SubprocessBackend(config.critique, config.remediation, workspace.project_root)
    ledger = LoopLedger(workspace, project_id)
    loop = AdversarialLoop(
        CritiqueInvoker(backend, timeout=config.loop.critique_timeout, emitter=emitter),
        RemediationInvoker(backend, timeout=config.loop.remediation_timeout, emitter=emitter),
        ledger,
        source,
        rule_set=rule_set,
        config=config.loop,
        emitter=emitter,
    )

    console.print(Panel(
        f"[bold]Project:[/bold] {project_id}\n"
        f"[bold]Root:[/bold] {workspace.project_root}\n"
        f"[bold]Changes:[/bold] {diff_file or f'git diff {config.base_ref}'}\n"
        f"[bold]Rules:[/bold] {len(rule_set)}\n"
        f"[bold]Max rounds:[/bold] {config.loop.max_rounds}",
        title="[bold]Crucible[/bold]",
        border_style="#ff8c42",
    ))

    async def _drive() -> None:
        registry = ProjectRegistry(workspace.registry_path)
        if project_id not in registry.read().projects:
            await registry.add_project(project_id)
        try:
            await loop.run(resume=resume)
        finally:
            await backend.aclose()

    started_at = datetime.now(UTC)
    try:
        asyncio.run(_drive())
    except LoopBusy as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
    finally:
        if dash_server is not None:
            dash_server.stop()

    state = loop.state
    run_id = uuid.uuid4().hex
    if config.persist_history:
        _save_run(config, run_id, started_at, loop)

    render_outcome(
        console, state,
        duration=loop.duration_seconds, cost=loop.total_cost, run_id=run_id,
    )
    raise typer.Exit(exit_code_for(state))


def _save_run(config: CrucibleConfig, run_id: str, started_at: datetime, loop) -> None:
    """Record a finished run in the history database; failures only warn."""
    from crucible.persistence.database import close_db, init_db
    from crucible.persistence.runs import RunStore
    from crucible.schemas.runs import RunRecord

    record = RunRecord(
        run_id=run_id,
        project_id=loop.state.project_id,
        started_at=started_at,
        completed_at=datetime.now(UTC),
        state=loop.state,
        duration_seconds=loop.duration_seconds,
        total_cost=loop.total_cost,
    )

    async def _save() -> None:
        db = await init_db(config.history_db_path)
        try:
            await RunStore(db).save_run(record)
        finally:
            await close_db(db)

    try:
        asyncio.run(_save())
    except Exception as e:
        logging.getLogger(__name__).warning("Failed to save run history: %s", e)
        console.print(f"[yellow]Run history not saved:[/yellow] {e}")


# ── crucible status / findings ───────────────────────────────────


@app.command()
def status(
    project: str = typer.Argument(
        None, help="Project id (defaults to the active project)",
    ),
    as_json: bool = typer.Option(
        False, "--json",
        help="Print the raw findings and state documents",
    ),
) -> None:
    """Show the persisted loop state of a project."""
    workspace = _workspace()
    project_id = _resolve_project(workspace, project)

    if as_json:
        from crucible.loop.ledger import read_review

        console.print_json(json.dumps(read_review(workspace, project_id)))
        return

    state = _load_state(workspace, project_id)
    if state is None:
        console.print(f"[dim]No loop state for {project_id}.[/dim]")
        return

    console.print(state_panel(state))
    if state.rounds:
        console.print(rounds_table(state))
    if any(r.rejection_reasons for r in state.rounds):
        console.print(rejections_table(state))


@app.command()
def findings(
    project: str = typer.Argument(
        None, help="Project id (defaults to the active project)",
    ),
    show_all: bool = typer.Option(
        False, "--all", "-a",
        help="Show every finding from every round, not just the latest pass",
    ),
    blocking_only: bool = typer.Option(
        False, "--blocking",
        help="Only HIGH and MEDIUM findings",
    ),
) -> None:
    """List the findings of the latest critique pass."""
    workspace = _workspace()
    project_id = _resolve_project(workspace, project)

    state = _load_state(workspace, project_id)
    if state is None:
        console.print(f"[dim]No loop state for {project_id}.[/dim]")
        return

    items = state.cumulative_findings if show_all else state.open_findings
    if blocking_only:
        items = [f for f in items if f.is_blocking]
    if not items:
        console.print("[green]No findings.[/green]")
        return

    title = "All findings" if show_all else f"Findings (round {state.round})"
    console.print(findings_table(items, title=title))


# ── crucible check ───────────────────────────────────────────────


@app.command()
def check(
    config_file: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file",
    ),
) -> None:
    """Check that the agent CLIs, git and configuration are usable."""
    from crucible.changes import GitChangeSource

    config = _load_config(config_file)
    workspace = _workspace()

    table = Table(title="Environment Check", show_header=False)
    table.add_column("Check", style="bold")
    table.add_column("Detail")
    table.add_column("Status")

    ok = True
    for label, channel in (("Critique CLI", config.critique), ("Remediation CLI", config.remediation)):
        executable = channel.command[0]
        found = shutil.which(executable)
        ok = ok and found is not None
        status_text = "[green]found[/green]" if found else "[red]missing[/red]"
        table.add_row(label, found or executable, status_text)

    git_found = shutil.which("git")
    table.add_row("git", git_found or "git", "[green]found[/green]" if git_found else "[red]missing[/red]")
    ok = ok and git_found is not None

    is_repo = bool(git_found) and GitChangeSource(workspace.project_root).is_git_repo()
    table.add_row(
        "Project root", str(workspace.project_root),
        "[green]git repo[/green]" if is_repo else "[yellow]not a git repo[/yellow]",
    )

    rule_set = workspace.load_rule_set()
    table.add_row("Rules", str(workspace.rules_dir), f"{len(rule_set)} loaded")
    table.add_row("Home", str(workspace.home), "[green]ok[/green]")

    console.print(table)
    if not ok:
        raise typer.Exit(1)


# ── crucible config ──────────────────────────────────────────────


@config_app.command("show")
def config_show(
    config_file: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file",
    ),
) -> None:
    """Show the effective configuration."""
    config = _load_config(config_file)

    table = Table(title="Loop Configuration", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    table.add_row("Max Rounds", str(config.loop.max_rounds))
    table.add_row("Critique Timeout", f"{config.loop.critique_timeout:g}s")
    table.add_row("Remediation Timeout", f"{config.loop.remediation_timeout:g}s")
    table.add_row("Critique Retries", str(config.loop.critique_retries))
    table.add_row("Remediation Retries", str(config.loop.remediation_retries))
    table.add_row("Resume Fix Session", str(config.loop.resume_remediation_session))
    table.add_row("Base Ref", config.base_ref)
    table.add_row("Persist History", str(config.persist_history))
    table.add_row("History DB Path", config.history_db_path)
    console.print(table)

    channel_table = Table(title="Channels")
    channel_table.add_column("Channel", style="cyan")
    channel_table.add_column("Command")
    channel_table.add_column("Input")
    channel_table.add_column("Resume Flag")
    channel_table.add_column("Start Timeout", justify="right")
    for name, channel in (("critique", config.critique), ("remediation", config.remediation)):
        channel_table.add_row(
            name,
            " ".join(channel.command),
            channel.input_format.value,
            channel.resume_flag or "-",
            f"{channel.start_timeout:g}s",
        )
    console.print()
    console.print(channel_table)


@config_app.command("path")
def config_path() -> None:
    """Show configuration and state file locations."""
    workspace = _workspace()
    files = [
        ("Defaults", default_config_path()),
        ("Home", workspace.home),
        ("Project Root", workspace.project_root),
        ("Tasks", workspace.tasks_dir),
        ("Rules", workspace.rules_dir),
        ("Registry", workspace.registry_path),
    ]

    table = Table(title="Configuration Paths", show_header=False)
    table.add_column("Config", style="bold")
    table.add_column("Path")
    table.add_column("Status")

    for name, path in files:
        exists = path.exists()
        status_text = "[green]found[/green]" if exists else "[red]missing[/red]"
        table.add_row(name, str(path), status_text)

    console.print(table)


# ── crucible history ─────────────────────────────────────────────


@history_app.command("list")
def history_list(
    limit: int = typer.Option(20, "--limit", "-n", help="Max runs to show"),
    project_filter: str = typer.Option(None, "--project", help="Filter by project id"),
    status_filter: str = typer.Option(
        None, "--status",
        help="Filter by status: converged, exhausted, circuit_breaker, aborted, in_progress",
    ),
    since: str = typer.Option(None, "--since", help="Filter runs after date"),
    config_file: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file",
    ),
) -> None:
    """Show recent loop runs."""
    from crucible.persistence.database import close_db, init_db
    from crucible.persistence.runs import RunStore
    from crucible.schemas.runs import RunQuery

    config = _load_config(config_file)

    query = RunQuery(
        limit=limit,
        project_filter=project_filter,
        status_filter=status_filter,
        since=since,
    )

    async def _list():
        db = await init_db(config.history_db_path)
        store = RunStore(db)
        summaries = await store.list_runs(query)
        await close_db(db)
        return summaries

    summaries = asyncio.run(_list())

    if not summaries:
        console.print("[dim]No runs found.[/dim]")
        return

    console.print(runs_table(summaries))


def _get_run(config: CrucibleConfig, run_id: str):
    from crucible.persistence.database import close_db, init_db
    from crucible.persistence.runs import RunStore

    async def _get():
        db = await init_db(config.history_db_path)
        store = RunStore(db)
        record = await store.get_run(run_id)
        await close_db(db)
        return record

    record = asyncio.run(_get())
    if not record:
        console.print(f"[red]Run not found:[/red] {run_id}")
        raise typer.Exit(1) from None
    return record


@history_app.command("show")
def history_show(
    run_id: str = typer.Argument(..., help="Run ID or prefix (min 4 chars)"),
    config_file: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file",
    ),
) -> None:
    """Show full run details."""
    config = _load_config(config_file)
    record = _get_run(config, run_id)

    meta = Table(title=f"Run: {record.run_id}", show_header=False, show_lines=True)
    meta.add_column("Field", style="bold")
    meta.add_column("Value")
    meta.add_row("Project", record.project_id or "-")
    meta.add_row("Started", record.started_at.isoformat())
    if record.completed_at:
        meta.add_row("Completed", record.completed_at.isoformat())
    meta.add_row("Duration", f"{record.duration_seconds:.1f}s")
    meta.add_row("Cost", f"${record.total_cost:.4f}")
    console.print(meta)

    state = record.state
    console.print(state_panel(state))
    if state.rounds:
        console.print(rounds_table(state))
    if any(r.rejection_reasons for r in state.rounds):
        console.print(rejections_table(state))
    if state.open_findings:
        console.print(findings_table(state.open_findings, title="Open findings"))


@history_app.command("export")
def history_export(
    run_id: str = typer.Argument(..., help="Run ID or prefix (min 4 chars)"),
    fmt: str = typer.Option(
        "markdown", "--format", "-f",
        help="Export format: json or markdown",
    ),
    output: Path = typer.Option(
        None, "--output", "-o",
        help="Write to this file instead of stdout",
    ),
    config_file: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file",
    ),
) -> None:
    """Export a run as JSON or Markdown."""
    from crucible.persistence.export import export_json, export_markdown

    if fmt not in ("json", "markdown"):
        console.print(f"[red]Invalid format:[/red] '{fmt}'. Choose json or markdown.")
        raise typer.Exit(1) from None

    config = _load_config(config_file)
    record = _get_run(config, run_id)
    text = export_json(record) if fmt == "json" else export_markdown(record)

    if output is not None:
        output.write_text(text, encoding="utf-8")
        console.print(f"[green]Exported to[/green] {output}")
    else:
        console.print(text, markup=False, highlight=False)


@history_app.command("delete")
def history_delete(
    run_id: str = typer.Argument(..., help="Run ID or prefix (min 4 chars)"),
    yes: bool = typer.Option(
        False, "--yes", "-y",
        help="Skip confirmation prompt",
    ),
    config_file: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file",
    ),
) -> None:
    """Delete a run from history."""
    if not yes:
        confirm = typer.confirm(
            f"Delete run {run_id}? This cannot be undone."
        )
        if not confirm:
            console.print("[dim]Cancelled.[/dim]")
            return

    from crucible.persistence.database import close_db, init_db
    from crucible.persistence.runs import RunStore

    config = _load_config(config_file)

    async def _delete():
        db = await init_db(config.history_db_path)
        store = RunStore(db)
        deleted = await store.delete_run(run_id)
        await close_db(db)
        return deleted

    deleted = asyncio.run(_delete())

    if deleted:
        console.print(f"[green]Run deleted:[/green] {run_id}")
    else:
        console.print(f"[red]Run not found:[/red] {run_id}")
        raise typer.Exit(1) from None


# ── crucible projects ────────────────────────────────────────────


@projects_app.command("list")
def projects_list() -> None:
    """List registered projects and projects with loop state."""
    from crucible.registry import ProjectRegistry

    workspace = _workspace()
    registry = ProjectRegistry(workspace.registry_path).read()
    with_state = set(workspace.list_projects())
    names = sorted(set(registry.projects) | with_state)

    if not names:
        console.print("[dim]No projects.[/dim]")
        return

    table = Table(title="Projects")
    table.add_column("", width=1)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Loop")

    for project_id in names:
        entry = registry.projects.get(project_id)
        marker = "[bold #ff8c42]*[/bold #ff8c42]" if project_id == registry.active_project else ""
        loop_status = "-"
        if project_id in with_state:
            try:
                state = _load_state(workspace, project_id)
            except typer.Exit:
                state = None
                loop_status = "[red]unreadable[/red]"
            if state is not None:
                loop_status = "exhausted" if state.exhausted else state.status.value
        table.add_row(marker, project_id, entry.name if entry else "-", loop_status)

    console.print(table)


@projects_app.command("add")
def projects_add(
    project_id: str = typer.Argument(..., help="Project id"),
    name: str = typer.Option(None, "--name", help="Display name"),
    activate: bool = typer.Option(
        False, "--activate",
        help="Make it the active project",
    ),
) -> None:
    """Register a project."""
    from crucible.registry import ProjectRegistry

    workspace = _workspace()
    registry = ProjectRegistry(workspace.registry_path)

    async def _add():
        entry = await registry.add_project(project_id, name)
        if activate:
            await registry.set_active(project_id)
        return entry

    try:
        entry = asyncio.run(_add())
    except WorkspaceError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None

    console.print(f"[green]Registered:[/green] {project_id} ({entry.name})")
    if registry.active_project() == project_id:
        console.print(f"[dim]Active project: {project_id}[/dim]")


@projects_app.command("use")
def projects_use(
    project_id: str = typer.Argument(..., help="Project id"),
) -> None:
    """Set the active project."""
    from crucible.registry import ProjectRegistry

    workspace = _workspace()
    registry = ProjectRegistry(workspace.registry_path)

    try:
        asyncio.run(registry.set_active(project_id))
    except WorkspaceError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from None
    except KeyError:
        console.print(
            f"[red]Project not registered:[/red] {project_id}\n"
            f"Run [bold]crucible projects add {project_id}[/bold] first."
        )
        raise typer.Exit(1) from None

    console.print(f"[green]Active project:[/green] {project_id}")


# ── crucible dashboard ───────────────────────────────────────────


@app.command()
def dashboard(
    port: int = typer.Option(
        8420, "--port", "-p",
        help="Port to serve the dashboard on",
    ),
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
) -> None:
    """Start the dashboard server (standalone).

    Serves the persisted review documents and run history.
    Tip: Use `crucible run --dashboard` to stream a live loop.

    Requires: pip install crucible[dashboard]
    """
    try:
        from crucible.dashboard.server import create_app, serve
    except ImportError:
        console.print(
            "[red]Dashboard requires extra dependencies.[/red]\n"
            "Install with: [bold]pip install crucible\\[dashboard][/bold]"
        )
        raise typer.Exit(1) from None

    console.print(Panel(
        f"[bold]URL:[/bold] http://{host}:{port}\n"
        f"[bold]Review API:[/bold] /api/review?project_id=<id>",
        title="[bold]Crucible Dashboard[/bold]",
        border_style="#ff8c42",
    ))

    try:
        serve(create_app(), host=host, port=port)
    except ImportError:
        console.print(
            "[red]Dashboard requires extra dependencies.[/red]\n"
            "Install with: [bold]pip install crucible\\[dashboard][/bold]"
        )
        raise typer.Exit(1) from None


# ── Entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    app()
