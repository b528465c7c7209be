"""Coding jobs CLI.

Commands:
- init: Initialize database schema
- distribution preview: Show how cases would be distributed
- distribution create: Create coding jobs
- jobs list|status|cancel|pause|resume|restart|delete: Control background jobs
- jobs export|statistics: Queue background jobs
- kappa: Show Cohen's Kappa per variable and coder pair
- worker: Run the background job worker
- web serve: Run the HTTP API
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from codingjobs.config import get_config
from codingjobs.db.connection import close_db, get_session, get_session_factory, init_db
from codingjobs.distribution.models import AssignmentPlan
from codingjobs.distribution.service import create_distributed_coding_jobs, preview_distribution
from codingjobs.jobs.manager import JobQueueManager
from codingjobs.jobs.models import ActionResult, JobKind, JobQueueUnavailableError
from codingjobs.jobs.store import JobStore
from codingjobs.models import (
    CaseOrderingMode,
    Coder,
    DistributionRequest,
    ValidationError,
    VariableRef,
)
from codingjobs.statistics.service import get_cohens_kappa_statistics

app = typer.Typer(
    name="codingjobs",
    help="Coding jobs - distribute responses to coders and track background work",
    no_args_is_help=True,
)
distribution_cli = typer.Typer(help="Case distribution")
app.add_typer(distribution_cli, name="distribution")

jobs_cli = typer.Typer(help="Background jobs")
app.add_typer(jobs_cli, name="jobs")

web_cli = typer.Typer(help="Web API")
app.add_typer(web_cli, name="web")

console = Console()


def _parse_variable(value: str) -> VariableRef:
    unit, sep, variable = value.partition(":")
    if not sep or not unit or not variable:
        raise typer.BadParameter(f"Expected UNIT:VARIABLE, got {value!r}")
    return VariableRef(unit_name=unit, variable_id=variable)


def _parse_coder(value: str) -> Coder:
    coder_id, sep, name = value.partition(":")
    if not sep or not coder_id.isdigit() or not name:
        raise typer.BadParameter(f"Expected ID:NAME, got {value!r}")
    return Coder(id=int(coder_id), name=name)


def _build_request(
    variables: list[str],
    coders: list[str],
    double_absolute: int | None,
    double_percentage: float | None,
    mode: str | None,
    max_cases: int | None,
) -> DistributionRequest:
    return DistributionRequest(
        selected_variables=[_parse_variable(v) for v in variables],
        selected_coders=[_parse_coder(c) for c in coders],
        double_coding_absolute=double_absolute,
        double_coding_percentage=double_percentage,
        case_ordering_mode=CaseOrderingMode(
            mode or get_config().distribution.default_case_ordering_mode
        ),
        max_coding_cases=max_cases,
    )


def _print_plan(plan: AssignmentPlan) -> None:
    items = list(plan.double_coding_info)

    table = Table(title="Distribution")
    table.add_column("Coder", style="cyan")
    for item in items:
        table.add_column(item, justify="right")
    for coder, counts in plan.distribution.items():
        table.add_row(coder, *(str(counts.get(item, 0)) for item in items))
    console.print(table)

    info = Table(title="Double coding")
    info.add_column("Item", style="cyan")
    info.add_column("Cases", justify="right")
    info.add_column("Double-coded", justify="right")
    info.add_column("Single-coded", justify="right")
    info.add_column("Unused", justify="right")
    for item, details in plan.double_coding_info.items():
        info.add_row(
            item,
            str(details.total_cases),
            str(details.double_coded_cases),
            str(details.single_coded_cases_assigned),
            str(details.unused_cases),
        )
    console.print(info)

    for warning in plan.warnings:
        console.print(f"[yellow]⚠ {warning.kind}:[/yellow] {warning.message}")


def _print_action(result: ActionResult) -> None:
    style = "green" if result.success else "red"
    console.print(f"[{style}]{result.message}[/{style}]")
    if not result.success:
        raise typer.Exit(1)


def _manager() -> JobQueueManager:
    return JobQueueManager(JobStore(get_session_factory()))


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        await init_db(drop=drop)
        await close_db()

    asyncio.run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


def _distribution_command(create: bool):
    def command(
        variables: list[str] = typer.Option(..., "--variable", "-v", help="UNIT:VARIABLE"),
        coders: list[str] = typer.Option(..., "--coder", "-c", help="ID:NAME"),
        double_absolute: int | None = typer.Option(None, "--double", help="Double-coded cases"),
        double_percentage: float | None = typer.Option(
            None, "--double-pct", help="Double-coded share (0-1 or 1-100)"
        ),
        mode: str | None = typer.Option(None, "--mode", help="continuous or alternating"),
        max_cases: int | None = typer.Option(None, "--max-cases", help="Cap per variable"),
        workspace_id: int | None = typer.Option(None, "--workspace", help="Workspace ID"),
    ):
        workspace = workspace_id or get_config().workspace_id
        request = _build_request(
            variables, coders, double_absolute, double_percentage, mode, max_cases
        )

        async def _run():
            try:
                async with get_session() as session:
                    if create:
                        return await create_distributed_coding_jobs(session, workspace, request)
                    return await preview_distribution(session, workspace, request)
            finally:
                await close_db()

        try:
            result = asyncio.run(_run())
        except ValidationError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(1) from exc

        if create:
            _print_plan(result.plan)
            console.print(f"[bold green]✓[/bold green] {result.message}")
        else:
            _print_plan(result)

    return command


distribution_cli.command("preview", help="Show the distribution plan without creating jobs")(
    _distribution_command(create=False)
)
distribution_cli.command("create", help="Distribute cases and create coding jobs")(
    _distribution_command(create=True)
)


@jobs_cli.command("list")
def jobs_list(
    workspace_id: int | None = typer.Option(None, "--workspace", help="Workspace ID"),
    kind: str | None = typer.Option(None, "--kind", help="Filter by job kind"),
):
    """List background jobs, newest first."""
    workspace = workspace_id or get_config().workspace_id

    async def _list():
        try:
            return await _manager().get_all_jobs(workspace, kind)
        finally:
            await close_db()

    jobs = asyncio.run(_list())

    table = Table(title=f"Background jobs (workspace {workspace})")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Created")
    table.add_column("Duration (ms)", justify="right")
    for job in jobs:
        table.add_row(
            job["id"],
            job["kind"],
            job["status"],
            f"{job['progress']}%",
            job["created_at"],
            "" if job["duration_ms"] is None else str(job["duration_ms"]),
        )
    console.print(table)


@jobs_cli.command("status")
def jobs_status(job_id: str = typer.Argument(..., help="Job ID")):
    """Show status, progress and result of a job."""

    async def _status():
        try:
            return await _manager().get_status(job_id)
        finally:
            await close_db()

    try:
        view = asyncio.run(_status())
    except ValidationError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc

    if view is None:
        console.print("[red]Job not found[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]Status:[/bold] {view.status.value}")
    console.print(f"[bold]Progress:[/bold] {view.progress}%")
    if view.error:
        console.print(f"[red]Error:[/red] {view.error}")
    if view.result:
        console.print_json(data=view.result)


def _action_command(action: str):
    def command(job_id: str = typer.Argument(..., help="Job ID")):
        async def _run():
            try:
                return await getattr(_manager(), action)(job_id)
            finally:
                await close_db()

        try:
            result = asyncio.run(_run())
        except ValidationError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(1) from exc
        _print_action(result)

    return command


for _action in ("cancel", "pause", "resume", "restart", "delete"):
    jobs_cli.command(_action, help=f"{_action.capitalize()} a background job")(
        _action_command(_action)
    )


def _enqueue(kind: JobKind, workspace_id: int | None, payload: dict) -> None:
    workspace = workspace_id or get_config().workspace_id

    async def _run():
        try:
            return await _manager().create(workspace, kind, payload)
        finally:
            await close_db()

    try:
        job = asyncio.run(_run())
    except (ValidationError, JobQueueUnavailableError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc
    console.print(f"[bold green]✓[/bold green] Queued {kind.value} job {job.id}")


@jobs_cli.command("export")
def jobs_export(
    export_type: str = typer.Option("detailed", "--type", help="detailed or by-coder"),
    workspace_id: int | None = typer.Option(None, "--workspace", help="Workspace ID"),
):
    """Queue a CSV export of coding results."""
    _enqueue(JobKind.EXPORT, workspace_id, {"export_type": export_type})


@jobs_cli.command("statistics")
def jobs_statistics(
    workspace_id: int | None = typer.Option(None, "--workspace", help="Workspace ID"),
):
    """Queue a Cohen's Kappa computation."""
    _enqueue(JobKind.STATISTICS, workspace_id, {})


@app.command()
def kappa(
    unit_name: str | None = typer.Option(None, "--unit", help="Unit name"),
    variable_id: str | None = typer.Option(None, "--variable", help="Variable ID"),
    workspace_id: int | None = typer.Option(None, "--workspace", help="Workspace ID"),
    weighted: bool = typer.Option(False, "--weighted", help="Weight average by valid pairs"),
):
    """Show Cohen's Kappa per variable and coder pair."""
    workspace = workspace_id or get_config().workspace_id

    async def _kappa():
        try:
            async with get_session() as session:
                return await get_cohens_kappa_statistics(
                    session, workspace, unit_name, variable_id, weighted
                )
        finally:
            await close_db()

    report = asyncio.run(_kappa())

    table = Table(title="Cohen's Kappa")
    table.add_column("Unit", style="cyan")
    table.add_column("Variable", style="cyan")
    table.add_column("Coders")
    table.add_column("Kappa", justify="right")
    table.add_column("Agreement", justify="right")
    table.add_column("Pairs", justify="right")
    table.add_column("Interpretation")
    for variable in report["variables"]:
        for pair in variable["coder_pairs"]:
            table.add_row(
                variable["unit_name"],
                variable["variable_id"],
                f"{pair['coder1_name']} / {pair['coder2_name']}",
                "-" if pair["kappa"] is None else f"{pair['kappa']:.3f}",
                f"{pair['agreement']:.1f}%",
                str(pair["valid_pairs"]),
                pair["interpretation"],
            )
    console.print(table)

    summary = report["workspace_summary"]
    console.print(
        f"[bold]Double-coded responses:[/bold] {summary['total_double_coded_responses']}  "
        f"[bold]Coder pairs:[/bold] {summary['total_coder_pairs']}  "
        f"[bold]Average kappa:[/bold] {summary['average_kappa']}"
    )


@app.command()
def worker():
    """Run the background job worker."""
    from arq import run_worker

    from codingjobs.worker import WorkerSettings

    run_worker(WorkerSettings)


@web_cli.command("serve")
def web_serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8001, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the HTTP API."""
    import uvicorn

    typer.echo(f"Starting coding jobs API on http://{host}:{port}")
    uvicorn.run("codingjobs.web.app:app", host=host, port=port, reload=reload, workers=1)


if __name__ == "__main__":
    app()
