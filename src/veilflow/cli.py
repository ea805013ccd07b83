"""CLI for VeilFlow."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from veilflow.config import load_app_config
from veilflow.config.models import AppConfig
from veilflow.constants import PACKAGE_VERSION
from veilflow.errors import FlowAborted
from veilflow.flow import VeilFlowRunner, required_operator_lamports
from veilflow.flow.amount_policy import format_base_units
from veilflow.flow.events import FlowEvent, StatusMessage
from veilflow.identity import IdentityStore
from veilflow.observability import TransactionRecorder
from veilflow.schemas.enums import StepStatus
from veilflow.security.redaction import redact_text

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="VeilFlow multi-wallet privacy protocol test harness.",
)
wallets_app = typer.Typer(no_args_is_help=True, help="Manage test wallets A, B and C.")
app.add_typer(wallets_app, name="wallets")
console = Console()

_STATUS_STYLES = {
    StepStatus.IDLE: "dim",
    StepStatus.RUNNING: "yellow",
    StepStatus.SUCCESS: "green",
    StepStatus.ERROR: "red",
}


@app.command()
def version() -> None:
    """Print the VeilFlow version."""
    typer.echo(PACKAGE_VERSION)


@app.command("validate-config")
def validate_config(
    config: Path | None = typer.Option(None, "--config", help="Path to settings.yaml override."),
) -> None:
    """Validate configuration and print the resolved settings."""
    try:
        config_model = load_app_config(config)
    except Exception as exc:  # noqa: BLE001
        console.print(f"[red]Configuration validation failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    table = Table(title="Resolved Configuration")
    table.add_column("Setting")
    table.add_column("Value")
    for name, value in _config_rows(config_model):
        table.add_row(name, value)
    console.print(table)


@wallets_app.command("generate")
def wallets_generate(
    config: Path | None = typer.Option(None, "--config", help="Path to settings.yaml override."),
) -> None:
    """Create fresh wallets A, B and C, replacing any stored ones."""
    try:
        store = _identity_store(config)
        identities = store.generate()
    except Exception as exc:  # noqa: BLE001
        console.print(f"[red]Wallet generation failed:[/red] {redact_text(str(exc))}")
        raise typer.Exit(code=1) from exc
    _render_wallets({identity.label: identity.address for identity in identities.present})


@wallets_app.command("reset")
def wallets_reset(
    config: Path | None = typer.Option(None, "--config", help="Path to settings.yaml override."),
) -> None:
    """Delete stored wallets A, B and C."""
    try:
        _identity_store(config).reset()
    except Exception as exc:  # noqa: BLE001
        console.print(f"[red]Wallet reset failed:[/red] {redact_text(str(exc))}")
        raise typer.Exit(code=1) from exc
    console.print("[green]Test wallets cleared.[/green]")


@wallets_app.command("show")
def wallets_show(
    config: Path | None = typer.Option(None, "--config", help="Path to settings.yaml override."),
) -> None:
    """List stored wallets."""
    try:
        store = _identity_store(config)
        identities = store.restore()
    except Exception as exc:  # noqa: BLE001
        console.print(f"[red]Wallet restore failed:[/red] {redact_text(str(exc))}")
        raise typer.Exit(code=1) from exc
    if identities is None:
        console.print("No test wallets stored. Run [bold]veilflow wallets generate[/bold].")
        return
    _render_wallets({identity.label: identity.address for identity in identities.present})


@app.command("run")
def run(
    amount: str | None = typer.Option(None, "--amount", help="Flow amount in tokens."),
    fund_amount: str | None = typer.Option(
        None, "--fund-amount", help="Tokens sent to each wallet by fund-wallets."
    ),
    wrap_amount: str | None = typer.Option(
        None, "--wrap-amount", help="SOL wrapped per wallet (localnet) or by the operator (devnet)."
    ),
    skip: list[str] = typer.Option(
        [], "--skip", help="Toggle key or step id to disable; repeatable."
    ),
    enable: list[str] = typer.Option(
        [], "--enable", help="Toggle key or step id to enable; repeatable."
    ),
    cluster: str | None = typer.Option(None, "--cluster", help="localnet, devnet or mainnet."),
    generate_wallets: bool = typer.Option(
        False, "--generate-wallets", help="Generate wallets first when any are missing."
    ),
    config: Path | None = typer.Option(None, "--config", help="Path to settings.yaml override."),
    db_path: Path | None = typer.Option(None, "--db-path", help="SQLite path for run records."),
    quiet: bool = typer.Option(False, "--quiet", help="Hide progress messages."),
) -> None:
    """Run the multi-wallet flow against the configured backend."""
    try:
        runner = VeilFlowRunner(
            config_path=config,
            db_path=db_path,
            cli_overrides={
                "cluster": cluster,
                "amount": amount,
                "fund_amount": fund_amount,
                "wrap_amount": wrap_amount,
            },
        )
        if generate_wallets and not runner.identity_store.current.is_complete:
            runner.sequencer.generate_identities()
        if not quiet:
            runner.events.subscribe(_print_event)
        selection = {key: True for key in enable}
        selection.update({key: False for key in skip})
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as progress:
            progress.add_task(description="Running multi-wallet flow", total=None)
            outcome = runner.run_sync(selection=selection or None)
    except FlowAborted as exc:
        _render_statuses(runner, {key: StepStatus(value) for key, value in exc.statuses.items()})
        console.print(f"[red]Run aborted:[/red] {redact_text(str(exc))}")
        raise typer.Exit(code=1) from exc
    except Exception as exc:  # noqa: BLE001
        console.print(f"[red]Run failed:[/red] {redact_text(str(exc))}")
        raise typer.Exit(code=1) from exc

    _render_statuses(runner, outcome.statuses)
    decimals = runner.config.mint.decimals or 0
    summary = [f"run id: [bold]{outcome.run_id}[/bold]"]
    if outcome.allocation is not None:
        summary.append(
            f"deposit: {format_base_units(outcome.allocation.base_units, decimals)}  "
            f"per spend: {format_base_units(outcome.allocation.per_spend_units, decimals)}"
        )
    summary.append(f"root: {outcome.flow_state.root_hex}")
    summary.append(f"next nullifier: {outcome.flow_state.next_nullifier}")
    console.print(Panel.fit("\n".join(summary), title="Run Complete"))


@app.command("transactions")
def transactions(
    run_id: str | None = typer.Option(None, "--run-id", help="Only show records for this run."),
    config: Path | None = typer.Option(None, "--config", help="Path to settings.yaml override."),
    db_path: Path | None = typer.Option(None, "--db-path", help="SQLite path for run records."),
) -> None:
    """List the transaction log."""
    try:
        cfg = load_app_config(config)
        recorder = TransactionRecorder(db_path or cfg.state_dir / "veilflow.db")
        records = recorder.list_records(run_id)
    except Exception as exc:  # noqa: BLE001
        console.print(f"[red]Listing transactions failed:[/red] {redact_text(str(exc))}")
        raise typer.Exit(code=1) from exc

    table = Table(title="Transactions")
    table.add_column("Created")
    table.add_column("Flow")
    table.add_column("Status")
    table.add_column("Relayer")
    table.add_column("Amount", justify="right")
    table.add_column("Signature")
    for record in records:
        table.add_row(
            record.created_at,
            record.flow,
            record.status.value,
            "yes" if record.relayer else "no",
            str(record.details.get("amount", "-")),
            _shorten(record.signature) if record.signature else "-",
        )
    console.print(table)


@app.command("healthcheck")
def healthcheck(
    config: Path | None = typer.Option(None, "--config", help="Path to settings.yaml override."),
    db_path: Path | None = typer.Option(None, "--db-path", help="SQLite path for run records."),
    quiet: bool = typer.Option(False, "--quiet", help="Suppress success output."),
) -> None:
    """Validate runtime readiness."""
    try:
        cfg = load_app_config(config)
        resolved_db = db_path or cfg.state_dir / "veilflow.db"
        resolved_db.parent.mkdir(parents=True, exist_ok=True)
        resolved_db.touch(exist_ok=True)
        if not quiet:
            console.print(
                f"[green]OK[/green] cluster={cfg.cluster.value} mint="
                f"{cfg.mint.address or 'unset'} db={resolved_db}"
            )
    except Exception as exc:  # noqa: BLE001
        console.print(f"[red]Healthcheck failed:[/red] {redact_text(str(exc))}")
        raise typer.Exit(code=1) from exc


def _identity_store(config_path: Path | None) -> IdentityStore:
    cfg = load_app_config(config_path)
    return IdentityStore(cfg.state_dir / "wallets")


def _config_rows(config: AppConfig) -> list[tuple[str, str]]:
    enabled = ", ".join(key for key, value in config.flow.steps.items() if value)
    return [
        ("cluster", config.cluster.value),
        ("backend", config.backend),
        ("mint", config.mint.address or "-"),
        ("decimals", str(config.mint.decimals) if config.mint.decimals is not None else "-"),
        ("state_dir", str(config.state_dir)),
        ("flow.amount", config.flow.amount),
        ("flow.spend_order", " -> ".join(config.flow.spend_order)),
        ("flow.split_fallback", config.flow.split_fallback.value),
        ("flow.steps", enabled),
        ("funding.fund_amount", config.funding.fund_amount),
        ("funding.wrap_amount", config.funding.wrap_amount),
        ("operator lamports needed", str(required_operator_lamports(config))),
    ]


def _render_wallets(addresses: dict[str, Any]) -> None:
    table = Table(title="Test Wallets")
    table.add_column("Wallet")
    table.add_column("Address")
    for label in ("A", "B", "C"):
        table.add_row(f"Wallet {label}", addresses.get(label, "[dim]missing[/dim]"))
    console.print(table)


def _render_statuses(runner: VeilFlowRunner, statuses: dict[str, StepStatus]) -> None:
    table = Table(title="Step Status")
    table.add_column("Step")
    table.add_column("Label")
    table.add_column("Status")
    for step in runner.sequencer.plan:
        status = statuses.get(step.id, StepStatus.IDLE)
        style = _STATUS_STYLES[status]
        table.add_row(step.id, step.label, f"[{style}]{status.value}[/{style}]")
    console.print(table)


def _print_event(event: FlowEvent) -> None:
    if isinstance(event, StatusMessage):
        console.print(event.message, markup=False, highlight=False)


def _shorten(value: str, *, keep: int = 6) -> str:
    if len(value) <= keep * 2 + 3:
        return value
    return f"{value[:keep]}...{value[-keep:]}"
