"""CLI entry point for careguard.

Invoked as::

    careguard [OPTIONS] COMMAND [ARGS]...

or during development::

    python -m careguard.cli.main

Commands
--------
- check            Evaluate an access requirement for a role and grant set
- roles            Show the fixed role permission table
- token generate   Print a fresh capability token
- crypto validate  Check crypto parameters against the security floors
- audit show       Display recent audit entries
- audit export     Export audit data to CSV or JSON
- audit report     Summarise recent decisions and flag suspicious activity
- version          Show version information
"""
from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import click
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from careguard.config.loader import CareguardConfig, ConfigLoader
from careguard.errors import ConfigError, RequirementConfigError

console = Console()
err_console = Console(stderr=True)

_DEFAULT_CONFIG = Path("careguard.yaml")
_CLI_FAMILY = "cli-family"
_CLI_USER = "cli-user"


def _load_config(config_path: str) -> CareguardConfig:
    try:
        return ConfigLoader().load_or_defaults(Path(config_path))
    except ConfigError as exc:
        err_console.print(f"[red]Config error:[/red] {escape(str(exc))}")
        sys.exit(2)


# ---------------------------------------------------------------------------
# Root command group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="careguard")
def cli() -> None:
    """careguard CLI: access decisions, capability tokens, crypto and audit tools."""


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from careguard import __version__

    console.print(
        Panel(
            f"[bold]careguard[/bold]  v[cyan]{__version__}[/cyan]\n"
            "Access control, capability links and payload protection for family health data.",
            title="Version",
            border_style="blue",
        )
    )


# ---------------------------------------------------------------------------
# roles
# ---------------------------------------------------------------------------


@cli.command(name="roles")
def roles_command() -> None:
    """Show the permissions each family role carries."""
    from careguard.access.roles import ROLE_PERMISSIONS

    table = Table(title="Role Permissions", box=box.SIMPLE)
    table.add_column("Role", style="cyan")
    table.add_column("Permissions")
    for role, permissions in ROLE_PERMISSIONS.items():
        table.add_row(role.value, ", ".join(sorted(permissions)))
    console.print(table)


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@cli.command(name="check")
@click.option("--role", "-r", default=None, help="Role held in the family (omit for none).")
@click.option(
    "--grant",
    "-g",
    "grants",
    multiple=True,
    help="Privacy permission held through a grant.  Repeatable.",
)
@click.option(
    "--grant-group",
    "grant_groups",
    multiple=True,
    help="Named privacy permission group (view_only, basic_edit, full_access, admin).",
)
@click.option(
    "--requirement",
    "requirement_json",
    default=None,
    help='Requirement as JSON, e.g. \'{"permissions": ["write_data"], "require_all": true}\'.',
)
@click.option("--data", "data_type", default=None, help="Data type to check (vitals, notes, ...).")
@click.option(
    "--action",
    "data_action",
    type=click.Choice(["view", "edit", "delete"]),
    default="view",
    show_default=True,
    help="Action on --data.",
)
@click.option(
    "--catalog",
    "catalog_path",
    default=None,
    type=click.Path(exists=True),
    help="Requirement catalog YAML file.",
)
@click.option("--id", "requirement_id", default=None, help="Requirement id within --catalog.")
def check_command(
    role: str | None,
    grants: tuple[str, ...],
    grant_groups: tuple[str, ...],
    requirement_json: str | None,
    data_type: str | None,
    data_action: str,
    catalog_path: str | None,
    requirement_id: str | None,
) -> None:
    """Evaluate an access requirement for a role and a set of grants."""
    from careguard.access.guard import AccessRequirement
    from careguard.access.models import AccessScope
    from careguard.access.requirement_loader import RequirementLoader
    from careguard.access.roles import permission_group
    from careguard.convenience import Careguard

    sources = [s for s in (requirement_json, data_type, catalog_path) if s is not None]
    if len(sources) != 1:
        err_console.print("[red]Give exactly one of --requirement, --data or --catalog.[/red]")
        sys.exit(2)

    loader = RequirementLoader()
    try:
        if requirement_json is not None:
            try:
                raw: object = json.loads(requirement_json)
            except json.JSONDecodeError as exc:
                err_console.print(f"[red]Invalid JSON:[/red] {escape(str(exc))}")
                sys.exit(2)
            if not isinstance(raw, dict):
                err_console.print("[red]Requirement JSON must be an object.[/red]")
                sys.exit(2)
            catalog = loader.load_from_dict({"requirements": [{**raw, "id": "cli"}]})
            requirement = catalog["cli"]
        elif data_type is not None:
            requirement = AccessRequirement.for_data(data_type, data_action)
        else:
            if not requirement_id:
                err_console.print("[red]--catalog needs --id.[/red]")
                sys.exit(2)
            requirement = loader.load(str(catalog_path))[requirement_id]
    except (RequirementConfigError, ValueError, KeyError) as exc:
        err_console.print(f"[red]Bad requirement:[/red] {escape(str(exc))}")
        sys.exit(2)

    scope = AccessScope(_CLI_FAMILY)
    stack = Careguard()
    try:
        if role:
            stack.add_member(_CLI_FAMILY, _CLI_USER, role, invited_by="cli")
        granted: set[str] = set(grants)
        for group in grant_groups:
            granted |= permission_group(group)
    except ValueError as exc:
        err_console.print(f"[red]Invalid input:[/red] {escape(str(exc))}")
        sys.exit(2)
    if granted:
        stack.grant(_CLI_USER, scope, granted, granted_by="cli")

    decision = stack.can(_CLI_USER, requirement, scope)

    status_str = "[green]ALLOWED[/green]" if decision.allowed else "[red]DENIED[/red]"
    console.print(Panel(status_str, title="Access Check Result", border_style="blue"))
    console.print(f"  Requirement: [cyan]{requirement.describe()}[/cyan]")
    if decision.reason is not None:
        console.print(f"  Reason: [bold red]{decision.reason.value}[/bold red]")
    if decision.detail:
        console.print(f"  Detail: {escape(decision.detail)}")

    sys.exit(0 if decision.allowed else 1)


# ---------------------------------------------------------------------------
# token group
# ---------------------------------------------------------------------------


@cli.group(name="token")
def token_group() -> None:
    """Capability token commands."""


@token_group.command(name="generate")
@click.option("--length", "-l", default=32, show_default=True, type=int, help="Token length.")
def token_generate_command(length: int) -> None:
    """Print a fresh token drawn from [A-Za-z0-9]."""
    from careguard.crypto.engine import CryptoEngine

    try:
        token = CryptoEngine().generate_secure_token(length)
    except ValueError as exc:
        err_console.print(f"[red]Invalid length:[/red] {escape(str(exc))}")
        sys.exit(2)
    click.echo(token)


# ---------------------------------------------------------------------------
# crypto group
# ---------------------------------------------------------------------------


@cli.group(name="crypto")
def crypto_group() -> None:
    """Cryptography configuration commands."""


@crypto_group.command(name="validate")
@click.option(
    "--config",
    "-c",
    "config_path",
    default=str(_DEFAULT_CONFIG),
    type=click.Path(),
    help="Path to careguard.yaml.",
)
def crypto_validate_command(config_path: str) -> None:
    """Check crypto parameters against the security floors."""
    from careguard.crypto.engine import CryptoEngine

    config = _load_config(config_path)
    report = CryptoEngine(config.crypto).audit_report()
    settings: dict[str, object] = report["configuration"]  # type: ignore[assignment]
    validation: dict[str, object] = report["validation"]  # type: ignore[assignment]

    table = Table(title="Crypto Configuration", box=box.SIMPLE)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in settings.items():
        table.add_row(key, str(value))
    console.print(table)

    issues: list[str] = list(validation.get("issues", []))  # type: ignore[call-overload]
    if not issues:
        console.print(Panel("[green]VALID[/green]", title="Crypto Validation", border_style="green"))
        return

    console.print(
        Panel(
            f"[red]INVALID[/red]  {len(issues)} issue(s)",
            title="Crypto Validation",
            border_style="red",
        )
    )
    for issue in issues:
        console.print(f"  [red]-[/red] {escape(str(issue))}")
    for recommendation in validation.get("recommendations", []):  # type: ignore[union-attr]
        console.print(f"  [yellow]>[/yellow] {recommendation}")
    sys.exit(1)


# ---------------------------------------------------------------------------
# audit group
# ---------------------------------------------------------------------------


@cli.group(name="audit")
def audit_group() -> None:
    """Audit trail commands."""


@audit_group.command(name="show")
@click.option("--last", "-n", default=20, show_default=True, type=int, help="Number of recent entries to show.")
@click.option(
    "--config",
    "-c",
    "config_path",
    default=str(_DEFAULT_CONFIG),
    type=click.Path(),
    help="Path to careguard.yaml.",
)
def audit_show_command(last: int, config_path: str) -> None:
    """Show recent audit log entries."""
    from careguard.audit.logger import AuditLogger

    config = _load_config(config_path)
    audit = AuditLogger(log_path=config.audit.log_path)
    records = audit.last_n(last)

    if not records:
        console.print("[yellow]No audit entries found.[/yellow]")
        return

    table = Table(title=f"Last {last} Audit Events", box=box.SIMPLE)
    table.add_column("Timestamp", style="dim", no_wrap=True)
    table.add_column("Principal", style="cyan")
    table.add_column("Requirement", style="magenta")
    table.add_column("Outcome")
    table.add_column("Reason")

    for record in records:
        ts = str(record.get("timestamp", ""))[:19].replace("T", " ")
        outcome = str(record.get("outcome", record.get("event", "")))
        colour = "green" if outcome == "allowed" else "red" if outcome == "denied" else "white"
        table.add_row(
            ts,
            escape(str(record.get("principal_id", ""))),
            escape(str(record.get("requirement", ""))),
            f"[{colour}]{outcome}[/{colour}]",
            str(record.get("reason") or ""),
        )

    console.print(table)
    console.print(f"  Total audit records: [cyan]{audit.count()}[/cyan]")


@audit_group.command(name="export")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["csv", "json"]),
    default="csv",
    show_default=True,
    help="Export format.",
)
@click.option("--output", "-o", "output_file", required=True, type=click.Path(), help="Output file path.")
@click.option(
    "--decisions-only",
    is_flag=True,
    default=False,
    help="Export only access_decision records.",
)
@click.option(
    "--config",
    "-c",
    "config_path",
    default=str(_DEFAULT_CONFIG),
    type=click.Path(),
    help="Path to careguard.yaml.",
)
def audit_export_command(
    output_format: str, output_file: str, decisions_only: bool, config_path: str
) -> None:
    """Export audit data to CSV or JSON."""
    from careguard.audit.exporter import AuditExporter
    from careguard.audit.logger import AuditLogger

    config = _load_config(config_path)
    exporter = AuditExporter(AuditLogger(log_path=config.audit.log_path))
    out_path = Path(output_file)

    if output_format == "csv":
        count = exporter.to_csv(out_path, decisions_only=decisions_only)
    else:
        count = exporter.to_json(out_path, decisions_only=decisions_only)

    console.print(f"[green]Exported[/green] {count} records to [bold]{escape(str(out_path))}[/bold] ({output_format.upper()}).")


@audit_group.command(name="report")
@click.option("--days", "-d", default=7, show_default=True, type=int, help="Length of the reporting period.")
@click.option(
    "--config",
    "-c",
    "config_path",
    default=str(_DEFAULT_CONFIG),
    type=click.Path(),
    help="Path to careguard.yaml.",
)
def audit_report_command(days: int, config_path: str) -> None:
    """Summarise recent access decisions and flag suspicious activity."""
    from careguard.audit.logger import AuditLogger
    from careguard.audit.report import AuditReportGenerator

    if days < 1:
        err_console.print("[red]--days must be at least 1.[/red]")
        sys.exit(2)

    config = _load_config(config_path)
    end = datetime.now(tz=timezone.utc)
    generator = AuditReportGenerator(AuditLogger(log_path=config.audit.log_path))
    report = generator.generate(end - timedelta(days=days), end, generated_by="cli")
    summary = report.summary

    table = Table(title=f"Access Decisions, last {days} day(s)", box=box.SIMPLE)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Total", str(summary.total))
    table.add_row("Allowed", f"[green]{summary.allowed}[/green]")
    table.add_row("Denied", f"[red]{summary.denied}[/red]")
    table.add_row("Unique principals", str(summary.unique_principals))
    table.add_row("Most requested", summary.most_requested or "-")
    console.print(table)

    if summary.denial_reasons:
        reasons = Table(title="Denial Reasons", box=box.SIMPLE)
        reasons.add_column("Reason", style="magenta")
        reasons.add_column("Count", justify="right")
        for reason, count in sorted(summary.denial_reasons.items(), key=lambda kv: -kv[1]):
            reasons.add_row(reason, str(count))
        console.print(reasons)

    if not report.suspicious_activity:
        console.print("  [green]No suspicious activity detected.[/green]")
        return

    flagged = Table(title="Suspicious Activity", box=box.SIMPLE)
    flagged.add_column("Type", style="cyan")
    flagged.add_column("Severity")
    flagged.add_column("Description")
    for activity in report.suspicious_activity:
        colour = "red" if activity.severity.value == "high" else "yellow"
        flagged.add_row(
            activity.type,
            f"[{colour}]{activity.severity.value.upper()}[/{colour}]",
            activity.description,
        )
    console.print(flagged)


if __name__ == "__main__":
    cli()
