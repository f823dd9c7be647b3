"""rolekeeper CLI — operator tooling for managed role declarations."""

from __future__ import annotations

import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from rolekeeper import __version__

console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@click.group()
@click.version_option(version=__version__)
@click.option("--settings", "settings_path", default=None, help="YAML settings file")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def main(ctx: click.Context, settings_path: str | None, log_level: str | None):
    """rolekeeper — self-healing managed roles.

    Declares which roles in a remote system are managed, what their
    attributes must be, and who may hold them.
    """
    from rolekeeper.errors import ConfigurationError
    from rolekeeper.settings import load_settings

    try:
        settings = load_settings(settings_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


# ── Validate ─────────────────────────────────────────────────────────


@main.command()
@click.argument("config_path", required=False)
@click.pass_obj
def validate(settings, config_path: str | None):
    """Validate a managed role declaration file (YAML or JSON).

    CONFIG_PATH defaults to the managed_roles_path setting.
    """
    from rolekeeper.errors import ConfigurationError
    from rolekeeper.templates.config import load_managed_roles
    from rolekeeper.templates.flags import AttributeFlag

    config_path = config_path or settings.managed_roles_path
    if not config_path:
        raise click.UsageError("No declaration file given and no managed_roles_path configured.")

    console.print(f"\n[bold blue]rolekeeper[/] validating: {config_path}\n")

    try:
        result = load_managed_roles(config_path)
    except ConfigurationError as e:
        console.print(f"  [red]Failed to parse:[/] {escape(str(e))}")
        raise SystemExit(1)

    if result.records:
        table = Table(title=f"Managed roles ({len(result.records)} valid)")
        table.add_column("Scope", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Compared")
        table.add_column("Enforced")
        table.add_column("Policy")
        table.add_column("Allow-list", justify="right")

        for record in result.records:
            template = record.to_template()
            enforced = record.enforced_flags
            if enforced is None:
                enforced = template.comparison_policy
            enforced &= template.managed_attributes
            policy = record.policy or settings.default_policy
            table.add_row(
                template.scope_id,
                escape(template.name) if template.name else "[dim](unmanaged)[/]",
                _flag_names(template.comparison_policy),
                _flag_names(enforced) if enforced != AttributeFlag.NONE else "[dim]none[/]",
                policy.value if record.enforce_membership else "[dim]manual[/]",
                str(len(record.allow_list)),
            )
        console.print(table)

    if result.errors:
        console.print("\n[red]Invalid declarations:[/]")
        for error in result.errors:
            console.print(f"  [red]x[/] {escape(error)}")
        raise SystemExit(1)

    console.print("\n[green]Valid![/]")


# ── Policies ─────────────────────────────────────────────────────────


@main.command()
def policies():
    """Show the membership eligibility table for every policy."""
    from rolekeeper.membership.policy import MembershipPolicy, evaluate

    outcomes = [(None, "absent"), (True, "true"), (False, "false")]

    table = Table(title="Membership eligibility")
    table.add_column("Policy", style="cyan")
    for on_list in (True, False):
        for _, label in outcomes:
            table.add_column(f"{'listed' if on_list else 'unlisted'} / rule {label}", justify="center")

    for policy in MembershipPolicy:
        row = [policy.value]
        for on_list in (True, False):
            for result, _ in outcomes:
                row.append("[green]Y[/]" if evaluate(policy, on_list, result) else "[red]N[/]")
        table.add_row(*row)

    console.print(table)


# ── Template ─────────────────────────────────────────────────────────


@main.command()
@click.argument("config_data")
def template(config_data: str):
    """Decode a persisted template record and show what it enforces."""
    from rolekeeper.errors import ConfigurationError
    from rolekeeper.templates.flags import ATTRIBUTE_FIELDS
    from rolekeeper.templates.template import RoleTemplate

    try:
        tmpl = RoleTemplate.from_config_data(config_data)
    except ConfigurationError as e:
        console.print(f"[red]Invalid template:[/] {escape(str(e))}")
        raise SystemExit(1)

    lines = [f"scope: {tmpl.scope_id}", f"compared: {_flag_names(tmpl.comparison_policy)}"]
    for flag, attr in ATTRIBUTE_FIELDS:
        value = getattr(tmpl, attr)
        shown = "[dim]not managed[/]" if value is None else str(value)
        lines.append(f"{attr}: {shown}")
    console.print(Panel("\n".join(lines), title=str(tmpl)))


def _flag_names(flags) -> str:
    from rolekeeper.templates.flags import ATTRIBUTE_FIELDS

    names = [attr for flag, attr in ATTRIBUTE_FIELDS if flag in flags]
    return ", ".join(names) if names else "none"
