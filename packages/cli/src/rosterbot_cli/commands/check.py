"""check command: verify that everything the bot needs is reachable."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from rosterbot_core.config import ConfigError
from rosterbot_core.jira.client import JiraClient
from rosterbot_core.result import Err

console = Console()


@click.command("check")
@click.option("--preload", is_flag=True, help="Also load every credential from the vault and show cache stats.")
@click.pass_context
def check_cmd(ctx, preload: bool):
    """Check configuration, CLI tools, Jira access and the credential vault.

    Exits with status 1 if anything required is missing.
    """
    from rosterbot_cli.prereqs import check_cli_tool, required_tools

    config = ctx.obj["config"]
    vault = ctx.obj["vault"]
    failures = 0

    table = Table(title="Prerequisites", show_header=True)
    table.add_column("Check", style="bold")
    table.add_column("Status")
    table.add_column("Details")

    def row(name: str, ok: bool, details: str) -> None:
        nonlocal failures
        failures += 0 if ok else 1
        table.add_row(name, "[green]ok[/green]" if ok else "[red]failed[/red]", details)

    try:
        config.validate()
        row("configuration", True, "all required settings present")
        config_ok = True
    except ConfigError as e:
        row("configuration", False, str(e))
        config_ok = False

    for tool in required_tools(config):
        version = check_cli_tool(tool)
        row(f"{tool} CLI", version is not None, version or "not found on PATH")

    if config_ok:
        jira = JiraClient(config.jira_domain, config.jira_email, config.jira_api_token, timeout=config.request_timeout)
        me = jira.myself()
        if isinstance(me, Err):
            row("Jira", False, me.message)
        else:
            row("Jira", True, f"{me.value.get('displayName', '')} ({me.value.get('accountId', '')})")

    checked = vault.check()
    row("vault", not isinstance(checked, Err), checked.message if isinstance(checked, Err) else str(checked.value))

    if preload and not isinstance(checked, Err):
        loaded = vault.preload()
        if isinstance(loaded, Err):
            row("vault preload", False, loaded.message)
        else:
            row("vault preload", True, f"{loaded.value} item(s)")

    console.print(table)

    if preload:
        stats = ctx.obj["cache"].stats()
        console.print(f"Credential cache: {stats.entries} entries, loaded at {stats.loaded_at or 'never'}")

    if failures:
        ctx.exit(1)
