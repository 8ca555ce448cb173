"""run command: process user upload tickets."""

from __future__ import annotations

import dataclasses
import logging
import time

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from rosterbot_core.config import ConfigError
from rosterbot_core.jira.client import JiraClient
from rosterbot_core.processor import Processor, RunSummary, fetch_tickets, get_assistant
from rosterbot_core.result import Err

console = Console()
logger = logging.getLogger(__name__)

_ACTION_STYLE = {
    "uploaded": "green",
    "approval_requested": "cyan",
    "pending": "dim",
    "failed": "red",
    "invalid": "red",
    "info_required": "yellow",
}


def _print_summary(summary: RunSummary) -> None:
    if not summary.outcomes:
        console.print("[dim]No matching tickets.[/dim]")
        return
    table = Table(title="Run Summary", show_header=True)
    table.add_column("Ticket", style="bold")
    table.add_column("Result")
    table.add_column("Details")
    for outcome in summary.outcomes:
        style = _ACTION_STYLE.get(outcome.action, "white")
        table.add_row(outcome.key, f"[{style}]{outcome.action}[/{style}]", escape(outcome.message))
    console.print(table)
    console.print(
        f"[green]{summary.successful} successful[/green], "
        f"[dim]{summary.skipped} skipped[/dim], "
        f"[red]{summary.failed} failed[/red]"
    )


def _run_pass(processor: Processor, jira: JiraClient, config, ticket_key: str | None, single: bool):
    """Fetch and process one batch of tickets; None when the search itself failed."""
    tickets = fetch_tickets(jira, config, ticket_key=ticket_key, single=single)
    if isinstance(tickets, Err):
        logger.error("Could not fetch tickets: %s", tickets)
        return None
    logger.info("Found %d ticket(s) to process", len(tickets.value))
    summary = processor.run(tickets.value)
    _print_summary(summary)
    return summary


@click.command("run")
@click.option("--watch/--once", default=False, help="Keep polling Jira, or process a single pass (default).")
@click.option(
    "--interval",
    type=click.IntRange(min=1),
    default=None,
    help="Seconds between polls in --watch mode. Overrides config file (default 300).",
)
@click.option("--single-ticket", is_flag=True, help="Process only the first matching ticket.")
@click.option("--ticket", "ticket_key", default=None, help="Process one ticket by key, e.g. JESI-1234.")
@click.option("--jql", "custom_jql", default=None, help="Custom JQL query. Overrides the built-in search.")
@click.option("--dry-run", is_flag=True, help="Show what would happen without writing to Jira or the backend.")
@click.pass_context
def run_cmd(
    ctx,
    watch: bool,
    interval: int | None,
    single_ticket: bool,
    ticket_key: str | None,
    custom_jql: str | None,
    dry_run: bool,
):
    """Process user upload tickets.

    Open tickets that ask for a user upload are validated and either
    uploaded directly or held for approval; approved Review tickets are
    uploaded and closed.

    \b
    Required environment variables:
      JIRA_DOMAIN, JIRA_EMAIL, JIRA_API_TOKEN   Jira Cloud access
      BASE_API_URL                              Backend API base URL
      OP_SERVICE_ACCOUNT_TOKEN                  1Password service account
    """
    from rosterbot_cli.prereqs import missing_prerequisites

    config = ctx.obj["config"]
    overrides = {"poll_interval": interval, "custom_jql": custom_jql}
    config = dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})
    try:
        config.validate()
    except ConfigError as e:
        raise click.UsageError(str(e)) from e

    problems = missing_prerequisites(config)
    if problems:
        raise click.UsageError("Missing prerequisites:\n  " + "\n  ".join(problems))

    vault = ctx.obj["vault"]
    checked = vault.check()
    if isinstance(checked, Err):
        raise click.ClickException(f"Credential vault is not reachable: {checked.message}")

    try:
        assistant = get_assistant(config)
    except (ImportError, ValueError) as e:
        raise click.UsageError(str(e)) from e

    jira = JiraClient(config.jira_domain, config.jira_email, config.jira_api_token, timeout=config.request_timeout)
    processor = Processor(config, jira, vault, assistant, dry_run=dry_run)
    bot = processor.resolve_bot_account()
    if isinstance(bot, Err):
        raise click.ClickException(f"Could not identify the bot's Jira account: {bot.message}")

    if dry_run:
        console.print("[yellow]Dry run: nothing will be posted, uploaded or transitioned.[/yellow]")

    if not watch:
        summary = _run_pass(processor, jira, config, ticket_key, single_ticket)
        if summary is None or summary.failed:
            ctx.exit(1)
        return

    console.print(f"[bold]Watching for tickets every {config.poll_interval}s.[/bold] Press Ctrl+C to stop.")
    try:
        while True:
            _run_pass(processor, jira, config, ticket_key, single_ticket)
            time.sleep(config.poll_interval)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
