"""CLI entry point for rosterbot.

Commands:
  run     process user upload tickets once, or keep polling with --watch
  check   verify tools, Jira access and the credential vault
  init    interactive setup wizard that writes .rosterbot.yml
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from rosterbot_cli.commands.check import check_cmd
from rosterbot_cli.commands.init import init_cmd
from rosterbot_cli.commands.run import run_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # requests/urllib3 log every connection at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _build_vault(config, cache):
    """Instantiate the configured credential vault from .rosterbot.yml settings.

    Vault selection:
      vault: onepassword → OnePasswordVault (op CLI, service account token)
      vault: none        → NoOpVault (every lookup fails)
    """
    from rosterbot_vault.noop import NoOpVault

    if config.vault == "onepassword":
        from rosterbot_vault.onepassword import OnePasswordVault

        return OnePasswordVault(
            vault_name=config.vault_name,
            cache=cache,
            token=config.op_service_account_token,
            timeout=config.request_timeout,
            max_workers=config.preload_workers,
            max_age=config.poll_interval,
        )
    return NoOpVault()


@click.group()
@click.version_option(
    version=importlib.metadata.version("rosterbot"),
    prog_name="rosterbot",
)
@click.option(
    "--config",
    "config_path",
    default=".rosterbot.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="ROSTERBOT_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Jira bot that uploads customer user lists to the backend."""
    from rosterbot_core.config import load_config
    from rosterbot_vault.cache import CredentialCache

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)
    cache = CredentialCache()
    vault = _build_vault(config, cache)

    ctx.obj["config"] = config
    ctx.obj["cache"] = cache
    ctx.obj["vault"] = vault
    ctx.call_on_close(vault.close)


main.add_command(run_cmd)
main.add_command(check_cmd)
main.add_command(init_cmd)
