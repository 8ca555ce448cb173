"""init command: interactive setup wizard.

Writes .rosterbot.yml with the non-secret settings and, optionally, a .env
template listing the secrets the bot reads from the environment.
"""

from __future__ import annotations

from pathlib import Path

import click
import yaml
from rich.console import Console

from rosterbot_core.config import AI_PROVIDERS, DEFAULT_CONFIG_PATH, ENV_VARS, BotConfig

console = Console()

_SECRET_ENV_VARS = ("JIRA_EMAIL", "JIRA_API_TOKEN", "OP_SERVICE_ACCOUNT_TOKEN")

_ENV_TEMPLATE_HEADER = """\
# rosterbot secrets. Keep this file out of version control.
"""


@click.command("init")
@click.option("--path", "config_path", default=DEFAULT_CONFIG_PATH, show_default=True, help="Config file to write.")
def init_cmd(config_path: str):
    """Set up rosterbot for this machine.

    Prompts for the Jira site, backend URLs, credential vault and AI
    provider, then writes the answers to .rosterbot.yml.
    """
    defaults = BotConfig()
    console.print("\n[bold cyan]rosterbot init[/bold cyan]: setup wizard\n")

    # --- Jira ---
    jira_domain = click.prompt("Jira domain (e.g. yourcompany.atlassian.net)")
    jira_project = click.prompt("Jira project key", default=defaults.jira_project)

    # --- Backend ---
    backend_url = click.prompt("Backend API base URL (BASE_API_URL)")
    backend_search_url = click.prompt(
        "Backend search API base URL (BASE_CLJ_API_URL, blank for same)", default="", show_default=False
    )

    # --- Credential vault ---
    console.print("\nTenant credential vault:")
    console.print("  [bold]onepassword[/bold]  1Password via the op CLI (default)")
    console.print("  [bold]none[/bold]         no vault; every upload will ask for setup")
    vault = click.prompt("Vault", type=click.Choice(["onepassword", "none"]), default=defaults.vault)

    # --- AI provider ---
    ai_provider = click.prompt("AI provider", type=click.Choice(list(AI_PROVIDERS)), default=defaults.ai_provider)

    config: dict = {
        "jira_domain": jira_domain,
        "jira_project": jira_project,
        "backend_url": backend_url,
        "vault": vault,
        "ai_provider": ai_provider,
    }
    if backend_search_url:
        config["backend_search_url"] = backend_search_url
    if vault == "onepassword":
        config["vault_name"] = click.prompt("1Password vault name", default=defaults.vault_name)

    _write_config(Path(config_path), config)
    console.print(f"[green]Wrote {config_path}[/green]")

    secrets = list(_SECRET_ENV_VARS)
    if ai_provider == "anthropic":
        secrets.append(ENV_VARS["anthropic_api_key"])
    elif ai_provider == "openai":
        secrets.append(ENV_VARS["openai_api_key"])

    if click.confirm("\nCreate a .env template for the secrets?", default=True):
        if _write_env_template(Path(".env"), secrets):
            console.print("[green]Created .env[/green]")
        else:
            console.print("[yellow].env already exists; left unchanged.[/yellow]")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print(f"Set {', '.join(secrets)} then run: [bold]rosterbot check[/bold]")


def _write_config(path: Path, config: dict) -> None:
    """Write or update the config file, preserving any existing keys."""
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))


def _write_env_template(path: Path, names: list[str]) -> bool:
    if path.exists():
        return False
    path.write_text(_ENV_TEMPLATE_HEADER + "".join(f"{name}=\n" for name in names))
    return True
