from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = ".rosterbot.yml"

# Config attribute -> environment variable that supplies it.
ENV_VARS = {
    "jira_domain": "JIRA_DOMAIN",
    "jira_email": "JIRA_EMAIL",
    "jira_api_token": "JIRA_API_TOKEN",
    "backend_url": "BASE_API_URL",
    "backend_search_url": "BASE_CLJ_API_URL",
    "op_service_account_token": "OP_SERVICE_ACCOUNT_TOKEN",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
}

AI_PROVIDERS = ("claude-cli", "anthropic", "openai")
VAULT_TYPES = ("onepassword", "none")


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass
class BotConfig:
    # Jira
    jira_domain: Optional[str] = None
    jira_email: Optional[str] = None
    jira_api_token: Optional[str] = None
    jira_project: str = "JESI"
    jira_statuses: list[str] = field(default_factory=lambda: ["Open", "Review"])
    custom_jql: Optional[str] = None
    bot_account_id: Optional[str] = None  # resolved from /myself when unset

    # Backend API
    backend_url: Optional[str] = None
    backend_search_url: Optional[str] = None  # falls back to backend_url
    request_timeout: float = 30

    # Credential vault
    vault: str = "onepassword"
    vault_name: str = "Customer Support (Site Registrations)"
    op_service_account_token: Optional[str] = None
    preload_workers: int = 8
    email_template: str = "customersolutions+%s@jesi.io"

    # AI
    ai_provider: str = "claude-cli"
    ai_timeout: float = 30
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None

    # Scheduling
    poll_interval: int = 300

    def validate(self) -> BotConfig:
        """Raise ConfigError naming every missing or invalid setting."""
        problems = []
        for name in ("jira_domain", "jira_email", "jira_api_token", "backend_url"):
            if not getattr(self, name):
                problems.append(f"{name} (env {ENV_VARS[name]})")
        if self.ai_provider not in AI_PROVIDERS:
            problems.append(f"ai_provider must be one of {', '.join(AI_PROVIDERS)}")
        if self.ai_provider == "anthropic" and not self.anthropic_api_key:
            problems.append("anthropic_api_key (env ANTHROPIC_API_KEY)")
        if self.ai_provider == "openai" and not self.openai_api_key:
            problems.append("openai_api_key (env OPENAI_API_KEY)")
        if self.vault not in VAULT_TYPES:
            problems.append(f"vault must be one of {', '.join(VAULT_TYPES)}")
        if "%s" not in self.email_template:
            problems.append("email_template must contain %s")
        if self.poll_interval <= 0:
            problems.append("poll_interval must be greater than 0")
        if problems:
            raise ConfigError("Missing or invalid configuration: " + "; ".join(problems))
        return self


def load_config(
    config_path: str = DEFAULT_CONFIG_PATH,
    cli_overrides: Optional[dict] = None,
    env_file: Optional[str] = ".env",
) -> BotConfig:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .rosterbot.yml in the current directory
      3. CLI argument overrides
      4. Credentials from environment variables (a .env file is loaded first)

    The result is not validated; call ``BotConfig.validate()`` before use.
    """
    known = {f.name for f in fields(BotConfig)}
    values: dict = {}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        unknown = sorted(set(file_config) - known)
        if unknown:
            logger.warning("Ignoring unknown config keys in %s: %s", config_path, ", ".join(unknown))
        values.update({k: v for k, v in file_config.items() if k in known})

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None and key in known:
                values[key] = value

    if env_file:
        load_dotenv(env_file, override=False)
    for name, env_var in ENV_VARS.items():
        env_value = os.environ.get(env_var)
        if env_value:
            values[name] = env_value

    return BotConfig(**values)
