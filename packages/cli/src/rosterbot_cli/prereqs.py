"""Checks for the external command-line tools the bot shells out to.

  op       1Password CLI, used to read tenant credentials
  claude   Claude Code CLI, only needed with ai_provider: claude-cli
"""

from __future__ import annotations

import logging
import subprocess

logger = logging.getLogger(__name__)


def check_cli_tool(binary: str, args: list[str] | None = None) -> str | None:
    """Return the tool's version string, or None if it is missing or broken.

    Never raises.
    """
    try:
        result = subprocess.run(
            [binary, *(args or ["--version"])],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        logger.debug("%s is not installed or did not respond.", binary)
        return None
    if result.returncode != 0:
        logger.debug("%s exited with %d: %s", binary, result.returncode, result.stderr.strip())
        return None
    return result.stdout.strip() or binary


def required_tools(config) -> list[str]:
    tools = []
    if config.vault == "onepassword":
        tools.append("op")
    if config.ai_provider == "claude-cli":
        tools.append("claude")
    return tools


def missing_prerequisites(config) -> list[str]:
    """Describe every missing tool or credential needed before processing starts."""
    problems = [f"'{tool}' CLI not found on PATH" for tool in required_tools(config) if check_cli_tool(tool) is None]
    if config.vault == "onepassword" and not config.op_service_account_token:
        problems.append("OP_SERVICE_ACCOUNT_TOKEN is not set")
    return problems
