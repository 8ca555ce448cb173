"""Assistant backed by the locally installed ``claude`` CLI in print mode."""

from __future__ import annotations

import json
import logging
import subprocess

from rosterbot_core.providers.base import BaseAssistant

logger = logging.getLogger(__name__)


class ClaudeCliAssistant(BaseAssistant):
    # A subprocess that fails once usually fails again; one retry is enough.
    MAX_RETRIES = 2

    def __init__(self, timeout: float = 30, binary: str = "claude"):
        self.timeout = timeout
        self.binary = binary

    def _command(self, system_prompt: str, user_prompt: str) -> list[str]:
        return [
            self.binary,
            "--print",
            f"{user_prompt}\n\nSystem: {system_prompt}",
            "--output-format",
            "json",
        ]

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        try:
            completed = subprocess.run(
                self._command(system_prompt, user_prompt),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TimeoutError(f"claude CLI timed out after {self.timeout}s") from e

        if completed.returncode != 0:
            raise RuntimeError(f"claude CLI exited with {completed.returncode}: {completed.stderr.strip()[:200]}")
        return self._unwrap(completed.stdout)

    @staticmethod
    def _unwrap(stdout: str) -> str:
        """Return the model text from the CLI's ``{"result": ...}`` envelope."""
        try:
            envelope = json.loads(stdout)
        except json.JSONDecodeError:
            return stdout
        if isinstance(envelope, dict) and "result" in envelope:
            if envelope.get("is_error"):
                raise RuntimeError(f"claude CLI reported an error: {str(envelope['result'])[:200]}")
            result = envelope["result"]
            return result if isinstance(result, str) else json.dumps(result)
        return stdout
