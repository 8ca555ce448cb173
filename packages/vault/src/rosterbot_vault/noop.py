"""Vault used when no secret store is configured; every lookup misses."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rosterbot_core.result import Err, ErrorKind, Result
from rosterbot_vault.base import BaseVault

if TYPE_CHECKING:
    from rosterbot_vault.models import Credentials


class NoOpVault(BaseVault):
    def lookup(self, identifier: str) -> Result[Credentials]:
        return Err(ErrorKind.NOT_FOUND, f"No credential vault configured; cannot look up {identifier}")
