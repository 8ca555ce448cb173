"""Abstract credential vault interface.

The processor depends on BaseVault, not on a concrete backend, so the
secret store can be swapped (or disabled) from configuration.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from rosterbot_core.result import Ok, Result

if TYPE_CHECKING:
    from rosterbot_vault.models import Credentials


class BaseVault(ABC):
    """Looks up a tenant's service-account credentials by identifier."""

    @abstractmethod
    def lookup(self, identifier: str) -> Result[Credentials]:
        """Return the credentials stored under ``identifier``.

        Returns ``Err(NOT_FOUND)`` when there is no such item; never raises for
        lookup failures.
        """

    def preload(self) -> Result[int]:
        """Warm any cache the backend keeps. Returns the number of entries."""
        return Ok(0)

    def check(self) -> Result[str]:
        """Report whether the backend is usable."""
        return Ok(self.__class__.__name__)

    def close(self) -> None:
        """Release any resources held by the vault. Default is a no-op."""
