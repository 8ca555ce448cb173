"""1Password-backed vault driven through the ``op`` CLI.

All login items in the configured vault are fetched once (in parallel)
into the CredentialCache; lookups afterwards are exact matches on the
item's username, so a tenant lookup never scans the vault.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from concurrent.futures import ThreadPoolExecutor

from rosterbot_core.result import Err, ErrorKind, Ok, Result
from rosterbot_vault.base import BaseVault
from rosterbot_vault.cache import CredentialCache
from rosterbot_vault.models import Credentials

logger = logging.getLogger(__name__)


def _field(item: dict, purpose: str, names: tuple[str, ...]) -> str | None:
    for f in item.get("fields") or []:
        if f.get("purpose") == purpose and f.get("value"):
            return f["value"]
    for f in item.get("fields") or []:
        label = str(f.get("label") or f.get("id") or "").lower()
        if label in names and f.get("value"):
            return f["value"]
    return None


def parse_item(item: dict) -> Credentials | None:
    """Extract username/password from ``op item get --format json`` output."""
    username = _field(item, "USERNAME", ("username", "email", "user"))
    password = _field(item, "PASSWORD", ("password",))
    if not username or not password:
        return None
    return Credentials(
        identifier=username,
        email=username,
        password=password,
        item_id=str(item.get("id", "")),
        updated_at=str(item.get("updated_at", "")),
    )


class OnePasswordVault(BaseVault):
    def __init__(
        self,
        vault_name: str,
        cache: CredentialCache,
        token: str | None = None,
        timeout: float = 30,
        max_workers: int = 8,
        binary: str = "op",
        max_age: float | None = 300,
    ):
        self.vault_name = vault_name
        self.cache = cache
        self.token = token
        self.timeout = timeout
        self.max_workers = max_workers
        self.binary = binary
        self.max_age = max_age  # a miss in an older snapshot triggers one reload

    def _run(self, args: list[str]) -> Result[str]:
        env = dict(os.environ)
        if self.token:
            env["OP_SERVICE_ACCOUNT_TOKEN"] = self.token
        try:
            completed = subprocess.run(
                [self.binary, *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except FileNotFoundError:
            return Err(ErrorKind.TRANSPORT, "1Password CLI (op) is not installed or not on PATH")
        except subprocess.TimeoutExpired:
            return Err(ErrorKind.TIMEOUT, f"op {args[0]} timed out after {self.timeout}s")

        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            kind = ErrorKind.AUTH if "sign" in stderr.lower() or "auth" in stderr.lower() else ErrorKind.TRANSPORT
            return Err(kind, f"op {' '.join(args[:2])} failed: {stderr[:200]}", {"returncode": completed.returncode})
        return Ok(completed.stdout)

    def _run_json(self, args: list[str]) -> Result:
        output = self._run(args)
        if isinstance(output, Err):
            return output
        try:
            return Ok(json.loads(output.value or "null"))
        except json.JSONDecodeError:
            return Err(ErrorKind.DATA, f"op {' '.join(args[:2])} returned invalid JSON")

    def check(self) -> Result[str]:
        vaults = self._run_json(["vault", "list", "--format=json"])
        if isinstance(vaults, Err):
            return vaults
        return Ok(f"1Password CLI available ({len(vaults.value or [])} vault(s) visible)")

    def fetch_item(self, item_id: str) -> Result[Credentials]:
        item = self._run_json(["item", "get", item_id, "--vault", self.vault_name, "--format", "json", "--reveal"])
        if isinstance(item, Err):
            return item
        credentials = parse_item(item.value or {})
        if credentials is None:
            return Err(ErrorKind.DATA, f"Item {item_id} has no username/password fields")
        return Ok(credentials)

    def preload(self) -> Result[int]:
        """Fetch every login item in the vault and load them into the cache."""
        listed = self._run_json(["item", "list", "--vault", self.vault_name, "--format=json"])
        if isinstance(listed, Err):
            return listed
        ids = [i["id"] for i in listed.value or [] if i.get("id") and i.get("category", "LOGIN") == "LOGIN"]
        logger.info("Preloading %d item(s) from 1Password vault %r", len(ids), self.vault_name)

        with ThreadPoolExecutor(max_workers=max(1, self.max_workers)) as pool:
            results = list(pool.map(self.fetch_item, ids))

        loaded = []
        for item_id, result in zip(ids, results):
            if isinstance(result, Err):
                logger.warning("Skipping 1Password item %s: %s", item_id, result.message)
                continue
            loaded.append(result.value)
        return Ok(self.cache.load(loaded))

    def _stale(self) -> bool:
        age = self.cache.age()
        return self.max_age is not None and age is not None and age >= self.max_age

    def lookup(self, identifier: str) -> Result[Credentials]:
        if not self.cache.loaded:
            warmed = self.preload()
            if isinstance(warmed, Err):
                return warmed
        found = self.cache.get(identifier)
        if found is None and self._stale():
            logger.info("No item for %s in a stale credential snapshot; reloading", identifier)
            warmed = self.preload()
            if isinstance(warmed, Err):
                return warmed
            found = self.cache.get(identifier)
        if found is None:
            return Err(ErrorKind.NOT_FOUND, f"No 1Password item with username {identifier} in {self.vault_name}")
        return Ok(found)
