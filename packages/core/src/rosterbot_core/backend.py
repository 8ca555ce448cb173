"""Client for the customer platform's user and team API."""

from __future__ import annotations

import logging

import requests

from rosterbot_core.result import Err, ErrorKind, Ok, Result
from rosterbot_core.utils.http import json_body, send

logger = logging.getLogger(__name__)

DEFAULT_ESCALATION_MINUTES = 60


def _items(data) -> list[dict]:
    """Search endpoints return either a bare list or a wrapped page."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("users", "teams", "items", "results", "data", "content"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


class BackendClient:
    """One authenticated session against the backend for a single tenant.

    The token lives on the instance, so each ticket gets a fresh client.
    """

    def __init__(self, base_url: str, search_url: str | None = None, timeout: float = 30, session=None):
        self.base_url = base_url.rstrip("/")
        self.search_url = (search_url or base_url).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.token: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.token is not None

    def _json(self, method: str, url: str, **kwargs) -> Result:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = self.token
        response = send(self.session, method, url, self.timeout, headers=headers, **kwargs)
        if isinstance(response, Err):
            return response
        return json_body(response.value)

    def authenticate(self, email: str, password: str) -> Result[str]:
        self.token = None
        url = f"{self.base_url}/passwords/authenticate"
        result = self._json("POST", url, json={"email": email, "password": password})
        if isinstance(result, Err):
            if result.kind == ErrorKind.AUTH:
                return Err(ErrorKind.AUTH, f"Backend rejected the credentials for {email}", result.detail)
            return result
        token = result.value.get("token") if isinstance(result.value, dict) else None
        if not token:
            return Err(ErrorKind.AUTH, "No token in authentication response")
        self.token = token
        logger.info("Authenticated with backend as %s", email)
        return Ok(email)

    def roles(self) -> Result[list[dict]]:
        result = self._json("GET", f"{self.base_url}/roles")
        return result if isinstance(result, Err) else Ok(_items(result.value))

    def search_users(self) -> Result[list[dict]]:
        result = self._json("POST", f"{self.search_url}/users/search", json={})
        return result if isinstance(result, Err) else Ok(_items(result.value))

    def search_teams(self) -> Result[list[dict]]:
        result = self._json("POST", f"{self.search_url}/teams/search", json={})
        return result if isinstance(result, Err) else Ok(_items(result.value))

    def create_team(self, name: str) -> Result[dict]:
        payload = {
            "name": name,
            "members": [],
            "escalationLevels": [{"minutes": DEFAULT_ESCALATION_MINUTES, "escalationContacts": []}],
        }
        result = self._json("POST", f"{self.base_url}/teams", json=payload)
        if isinstance(result, Err):
            return result
        if not isinstance(result.value, dict) or not result.value.get("id"):
            return Err(ErrorKind.DATA, f"Team '{name}' created without an id", {"body": result.value})
        return result

    def create_user(self, payload: dict) -> Result[dict]:
        result = self._json("POST", f"{self.base_url}/users", json=payload)
        if isinstance(result, Err):
            return result
        if not isinstance(result.value, dict) or not result.value.get("id"):
            return Err(ErrorKind.DATA, f"User {payload.get('email')} created without an id", {"body": result.value})
        return result
