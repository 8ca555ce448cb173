"""Shared request helper for the REST clients.

Turns requests' exceptions and HTTP error statuses into ``Err`` values so
callers can tell a timeout from a refused connection from a 404.
"""

from __future__ import annotations

import logging

import requests

from rosterbot_core.result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)


def _status_kind(status: int) -> ErrorKind:
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 404:
        return ErrorKind.NOT_FOUND
    return ErrorKind.TRANSPORT


def send(session: requests.Session, method: str, url: str, timeout: float, **kwargs) -> Result[requests.Response]:
    """Perform one HTTP call and classify the outcome.

    Never raises for network or HTTP failures.
    """
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.Timeout:
        logger.warning("%s %s timed out after %ss", method, url, timeout)
        return Err(ErrorKind.TIMEOUT, f"{method} {url} timed out after {timeout}s")
    except requests.RequestException as e:
        logger.warning("%s %s failed: %s", method, url, e)
        return Err(ErrorKind.TRANSPORT, f"{method} {url} failed: {e}")

    if response.status_code >= 400:
        body = response.text[:500] if response.text else ""
        logger.warning("%s %s returned HTTP %d", method, url, response.status_code)
        return Err(
            _status_kind(response.status_code),
            f"HTTP {response.status_code} from {method} {url}",
            {"status": response.status_code, "body": body},
        )
    return Ok(response)


def json_body(response: requests.Response) -> Result:
    try:
        return Ok(response.json())
    except ValueError:
        return Err(ErrorKind.DATA, f"Response from {response.url} is not JSON", {"body": response.text[:500]})
