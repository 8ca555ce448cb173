"""Tests for rosterbot-vault implementations."""

from __future__ import annotations

import json
import subprocess
from unittest.mock import MagicMock

import pytest

from rosterbot_core.result import Err, ErrorKind, Ok
from rosterbot_vault.cache import CredentialCache, merge_latest
from rosterbot_vault.models import Credentials
from rosterbot_vault.noop import NoOpVault
from rosterbot_vault.onepassword import OnePasswordVault, parse_item


def _creds(identifier="customersolutions+acme@jesi.io", password="pw", item_id="i1", updated_at="2024-01-01"):
    return Credentials(identifier, identifier, password, item_id=item_id, updated_at=updated_at)


def _item(item_id, username, password="pw", updated_at="2024-01-01T00:00:00Z"):
    return {
        "id": item_id,
        "updated_at": updated_at,
        "fields": [
            {"id": "username", "purpose": "USERNAME", "value": username},
            {"id": "password", "purpose": "PASSWORD", "value": password},
        ],
    }


def _completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=["op"], returncode=returncode, stdout=stdout, stderr=stderr)


def _fake_op(items: dict):
    """subprocess.run stand-in answering `op item list` and `op item get`."""

    def run(cmd, **kwargs):
        if cmd[1:3] == ["item", "list"]:
            listed = [{"id": i, "category": "LOGIN"} for i in items]
            return _completed(json.dumps(listed))
        if cmd[1:3] == ["item", "get"]:
            return _completed(json.dumps(items[cmd[3]]))
        if cmd[1:3] == ["vault", "list"]:
            return _completed(json.dumps([{"id": "v1"}]))
        raise AssertionError(f"unexpected command {cmd}")

    return run


# ---------------------------------------------------------------------------
# NoOpVault
# ---------------------------------------------------------------------------


class TestNoOpVault:
    def test_lookup_misses(self):
        result = NoOpVault().lookup("a@x.com")
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.NOT_FOUND

    def test_preload_and_check(self):
        vault = NoOpVault()
        assert vault.preload().value == 0
        assert vault.check().value == "NoOpVault"
        vault.close()  # must not raise


# ---------------------------------------------------------------------------
# CredentialCache
# ---------------------------------------------------------------------------


class TestMergeLatest:
    def test_newest_duplicate_wins(self):
        old, new = _creds(password="old", updated_at="2024-01-01"), _creds(password="new", updated_at="2024-06-01")
        merged = merge_latest([old, new])
        assert merged["customersolutions+acme@jesi.io"].password == "new"

    def test_order_does_not_matter(self):
        old, new = _creds(password="old", updated_at="2024-01-01"), _creds(password="new", updated_at="2024-06-01")
        merged = merge_latest([new, old])
        assert merged["customersolutions+acme@jesi.io"].password == "new"

    def test_keys_are_case_insensitive(self):
        merged = merge_latest([_creds(identifier="  Ops@X.com ")])
        assert list(merged) == ["ops@x.com"]


class TestCredentialCache:
    def test_get_counts_hits_and_misses(self):
        cache = CredentialCache()
        cache.load([_creds()])
        assert cache.get("CustomerSolutions+acme@jesi.io") is not None
        assert cache.get("other@x.com") is None
        stats = cache.stats()
        assert (stats.entries, stats.hits, stats.misses) == (1, 1, 1)
        assert stats.loaded_at is not None

    def test_load_replaces_contents(self):
        cache = CredentialCache()
        cache.load([_creds(identifier="a@x.com")])
        cache.load([_creds(identifier="b@x.com")])
        assert cache.get("a@x.com") is None
        assert len(cache) == 1

    def test_put_keeps_newest(self):
        cache = CredentialCache()
        cache.load([_creds(password="new", updated_at="2024-06-01")])
        cache.put(_creds(password="old", updated_at="2023-01-01"))
        assert cache.get("customersolutions+acme@jesi.io").password == "new"

    def test_clear(self):
        cache = CredentialCache()
        cache.load([_creds()])
        cache.get("customersolutions+acme@jesi.io")
        cache.clear()
        assert not cache.loaded
        assert cache.stats().entries == 0
        assert cache.stats().hits == 0

    def test_age(self, mocker):
        cache = CredentialCache()
        assert cache.age() is None
        clock = mocker.patch("rosterbot_vault.cache.time.monotonic", return_value=100.0)
        cache.load([_creds()])
        clock.return_value = 160.0
        assert cache.age() == 60.0
        cache.clear()
        assert cache.age() is None

    def test_independent_instances(self):
        first, second = CredentialCache(), CredentialCache()
        first.load([_creds()])
        assert second.get("customersolutions+acme@jesi.io") is None

    def test_password_not_in_repr(self):
        assert "secret" not in repr(_creds(password="secret"))


# ---------------------------------------------------------------------------
# 1Password
# ---------------------------------------------------------------------------


class TestParseItem:
    def test_purpose_fields(self):
        creds = parse_item(_item("i1", "a@x.com", "pw"))
        assert creds.identifier == "a@x.com"
        assert creds.password == "pw"
        assert creds.item_id == "i1"

    def test_label_fallback(self):
        item = {"id": "i2", "fields": [{"label": "Email", "value": "b@x.com"}, {"label": "password", "value": "s"}]}
        assert parse_item(item).email == "b@x.com"

    def test_missing_password(self):
        assert parse_item({"id": "i3", "fields": [{"purpose": "USERNAME", "value": "c@x.com"}]}) is None


class TestOnePasswordVault:
    def test_lookup_preloads_once(self, mocker):
        run = mocker.patch(
            "rosterbot_vault.onepassword.subprocess.run",
            side_effect=_fake_op({"i1": _item("i1", "customersolutions+acme@jesi.io"), "i2": _item("i2", "x@y.com")}),
        )
        vault = OnePasswordVault("Support", CredentialCache(), token="tok", max_workers=2)

        first = vault.lookup("customersolutions+acme@jesi.io")
        calls = run.call_count
        second = vault.lookup("x@y.com")

        assert isinstance(first, Ok)
        assert second.value.email == "x@y.com"
        assert run.call_count == calls == 3
        assert run.call_args.kwargs["env"]["OP_SERVICE_ACCOUNT_TOKEN"] == "tok"

    def test_lookup_not_found(self, mocker):
        mocker.patch("rosterbot_vault.onepassword.subprocess.run", side_effect=_fake_op({}))
        result = OnePasswordVault("Support", CredentialCache()).lookup("nobody@x.com")
        assert result.kind == ErrorKind.NOT_FOUND
        assert "Support" in result.message

    def test_miss_in_stale_snapshot_reloads_once(self, mocker):
        items = {}
        mocker.patch("rosterbot_vault.onepassword.subprocess.run", side_effect=_fake_op(items))
        vault = OnePasswordVault("Support", CredentialCache(), max_age=0)
        assert vault.lookup("a@x.com").kind == ErrorKind.NOT_FOUND

        # The item is added to 1Password after the first miss.
        items["i1"] = _item("i1", "a@x.com")
        preload = mocker.spy(vault, "preload")
        assert vault.lookup("a@x.com").value.email == "a@x.com"
        assert preload.call_count == 1

    def test_miss_in_fresh_snapshot_does_not_reload(self, mocker):
        mocker.patch("rosterbot_vault.onepassword.subprocess.run", side_effect=_fake_op({}))
        vault = OnePasswordVault("Support", CredentialCache(), max_age=3600)
        vault.lookup("a@x.com")
        preload = mocker.spy(vault, "preload")
        assert vault.lookup("a@x.com").kind == ErrorKind.NOT_FOUND
        assert preload.call_count == 0

    def test_newest_duplicate_item_is_used(self, mocker):
        items = {
            "old": _item("old", "a@x.com", "pw-old", "2023-01-01T00:00:00Z"),
            "new": _item("new", "a@x.com", "pw-new", "2024-01-01T00:00:00Z"),
        }
        mocker.patch("rosterbot_vault.onepassword.subprocess.run", side_effect=_fake_op(items))
        assert OnePasswordVault("Support", CredentialCache()).lookup("a@x.com").value.password == "pw-new"

    def test_unreadable_item_is_skipped(self, mocker):
        items = {"i1": _item("i1", "a@x.com"), "bad": {"id": "bad", "fields": []}}
        mocker.patch("rosterbot_vault.onepassword.subprocess.run", side_effect=_fake_op(items))
        cache = CredentialCache()
        assert OnePasswordVault("Support", cache).preload().value == 1

    def test_cli_missing(self, mocker):
        mocker.patch("rosterbot_vault.onepassword.subprocess.run", side_effect=FileNotFoundError)
        result = OnePasswordVault("Support", CredentialCache()).check()
        assert result.kind == ErrorKind.TRANSPORT

    def test_timeout(self, mocker):
        mocker.patch(
            "rosterbot_vault.onepassword.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="op", timeout=30),
        )
        assert OnePasswordVault("Support", CredentialCache()).preload().kind == ErrorKind.TIMEOUT

    def test_signed_out_is_auth_error(self, mocker):
        mocker.patch(
            "rosterbot_vault.onepassword.subprocess.run",
            return_value=_completed(returncode=1, stderr="[ERROR] You are not currently signed in."),
        )
        result = OnePasswordVault("Support", CredentialCache()).check()
        assert result.kind == ErrorKind.AUTH

    def test_invalid_json(self, mocker):
        mocker.patch("rosterbot_vault.onepassword.subprocess.run", return_value=_completed("not json"))
        assert OnePasswordVault("Support", CredentialCache()).check().kind == ErrorKind.DATA

    def test_failed_preload_is_not_cached(self, mocker):
        run = mocker.patch(
            "rosterbot_vault.onepassword.subprocess.run",
            return_value=_completed(returncode=1, stderr="network unreachable"),
        )
        vault = OnePasswordVault("Support", CredentialCache())
        assert isinstance(vault.lookup("a@x.com"), Err)
        assert isinstance(vault.lookup("a@x.com"), Err)
        assert run.call_count == 2

    @pytest.mark.parametrize("stdout", ["[]", "[{\"id\": \"v1\"}]"])
    def test_check_ok(self, mocker, stdout):
        mocker.patch("rosterbot_vault.onepassword.subprocess.run", return_value=_completed(stdout))
        assert isinstance(OnePasswordVault("Support", MagicMock()).check(), Ok)
