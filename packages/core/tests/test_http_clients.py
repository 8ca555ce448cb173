"""Tests for the Jira and backend REST clients."""

from unittest.mock import MagicMock

import requests

from rosterbot_core.backend import BackendClient
from rosterbot_core.jira.client import JiraClient, parse_timestamp
from rosterbot_core.models import Attachment
from rosterbot_core.result import Err, ErrorKind
from rosterbot_core.utils.http import send


def make_response(status=200, json_data=None, content=b"", text=""):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = json_data
    response.content = content
    response.text = text
    response.url = "https://example.test"
    return response


def make_session(*responses):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


# ---------------------------------------------------------------------------
# send
# ---------------------------------------------------------------------------


class TestSend:
    def test_timeout(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout("slow")
        result = send(session, "GET", "https://x", 5)
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.TIMEOUT
        assert result.transient

    def test_connection_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")
        assert send(session, "GET", "https://x", 5).kind == ErrorKind.TRANSPORT

    def test_status_mapping(self):
        cases = ((401, ErrorKind.AUTH), (403, ErrorKind.AUTH), (404, ErrorKind.NOT_FOUND), (500, ErrorKind.TRANSPORT))
        for status, kind in cases:
            result = send(make_session(make_response(status, text="nope")), "GET", "https://x", 5)
            assert result.kind == kind
            assert result.detail["status"] == status

    def test_ok(self):
        response = make_response(200)
        assert send(make_session(response), "GET", "https://x", 5).value is response


# ---------------------------------------------------------------------------
# JiraClient
# ---------------------------------------------------------------------------


ISSUE = {
    "key": "JESI-1",
    "fields": {
        "summary": "User upload for acme",
        "description": {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": "hi"}]}]},
        "status": {"name": "Open"},
        "attachment": [
            {
                "id": "10",
                "filename": "users.csv",
                "size": 12,
                "content": "https://jira/att/10",
                "created": "2024-03-01T09:00:00.000+0000",
            }
        ],
    },
}


def comment_json(id_, text, created="2024-03-01T10:00:00.000+0000", account="u1"):
    return {
        "id": id_,
        "author": {"accountId": account, "displayName": "User"},
        "body": {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}]},
        "created": created,
    }


class TestJiraClient:
    def test_base_url_and_auth(self):
        session = make_session()
        client = JiraClient("acme.atlassian.net", "bot@x.com", "tok", session=session)
        assert client.base_url == "https://acme.atlassian.net/rest/api/3"
        assert session.auth == ("bot@x.com", "tok")

    def test_get_ticket_with_paginated_comments(self):
        session = make_session(
            make_response(json_data=ISSUE),
            make_response(json_data={"comments": [comment_json("1", "first")], "total": 2}),
            make_response(json_data={"comments": [comment_json("2", "second")], "total": 2}),
        )
        ticket = JiraClient("d", "e", "t", session=session).get_ticket("JESI-1").value
        assert ticket.key == "JESI-1"
        assert ticket.status == "Open"
        assert ticket.description == "hi"
        assert [c.body for c in ticket.comments] == ["first", "second"]
        assert ticket.comments[0].document["type"] == "doc"
        assert ticket.attachments[0].filename == "users.csv"
        assert ticket.attachments[0].created.year == 2024

    def test_search(self):
        session = make_session(make_response(json_data={"issues": [ISSUE]}))
        tickets = JiraClient("d", "e", "t", session=session).search('project = JESI').value
        assert [t.key for t in tickets] == ["JESI-1"]
        params = session.request.call_args.kwargs["params"]
        assert params["jql"] == "project = JESI"

    def test_download(self):
        session = make_session(make_response(content=b"bytes"))
        attachment = Attachment("10", "users.csv", 5, "https://jira/att/10")
        assert JiraClient("d", "e", "t", session=session).download(attachment).value == b"bytes"
        assert session.request.call_args.args[1] == "https://jira/att/10"

    def test_post_comment_sends_adf(self):
        session = make_session(make_response(json_data=comment_json("9", "Hello")))
        comment = JiraClient("d", "e", "t", session=session).post_comment("JESI-1", "Hello").value
        assert comment.id == "9"
        body = session.request.call_args.kwargs["json"]["body"]
        assert body["type"] == "doc"

    def test_add_attachment(self):
        session = make_session(make_response(json_data=[{"id": "77", "filename": "users-for-approval.csv"}]))
        attached = JiraClient("d", "e", "t", session=session).add_attachment("JESI-1", "users-for-approval.csv", b"x")
        assert attached.value.id == "77"
        kwargs = session.request.call_args.kwargs
        assert kwargs["headers"] == {"X-Atlassian-Token": "no-check"}
        assert kwargs["files"]["file"] == ("users-for-approval.csv", b"x")

    def test_transition_by_target_status(self):
        transitions = {"transitions": [{"id": "31", "name": "Finish", "to": {"name": "Done"}}]}
        session = make_session(make_response(json_data=transitions), make_response(status=204))
        result = JiraClient("d", "e", "t", session=session).transition("JESI-1", "done")
        assert result.value == "done"
        assert session.request.call_args.kwargs["json"] == {"transition": {"id": "31"}}

    def test_transition_unavailable(self):
        session = make_session(make_response(json_data={"transitions": []}))
        result = JiraClient("d", "e", "t", session=session).transition("JESI-1", "Closed")
        assert isinstance(result, Err)
        assert result.kind == ErrorKind.NOT_FOUND

    def test_parse_timestamp(self):
        assert parse_timestamp("2024-03-01T09:00:00.000+0000").utcoffset().total_seconds() == 0
        assert parse_timestamp(None) is None


# ---------------------------------------------------------------------------
# BackendClient
# ---------------------------------------------------------------------------


class TestBackendClient:
    def test_authenticate_stores_token_and_sends_it(self):
        session = make_session(make_response(json_data={"token": "abc"}), make_response(json_data=[{"id": 1}]))
        client = BackendClient("https://api/v1", "https://api/v2", session=session)
        assert client.authenticate("svc@x.com", "pw").value == "svc@x.com"
        assert client.authenticated
        client.roles()
        assert session.request.call_args.kwargs["headers"]["Authorization"] == "abc"

    def test_authenticate_rejected(self):
        session = make_session(make_response(401, text="bad"))
        result = BackendClient("https://api", session=session).authenticate("svc@x.com", "pw")
        assert result.kind == ErrorKind.AUTH
        assert "pw" not in result.message

    def test_authenticate_without_token(self):
        session = make_session(make_response(json_data={}))
        client = BackendClient("https://api", session=session)
        assert client.authenticate("svc@x.com", "pw").kind == ErrorKind.AUTH
        assert not client.authenticated

    def test_search_uses_search_url_and_unwraps(self):
        session = make_session(make_response(json_data={"users": [{"email": "a@x.com"}]}))
        client = BackendClient("https://api/v1", "https://api/v2", session=session)
        assert client.search_users().value == [{"email": "a@x.com"}]
        assert session.request.call_args.args[1] == "https://api/v2/users/search"

    def test_search_url_defaults_to_base(self):
        assert BackendClient("https://api/", session=make_session()).search_url == "https://api"

    def test_create_team_payload(self):
        session = make_session(make_response(json_data={"id": "t1", "name": "Sales"}))
        created = BackendClient("https://api", session=session).create_team("Sales")
        assert created.value["id"] == "t1"
        payload = session.request.call_args.kwargs["json"]
        assert payload["name"] == "Sales"
        assert payload["escalationLevels"][0]["minutes"] == 60

    def test_create_user_without_id_is_data_error(self):
        session = make_session(make_response(json_data={}))
        result = BackendClient("https://api", session=session).create_user({"email": "a@x.com"})
        assert result.kind == ErrorKind.DATA
