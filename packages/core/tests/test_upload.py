"""Tests for the backend upload pipeline and its report."""

from unittest.mock import MagicMock

from rosterbot_core.approval import REPORT_MARKER, extract_payloads
from rosterbot_core.backend import BackendClient
from rosterbot_core.fingerprint import fingerprint
from rosterbot_core.models import UserRecord
from rosterbot_core.result import Err, ErrorKind, Ok
from rosterbot_core.upload import UploadReport, render_report, run_upload, user_payload


def make_client(users=(), teams=(), roles=None):
    client = MagicMock(spec=BackendClient)
    client.roles.return_value = Ok(roles if roles is not None else [{"id": "r1", "name": "TEAM MEMBER"}])
    client.search_users.return_value = Ok(list(users))
    client.search_teams.return_value = Ok(list(teams))
    client.create_team.side_effect = lambda name: Ok({"id": f"id-{name}", "name": name})
    client.create_user.side_effect = lambda payload: Ok({"id": "u-" + payload["email"]})
    return client


def make_record(email="a@x.com", teams=("Sales",), role="TEAM MEMBER"):
    return UserRecord(email, "Ann", "Lee", job_title="Ranger", mobile_number="0412", teams=teams, user_role=role)


class TestUserPayload:
    def test_shape(self):
        payload = user_payload(make_record(), ["t1", "t2"], "r1")
        assert payload == {
            "firstName": "Ann",
            "lastName": "Lee",
            "email": "a@x.com",
            "title": "Ranger",
            "mobileNumbers": [{"number": "0412", "isActive": True}],
            "teamIds": ["t1", "t2"],
            "defaultTeam": "t1",
            "roleId": "r1",
        }


class TestRunUpload:
    def test_creates_missing_teams_then_users(self):
        client = make_client(teams=[{"id": "t-sales", "name": "Sales"}])
        report = run_upload(client, [make_record(teams=("Sales", "Support"))]).value
        client.create_team.assert_called_once_with("Support")
        payload = client.create_user.call_args.args[0]
        assert payload["teamIds"] == ["t-sales", "id-Support"]
        assert report.created_teams == ["Support"]
        assert report.created_users == ["a@x.com"]
        assert report.success

    def test_existing_users_are_skipped(self):
        client = make_client(users=[{"email": "A@X.com"}])
        report = run_upload(client, [make_record()]).value
        client.create_user.assert_not_called()
        assert report.existing_users == ["a@x.com"]
        assert report.success

    def test_one_failure_does_not_stop_the_batch(self):
        client = make_client()
        client.create_user.side_effect = [Err(ErrorKind.TRANSPORT, "HTTP 500"), Ok({"id": "u2"})]
        report = run_upload(client, [make_record("a@x.com"), make_record("b@x.com")]).value
        assert report.failed_users == [{"email": "a@x.com", "error": "HTTP 500"}]
        assert report.created_users == ["b@x.com"]
        assert not report.success
        assert report.total_processed == 2

    def test_exception_from_client_is_recorded(self):
        client = make_client()
        client.create_user.side_effect = [RuntimeError("boom"), Ok({"id": "u2"})]
        report = run_upload(client, [make_record("a@x.com"), make_record("b@x.com")]).value
        assert report.failed_users[0]["error"] == "boom"
        assert report.created_users == ["b@x.com"]

    def test_unknown_role_id(self):
        client = make_client(roles=[])
        report = run_upload(client, [make_record()]).value
        assert report.failed_users == [{"email": "a@x.com", "error": "Missing role ID or team IDs"}]

    def test_failed_team_leaves_user_without_team(self):
        client = make_client()
        client.create_team.side_effect = lambda name: Err(ErrorKind.TRANSPORT, "HTTP 500")
        report = run_upload(client, [make_record()]).value
        assert report.failed_teams == [{"name": "Sales", "error": "HTTP 500"}]
        assert report.failed_users[0]["error"] == "Missing role ID or team IDs"

    def test_lookup_failure_aborts(self):
        client = make_client()
        client.search_users.return_value = Err(ErrorKind.AUTH, "HTTP 401")
        result = run_upload(client, [make_record()])
        assert isinstance(result, Err)
        client.create_team.assert_not_called()


class TestRenderReport:
    def test_marker_counts_and_fingerprints(self):
        report = UploadReport(created_users=["a@x.com"], existing_users=["b@x.com"])
        files = [fingerprint("users.csv", b"data")]
        text = render_report("JESI-1", report, files)
        assert text.startswith(REPORT_MARKER)
        assert "**USER UPLOAD COMPLETE**" in text
        assert "Users created: 1 | Already existed: 1 | Failed: 0" in text
        payload = extract_payloads(text)[0]
        assert payload["attachments"] == [files[0].to_dict()]

    def test_errors_listed(self):
        report = UploadReport(failed_users=[{"email": "a@x.com", "error": "HTTP 500"}])
        text = render_report("JESI-1", report, [])
        assert "FINISHED WITH ERRORS" in text
        assert "- a@x.com: HTTP 500" in text
