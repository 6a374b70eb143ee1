"""Tests for the HTTP control surface.

TestClient runs background tasks before returning the response, so a
started run has already finished when the request returns.
"""

import pytest
from fastapi.testclient import TestClient

from guiaflow import GuiaFlow
from mail import Mailer
from registry import ClientRecord, ClientRegistry
from server import create_app
from storage import LocalDriver, create_storage
from workflows.distribution import expected_period
from workflows.run_log import RunLog
from workflows.runner import RunGuard


class RecordingMailer(Mailer):
    def __init__(self):
        self.sent = []

    @property
    def name(self):
        return "recording"

    def send(self, to, subject, html, attachments=None):
        self.sent.append((to, subject, [a.filename for a in attachments or []]))


class OneClientRegistry(ClientRegistry):

    @property
    def display_name(self):
        return "one client"

    def list_clients(self):
        return [ClientRecord("ACME", "financeiro@acme.com.br")]


@pytest.fixture(autouse=True)
def config(monkeypatch):
    monkeypatch.setattr(GuiaFlow, "inbox_folder_id", "Inbox")
    monkeypatch.setattr(GuiaFlow, "clients_folder_id", "Clientes")
    monkeypatch.setattr(GuiaFlow, "target_month", "")
    monkeypatch.setattr(GuiaFlow, "force_send", False)
    monkeypatch.setattr(GuiaFlow, "dry_run", False)


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "drive"
    (root / "Inbox").mkdir(parents=True)
    period = root / "Clientes" / "ACME" / expected_period(tz=GuiaFlow.timezone)
    period.mkdir(parents=True)
    (period / "das.pdf").write_bytes(b"%PDF-1.4 das")
    return root


@pytest.fixture
def guard():
    return RunGuard()


@pytest.fixture
def run_log(tmp_path):
    return RunLog(str(tmp_path / "data"))


@pytest.fixture
def mailer():
    return RecordingMailer()


def make_client(tree, guard, run_log, mailer, api_keys=None, run_token="",
                cron_schedule="", driver_factory=None):
    app = create_app(
        guard=guard,
        run_log=run_log,
        driver_factory=driver_factory or (lambda: LocalDriver(str(tree))),
        registry=OneClientRegistry(),
        mailer=mailer,
        api_keys=api_keys or [],
        run_token=run_token,
        cron_schedule=cron_schedule,
    )
    return TestClient(app)


class TestHealth:

    def test_healthz_is_open(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, api_keys=["secret"])
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.text == "ok"


class TestAuth:

    def test_missing_key(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, api_keys=["secret"])
        response = client.get("/status")
        assert response.status_code == 401
        assert response.json() == {"detail": "unauthorized"}

    def test_wrong_key(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, api_keys=["secret"])
        response = client.post("/run", headers={"x-api-key": "guess"})
        assert response.status_code == 401
        assert mailer.sent == []

    def test_header_key(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, api_keys=["old", "secret"])
        assert client.get("/status", headers={"x-api-key": "secret"}).status_code == 200

    def test_query_key(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, api_keys=["secret"])
        assert client.get("/status", params={"api_key": "secret"}).status_code == 200
        assert client.get("/status", params={"apiKey": "secret"}).status_code == 200

    def test_open_without_keys(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer)
        assert client.get("/status").status_code == 200

    def test_run_token_header(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, run_token="tok")
        assert client.post("/run", headers={"x-run-token": "tok"}).status_code == 202
        assert len(mailer.sent) == 1

    def test_run_token_query(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, api_keys=["secret"], run_token="tok")
        assert client.get("/status", params={"token": "tok"}).status_code == 200
        assert client.get("/status", params={"api_key": "secret"}).status_code == 200

    def test_wrong_run_token(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, run_token="tok")
        assert client.post("/run", params={"token": "guess"}).status_code == 401
        assert client.get("/status", headers={"x-api-key": "tok"}).status_code == 401
        assert mailer.sent == []


class TestRuns:

    def test_send_run(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer)

        response = client.post("/run")

        assert response.status_code == 202
        assert response.json() == {"status": "started", "kind": "send"}
        assert mailer.sent[0][0] == "financeiro@acme.com.br"
        assert mailer.sent[0][2] == ["das.pdf"]
        assert not guard.running

    def test_status_after_send(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer)
        client.post("/run")

        status = client.get("/status").json()

        assert status["kind"] == "send"
        assert status["running"] is False
        assert status["error"] is None
        assert [(e["client"], e["status"], e["reason"]) for e in status["entries"]] == [
            ("ACME", "sent", "ok")]

    def test_inbox_run(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer)

        response = client.post("/inbox")

        assert response.status_code == 202
        assert client.get("/status").json()["kind"] == "intake"

    def test_overlapping_run_is_rejected(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer)
        guard.acquire("intake")

        response = client.post("/run")

        assert response.status_code == 409
        assert response.json() == {"error": "already_running", "active": "intake"}
        assert mailer.sent == []
        assert client.get("/status").json()["running"] is True

    def test_not_configured(self, tree, guard, run_log, mailer, monkeypatch):
        monkeypatch.setattr(GuiaFlow, "inbox_folder_id", "")
        client = make_client(tree, guard, run_log, mailer)

        response = client.post("/inbox")

        assert response.status_code == 503
        assert response.json()["error"] == "not_configured"
        assert not guard.running

    def test_failed_run_is_recorded(self, tree, guard, run_log, mailer, monkeypatch):
        monkeypatch.setattr(GuiaFlow, "clients_folder_id", "Missing")
        client = make_client(tree, guard, run_log, mailer)

        assert client.post("/run").status_code == 202

        status = client.get("/status").json()
        assert status["running"] is False
        assert "Missing" in status["error"]
        assert not guard.running

    def test_unexpected_start_failure_releases_guard(self, tree, guard, run_log, mailer):
        # an unsupported backend raises ValueError from the driver factory
        client = make_client(tree, guard, run_log, mailer,
                             driver_factory=lambda: create_storage("s3:bucket"))

        for _ in range(2):
            response = client.post("/run")
            assert response.status_code == 503
            assert response.json()["error"] == "not_configured"

        assert not guard.running
        assert mailer.sent == []


class TestHistory:

    def test_spans_runs(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer)
        client.post("/run")
        client.post("/run")

        entries = client.get("/history").json()["entries"]

        assert [(e["status"], e["reason"]) for e in entries] == [
            ("sent", "ok"), ("skip", "already_processed")]
        assert client.get("/history", params={"limit": 1}).json()["entries"][0]["reason"] == (
            "already_processed")

    def test_requires_key(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, api_keys=["secret"])
        assert client.get("/history").status_code == 401


class TestSchedule:

    def test_no_schedule(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer)
        assert client.get("/status").json()["cron"] is None
        assert client.app.state.scheduler is None

    def test_schedule_is_reported(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, cron_schedule="0 8 1 * *")
        assert client.get("/status").json()["cron"] == "0 8 1 * *"
        assert client.app.state.scheduler is not None

    def test_invalid_schedule_disables_scheduler(self, tree, guard, run_log, mailer, caplog):
        with caplog.at_level("ERROR", logger="server"):
            client = make_client(tree, guard, run_log, mailer, cron_schedule="every monday")

        assert client.app.state.scheduler is None
        assert client.get("/status").json()["cron"] is None
        assert "Invalid CRON_SCHEDULE" in caplog.text

    def test_scheduler_runs_with_the_app(self, tree, guard, run_log, mailer):
        client = make_client(tree, guard, run_log, mailer, cron_schedule="0 8 1 * *")
        scheduler = client.app.state.scheduler

        with client:
            assert scheduler.running
            assert scheduler.get_job("send") is not None
        assert not scheduler.running
