"""Tests for the run guard and the start/finish bracketing."""

import pytest

from guiaflow import GuiaFlow
from guiaflow.errors import ConfigError, RunInProgressError
from storage import LocalDriver
from workflows.run_log import RunLog
from workflows.runner import RunGuard, guarded_run, intake_job, run_pipeline, send_job


@pytest.fixture
def run_log(tmp_path):
    return RunLog(str(tmp_path / "data"))


class TestRunGuard:

    def test_second_acquire_is_rejected(self):
        guard = RunGuard()
        guard.acquire("send")

        with pytest.raises(RunInProgressError) as excinfo:
            guard.acquire("intake")

        assert excinfo.value.active_kind == "send"
        assert guard.active_kind == "send"

    def test_release_frees_slot(self):
        guard = RunGuard()
        guard.acquire("send")
        guard.release()
        assert not guard.running
        assert guard.active_kind is None
        guard.acquire("intake")
        assert guard.running

    def test_hold_releases_on_error(self):
        guard = RunGuard()
        with pytest.raises(ValueError):
            with guard.hold("send"):
                raise ValueError("boom")
        assert not guard.running


class TestRunPipeline:

    def test_success(self, run_log):
        assert run_pipeline("send", run_log, lambda: 42) == 42
        state = run_log.get_last_run()
        assert state.kind == "send"
        assert not state.running
        assert state.error is None

    def test_failure_is_recorded_and_reraised(self, run_log):
        def fail():
            raise RuntimeError("clients root\nnot accessible")

        with pytest.raises(RuntimeError):
            run_pipeline("send", run_log, fail)

        state = run_log.get_last_run()
        assert not state.running
        assert state.error == "clients root not accessible"

    def test_guarded_run_rejects_overlap(self, run_log):
        guard = RunGuard()
        guard.acquire("intake")

        with pytest.raises(RunInProgressError):
            guarded_run("send", guard, run_log, lambda: None)

        # the rejected trigger leaves the ledger untouched
        assert run_log.get_last_run().kind is None

    def test_guarded_run_releases(self, run_log):
        guard = RunGuard()
        guarded_run("intake", guard, run_log, lambda: None)
        assert not guard.running


class TestJobs:

    @pytest.fixture(autouse=True)
    def config(self, monkeypatch):
        monkeypatch.setattr(GuiaFlow, "inbox_folder_id", "")
        monkeypatch.setattr(GuiaFlow, "clients_folder_id", "")
        monkeypatch.setattr(GuiaFlow, "sheet_id", "")
        monkeypatch.setattr(GuiaFlow, "clients_csv", "")

    def test_intake_requires_both_roots(self, tmp_path, run_log, monkeypatch):
        monkeypatch.setattr(GuiaFlow, "clients_folder_id", "Clientes")
        with pytest.raises(ConfigError) as excinfo:
            intake_job(LocalDriver(str(tmp_path)), run_log)
        assert "DRIVE_FOLDER_ID_INBOX" in str(excinfo.value)

    def test_send_requires_client_list(self, tmp_path, run_log, monkeypatch):
        monkeypatch.setattr(GuiaFlow, "clients_folder_id", "Clientes")
        with pytest.raises(ConfigError) as excinfo:
            send_job(LocalDriver(str(tmp_path)), run_log)
        assert "SHEET_ID" in str(excinfo.value)

    def test_intake_job_runs(self, tmp_path, run_log, monkeypatch):
        (tmp_path / "Inbox").mkdir()
        (tmp_path / "Clientes").mkdir()
        monkeypatch.setattr(GuiaFlow, "inbox_folder_id", "Inbox")
        monkeypatch.setattr(GuiaFlow, "clients_folder_id", "Clientes")

        job = intake_job(LocalDriver(str(tmp_path)), run_log)

        assert job().total == 0


class TestStartFailure:

    def test_unrecordable_start_does_not_run(self, tmp_path, caplog):
        blocker = tmp_path / "data"
        blocker.write_text("a file, not a directory")
        run_log = RunLog(str(blocker))
        calls = []

        with caplog.at_level("ERROR", logger="workflows.runner"):
            with pytest.raises(OSError):
                run_pipeline("send", run_log, lambda: calls.append(1))

        assert calls == []
        assert "Cannot record the start of the send run" in caplog.text
