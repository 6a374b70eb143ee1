"""Tests for scheduled send runs."""

import pytest

from workflows.run_log import RunLog
from workflows.runner import RunGuard
from workflows.schedule import create_scheduler, scheduled_send


@pytest.fixture
def run_log(tmp_path):
    return RunLog(str(tmp_path / "data"))


class TestScheduledSend:

    def test_fire_during_active_run_is_skipped(self, run_log, caplog):
        guard = RunGuard()
        guard.acquire("intake")
        built = []

        with caplog.at_level("WARNING", logger="workflows.schedule"):
            outcome = scheduled_send(guard, run_log, lambda: built.append(1))

        assert outcome == "skipped"
        assert built == []
        assert guard.active_kind == "intake"
        assert run_log.get_last_run().kind is None
        assert "intake run is in progress" in caplog.text

    def test_fire_runs_and_releases(self, run_log):
        guard = RunGuard()
        calls = []

        outcome = scheduled_send(guard, run_log, lambda: lambda: calls.append("sent"))

        assert outcome == "finished"
        assert calls == ["sent"]
        assert not guard.running
        assert run_log.get_last_run().kind == "send"

    def test_failed_fire_is_recorded(self, run_log):
        guard = RunGuard()

        def job():
            raise RuntimeError("SMTP down")

        assert scheduled_send(guard, run_log, lambda: job) == "failed"
        assert not guard.running
        assert run_log.get_last_run().error == "SMTP down"

    def test_unconfigured_fire_releases(self, run_log):
        guard = RunGuard()

        def factory():
            raise ValueError("DRIVE_FOLDER_ID_CLIENTES is not set")

        assert scheduled_send(guard, run_log, factory) == "failed"
        assert not guard.running


class TestCreateScheduler:

    def test_job_uses_crontab_fields(self, run_log):
        scheduler = create_scheduler("0 8 1 * *", RunGuard(), run_log, lambda: None,
                                     "America/Sao_Paulo")
        job = scheduler.get_job("send")
        fields = {f.name: str(f) for f in job.trigger.fields}
        assert fields["minute"] == "0"
        assert fields["hour"] == "8"
        assert fields["day"] == "1"
        assert job.max_instances == 1

    def test_invalid_expression(self, run_log):
        with pytest.raises(ValueError):
            create_scheduler("0 8 * *", RunGuard(), run_log, lambda: None, "America/Sao_Paulo")
