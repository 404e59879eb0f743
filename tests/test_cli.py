"""Tests for jobctl commands"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from typer.testing import CliRunner

from jobctl.client import JobCoreError
from jobctl.main import app


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


def _mock_client(**methods):
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    for name, value in methods.items():
        setattr(client, name, value)
    return client


class TestMainCommands:
    @patch("jobctl.main.JobCoreClient")
    def test_status_success(self, mock_client_class, runner):
        mock_client_class.return_value = _mock_client(
            health_check=Mock(
                return_value={
                    "version": "1.0.0",
                    "environment": "production",
                    "worker": {"lease_holder": "worker-a", "queue_depth": 3},
                }
            )
        )

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Connected" in result.stdout
        assert "worker-a" in result.stdout

    @patch("jobctl.main.JobCoreClient")
    def test_status_failure(self, mock_client_class, runner):
        mock_client_class.return_value = _mock_client(
            health_check=Mock(side_effect=JobCoreError("Connection failed"))
        )

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobsCommands:
    @patch("jobctl.commands.jobs.JobCoreClient")
    def test_stats_warns_about_dead_letters(self, mock_client_class, runner):
        mock_client_class.return_value = _mock_client(
            get_stats=Mock(
                return_value={"pending": 2, "dead_letter": 1, "queue_depth": 2}
            )
        )

        result = runner.invoke(app, ["jobs", "stats"])

        assert result.exit_code == 0
        assert "Job Queue" in result.stdout
        assert "dead-lettered" in result.stdout

    @patch("jobctl.commands.jobs.JobCoreClient")
    def test_list_passes_filters(self, mock_client_class, runner):
        client = _mock_client(
            list_jobs=Mock(
                return_value={
                    "jobs": [
                        {
                            "id": "0f8fad5b-d9cb-469f-a165-70867728950e",
                            "job_type": "send_email",
                            "status": "dead_letter",
                            "attempt_count": 3,
                            "max_retries": 3,
                            "scheduled_for": "2026-01-05T12:00:00Z",
                            "last_error": "SMTP relay down",
                        }
                    ],
                    "total": 1,
                }
            )
        )
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "list", "--status", "dead_letter", "--type", "send_email"])

        assert result.exit_code == 0
        assert "Showing 1 of 1 jobs" in result.stdout
        client.list_jobs.assert_called_once_with(
            status=["dead_letter"], job_type="send_email", limit=20, offset=0
        )

    @patch("jobctl.commands.jobs.JobCoreClient")
    def test_list_empty(self, mock_client_class, runner):
        mock_client_class.return_value = _mock_client(
            list_jobs=Mock(return_value={"jobs": [], "total": 0})
        )

        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0
        assert "No jobs found" in result.stdout

    @patch("jobctl.commands.jobs.JobCoreClient")
    def test_retry(self, mock_client_class, runner):
        client = _mock_client(retry_job=Mock(return_value={"status": "pending"}))
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "retry", "job-123"])

        assert result.exit_code == 0
        client.retry_job.assert_called_once_with("job-123")

    @patch("jobctl.commands.jobs.JobCoreClient")
    def test_retry_failure_exits_nonzero(self, mock_client_class, runner):
        mock_client_class.return_value = _mock_client(
            retry_job=Mock(side_effect=JobCoreError("not eligible"))
        )

        result = runner.invoke(app, ["jobs", "retry", "job-123"])

        assert result.exit_code == 1
        assert "Failed to retry job" in result.stdout

    @patch("jobctl.commands.jobs.JobCoreClient")
    def test_enqueue(self, mock_client_class, runner):
        client = _mock_client(
            enqueue=Mock(return_value={"job_id": "abc", "already_queued": False})
        )
        mock_client_class.return_value = client

        result = runner.invoke(
            app, ["jobs", "enqueue", "send_email", "send_email:m1", "--payload", '{"minutes_id": "m1"}']
        )

        assert result.exit_code == 0
        assert "Enqueued job abc" in result.stdout
        client.enqueue.assert_called_once_with(
            "send_email", "send_email:m1", {"minutes_id": "m1"}, None
        )

    def test_enqueue_rejects_bad_json(self, runner):
        result = runner.invoke(app, ["jobs", "enqueue", "send_email", "k", "--payload", "{oops"])

        assert result.exit_code == 1
        assert "Invalid JSON payload" in result.stdout

    @patch("jobctl.commands.jobs.run_db", return_value=2)
    def test_recover(self, mock_run_db, runner):
        result = runner.invoke(app, ["jobs", "recover"])

        assert result.exit_code == 0
        assert "Recovered 2 stuck job(s)" in result.stdout

    @patch("jobctl.commands.jobs.run_db", return_value=5)
    def test_cleanup(self, mock_run_db, runner):
        result = runner.invoke(app, ["jobs", "cleanup"])

        assert result.exit_code == 0
        assert "Deleted 5 completed job(s)" in result.stdout


class TestOutboxCommands:
    @patch("jobctl.commands.outbox.JobCoreClient")
    def test_status(self, mock_client_class, runner):
        mock_client_class.return_value = _mock_client(
            outbox_status=Mock(
                return_value={"pending": 4, "due": 1, "retrying": 2, "sent": 10, "failed": 1}
            )
        )

        result = runner.invoke(app, ["outbox", "status"])

        assert result.exit_code == 0
        assert "Outbox" in result.stdout
        assert "failed permanently" in result.stdout


class TestEnrichmentCommands:
    @patch("jobctl.commands.enrichment.run_db", return_value=0)
    def test_sweep_nothing_to_do(self, mock_run_db, runner):
        result = runner.invoke(app, ["enrichment", "sweep"])

        assert result.exit_code == 0
        assert "No stuck meetings found" in result.stdout

    @patch("jobctl.commands.enrichment.JobCoreClient")
    def test_run(self, mock_client_class, runner):
        client = _mock_client(enrich_meeting=Mock(return_value={"job_id": "job-9"}))
        mock_client_class.return_value = client

        result = runner.invoke(app, ["enrichment", "run", "meeting-1"])

        assert result.exit_code == 0
        client.enrich_meeting.assert_called_once_with("meeting-1")

    @patch("jobctl.commands.enrichment.JobCoreClient")
    def test_force(self, mock_client_class, runner):
        client = _mock_client(force_process_meeting=Mock(return_value={"job_id": "job-3"}))
        mock_client_class.return_value = client

        result = runner.invoke(
            app,
            ["enrichment", "force", "meeting-1", "--admin", "admin-7", "--reason", "Board notes"],
        )

        assert result.exit_code == 0
        assert "job-3" in result.stdout
        client.force_process_meeting.assert_called_once_with("meeting-1", "admin-7", "Board notes")

    @patch("jobctl.commands.enrichment.JobCoreClient")
    def test_force_conflict(self, mock_client_class, runner):
        from jobctl.client import JobCoreError

        client = _mock_client(
            force_process_meeting=Mock(side_effect=JobCoreError("API Error 409: already processed"))
        )
        mock_client_class.return_value = client

        result = runner.invoke(
            app, ["enrichment", "force", "meeting-1", "--admin", "a", "--reason", "r"]
        )

        assert result.exit_code == 1

    def test_force_requires_reason(self, runner):
        result = runner.invoke(app, ["enrichment", "force", "meeting-1", "--admin", "a"])

        assert result.exit_code != 0


class TestWorkerCommands:
    @patch("jobctl.commands.worker.setup_logging")
    @patch("jobctl.commands.worker.run_worker", new_callable=AsyncMock)
    def test_clean_stop(self, mock_run_worker, mock_setup_logging, runner):
        mock_run_worker.return_value = Mock(lease_lost=False)

        result = runner.invoke(app, ["worker", "run"])

        assert result.exit_code == 0
        assert "Worker stopped" in result.stdout

    @patch("jobctl.commands.worker.setup_logging")
    @patch("jobctl.commands.worker.run_worker", new_callable=AsyncMock)
    def test_lease_loss_exits_nonzero(self, mock_run_worker, mock_setup_logging, runner):
        mock_run_worker.return_value = Mock(lease_lost=True)

        result = runner.invoke(app, ["worker", "run"])

        assert result.exit_code == 1
        assert "losing its lease" in result.stdout
