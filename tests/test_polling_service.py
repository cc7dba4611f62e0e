"""
Tests for prediction polling
"""
import pytest
from unittest.mock import patch, Mock, MagicMock
from apscheduler.jobstores.base import JobLookupError
from vibephoto.db.models import Generation
from vibephoto.exceptions import AIError
from vibephoto.services.polling_service import PredictionPoller, calculate_poll_interval

RECONCILER = "vibephoto.services.reconciliation_service.ReconciliationService"


@pytest.fixture
def provider():
    return Mock()


@pytest.fixture
def poller(mock_db, provider):
    return PredictionPoller(
        scheduler=Mock(),
        session_factory=lambda: mock_db,
        provider_factory=lambda: provider,
        max_attempts=3,
    )


class TestPollInterval:
    """Backoff"""

    def test_backoff(self):
        assert calculate_poll_interval(0) == 5.0
        assert calculate_poll_interval(1) == 7.5
        assert calculate_poll_interval(2) == 11.25

    def test_capped(self):
        assert calculate_poll_interval(10) == 30.0


class TestPredictionPoller:
    """Scheduling and applying results"""

    def test_start_schedules_once(self, poller):
        assert poller.start_polling("pred_1", "gen-1", "user-1") is True
        assert poller.start_polling("pred_1", "gen-1", "user-1") is False
        poller.scheduler.add_job.assert_called_once()
        assert poller.scheduler.add_job.call_args.kwargs["id"] == "poll_pred_1"
        assert poller.get_polling_status()["active_polls"] == 1

    def test_non_terminal_reschedules(self, poller, provider):
        poller.start_polling("pred_1", "gen-1", "user-1")
        provider.get_prediction.return_value = {"status": "processing"}

        assert poller.poll_once("pred_1") == "processing"
        assert poller.scheduler.add_job.call_count == 2
        assert poller.get_polling_status()["jobs"][0]["attempts"] == 1

    def test_terminal_applies_and_stops(self, poller, provider, mock_db):
        generation = Generation(id="gen-1", user_id="user-1", status="PROCESSING")
        mock_db.query.return_value.filter.return_value.first.return_value = generation
        poller.start_polling("pred_1", "gen-1", "user-1")
        provider.get_prediction.return_value = {"status": "succeeded", "urls": ["https://replicate.delivery/a.png"]}

        with patch(RECONCILER) as reconciler_cls:
            assert poller.poll_once("pred_1") == "succeeded"

        reconciler_cls.return_value.reconcile_generation.assert_called_once()
        assert reconciler_cls.return_value.reconcile_generation.call_args.kwargs["processed_via"] == "polling"
        poller.scheduler.remove_job.assert_called_once_with("poll_pred_1")
        assert poller.get_polling_status()["active_polls"] == 0
        mock_db.close.assert_called_once()

    def test_video_terminal_uses_reconcile_video(self, poller, provider, mock_db):
        poller.start_polling("pred_v", "vid-1", "user-1", kind="video")
        provider.get_prediction.return_value = {"status": "failed", "error": "boom"}

        with patch(RECONCILER) as reconciler_cls:
            poller.poll_once("pred_v")

        reconciler_cls.return_value.reconcile_video.assert_called_once()
        reconciler_cls.return_value.reconcile_generation.assert_not_called()

    def test_gives_up_after_max_attempts(self, poller, provider, mock_db):
        generation = Generation(id="gen-1", user_id="user-1", status="PROCESSING")
        mock_db.query.return_value.filter.return_value.first.return_value = generation
        poller.start_polling("pred_1", "gen-1", "user-1")
        provider.get_prediction.side_effect = AIError("Replicate unavailable", "provider_error", 503)

        with patch(RECONCILER) as reconciler_cls:
            for _ in range(3):
                assert poller.poll_once("pred_1") is None

        message = reconciler_cls.return_value.fail_generation.call_args[0][1]
        assert message == "Polling failed after 3 attempts: Replicate unavailable"
        assert poller.get_polling_status()["active_polls"] == 0

    def test_unknown_prediction(self, poller, provider):
        assert poller.poll_once("pred_x") is None
        provider.get_prediction.assert_not_called()

    def test_stop_when_job_already_ran(self, poller):
        poller.start_polling("pred_1", "gen-1", "user-1")
        poller.scheduler.remove_job.side_effect = JobLookupError("poll_pred_1")
        poller.stop_polling("pred_1")
        assert poller.get_polling_status()["active_polls"] == 0

    def test_stop_all(self, poller):
        poller.start_polling("pred_1", "gen-1", "user-1")
        poller.start_polling("pred_2", "gen-2", "user-1")
        assert poller.stop_all_polling() == 2

    def test_not_registered_when_scheduler_stopped(self, poller):
        poller.scheduler.running = False

        for i in range(50):
            assert poller.start_polling(f"pred_{i}", f"gen-{i}", "user-1") is False

        poller.scheduler.add_job.assert_not_called()
        assert poller.get_polling_status() == {"active_polls": 0, "jobs": []}

    def test_state_access_holds_lock(self, poller, provider):
        poller.start_polling("pred_1", "gen-1", "user-1")
        provider.get_prediction.return_value = {"status": "processing"}
        poller._lock = MagicMock()

        poller.poll_once("pred_1")
        assert poller._lock.__enter__.call_count == 2

        poller._lock.reset_mock()
        status = poller.get_polling_status()
        poller._lock.__enter__.assert_called_once()
        assert status["jobs"][0]["attempts"] == 1
