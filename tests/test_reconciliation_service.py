"""
Tests for applying Replicate job state to local rows
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch, Mock
from vibephoto.db.models import Generation, VideoGeneration, AIModel
from vibephoto.exceptions import AIError
from vibephoto.services.reconciliation_service import (
    ReconciliationService,
    STORAGE_FAILURE_FAIL,
    STORAGE_FAILURE_KEEP_TEMPORARY,
    calculate_training_quality_score,
    parse_training_progress,
)

STORE_IMAGES = "vibephoto.services.reconciliation_service.download_and_store_images"
STORE_VIDEO = "vibephoto.services.reconciliation_service.download_and_store_video"


def _generation(status="PROCESSING", prompt="portrait at the beach"):
    return Generation(
        id="gen-1", user_id="user-1", model_id="model-1", prompt=prompt, status=status,
        job_id="pred_1", created_at=datetime.utcnow() - timedelta(minutes=2),
    )


@pytest.fixture
def service(mock_db):
    svc = ReconciliationService(mock_db, provider=Mock(), storage=Mock())
    svc.credit_manager = Mock()
    svc.credit_manager.refund_credits.return_value = 10
    return svc


class TestTrainingHelpers:
    """Trainer log parsing and scoring"""

    def test_progress_from_percent_bar(self):
        logs = "flux_train_replicate:  40%|####      | 400/1000\nflux_train_replicate:  62%|######    | 620/1000"
        assert parse_training_progress(logs) == 62

    def test_progress_from_steps(self):
        assert parse_training_progress("Step 250/1000 loss=0.12") == 25

    def test_no_progress(self):
        assert parse_training_progress("") is None
        assert parse_training_progress("loading weights") is None

    def test_quality_score(self):
        assert calculate_training_quality_score({"status": "succeeded", "metrics": {"total_time": 1200}}) == 90
        assert calculate_training_quality_score({"status": "succeeded", "metrics": {"total_time": 9000}}) == 80
        assert calculate_training_quality_score({"status": "failed", "logs": "CUDA error"}) == 70


class TestReconcileGeneration:
    """Generations and upscales"""

    def test_terminal_rows_are_untouched(self, service):
        generation = _generation(status="COMPLETED")
        result = service.reconcile_generation(generation, {"status": "failed"})
        assert result["action"] == "already_final"
        assert generation.status == "COMPLETED"
        service.credit_manager.refund_credits.assert_not_called()

    def test_still_processing(self, service):
        generation = _generation(status="PENDING")
        result = service.reconcile_generation(generation, {"status": "starting"})
        assert result["action"] == "processing"
        assert generation.status == "PROCESSING"

    def test_failed_refunds(self, service, mock_db):
        generation = _generation()
        result = service.reconcile_generation(generation, {"status": "failed", "error": "NSFW content detected"})
        assert result == {"id": "gen-1", "action": "failed", "status": "FAILED", "refunded": 10}
        assert generation.error_message == "NSFW content detected"
        service.credit_manager.refund_credits.assert_called_once_with(
            "user-1", "generation", "gen-1", reason="NSFW content detected"
        )
        mock_db.commit.assert_called_once()

    def test_upscale_refund_uses_upscale_action(self, service):
        generation = _generation(prompt="[UPSCALED] portrait")
        service.reconcile_generation(generation, {"status": "canceled"})
        assert generation.status == "CANCELLED"
        assert service.credit_manager.refund_credits.call_args[0][1] == "upscale"

    def test_succeeded_without_output_fails(self, service):
        generation = _generation()
        result = service.reconcile_generation(generation, {"status": "succeeded", "output": None})
        assert result["action"] == "failed"
        assert generation.error_message == "No output returned"

    def test_succeeded_stores_images(self, service):
        generation = _generation()
        stored = {
            "success": True,
            "permanent_urls": ["https://cdn/generated/user-1/images/a.png"],
            "thumbnail_urls": ["https://cdn/generated/user-1/thumbnails/a.png"],
            "storage_keys": ["generated/user-1/images/a.png"],
            "errors": [],
        }
        with patch(STORE_IMAGES, return_value=stored) as store:
            result = service.reconcile_generation(
                generation, {"status": "succeeded", "output": ["https://replicate.delivery/a.png"]}, processed_via="polling"
            )

        assert store.call_args[0][2] == "images"
        assert result["action"] == "completed"
        assert result["image_count"] == 1
        assert generation.status == "COMPLETED"
        assert generation.image_urls == stored["permanent_urls"]
        assert generation.processing_time > 0
        assert generation.extra_metadata["processed_via"] == "polling"
        assert generation.extra_metadata["original_urls"] == ["https://replicate.delivery/a.png"]

    def test_storage_failure_keeps_temporary_urls(self, service):
        generation = _generation()
        with patch(STORE_IMAGES, return_value={"success": False, "errors": [{"error": "S3 down"}]}):
            result = service.reconcile_generation(
                generation, {"status": "succeeded", "urls": ["https://replicate.delivery/a.png"]},
                on_storage_failure=STORAGE_FAILURE_KEEP_TEMPORARY,
            )
        assert result["action"] == "completed"
        assert generation.image_urls == ["https://replicate.delivery/a.png"]
        assert "S3 down" in generation.extra_metadata["storage_warning"]

    def test_storage_failure_fails_in_cron_mode(self, service):
        generation = _generation()
        with patch(STORE_IMAGES, side_effect=RuntimeError("S3 down")):
            result = service.reconcile_generation(
                generation, {"status": "succeeded", "urls": ["https://replicate.delivery/a.png"]},
                on_storage_failure=STORAGE_FAILURE_FAIL,
            )
        assert result["action"] == "failed"
        assert generation.error_message == "Auto-sync storage failed: S3 down"
        service.credit_manager.refund_credits.assert_called_once()

    def test_fetches_prediction_when_missing(self, service):
        generation = _generation()
        service.provider.get_prediction.return_value = {"status": "processing"}
        service.reconcile_generation(generation)
        service.provider.get_prediction.assert_called_once_with("pred_1")

    def test_no_job(self, service):
        generation = _generation()
        generation.job_id = None
        assert service.reconcile_generation(generation)["action"] == "no_job"


class TestTimeoutGeneration:
    """Stuck generations"""

    def test_times_out_old_processing(self, service):
        generation = _generation()
        generation.created_at = datetime(2026, 1, 1, 12, 0)
        result = service.timeout_generation(generation, timeout_minutes=10, now=datetime(2026, 1, 1, 12, 15))
        assert result["action"] == "timed_out"
        assert result["minutes_ago"] == 15
        assert generation.status == "FAILED"

    def test_recent_generation_unchanged(self, service):
        generation = _generation()
        generation.created_at = datetime(2026, 1, 1, 12, 0)
        result = service.timeout_generation(generation, timeout_minutes=10, now=datetime(2026, 1, 1, 12, 5))
        assert result["action"] == "no_change"
        assert generation.status == "PROCESSING"


class TestReconcileVideo:
    """Videos"""

    def _video(self):
        return VideoGeneration(id="vid-1", user_id="user-1", status="STARTING", job_id="pred_v", progress=0)

    def test_processing_sets_progress(self, service):
        video = self._video()
        service.reconcile_video(video, {"status": "processing"})
        assert video.status == "PROCESSING"
        assert video.progress == 10
        assert video.processing_started_at is not None

    def test_completed(self, service):
        video = self._video()
        stored = {"video_url": "https://cdn/generated/user-1/videos/v.mp4",
                  "storage_key": "generated/user-1/videos/v.mp4", "size_bytes": 1024}
        with patch(STORE_VIDEO, return_value=stored):
            result = service.reconcile_video(video, {"status": "succeeded", "output": "https://replicate.delivery/v.mp4"})
        assert result["action"] == "completed"
        assert video.progress == 100
        assert video.video_url == stored["video_url"]

    def test_failed_refunds_video(self, service):
        video = self._video()
        service.reconcile_video(video, {"status": "failed", "error": "boom"})
        assert video.status == "FAILED"
        service.credit_manager.refund_credits.assert_called_once_with("user-1", "video", "vid-1", reason="boom")


class TestReconcileTraining:
    """Model trainings"""

    def _model(self, status="TRAINING"):
        return AIModel(id="model-1", user_id="user-1", status=status, training_job_id="train_1", progress=0)

    def test_progress(self, service):
        model = self._model()
        result = service.reconcile_training(model, {"status": "processing", "logs": "  45%|####"})
        assert result["action"] == "processing"
        assert model.progress == 45

    def test_succeeded_sets_model_url(self, service):
        model = self._model()
        result = service.reconcile_training(model, {
            "status": "succeeded",
            "model_url": "owner/model-1:abc123",
            "metrics": {"total_time": 900},
        })
        assert result["action"] == "completed"
        assert model.status == "READY"
        assert model.model_url == "owner/model-1:abc123"
        assert model.quality_score == 90

    def test_failed_refunds_training(self, service):
        model = self._model()
        service.reconcile_training(model, {"status": "failed", "error": "bad photos"})
        assert model.status == "ERROR"
        service.credit_manager.refund_credits.assert_called_once_with(
            "user-1", "training", "model-1", reason="bad photos"
        )

    def test_ready_model_is_final(self, service):
        assert service.reconcile_training(self._model("READY"), {"status": "failed"})["action"] == "already_final"


class TestSyncProcessingJobs:
    """Cron batch"""

    def _queries(self, mock_db, generations, upscales):
        gen_query = Mock()
        gen_query.filter.return_value.filter.return_value.order_by.return_value.limit.return_value.all.side_effect = [
            generations, upscales
        ]
        empty_query = Mock()
        empty_query.filter.return_value.limit.return_value.all.return_value = []
        mock_db.query.side_effect = lambda model: gen_query if model is Generation else empty_query

    def test_counts_updates_and_errors(self, service, mock_db):
        first, second = _generation(), _generation()
        second.id = "gen-2"
        self._queries(mock_db, [first, second], [])
        sleep = Mock()

        with patch.object(service, "reconcile_generation", side_effect=[
            {"id": "gen-1", "action": "completed", "status": "COMPLETED"},
            AIError("Replicate unavailable", "provider_error", 503),
        ]) as reconcile:
            summary = service.sync_processing_jobs(sleep=sleep)

        assert summary["processed"] == 2
        assert summary["updated"] == 1
        assert summary["errors"] == 1
        assert summary["results"][1]["error"] == "Replicate unavailable"
        assert reconcile.call_args.kwargs["on_storage_failure"] == STORAGE_FAILURE_FAIL
        sleep.assert_called_once()
        mock_db.rollback.assert_called_once()
