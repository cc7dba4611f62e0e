"""
Tests for video generation
"""
import pytest
from unittest.mock import patch, Mock
from vibephoto.db.models import VideoGeneration
from vibephoto.config import config
from vibephoto.exceptions import AIError, InsufficientCreditsError
from vibephoto.services.video_service import (
    VideoService,
    calculate_video_credits,
    generate_enhanced_prompt,
    get_optimal_aspect_ratio,
    normalize_video_request,
    validate_source_image,
    validate_user_video_limits,
    validate_video_request,
)

MODULE = "vibephoto.services.video_service"


class TestVideoHelpers:
    """Pricing, prompts and validation"""

    @pytest.mark.parametrize("duration,quality,credits", [
        (5, "standard", 20), (10, "standard", 40), (5, "pro", 30), (10, "pro", 60),
    ])
    def test_credits(self, duration, quality, credits):
        assert calculate_video_credits(duration, quality) == credits

    def test_enhanced_prompt(self):
        assert generate_enhanced_prompt(" smiling ", "portrait", "9:16") == (
            "gentle breathing motion, subtle eye movement, natural portrait expression, smiling"
            ", vertical composition, portrait orientation"
        )

    def test_optimal_aspect_ratio(self):
        assert get_optimal_aspect_ratio(1920, 1080) == "16:9"
        assert get_optimal_aspect_ratio(1080, 1920) == "9:16"
        assert get_optimal_aspect_ratio(1000, 1000) == "1:1"

    def test_source_image(self):
        assert validate_source_image("https://cdn/a.png") is None
        assert validate_source_image("ftp://cdn/a.png") == "Image URL must be HTTP or HTTPS"
        assert validate_source_image(None) == "Invalid image URL"

    def test_request_defaults(self):
        request = normalize_video_request({"prompt": "  waves  "})
        assert request["prompt"] == "waves"
        assert request["duration"] == 5
        assert validate_video_request(request) == []

    def test_request_errors(self):
        errors = validate_video_request(normalize_video_request({
            "prompt": "", "duration": 7, "aspect_ratio": "4:3", "quality": "ultra", "template": "space",
        }))
        assert "Prompt is required" in errors
        assert "Duration must be one of: 5, 10" in errors
        assert "Aspect ratio must be one of: 16:9, 9:16, 1:1" in errors
        assert "Quality must be one of: standard, pro" in errors
        assert "Unknown template: space" in errors

    def test_limits(self):
        assert validate_user_video_limits("STARTER", 4, 10, "pro", 1)["allowed"] is True
        daily = validate_user_video_limits("STARTER", 5, 5, "standard", 0)
        assert daily["allowed"] is False and daily["upgrade_required"] is True
        concurrent = validate_user_video_limits("GOLD", 0, 5, "standard", 5)
        assert concurrent["allowed"] is False and concurrent["upgrade_required"] is False


class TestVideoService:
    """Creating and cancelling videos"""

    @pytest.fixture
    def service(self, mock_db):
        svc = VideoService(mock_db, provider=Mock(), storage=Mock(), enable_polling=False)
        svc.credit_manager = Mock()
        svc.credit_manager.get_user_credits.return_value = {"available": 100}
        svc.provider.generate_video.return_value = {"id": "pred_v"}
        mock_db.query.return_value.filter.return_value.count.return_value = 0
        return svc

    def test_create_image_to_video(self, service, mock_user):
        video = service.create_video(mock_user, {
            "prompt": "gentle smile", "source_image_url": "https://cdn/a.png", "quality": "pro",
        })

        assert video.job_id == "pred_v"
        assert video.credits_used == 30
        assert video.status == "STARTING"
        assert video.extra_metadata["mode"] == "image-to-video"
        assert service.credit_manager.deduct_credits.call_args[0][1:3] == (30, "video")
        kwargs = service.provider.generate_video.call_args.kwargs
        assert kwargs["start_image"] == "https://cdn/a.png"
        assert "type=video" in kwargs["webhook_url"]

    def test_polling_follows_webhook_registration(self, service, mock_user):
        service.enable_polling = True

        with patch(f"{MODULE}.polling_service.start_polling") as start_polling:
            service.create_video(mock_user, {"prompt": "waves"})
            start_polling.assert_not_called()

            with patch.object(config, "ENV", "dev"):
                service.create_video(mock_user, {"prompt": "waves"})
            start_polling.assert_called_once()
            assert start_polling.call_args[0][0] == "pred_v"
            assert start_polling.call_args.kwargs["kind"] == "video"

    def test_invalid_request(self, service, mock_user):
        with pytest.raises(ValueError):
            service.create_video(mock_user, {"prompt": "waves", "duration": 7})

    def test_daily_limit(self, service, mock_db, mock_user):
        mock_db.query.return_value.filter.return_value.count.return_value = 5
        with pytest.raises(PermissionError):
            service.create_video(mock_user, {"prompt": "waves"})

    def test_insufficient_credits(self, service, mock_user):
        service.credit_manager.get_user_credits.return_value = {"available": 10}
        with pytest.raises(InsufficientCreditsError):
            service.create_video(mock_user, {"prompt": "waves"})

    def test_provider_failure_refunds(self, service, mock_user):
        service.provider.generate_video.side_effect = AIError("Kling unavailable", "provider_error", 503)
        with patch(f"{MODULE}.ReconciliationService") as reconciler_cls:
            with pytest.raises(AIError):
                service.create_video(mock_user, {"prompt": "waves"})
        reconciler_cls.return_value.fail_video.assert_called_once()

    def test_cancel_running_video(self, service, mock_db):
        video = VideoGeneration(id="vid-1", user_id="user-1", status="PROCESSING", job_id="pred_v")
        mock_db.query.return_value.filter.return_value.first.return_value = video

        with patch(f"{MODULE}.ReconciliationService") as reconciler_cls:
            assert service.cancel_video("vid-1", "user-1") is video

        service.provider.cancel_prediction.assert_called_once_with("pred_v")
        reconciler_cls.return_value.fail_video.assert_called_once_with(video, "Cancelled by user", status="CANCELLED")

    def test_cannot_cancel_finished_video(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = VideoGeneration(
            id="vid-1", user_id="user-1", status="COMPLETED"
        )
        with pytest.raises(ValueError):
            service.cancel_video("vid-1", "user-1")

    def test_cannot_delete_running_video(self, service, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = VideoGeneration(
            id="vid-1", user_id="user-1", status="STARTING"
        )
        with pytest.raises(ValueError):
            service.delete_video("vid-1", "user-1")
