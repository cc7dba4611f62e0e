"""
Tests for the Replicate REST client
"""
import httpx
import pytest
from unittest.mock import patch, Mock
from vibephoto.exceptions import AIError
from vibephoto.services import ai_config
from vibephoto.services.replicate_provider import (
    ReplicateProvider,
    normalize_output_urls,
    parse_replicate_datetime,
)


@pytest.fixture
def provider():
    return ReplicateProvider(api_token="r8_test", username="vibephoto")


def _response(status_code=200, json=None):
    return httpx.Response(status_code, json=json if json is not None else {})


class TestHelpers:
    """Output and timestamp normalisation"""

    def test_normalize_output_urls(self):
        assert normalize_output_urls("https://a/1.png") == ["https://a/1.png"]
        assert normalize_output_urls(["https://a/1.png", None, ""]) == ["https://a/1.png"]
        assert normalize_output_urls({"url": "https://a/v.mp4"}) == ["https://a/v.mp4"]
        assert normalize_output_urls(None) == []

    def test_parse_replicate_datetime(self):
        parsed = parse_replicate_datetime("2026-05-01T12:30:00.123Z")
        assert parsed.tzinfo is None
        assert parsed.hour == 12
        assert parse_replicate_datetime("not a date") is None

    def test_missing_token(self):
        with patch("vibephoto.services.replicate_provider.config") as mock_config:
            mock_config.REPLICATE_API_TOKEN = None
            with pytest.raises(AIError) as exc_info:
                ReplicateProvider()
        assert exc_info.value.code == "AUTH_ERROR"


class TestRequests:
    """HTTP behaviour and error mapping"""

    def test_get_prediction_normalizes(self, provider):
        payload = {
            "id": "pred-1",
            "status": "succeeded",
            "output": ["https://replicate.delivery/1.png"],
            "error": {"detail": "x"},
        }
        with patch("vibephoto.services.replicate_provider.httpx.request", return_value=_response(json=payload)) as request:
            prediction = provider.get_prediction("pred-1")

        method, url = request.call_args[0]
        assert method == "GET"
        assert url == "https://api.replicate.com/v1/predictions/pred-1"
        assert request.call_args[1]["headers"]["Authorization"] == "Bearer r8_test"
        assert prediction["urls"] == ["https://replicate.delivery/1.png"]
        assert prediction["error"] == "{'detail': 'x'}"

    @pytest.mark.parametrize("status_code,code,http_status", [
        (401, "AUTH_ERROR", 401),
        (429, "RATE_LIMIT_ERROR", 429),
        (422, "INVALID_INPUT", 400),
        (500, "PREDICTION_STATUS_ERROR", 502),
    ])
    def test_error_mapping(self, provider, status_code, code, http_status):
        with patch("vibephoto.services.replicate_provider.httpx.request",
                   return_value=_response(status_code, {"detail": "nope"})):
            with pytest.raises(AIError) as exc_info:
                provider.get_prediction("pred-1")
        assert exc_info.value.code == code
        assert exc_info.value.status_code == http_status

    def test_network_error(self, provider):
        with patch("vibephoto.services.replicate_provider.httpx.request",
                   side_effect=httpx.ConnectError("refused")):
            with pytest.raises(AIError) as exc_info:
                provider.get_prediction("pred-1")
        assert exc_info.value.status_code == 502

    def test_cancel_prediction_swallows_errors(self, provider):
        with patch("vibephoto.services.replicate_provider.httpx.request", return_value=_response(404)):
            assert provider.cancel_prediction("pred-1") is False


class TestPredictions:
    """Prediction bodies"""

    def test_generate_image_with_destination_uses_model_endpoint(self, provider):
        with patch.object(provider, "_make_request", return_value={"id": "p1", "status": "starting"}) as request:
            provider.generate_image(
                "TOK1234 portrait", 1024, 1024, 28, 4.0,
                destination="vibephoto/my-model-1", webhook_url="https://api.vibephoto.test/api/webhooks/replicate"
            )

        method, endpoint, body = request.call_args[0]
        assert endpoint == "/models/vibephoto/my-model-1/predictions"
        assert "version" not in body
        assert body["webhook"] == "https://api.vibephoto.test/api/webhooks/replicate"
        assert body["webhook_events_filter"] == ["start", "output", "logs", "completed"]

    def test_generate_image_defaults_to_flux(self, provider):
        with patch.object(provider, "_make_request", return_value={"id": "p1"}) as request:
            provider.generate_image("portrait", 512, 512, 20, 4.0, seed=7, webhook_url="http://localhost/hook")

        endpoint, body = request.call_args[0][1], request.call_args[0][2]
        assert endpoint == "/predictions"
        assert body["version"] == ai_config.MODEL_VERSIONS["flux_generation"].split(":")[1]
        assert body["input"]["seed"] == 7
        assert "webhook" not in body

    def test_create_prediction_requires_model_or_version(self, provider):
        with pytest.raises(AIError):
            provider.create_prediction({"prompt": "x"})

    def test_edit_image_waits_for_terminal_status(self, provider):
        with patch.object(provider, "create_prediction", return_value={"id": "p1", "status": "processing"}), \
                patch.object(provider, "wait_for_prediction", return_value={"id": "p1", "status": "succeeded"}) as wait:
            result = provider.edit_image("make it blue", ["https://a/1.png"])
        wait.assert_called_once_with("p1")
        assert result["status"] == "succeeded"

    def test_wait_for_prediction_polls_until_terminal(self, provider):
        statuses = iter(["starting", "processing", "succeeded"])
        with patch.object(provider, "get_prediction", side_effect=lambda _id: {"status": next(statuses)}):
            sleep = Mock()
            result = provider.wait_for_prediction("p1", sleep=sleep)
        assert result["status"] == "succeeded"
        assert sleep.call_count == 2


class TestTraining:
    """Model destinations and trainings"""

    def test_start_training(self, provider):
        responses = [{}, {"id": "train-1", "status": "starting"}]
        with patch.object(provider, "_make_request", side_effect=responses) as request:
            result = provider.start_training(
                "My Model", "https://bucket/photos.zip", trigger_word="TOK0042", class_word="woman",
                webhook_url="https://api.vibephoto.test/api/webhooks/training"
            )

        assert result["id"] == "train-1"
        assert result["destination"].startswith("vibephoto/my-model-")
        body = request.call_args_list[1][0][2]
        assert body["input"]["autocaption_suffix"] == " a photo of TOK0042 woman"
        assert body["input"]["input_images"] == "https://bucket/photos.zip"

    def test_existing_destination_is_reused(self, provider):
        error = AIError("HTTP 409: already exists", "MODEL_CREATION_ERROR", 502, {"provider_status": 409})
        with patch.object(provider, "_make_request", side_effect=error):
            assert provider.create_model_destination("my-model-1") == "vibephoto/my-model-1"

    def test_start_training_requires_images(self, provider):
        with pytest.raises(AIError) as exc_info:
            provider.start_training("My Model", "")
        assert exc_info.value.code == "INVALID_INPUT"

    def test_get_training_extracts_weights(self, provider):
        payload = {"id": "train-1", "status": "succeeded", "output": {"weights": "https://w.tar", "version": "v"}}
        with patch.object(provider, "_make_request", return_value=payload):
            training = provider.get_training("train-1")
        assert training["model_url"] == "https://w.tar"
