"""
Replicate Provider - REST client for training, prediction, upscale, edit and video jobs
"""
from typing import Optional, Dict, Any, List, Callable
from datetime import datetime
import logging
import time
from urllib.parse import urlencode

import httpx

from ..config import config
from ..exceptions import AIError
from ..utils.status_mapping import is_terminal_replicate_status
from . import ai_config

logger = logging.getLogger(__name__)


def normalize_output_urls(output: Any) -> List[str]:
    """Prediction output as a list of URLs (string, list or {'url': ...})"""
    if not output:
        return []
    if isinstance(output, str):
        return [output]
    if isinstance(output, list):
        return [item for item in output if isinstance(item, str) and item]
    if isinstance(output, dict) and isinstance(output.get("url"), str):
        return [output["url"]]
    return []


def parse_replicate_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def build_webhook_url(job_type: str, record_id: str, user_id: str) -> str:
    """
    Unified Replicate webhook URL for a job

    Replicate cannot send custom headers, so the shared secret travels in the
    query string whenever REPLICATE_WEBHOOK_SECRET is configured.
    """
    params = {"type": job_type, "id": record_id, "userId": user_id}
    if config.REPLICATE_WEBHOOK_SECRET:
        params["secret"] = config.REPLICATE_WEBHOOK_SECRET
    return f"{config.APP_URL}/api/webhooks/replicate?{urlencode(params)}"


def accepts_webhook(webhook_url: Optional[str]) -> bool:
    # Replicate only delivers to public HTTPS endpoints
    return bool(webhook_url) and webhook_url.startswith("https://")


def should_poll(webhook_url: Optional[str]) -> bool:
    """Poll when Replicate will not call back; development always polls as well"""
    return not accepts_webhook(webhook_url) or config.is_dev


class ReplicateProvider:
    """Replicate API client"""

    def __init__(
        self,
        api_token: Optional[str] = None,
        username: Optional[str] = None,
        base_url: str = ai_config.REPLICATE_API_BASE,
        timeout: float = 30.0
    ):
        """
        Initialize Replicate client

        Args:
            api_token: Replicate API token (or REPLICATE_API_TOKEN)
            username: Owner of model destinations created for trainings
            base_url: API base URL
            timeout: Request timeout in seconds
        """
        self.api_token = api_token or config.REPLICATE_API_TOKEN
        if not self.api_token:
            raise AIError("Replicate API token not configured", "AUTH_ERROR", 500)
        self.username = username or config.REPLICATE_USERNAME
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        error_code: str = "REPLICATE_API_ERROR",
        extra_headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """Make HTTP request to Replicate API, raising AIError on failure"""
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json"
        }
        if extra_headers:
            headers.update(extra_headers)

        try:
            response = httpx.request(
                method,
                url,
                headers=headers,
                json=data if method != "GET" else None,
                timeout=timeout or self.timeout
            )
        except httpx.HTTPError as e:
            logger.error(f"Replicate request {method} {endpoint} failed: {e}")
            raise AIError(f"Network error contacting Replicate: {e}", error_code, 502)

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail") or response.text
            except ValueError:
                detail = response.text
            message = f"HTTP {response.status_code}: {detail or response.reason_phrase}"
            logger.error(f"Replicate API error on {method} {endpoint}: {message}")
            raise self._map_error(response.status_code, message, error_code)

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _map_error(status_code: int, message: str, default_code: str) -> AIError:
        if status_code == 401:
            return AIError(
                f"Authentication failed: {message}. Check your Replicate API token.",
                "AUTH_ERROR",
                401
            )
        if status_code == 429:
            return AIError(
                f"Replicate API rate limit exceeded: {message}. Please try again later.",
                "RATE_LIMIT_ERROR",
                429
            )
        if status_code == 422:
            return AIError(message, "INVALID_INPUT", 400, {"provider_status": status_code})
        return AIError(message, default_code, 502, {"provider_status": status_code})

    @staticmethod
    def _webhook_fields(webhook_url: Optional[str]) -> Dict[str, Any]:
        if accepts_webhook(webhook_url):
            return {"webhook": webhook_url, "webhook_events_filter": ai_config.WEBHOOK_EVENTS_FILTER}
        if webhook_url:
            logger.info(f"Skipping non-HTTPS webhook URL: {webhook_url}")
        return {}

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def create_model_destination(self, model_name: str, description: Optional[str] = None) -> str:
        """Create the private model receiving trained weights; returns 'owner/name'"""
        destination = f"{self.username}/{model_name}"
        try:
            self._make_request(
                "POST",
                "/models",
                {
                    "owner": self.username,
                    "name": model_name,
                    "description": description or f"Custom AI model: {model_name}",
                    "visibility": "private",
                    "hardware": "cpu"
                },
                error_code="MODEL_CREATION_ERROR"
            )
        except AIError as e:
            if "already exists" in e.message.lower() or e.details.get("provider_status") == 409:
                logger.info(f"Model destination already exists, reusing {destination}")
                return destination
            if e.code in ("AUTH_ERROR", "RATE_LIMIT_ERROR"):
                raise
            raise AIError(f"Failed to create model destination: {e.message}", "MODEL_CREATION_ERROR", 502)

        logger.info(f"Model destination created: {destination}")
        return destination

    def start_training(
        self,
        name: str,
        input_images_url: str,
        trigger_word: Optional[str] = None,
        class_word: Optional[str] = None,
        webhook_url: Optional[str] = None,
        steps: Optional[int] = None,
        learning_rate: Optional[float] = None,
        batch_size: Optional[int] = None,
        resolution: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Start a FLUX LoRA training

        Returns:
            Dict with id, status, destination, trigger_word, created_at
        """
        if not name or not input_images_url:
            raise AIError("Invalid training request: missing name or images", "INVALID_INPUT", 400)

        defaults = ai_config.TRAINING_DEFAULTS
        trigger = trigger_word or defaults["trigger_word"]
        model_name = ai_config.build_training_model_name(name, int(time.time() * 1000))
        destination = self.create_model_destination(model_name, f"AI model trained for {name}")

        model_path, version_id = ai_config.MODEL_VERSIONS["flux_training"].split(":")
        body = {
            "destination": destination,
            "input": {
                "input_images": input_images_url,
                "trigger_word": trigger,
                "steps": steps or defaults["steps"],
                "learning_rate": learning_rate or defaults["learning_rate"],
                "batch_size": batch_size or defaults["batch_size"],
                "resolution": resolution or defaults["resolution"],
                "lora_rank": defaults["lora_rank"],
                "autocaption": True,
                "autocaption_suffix": f" a photo of {trigger} {class_word or defaults['class_word']}",
            },
        }
        body.update(self._webhook_fields(webhook_url))

        training = self._make_request(
            "POST",
            f"/models/{model_path}/versions/{version_id}/trainings",
            body,
            error_code="TRAINING_START_ERROR"
        )
        logger.info(f"Training created with ID {training.get('id')} -> {destination}")
        return {
            "id": training.get("id"),
            "status": training.get("status", "starting"),
            "destination": destination,
            "trigger_word": trigger,
            "created_at": training.get("created_at"),
        }

    def get_training(self, training_id: str) -> Dict[str, Any]:
        training = self._make_request("GET", f"/trainings/{training_id}", error_code="TRAINING_STATUS_ERROR")
        return {
            "id": training.get("id", training_id),
            "status": training.get("status"),
            "output": training.get("output"),
            "model_url": ai_config.extract_model_url(training.get("output")),
            "logs": training.get("logs") or "",
            "metrics": training.get("metrics") or {},
            "error": training.get("error"),
            "created_at": training.get("created_at"),
            "completed_at": training.get("completed_at"),
        }

    def cancel_training(self, training_id: str) -> bool:
        try:
            self._make_request("POST", f"/trainings/{training_id}/cancel")
            return True
        except AIError as e:
            logger.warning(f"Failed to cancel training {training_id}: {e.message}")
            return False

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def create_prediction(
        self,
        input_data: Dict[str, Any],
        version: Optional[str] = None,
        model: Optional[str] = None,
        webhook_url: Optional[str] = None,
        wait: bool = False,
        error_code: str = "GENERATION_START_ERROR"
    ) -> Dict[str, Any]:
        """
        Create a prediction against a version ('owner/name:hash' or bare hash)
        or against a model's latest version ('owner/name')
        """
        body: Dict[str, Any] = {"input": input_data}
        body.update(self._webhook_fields(webhook_url))
        extra_headers = {"Prefer": "wait"} if wait else None
        timeout = 65.0 if wait else None

        if model:
            endpoint = f"/models/{model}/predictions"
        else:
            if not version:
                raise AIError("A model or version is required to create a prediction", "INVALID_INPUT", 400)
            body["version"] = version.split(":", 1)[1] if ":" in version else version
            endpoint = "/predictions"

        prediction = self._make_request("POST", endpoint, body, error_code=error_code,
                                        extra_headers=extra_headers, timeout=timeout)
        logger.info(f"Prediction {prediction.get('id')} created ({prediction.get('status')})")
        return prediction

    def get_prediction(self, prediction_id: str) -> Dict[str, Any]:
        prediction = self._make_request("GET", f"/predictions/{prediction_id}", error_code="PREDICTION_STATUS_ERROR")
        return self._normalize_prediction(prediction, prediction_id)

    @staticmethod
    def _normalize_prediction(prediction: Dict[str, Any], prediction_id: Optional[str] = None) -> Dict[str, Any]:
        error = prediction.get("error")
        return {
            "id": prediction.get("id", prediction_id),
            "status": prediction.get("status"),
            "output": prediction.get("output"),
            "urls": normalize_output_urls(prediction.get("output")),
            "error": error if error is None or isinstance(error, str) else str(error),
            "logs": prediction.get("logs") or "",
            "input": prediction.get("input") or {},
            "metrics": prediction.get("metrics") or {},
            "created_at": prediction.get("created_at"),
            "completed_at": prediction.get("completed_at"),
        }

    def cancel_prediction(self, prediction_id: str) -> bool:
        try:
            self._make_request("POST", f"/predictions/{prediction_id}/cancel")
            return True
        except AIError as e:
            logger.warning(f"Failed to cancel prediction {prediction_id}: {e.message}")
            return False

    def wait_for_prediction(
        self,
        prediction_id: str,
        max_attempts: int = 30,
        interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep
    ) -> Dict[str, Any]:
        """Poll a prediction until it reaches a terminal status"""
        prediction = self.get_prediction(prediction_id)
        attempts = 1
        while not is_terminal_replicate_status(prediction["status"]) and attempts < max_attempts:
            sleep(interval)
            prediction = self.get_prediction(prediction_id)
            attempts += 1
        return prediction

    def generate_image(
        self,
        prompt: str,
        width: int,
        height: int,
        steps: int,
        guidance_scale: float,
        num_outputs: int = 1,
        negative_prompt: Optional[str] = None,
        seed: Optional[int] = None,
        model_version: Optional[str] = None,
        destination: Optional[str] = None,
        webhook_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """Start image generation with a trained destination model, a version or base FLUX"""
        input_data = {
            "prompt": prompt,
            "width": width,
            "height": height,
            "num_inference_steps": steps,
            "guidance_scale": guidance_scale,
            "num_outputs": num_outputs,
        }
        if seed is not None:
            input_data["seed"] = seed
        if negative_prompt:
            input_data["negative_prompt"] = negative_prompt

        if destination:
            return self.create_prediction(input_data, model=destination, webhook_url=webhook_url)
        version = model_version if model_version and not model_version.startswith("http") else None
        return self.create_prediction(
            input_data,
            version=version or ai_config.MODEL_VERSIONS["flux_generation"],
            webhook_url=webhook_url
        )

    def upscale_image(self, image_url: str, options: Dict[str, Any], webhook_url: Optional[str] = None) -> Dict[str, Any]:
        input_data = dict(options)
        input_data["image"] = image_url
        return self.create_prediction(
            input_data,
            version=ai_config.MODEL_VERSIONS["upscaler"],
            webhook_url=webhook_url,
            error_code="UPSCALE_ERROR"
        )

    def edit_image(self, prompt: str, image_urls: List[str], output_format: str = "png") -> Dict[str, Any]:
        """Run the image editor synchronously and return the finished prediction"""
        prediction = self.create_prediction(
            {"prompt": prompt, "image_input": image_urls, "output_format": output_format},
            version=ai_config.MODEL_VERSIONS["editor_version"],
            wait=True,
            error_code="EDIT_ERROR"
        )
        if not is_terminal_replicate_status(prediction.get("status")):
            return self.wait_for_prediction(prediction["id"])
        return self._normalize_prediction(prediction)

    def generate_video(
        self,
        prompt: str,
        duration: int,
        aspect_ratio: str,
        negative_prompt: Optional[str] = None,
        start_image: Optional[str] = None,
        webhook_url: Optional[str] = None
    ) -> Dict[str, Any]:
        input_data = {
            "prompt": prompt,
            "duration": duration,
            "aspect_ratio": aspect_ratio,
            "negative_prompt": negative_prompt or "",
        }
        if start_image:
            input_data["start_image"] = start_image
        return self.create_prediction(
            input_data,
            model=ai_config.MODEL_VERSIONS["video"],
            webhook_url=webhook_url,
            error_code="VIDEO_GENERATION_ERROR"
        )

    def validate_model(self, model_url: str) -> bool:
        """True when 'owner/name:version' resolves to an existing version"""
        if not model_url or ":" not in model_url:
            return False
        owner_name, version_id = model_url.split(":", 1)
        try:
            self._make_request("GET", f"/models/{owner_name}/versions/{version_id}")
            return True
        except AIError as e:
            logger.warning(f"Model validation failed for {model_url}: {e.message}")
            return False


_replicate_provider: Optional[ReplicateProvider] = None


def get_replicate_provider() -> ReplicateProvider:
    """Shared ReplicateProvider configured from environment"""
    global _replicate_provider
    if _replicate_provider is None:
        _replicate_provider = ReplicateProvider()
    return _replicate_provider
