"""
AI provider configuration and pure helpers
Model versions, plan quality settings, cost and time estimates, prompt checks
"""
import math
import random
import re
from typing import Dict, Any, Optional, Tuple

REPLICATE_API_BASE = "https://api.replicate.com/v1"

MODEL_VERSIONS = {
    "flux_training": "ostris/flux-dev-lora-trainer:26dce37af90b9d997eeb970d92e47de3064d46c300504ae376c75bef6a9022d2",
    "flux_generation": "black-forest-labs/flux-schnell:c846a69991daf4c0e5d016514849d14ee5b2e6846ce6b9d6f21369e564cfe51e",
    "video": "kwaivgi/kling-v2.1-master",
    "upscaler": "philz1337x/clarity-upscaler:dfad41707589d68ecdccd1dfa600d55a208f9310748e44bfe35b4a6291453d5e",
    "editor": "google/nano-banana",
    "editor_version": "adfd722f0c8b5abd782eac022a625a14fb812951de19618dfc4979f6651a00b4",
}

WEBHOOK_EVENTS_FILTER = ["start", "output", "logs", "completed"]

TRAINING_DEFAULTS = {
    "steps": 1000,
    "learning_rate": 0.0004,
    "batch_size": 1,
    "resolution": "512,768,1024",
    "lora_rank": 16,
    "trigger_word": "TOK",
    "class_word": "person",
}

QUALITY_SETTINGS = {
    "STARTER": {"max_steps": 500, "max_resolution": 512, "max_images": 10},
    "PREMIUM": {"max_steps": 1000, "max_resolution": 1024, "max_images": 50},
    "GOLD": {"max_steps": 2000, "max_resolution": 1536, "max_images": 100},
}

GENERATION_DEFAULTS = {
    "width": 1024,
    "height": 1024,
    "steps": 20,
    "guidance_scale": 7.5,
}

COSTS = {
    "training": {"base_steps": 1000, "cost_per_step": 0.001, "setup_cost": 5},
    "generation": {"cost_per_megapixel": 1, "cost_per_step": 0.1},
}

ASPECT_RATIO_DIMENSIONS = {
    "1:1": (1024, 1024),
    "4:3": (1152, 864),
    "3:4": (864, 1152),
    "16:9": (1344, 768),
    "9:16": (768, 1344),
    "3:2": (1216, 832),
    "2:3": (832, 1216),
}

TRIGGER_PREFIXES = ["TOK", "SUBJ", "PERS", "CHAR", "FACE"]
BANNED_PROMPT_WORDS = ["nude", "naked", "nsfw", "explicit", "sexual"]
MAX_PROMPT_LENGTH = 1000

# Class word used in autocaption suffix, keyed by AIModel.model_class
CLASS_WORDS = {
    "MAN": "man",
    "WOMAN": "woman",
    "BOY": "boy",
    "GIRL": "girl",
    "ANIMAL": "animal",
}


def generate_trigger_word() -> str:
    return f"{random.choice(TRIGGER_PREFIXES)}{random.randint(0, 9999):04d}"


def validate_prompt(prompt: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Return (is_valid, error_message)"""
    if not prompt or not prompt.strip():
        return False, "Prompt cannot be empty"
    if len(prompt) > MAX_PROMPT_LENGTH:
        return False, f"Prompt is too long (max {MAX_PROMPT_LENGTH} characters)"
    lowered = prompt.lower()
    for word in BANNED_PROMPT_WORDS:
        if word in lowered:
            return False, "Prompt contains inappropriate content"
    return True, None


def sanitize_prompt(prompt: str) -> str:
    cleaned = re.sub(r"[^\w\s\-,.!?]", "", prompt.strip())
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned[:MAX_PROMPT_LENGTH]


def estimate_training_time(image_count: int, steps: int, resolution: int = 512) -> int:
    """Training time in minutes"""
    image_multiplier = math.sqrt(max(image_count, 1)) / 3
    resolution_multiplier = (resolution / 512) ** 1.5
    return math.ceil(steps * 0.1 * image_multiplier * resolution_multiplier)


def estimate_generation_time(width: int, height: int, steps: int) -> int:
    """Generation time in seconds"""
    megapixels = (width * height) / (1024 * 1024)
    return math.ceil(5 + steps * 0.5 + megapixels * 2)


def calculate_training_cost(steps: int, resolution: int = 1024) -> int:
    training = COSTS["training"]
    step_cost = (steps / training["base_steps"]) * training["cost_per_step"] * training["base_steps"]
    resolution_multiplier = (resolution / 512) ** 2
    return math.ceil((training["setup_cost"] + step_cost) * resolution_multiplier)


def calculate_generation_cost(width: int, height: int, steps: int = 20) -> int:
    generation = COSTS["generation"]
    megapixels = (width * height) / (1024 * 1024)
    return math.ceil(megapixels * generation["cost_per_megapixel"] + (steps / 20) * generation["cost_per_step"])


def calculate_model_quality(photo_count: int, avg_resolution: float, diversity_score: float) -> int:
    """0-100 score: photos up to 40 points, resolution up to 30, diversity up to 30"""
    photo_score = min(photo_count / 15, 1) * 40
    resolution_score = min(avg_resolution / 1024, 1) * 30
    return round(photo_score + resolution_score + diversity_score * 30)


def parse_resolution(resolution: Optional[str], default: Tuple[int, int] = (512, 512)) -> Tuple[int, int]:
    """'768x1024' -> (768, 1024)"""
    match = re.match(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$", resolution or "")
    if not match:
        return default
    return int(match.group(1)), int(match.group(2))


def get_dimensions_for_aspect_ratio(aspect_ratio: str) -> Tuple[int, int]:
    return ASPECT_RATIO_DIMENSIONS.get(aspect_ratio, ASPECT_RATIO_DIMENSIONS["1:1"])


def get_optimal_steps(plan: str, width: int, height: int, has_custom_model: bool = False) -> int:
    """Inference steps tuned per plan, raised for large outputs and custom LoRA models"""
    base = {"STARTER": 40, "PREMIUM": 20, "GOLD": 28}.get(plan, 28)
    megapixels = (width * height) / 1_000_000

    steps = base
    if megapixels > 2.25:
        steps = min(steps + 12, 50)
    elif megapixels > 1.5:
        steps = min(steps + 8, 40)

    if has_custom_model:
        steps = min(steps + 4, 35)
    return steps


def get_optimal_guidance(plan: str, width: int, height: int) -> float:
    guidance = {"STARTER": 4.0, "PREMIUM": 4.0, "GOLD": 4.5}.get(plan, 4.0)
    if (width * height) / 1_000_000 > 1.5:
        guidance = min(guidance + 0.5, 5.0)
    return guidance


def get_quality_settings(plan: str) -> Dict[str, Any]:
    return QUALITY_SETTINGS.get(plan, QUALITY_SETTINGS["STARTER"])


def build_training_model_name(name: str, timestamp_ms: int) -> str:
    """'My Model' -> 'my-model-1700000000000'"""
    slug = re.sub(r"\s+", "-", name.strip().lower())
    return f"{slug}-{timestamp_ms}"


def extract_model_url(output: Any) -> Optional[str]:
    """Trained model reference from a training output (weights, falling back to version)"""
    if not output:
        return None
    if isinstance(output, str):
        return output
    if isinstance(output, dict):
        for field in ("weights", "version", "url"):
            value = output.get(field)
            if isinstance(value, str) and value:
                return value
    return None
