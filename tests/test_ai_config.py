"""
Tests for AI configuration helpers
"""
import re
from vibephoto.services import ai_config


class TestPromptHelpers:
    """Prompt validation and sanitising"""

    def test_validate_prompt(self):
        assert ai_config.validate_prompt("portrait at golden hour") == (True, None)
        assert ai_config.validate_prompt("   ") == (False, "Prompt cannot be empty")
        assert ai_config.validate_prompt("x" * 1001)[0] is False
        assert ai_config.validate_prompt("NSFW photo") == (False, "Prompt contains inappropriate content")

    def test_sanitize_prompt(self):
        assert ai_config.sanitize_prompt("hello @world!!  <b>") == "hello world!! b"

    def test_trigger_word_format(self):
        assert re.match(r"^(TOK|SUBJ|PERS|CHAR|FACE)\d{4}$", ai_config.generate_trigger_word())


class TestEstimates:
    """Time and cost estimates"""

    def test_training_time(self):
        assert ai_config.estimate_training_time(9, 1000, 512) == 100

    def test_generation_time(self):
        assert ai_config.estimate_generation_time(1024, 1024, 20) == 17

    def test_training_cost_scales_with_resolution(self):
        assert ai_config.calculate_training_cost(1000, 512) == 6
        assert ai_config.calculate_training_cost(1000, 1024) == 24

    def test_generation_cost(self):
        assert ai_config.calculate_generation_cost(1024, 1024, 20) == 2

    def test_model_quality(self):
        assert ai_config.calculate_model_quality(15, 1024, 1.0) == 100
        assert ai_config.calculate_model_quality(0, 0, 0) == 0


class TestGenerationTuning:
    """Steps, guidance and dimensions"""

    def test_optimal_steps(self):
        assert ai_config.get_optimal_steps("PREMIUM", 1024, 1024) == 20
        assert ai_config.get_optimal_steps("STARTER", 1536, 1536) == 50
        assert ai_config.get_optimal_steps("STARTER", 1024, 1024, has_custom_model=True) == 35

    def test_optimal_guidance(self):
        assert ai_config.get_optimal_guidance("GOLD", 1536, 1536) == 5.0
        assert ai_config.get_optimal_guidance("PREMIUM", 1024, 1024) == 4.0

    def test_parse_resolution(self):
        assert ai_config.parse_resolution("768x1024") == (768, 1024)
        assert ai_config.parse_resolution("large") == (512, 512)

    def test_aspect_ratio_dimensions(self):
        assert ai_config.get_dimensions_for_aspect_ratio("16:9") == (1344, 768)
        assert ai_config.get_dimensions_for_aspect_ratio("5:1") == (1024, 1024)

    def test_quality_settings_fallback(self):
        assert ai_config.get_quality_settings("GOLD")["max_steps"] == 2000
        assert ai_config.get_quality_settings("UNKNOWN") == ai_config.QUALITY_SETTINGS["STARTER"]


class TestTrainingOutput:
    """Model naming and trained weights"""

    def test_training_model_name(self):
        assert ai_config.build_training_model_name(" My  Model ", 1700000000000) == "my-model-1700000000000"

    def test_extract_model_url_prefers_weights(self):
        output = {"version": "owner/model:abc", "weights": "https://replicate.delivery/w.tar"}
        assert ai_config.extract_model_url(output) == "https://replicate.delivery/w.tar"

    def test_extract_model_url_falls_back_to_version(self):
        assert ai_config.extract_model_url({"version": "owner/model:abc"}) == "owner/model:abc"
        assert ai_config.extract_model_url("owner/model:abc") == "owner/model:abc"
        assert ai_config.extract_model_url(None) is None
