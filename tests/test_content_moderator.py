"""
Tests for prompt moderation
"""
from vibephoto.services.content_moderator import ContentModerator, analyze_prompt, generate_reason


class TestAnalyzePrompt:
    """Scoring without the database"""

    def test_clean_prompt_is_allowed(self):
        result = analyze_prompt("professional headshot in a modern office")
        assert result["is_allowed"] is True
        assert result["severity"] == "low"
        assert result["categories"] == []
        assert result["reason"] is None

    def test_medium_severity_below_threshold_is_allowed(self):
        result = analyze_prompt("a man with a drunk smile")
        assert result["categories"] == ["drugs"]
        assert result["severity"] == "medium"
        assert result["is_allowed"] is True

    def test_explicit_prompt_is_blocked(self):
        result = analyze_prompt("nude portrait")
        assert result["is_allowed"] is False
        assert result["severity"] == "high"
        assert result["reason"] == "Explicit or sexual content is not allowed"

    def test_minors_reason_takes_priority(self):
        result = analyze_prompt("young child naked")
        assert result["is_allowed"] is False
        assert "dangerous_combination" in result["categories"]
        assert result["reason"] == "Content involving minors is strictly prohibited"

    def test_confidence_is_capped(self):
        result = analyze_prompt("nude naked nsfw explicit porn sexual erotic")
        assert result["confidence"] == 1.0

    def test_repeat_offenders_are_blocked(self):
        result = analyze_prompt("professional headshot in a modern office", past_violations=3)
        assert result["is_allowed"] is False
        assert result["severity"] == "high"
        assert result["reason"] == "Content violates community guidelines"

    def test_generate_reason_default(self):
        assert generate_reason([]) == "Content violates community guidelines"


class TestContentModerator:
    """Violation history and logging"""

    def test_blocked_prompt_is_logged(self, mock_db):
        mock_db.query.return_value.filter.return_value.count.return_value = 0
        result = ContentModerator(mock_db).moderate_content("gore and blood", "user-1")

        assert result["is_allowed"] is False
        logged = mock_db.add.call_args[0][0]
        assert logged.action == "content_violation"
        assert logged.details["categories"] == ["violence"]
        mock_db.commit.assert_called_once()

    def test_allowed_prompt_is_not_logged(self, mock_db):
        mock_db.query.return_value.filter.return_value.count.return_value = 0
        result = ContentModerator(mock_db).moderate_content("portrait on a mountain", "user-1")

        assert result["is_allowed"] is True
        mock_db.add.assert_not_called()
