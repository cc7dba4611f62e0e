"""
Tests for Replicate status mapping
"""
import pytest
from vibephoto.db.models import GenerationStatus, VideoStatus
from vibephoto.utils.status_mapping import (
    map_replicate_to_generation_status,
    map_replicate_to_video_status,
    map_db_to_replicate_status,
    is_terminal_replicate_status,
    is_completed,
    is_failed,
    is_processing,
)


class TestGenerationStatusMapping:
    """Replicate -> Generation"""

    @pytest.mark.parametrize("replicate_status,expected", [
        ("starting", GenerationStatus.PROCESSING),
        ("processing", GenerationStatus.PROCESSING),
        ("succeeded", GenerationStatus.COMPLETED),
        ("failed", GenerationStatus.FAILED),
        ("canceled", GenerationStatus.CANCELLED),
        ("cancelled", GenerationStatus.CANCELLED),
    ])
    def test_known_statuses(self, replicate_status, expected):
        assert map_replicate_to_generation_status(replicate_status) == expected

    def test_case_insensitive(self):
        assert map_replicate_to_generation_status("SUCCEEDED") == GenerationStatus.COMPLETED

    def test_unknown_status_stays_processing(self):
        assert map_replicate_to_generation_status("queued") == GenerationStatus.PROCESSING
        assert map_replicate_to_generation_status(None) == GenerationStatus.PROCESSING


class TestVideoStatusMapping:
    """Replicate -> VideoGeneration"""

    def test_starting_is_kept_for_videos(self):
        assert map_replicate_to_video_status("starting") == VideoStatus.STARTING

    def test_terminal_statuses(self):
        assert map_replicate_to_video_status("succeeded") == VideoStatus.COMPLETED
        assert map_replicate_to_video_status("failed") == VideoStatus.FAILED
        assert map_replicate_to_video_status("canceled") == VideoStatus.CANCELLED

    def test_unknown_status_defaults_to_starting(self):
        assert map_replicate_to_video_status("weird") == VideoStatus.STARTING


class TestReverseMapping:
    """Local -> Replicate"""

    def test_accepts_enum_and_string(self):
        assert map_db_to_replicate_status(GenerationStatus.COMPLETED) == "succeeded"
        assert map_db_to_replicate_status("CANCELLED") == "canceled"
        assert map_db_to_replicate_status("pending") == "processing"

    def test_unknown_defaults_to_processing(self):
        assert map_db_to_replicate_status(None) == "processing"


class TestStatusPredicates:
    """Terminal / completed / failed / processing checks"""

    def test_terminal_replicate_statuses(self):
        assert is_terminal_replicate_status("succeeded")
        assert is_terminal_replicate_status("Canceled")
        assert not is_terminal_replicate_status("processing")

    def test_local_predicates(self):
        assert is_completed(GenerationStatus.COMPLETED)
        assert is_failed("CANCELLED")
        assert is_failed(VideoStatus.FAILED)
        assert is_processing("STARTING")
        assert is_processing(GenerationStatus.PENDING)
        assert not is_processing("COMPLETED")
