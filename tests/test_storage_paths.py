"""
Tests for the object storage key layout
"""
import re
import pytest
from vibephoto.utils.storage_paths import (
    build_s3_key,
    build_key,
    build_thumbnail_key,
    build_poster_key,
    generate_unique_filename,
    get_category_for_media_type,
    parse_storage_key,
    is_consistent_key,
    convert_legacy_key,
    extension_from_content_type,
    content_type_from_extension,
)

KEY_PATTERN = re.compile(r"^generated/user-1/(images|videos|edited|upscaled|thumbnails)/[a-z0-9]{10}_\d+\.[a-z0-9]+$")


class TestBuildKeys:
    """Key construction"""

    def test_unique_filename_format(self):
        filename = generate_unique_filename(".PNG")
        assert re.match(r"^[a-z0-9]{10}_\d{13}\.png$", filename)

    def test_unique_filenames_differ(self):
        assert generate_unique_filename() != generate_unique_filename()

    def test_build_s3_key(self):
        assert build_s3_key("user-1", "images", "a.png") == "generated/user-1/images/a.png"

    def test_build_s3_key_rejects_unknown_category(self):
        with pytest.raises(ValueError, match="Invalid storage category"):
            build_s3_key("user-1", "photos", "a.png")

    def test_build_s3_key_requires_user(self):
        with pytest.raises(ValueError):
            build_s3_key("", "images", "a.png")

    @pytest.mark.parametrize("media_type,category", [
        ("generated", "images"),
        ("video", "videos"),
        ("edit", "edited"),
        ("upscale", "upscaled"),
        ("thumbnail", "thumbnails"),
    ])
    def test_build_key_maps_media_type(self, media_type, category):
        key = build_key(media_type, "user-1")
        assert KEY_PATTERN.match(key)
        assert key.split("/")[2] == category

    def test_unknown_media_type(self):
        with pytest.raises(ValueError, match="Unknown media type"):
            get_category_for_media_type("audio")

    def test_thumbnail_and_poster_keys(self):
        assert build_thumbnail_key("user-1").startswith("generated/user-1/thumbnails/")
        assert build_poster_key("user-1").endswith(".jpg")


class TestParseKeys:
    """Current and legacy layouts"""

    def test_parse_current_key(self):
        parsed = parse_storage_key("generated/user-1/videos/abc_123.mp4")
        assert parsed == {
            "format": "current",
            "user_id": "user-1",
            "category": "videos",
            "filename": "abc_123.mp4",
        }

    def test_parse_legacy_key(self):
        parsed = parse_storage_key("user-1/generated/gen-9_2.png")
        assert parsed["format"] == "legacy"
        assert parsed["category"] == "images"
        assert parsed["generation_id"] == "gen-9"
        assert parsed["index"] == 2
        assert parsed["is_thumbnail"] is False

    def test_parse_legacy_thumbnail(self):
        parsed = parse_storage_key("user-1/generated/thumb_gen-9_0.png")
        assert parsed["category"] == "thumbnails"
        assert parsed["is_thumbnail"] is True

    def test_parse_invalid_keys(self):
        assert parse_storage_key("") is None
        assert parse_storage_key("just-a-file.png") is None
        assert parse_storage_key("generated/user-1/audio/a.mp3") is None

    def test_is_consistent_key(self):
        assert is_consistent_key("generated/user-1/images/a.png")
        assert is_consistent_key("generated/user-1/images/a.png", "user-1")
        assert not is_consistent_key("generated/user-1/images/a.png", "user-2")
        assert not is_consistent_key("user-1/generated/gen_0.png")

    def test_convert_legacy_key(self):
        new_key = convert_legacy_key("user-1/video/gen-1_0.mp4")
        assert new_key.startswith("generated/user-1/videos/")
        assert new_key.endswith(".mp4")

    def test_convert_current_key_is_identity(self):
        key = "generated/user-1/images/a.png"
        assert convert_legacy_key(key) == key

    def test_convert_unknown_key(self):
        assert convert_legacy_key("nope") is None


class TestContentTypes:
    """Extension <-> content type"""

    def test_extension_from_content_type(self):
        assert extension_from_content_type("image/jpeg; charset=binary") == "jpg"
        assert extension_from_content_type("video/mp4") == "mp4"
        assert extension_from_content_type(None, default="webp") == "webp"

    def test_content_type_from_extension(self):
        assert content_type_from_extension(".JPG") == "image/jpeg"
        assert content_type_from_extension("bin") == "application/octet-stream"
