import unittest

from mpx_sync.adapters.mpx.metadata import MEDIA_SCHEMA, PLAYER_SCHEMA, extract, schema_for
from tests.conftest import make_remote_object


class TestMediaSchema(unittest.TestCase):
    def setUp(self):
        self.obj = make_remote_object(
            "7",
            content=[{"duration": 93.5, "url": "https://cdn.example.test/7.mp4"}, {"duration": 1}],
            categories=[{"name": "News"}, {"name": ""}, {"title": "no name"}, {"name": "Sport"}],
            thumbnails=[{"url": "https://cdn.example.test/7.jpg"}],
            **{"pl1$seriesName": "Evening"},
        )

    def test_plain_fields(self):
        assert extract(MEDIA_SCHEMA, self.obj, "title") == "Video 7"
        assert extract(MEDIA_SCHEMA, self.obj, "guid") == "guid-7"

    def test_object_type_prefix_is_optional(self):
        assert extract(MEDIA_SCHEMA, self.obj, "Media:title") == "Video 7"
        assert MEDIA_SCHEMA.has_attribute("Media:guid")

    def test_first_media_file_properties(self):
        assert extract(MEDIA_SCHEMA, self.obj, "MediaFile:duration") == 93.5
        assert extract(MEDIA_SCHEMA, self.obj, "MediaFile:url") == "https://cdn.example.test/7.mp4"
        assert extract(MEDIA_SCHEMA, self.obj, "MediaFile:width") is None

    def test_media_file_without_content(self):
        assert extract(MEDIA_SCHEMA, make_remote_object("8"), "MediaFile:duration") is None

    def test_category_names(self):
        assert extract(MEDIA_SCHEMA, self.obj, "categories") == ["News", "Sport"]

    def test_thumbnail_falls_back_to_first_thumbnail(self):
        assert extract(MEDIA_SCHEMA, self.obj, "defaultThumbnailUrl") == (
            "https://cdn.example.test/7.jpg"
        )
        with_default = make_remote_object("9", defaultThumbnailUrl="https://cdn.example.test/d.jpg")
        assert extract(MEDIA_SCHEMA, with_default, "defaultThumbnailUrl") == (
            "https://cdn.example.test/d.jpg"
        )

    def test_custom_fields(self):
        assert extract(MEDIA_SCHEMA, self.obj, "pl1$seriesName") == "Evening"
        assert extract(MEDIA_SCHEMA, self.obj, "pl1$missing") is None

    def test_custom_fields_accept_object_type_prefix(self):
        assert extract(MEDIA_SCHEMA, self.obj, "Media:pl1$seriesName") == "Evening"
        assert extract(MEDIA_SCHEMA, self.obj, "Media:pl1$missing") is None

    def test_unknown_attribute_is_none(self):
        assert extract(MEDIA_SCHEMA, self.obj, "doesNotExist") is None
        assert not MEDIA_SCHEMA.has_attribute("doesNotExist")


class TestSchemaLookup(unittest.TestCase):
    def test_known_types(self):
        assert schema_for("Media") is MEDIA_SCHEMA
        assert schema_for("Player") is PLAYER_SCHEMA

    def test_unknown_type_exposes_common_fields(self):
        schema = schema_for("Release")

        assert schema.object_type == "Release"
        assert "title" in schema.attribute_names()
        assert "MediaFile:duration" not in schema.attribute_names()
        assert extract(schema, make_remote_object("3"), "Release:guid") == "guid-3"


if __name__ == "__main__":
    unittest.main()
