"""
Tests for collections
"""
import pytest
from vibephoto.db.models import Collection
from vibephoto.services.collection_service import CollectionService


class TestCollectionService:
    """Collection management"""

    def test_create_collection(self, mock_db):
        collection = CollectionService(mock_db).create_collection("user-123", "  Viagem  ", is_public=True)
        assert collection.name == "Viagem"
        assert collection.image_urls == []
        assert collection.is_public is True
        mock_db.add.assert_called_once_with(collection)

    def test_name_required(self, mock_db):
        with pytest.raises(ValueError):
            CollectionService(mock_db).create_collection("user-123", "   ")

    def test_name_too_long(self, mock_db):
        with pytest.raises(ValueError):
            CollectionService(mock_db).create_collection("user-123", "x" * 101)

    def test_add_image_is_idempotent(self, mock_db):
        collection = Collection(id="col-1", user_id="user-123", name="Viagem", image_urls=["a.png"])
        mock_db.query.return_value.filter.return_value.first.return_value = collection
        service = CollectionService(mock_db)

        service.add_image("col-1", "user-123", "b.png")
        service.add_image("col-1", "user-123", "b.png")

        assert collection.image_urls == ["a.png", "b.png"]
        assert mock_db.commit.call_count == 1

    def test_add_image_unknown_collection(self, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = None
        with pytest.raises(LookupError):
            CollectionService(mock_db).add_image("col-1", "user-123", "b.png")
