"""
Collection Service - user collections and the photo package catalog
"""
from sqlalchemy.orm import Session
from typing import Optional, List
import logging

from ..db.models import Collection, PhotoPackage

logger = logging.getLogger(__name__)

MAX_COLLECTION_NAME = 100


class CollectionService:
    def __init__(self, db: Session):
        self.db = db

    def list_collections(self, user_id: str) -> List[Collection]:
        return self.db.query(Collection).filter(
            Collection.user_id == user_id
        ).order_by(Collection.created_at.desc()).all()

    def get_collection(self, collection_id: str, user_id: str) -> Optional[Collection]:
        return self.db.query(Collection).filter(
            Collection.id == collection_id,
            Collection.user_id == user_id
        ).first()

    def create_collection(
        self,
        user_id: str,
        name: str,
        description: Optional[str] = None,
        is_public: bool = False
    ) -> Collection:
        name = (name or "").strip()
        if not name:
            raise ValueError("Collection name is required")
        if len(name) > MAX_COLLECTION_NAME:
            raise ValueError(f"Collection name must be {MAX_COLLECTION_NAME} characters or less")

        collection = Collection(
            user_id=user_id,
            name=name,
            description=description,
            is_public=is_public,
            image_urls=[],
        )
        self.db.add(collection)
        self.db.commit()
        self.db.refresh(collection)
        logger.info(f"Collection {collection.id} created for user {user_id}")
        return collection

    def add_image(self, collection_id: str, user_id: str, image_url: str) -> Collection:
        """Append an image URL; adding the same URL twice is a no-op"""
        collection = self.get_collection(collection_id, user_id)
        if not collection:
            raise LookupError("Collection not found")
        if not image_url:
            raise ValueError("image_url is required")

        urls = list(collection.image_urls or [])
        if image_url not in urls:
            # Reassign so the JSONB column is marked dirty
            collection.image_urls = urls + [image_url]
            self.db.commit()
        return collection

    def list_packages(self, category: Optional[str] = None) -> List[PhotoPackage]:
        query = self.db.query(PhotoPackage).filter(PhotoPackage.is_active.is_(True))
        if category:
            query = query.filter(PhotoPackage.category == category)
        return query.order_by(PhotoPackage.created_at.desc()).all()
