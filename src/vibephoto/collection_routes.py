"""
Collections and photo package catalog routes
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional

from .auth import get_current_user
from .db.engine import get_db
from .db.models import User
from .exceptions import to_http_exception
from .schemas import CollectionResponse, PhotoPackageResponse, dump, dump_all
from .services.collection_service import CollectionService

router = APIRouter(prefix="/api", tags=["collections"])


class CollectionCreate(BaseModel):
    name: str
    description: Optional[str] = None
    is_public: bool = False


class CollectionImage(BaseModel):
    image_url: str


def get_collection_service(db: Session = Depends(get_db)) -> CollectionService:
    return CollectionService(db)


@router.get("/collections")
async def list_collections(
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service)
):
    return {"collections": dump_all(CollectionResponse, service.list_collections(current_user.id))}


@router.post("/collections", status_code=status.HTTP_201_CREATED)
async def create_collection(
    data: CollectionCreate,
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service)
):
    try:
        collection = service.create_collection(current_user.id, data.name, data.description, data.is_public)
    except ValueError as e:
        raise to_http_exception(e)
    return dump(CollectionResponse, collection)


@router.get("/collections/{collection_id}")
async def get_collection(
    collection_id: str,
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service)
):
    collection = service.get_collection(collection_id, current_user.id)
    if not collection:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Collection not found")
    return dump(CollectionResponse, collection)


@router.post("/collections/{collection_id}/images")
async def add_collection_image(
    collection_id: str,
    data: CollectionImage,
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service)
):
    try:
        collection = service.add_image(collection_id, current_user.id, data.image_url)
    except (ValueError, LookupError) as e:
        raise to_http_exception(e)
    return dump(CollectionResponse, collection)


@router.get("/packages")
async def list_packages(
    category: Optional[str] = None,
    service: CollectionService = Depends(get_collection_service)
):
    """Active photo packages, optionally filtered by category"""
    return {"packages": dump_all(PhotoPackageResponse, service.list_packages(category))}
