"""Content management API endpoints."""
import logging
from datetime import datetime
from math import ceil
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.database import get_db
from app.db.models import CONTENT_TYPES
from app.services.content.repository import ContentService, store_upload

router = APIRouter()
logger = logging.getLogger(__name__)

# Last content served by /random, never served twice in a row
_previous_random_id: Optional[str] = None


class ContentResponse(BaseModel):
    """Content response model."""

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    content_id: str
    name: str
    type: str
    origin_file_name: Optional[str] = None
    file_path: Optional[str] = None
    duration: Optional[int] = None
    scene_id: Optional[str] = None
    use_at: bool
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    """Pagination block of a content listing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_count: int
    current_page: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool
    page_size: int


class ContentListResponse(BaseModel):
    """Paginated content listing."""

    pagination: Pagination
    contents: List[ContentResponse]


@router.get("/api/contents", response_model=ContentListResponse)
async def list_contents(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    order_by: str = Query("createdAt", alias="orderBy"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
):
    """List contents, newest first by default."""
    service = ContentService(db)
    try:
        total, contents = await service.list_contents(page, limit, order_by, order)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"[CONTENTS] Failed to fetch contents: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch contents")

    total_pages = ceil(total / limit)
    return ContentListResponse(
        pagination=Pagination(
            total_count=total,
            current_page=page,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
            page_size=limit,
        ),
        contents=[ContentResponse.model_validate(content) for content in contents],
    )


@router.post("/api/contents", response_model=ContentResponse, status_code=201)
async def upload_content(
    request: Request,
    name: Optional[str] = Form(None),
    type: Optional[str] = Form(None),
    duration: Optional[int] = Form(None),
    scene_id: Optional[str] = Form(None, alias="sceneId"),
    file: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
):
    """Create a content record, storing the uploaded file if any."""
    logger.info(
        f"[CONTENTS] Upload received - Name: {name}, Type: {type}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    if not name or not type:
        raise HTTPException(status_code=400, detail="name and type are required")

    normalized_type = type.upper()
    if normalized_type not in CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="type must be one of IMAGE, VIDEO, SCENE")

    has_file = file is not None and bool(file.filename)
    if normalized_type in ("IMAGE", "VIDEO") and not has_file:
        raise HTTPException(status_code=400, detail=f"A file is required for {normalized_type} content")

    origin_file_name = None
    file_path = None
    try:
        if has_file:
            stored_name = store_upload(settings.upload_dir, file.filename, await file.read())
            origin_file_name = file.filename
            file_path = f"/uploads/{stored_name}"

        content = await ContentService(db).create_content(
            name=name,
            type=normalized_type,
            origin_file_name=origin_file_name,
            file_path=file_path,
            duration=duration,
            scene_id=scene_id,
        )
    except Exception as e:
        logger.error(f"[CONTENTS] Upload failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to upload content")

    logger.info(f"[CONTENTS] Content created - Id: {content.content_id}, Path: {file_path}")
    return ContentResponse.model_validate(content)


@router.get("/api/contents/random", response_model=ContentResponse)
async def random_content(db: AsyncSession = Depends(get_db)):
    """Random content in use, different from the one served last."""
    global _previous_random_id

    try:
        content = await ContentService(db).random_content(exclude_id=_previous_random_id)
    except Exception as e:
        logger.error(f"[CONTENTS] Failed to fetch random content: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch random contents")

    if content is None:
        raise HTTPException(status_code=404, detail="No content available")

    _previous_random_id = content.content_id
    return ContentResponse.model_validate(content)
