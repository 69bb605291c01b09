"""Content persistence service."""
import os
import random
import re
import uuid
from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import asc, desc, func, select

from app.db.models import Content

# Public query names accepted for ordering
ORDERABLE_COLUMNS = {
    "createdAt": Content.created_at,
    "updatedAt": Content.updated_at,
    "name": Content.name,
    "type": Content.type,
    "duration": Content.duration,
}


def safe_filename(original_name: str) -> str:
    """Unique on-disk name for an upload: sanitized base, a UUID, original extension."""
    base, ext = os.path.splitext(os.path.basename(original_name))
    safe_base = re.sub(r"[^a-zA-Z0-9\-_]", "_", base)
    return f"{safe_base}-{uuid.uuid4()}{ext}"


def store_upload(upload_dir: str, original_name: str, data: bytes) -> str:
    """Write an uploaded file and return its stored name."""
    os.makedirs(upload_dir, exist_ok=True)
    filename = safe_filename(original_name)
    with open(os.path.join(upload_dir, filename), "wb") as f:
        f.write(data)
    return filename


class ContentService:
    """Service for persisting content records."""

    def __init__(self, db: AsyncSession, rng: Optional[random.Random] = None):
        self.db = db
        self._rng = rng or random.Random()

    async def list_contents(
        self, page: int = 1, limit: int = 10, order_by: str = "createdAt", order: str = "desc"
    ) -> Tuple[int, List[Content]]:
        """Return the total count and one page of contents."""
        column = ORDERABLE_COLUMNS.get(order_by)
        if column is None:
            raise ValueError(f"Cannot order by {order_by}")
        direction = asc if order.lower() == "asc" else desc

        total = await self.db.scalar(select(func.count()).select_from(Content))
        result = await self.db.execute(
            select(Content).order_by(direction(column)).offset((page - 1) * limit).limit(limit)
        )
        return total or 0, list(result.scalars().all())

    async def create_content(
        self,
        name: str,
        type: str,
        origin_file_name: Optional[str] = None,
        file_path: Optional[str] = None,
        duration: Optional[int] = None,
        scene_id: Optional[str] = None,
    ) -> Content:
        """Create a new content record."""
        content = Content(
            name=name,
            type=type,
            origin_file_name=origin_file_name,
            file_path=file_path,
            duration=duration,
            scene_id=scene_id,
        )
        self.db.add(content)
        await self.db.commit()
        await self.db.refresh(content)
        return content

    async def get_content(self, content_id: str) -> Optional[Content]:
        """Get content by id."""
        result = await self.db.execute(select(Content).where(Content.content_id == content_id))
        return result.scalar_one_or_none()

    async def random_content(self, exclude_id: Optional[str] = None) -> Optional[Content]:
        """Pick a random content in use, other than ``exclude_id``."""
        conditions = [Content.use_at.is_(True)]
        if exclude_id:
            conditions.append(Content.content_id != exclude_id)

        total = await self.db.scalar(select(func.count()).select_from(Content).where(*conditions))
        if not total:
            return None

        result = await self.db.execute(
            select(Content)
            .where(*conditions)
            .order_by(Content.created_at)
            .offset(self._rng.randrange(total))
            .limit(1)
        )
        return result.scalar_one_or_none()
