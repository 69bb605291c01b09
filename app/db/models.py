"""Database models."""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.ext.declarative import declarative_base

Base = declarative_base()

CONTENT_TYPES = ("IMAGE", "VIDEO", "SCENE")


class Content(Base):
    """Uploaded media or scene content."""

    __tablename__ = "contents"

    content_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    type = Column(String(16), nullable=False)  # IMAGE, VIDEO, SCENE
    origin_file_name = Column(String, nullable=True)
    file_path = Column(String, nullable=True)  # Public path under /uploads
    duration = Column(Integer, nullable=True)  # Seconds
    scene_id = Column(String, nullable=True)
    use_at = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
