# dream_diary_backend/infrastructure/db/models.py
from sqlalchemy import JSON, Column, DateTime, String, Text

from dream_diary_backend.infrastructure.db.meta import Base


class DreamRow(Base):
    __tablename__ = "dreams"

    id             = Column(String(36), primary_key=True)
    title          = Column(String(255), nullable=False, default="")
    audio_file_path = Column(String(500), nullable=True)
    transcription  = Column(Text, nullable=True)
    processed_data = Column(JSON, nullable=True)
    comic_images   = Column(JSON, nullable=False, default=dict)
    tags           = Column(JSON, nullable=False, default=list)
    mood           = Column(String(20), nullable=True, index=True)
    status         = Column(String(20), nullable=False, index=True)
    user_id        = Column(String(36), nullable=True, index=True)
    created_at     = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at     = Column(DateTime(timezone=True), nullable=False)
