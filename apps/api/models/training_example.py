"""TrainingExample model for feedback-derived classifier training rows."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from sqlalchemy.sql import func

from database import Base


class TrainingExample(Base):
    """Labelled item produced by user acceptance, correction, or implicit signals."""

    __tablename__ = "training_examples"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    item_id = Column(String, nullable=True, index=True)
    url = Column(String, nullable=False)
    title = Column(String, nullable=True)
    category = Column(Integer, nullable=False, index=True)
    source = Column(String, nullable=False, index=True)
    corrected = Column(Boolean, nullable=False, default=False)
    metadata_json = Column(JSON, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
