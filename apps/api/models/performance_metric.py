"""PerformanceMetric model for per-source prediction outcomes and trust snapshots."""

import uuid

from sqlalchemy import Column, DateTime, Float, Index, JSON, String
from sqlalchemy.sql import func

from database import Base


class PerformanceMetric(Base):
    """Append-only metric row: prediction outcomes, accuracy and trust snapshots."""

    __tablename__ = "performance_metrics"
    __table_args__ = (
        Index("ix_performance_metrics_source_kind_recorded", "source", "kind", "recorded_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    source = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False, index=True)
    value = Column(Float, nullable=False, default=0.0)
    metadata_json = Column(JSON, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
