"""Run model."""

from sqlalchemy import JSON, Column, DateTime, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.database import Base, utcnow

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Run(Base):
    """Run is the persisted document of one idea evaluation."""

    __tablename__ = "runs"

    id = Column(Text, primary_key=True)  # run_YYYY-MM-DD_xxxxxxxx
    status = Column(Text, nullable=False)  # 'INIT', 'AGENTS_RUNNING', 'SYNTHESIZING', 'VETOED', 'COMPLETED', 'FAILED'
    idea_text = Column(Text, nullable=False)
    preset_id = Column(Text, nullable=False, default="default")
    conversation = Column(JSONDocument, nullable=False, default=list)  # Ordered turns
    result = Column(JSONDocument)
    run_metadata = Column("metadata", JSONDocument)
    error_message = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)
    ttl = Column(Integer, nullable=False)
