"""SQLAlchemy ORM models."""

from app.models.run import Run
from app.models.job import Job

__all__ = [
    "Run",
    "Job",
]
