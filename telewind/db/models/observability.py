"""Observability tables."""

from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from .base import TimeStamped


class ErrorLog(TimeStamped, SQLModel, table=True):
    """One row per abandoned delivery; ``created_at`` is when it was recorded."""

    __tablename__ = "error_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    scope: str = Field(index=True, max_length=64)
    code: Optional[str] = Field(default=None, max_length=32, index=True)
    message: str
    context: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
