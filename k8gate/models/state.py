"""Persisted state entries for the database state backend."""

from __future__ import annotations

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from k8gate.models.base import Base


class StateEntry(Base):
    """One key of synchronized state, stored as JSON text."""

    __tablename__ = "state_entries"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)
