"""SQLAlchemy ORM models for k8gate."""

from k8gate.models.base import Base
from k8gate.models.state import StateEntry

__all__ = [
    "Base",
    "StateEntry",
]
