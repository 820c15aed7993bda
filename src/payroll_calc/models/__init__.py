"""SQLAlchemy models for persisted calculation state."""

from payroll_calc.models.base import Base, TimestampMixin
from payroll_calc.models.garnishment_counter import GarnishmentCounter

__all__ = [
    "Base",
    "TimestampMixin",
    "GarnishmentCounter",
]
