"""Garnished-to-date counter persisted per garnishment item."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_calc.models.base import Base, TimestampMixin


class GarnishmentCounter(Base, TimestampMixin):
    """Running total garnished against one court order."""

    __tablename__ = "garnishment_counter"

    item_id: Mapped[UUID] = mapped_column(primary_key=True)
    amount_garnished_to_date: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0")
    )
    total_amount_to_garnish: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint(
            "amount_garnished_to_date >= 0",
            name="garnishment_counter_non_negative",
        ),
        CheckConstraint(
            "status IN ('pending_approval', 'active', 'suspended', 'cancelled', 'completed')",
            name="garnishment_counter_status_check",
        ),
    )
