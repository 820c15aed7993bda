"""Garnished-to-date counter stores with atomic increments."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import and_, case, select, update
from sqlalchemy.orm import Session, sessionmaker

from payroll_calc.calculators.errors import CounterNotFoundError
from payroll_calc.calculators.line_builder import LineItemBuilder
from payroll_calc.calculators.types import PayrollItemStatus
from payroll_calc.database import init_db
from payroll_calc.models import GarnishmentCounter
from payroll_calc.services.state_machine import PayrollItemStateMachine

logger = logging.getLogger(__name__)


class GarnishmentCounterStore(Protocol):
    """Where garnished-to-date totals live between payroll runs.

    ``increment`` must be atomic and bounded: concurrent increments of
    one item are never lost, and the total never passes the item's
    lifetime ``total_amount_to_garnish``. ``mark_completed`` on an
    already completed item is a no-op.
    """

    def register(
        self,
        item_id: UUID,
        garnished_to_date: Decimal = Decimal("0"),
        total_amount_to_garnish: Decimal | None = None,
        status: PayrollItemStatus = PayrollItemStatus.ACTIVE,
    ) -> None: ...

    def increment(self, item_id: UUID, amount: Decimal) -> Decimal: ...

    def get(self, item_id: UUID) -> Decimal: ...

    def status(self, item_id: UUID) -> PayrollItemStatus: ...

    def mark_completed(self, item_id: UUID) -> None: ...


@dataclass
class _Counter:
    garnished_to_date: Decimal
    total_amount_to_garnish: Decimal | None
    status: PayrollItemStatus


class InMemoryGarnishmentCounterStore:
    """Counter store held in process memory, guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[UUID, _Counter] = {}

    def register(
        self,
        item_id: UUID,
        garnished_to_date: Decimal = Decimal("0"),
        total_amount_to_garnish: Decimal | None = None,
        status: PayrollItemStatus = PayrollItemStatus.ACTIVE,
    ) -> None:
        with self._lock:
            self._counters[item_id] = _Counter(garnished_to_date, total_amount_to_garnish, status)

    def increment(self, item_id: UUID, amount: Decimal) -> Decimal:
        """Add to the counter, capped at the lifetime total; returns the new total."""
        with self._lock:
            counter = self._require(item_id)
            new_total = counter.garnished_to_date + amount
            if counter.total_amount_to_garnish is not None:
                new_total = min(new_total, counter.total_amount_to_garnish)
            counter.garnished_to_date = LineItemBuilder.round_to_cents(new_total)
            return counter.garnished_to_date

    def get(self, item_id: UUID) -> Decimal:
        with self._lock:
            return self._require(item_id).garnished_to_date

    def status(self, item_id: UUID) -> PayrollItemStatus:
        with self._lock:
            return self._require(item_id).status

    def mark_completed(self, item_id: UUID) -> None:
        with self._lock:
            counter = self._require(item_id)
            if counter.status == PayrollItemStatus.COMPLETED:
                return
            PayrollItemStateMachine.validate_transition(counter.status, PayrollItemStatus.COMPLETED)
            counter.status = PayrollItemStatus.COMPLETED

    def _require(self, item_id: UUID) -> _Counter:
        counter = self._counters.get(item_id)
        if counter is None:
            raise CounterNotFoundError(item_id)
        return counter


class SqlGarnishmentCounterStore:
    """Counter store backed by the ``garnishment_counter`` table.

    Increments are a single ``UPDATE`` that adds the amount and caps it
    at the lifetime total, so the database serialises concurrent writers.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    @classmethod
    def from_database(cls) -> SqlGarnishmentCounterStore:
        """Store over the application database configured in settings."""
        _, factory = init_db()
        return cls(factory)

    def register(
        self,
        item_id: UUID,
        garnished_to_date: Decimal = Decimal("0"),
        total_amount_to_garnish: Decimal | None = None,
        status: PayrollItemStatus = PayrollItemStatus.ACTIVE,
    ) -> None:
        with self.session_factory.begin() as session:
            session.merge(
                GarnishmentCounter(
                    item_id=item_id,
                    amount_garnished_to_date=garnished_to_date,
                    total_amount_to_garnish=total_amount_to_garnish,
                    status=status.value,
                )
            )

    def increment(self, item_id: UUID, amount: Decimal) -> Decimal:
        """Add to the counter, capped at the lifetime total; returns the new total."""
        added = GarnishmentCounter.amount_garnished_to_date + amount
        total = GarnishmentCounter.total_amount_to_garnish
        with self.session_factory.begin() as session:
            result = session.execute(
                update(GarnishmentCounter)
                .where(GarnishmentCounter.item_id == item_id)
                .values(
                    amount_garnished_to_date=case(
                        (and_(total.is_not(None), added > total), total),
                        else_=added,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise CounterNotFoundError(item_id)
            # Same transaction: the row stays locked until commit
            new_total = session.execute(
                select(GarnishmentCounter.amount_garnished_to_date).where(
                    GarnishmentCounter.item_id == item_id
                )
            ).scalar_one()
        logger.debug("Garnishment %s incremented by %s to %s", item_id, amount, new_total)
        return LineItemBuilder.round_to_cents(Decimal(str(new_total)))

    def get(self, item_id: UUID) -> Decimal:
        with self.session_factory() as session:
            counter = session.get(GarnishmentCounter, item_id)
            if counter is None:
                raise CounterNotFoundError(item_id)
            return LineItemBuilder.round_to_cents(Decimal(str(counter.amount_garnished_to_date)))

    def status(self, item_id: UUID) -> PayrollItemStatus:
        with self.session_factory() as session:
            counter = session.get(GarnishmentCounter, item_id)
            if counter is None:
                raise CounterNotFoundError(item_id)
            return PayrollItemStatus(counter.status)

    def mark_completed(self, item_id: UUID) -> None:
        with self.session_factory.begin() as session:
            counter = session.execute(
                select(GarnishmentCounter)
                .where(GarnishmentCounter.item_id == item_id)
                .with_for_update()
            ).scalar_one_or_none()
            if counter is None:
                raise CounterNotFoundError(item_id)
            if counter.status == PayrollItemStatus.COMPLETED.value:
                return
            PayrollItemStateMachine.validate_transition(
                PayrollItemStatus(counter.status), PayrollItemStatus.COMPLETED
            )
            counter.status = PayrollItemStatus.COMPLETED.value
