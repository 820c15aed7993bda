"""Services around the calculation core."""

from payroll_calc.services.counter_store import (
    GarnishmentCounterStore,
    InMemoryGarnishmentCounterStore,
    SqlGarnishmentCounterStore,
)
from payroll_calc.services.state_machine import (
    InvalidTransitionError,
    PayrollItemStateMachine,
)

__all__ = [
    "GarnishmentCounterStore",
    "InMemoryGarnishmentCounterStore",
    "SqlGarnishmentCounterStore",
    "InvalidTransitionError",
    "PayrollItemStateMachine",
]
