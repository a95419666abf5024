from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from .models import IntentProjection, IntentStatus


class DisplayState(str, Enum):
    awaiting = "awaiting"
    approved = "approved"
    declined = "declined"
    canceled = "canceled"
    error = "error"
    expired = "expired"
    timeout = "timeout"


FINAL_STATES = frozenset(
    {
        DisplayState.approved,
        DisplayState.declined,
        DisplayState.canceled,
        DisplayState.error,
        DisplayState.expired,
        DisplayState.timeout,
    }
)

_COPY: dict[DisplayState, tuple[str, str]] = {
    DisplayState.awaiting: ("Waiting for payment", "Follow the instructions on the card terminal."),
    DisplayState.approved: ("Payment approved", "Sale completed."),
    DisplayState.declined: ("Payment declined", "Try again or use another payment method."),
    DisplayState.canceled: ("Payment canceled", "The payment was canceled on the terminal."),
    DisplayState.error: ("Payment error", "The payment could not be completed. Try again."),
    DisplayState.expired: ("Payment expired", "The payment window closed before a result arrived."),
    DisplayState.timeout: (
        "No confirmation yet",
        "Check the terminal before charging again. The cart was kept.",
    ),
}

_FROM_STATUS = {
    IntentStatus.pending: DisplayState.awaiting,
    IntentStatus.approved: DisplayState.approved,
    IntentStatus.declined: DisplayState.declined,
    IntentStatus.canceled: DisplayState.canceled,
    IntentStatus.error: DisplayState.error,
    IntentStatus.expired: DisplayState.expired,
}


@dataclass(frozen=True)
class StatusView:
    state: DisplayState
    title: str
    message: str
    intent_id: int | None = None
    amount: Decimal | None = None
    sale_id: int | None = None
    print_job_id: int | None = None

    @property
    def final(self) -> bool:
        return self.state in FINAL_STATES


def present(projection: IntentProjection | None, elapsed: float, timeout: float = 120.0) -> StatusView:
    """Map the last known intent projection and elapsed wait to an operator view.

    A terminal server status always wins over the local timeout.
    """
    if projection is not None and projection.is_terminal:
        state = _FROM_STATUS[projection.status]
    elif elapsed >= timeout:
        state = DisplayState.timeout
    else:
        state = DisplayState.awaiting

    title, message = _COPY[state]
    if projection is None:
        return StatusView(state, title, message)
    return StatusView(
        state,
        title,
        message,
        intent_id=projection.id,
        amount=Decimal(projection.amount_cents) / 100,
        sale_id=projection.sale_id,
        print_job_id=projection.print_job_id,
    )
