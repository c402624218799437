"""
Cashout Request State Machine

Single source of truth for cashout status transitions. The cashout
service validates every status change through this module.
"""

from typing import List, Dict

from vendor_billing.core.exceptions import InvalidStateError
from vendor_billing.models.wallet import CashoutStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# current_status -> [allowed next statuses]
CASHOUT_TRANSITIONS: Dict[str, List[str]] = {
    CashoutStatus.REQUESTED.value: [
        CashoutStatus.APPROVED.value,   # Finance approves
        CashoutStatus.REJECTED.value,   # Finance rejects, balance restored
    ],
    CashoutStatus.APPROVED.value: [
        CashoutStatus.APPROVED.value,   # Re-approve is a no-op
        CashoutStatus.REJECTED.value,   # Rejected after approval, balance restored
        CashoutStatus.PAID.value,       # Payout sent
    ],
    CashoutStatus.REJECTED.value: [],   # Terminal
    CashoutStatus.PAID.value: [],       # Terminal
}

TERMINAL_STATUSES = frozenset(
    status for status, allowed in CASHOUT_TRANSITIONS.items() if not allowed
)

TRANSITION_ACTIONS: Dict[tuple, str] = {
    (CashoutStatus.REQUESTED.value, CashoutStatus.APPROVED.value): "Approve",
    (CashoutStatus.APPROVED.value, CashoutStatus.APPROVED.value): "Approve",
    (CashoutStatus.REQUESTED.value, CashoutStatus.REJECTED.value): "Reject",
    (CashoutStatus.APPROVED.value, CashoutStatus.REJECTED.value): "Reject",
    (CashoutStatus.APPROVED.value, CashoutStatus.PAID.value): "Mark Paid",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in CASHOUT_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return CASHOUT_TRANSITIONS.get(current_status, [])


def get_transition_action(current_status: str, new_status: str) -> str:
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises InvalidStateError if invalid.

    Unlike most state machines, staying in the same status is not
    implicitly allowed: only APPROVED -> APPROVED is listed.
    """
    if can_transition(current_status, new_status):
        return

    if is_terminal(current_status):
        raise InvalidStateError(
            f"Cashout request is {current_status}; no further changes are allowed",
            details={"status": current_status, "requested_status": new_status},
        )

    allowed = get_allowed_transitions(current_status)
    raise InvalidStateError(
        f"Cannot change cashout request from '{current_status}' to '{new_status}'. "
        f"Allowed transitions: {', '.join(allowed)}",
        details={"status": current_status, "requested_status": new_status},
    )
