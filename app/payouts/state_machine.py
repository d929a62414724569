# app/payouts/state_machine.py
from app.payouts.model import PayoutStatus as P


class InvalidTransition(Exception):
    pass


ALLOWED = {
    P.PROCESSING: {P.COMPLETED, P.FAILED},
    P.FAILED: {P.PROCESSING, P.COMPLETED, P.FAILED},  # retries update the row in place
    P.COMPLETED: set(),
}


def assert_transition(old: P | str, new: P | str) -> None:
    if P(new) not in ALLOWED.get(P(old), set()):
        raise InvalidTransition(f"Illegal payout transition: {P(old).value} -> {P(new).value}")


def assert_completed_invariant(new_status: P | str, transfer_ref: str | None) -> None:
    """
    Invariant: if payout is COMPLETED, it MUST have a transfer reference.
    """
    if P(new_status) == P.COMPLETED and not transfer_ref:
        raise ValueError("Invariant violation: status=COMPLETED requires transfer_ref")
