"""Error kinds raised by the contract engine.

Services raise these directly; FastAPI turns them into responses because
they are HTTPExceptions. The kind is also echoed in the X-Error-Kind
header so callers can tell TooLate from InvalidState without parsing text.
"""

from fastapi import HTTPException


class CommissionError(HTTPException):
    status_code_default: int = 500
    kind: str = "internal"

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=self.status_code_default,
            detail=detail,
            headers={"X-Error-Kind": self.kind},
        )


class Unauthorized(CommissionError):
    """Actor lacks the identity or role for the action."""
    status_code_default = 403
    kind = "unauthorized"


class NotFound(CommissionError):
    status_code_default = 404
    kind = "not_found"


class InvalidState(CommissionError):
    """Entity is not in the state the action requires."""
    status_code_default = 409
    kind = "invalid_state"


class TooLate(CommissionError):
    """A deadline has passed."""
    status_code_default = 410
    kind = "too_late"


class DuplicateAction(CommissionError):
    """An idempotency guard tripped."""
    status_code_default = 409
    kind = "duplicate_action"


class NothingToClaim(DuplicateAction):
    kind = "nothing_to_claim"


class PaymentMismatch(CommissionError):
    status_code_default = 422
    kind = "payment_mismatch"


class InsufficientFunds(CommissionError):
    status_code_default = 422
    kind = "insufficient_funds"
