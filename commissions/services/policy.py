"""Dispute policies that product has not pinned down, read from settings."""

from commissions.config import settings
from commissions.models.ticket import ResolutionDecision, ResolutionTicket


def allows_concurrent_resolutions() -> bool:
    """Whether a contract may carry more than one unresolved resolution ticket."""
    return settings.allow_multiple_unresolved_resolutions


def counterproof_lapse_decision(ticket: ResolutionTicket) -> ResolutionDecision | None:
    """Decision to apply when the counterparty never answered.

    None means no automatic decision: the ticket goes to an admin.
    """
    if settings.counterproof_lapse_policy == "escalate":
        return None
    return ResolutionDecision.favoring(ticket.submitted_by)
