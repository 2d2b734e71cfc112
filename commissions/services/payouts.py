"""Settlement payout calculation.

Pure functions over integer cents. The artist share is computed from the
contract total and the settlement status, then clamped so that money is
neither created nor destroyed: whatever the artist does not get out of the
pool goes back to the client.
"""

from dataclasses import dataclass
from datetime import datetime

from commissions.models.contract import CancellationFeeKind, Contract, ContractStatus


@dataclass(frozen=True)
class Payout:
    artist_cents: int
    client_cents: int

    def to_dict(self) -> dict[str, int]:
        return {"artist_cents": self.artist_cents, "client_cents": self.client_cents}


def is_late(contract: Contract, now: datetime) -> bool:
    return now > contract.deadline_at


def _percent_of(total_cents: int, percent: int) -> int:
    # Integer floor; the remainder stays with the client.
    return total_cents * percent // 100


def cancellation_fee_cents(contract: Contract) -> int:
    if contract.cancellation_fee_kind == CancellationFeeKind.PERCENT:
        return _percent_of(contract.total_cents, contract.cancellation_fee_amount)
    return contract.cancellation_fee_amount


def artist_share_cents(contract: Contract, status: ContractStatus, work_percentage: int) -> int:
    """Raw artist share of the contract total for a settlement status (may be negative)."""
    total = contract.total_cents
    work = _percent_of(total, work_percentage)
    penalty = _percent_of(total, contract.late_penalty_percent)
    fee = cancellation_fee_cents(contract)

    if status == ContractStatus.COMPLETED:
        return total
    if status == ContractStatus.COMPLETED_LATE:
        return total - penalty
    if status == ContractStatus.CANCELLED_CLIENT:
        return work + fee
    if status == ContractStatus.CANCELLED_CLIENT_LATE:
        return work - penalty
    if status == ContractStatus.CANCELLED_ARTIST:
        return work - fee
    if status == ContractStatus.CANCELLED_ARTIST_LATE:
        return work - penalty - fee
    if status == ContractStatus.NOT_COMPLETED:
        return 0
    raise ValueError(f"{status.value} is not a settlement status")


def calculate_payout(
    contract: Contract, status: ContractStatus, work_percentage: int
) -> Payout:
    """Split the contract's whole escrow pool between artist and client.

    Runtime fees (paid revisions and changes) follow the artist unless the
    contract was never completed. The artist never ends up with less than
    what milestone releases already paid out.
    """
    pool = contract.total_pool_cents
    artist = artist_share_cents(contract, status, work_percentage)
    if status != ContractStatus.NOT_COMPLETED:
        artist += contract.runtime_fees_cents
    artist = max(contract.claimed_artist_cents, min(artist, pool))
    return Payout(artist_cents=artist, client_cents=pool - artist)
