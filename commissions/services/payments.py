"""Split fee payments: part from the client's wallet, part from an external method."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from commissions.errors import PaymentMismatch
from commissions.models.contract import Contract
from commissions.models.escrow import EscrowTransactionType
from commissions.schemas.ticket import SplitPayment
from commissions.services import contract as contract_service
from commissions.services import ledger

logger = logging.getLogger(__name__)


def check_split(payment: SplitPayment, fee_cents: int) -> None:
    total = payment.wallet_cents + payment.external_cents
    if total != fee_cents:
        raise PaymentMismatch(
            f"Payment of {total} cents ({payment.wallet_cents} wallet + "
            f"{payment.external_cents} external) does not match the fee of {fee_cents} cents"
        )


async def collect_fee(
    db: AsyncSession,
    contract: Contract,
    payment: SplitPayment,
    fee_cents: int,
    txn_type: EscrowTransactionType,
    note: str,
) -> None:
    """Escrow a ticket fee and add it to the contract's runtime fees.

    The split is checked before anything is written. Does not commit.
    """
    check_split(payment, fee_cents)
    if payment.wallet_cents > 0:
        await ledger.escrow_funds(db, contract.contract_id, contract.client_id, payment.wallet_cents)
    if payment.external_cents > 0:
        await ledger.hold_external_payment(
            db, contract.contract_id, contract.client_id, payment.external_cents,
            payment.external_reference,
        )
    await contract_service.add_runtime_fee(
        db, contract, fee_cents, txn_type, note,
        {
            "wallet_cents": payment.wallet_cents,
            "external_cents": payment.external_cents,
            "external_reference": payment.external_reference,
        },
    )
    logger.info(
        "Collected %d cents %s on contract %s (%d wallet, %d external)",
        fee_cents, txn_type.value, contract.contract_id,
        payment.wallet_cents, payment.external_cents,
    )
