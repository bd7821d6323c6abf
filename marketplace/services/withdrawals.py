"""Withdrawal requests: pending -> approved -> completed, or pending -> rejected.

Funds leave the wallet only on completion. Each transition is a conditional
update on the expected status, so two validators acting on the same request
cannot both win.
"""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.odm.queries.update import UpdateResponse

from marketplace.core.exceptions import BadRequestError, ConflictError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor
from marketplace.db.init import transaction
from marketplace.models.user import User
from marketplace.models.withdrawal import WithdrawalRequest
from marketplace.services import wallets as wallet_service
from marketplace.services.common import clean_reason, iso, oid, parse_id

log = get_logger(__name__)

STATUSES = ("pending", "approved", "rejected", "completed")


async def get_withdrawal(withdrawal_id: str | PydanticObjectId, session=None) -> WithdrawalRequest:
    w = await WithdrawalRequest.get(parse_id(withdrawal_id, "Withdrawal"), session=session)
    if not w:
        raise NotFoundError("Withdrawal not found")
    return w


async def _transition(
    withdrawal_id: PydanticObjectId,
    from_status: str,
    fields: dict[str, Any],
    session=None,
) -> WithdrawalRequest:
    updated = await WithdrawalRequest.find_one(
        WithdrawalRequest.id == withdrawal_id,
        WithdrawalRequest.status == from_status,
        session=session,
    ).update(Set(fields), session=session, response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        current = await get_withdrawal(withdrawal_id, session=session)
        raise ConflictError(
            f"Withdrawal is {current.status}, expected {from_status}",
            details={"status": current.status},
        )
    return updated


async def request_withdrawal(
    user: User,
    amount_minor: int,
    payment_method: str,
    payment_details: dict[str, Any] | None = None,
    notes: str | None = None,
) -> WithdrawalRequest:
    if amount_minor <= 0:
        raise BadRequestError("Amount must be positive")
    method = (payment_method or "").strip()
    if not method:
        raise BadRequestError("Payment method is required")
    wallet = await wallet_service.get_or_create_wallet(user.id)
    wallet_service.ensure_active(wallet)
    wallet_service.ensure_covers(wallet, amount_minor)
    w = WithdrawalRequest(
        wallet_id=wallet.id,
        user_id=user.id,
        amount_minor=amount_minor,
        payment_method=method,
        payment_details=payment_details or {},
        notes=notes,
    )
    await w.insert()
    from marketplace.core.audit import log_event
    await log_event(str(user.id), "withdrawal_requested", "withdrawal", str(w.id), {"amount_minor": amount_minor})
    log.info("withdrawal_requested", withdrawal_id=str(w.id), user_id=str(user.id), amount_minor=amount_minor)
    return w


async def approve_withdrawal(withdrawal_id: str, validator: User) -> WithdrawalRequest:
    """pending -> approved. No funds move; the wallet must still cover the amount."""
    w = await get_withdrawal(withdrawal_id)
    if w.status != "pending":
        raise ConflictError(f"Cannot approve a withdrawal that is {w.status}", details={"status": w.status})
    wallet = await wallet_service.get_wallet(w.wallet_id)
    wallet_service.ensure_covers(wallet, w.amount_minor)
    w = await _transition(
        w.id,
        "pending",
        {
            WithdrawalRequest.status: "approved",
            WithdrawalRequest.processed_by: validator.id,
            WithdrawalRequest.processed_at: datetime.utcnow(),
        },
    )
    from marketplace.core.audit import log_event
    await log_event(str(validator.id), "withdrawal_approved", "withdrawal", str(w.id), {"amount_minor": w.amount_minor})
    log.info("withdrawal_approved", withdrawal_id=str(w.id), validator_id=str(validator.id))
    return w


async def reject_withdrawal(withdrawal_id: str, validator: User, reason: str | None) -> WithdrawalRequest:
    """pending -> rejected. Never touches the wallet."""
    text = clean_reason(reason, "rejection reason")
    w = await get_withdrawal(withdrawal_id)
    if w.status != "pending":
        raise ConflictError(f"Cannot reject a withdrawal that is {w.status}", details={"status": w.status})
    w = await _transition(
        w.id,
        "pending",
        {
            WithdrawalRequest.status: "rejected",
            WithdrawalRequest.rejection_reason: text,
            WithdrawalRequest.processed_by: validator.id,
            WithdrawalRequest.processed_at: datetime.utcnow(),
        },
    )
    from marketplace.core.audit import log_event
    await log_event(str(validator.id), "withdrawal_rejected", "withdrawal", str(w.id), {"reason": text})
    log.info("withdrawal_rejected", withdrawal_id=str(w.id), validator_id=str(validator.id))
    return w


async def complete_withdrawal(withdrawal_id: str, validator: User, confirm: bool) -> WithdrawalRequest:
    """
    approved -> completed, debiting the wallet once (idempotency key withdrawal:{id}).
    On insufficient balance the request stays approved and nothing is written.
    """
    if confirm is not True:
        raise BadRequestError("Completing a withdrawal requires explicit confirmation")
    w = await get_withdrawal(withdrawal_id)
    if w.status != "approved":
        raise ConflictError(f"Cannot complete a withdrawal that is {w.status}", details={"status": w.status})
    wallet = await wallet_service.get_wallet(w.wallet_id)
    wallet_service.ensure_active(wallet)
    wallet_service.ensure_covers(wallet, w.amount_minor)

    async with transaction() as session:
        now = datetime.utcnow()
        # Claim the request first so a concurrent completion cannot debit twice
        w = await _transition(
            w.id,
            "approved",
            {WithdrawalRequest.status: "completed", WithdrawalRequest.completed_at: now},
            session=session,
        )
        try:
            entry = await wallet_service.debit(
                w.wallet_id,
                w.amount_minor,
                description=f"Withdrawal via {w.payment_method}",
                related_entity_type="withdrawal",
                related_entity_id=str(w.id),
                idempotency_key=f"withdrawal:{w.id}",
                session=session,
            )
        except Exception:
            if session is None:
                await _transition(
                    w.id,
                    "completed",
                    {WithdrawalRequest.status: "approved", WithdrawalRequest.completed_at: None},
                )
            raise
        w = await _transition(
            w.id,
            "completed",
            {WithdrawalRequest.transaction_id: entry.id},
            session=session,
        )
        from marketplace.core.audit import log_event
        await log_event(
            str(validator.id),
            "withdrawal_completed",
            "withdrawal",
            str(w.id),
            {"amount_minor": w.amount_minor, "transaction_id": str(entry.id)},
            session=session,
        )
    log.info("withdrawal_completed", withdrawal_id=str(w.id), amount_minor=w.amount_minor, transaction_id=str(entry.id))
    return w


async def list_withdrawals(
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[WithdrawalRequest], int]:
    if status and status not in STATUSES:
        raise BadRequestError(f"Invalid status: {status}")
    filters = [WithdrawalRequest.status == status] if status else []
    total = await WithdrawalRequest.find(*filters).count()
    items = (
        await WithdrawalRequest.find(*filters)
        .sort(-WithdrawalRequest.requested_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
    return items, total


async def list_for_user(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> tuple[list[WithdrawalRequest], int]:
    total = await WithdrawalRequest.find(WithdrawalRequest.user_id == user_id).count()
    items = (
        await WithdrawalRequest.find(WithdrawalRequest.user_id == user_id)
        .sort(-WithdrawalRequest.requested_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
    return items, total


def withdrawal_to_dict(w: WithdrawalRequest) -> dict:
    return {
        "id": str(w.id),
        "user_id": str(w.user_id),
        "wallet_id": str(w.wallet_id),
        "amount": format_minor(w.amount_minor),
        "payment_method": w.payment_method,
        "payment_details": w.payment_details,
        "status": w.status,
        "notes": w.notes,
        "rejection_reason": w.rejection_reason,
        "transaction_id": oid(w.transaction_id),
        "requested_at": iso(w.requested_at),
        "processed_by": oid(w.processed_by),
        "processed_at": iso(w.processed_at),
        "completed_at": iso(w.completed_at),
    }
