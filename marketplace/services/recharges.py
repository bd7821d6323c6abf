"""Wallet recharges reported by sellers/affiliates and confirmed by payment validators."""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.odm.queries.update import UpdateResponse

from marketplace.core.exceptions import BadRequestError, ConflictError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor
from marketplace.core.roles import Role
from marketplace.db.init import transaction
from marketplace.models.recharge import PAYMENT_METHODS, Recharge
from marketplace.models.user import User
from marketplace.models.validator import ValidatorFundEntry
from marketplace.services import wallets as wallet_service
from marketplace.services.common import clean_reason, iso, oid, parse_id

log = get_logger(__name__)

STATUSES = ("pending", "completed", "failed", "cancelled")
REJECT_STATUSES = ("cancelled", "failed")


async def get_recharge(recharge_id: str | PydanticObjectId, session=None) -> Recharge:
    r = await Recharge.get(parse_id(recharge_id, "Recharge"), session=session)
    if not r:
        raise NotFoundError("Recharge not found")
    return r


async def _transition(recharge_id: PydanticObjectId, from_status: str, fields: dict[str, Any], session=None) -> Recharge:
    updated = await Recharge.find_one(
        Recharge.id == recharge_id,
        Recharge.status == from_status,
        session=session,
    ).update(Set(fields), session=session, response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        current = await get_recharge(recharge_id, session=session)
        raise ConflictError(f"Recharge is {current.status}, expected {from_status}", details={"status": current.status})
    return updated


async def create_recharge(
    user: User,
    amount_minor: int,
    payment_method: str,
    voucher_url: str | None = None,
    external_transaction_id: str | None = None,
) -> Recharge:
    if amount_minor <= 0:
        raise BadRequestError("Amount must be positive")
    if payment_method not in PAYMENT_METHODS:
        raise BadRequestError(
            f"Invalid payment method: {payment_method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )
    wallet = await wallet_service.get_or_create_wallet(user.id)
    wallet_service.ensure_active(wallet)
    r = Recharge(
        wallet_id=wallet.id,
        user_id=user.id,
        amount_minor=amount_minor,
        payment_method=payment_method,
        payment_gateway="manual",
        voucher_url=voucher_url,
        external_transaction_id=external_transaction_id,
    )
    await r.insert()
    from marketplace.core.audit import log_event
    await log_event(str(user.id), "recharge_requested", "recharge", str(r.id), {"amount_minor": amount_minor})
    log.info("recharge_requested", recharge_id=str(r.id), user_id=str(user.id), amount_minor=amount_minor)
    return r


async def approve_recharge(
    recharge_id: str,
    validator: User,
    external_transaction_id: str | None = None,
) -> tuple[Recharge, int]:
    """
    pending -> completed: credit the wallet (idempotency key recharge:{id}) and,
    when a payment validator approves, record the collected amount as a pending
    fund entry owed to the admin. Returns (recharge, new_balance_minor).
    """
    r = await get_recharge(recharge_id)
    if r.status != "pending":
        raise ConflictError(f"Cannot approve a recharge that is {r.status}", details={"status": r.status})
    wallet = await wallet_service.get_wallet(r.wallet_id)
    wallet_service.ensure_active(wallet)

    async with transaction() as session:
        r = await _transition(
            r.id,
            "pending",
            {
                Recharge.status: "completed",
                Recharge.processed_by: validator.id,
                Recharge.completed_at: datetime.utcnow(),
                Recharge.external_transaction_id: external_transaction_id or r.external_transaction_id,
            },
            session=session,
        )
        try:
            entry = await wallet_service.credit(
                r.wallet_id,
                r.amount_minor,
                description=f"Wallet recharge via {r.payment_method}",
                related_entity_type="recharge",
                related_entity_id=str(r.id),
                metadata={"approved_by": str(validator.id), "payment_method": r.payment_method},
                idempotency_key=f"recharge:{r.id}",
                session=session,
            )
        except Exception:
            if session is None:
                await _transition(r.id, "completed", {Recharge.status: "pending", Recharge.processed_by: None, Recharge.completed_at: None})
            raise
        r = await _transition(r.id, "completed", {Recharge.transaction_id: entry.id}, session=session)
        if validator.role == Role.PAYMENT_VALIDATOR:
            await ValidatorFundEntry(
                validator_id=validator.id,
                recharge_id=r.id,
                amount_minor=r.amount_minor,
            ).insert(session=session)
        from marketplace.core.audit import log_event
        await log_event(
            str(validator.id),
            "recharge_approved",
            "recharge",
            str(r.id),
            {"amount_minor": r.amount_minor, "transaction_id": str(entry.id)},
            session=session,
        )
    log.info("recharge_approved", recharge_id=str(r.id), validator_id=str(validator.id), amount_minor=r.amount_minor)
    return r, entry.balance_after_minor


async def reject_recharge(recharge_id: str, validator: User, reason: str | None, status: str = "cancelled") -> Recharge:
    if status not in REJECT_STATUSES:
        raise BadRequestError(f"Invalid rejection status: {status}", details={"allowed": list(REJECT_STATUSES)})
    text = clean_reason(reason, "rejection reason")
    r = await get_recharge(recharge_id)
    if r.status != "pending":
        raise ConflictError(f"Cannot reject a recharge that is {r.status}", details={"status": r.status})
    r = await _transition(
        r.id,
        "pending",
        {
            Recharge.status: status,
            Recharge.rejection_reason: text,
            Recharge.processed_by: validator.id,
            Recharge.completed_at: datetime.utcnow(),
        },
    )
    from marketplace.core.audit import log_event
    await log_event(str(validator.id), "recharge_rejected", "recharge", str(r.id), {"reason": text, "status": status})
    log.info("recharge_rejected", recharge_id=str(r.id), validator_id=str(validator.id), status=status)
    return r


async def list_recharges(
    status: str | None = "pending",
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int = 10,
    offset: int = 0,
) -> tuple[list[Recharge], int]:
    """status=None or "all" lists every recharge."""
    filters = []
    if status and status != "all":
        if status not in STATUSES:
            raise BadRequestError(f"Invalid status: {status}")
        filters.append(Recharge.status == status)
    field = Recharge.amount_minor if sort_by == "amount" else Recharge.created_at
    sort = +field if sort_order == "asc" else -field
    total = await Recharge.find(*filters).count()
    items = await Recharge.find(*filters).sort(sort).skip(offset).limit(limit).to_list()
    return items, total


async def list_for_user(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> tuple[list[Recharge], int]:
    total = await Recharge.find(Recharge.user_id == user_id).count()
    items = (
        await Recharge.find(Recharge.user_id == user_id)
        .sort(-Recharge.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
    return items, total


def recharge_to_dict(r: Recharge) -> dict:
    return {
        "id": str(r.id),
        "wallet_id": str(r.wallet_id),
        "user_id": str(r.user_id),
        "amount": format_minor(r.amount_minor),
        "payment_method": r.payment_method,
        "payment_gateway": r.payment_gateway,
        "external_transaction_id": r.external_transaction_id,
        "voucher_url": r.voucher_url,
        "status": r.status,
        "rejection_reason": r.rejection_reason,
        "processed_by": oid(r.processed_by),
        "transaction_id": oid(r.transaction_id),
        "created_at": iso(r.created_at),
        "completed_at": iso(r.completed_at),
    }
