"""Funds payment validators collected off-platform and hand over to the admin.

Approving a recharge leaves a pending ValidatorFundEntry. A transfer batches
every pending entry; rejecting it releases them back to pending so the
validator can try again.
"""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.odm.queries.update import UpdateResponse
from beanie.operators import In

from marketplace.core.exceptions import BadRequestError, ConflictError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor
from marketplace.db.init import transaction
from marketplace.models.user import User
from marketplace.models.validator import ValidatorFundEntry, ValidatorTransfer
from marketplace.services.common import iso, oid, parse_id

log = get_logger(__name__)

STATUSES = ("pending", "approved", "rejected")


async def pending_entries(validator_id: PydanticObjectId, session=None) -> list[ValidatorFundEntry]:
    return await ValidatorFundEntry.find(
        ValidatorFundEntry.validator_id == validator_id,
        ValidatorFundEntry.status == "pending",
        session=session,
    ).sort(+ValidatorFundEntry.created_at).to_list()


async def get_fund_summary(validator: User) -> dict:
    entries = await pending_entries(validator.id)
    total = sum(e.amount_minor for e in entries)
    pending_transfers = await ValidatorTransfer.find(
        ValidatorTransfer.validator_id == validator.id,
        ValidatorTransfer.status == "pending",
    ).count()
    return {
        "pending_total": format_minor(total),
        "pending_count": len(entries),
        "pending_transfers": pending_transfers,
        "entries": [entry_to_dict(e) for e in entries],
    }


async def get_transfer(transfer_id: str | PydanticObjectId, session=None) -> ValidatorTransfer:
    t = await ValidatorTransfer.get(parse_id(transfer_id, "Transfer"), session=session)
    if not t:
        raise NotFoundError("Transfer not found")
    return t


async def create_transfer(
    validator: User,
    commission_minor: int,
    payment_method: str,
    holder_name: str | None = None,
    payment_time: datetime | None = None,
    voucher_url: str | None = None,
    payment_details: dict[str, Any] | None = None,
) -> ValidatorTransfer:
    """Batch every pending entry into one transfer; the validator keeps commission_minor."""
    if commission_minor < 0:
        raise BadRequestError("Commission cannot be negative")
    method = (payment_method or "").strip()
    if not method:
        raise BadRequestError("Payment method is required")
    async with transaction() as session:
        entries = await pending_entries(validator.id, session=session)
        if not entries:
            raise BadRequestError("No pending funds to transfer")
        total = sum(e.amount_minor for e in entries)
        if commission_minor > total:
            raise BadRequestError(
                "Commission cannot exceed the pending total",
                details={"total": format_minor(total), "commission": format_minor(commission_minor)},
            )
        t = ValidatorTransfer(
            validator_id=validator.id,
            total_minor=total,
            commission_minor=commission_minor,
            transfer_minor=total - commission_minor,
            payment_method=method,
            holder_name=holder_name,
            payment_time=payment_time,
            voucher_url=voucher_url,
            payment_details=payment_details or {},
        )
        await t.insert(session=session)
        await ValidatorFundEntry.find(
            In(ValidatorFundEntry.id, [e.id for e in entries]),
            ValidatorFundEntry.status == "pending",
            session=session,
        ).update(
            Set({ValidatorFundEntry.status: "transferred", ValidatorFundEntry.transfer_id: t.id}),
            session=session,
        )
        from marketplace.core.audit import log_event
        await log_event(
            str(validator.id),
            "validator_transfer_created",
            "validator_transfer",
            str(t.id),
            {"total_minor": total, "commission_minor": commission_minor, "entries": len(entries)},
            session=session,
        )
    log.info("validator_transfer_created", transfer_id=str(t.id), validator_id=str(validator.id), total_minor=total)
    return t


async def _transition(transfer_id: PydanticObjectId, fields: dict[str, Any], session=None) -> ValidatorTransfer:
    updated = await ValidatorTransfer.find_one(
        ValidatorTransfer.id == transfer_id,
        ValidatorTransfer.status == "pending",
        session=session,
    ).update(Set(fields), session=session, response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        current = await get_transfer(transfer_id, session=session)
        raise ConflictError(f"Transfer is {current.status}, expected pending", details={"status": current.status})
    return updated


async def approve_transfer(transfer_id: str, admin: User) -> ValidatorTransfer:
    t = await get_transfer(transfer_id)
    if t.status != "pending":
        raise ConflictError(f"Cannot approve a transfer that is {t.status}", details={"status": t.status})
    now = datetime.utcnow()
    t = await _transition(
        t.id,
        {
            ValidatorTransfer.status: "approved",
            ValidatorTransfer.processed_by: admin.id,
            ValidatorTransfer.processed_at: now,
            ValidatorTransfer.completed_at: now,
        },
    )
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "validator_transfer_approved", "validator_transfer", str(t.id), {"transfer_minor": t.transfer_minor})
    log.info("validator_transfer_approved", transfer_id=str(t.id), admin_id=str(admin.id))
    return t


async def reject_transfer(transfer_id: str, admin: User, reason: str | None) -> ValidatorTransfer:
    """pending -> rejected; every attached entry goes back to pending with no transfer."""
    text = (reason or "").strip()
    if not text:
        raise BadRequestError("A rejection reason is required")
    t = await get_transfer(transfer_id)
    if t.status != "pending":
        raise ConflictError(f"Cannot reject a transfer that is {t.status}", details={"status": t.status})
    async with transaction() as session:
        t = await _transition(
            t.id,
            {
                ValidatorTransfer.status: "rejected",
                ValidatorTransfer.rejection_reason: text,
                ValidatorTransfer.processed_by: admin.id,
                ValidatorTransfer.processed_at: datetime.utcnow(),
            },
            session=session,
        )
        await ValidatorFundEntry.find(
            ValidatorFundEntry.transfer_id == t.id,
            session=session,
        ).update(
            Set({ValidatorFundEntry.status: "pending", ValidatorFundEntry.transfer_id: None}),
            session=session,
        )
        from marketplace.core.audit import log_event
        await log_event(str(admin.id), "validator_transfer_rejected", "validator_transfer", str(t.id), {"reason": text}, session=session)
    log.info("validator_transfer_rejected", transfer_id=str(t.id), admin_id=str(admin.id))
    return t


async def list_transfers(
    validator_id: PydanticObjectId | None = None,
    status: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> tuple[list[ValidatorTransfer], int]:
    filters = []
    if validator_id:
        filters.append(ValidatorTransfer.validator_id == validator_id)
    if status and status != "all":
        if status not in STATUSES:
            raise BadRequestError(f"Invalid status: {status}")
        filters.append(ValidatorTransfer.status == status)
    total = await ValidatorTransfer.find(*filters).count()
    items = await ValidatorTransfer.find(*filters).sort(-ValidatorTransfer.created_at).skip(offset).limit(limit).to_list()
    return items, total


def entry_to_dict(e: ValidatorFundEntry) -> dict:
    return {
        "id": str(e.id),
        "recharge_id": str(e.recharge_id),
        "amount": format_minor(e.amount_minor),
        "status": e.status,
        "transfer_id": oid(e.transfer_id),
        "created_at": iso(e.created_at),
    }


def transfer_to_dict(t: ValidatorTransfer, entries_count: int | None = None) -> dict:
    out = {
        "id": str(t.id),
        "validator_id": str(t.validator_id),
        "total_amount": format_minor(t.total_minor),
        "commission_amount": format_minor(t.commission_minor),
        "transfer_amount": format_minor(t.transfer_minor),
        "payment_method": t.payment_method,
        "holder_name": t.holder_name,
        "payment_time": iso(t.payment_time),
        "voucher_url": t.voucher_url,
        "status": t.status,
        "rejection_reason": t.rejection_reason,
        "processed_by": oid(t.processed_by),
        "processed_at": iso(t.processed_at),
        "completed_at": iso(t.completed_at),
        "created_at": iso(t.created_at),
    }
    if entries_count is not None:
        out["entries_count"] = entries_count
    return out
