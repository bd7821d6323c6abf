"""Purchase disputes: open -> under_review -> resolved -> closed, with the refund payout."""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.odm.queries.update import UpdateResponse
from beanie.operators import In, Or

from marketplace.core.config import get_settings
from marketplace.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor, percent_of
from marketplace.core.roles import Role
from marketplace.db.init import transaction
from marketplace.models.dispute import Dispute, DisputeMessage
from marketplace.models.purchase import Purchase
from marketplace.models.user import User
from marketplace.services import purchases as purchase_service
from marketplace.services import wallets as wallet_service
from marketplace.services.common import iso, oid, parse_id

log = get_logger(__name__)

STATUSES = ("open", "under_review", "resolved", "closed")
ACTIVE_STATUSES = ("open", "under_review")
RESOLUTION_TYPES = ("refund_seller", "favor_provider", "partial_refund", "no_action")

OPEN_SLA = timedelta(minutes=30)
REVIEW_SLA = timedelta(hours=24)
REVIEW_WARNING_LIMIT = timedelta(hours=48)


def sla_indicator(dispute: Dispute, now: datetime | None = None) -> str | None:
    """Display-only urgency flag; None once the dispute is resolved."""
    now = now or datetime.utcnow()
    if dispute.status == "open":
        return "on_time" if now - dispute.created_at < OPEN_SLA else "overdue"
    if dispute.status == "under_review":
        age = now - (dispute.assigned_at or dispute.created_at)
        if age < REVIEW_SLA:
            return "on_time"
        if age < REVIEW_WARNING_LIMIT:
            return "warning"
        return "overdue"
    return None


def refund_amount(amount_minor: int, resolution_type: str, percentage: Decimal | float | None = None) -> int:
    """Seller's share of amount_minor for a resolution; the provider keeps the rest."""
    if resolution_type == "refund_seller":
        return amount_minor
    if resolution_type == "partial_refund":
        if percentage is None:
            raise BadRequestError("A refund percentage is required for a partial refund")
        pct = Decimal(str(percentage))
        if pct < 0 or pct > 100:
            raise BadRequestError("Refund percentage must be between 0 and 100")
        return percent_of(amount_minor, pct)
    if resolution_type in ("favor_provider", "no_action"):
        return 0
    raise BadRequestError(f"Invalid resolution type: {resolution_type}", details={"allowed": list(RESOLUTION_TYPES)})


async def get_dispute(dispute_id: str | PydanticObjectId, session=None) -> Dispute:
    d = await Dispute.get(parse_id(dispute_id, "Dispute"), session=session)
    if not d:
        raise NotFoundError("Dispute not found")
    return d


async def _transition(dispute_id: PydanticObjectId, from_status: str, fields: dict[str, Any], session=None) -> Dispute:
    updated = await Dispute.find_one(
        Dispute.id == dispute_id,
        Dispute.status == from_status,
        session=session,
    ).update(Set(fields), session=session, response_type=UpdateResponse.NEW_DOCUMENT)
    if updated is None:
        current = await get_dispute(dispute_id, session=session)
        raise ConflictError(f"Dispute is {current.status}, expected {from_status}", details={"status": current.status})
    return updated


async def open_dispute(purchase_id: str, seller: User, reason: str, description: str = "") -> Dispute:
    reason = (reason or "").strip()
    if not reason:
        raise BadRequestError("A reason is required")
    purchase = await purchase_service.get_purchase(purchase_id)
    if purchase.seller_id != seller.id:
        raise ForbiddenError("Only the buyer can open a dispute on this purchase")
    if purchase.status != "completed":
        raise ConflictError(f"Purchase is {purchase.status}")
    active = await Dispute.find_one(
        Dispute.purchase_id == purchase.id,
        In(Dispute.status, list(ACTIVE_STATUSES)),
    )
    if active:
        raise ConflictError("This purchase already has an active dispute", details={"dispute_id": str(active.id)})
    d = Dispute(
        purchase_id=purchase.id,
        seller_id=purchase.seller_id,
        provider_id=purchase.provider_id,
        opened_by=seller.id,
        reason=reason,
        description=description or "",
    )
    await d.insert()
    from marketplace.core.audit import log_event
    await log_event(str(seller.id), "dispute_opened", "dispute", str(d.id), {"purchase_id": str(purchase.id)})
    log.info("dispute_opened", dispute_id=str(d.id), purchase_id=str(purchase.id))
    return d


async def assign_dispute(dispute_id: str, conciliator: User) -> Dispute:
    d = await get_dispute(dispute_id)
    if d.status != "open":
        raise ConflictError(f"Cannot assign a dispute that is {d.status}", details={"status": d.status})
    d = await _transition(
        d.id,
        "open",
        {
            Dispute.status: "under_review",
            Dispute.conciliator_id: conciliator.id,
            Dispute.assigned_at: datetime.utcnow(),
        },
    )
    from marketplace.core.audit import log_event
    await log_event(str(conciliator.id), "dispute_assigned", "dispute", str(d.id), {})
    log.info("dispute_assigned", dispute_id=str(d.id), conciliator_id=str(conciliator.id))
    return d


async def resolve_dispute(
    dispute_id: str,
    conciliator: User,
    resolution: str,
    resolution_type: str,
    partial_refund_percentage: Decimal | float | None = None,
) -> Dispute:
    """
    Final decision by the assigned conciliator. A refund moves provider -> seller
    as a transfer; the purchase is marked refunded or partially_refunded and the
    dispute ends closed.
    """
    d = await get_dispute(dispute_id)
    if d.conciliator_id != conciliator.id:
        raise ForbiddenError("Only the assigned conciliator can resolve this dispute")
    if d.status != "under_review":
        raise ConflictError(f"Cannot resolve a dispute that is {d.status}", details={"status": d.status})
    text = (resolution or "").strip()
    min_len = get_settings().dispute_resolution_min
    if len(text) < min_len:
        raise BadRequestError(f"The resolution must be at least {min_len} characters")
    purchase = await purchase_service.get_purchase(d.purchase_id)
    refund = refund_amount(purchase.amount_minor, resolution_type, partial_refund_percentage)
    pct = partial_refund_percentage if resolution_type == "partial_refund" else None

    seller_wallet = provider_wallet = None
    if refund > 0:
        provider_wallet = await wallet_service.get_or_create_wallet(d.provider_id)
        seller_wallet = await wallet_service.get_or_create_wallet(d.seller_id)
        wallet_service.ensure_active(provider_wallet)
        wallet_service.ensure_active(seller_wallet)
        wallet_service.ensure_covers(provider_wallet, refund)

    async with transaction() as session:
        now = datetime.utcnow()
        d = await _transition(
            d.id,
            "under_review",
            {
                Dispute.status: "resolved",
                Dispute.resolution: text,
                Dispute.resolution_type: resolution_type,
                Dispute.partial_refund_percentage: float(pct) if pct is not None else None,
                Dispute.refund_minor: refund,
                Dispute.resolved_at: now,
            },
            session=session,
        )
        if refund > 0:
            try:
                outgoing, _ = await wallet_service.transfer(
                    provider_wallet.id,
                    seller_wallet.id,
                    refund,
                    description=f"Dispute refund for {purchase.product_name}",
                    related_entity_type="dispute",
                    related_entity_id=str(d.id),
                    metadata={"purchase_id": str(purchase.id), "resolution_type": resolution_type},
                    idempotency_key=f"dispute-refund:{d.id}",
                    session=session,
                )
            except Exception:
                if session is None:
                    await _transition(
                        d.id,
                        "resolved",
                        {
                            Dispute.status: "under_review",
                            Dispute.resolution: None,
                            Dispute.resolution_type: None,
                            Dispute.partial_refund_percentage: None,
                            Dispute.refund_minor: None,
                            Dispute.resolved_at: None,
                        },
                    )
                raise
            await Purchase.find_one(Purchase.id == purchase.id, session=session).update(
                Set({
                    Purchase.status: "refunded" if refund >= purchase.amount_minor else "partially_refunded",
                    Purchase.refunded_minor: refund,
                }),
                session=session,
            )
            d = await _transition(d.id, "resolved", {Dispute.refund_transaction_id: outgoing.id}, session=session)
        d = await _transition(d.id, "resolved", {Dispute.status: "closed", Dispute.closed_at: now}, session=session)
        from marketplace.core.audit import log_event
        await log_event(
            str(conciliator.id),
            "dispute_resolved",
            "dispute",
            str(d.id),
            {"resolution_type": resolution_type, "refund_minor": refund},
            session=session,
        )
    log.info("dispute_resolved", dispute_id=str(d.id), resolution_type=resolution_type, refund_minor=refund)
    return d


def is_participant(d: Dispute, user: User) -> bool:
    if user.role in (Role.ADMIN, Role.CONCILIATOR):
        return True
    return user.id in (d.seller_id, d.provider_id)


async def add_message(dispute_id: str, user: User, message: str, is_internal: bool = False) -> DisputeMessage:
    d = await get_dispute(dispute_id)
    if not is_participant(d, user):
        raise ForbiddenError("You are not a participant in this dispute")
    text = (message or "").strip()
    if not text:
        raise BadRequestError("Message cannot be empty")
    if is_internal and user.role not in (Role.CONCILIATOR, Role.ADMIN):
        raise ForbiddenError("Only conciliators can post internal notes")
    if d.status == "closed" and not is_internal:
        raise ConflictError("Dispute is closed")
    msg = DisputeMessage(dispute_id=d.id, sender_id=user.id, message=text, is_internal=is_internal)
    await msg.insert()
    log.info("dispute_message_added", dispute_id=str(d.id), internal=is_internal)
    return msg


async def list_messages(dispute_id: str, user: User) -> list[DisputeMessage]:
    d = await get_dispute(dispute_id)
    if not is_participant(d, user):
        raise ForbiddenError("You are not a participant in this dispute")
    filters = [DisputeMessage.dispute_id == d.id]
    if user.role not in (Role.CONCILIATOR, Role.ADMIN):
        filters.append(DisputeMessage.is_internal == False)  # noqa: E712
    return await DisputeMessage.find(*filters).sort(+DisputeMessage.created_at).to_list()


async def list_disputes(
    seller_id: PydanticObjectId | None = None,
    provider_id: PydanticObjectId | None = None,
    conciliator_id: PydanticObjectId | None = None,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Dispute], int]:
    """conciliator_id lists the unassigned queue plus that conciliator's own cases."""
    filters = []
    if seller_id:
        filters.append(Dispute.seller_id == seller_id)
    if provider_id:
        filters.append(Dispute.provider_id == provider_id)
    if conciliator_id:
        filters.append(Or(Dispute.status == "open", Dispute.conciliator_id == conciliator_id))
    if status:
        if status not in STATUSES:
            raise BadRequestError(f"Invalid status: {status}")
        filters.append(Dispute.status == status)
    total = await Dispute.find(*filters).count()
    items = await Dispute.find(*filters).sort(+Dispute.created_at).skip(offset).limit(limit).to_list()
    return items, total


def dispute_to_dict(d: Dispute, now: datetime | None = None) -> dict:
    return {
        "id": str(d.id),
        "purchase_id": str(d.purchase_id),
        "seller_id": str(d.seller_id),
        "provider_id": str(d.provider_id),
        "conciliator_id": oid(d.conciliator_id),
        "reason": d.reason,
        "description": d.description,
        "status": d.status,
        "resolution": d.resolution,
        "resolution_type": d.resolution_type,
        "partial_refund_percentage": d.partial_refund_percentage,
        "refund_amount": format_minor(d.refund_minor),
        "refund_transaction_id": oid(d.refund_transaction_id),
        "sla": sla_indicator(d, now),
        "created_at": iso(d.created_at),
        "assigned_at": iso(d.assigned_at),
        "resolved_at": iso(d.resolved_at),
        "closed_at": iso(d.closed_at),
    }


def message_to_dict(m: DisputeMessage) -> dict:
    return {
        "id": str(m.id),
        "dispute_id": str(m.dispute_id),
        "sender_id": str(m.sender_id),
        "message": m.message,
        "is_internal": m.is_internal,
        "created_at": iso(m.created_at),
    }
