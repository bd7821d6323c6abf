"""Wallet ledger and optimistic balance updates.

Every balance change goes through _write_balance(): the wallet is re-read, the
new balance is checked, and the write is conditional on the version that was
read. A concurrent writer bumps the version, so the loser re-reads and tries
again instead of overwriting.
"""

from datetime import datetime
from typing import Any, Literal

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.odm.queries.update import UpdateResponse
from pymongo.errors import DuplicateKeyError

from marketplace.core.config import get_settings
from marketplace.core.exceptions import (
    BadRequestError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    WalletUnavailableError,
)
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor
from marketplace.models.user import User
from marketplace.models.wallet import Wallet
from marketplace.models.wallet_transaction import WalletTransaction, generated_key

log = get_logger(__name__)

WALLET_STATUSES = ("active", "frozen", "closed")


async def get_wallet(wallet_id: PydanticObjectId, session=None) -> Wallet:
    wallet = await Wallet.get(wallet_id, session=session)
    if not wallet:
        raise NotFoundError("Wallet not found")
    return wallet


async def get_or_create_wallet(user_id: PydanticObjectId, session=None) -> Wallet:
    """Return the user's wallet, creating an empty active one on first use."""
    wallet = await Wallet.find_one(Wallet.user_id == user_id, session=session)
    if wallet:
        return wallet
    wallet = Wallet(user_id=user_id, currency=get_settings().default_currency)
    try:
        await wallet.insert(session=session)
    except DuplicateKeyError:
        # Another request created it first
        wallet = await Wallet.find_one(Wallet.user_id == user_id, session=session)
        if not wallet:
            raise
        return wallet
    log.info("wallet_created", wallet_id=str(wallet.id), user_id=str(user_id))
    return wallet


async def get_wallet_for_user(user_id: PydanticObjectId, session=None) -> Wallet:
    wallet = await Wallet.find_one(Wallet.user_id == user_id, session=session)
    if not wallet:
        raise NotFoundError("Wallet not found")
    return wallet


def ensure_active(wallet: Wallet) -> None:
    if wallet.status != "active":
        raise WalletUnavailableError(
            f"Wallet is {wallet.status}",
            details={"wallet_id": str(wallet.id), "status": wallet.status},
        )


def ensure_covers(wallet: Wallet, amount_minor: int) -> None:
    if wallet.balance_minor < amount_minor:
        raise InsufficientBalanceError(
            details={
                "balance": format_minor(wallet.balance_minor),
                "required": format_minor(amount_minor),
            }
        )


async def _write_balance(wallet_id: PydanticObjectId, delta_minor: int, session=None) -> Wallet:
    """Apply delta with a version-conditional update; return the wallet after the write."""
    retries = max(1, get_settings().wallet_update_retries)
    for attempt in range(retries):
        wallet = await get_wallet(wallet_id, session=session)
        ensure_active(wallet)
        if delta_minor < 0:
            ensure_covers(wallet, -delta_minor)
        updated = await Wallet.find_one(
            Wallet.id == wallet.id,
            Wallet.version == wallet.version,
            session=session,
        ).update(
            Set({
                Wallet.balance_minor: wallet.balance_minor + delta_minor,
                Wallet.version: wallet.version + 1,
                Wallet.updated_at: datetime.utcnow(),
            }),
            session=session,
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if updated is not None:
            return updated
        log.info("wallet_version_conflict", wallet_id=str(wallet_id), attempt=attempt + 1)
    raise ConflictError(
        "Wallet was modified concurrently, try again",
        details={"wallet_id": str(wallet_id)},
    )


async def find_entry(idempotency_key: str, session=None) -> WalletTransaction | None:
    return await WalletTransaction.find_one(
        WalletTransaction.idempotency_key == idempotency_key,
        session=session,
    )


async def apply_entry(
    wallet_id: PydanticObjectId,
    amount_minor: int,
    direction: Literal["credit", "debit"],
    *,
    description: str = "",
    related_entity_type: str | None = None,
    related_entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
    session=None,
) -> WalletTransaction:
    """
    Move amount_minor into (credit) or out of (debit) one wallet and append the ledger row.
    Idempotency: if an entry already exists for idempotency_key, return it and do not apply again.
    """
    if amount_minor <= 0:
        raise BadRequestError("Amount must be positive")
    if idempotency_key:
        existing = await find_entry(idempotency_key, session=session)
        if existing:
            return existing

    delta = amount_minor if direction == "credit" else -amount_minor
    wallet = await _write_balance(wallet_id, delta, session=session)
    entry = WalletTransaction(
        wallet_id=wallet.id,
        type=direction,
        amount_minor=amount_minor,
        balance_after_minor=wallet.balance_minor,
        source_wallet_id=wallet.id if direction == "debit" else None,
        destination_wallet_id=wallet.id if direction == "credit" else None,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        description=description,
        metadata=metadata or {},
        idempotency_key=idempotency_key or generated_key(),
    )
    try:
        await entry.insert(session=session)
    except DuplicateKeyError:
        # Another call with the same key inserted first; undo this write
        if session is None:
            await _write_balance(wallet.id, -delta)
        if session is not None or not idempotency_key:
            raise ConflictError("Ledger entry already recorded", details={"idempotency_key": entry.idempotency_key})
        log.info("wallet_entry_duplicate", wallet_id=str(wallet.id), idempotency_key=idempotency_key)
        return await find_entry(idempotency_key)
    log.info(
        "wallet_credited" if direction == "credit" else "wallet_debited",
        wallet_id=str(wallet.id),
        amount_minor=amount_minor,
        balance_after_minor=wallet.balance_minor,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
    )
    return entry


async def credit(wallet_id: PydanticObjectId, amount_minor: int, **kwargs) -> WalletTransaction:
    return await apply_entry(wallet_id, amount_minor, "credit", **kwargs)


async def debit(wallet_id: PydanticObjectId, amount_minor: int, **kwargs) -> WalletTransaction:
    return await apply_entry(wallet_id, amount_minor, "debit", **kwargs)


async def transfer(
    source_wallet_id: PydanticObjectId,
    destination_wallet_id: PydanticObjectId,
    amount_minor: int,
    *,
    description: str = "",
    related_entity_type: str | None = None,
    related_entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
    session=None,
) -> tuple[WalletTransaction, WalletTransaction]:
    """
    Move funds between two wallets; writes one `transfer` row per wallet.
    Both wallets and the source balance are checked before the first write.
    Returns (outgoing_row, incoming_row).
    """
    if amount_minor <= 0:
        raise BadRequestError("Amount must be positive")
    if source_wallet_id == destination_wallet_id:
        raise BadRequestError("Cannot transfer to the same wallet")
    key = idempotency_key or generated_key()
    incoming_key = f"{key}:in"
    if idempotency_key:
        existing = await find_entry(idempotency_key, session=session)
        if existing:
            incoming = await find_entry(incoming_key, session=session)
            return existing, incoming

    source = await get_wallet(source_wallet_id, session=session)
    destination = await get_wallet(destination_wallet_id, session=session)
    ensure_active(source)
    ensure_active(destination)
    ensure_covers(source, amount_minor)

    source_after = await _write_balance(source.id, -amount_minor, session=session)
    try:
        destination_after = await _write_balance(destination.id, amount_minor, session=session)
    except Exception:
        if session is None:
            # No transaction to roll back: return the funds to the source
            await _write_balance(source.id, amount_minor)
        raise

    common = {
        "type": "transfer",
        "amount_minor": amount_minor,
        "source_wallet_id": source.id,
        "destination_wallet_id": destination.id,
        "related_entity_type": related_entity_type,
        "related_entity_id": related_entity_id,
        "description": description,
        "metadata": metadata or {},
    }
    outgoing = WalletTransaction(
        wallet_id=source.id,
        balance_after_minor=source_after.balance_minor,
        idempotency_key=key,
        **common,
    )
    incoming = WalletTransaction(
        wallet_id=destination.id,
        balance_after_minor=destination_after.balance_minor,
        idempotency_key=incoming_key,
        **common,
    )
    try:
        await outgoing.insert(session=session)
    except DuplicateKeyError:
        if session is None:
            await _write_balance(destination.id, -amount_minor)
            await _write_balance(source.id, amount_minor)
        if session is not None or not idempotency_key:
            raise ConflictError("Ledger entry already recorded", details={"idempotency_key": key})
        log.info("wallet_transfer_duplicate", source_wallet_id=str(source.id), idempotency_key=idempotency_key)
        return await find_entry(idempotency_key), await find_entry(incoming_key)
    await incoming.insert(session=session)
    log.info(
        "wallet_transfer",
        source_wallet_id=str(source.id),
        destination_wallet_id=str(destination.id),
        amount_minor=amount_minor,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
    )
    return outgoing, incoming


async def transfer_to_user(sender: User, recipient_email: str, amount_minor: int, note: str = "") -> WalletTransaction:
    """Peer transfer addressed by the recipient's email."""
    recipient = await User.find_one(User.email == recipient_email.strip().lower())
    if not recipient:
        raise NotFoundError("Recipient not found")
    if recipient.id == sender.id:
        raise BadRequestError("Cannot transfer to yourself")
    source = await get_or_create_wallet(sender.id)
    destination = await get_or_create_wallet(recipient.id)
    from marketplace.db.init import transaction
    async with transaction() as session:
        outgoing, _ = await transfer(
            source.id,
            destination.id,
            amount_minor,
            description=note or f"Transfer to {recipient.email}",
            related_entity_type="user_transfer",
            related_entity_id=str(recipient.id),
            session=session,
        )
        from marketplace.core.audit import log_event
        await log_event(
            str(sender.id),
            "wallet_transfer",
            "wallet",
            str(source.id),
            {"recipient_id": str(recipient.id), "amount_minor": amount_minor},
            session=session,
        )
    return outgoing


async def list_transactions(
    wallet_id: PydanticObjectId,
    limit: int = 50,
    offset: int = 0,
    type: str | None = None,
) -> tuple[list[WalletTransaction], int]:
    """Newest first."""
    filters = [WalletTransaction.wallet_id == wallet_id]
    if type:
        filters.append(WalletTransaction.type == type)
    query = WalletTransaction.find(*filters)
    total = await query.count()
    items = await WalletTransaction.find(*filters).sort(-WalletTransaction.created_at).skip(offset).limit(limit).to_list()
    return items, total


async def ledger_sum(wallet_id: PydanticObjectId) -> int:
    """Signed sum of every ledger row for the wallet."""
    rows = await WalletTransaction.find(WalletTransaction.wallet_id == wallet_id).to_list()
    return sum(r.signed_amount() for r in rows)


async def set_status(wallet_id: PydanticObjectId, status: str, actor_id: str | None = None) -> Wallet:
    """Freeze, activate or close a wallet. Closing requires a zero balance."""
    if status not in WALLET_STATUSES:
        raise BadRequestError(f"Invalid wallet status: {status}")
    wallet = await get_wallet(wallet_id)
    if wallet.status == "closed":
        raise ConflictError("Wallet is closed")
    if status == "closed" and wallet.balance_minor != 0:
        raise ConflictError("Wallet must be empty before closing")
    previous = wallet.status
    wallet.status = status
    wallet.updated_at = datetime.utcnow()
    await wallet.save()
    from marketplace.core.audit import log_event
    await log_event(actor_id, "wallet_status_changed", "wallet", str(wallet.id), {"from": previous, "to": status})
    log.info("wallet_status_changed", wallet_id=str(wallet.id), status=status)
    return wallet


async def get_admin_wallet(session=None) -> Wallet:
    """Wallet of the platform admin that receives fees and markups."""
    from marketplace.core.roles import Role
    admin = await User.find_one(User.role == Role.ADMIN.value, session=session)
    if not admin:
        raise BadRequestError("Platform admin account is not configured")
    return await get_or_create_wallet(admin.id, session=session)


def wallet_to_dict(wallet: Wallet) -> dict:
    return {
        "id": str(wallet.id),
        "user_id": str(wallet.user_id),
        "balance": format_minor(wallet.balance_minor),
        "currency": wallet.currency,
        "status": wallet.status,
        "updated_at": wallet.updated_at.isoformat(),
    }


def transaction_to_dict(entry: WalletTransaction) -> dict:
    return {
        "id": str(entry.id),
        "wallet_id": str(entry.wallet_id),
        "type": entry.type,
        "amount": format_minor(entry.amount_minor),
        "signed_amount": format_minor(entry.signed_amount()),
        "balance_after": format_minor(entry.balance_after_minor),
        "source_wallet_id": str(entry.source_wallet_id) if entry.source_wallet_id else None,
        "destination_wallet_id": str(entry.destination_wallet_id) if entry.destination_wallet_id else None,
        "related_entity_type": entry.related_entity_type,
        "related_entity_id": entry.related_entity_id,
        "description": entry.description,
        "created_at": entry.created_at.isoformat(),
    }
