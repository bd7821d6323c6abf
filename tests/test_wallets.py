"""Ledger and balance tests against the in-memory database."""

import asyncio

import pytest
from pymongo.errors import DuplicateKeyError

from marketplace.core.exceptions import (
    BadRequestError,
    ConflictError,
    InsufficientBalanceError,
    WalletUnavailableError,
)
from marketplace.core.roles import Role
from marketplace.models.wallet_transaction import WalletTransaction
from marketplace.services import wallets as wallet_service


async def test_new_wallet_is_empty_and_active(make_user):
    user = await make_user(Role.SELLER)
    wallet = await wallet_service.get_wallet_for_user(user.id)
    assert wallet.balance_minor == 0
    assert wallet.status == "active"
    assert wallet.currency == "USD"
    again = await wallet_service.get_or_create_wallet(user.id)
    assert again.id == wallet.id


async def test_balance_equals_ledger_sum(make_user):
    a = await make_user(Role.SELLER, balance_minor=10000)
    b = await make_user(Role.PROVIDER)
    wa = await wallet_service.get_wallet_for_user(a.id)
    wb = await wallet_service.get_wallet_for_user(b.id)

    await wallet_service.debit(wa.id, 1250, description="fee")
    await wallet_service.transfer(wa.id, wb.id, 3000, description="sale")
    await wallet_service.credit(wb.id, 75)

    wa = await wallet_service.get_wallet(wa.id)
    wb = await wallet_service.get_wallet(wb.id)
    assert wa.balance_minor == 10000 - 1250 - 3000
    assert wb.balance_minor == 3075
    assert await wallet_service.ledger_sum(wa.id) == wa.balance_minor
    assert await wallet_service.ledger_sum(wb.id) == wb.balance_minor


async def test_transfer_writes_one_row_per_wallet(make_user):
    a = await make_user(Role.SELLER, balance_minor=5000)
    b = await make_user(Role.PROVIDER)
    wa = await wallet_service.get_wallet_for_user(a.id)
    wb = await wallet_service.get_wallet_for_user(b.id)

    outgoing, incoming = await wallet_service.transfer(wa.id, wb.id, 2000, idempotency_key="t-1")
    assert outgoing.wallet_id == wa.id
    assert incoming.wallet_id == wb.id
    assert outgoing.type == incoming.type == "transfer"
    assert outgoing.signed_amount() == -2000
    assert incoming.signed_amount() == 2000
    assert outgoing.balance_after_minor == 3000
    assert incoming.balance_after_minor == 2000


async def test_debit_below_zero_is_rejected_without_a_row(make_user):
    user = await make_user(Role.SELLER, balance_minor=500)
    wallet = await wallet_service.get_wallet_for_user(user.id)
    rows_before = await WalletTransaction.find(WalletTransaction.wallet_id == wallet.id).count()

    with pytest.raises(InsufficientBalanceError) as exc:
        await wallet_service.debit(wallet.id, 501)
    assert exc.value.status_code == 400
    assert exc.value.details == {"balance": "5.00", "required": "5.01"}

    wallet = await wallet_service.get_wallet(wallet.id)
    assert wallet.balance_minor == 500
    assert await WalletTransaction.find(WalletTransaction.wallet_id == wallet.id).count() == rows_before


async def test_non_positive_amounts_rejected(make_user):
    user = await make_user(Role.SELLER, balance_minor=500)
    wallet = await wallet_service.get_wallet_for_user(user.id)
    with pytest.raises(BadRequestError):
        await wallet_service.credit(wallet.id, 0)
    with pytest.raises(BadRequestError):
        await wallet_service.debit(wallet.id, -5)
    with pytest.raises(BadRequestError):
        await wallet_service.transfer(wallet.id, wallet.id, 100)


async def test_idempotency_key_applies_once(make_user):
    user = await make_user(Role.SELLER)
    wallet = await wallet_service.get_wallet_for_user(user.id)
    first = await wallet_service.credit(wallet.id, 1000, idempotency_key="recharge:abc")
    second = await wallet_service.credit(wallet.id, 1000, idempotency_key="recharge:abc")
    assert first.id == second.id
    wallet = await wallet_service.get_wallet(wallet.id)
    assert wallet.balance_minor == 1000


async def test_concurrent_debits_never_overdraw(make_user):
    user = await make_user(Role.SELLER, balance_minor=10000)
    wallet = await wallet_service.get_wallet_for_user(user.id)

    results = await asyncio.gather(
        wallet_service.debit(wallet.id, 6000),
        wallet_service.debit(wallet.id, 6000),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], (InsufficientBalanceError, ConflictError))
    wallet = await wallet_service.get_wallet(wallet.id)
    assert wallet.balance_minor == 4000
    assert await wallet_service.ledger_sum(wallet.id) == 4000


async def test_version_increments_per_write(make_user):
    user = await make_user(Role.SELLER)
    wallet = await wallet_service.get_wallet_for_user(user.id)
    start = wallet.version
    await wallet_service.credit(wallet.id, 100)
    await wallet_service.credit(wallet.id, 100)
    wallet = await wallet_service.get_wallet(wallet.id)
    assert wallet.version == start + 2


async def test_frozen_wallet_rejects_movements(make_user, admin):
    a = await make_user(Role.SELLER, balance_minor=1000)
    b = await make_user(Role.PROVIDER)
    wa = await wallet_service.get_wallet_for_user(a.id)
    wb = await wallet_service.get_wallet_for_user(b.id)

    await wallet_service.set_status(wb.id, "frozen", actor_id=str(admin.id))
    with pytest.raises(WalletUnavailableError):
        await wallet_service.transfer(wa.id, wb.id, 500)
    wa = await wallet_service.get_wallet(wa.id)
    assert wa.balance_minor == 1000

    await wallet_service.set_status(wb.id, "active", actor_id=str(admin.id))
    await wallet_service.transfer(wa.id, wb.id, 500)
    wb = await wallet_service.get_wallet(wb.id)
    assert wb.balance_minor == 500


async def test_close_requires_empty_wallet(make_user):
    user = await make_user(Role.SELLER, balance_minor=100)
    wallet = await wallet_service.get_wallet_for_user(user.id)
    with pytest.raises(ConflictError):
        await wallet_service.set_status(wallet.id, "closed")
    await wallet_service.debit(wallet.id, 100)
    closed = await wallet_service.set_status(wallet.id, "closed")
    assert closed.status == "closed"
    with pytest.raises(ConflictError):
        await wallet_service.set_status(wallet.id, "active")


async def test_transfer_to_user_by_email(make_user):
    sender = await make_user(Role.SELLER, balance_minor=2500)
    recipient = await make_user(Role.SELLER, email="friend@example.com")
    entry = await wallet_service.transfer_to_user(sender, "  Friend@Example.com ", 1000, "lunch")
    assert entry.amount_minor == 1000
    assert entry.description == "lunch"
    wr = await wallet_service.get_wallet_for_user(recipient.id)
    assert wr.balance_minor == 1000
    with pytest.raises(InsufficientBalanceError):
        await wallet_service.transfer_to_user(sender, "friend@example.com", 10_000)


async def test_idempotency_key_is_unique_in_the_ledger(make_user):
    user = await make_user(Role.SELLER)
    wallet = await wallet_service.get_wallet_for_user(user.id)
    a = await wallet_service.credit(wallet.id, 100)
    b = await wallet_service.credit(wallet.id, 100)
    assert a.idempotency_key != b.idempotency_key

    keyed = await wallet_service.credit(wallet.id, 100, idempotency_key="recharge:dup")
    copy = WalletTransaction(
        wallet_id=wallet.id,
        type="credit",
        amount_minor=100,
        balance_after_minor=keyed.balance_after_minor,
        idempotency_key="recharge:dup",
    )
    with pytest.raises(DuplicateKeyError):
        await copy.insert()


async def test_racing_entry_with_same_key_is_applied_once(make_user, monkeypatch):
    user = await make_user(Role.SELLER)
    wallet = await wallet_service.get_wallet_for_user(user.id)
    first = await wallet_service.credit(wallet.id, 700, idempotency_key="recharge:race")

    real_find = wallet_service.find_entry
    lookups = []

    async def stale_find(key, session=None):
        lookups.append(key)
        if len(lookups) == 1:
            # Lookup ran before the other writer inserted its row
            return None
        return await real_find(key, session=session)

    monkeypatch.setattr(wallet_service, "find_entry", stale_find)
    second = await wallet_service.credit(wallet.id, 700, idempotency_key="recharge:race")
    assert second.id == first.id
    wallet = await wallet_service.get_wallet(wallet.id)
    assert wallet.balance_minor == 700
    rows = await WalletTransaction.find(WalletTransaction.idempotency_key == "recharge:race").to_list()
    assert len(rows) == 1
