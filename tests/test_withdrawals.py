import pytest

from marketplace.core.exceptions import BadRequestError, ConflictError, InsufficientBalanceError
from marketplace.core.roles import Role
from marketplace.models.wallet_transaction import WalletTransaction
from marketplace.services import wallets as wallet_service
from marketplace.services import withdrawals as withdrawal_service

REASON = "Bank account name does not match"


@pytest.fixture
async def provider(make_user):
    return await make_user(Role.PROVIDER, balance_minor=10000)


@pytest.fixture
async def validator(make_user):
    return await make_user(Role.PAYMENT_VALIDATOR)


async def test_withdrawal_full_cycle_debits_once(provider, validator):
    w = await withdrawal_service.request_withdrawal(provider, 5000, "bank_transfer", {"account": "123"})
    assert w.status == "pending"
    # Requesting does not move funds
    wallet = await wallet_service.get_wallet_for_user(provider.id)
    assert wallet.balance_minor == 10000

    w = await withdrawal_service.approve_withdrawal(str(w.id), validator)
    assert w.status == "approved"
    assert w.processed_by == validator.id
    wallet = await wallet_service.get_wallet(wallet.id)
    assert wallet.balance_minor == 10000

    w = await withdrawal_service.complete_withdrawal(str(w.id), validator, confirm=True)
    assert w.status == "completed"
    assert w.completed_at is not None

    wallet = await wallet_service.get_wallet(wallet.id)
    assert wallet.balance_minor == 5000
    rows = await WalletTransaction.find(
        WalletTransaction.related_entity_type == "withdrawal",
        WalletTransaction.related_entity_id == str(w.id),
    ).to_list()
    assert len(rows) == 1
    row = wallet_service.transaction_to_dict(rows[0])
    assert row["type"] == "debit"
    assert row["amount"] == "50.00"
    assert row["balance_after"] == "50.00"
    assert w.transaction_id == rows[0].id


async def test_completion_requires_confirmation(provider, validator):
    w = await withdrawal_service.request_withdrawal(provider, 1000, "yape")
    await withdrawal_service.approve_withdrawal(str(w.id), validator)
    with pytest.raises(BadRequestError):
        await withdrawal_service.complete_withdrawal(str(w.id), validator, confirm=False)
    w = await withdrawal_service.get_withdrawal(w.id)
    assert w.status == "approved"


async def test_terminal_states_cannot_move(provider, validator):
    done = await withdrawal_service.request_withdrawal(provider, 1000, "yape")
    await withdrawal_service.approve_withdrawal(str(done.id), validator)
    await withdrawal_service.complete_withdrawal(str(done.id), validator, confirm=True)
    with pytest.raises(ConflictError):
        await withdrawal_service.complete_withdrawal(str(done.id), validator, confirm=True)
    with pytest.raises(ConflictError):
        await withdrawal_service.reject_withdrawal(str(done.id), validator, REASON)
    with pytest.raises(ConflictError):
        await withdrawal_service.approve_withdrawal(str(done.id), validator)

    rejected = await withdrawal_service.request_withdrawal(provider, 1000, "yape")
    rejected = await withdrawal_service.reject_withdrawal(str(rejected.id), validator, "  " + REASON + "  ")
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == REASON
    with pytest.raises(ConflictError):
        await withdrawal_service.approve_withdrawal(str(rejected.id), validator)

    # Only the completed one moved money
    wallet = await wallet_service.get_wallet_for_user(provider.id)
    assert wallet.balance_minor == 9000


async def test_pending_cannot_complete(provider, validator):
    w = await withdrawal_service.request_withdrawal(provider, 1000, "yape")
    with pytest.raises(ConflictError):
        await withdrawal_service.complete_withdrawal(str(w.id), validator, confirm=True)


@pytest.mark.parametrize("reason", [None, "", "   ", "too short", "x" * 501])
async def test_rejection_reason_bounds(provider, validator, reason):
    w = await withdrawal_service.request_withdrawal(provider, 1000, "yape")
    with pytest.raises(BadRequestError):
        await withdrawal_service.reject_withdrawal(str(w.id), validator, reason)
    w = await withdrawal_service.get_withdrawal(w.id)
    assert w.status == "pending"


async def test_request_over_balance_rejected(provider):
    with pytest.raises(InsufficientBalanceError):
        await withdrawal_service.request_withdrawal(provider, 10001, "yape")


async def test_insufficient_at_completion_leaves_request_approved(provider, validator):
    w = await withdrawal_service.request_withdrawal(provider, 8000, "yape")
    await withdrawal_service.approve_withdrawal(str(w.id), validator)
    wallet = await wallet_service.get_wallet_for_user(provider.id)
    await wallet_service.debit(wallet.id, 5000, description="spent elsewhere")

    with pytest.raises(InsufficientBalanceError):
        await withdrawal_service.complete_withdrawal(str(w.id), validator, confirm=True)
    w = await withdrawal_service.get_withdrawal(w.id)
    assert w.status == "approved"
    assert w.transaction_id is None
    wallet = await wallet_service.get_wallet(wallet.id)
    assert wallet.balance_minor == 5000


async def test_unknown_withdrawal_is_not_found(validator):
    from marketplace.core.exceptions import NotFoundError
    with pytest.raises(NotFoundError):
        await withdrawal_service.approve_withdrawal("not-an-id", validator)
    with pytest.raises(NotFoundError):
        await withdrawal_service.approve_withdrawal("64b7f0c2a1b2c3d4e5f60718", validator)


async def test_database_error_during_completion_reverts_claim(provider, validator, monkeypatch):
    from pymongo.errors import PyMongoError

    w = await withdrawal_service.request_withdrawal(provider, 2000, "yape")
    await withdrawal_service.approve_withdrawal(str(w.id), validator)

    async def broken_debit(*args, **kwargs):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(wallet_service, "debit", broken_debit)
    with pytest.raises(PyMongoError):
        await withdrawal_service.complete_withdrawal(str(w.id), validator, confirm=True)
    w = await withdrawal_service.get_withdrawal(w.id)
    assert w.status == "approved"
    assert w.completed_at is None
    wallet = await wallet_service.get_wallet_for_user(provider.id)
    assert wallet.balance_minor == 10000
