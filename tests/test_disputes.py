from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from beanie import PydanticObjectId

from marketplace.core.exceptions import BadRequestError, ConflictError, ForbiddenError
from marketplace.core.roles import Role
from marketplace.models.dispute import Dispute
from marketplace.models.purchase import Purchase
from marketplace.services import disputes as dispute_service
from marketplace.services import wallets as wallet_service

RESOLUTION = "Account credentials were invalid on delivery"


async def _case(make_user, amount_minor=4000):
    """Completed purchase of amount_minor whose provider still holds the money; dispute under review."""
    seller = await make_user(Role.SELLER)
    provider = await make_user(Role.PROVIDER, balance_minor=amount_minor)
    conciliator = await make_user(Role.CONCILIATOR)
    purchase = Purchase(
        seller_id=seller.id,
        provider_id=provider.id,
        product_id=PydanticObjectId(),
        product_name="Netflix Premium",
        variant_name="Standard",
        amount_minor=amount_minor,
        base_price_minor=amount_minor,
        markup_minor=0,
        platform_fee_minor=0,
        provider_earnings_minor=amount_minor,
    )
    await purchase.insert()
    d = await dispute_service.open_dispute(str(purchase.id), seller, "Wrong password")
    d = await dispute_service.assign_dispute(str(d.id), conciliator)
    return seller, provider, conciliator, purchase, d


async def _balances(seller, provider):
    s = await wallet_service.get_wallet_for_user(seller.id)
    p = await wallet_service.get_wallet_for_user(provider.id)
    return s.balance_minor, p.balance_minor


def test_refund_amounts():
    assert dispute_service.refund_amount(4000, "refund_seller") == 4000
    assert dispute_service.refund_amount(4000, "favor_provider") == 0
    assert dispute_service.refund_amount(4000, "no_action") == 0
    assert dispute_service.refund_amount(4000, "partial_refund", Decimal("25")) == 1000
    assert dispute_service.refund_amount(4000, "partial_refund", 0) == dispute_service.refund_amount(4000, "favor_provider")
    assert dispute_service.refund_amount(4000, "partial_refund", 100) == dispute_service.refund_amount(4000, "refund_seller")
    with pytest.raises(BadRequestError):
        dispute_service.refund_amount(4000, "partial_refund")
    with pytest.raises(BadRequestError):
        dispute_service.refund_amount(4000, "partial_refund", 101)
    with pytest.raises(BadRequestError):
        dispute_service.refund_amount(4000, "coin_flip")


async def test_partial_refund_moves_share_to_seller(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)

    d = await dispute_service.resolve_dispute(str(d.id), conciliator, RESOLUTION, "partial_refund", Decimal("25"))

    assert d.status == "closed"
    assert d.refund_minor == 1000
    assert d.partial_refund_percentage == 25.0
    assert d.refund_transaction_id is not None
    assert await _balances(seller, provider) == (1000, 3000)
    purchase = await Purchase.get(purchase.id)
    assert purchase.status == "partially_refunded"
    assert purchase.refunded_minor == 1000


async def test_full_refund(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)
    await dispute_service.resolve_dispute(str(d.id), conciliator, RESOLUTION, "refund_seller")
    assert await _balances(seller, provider) == (4000, 0)
    purchase = await Purchase.get(purchase.id)
    assert purchase.status == "refunded"


async def test_favor_provider_moves_nothing(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)
    d = await dispute_service.resolve_dispute(str(d.id), conciliator, RESOLUTION, "favor_provider")
    assert d.status == "closed"
    assert d.refund_minor == 0
    assert d.refund_transaction_id is None
    assert await _balances(seller, provider) == (0, 4000)
    purchase = await Purchase.get(purchase.id)
    assert purchase.status == "completed"


async def test_only_assigned_conciliator_resolves(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)
    other = await make_user(Role.CONCILIATOR)
    with pytest.raises(ForbiddenError):
        await dispute_service.resolve_dispute(str(d.id), other, RESOLUTION, "refund_seller")
    with pytest.raises(BadRequestError):
        await dispute_service.resolve_dispute(str(d.id), conciliator, "too short", "refund_seller")
    d = await dispute_service.get_dispute(d.id)
    assert d.status == "under_review"
    assert await _balances(seller, provider) == (0, 4000)


async def test_closed_dispute_cannot_be_resolved_again(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)
    await dispute_service.resolve_dispute(str(d.id), conciliator, RESOLUTION, "refund_seller")
    with pytest.raises(ConflictError):
        await dispute_service.resolve_dispute(str(d.id), conciliator, RESOLUTION, "refund_seller")
    assert await _balances(seller, provider) == (4000, 0)


async def test_one_active_dispute_per_purchase(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)
    with pytest.raises(ConflictError):
        await dispute_service.open_dispute(str(purchase.id), seller, "Still broken")
    with pytest.raises(ForbiddenError):
        await dispute_service.open_dispute(str(purchase.id), provider, "Not my purchase")
    with pytest.raises(ConflictError):
        await dispute_service.assign_dispute(str(d.id), conciliator)


async def test_refund_larger_than_provider_balance_is_refused(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)
    provider_wallet = await wallet_service.get_wallet_for_user(provider.id)
    await wallet_service.debit(provider_wallet.id, 3500, description="withdrawn")
    from marketplace.core.exceptions import InsufficientBalanceError
    with pytest.raises(InsufficientBalanceError):
        await dispute_service.resolve_dispute(str(d.id), conciliator, RESOLUTION, "refund_seller")
    d = await dispute_service.get_dispute(d.id)
    assert d.status == "under_review"


def _dispute(status, created_ago, assigned_ago=None):
    now = datetime(2024, 1, 10, 12, 0, 0)
    d = Dispute(
        purchase_id=PydanticObjectId(),
        seller_id=PydanticObjectId(),
        provider_id=PydanticObjectId(),
        opened_by=PydanticObjectId(),
        reason="x",
        status=status,
        created_at=now - created_ago,
        assigned_at=(now - assigned_ago) if assigned_ago is not None else None,
    )
    return d, now


@pytest.mark.parametrize(
    "status, created_ago, assigned_ago, expected",
    [
        ("open", timedelta(minutes=10), None, "on_time"),
        ("open", timedelta(minutes=31), None, "overdue"),
        ("under_review", timedelta(days=3), timedelta(hours=2), "on_time"),
        ("under_review", timedelta(days=3), timedelta(hours=30), "warning"),
        ("under_review", timedelta(days=3), timedelta(hours=49), "overdue"),
        ("closed", timedelta(days=3), timedelta(hours=49), None),
    ],
)
def test_sla_indicator(status, created_ago, assigned_ago, expected):
    d, now = _dispute(status, created_ago, assigned_ago)
    assert dispute_service.sla_indicator(d, now) == expected


async def test_internal_notes_hidden_from_parties(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)
    await dispute_service.add_message(str(d.id), seller, "The password does not work")
    await dispute_service.add_message(str(d.id), conciliator, "Checked with provider logs", is_internal=True)
    with pytest.raises(ForbiddenError):
        await dispute_service.add_message(str(d.id), seller, "sneaky", is_internal=True)
    stranger = await make_user(Role.SELLER)
    with pytest.raises(ForbiddenError):
        await dispute_service.list_messages(str(d.id), stranger)

    seen_by_seller = await dispute_service.list_messages(str(d.id), seller)
    seen_by_conciliator = await dispute_service.list_messages(str(d.id), conciliator)
    assert [m.message for m in seen_by_seller] == ["The password does not work"]
    assert len(seen_by_conciliator) == 2


async def test_conciliator_queue(make_user):
    seller, provider, conciliator, purchase, d = await _case(make_user)
    other = await make_user(Role.CONCILIATOR)
    mine, total = await dispute_service.list_disputes(conciliator_id=conciliator.id)
    assert total == 1 and mine[0].id == d.id
    _, total = await dispute_service.list_disputes(conciliator_id=other.id)
    assert total == 0
