"""Seller purchases: price a product, allocate one inventory unit, settle the money."""

from datetime import datetime, timedelta

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.odm.queries.update import UpdateResponse

from marketplace.core.encryption import safe_decrypt
from marketplace.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor
from marketplace.db.init import transaction
from marketplace.models.product import LICENSE_CATEGORY, InventoryAccount, InventoryLicense, Product
from marketplace.models.purchase import Purchase
from marketplace.models.user import User
from marketplace.services import pricing as pricing_service
from marketplace.services import products as product_service
from marketplace.services import wallets as wallet_service
from marketplace.services.common import iso, oid, parse_id

log = get_logger(__name__)


async def _claim_license(product: Product, purchase_id: PydanticObjectId, session=None) -> InventoryLicense | None:
    return await InventoryLicense.find_one(
        InventoryLicense.product_id == product.id,
        InventoryLicense.status == "available",
        session=session,
    ).update(
        Set({InventoryLicense.status: "sold", InventoryLicense.purchase_id: purchase_id}),
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def _claim_slot(product: Product, purchase_id: PydanticObjectId, session=None) -> tuple[InventoryAccount, int] | None:
    """Mark the first available profile slot sold; the update only matches while that slot is still available."""
    accounts = await InventoryAccount.find(InventoryAccount.product_id == product.id, session=session).to_list()
    for account in accounts:
        for index, slot in enumerate(account.slots):
            if slot.status != "available":
                continue
            claimed = await InventoryAccount.find_one(
                {"_id": account.id, f"slots.{index}.status": "available"},
                session=session,
            ).update(
                {"$set": {f"slots.{index}.status": "sold", f"slots.{index}.purchase_id": purchase_id}},
                session=session,
                response_type=UpdateResponse.NEW_DOCUMENT,
            )
            if claimed is not None:
                return claimed, index
    return None


async def _release(purchase: Purchase) -> None:
    if purchase.inventory_license_id:
        await InventoryLicense.find_one(InventoryLicense.id == purchase.inventory_license_id).update(
            Set({InventoryLicense.status: "available", InventoryLicense.purchase_id: None})
        )
    if purchase.inventory_account_id is not None and purchase.slot_index is not None:
        i = purchase.slot_index
        await InventoryAccount.find_one({"_id": purchase.inventory_account_id}).update(
            {"$set": {f"slots.{i}.status": "available", f"slots.{i}.purchase_id": None}}
        )


async def purchase_product(seller: User, product_id: str) -> Purchase:
    """
    Seller pays base + markup. The provider is credited base - fee and the
    admin markup + fee, both as transfers out of the seller's wallet.
    """
    product = await product_service.get_product(product_id)
    if not product.is_active or not product.variants:
        raise BadRequestError("Product is not available")
    if product.provider_id == seller.id:
        raise BadRequestError("Cannot buy your own product")
    variant = product.variants[0]
    config = await pricing_service.get_active_config()
    price = pricing_service.compute_price(variant.price_minor, config)

    seller_wallet = await wallet_service.get_or_create_wallet(seller.id)
    provider_wallet = await wallet_service.get_or_create_wallet(product.provider_id)
    admin_wallet = await wallet_service.get_admin_wallet()
    for w in (seller_wallet, provider_wallet, admin_wallet):
        wallet_service.ensure_active(w)
    wallet_service.ensure_covers(seller_wallet, price["total_minor"])

    purchase = Purchase(
        id=PydanticObjectId(),
        seller_id=seller.id,
        provider_id=product.provider_id,
        product_id=product.id,
        product_name=product.name,
        variant_name=variant.name,
        amount_minor=price["total_minor"],
        base_price_minor=price["base_price_minor"],
        markup_minor=price["markup_minor"],
        platform_fee_minor=price["platform_fee_minor"],
        provider_earnings_minor=price["provider_earnings_minor"],
        expires_at=datetime.utcnow() + timedelta(days=variant.duration_days),
    )

    async with transaction() as session:
        if product.category == LICENSE_CATEGORY:
            lic = await _claim_license(product, purchase.id, session=session)
            if lic is None:
                raise ConflictError("Product is out of stock")
            purchase.inventory_license_id = lic.id
        else:
            claimed = await _claim_slot(product, purchase.id, session=session)
            if claimed is None:
                raise ConflictError("Product is out of stock")
            purchase.inventory_account_id = claimed[0].id
            purchase.slot_index = claimed[1]

        done: list[tuple[PydanticObjectId, PydanticObjectId, int]] = []
        legs = [
            (provider_wallet.id, price["provider_earnings_minor"], "provider", f"Sale of {product.name}"),
            (admin_wallet.id, price["admin_earnings_minor"], "platform", f"Platform share of {product.name}"),
        ]
        try:
            for destination_id, amount, leg, description in legs:
                if amount <= 0:
                    continue
                outgoing, _ = await wallet_service.transfer(
                    seller_wallet.id,
                    destination_id,
                    amount,
                    description=description,
                    related_entity_type="purchase",
                    related_entity_id=str(purchase.id),
                    metadata={"leg": leg, "product_id": str(product.id)},
                    idempotency_key=f"purchase:{purchase.id}:{leg}",
                    session=session,
                )
                done.append((destination_id, seller_wallet.id, amount))
                if purchase.transaction_id is None:
                    purchase.transaction_id = outgoing.id
        except Exception:
            if session is None:
                for source_id, destination_id, amount in done:
                    await wallet_service.transfer(
                        source_id,
                        destination_id,
                        amount,
                        description="Purchase reversal",
                        related_entity_type="purchase_reversal",
                        related_entity_id=str(purchase.id),
                    )
                await _release(purchase)
            raise

        await purchase.insert(session=session)
        from marketplace.core.audit import log_event
        await log_event(
            str(seller.id),
            "purchase_completed",
            "purchase",
            str(purchase.id),
            {"amount_minor": purchase.amount_minor, "product_id": str(product.id)},
            session=session,
        )
    log.info(
        "purchase_completed",
        purchase_id=str(purchase.id),
        seller_id=str(seller.id),
        amount_minor=purchase.amount_minor,
        provider_earnings_minor=purchase.provider_earnings_minor,
    )
    return purchase


async def get_purchase(purchase_id: str | PydanticObjectId, session=None) -> Purchase:
    purchase = await Purchase.get(parse_id(purchase_id, "Purchase"), session=session)
    if not purchase:
        raise NotFoundError("Purchase not found")
    return purchase


async def get_purchase_for_buyer(purchase_id: str, seller: User) -> Purchase:
    purchase = await get_purchase(purchase_id)
    if purchase.seller_id != seller.id:
        raise ForbiddenError("You do not own this purchase")
    return purchase


async def credentials_for(purchase: Purchase) -> dict:
    """Decrypted delivery details for the buyer."""
    if purchase.inventory_license_id:
        lic = await InventoryLicense.get(purchase.inventory_license_id)
        return {"license_key": safe_decrypt(lic.license_key) if lic else ""}
    if purchase.inventory_account_id:
        account = await InventoryAccount.get(purchase.inventory_account_id)
        if not account or purchase.slot_index is None or purchase.slot_index >= len(account.slots):
            return {}
        slot = account.slots[purchase.slot_index]
        return {
            "email": account.email,
            "password": safe_decrypt(account.password),
            "profile_name": slot.profile_name,
            "pin": safe_decrypt(slot.pin),
        }
    return {}


async def list_for_seller(seller_id: PydanticObjectId, limit: int = 20, offset: int = 0) -> tuple[list[Purchase], int]:
    total = await Purchase.find(Purchase.seller_id == seller_id).count()
    items = await Purchase.find(Purchase.seller_id == seller_id).sort(-Purchase.created_at).skip(offset).limit(limit).to_list()
    return items, total


def purchase_to_dict(p: Purchase) -> dict:
    return {
        "id": str(p.id),
        "seller_id": str(p.seller_id),
        "provider_id": str(p.provider_id),
        "product_id": str(p.product_id),
        "product_name": p.product_name,
        "variant_name": p.variant_name,
        "amount": format_minor(p.amount_minor),
        "base_price": format_minor(p.base_price_minor),
        "markup": format_minor(p.markup_minor),
        "platform_fee": format_minor(p.platform_fee_minor),
        "provider_earnings": format_minor(p.provider_earnings_minor),
        "refunded": format_minor(p.refunded_minor),
        "status": p.status,
        "transaction_id": oid(p.transaction_id),
        "expires_at": iso(p.expires_at),
        "created_at": iso(p.created_at),
    }
