"""Provider products and their inventory (shared streaming accounts or license keys)."""

import re
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.operators import In, RegEx

from marketplace.core.encryption import encrypt
from marketplace.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor
from marketplace.models.product import (
    CATEGORIES,
    LICENSE_CATEGORY,
    AccountSlot,
    InventoryAccount,
    InventoryLicense,
    Product,
    ProductVariant,
)
from marketplace.models.provider_profile import ProviderProfile
from marketplace.models.user import User
from marketplace.services.common import iso, parse_id

log = get_logger(__name__)


async def ensure_approved_provider(user: User) -> ProviderProfile:
    profile = await ProviderProfile.find_one(ProviderProfile.user_id == user.id)
    if not profile or profile.status != "approved":
        raise ForbiddenError("Only approved providers can publish products")
    return profile


def _split_keys(license_keys: str | list[str] | None) -> list[str]:
    if not license_keys:
        return []
    if isinstance(license_keys, str):
        license_keys = license_keys.splitlines()
    return [k.strip() for k in license_keys if k and k.strip()]


async def create_product(
    provider: User,
    name: str,
    category: str,
    price_minor: int,
    description: str = "",
    image_url: str | None = None,
    duration_days: int = 30,
    is_renewable: bool = False,
    accounts: list[dict[str, Any]] | None = None,
    license_keys: str | list[str] | None = None,
    activation_type: str = "single",
) -> tuple[Product, int]:
    """
    Create a product with its default variant and inventory.
    Streaming categories take accounts with profile slots; "license" takes keys.
    Returns (product, units_created).
    """
    await ensure_approved_provider(provider)
    name = (name or "").strip()
    if not name:
        raise BadRequestError("Product name is required")
    if category not in CATEGORIES:
        raise BadRequestError(f"Invalid category: {category}", details={"allowed": list(CATEGORIES)})
    if price_minor <= 0:
        raise BadRequestError("Price must be positive")
    if duration_days <= 0:
        raise BadRequestError("Duration must be positive")

    keys = _split_keys(license_keys) if category == LICENSE_CATEGORY else []
    if category == LICENSE_CATEGORY and not keys:
        raise BadRequestError("At least one license key is required")
    if category != LICENSE_CATEGORY:
        for acc in accounts or []:
            if not acc.get("email") or not acc.get("password"):
                raise BadRequestError("Every account needs an email and a password")

    product = Product(
        provider_id=provider.id,
        name=name,
        description=description or "",
        category=category,
        image_url=image_url,
        variants=[ProductVariant(price_minor=price_minor, duration_days=duration_days, is_renewable=is_renewable)],
    )
    await product.insert()

    units = 0
    if category == LICENSE_CATEGORY:
        for key in keys:
            await InventoryLicense(
                product_id=product.id,
                provider_id=provider.id,
                license_key=encrypt(key),
                activation_type=activation_type,
            ).insert()
        units = len(keys)
    else:
        for acc in accounts or []:
            profiles = acc.get("profiles") or [{"profile_name": "Profile 1", "pin": ""}]
            slots = [
                AccountSlot(profile_name=p.get("profile_name") or f"Profile {i + 1}", pin=encrypt(p.get("pin") or ""))
                for i, p in enumerate(profiles)
            ]
            await InventoryAccount(
                product_id=product.id,
                provider_id=provider.id,
                email=acc["email"].strip(),
                password=encrypt(acc["password"]),
                platform_type=acc.get("platform_type") or category,
                slots=slots,
            ).insert()
            units += len(slots)

    from marketplace.core.audit import log_event
    await log_event(str(provider.id), "product_created", "product", str(product.id), {"category": category, "units": units})
    log.info("product_created", product_id=str(product.id), provider_id=str(provider.id), units=units)
    return product, units


async def get_product(product_id: str | PydanticObjectId) -> Product:
    product = await Product.get(parse_id(product_id, "Product"))
    if not product:
        raise NotFoundError("Product not found")
    return product


async def get_owned_product(product_id: str, provider: User) -> Product:
    product = await get_product(product_id)
    if product.provider_id != provider.id:
        raise ForbiddenError("You do not own this product")
    return product


async def stock_for(product: Product) -> dict[str, int]:
    if product.category == LICENSE_CATEGORY:
        available = await InventoryLicense.find(
            InventoryLicense.product_id == product.id,
            InventoryLicense.status == "available",
        ).count()
        sold = await InventoryLicense.find(
            InventoryLicense.product_id == product.id,
            InventoryLicense.status == "sold",
        ).count()
        return {"available": available, "sold": sold}
    accounts = await InventoryAccount.find(InventoryAccount.product_id == product.id).to_list()
    slots = [s for a in accounts for s in a.slots]
    sold = sum(1 for s in slots if s.status == "sold")
    return {"available": len(slots) - sold, "sold": sold}


async def list_products(
    provider_id: PydanticObjectId | None = None,
    category: str | None = None,
    search: str | None = None,
    active_only: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Product], int]:
    filters = []
    if provider_id:
        filters.append(Product.provider_id == provider_id)
    if category:
        filters.append(Product.category == category)
    if active_only:
        filters.append(Product.is_active == True)  # noqa: E712
    if search:
        filters.append(RegEx(Product.name, re.escape(search.strip()), options="i"))
    total = await Product.find(*filters).count()
    items = await Product.find(*filters).sort(-Product.created_at).skip(offset).limit(limit).to_list()
    return items, total


async def update_product(product_id: str, provider: User, fields: dict[str, Any]) -> Product:
    product = await get_owned_product(product_id, provider)
    if "name" in fields:
        name = (fields["name"] or "").strip()
        if not name:
            raise BadRequestError("Product name is required")
        product.name = name
    for key in ("description", "image_url", "is_active"):
        if key in fields:
            setattr(product, key, fields[key])
    variant = product.variants[0] if product.variants else None
    if variant is not None:
        if "price_minor" in fields:
            if fields["price_minor"] <= 0:
                raise BadRequestError("Price must be positive")
            variant.price_minor = fields["price_minor"]
        if "duration_days" in fields:
            if fields["duration_days"] <= 0:
                raise BadRequestError("Duration must be positive")
            variant.duration_days = fields["duration_days"]
    product.updated_at = datetime.utcnow()
    await product.save()
    log.info("product_updated", product_id=str(product.id), fields=sorted(fields))
    return product


async def delete_product(product_id: str, provider: User) -> None:
    """Owner only; refused once any unit was sold, since purchases reference the inventory."""
    product = await get_owned_product(product_id, provider)
    # Take the product off sale so no new purchase starts while inventory is removed
    await Product.find_one(Product.id == product.id).update(Set({Product.is_active: False}))
    stock = await stock_for(product)
    if stock["sold"] > 0:
        await Product.find_one(Product.id == product.id).update(Set({Product.is_active: product.is_active}))
        raise ConflictError("Cannot delete a product with sold inventory", details={"sold": stock["sold"]})
    await InventoryAccount.find({"product_id": product.id, "slots.status": {"$ne": "sold"}}).delete()
    await InventoryLicense.find({"product_id": product.id, "status": {"$ne": "sold"}}).delete()
    remaining = (
        await InventoryAccount.find(InventoryAccount.product_id == product.id).count()
        + await InventoryLicense.find(InventoryLicense.product_id == product.id).count()
    )
    if remaining:
        # A purchase claimed a unit in between; its inventory and the product stay
        log.warning("product_delete_raced_sale", product_id=str(product.id), remaining=remaining)
        raise ConflictError("Cannot delete a product with sold inventory", details={"sold": remaining})
    await product.delete()
    from marketplace.core.audit import log_event
    await log_event(str(provider.id), "product_deleted", "product", str(product.id), {})
    log.info("product_deleted", product_id=str(product.id))


async def delete_inventory_account(account_id: str, provider: User) -> None:
    account = await InventoryAccount.get(parse_id(account_id, "Inventory account"))
    if not account:
        raise NotFoundError("Inventory account not found")
    if account.provider_id != provider.id:
        raise ForbiddenError("You do not own this inventory account")
    if account.has_sold_slot():
        raise ConflictError("Cannot delete an account with sold profiles")
    # Only matches while no slot is sold
    result = await InventoryAccount.find({"_id": account.id, "slots.status": {"$ne": "sold"}}).delete()
    if result is None or result.deleted_count == 0:
        raise ConflictError("Cannot delete an account with sold profiles")
    from marketplace.core.audit import log_event
    await log_event(str(provider.id), "inventory_account_deleted", "inventory_account", str(account.id), {})
    log.info("inventory_account_deleted", account_id=str(account.id))


async def providers_by_id(provider_ids: list[PydanticObjectId]) -> dict[PydanticObjectId, User]:
    users = await User.find(In(User.id, provider_ids)).to_list() if provider_ids else []
    return {u.id: u for u in users}


def product_to_dict(product: Product, stock: dict[str, int] | None = None) -> dict:
    out = {
        "id": str(product.id),
        "provider_id": str(product.provider_id),
        "name": product.name,
        "description": product.description,
        "category": product.category,
        "image_url": product.image_url,
        "is_active": product.is_active,
        "variants": [
            {
                "name": v.name,
                "price": format_minor(v.price_minor),
                "duration_days": v.duration_days,
                "is_renewable": v.is_renewable,
            }
            for v in product.variants
        ],
        "created_at": iso(product.created_at),
    }
    if stock is not None:
        out["stock"] = stock
    return out
