"""Marketplace pricing: distributor markup charged to sellers, platform fee withheld from providers."""

from decimal import Decimal

from beanie.odm.operators.update.general import Set

from marketplace.core.exceptions import BadRequestError
from marketplace.core.logging import get_logger
from marketplace.core.money import format_minor, percent_of, to_minor
from marketplace.db.init import transaction
from marketplace.models.platform_config import PricingConfig
from marketplace.models.user import User
from marketplace.services.common import iso

log = get_logger(__name__)

ADJUSTMENT_TYPES = ("percentage", "fixed")
# Hundredths: 1500 = 15.00% for percentages, 15.00 in currency for fixed amounts
DEFAULT_MARKUP = 1500
DEFAULT_FEE = 1000


def default_config() -> PricingConfig:
    return PricingConfig(
        distributor_markup=DEFAULT_MARKUP,
        distributor_markup_type="percentage",
        platform_fee=DEFAULT_FEE,
        platform_fee_type="percentage",
        version=0,
    )


async def get_active_config(session=None) -> PricingConfig:
    """Active record, or the built-in defaults when none was ever saved. Read per operation."""
    config = await PricingConfig.find(
        PricingConfig.is_active == True,  # noqa: E712
        session=session,
    ).sort(-PricingConfig.version).first_or_none()
    return config or default_config()


def _validate(value: Decimal, kind: str, name: str) -> int:
    if kind not in ADJUSTMENT_TYPES:
        raise BadRequestError(f"Invalid {name} type: {kind}", details={"allowed": list(ADJUSTMENT_TYPES)})
    if value < 0:
        raise BadRequestError(f"{name} cannot be negative")
    if kind == "percentage" and value > 100:
        raise BadRequestError(f"{name} percentage must be between 0 and 100")
    return to_minor(value)


async def update_config(
    admin: User,
    distributor_markup: Decimal,
    distributor_markup_type: str,
    platform_fee: Decimal,
    platform_fee_type: str,
) -> PricingConfig:
    markup = _validate(distributor_markup, distributor_markup_type, "Distributor markup")
    fee = _validate(platform_fee, platform_fee_type, "Platform fee")
    async with transaction() as session:
        current = await get_active_config(session=session)
        await PricingConfig.find(
            PricingConfig.is_active == True,  # noqa: E712
            session=session,
        ).update(Set({PricingConfig.is_active: False}), session=session)
        config = PricingConfig(
            distributor_markup=markup,
            distributor_markup_type=distributor_markup_type,
            platform_fee=fee,
            platform_fee_type=platform_fee_type,
            version=current.version + 1,
            created_by=admin.id,
        )
        await config.insert(session=session)
        from marketplace.core.audit import log_event
        await log_event(
            str(admin.id),
            "pricing_updated",
            "pricing_config",
            str(config.id),
            {"version": config.version, "distributor_markup": markup, "platform_fee": fee},
            session=session,
        )
    log.info("pricing_updated", version=config.version)
    return config


def _adjustment(base_minor: int, value: int, kind: str) -> int:
    if kind == "percentage":
        return percent_of(base_minor, Decimal(value) / 100)
    return value


def compute_price(base_minor: int, config: PricingConfig) -> dict[str, int]:
    """
    Seller pays base + markup; provider earns base - fee (fee capped at base);
    the admin keeps markup + fee.
    """
    markup = _adjustment(base_minor, config.distributor_markup, config.distributor_markup_type)
    fee = min(_adjustment(base_minor, config.platform_fee, config.platform_fee_type), base_minor)
    return {
        "base_price_minor": base_minor,
        "markup_minor": markup,
        "total_minor": base_minor + markup,
        "platform_fee_minor": fee,
        "provider_earnings_minor": base_minor - fee,
        "admin_earnings_minor": markup + fee,
    }


def config_to_dict(config: PricingConfig) -> dict:
    return {
        "id": str(config.id) if config.id else None,
        "distributor_markup": format_minor(config.distributor_markup),
        "distributor_markup_type": config.distributor_markup_type,
        "platform_fee": format_minor(config.platform_fee),
        "platform_fee_type": config.platform_fee_type,
        "version": config.version,
        "is_active": config.is_active,
        "created_at": iso(config.created_at) if config.id else None,
    }
