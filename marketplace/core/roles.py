"""Roles and the capability table every router authorizes against."""

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    SELLER = "seller"
    PROVIDER = "provider"
    AFFILIATE = "affiliate"
    PAYMENT_VALIDATOR = "payment_validator"
    CONCILIATOR = "conciliator"
    USER = "user"


class Action(str, Enum):
    RECHARGE_WALLET = "recharge_wallet"
    REQUEST_WITHDRAWAL = "request_withdrawal"
    MANAGE_PRODUCTS = "manage_products"
    PURCHASE = "purchase"
    OPEN_DISPUTE = "open_dispute"
    VIEW_OWN_DISPUTES = "view_own_disputes"
    RESOLVE_DISPUTES = "resolve_disputes"
    VALIDATE_RECHARGES = "validate_recharges"
    PROCESS_WITHDRAWALS = "process_withdrawals"
    TRANSFER_FUNDS = "transfer_funds"
    MANAGE_REFERRALS = "manage_referrals"
    MANAGE_AFFILIATES = "manage_affiliates"
    MANAGE_VALIDATOR_TRANSFERS = "manage_validator_transfers"
    MANAGE_PRICING = "manage_pricing"
    MANAGE_VALIDATORS = "manage_validators"
    MANAGE_PROVIDERS = "manage_providers"
    VIEW_PLATFORM = "view_platform"


CAPABILITIES: dict[Role, frozenset[Action]] = {
    Role.SELLER: frozenset({
        Action.RECHARGE_WALLET,
        Action.PURCHASE,
        Action.OPEN_DISPUTE,
        Action.VIEW_OWN_DISPUTES,
    }),
    Role.PROVIDER: frozenset({
        Action.REQUEST_WITHDRAWAL,
        Action.MANAGE_PRODUCTS,
        Action.VIEW_OWN_DISPUTES,
    }),
    Role.AFFILIATE: frozenset({
        Action.RECHARGE_WALLET,
        Action.REQUEST_WITHDRAWAL,
        Action.MANAGE_REFERRALS,
    }),
    Role.PAYMENT_VALIDATOR: frozenset({
        Action.VALIDATE_RECHARGES,
        Action.PROCESS_WITHDRAWALS,
        Action.TRANSFER_FUNDS,
    }),
    Role.CONCILIATOR: frozenset({Action.RESOLVE_DISPUTES}),
    Role.USER: frozenset(),
}


def parse_role(value: str | Role | None) -> Role | None:
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def can(role: str | Role | None, action: Action) -> bool:
    r = parse_role(role)
    if r is None:
        return False
    if r is Role.ADMIN:
        return True
    return action in CAPABILITIES.get(r, frozenset())
