from datetime import datetime

from pymongo.errors import DuplicateKeyError

from marketplace.core.exceptions import BadRequestError, ConflictError, NotFoundError, UnauthorizedError
from marketplace.core.logging import get_logger
from marketplace.core.roles import Role
from marketplace.core.security import create_access_token, hash_password, verify_password
from marketplace.models.provider_profile import ProviderProfile
from marketplace.models.user import User
from marketplace.models.validator import PaymentValidatorProfile
from marketplace.services import referrals as referral_service
from marketplace.services import wallets as wallet_service
from marketplace.services.common import iso, parse_id

log = get_logger(__name__)

SELF_SERVICE_ROLES = (Role.USER, Role.SELLER, Role.PROVIDER, Role.AFFILIATE, Role.PAYMENT_VALIDATOR)
# Roles granted only after an admin approves the application
APPLICATION_ROLES = (Role.PAYMENT_VALIDATOR,)
MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def register_user(
    email: str,
    password: str,
    name: str = "",
    role: Role = Role.SELLER,
    referral_code: str | None = None,
) -> User:
    """
    Create the account and its wallet; providers and validators also get a pending profile.
    Validators sign up as plain users and receive their role when an admin approves them.
    """
    email = normalize_email(email)
    if "@" not in email:
        raise BadRequestError("A valid email is required")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise BadRequestError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in SELF_SERVICE_ROLES:
        raise BadRequestError(f"Cannot self-register as {role.value}")
    referrer = await referral_service.resolve_referral_code(referral_code)

    granted = Role.USER if role in APPLICATION_ROLES else role
    user = User(email=email, password_hash=hash_password(password), name=(name or "").strip(), role=granted)
    try:
        await user.insert()
    except DuplicateKeyError as e:
        raise ConflictError("Email is already registered") from e
    await wallet_service.get_or_create_wallet(user.id)
    if role == Role.PROVIDER:
        await ProviderProfile(user_id=user.id, business_name=user.name).insert()
    elif role == Role.PAYMENT_VALIDATOR:
        await PaymentValidatorProfile(user_id=user.id).insert()
    if referrer:
        await referral_service.attach_referral(referrer, user)

    log.info("user_created", user_id=str(user.id), role=granted.value, applied_as=role.value)
    from marketplace.core.audit import log_event
    await log_event(str(user.id), "user_created", "user", str(user.id), {"role": granted.value, "applied_as": role.value})
    return user


async def authenticate(email: str, password: str) -> User:
    user = await User.find_one(User.email == normalize_email(email))
    if not user or not verify_password(password, user.password_hash):
        raise UnauthorizedError("Invalid email or password")
    if not user.is_active:
        raise UnauthorizedError("Account is disabled")
    user.last_login_at = datetime.utcnow()
    await user.save()
    log.info("user_login", user_id=str(user.id))
    return user


def token_for(user: User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role.value, "ver": user.session_version})


async def logout(user: User) -> None:
    """Invalidate every token issued so far."""
    user.session_version += 1
    user.updated_at = datetime.utcnow()
    await user.save()
    log.info("user_logout", user_id=str(user.id))


async def get_user(user_id: str) -> User:
    user = await User.get(parse_id(user_id, "User"))
    if not user:
        raise NotFoundError("User not found")
    return user


async def set_role(user_id: str, role: Role, admin: User) -> User:
    user = await get_user(user_id)
    previous = user.role
    user.role = role
    user.session_version += 1
    user.updated_at = datetime.utcnow()
    await user.save()
    from marketplace.core.audit import log_event
    await log_event(str(admin.id), "user_role_changed", "user", str(user.id), {"from": previous.value, "to": role.value})
    log.info("user_role_changed", user_id=str(user.id), role=role.value)
    return user


async def list_users(role: str | None = None, search: str | None = None, limit: int = 20, offset: int = 0) -> tuple[list[User], int]:
    filters = []
    if role:
        filters.append(User.role == role)
    if search:
        from beanie.operators import RegEx
        import re
        filters.append(RegEx(User.email, re.escape(search.strip().lower()), options="i"))
    total = await User.find(*filters).count()
    items = await User.find(*filters).sort(-User.created_at).skip(offset).limit(limit).to_list()
    return items, total


def user_to_dict(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "role": user.role.value,
        "country_code": user.country_code,
        "is_active": user.is_active,
        "created_at": iso(user.created_at),
    }
