"""Admin review of providers and payment validators, and user administration."""

import pytest

from marketplace.core.exceptions import BadRequestError, ConflictError
from marketplace.core.roles import Role
from marketplace.models.provider_profile import ProviderProfile
from marketplace.models.user import User
from marketplace.models.validator import PaymentValidatorProfile
from marketplace.services import providers as provider_service
from marketplace.services import users as user_service
from marketplace.services import validators as validator_service

REASON = "Missing business registration documents"


async def _validator_profile(email: str) -> PaymentValidatorProfile:
    user = await user_service.register_user(email, "password123", role=Role.PAYMENT_VALIDATOR)
    return await PaymentValidatorProfile.find_one(PaymentValidatorProfile.user_id == user.id)


async def test_registration_creates_pending_profiles(db):
    provider = await user_service.register_user("p@example.com", "password123", name="Shop", role=Role.PROVIDER)
    profile = await ProviderProfile.find_one(ProviderProfile.user_id == provider.id)
    assert profile.status == "pending"
    assert profile.business_name == "Shop"
    validator = await _validator_profile("v@example.com")
    assert validator.status == "pending"
    with pytest.raises(BadRequestError):
        await user_service.register_user("c@example.com", "password123", role=Role.CONCILIATOR)
    with pytest.raises(BadRequestError):
        await user_service.register_user("short@example.com", "pw")


async def test_one_approved_validator_per_country(admin):
    first = await _validator_profile("pe1@example.com")
    second = await _validator_profile("pe2@example.com")

    approved = await validator_service.approve_validator(str(first.id), admin, " pe ")
    assert approved.assigned_country == "PE"
    user = await User.get(first.user_id)
    assert user.country_code == "PE"

    with pytest.raises(ConflictError):
        await validator_service.approve_validator(str(second.id), admin, "PE")
    with pytest.raises(BadRequestError):
        await validator_service.approve_validator(str(second.id), admin, "PER")
    other = await validator_service.approve_validator(str(second.id), admin, "CO")
    assert other.assigned_country == "CO"

    rejected = await validator_service.reject_validator(str(first.id), admin, REASON)
    assert rejected.assigned_country is None
    assert (await User.get(first.user_id)).country_code is None
    listing = await validator_service.list_validators()
    assert listing["summary"]["approved"] == 1
    assert listing["summary"]["rejected"] == 1


async def test_provider_review(admin):
    user = await user_service.register_user("shop@example.com", "password123", role=Role.PROVIDER)
    profile = await ProviderProfile.find_one(ProviderProfile.user_id == user.id)
    with pytest.raises(BadRequestError):
        await provider_service.reject_provider(str(profile.id), admin, "no")
    approved = await provider_service.approve_provider(str(profile.id), admin)
    assert approved.status == "approved"
    with pytest.raises(ConflictError):
        await provider_service.approve_provider(str(profile.id), admin)
    items, total = await provider_service.list_providers("approved")
    assert total == 1 and items[0].id == profile.id


async def test_role_change_invalidates_sessions(make_user, admin):
    user = await make_user(Role.SELLER)
    updated = await user_service.set_role(str(user.id), Role.CONCILIATOR, admin)
    assert updated.role == Role.CONCILIATOR
    assert updated.session_version == user.session_version + 1


async def test_authenticate(make_user):
    user = await make_user(Role.SELLER, email="login@example.com")
    assert (await user_service.authenticate(" LOGIN@example.com", "correct-horse-battery")).id == user.id


async def test_validator_role_follows_profile_status(admin):
    profile = await _validator_profile("pv@example.com")
    assert (await User.get(profile.user_id)).role == Role.USER

    await validator_service.approve_validator(str(profile.id), admin, "BO")
    user = await User.get(profile.user_id)
    assert user.role == Role.PAYMENT_VALIDATOR
    assert user.country_code == "BO"

    suspended = await validator_service.suspend_validator(str(profile.id), admin)
    assert suspended.status == "suspended"
    assert suspended.assigned_country == "BO"
    assert (await User.get(profile.user_id)).role == Role.USER

    # Another validator may take the country while this one is suspended
    other = await _validator_profile("pv2@example.com")
    await validator_service.approve_validator(str(other.id), admin, "BO")
    with pytest.raises(ConflictError):
        await validator_service.suspend_validator(str(profile.id), admin)

    await validator_service.reject_validator(str(other.id), admin, REASON)
    assert (await User.get(other.user_id)).role == Role.USER
    reactivated = await validator_service.suspend_validator(str(profile.id), admin)
    assert reactivated.status == "approved"
    assert (await User.get(profile.user_id)).role == Role.PAYMENT_VALIDATOR


async def test_only_approved_or_suspended_validators_toggle(admin):
    profile = await _validator_profile("pending-v@example.com")
    with pytest.raises(ConflictError):
        await validator_service.suspend_validator(str(profile.id), admin)
    await validator_service.reject_validator(str(profile.id), admin, REASON)
    with pytest.raises(ConflictError):
        await validator_service.suspend_validator(str(profile.id), admin)
