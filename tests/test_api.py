"""HTTP-level tests: auth, authorization, error shape and one full money flow."""

from marketplace.core.roles import Role
from marketplace.services import wallets as wallet_service


async def test_register_login_me_logout(client, db):
    r = await client.post(
        "/v1/auth/register",
        json={"email": "New@Example.com", "password": "password123", "name": "New", "role": "seller"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["role"] == "seller"

    r = await client.post("/v1/auth/login", json={"email": "new@example.com", "password": "password123"})
    assert r.status_code == 200
    headers = {"Authorization": f"Bearer {r.json()['access_token']}"}

    r = await client.get("/v1/auth/me", headers=headers)
    assert r.status_code == 200
    assert r.json()["email"] == "new@example.com"

    r = await client.get("/v1/wallet/balance", headers=headers)
    assert r.json()["balance"] == "0.00"

    assert (await client.post("/v1/auth/logout", headers=headers)).status_code == 200
    r = await client.get("/v1/auth/me", headers=headers)
    assert r.status_code == 401


async def test_register_rejects_privileged_roles_and_duplicates(client, db):
    payload = {"email": "x@example.com", "password": "password123", "role": "admin"}
    r = await client.post("/v1/auth/register", json=payload)
    assert r.status_code == 400
    payload["role"] = "seller"
    assert (await client.post("/v1/auth/register", json=payload)).status_code == 201
    r = await client.post("/v1/auth/register", json=payload)
    assert r.status_code == 409
    assert r.json()["code"] == "CONFLICT"


async def test_bad_login(client, make_user):
    await make_user(Role.SELLER, email="s@example.com")
    r = await client.post("/v1/auth/login", json={"email": "s@example.com", "password": "nope-nope"})
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"


async def test_missing_token_is_401_with_error_body(client, db):
    r = await client.get("/v1/wallet/balance", headers={"X-Request-ID": "abc"})
    assert r.status_code == 401
    assert r.json() == {"error": "Not authenticated", "code": "UNAUTHORIZED", "details": {}, "request_id": "abc"}
    r = await client.get("/v1/wallet/balance", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


async def test_wrong_role_is_403(client, make_user, auth_headers):
    seller = await make_user(Role.SELLER)
    r = await client.get("/v1/payment-validator/withdrawals", headers=auth_headers(seller))
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"
    r = await client.get("/v1/admin/stats", headers=auth_headers(seller))
    assert r.status_code == 403


async def test_validation_errors_are_400(client, make_user, auth_headers):
    provider = await make_user(Role.PROVIDER, balance_minor=10000)
    r = await client.post(
        "/v1/provider/earnings/withdraw",
        json={"amount": "-5", "payment_method": "yape"},
        headers=auth_headers(provider),
    )
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]["errors"]


async def test_unknown_ids_are_404(client, make_user, auth_headers):
    validator = await make_user(Role.PAYMENT_VALIDATOR)
    r = await client.post("/v1/payment-validator/withdrawals/nope/approve", headers=auth_headers(validator))
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


async def test_withdrawal_flow_over_http(client, make_user, auth_headers):
    provider = await make_user(Role.PROVIDER, balance_minor=10000)
    validator = await make_user(Role.PAYMENT_VALIDATOR)

    r = await client.post(
        "/v1/provider/earnings/withdraw",
        json={"amount": "50.00", "payment_method": "bank_transfer", "payment_details": {"iban": "PE00"}},
        headers=auth_headers(provider),
    )
    assert r.status_code == 201
    withdrawal_id = r.json()["id"]
    assert r.json()["amount"] == "50.00"

    base = f"/v1/payment-validator/withdrawals/{withdrawal_id}"
    r = await client.post(f"{base}/approve", headers=auth_headers(validator))
    assert r.json()["status"] == "approved"

    r = await client.post(f"{base}/complete", json={}, headers=auth_headers(validator))
    assert r.status_code == 400
    r = await client.post(f"{base}/complete", json={"confirm": True}, headers=auth_headers(validator))
    assert r.status_code == 200
    assert r.json()["status"] == "completed"

    r = await client.post(f"{base}/complete", json={"confirm": True}, headers=auth_headers(validator))
    assert r.status_code == 409

    r = await client.get("/v1/wallet/balance", headers=auth_headers(provider))
    assert r.json()["balance"] == "50.00"
    r = await client.get("/v1/wallet/transactions", params={"type": "debit"}, headers=auth_headers(provider))
    rows = r.json()["items"]
    assert len(rows) == 1
    assert rows[0]["amount"] == "50.00"
    assert rows[0]["signed_amount"] == "-50.00"
    assert rows[0]["balance_after"] == "50.00"


async def test_referral_fee_and_approval_over_http(client, make_user, admin, auth_headers):
    r = await client.put("/v1/admin/settings/referral-fee", json={"approval_fee": "10.00"}, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["approval_fee"] == "10.00"

    applicant = await make_user(Role.USER, balance_minor=500)
    r = await client.post(
        "/v1/affiliate/register",
        json={"application_note": "Big audience of gamers"},
        headers=auth_headers(applicant),
    )
    assert r.status_code == 201
    profile = r.json()
    r = await client.put(f"/v1/admin/affiliate/applications/{profile['id']}/approve", json={}, headers=auth_headers(admin))
    assert r.json()["status"] == "approved"

    r = await client.post(
        "/v1/auth/register",
        json={"email": "ref@example.com", "password": "password123", "referral_code": profile["referral_code"]},
    )
    assert r.status_code == 201

    # Role comes from the stored user, not the token
    r = await client.get("/v1/affiliate/referrals", headers=auth_headers(applicant))
    referral_id = r.json()["items"][0]["id"]

    r = await client.post(f"/v1/affiliate/referrals/{referral_id}/approve", headers=auth_headers(applicant))
    assert r.status_code == 400
    assert r.json()["code"] == "INSUFFICIENT_BALANCE"
    wallet = await wallet_service.get_wallet_for_user(applicant.id)
    assert wallet.balance_minor == 500


async def test_marketplace_shows_seller_price(client, make_user, auth_headers):
    from marketplace.models.provider_profile import ProviderProfile
    from marketplace.services import products as product_service

    provider = await make_user(Role.PROVIDER)
    await ProviderProfile(user_id=provider.id, status="approved").insert()
    await product_service.create_product(provider, "Office", "license", 2000, license_keys="K1\nK2")
    seller = await make_user(Role.SELLER)

    r = await client.get("/v1/marketplace", headers=auth_headers(seller))
    assert r.status_code == 200
    item = r.json()["items"][0]
    assert item["price"] == "23.00"
    assert item["stock"] == {"available": 2, "sold": 0}


async def test_admin_stats(client, make_user, admin, auth_headers):
    await make_user(Role.SELLER, balance_minor=1234)
    r = await client.get("/v1/admin/stats", headers=auth_headers(admin))
    assert r.status_code == 200
    stats = r.json()
    assert stats["users"]["by_role"]["seller"] == 1
    assert stats["wallets"]["total_balance"] == "12.34"


async def test_audit_trail_links_request_id(client, make_user, admin, auth_headers):
    seller = await make_user(Role.SELLER)
    r = await client.post(
        "/v1/seller/wallet/recharge",
        json={"amount": "12.50", "payment_method": "yape"},
        headers={**auth_headers(seller), "X-Request-ID": "recharge-req-1"},
    )
    assert r.status_code == 201
    recharge_id = r.json()["id"]

    r = await client.get(
        "/v1/admin/audit-logs",
        params={"entity_type": "recharge", "entity_id": recharge_id},
        headers=auth_headers(admin),
    )
    assert r.status_code == 200
    events = r.json()["items"]
    assert [e["event_type"] for e in events] == ["recharge_requested"]
    assert events[0]["request_id"] == "recharge-req-1"
    assert events[0]["user_id"] == str(seller.id)


async def test_validator_capabilities_follow_admin_review(client, make_user, admin, auth_headers):
    seller = await make_user(Role.SELLER)
    provider = await make_user(Role.PROVIDER, balance_minor=5000)
    r = await client.post(
        "/v1/auth/register",
        json={"email": "val@example.com", "password": "password123", "role": "payment_validator"},
    )
    assert r.status_code == 201
    assert r.json()["user"]["role"] == "user"
    validator_headers = {"Authorization": f"Bearer {r.json()['access_token']}"}

    r = await client.post(
        "/v1/seller/wallet/recharge",
        json={"amount": "1000.00", "payment_method": "yape"},
        headers=auth_headers(seller),
    )
    recharge_id = r.json()["id"]
    r = await client.post(
        "/v1/provider/earnings/withdraw",
        json={"amount": "20.00", "payment_method": "yape"},
        headers=auth_headers(provider),
    )
    withdrawal_id = r.json()["id"]

    # Pending application: no validator powers yet
    r = await client.put(f"/v1/payment-validator/recharges/{recharge_id}/approve", json={}, headers=validator_headers)
    assert r.status_code == 403
    r = await client.post(
        f"/v1/payment-validator/withdrawals/{withdrawal_id}/complete",
        json={"confirm": True},
        headers=validator_headers,
    )
    assert r.status_code == 403
    r = await client.get("/v1/wallet/balance", headers=auth_headers(seller))
    assert r.json()["balance"] == "0.00"

    r = await client.get("/v1/admin/payment-validators", params={"status": "pending"}, headers=auth_headers(admin))
    profile_id = r.json()["items"][0]["id"]
    r = await client.put(
        f"/v1/admin/payment-validators/{profile_id}/approve",
        json={"country": "PE"},
        headers=auth_headers(admin),
    )
    assert r.json()["status"] == "approved"

    r = await client.put(f"/v1/payment-validator/recharges/{recharge_id}/approve", json={}, headers=validator_headers)
    assert r.status_code == 200
    r = await client.get("/v1/wallet/balance", headers=auth_headers(seller))
    assert r.json()["balance"] == "1000.00"

    r = await client.put(f"/v1/admin/payment-validators/{profile_id}/suspend", headers=auth_headers(admin))
    assert r.json()["status"] == "suspended"
    r = await client.post(f"/v1/payment-validator/withdrawals/{withdrawal_id}/approve", headers=validator_headers)
    assert r.status_code == 403
    r = await client.get("/v1/payment-validator/fund", headers=validator_headers)
    assert r.status_code == 403


async def test_admin_updates_affiliate_profile(client, make_user, admin, auth_headers):
    applicant = await make_user(Role.USER)
    r = await client.post(
        "/v1/affiliate/register",
        json={"application_note": "Big audience of gamers"},
        headers=auth_headers(applicant),
    )
    profile_id = r.json()["id"]

    r = await client.put(
        f"/v1/admin/affiliate/profiles/{profile_id}",
        json={"status": "active", "tier": "gold"},
        headers=auth_headers(admin),
    )
    assert r.status_code == 200
    assert r.json()["status"] == "active"
    assert r.json()["tier"] == "gold"
    r = await client.get("/v1/auth/me", headers=auth_headers(applicant))
    assert r.json()["role"] == "affiliate"

    r = await client.put(f"/v1/admin/affiliate/profiles/{profile_id}", json={}, headers=auth_headers(admin))
    assert r.status_code == 400
    r = await client.put(
        f"/v1/admin/affiliate/profiles/{profile_id}",
        json={"tier": "diamond"},
        headers=auth_headers(admin),
    )
    assert r.status_code == 400
    r = await client.put(
        f"/v1/admin/affiliate/profiles/{profile_id}",
        json={"status": "suspended"},
        headers=auth_headers(applicant),
    )
    assert r.status_code == 403
