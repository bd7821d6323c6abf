from marketplace.core.logging import _display_amounts, bind_request_id, bind_user, current_request_id


def test_minor_fields_get_decimal_rendering():
    event = {"event": "wallet_debited", "amount_minor": 5000, "balance_after_minor": -1, "flag_minor": True}
    out = _display_amounts(None, "info", event)
    assert out["amount"] == "50.00"
    assert out["balance_after"] == "-0.01"
    assert "flag" not in out


def test_existing_keys_are_not_overwritten():
    out = _display_amounts(None, "info", {"amount_minor": 100, "amount": "custom"})
    assert out["amount"] == "custom"


def test_request_context_is_reset_per_request():
    bind_request_id("first")
    bind_user("u1", "seller")
    bind_request_id("second")
    assert current_request_id() == "second"
