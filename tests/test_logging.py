from emovers.logging import (
    _mask_addresses,
    _redact_pii,
    get_correlation_id,
    hash_email,
    set_correlation_id,
)


def test_hash_email_is_stable_and_case_insensitive():
    assert hash_email("Alice@Example.com ") == hash_email("alice@example.com")
    assert len(hash_email("alice@example.com")) == 16
    assert "alice" not in hash_email("alice@example.com")


def test_redact_pii_masks_credential_keys():
    event = _redact_pii(
        None,
        "info",
        {
            "event": "login_failed",
            "password": "Secret123!",
            "otp": "482913",
            "email_hash": "abcdef0123456789",
            "error_code": "unauthorized",
            "user_id": 7,
        },
    )
    assert event["password"] == "Se***3!"
    assert event["otp"] == "48***13"
    assert event["email_hash"] == "abcdef0123456789"
    assert event["error_code"] == "unauthorized"
    assert event["user_id"] == 7


def test_mask_addresses_in_free_text():
    event = _mask_addresses(
        None,
        "error",
        {"event": "email_smtp_error", "error": "(550, b'alice.smith@example.com: no such user')"},
    )
    assert "alice.smith@" not in event["error"]
    assert "al***@example.com" in event["error"]


def test_correlation_id_generated_when_missing():
    cid = set_correlation_id()
    assert cid and get_correlation_id() == cid
    assert set_correlation_id("req-7") == "req-7"
