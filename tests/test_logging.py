from janeproxy.logging import (
    REDACTED,
    _add_correlation_id,
    _mask_credentials,
    _scrub_contact_details,
    correlation_id_var,
    get_correlation_id,
    set_correlation_id,
)


def test_credentials_fully_masked():
    event = _mask_credentials(
        None,
        "info",
        {
            "event": "billing_checkout_created",
            "stripe_signature": "t=123,v1=abcdef",
            "api_key": "sk-live-123456",
            "user_id": "u1",
            "database_url": "postgresql://jane:hunter2@db:5432/jane",
        },
    )
    assert event["stripe_signature"] == REDACTED
    assert event["api_key"] == REDACTED
    assert event["user_id"] == "u1"
    assert event["database_url"] == "postgresql://jane:***@db:5432/jane"


def test_contact_details_scrubbed_from_free_text():
    event = _scrub_contact_details(
        None,
        "warning",
        {
            "event": "chat_provider_failed",
            "error": "bad request near 'write to jane@example.com or +1 416 555 0199'",
            "user_email": "jane@example.com",
            "conversation_id": "123e4567-e89b-12d3-a456-426614174000",
        },
    )
    assert event["error"] == "bad request near 'write to [email] or [phone]'"
    assert event["user_email"] == "[email]"
    assert event["conversation_id"] == "123e4567-e89b-12d3-a456-426614174000"
    assert event["event"] == "chat_provider_failed"


def test_correlation_id_added_when_set():
    token = correlation_id_var.set(None)
    try:
        assert _add_correlation_id(None, "info", {"event": "x"}) == {"event": "x"}
        cid = set_correlation_id("req-1")
        assert cid == "req-1" == get_correlation_id()
        assert _add_correlation_id(None, "info", {"event": "x"})["correlation_id"] == "req-1"
        assert set_correlation_id("   ") != "   "
    finally:
        correlation_id_var.reset(token)
