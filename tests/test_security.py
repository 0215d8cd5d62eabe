import pytest

from bluecarbon.anchoring.base import DigestAnchor
from bluecarbon.core.exceptions import ValidationError
from bluecarbon.core.security import (
    create_access_token,
    load_access_token,
    normalize_idempotency_key,
    parse_bearer,
    sign_webhook_payload,
    verify_razorpay_webhook,
)
from bluecarbon.storage.base import safe_key

pytestmark = pytest.mark.asyncio


async def test_webhook_signature():
    body = b'{"event":"payment.captured"}'
    signature = sign_webhook_payload(body, "secret")
    assert verify_razorpay_webhook(body, signature, "secret")
    assert not verify_razorpay_webhook(body, signature, "other-secret")
    assert not verify_razorpay_webhook(body + b" ", signature, "secret")
    assert not verify_razorpay_webhook(body, "", "secret")


async def test_access_token():
    token = create_access_token({"user_id": "abc", "session_version": 0})
    assert load_access_token(token) == {"user_id": "abc", "session_version": 0}
    assert load_access_token(token + "x") is None


async def test_parse_bearer():
    assert parse_bearer("Bearer tok") == "tok"
    assert parse_bearer("bearer  tok ") == "tok"
    assert parse_bearer("Basic tok") is None
    assert parse_bearer(None) is None


async def test_normalize_idempotency_key():
    assert normalize_idempotency_key(None) is None
    assert normalize_idempotency_key(" k1 ") == "k1"
    with pytest.raises(ValidationError):
        normalize_idempotency_key("  ")
    with pytest.raises(ValidationError):
        normalize_idempotency_key("k" * 129)


async def test_safe_key_blocks_traversal():
    assert safe_key("mrv", "p1", "a.png") == "mrv/p1/a.png"
    with pytest.raises(ValidationError):
        safe_key("mrv", "..", "secrets")
    with pytest.raises(ValidationError):
        safe_key("/etc/passwd")


async def test_digest_anchor_is_stable():
    anchor = DigestAnchor()
    first = await anchor.anchor({"b": 1, "a": 2})
    second = await anchor.anchor({"a": 2, "b": 1})
    assert first == second
    assert first.startswith("sha256:")
