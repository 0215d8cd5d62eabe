import hashlib
import hmac
import uuid
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from bluecarbon.core.config import get_settings
from bluecarbon.core.exceptions import ValidationError


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="bluecarbon-access",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_access_token(payload: dict[str, Any]) -> str:
    return get_token_serializer().dumps(payload)


def load_access_token(token: str) -> dict[str, Any] | None:
    serializer = get_token_serializer()
    try:
        return serializer.loads(token, max_age=get_settings().access_token_max_age)
    except (BadSignature, SignatureExpired):
        return None


def parse_bearer(authorization: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# Idempotency: same key returns the already recorded result
def generate_idempotency_key() -> str:
    return str(uuid.uuid4())


def sign_webhook_payload(payload: bytes, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()


def verify_razorpay_webhook(payload: bytes, signature: str, secret: str) -> bool:
    expected = sign_webhook_payload(payload, secret)
    return hmac.compare_digest(expected, signature or "")


def normalize_idempotency_key(key: str | None) -> str | None:
    if key is None:
        return None
    key = key.strip()
    if not key:
        raise ValidationError("Idempotency-Key header must not be empty")
    if len(key) > 128:
        raise ValidationError("Idempotency-Key header is too long")
    return key
