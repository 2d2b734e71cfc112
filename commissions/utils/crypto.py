"""Ed25519 request signing for user identities, using PyNaCl."""

import hashlib
import secrets
from datetime import UTC, datetime

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey


def generate_keypair() -> tuple[str, str]:
    """Generate an Ed25519 keypair. Returns (private_key_hex, public_key_hex)."""
    signing_key = SigningKey.generate()
    private_hex = signing_key.encode(encoder=HexEncoder).decode()
    public_hex = signing_key.verify_key.encode(encoder=HexEncoder).decode()
    return private_hex, public_hex


def build_signature_message(
    timestamp: str,
    method: str,
    path: str,
    body: bytes,
    nonce: str | None = None,
) -> bytes:
    """Message to sign: timestamp\\nnonce\\nmethod\\npath\\nsha256(body).

    The nonce line is empty when the request carries no X-Nonce.
    """
    body_hash = hashlib.sha256(body).hexdigest()
    message = f"{timestamp}\n{nonce or ''}\n{method.upper()}\n{path}\n{body_hash}"
    return message.encode()


def sign_request(
    private_key_hex: str,
    timestamp: str,
    method: str,
    path: str,
    body: bytes,
    nonce: str | None = None,
) -> str:
    """Sign a request and return the hex-encoded signature."""
    signing_key = SigningKey(private_key_hex.encode(), encoder=HexEncoder)
    message = build_signature_message(timestamp, method, path, body, nonce)
    signed = signing_key.sign(message, encoder=HexEncoder)
    return signed.signature.decode()


def verify_signature(
    public_key_hex: str,
    signature_hex: str,
    timestamp: str,
    method: str,
    path: str,
    body: bytes,
    nonce: str | None = None,
) -> bool:
    """Verify an Ed25519 signature. Malformed keys or signatures count as invalid."""
    try:
        verify_key = VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        message = build_signature_message(timestamp, method, path, body, nonce)
        verify_key.verify(message, HexEncoder.decode(signature_hex.encode()))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def generate_nonce() -> str:
    return secrets.token_hex(16)


def is_timestamp_valid(timestamp: str, max_age_seconds: int = 30) -> bool:
    """Timestamp must be ISO 8601 with a timezone and within max_age_seconds of now."""
    try:
        ts = datetime.fromisoformat(timestamp)
        if ts.tzinfo is None:
            return False
        delta = abs((datetime.now(UTC) - ts).total_seconds())
        return delta <= max_age_seconds
    except (ValueError, TypeError):
        return False


def is_valid_public_key(public_key_hex: str) -> bool:
    try:
        VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        return True
    except (ValueError, TypeError):
        return False
