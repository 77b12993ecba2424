"""Signable-string construction and keyed hashes for request authentication."""

from __future__ import annotations

import hashlib
import hmac

DELIM = " "


class SignatureError(ValueError):
    """Raised when an offered request hash is missing or does not validate."""


def make_signable_string(client_id: str, nonce: str, time_ms: int) -> str:
    """Return the canonical ``" id nonce time "`` form fed to the keyed hash."""
    return f"{DELIM}{client_id}{DELIM}{nonce}{DELIM}{int(time_ms)}{DELIM}"


def generate_secure_hash(signable: str, secret: str) -> str:
    """Return the lowercase hex SHA-1 of the signable form with the secret appended."""
    material = f"{signable}{DELIM}{secret}{DELIM}".encode("utf-8")
    return hashlib.sha1(material).hexdigest()


def compute_request_hash(client_id: str, nonce: str, time_ms: int, secret: str) -> str:
    return generate_secure_hash(make_signable_string(client_id, nonce, time_ms), secret)


def verify_request_hash(
    client_id: str,
    nonce: str,
    time_ms: int,
    offered_hash: str,
    secret: str | None,
) -> None:
    """Validate ``offered_hash`` against the hash derived from the shared secret."""
    if secret is None:
        raise SignatureError(f"no secret registered for id:{client_id}")
    if not offered_hash:
        raise SignatureError("hash missing")
    expected = compute_request_hash(client_id, nonce, time_ms, secret)
    if not hmac.compare_digest(expected.encode("utf-8"), offered_hash.encode("utf-8")):
        raise SignatureError("hash did not validate")
