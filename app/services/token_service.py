"""JWT access token validation (ES256).

Identity is owned by the auth service; this service only verifies the
bearer tokens it issues.  dependencies.py turns the verified claims
into a Principal whose ``sub`` is trusted as the learner id.

Key management:
  JWT_PUBLIC_KEY set  -> verify against that PEM public key (prod)
  unset               -> ephemeral EC key pair generated on import, so
                         dev and tests can mint their own tokens
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from app.core.config import SETTINGS

ALGORITHM = "ES256"
ISSUER = "auth-service"
AUDIENCE = "enrollment-service"
ACCESS_TOKEN_TTL_MIN = 15

if SETTINGS.jwt_public_key:
    _private_key = None
    _public_key = load_pem_public_key(SETTINGS.jwt_public_key.encode())
else:
    _private_key = ec.generate_private_key(ec.SECP256R1())
    _public_key = _private_key.public_key()


def create_access_token(
    *,
    sub: str,
    roles: list[str] | None = None,
) -> str:
    """Sign an access token with the local key (dev and tests only)."""
    if _private_key is None:
        raise RuntimeError("Token signing is disabled when JWT_PUBLIC_KEY is set")
    now = datetime.now(UTC)
    payload = {
        "sub": sub,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MIN),
        "iat": now,
        "jti": str(uuid.uuid4()),
        "roles": roles or ["learner"],
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature and claims, return the payload.

    Pins algorithm to ES256 to prevent alg:none and alg-switching attacks.
    Validates exp, iss, and aud automatically via PyJWT options.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=AUDIENCE,
        options={"require": ["sub", "exp", "iat", "jti"]},
    )
