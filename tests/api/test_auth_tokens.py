"""Bearer token verification for tokens minted by the auth service."""

from __future__ import annotations

import datetime
import logging

import jwt
import pytest
from fastapi.testclient import TestClient

from app.services import token_service
from tests.conftest import mint_token


def _signed(**overrides) -> str:
    now = datetime.datetime.now(datetime.UTC)
    claims = {
        "sub": "learner-1",
        "iss": token_service.ISSUER,
        "aud": token_service.AUDIENCE,
        "iat": now,
        "exp": now + datetime.timedelta(minutes=5),
        "jti": "t-1",
    }
    claims.update(overrides)
    return jwt.encode(claims, token_service._private_key, algorithm="ES256")


def test_round_trip_keeps_roles() -> None:
    claims = token_service.decode_access_token(mint_token("learner-9", ["admin"]))
    assert claims["sub"] == "learner-9"
    assert claims["roles"] == ["admin"]


def test_wrong_audience_is_rejected() -> None:
    with pytest.raises(jwt.InvalidAudienceError):
        token_service.decode_access_token(_signed(aud="some-other-service"))


def test_expired_token_is_401(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    past = datetime.datetime.now(datetime.UTC) - datetime.timedelta(hours=1)
    token = _signed(iat=past, exp=past + datetime.timedelta(minutes=5))

    with caplog.at_level(logging.WARNING, logger="app.api.dependencies"):
        resp = client.get(
            "/v1/enrollments/me", headers={"Authorization": f"Bearer {token}"}
        )

    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"
    assert any("Expired token" in m for m in caplog.messages)


def test_garbage_token_is_401(client: TestClient) -> None:
    resp = client.get(
        "/v1/enrollments/me", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"
