"""
Tests for the error envelope produced by the global exception handlers.
"""

import pytest
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from gatekeeper.exception_handlers import register_exception_handlers
from gatekeeper.exceptions import (
    GatekeeperError,
    InvalidSessionError,
    InvalidVerificationCodeError,
    TrustedDeviceNotFoundError,
    TwoFactorNotSetUpError,
)


class Payload(BaseModel):
    code: str


@pytest.fixture
async def error_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/code")
    async def bad_code():
        raise InvalidVerificationCodeError()

    @app.get("/session")
    async def bad_session():
        raise InvalidSessionError()

    @app.get("/not-set-up")
    async def not_set_up():
        raise TwoFactorNotSetUpError()

    @app.get("/device")
    async def missing_device():
        raise TrustedDeviceNotFoundError(7)

    @app.get("/database")
    async def database_down():
        raise GatekeeperError("connection to 10.0.0.5 refused", details={"host": "10.0.0.5"})

    @app.get("/forbidden")
    async def forbidden():
        raise HTTPException(status_code=403, detail="Nope")

    @app.get("/crash")
    async def crash():
        raise RuntimeError("secret internals")

    @app.post("/validate")
    async def validate(payload: Payload):
        return payload

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_invalid_code_envelope(error_client):
    """Test the full envelope for an invalid verification code"""
    response = await error_client.get("/code")

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert response.json() == {
        "error": {
            "status_code": 401,
            "error_code": "TWO_FACTOR_INVALID_CODE",
            "message": "Invalid verification code",
            "type": "Unauthorized",
            "path": "/code",
        }
    }


async def test_invalid_session(error_client):
    """Test the error code for an invalid login session"""
    response = await error_client.get("/session")

    assert response.status_code == 401
    assert response.json()["error"]["error_code"] == "TWO_FACTOR_INVALID_SESSION"


async def test_not_set_up(error_client):
    """Test that a missing factor maps to 400"""
    response = await error_client.get("/not-set-up")

    assert response.status_code == 400
    assert response.json()["error"]["error_code"] == "TWO_FACTOR_NOT_SET_UP"


async def test_missing_device(error_client):
    """Test that a missing trusted device maps to 404"""
    response = await error_client.get("/device")

    assert response.status_code == 404
    assert response.json()["error"]["type"] == "Not Found"


async def test_server_errors_are_masked(error_client):
    """Test that 5xx messages and details are hidden"""
    response = await error_client.get("/database")

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["error_code"] == "INTERNAL_ERROR"
    assert "10.0.0.5" not in error["message"]
    assert "details" not in error


async def test_unhandled_exception(error_client):
    """Test that unexpected exceptions return a generic 500"""
    response = await error_client.get("/crash")

    assert response.status_code == 500
    assert "secret internals" not in response.text
    assert response.json()["error"]["error_code"] == "INTERNAL_ERROR"


async def test_http_exception(error_client):
    """Test that HTTPException uses the error envelope"""
    response = await error_client.get("/forbidden")

    assert response.status_code == 403
    assert response.json()["error"] == {
        "status_code": 403,
        "error_code": "AUTH_PERMISSION_DENIED",
        "message": "Nope",
        "type": "Forbidden",
        "path": "/forbidden",
    }


async def test_request_validation(error_client):
    """Test that request validation errors list the failing field"""
    response = await error_client.post("/validate", json={})

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["error_code"] == "VALIDATION_FAILED"
    assert error["details"]["validation_errors"][0]["field"] == "code"
