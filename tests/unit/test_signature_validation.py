"""Unit tests for Stripe webhook signature validation."""

import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException, Request

from api.middleware.signature_validation import validate_stripe_signature

SECRET = "whsec_test_secret"
EVENT = {"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {}}}


def sign(body: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed_payload = f"{timestamp}.{body.decode()}".encode()
    signature = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def mock_request(body: bytes, headers: dict | None = None) -> AsyncMock:
    request = AsyncMock(spec=Request)
    request.body = AsyncMock(return_value=body)
    request.headers = headers or {}
    return request


def settings_with(secret: str = SECRET, unsigned: bool = False) -> MagicMock:
    settings = MagicMock()
    settings.STRIPE_WEBHOOK_SECRET = secret
    settings.unsigned_webhooks_enabled = unsigned
    return settings


class TestStripeSignatureValidation:
    @pytest.mark.asyncio
    async def test_valid_signature_returns_event(self):
        body = json.dumps(EVENT).encode()
        request = mock_request(body, {"Stripe-Signature": sign(body)})

        with patch("api.middleware.signature_validation.get_settings", return_value=settings_with()):
            event = await validate_stripe_signature(request)

        assert event == EVENT

    @pytest.mark.asyncio
    async def test_wrong_secret_returns_401(self):
        body = json.dumps(EVENT).encode()
        request = mock_request(body, {"Stripe-Signature": sign(body, secret="whsec_other")})

        with patch("api.middleware.signature_validation.get_settings", return_value=settings_with()):
            with pytest.raises(HTTPException) as exc_info:
                await validate_stripe_signature(request)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_tampered_body_returns_401(self):
        body = json.dumps(EVENT).encode()
        header = sign(body)
        request = mock_request(body.replace(b"evt_1", b"evt_2"), {"Stripe-Signature": header})

        with patch("api.middleware.signature_validation.get_settings", return_value=settings_with()):
            with pytest.raises(HTTPException) as exc_info:
                await validate_stripe_signature(request)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_header_returns_401(self):
        request = mock_request(json.dumps(EVENT).encode())

        with patch("api.middleware.signature_validation.get_settings", return_value=settings_with()):
            with pytest.raises(HTTPException) as exc_info:
                await validate_stripe_signature(request)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_signed_non_json_body_returns_400(self):
        body = b"not json"
        request = mock_request(body, {"Stripe-Signature": sign(body)})

        with patch("api.middleware.signature_validation.get_settings", return_value=settings_with()):
            with pytest.raises(HTTPException) as exc_info:
                await validate_stripe_signature(request)

        assert exc_info.value.status_code == 400


class TestUnsignedMode:
    @pytest.mark.asyncio
    async def test_no_secret_and_unsigned_disabled_rejects(self):
        request = mock_request(json.dumps(EVENT).encode())

        with patch(
            "api.middleware.signature_validation.get_settings",
            return_value=settings_with(secret="", unsigned=False),
        ):
            with pytest.raises(HTTPException) as exc_info:
                await validate_stripe_signature(request)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_no_secret_and_unsigned_enabled_accepts(self):
        request = mock_request(json.dumps(EVENT).encode())

        with patch(
            "api.middleware.signature_validation.get_settings",
            return_value=settings_with(secret="", unsigned=True),
        ):
            event = await validate_stripe_signature(request)

        assert event["id"] == "evt_1"

    @pytest.mark.asyncio
    async def test_unsigned_mode_rejects_invalid_json(self):
        request = mock_request(b"{broken")

        with patch(
            "api.middleware.signature_validation.get_settings",
            return_value=settings_with(secret="", unsigned=True),
        ):
            with pytest.raises(HTTPException) as exc_info:
                await validate_stripe_signature(request)

        assert exc_info.value.status_code == 400
