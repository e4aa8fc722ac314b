"""Tests for gateway errors and provider error wrapping."""

from types import SimpleNamespace

import pytest

from diagnosis_gateway.exceptions import (
    ConfigurationError,
    GatewayError,
    GatewayProviderError,
    ProviderResponseError,
    http_status_for,
)
from diagnosis_gateway.services import provider_error_from


@pytest.mark.unit
class TestExceptions:
    def test_configuration_error(self):
        error = ConfigurationError("Unknown provider: x", provider="x")
        assert error.error_code == "CONFIGURATION_ERROR"
        assert error.status_code == 400
        assert error.details == {"provider": "x"}
        assert str(error) == "Unknown provider: x"

    def test_provider_error(self):
        cause = RuntimeError("boom")
        error = GatewayProviderError("failed", provider="google", upstream_status=503, cause=cause)
        assert error.error_code == "PROVIDER_ERROR"
        assert error.details == {"provider": "google", "upstream_status": 503}
        assert error.cause is cause

    @pytest.mark.parametrize(
        "error,status",
        [
            (ConfigurationError("bad"), 400),
            (GatewayProviderError("x", provider="p", upstream_status=401), 401),
            (GatewayProviderError("x", provider="p", upstream_status=403), 401),
            (GatewayProviderError("x", provider="p", upstream_status=429), 429),
            (GatewayProviderError("x", provider="p", upstream_status=500), 503),
            (GatewayProviderError("x", provider="p"), 503),
            (ProviderResponseError("x", provider="p"), 502),
            (GatewayError("x"), 500),
            (ValueError("x"), 500),
        ],
    )
    def test_http_status_for(self, error, status):
        assert http_status_for(error) == status


@pytest.mark.unit
class TestProviderErrorFrom:
    def test_uses_response_body_message(self, make_status_error):
        wrapped = provider_error_from(make_status_error(429, "Quota exhausted"), "openai")
        assert wrapped.message == "Provider error (openai, status 429): Quota exhausted"
        assert wrapped.upstream_status == 429

    def test_sdk_style_body(self):
        error = Exception("Error code: 401")
        error.status_code = 401
        error.body = {"error": {"message": "Incorrect API key provided", "type": "invalid_request_error"}}

        wrapped = provider_error_from(error, "deepinfra")

        assert wrapped.message == "Provider error (deepinfra, status 401): Incorrect API key provided"

    def test_unparseable_body_falls_back_to_str(self):
        response = SimpleNamespace(status_code=500, json=lambda: (_ for _ in ()).throw(ValueError()))
        error = Exception("server exploded")
        error.response = response

        wrapped = provider_error_from(error, "google")

        assert wrapped.message == "Provider error (google, status 500): server exploded"

    def test_without_status_or_message(self):
        wrapped = provider_error_from(RuntimeError(), "e2e")
        assert wrapped.message == "Unknown provider error (e2e)"

    def test_gateway_errors_pass_through(self):
        config_error = ConfigurationError("Missing API key")
        already = GatewayProviderError("x", provider="p")
        assert provider_error_from(config_error, "p") is config_error
        assert provider_error_from(already, "p") is already

    def test_invalid_reply_has_no_upstream_status(self):
        wrapped = provider_error_from(ProviderResponseError("Response was not JSON"), "e2e")
        assert wrapped.upstream_status is None
        assert wrapped.message == "Provider error (e2e): Response was not JSON"
