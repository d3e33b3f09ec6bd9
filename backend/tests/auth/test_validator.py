"""Tests for API key validation."""

import httpx
import pytest

from aichat.auth.validator import (
    INVALID_FORMAT_MESSAGE,
    CredentialValidator,
    detect_provider,
    extract_vsegpt_balance,
    resolve_vsegpt_balance_url,
)
from aichat.models.database import Provider

OPENROUTER_KEY = "sk-or-v1-0123456789abcdef"
VSEGPT_KEY = "sk-or-vv-0123456789abcdef"


def make_validator(handler, vsegpt_base_url="https://api.vsegpt.ru/v1"):
    """Validator whose HTTP traffic is served by ``handler``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CredentialValidator(
        openrouter_base_url="https://openrouter.ai/api/v1",
        vsegpt_base_url=vsegpt_base_url,
        client=client,
    )


def respond(status_code=200, body=None, requests=None):
    """Handler returning a fixed response and recording requests."""

    def handler(request):
        if requests is not None:
            requests.append(request)
        if isinstance(body, (dict, list)):
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, text=body or "")

    return handler


@pytest.mark.unit
class TestDetectProvider:
    """Test provider detection from key prefixes."""

    def test_known_prefixes(self):
        assert detect_provider(OPENROUTER_KEY) is Provider.OPENROUTER
        assert detect_provider(VSEGPT_KEY) is Provider.VSEGPT

    def test_surrounding_whitespace(self):
        assert detect_provider(f"  {VSEGPT_KEY}\n") is Provider.VSEGPT

    @pytest.mark.parametrize("key", ["", "sk-", "sk-or-", "sk-ant-123", "SK-OR-V1-abc", "xsk-or-v1-abc"])
    def test_unknown_formats(self, key):
        assert detect_provider(key) is None


@pytest.mark.unit
class TestVsegptHelpers:
    """Test VSEGPT URL resolution and body parsing."""

    @pytest.mark.parametrize(
        "base_url",
        [
            "https://api.vsegpt.ru",
            "https://api.vsegpt.ru/",
            "https://api.vsegpt.ru/v1",
            "https://api.vsegpt.ru/v1/chat/completions",
        ],
    )
    def test_resolve_balance_url(self, base_url):
        """Test any base path is replaced by the balance path."""
        assert str(resolve_vsegpt_balance_url(base_url)) == "https://api.vsegpt.ru/v1/balance"

    @pytest.mark.parametrize(
        "payload",
        [
            {"data": {"total_credits": 10, "total_usage": 3}},
            {"balance": 7},
            {"credits": 7.0},
            {"account": {"balance": 7}},
            {"account": {"credits": 7}},
            {"result": {"balance": 7.0}},
        ],
    )
    def test_known_shapes(self, payload):
        """Test every supported body shape yields the same balance."""
        assert extract_vsegpt_balance(payload) == 7.0

    def test_data_without_usage(self):
        assert extract_vsegpt_balance({"data": {"total_credits": 5}}) == 5.0

    def test_first_shape_wins(self):
        """Test shapes are tried in order."""
        assert extract_vsegpt_balance({"balance": 1, "credits": 2}) == 1.0
        assert extract_vsegpt_balance({"data": {"total_credits": 9}, "balance": 1}) == 9.0

    @pytest.mark.parametrize(
        "payload",
        [{}, [], "7", {"balance": "7"}, {"balance": True}, {"result": {"credits": 7}}, {"data": []}],
    )
    def test_unrecognized_shapes(self, payload):
        assert extract_vsegpt_balance(payload) is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"balance": float("nan")},
            {"credits": float("inf")},
            {"account": {"balance": float("-inf")}},
            {"balance": 10**400},
        ],
    )
    def test_non_finite_numbers_ignored(self, payload):
        assert extract_vsegpt_balance(payload) is None


@pytest.mark.unit
class TestOpenRouterValidation:
    """Test OpenRouter key validation."""

    @pytest.mark.asyncio
    async def test_valid_key(self):
        """Test the balance is credits minus usage."""
        requests = []
        validator = make_validator(
            respond(200, {"data": {"total_credits": 25.5, "total_usage": 13.0}}, requests)
        )

        result = await validator.validate_api_key(OPENROUTER_KEY)

        assert result.is_valid
        assert result.balance == 12.5
        assert result.message == "12.50"
        assert result.provider == "openrouter"
        assert str(requests[0].url) == "https://openrouter.ai/api/v1/credits"
        assert requests[0].headers["Authorization"] == f"Bearer {OPENROUTER_KEY}"

    @pytest.mark.asyncio
    async def test_key_is_trimmed(self):
        """Test whitespace around the key is not sent."""
        requests = []
        validator = make_validator(respond(200, {"data": {"total_credits": 1}}, requests))

        await validator.validate_api_key(f"  {OPENROUTER_KEY} ")

        assert requests[0].headers["Authorization"] == f"Bearer {OPENROUTER_KEY}"

    @pytest.mark.asyncio
    async def test_zero_balance_is_valid(self):
        validator = make_validator(respond(200, {"data": {"total_credits": 5, "total_usage": 5}}))

        result = await validator.validate_api_key(OPENROUTER_KEY)

        assert result.is_valid
        assert result.message == "0.00"

    @pytest.mark.asyncio
    async def test_negative_balance_is_invalid(self):
        validator = make_validator(respond(200, {"data": {"total_credits": 5, "total_usage": 7.25}}))

        result = await validator.validate_api_key(OPENROUTER_KEY)

        assert not result.is_valid
        assert result.balance == -2.25

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, message",
        [
            (401, "Invalid OpenRouter API key"),
            (403, "Insufficient permissions to check OpenRouter balance"),
            (429, "Rate limit exceeded. Please try again later"),
            (500, "OpenRouter server error (HTTP 500). Please try again later"),
            (503, "OpenRouter server error (HTTP 503). Please try again later"),
            (404, "Failed to validate OpenRouter key: HTTP 404"),
        ],
    )
    async def test_status_messages(self, status_code, message):
        validator = make_validator(respond(status_code, {"error": "x"}))

        result = await validator.validate_api_key(OPENROUTER_KEY)

        assert not result.is_valid
        assert result.balance == 0.0
        assert result.message == message
        assert result.provider == "openrouter"

    @pytest.mark.asyncio
    async def test_missing_data_field(self):
        """Test a 200 without data is treated as a failed validation."""
        validator = make_validator(respond(200, {"unexpected": True}))

        result = await validator.validate_api_key(OPENROUTER_KEY)

        assert not result.is_valid
        assert result.message == "Failed to validate OpenRouter key: HTTP 200"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        validator = make_validator(respond(200, "<html>oops</html>"))

        result = await validator.validate_api_key(OPENROUTER_KEY)

        assert not result.is_valid
        assert result.message.startswith("Error validating OpenRouter key:")

    @pytest.mark.asyncio
    async def test_non_finite_credits_rejected(self):
        """Test NaN in the body is not accepted as a balance."""
        validator = make_validator(respond(200, '{"data": {"total_credits": NaN, "total_usage": 0}}'))

        result = await validator.validate_api_key(OPENROUTER_KEY)

        assert not result.is_valid
        assert result.balance == 0.0
        assert result.message.startswith("Error validating OpenRouter key:")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = await make_validator(handler).validate_api_key(OPENROUTER_KEY)

        assert not result.is_valid
        assert result.message == "Request timeout while validating OpenRouter key: timed out"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await make_validator(handler).validate_api_key(OPENROUTER_KEY)

        assert not result.is_valid
        assert result.message == "Network error while validating OpenRouter key: connection refused"


@pytest.mark.unit
class TestVsegptValidation:
    """Test VSEGPT key validation."""

    @pytest.mark.asyncio
    async def test_valid_key(self):
        requests = []
        validator = make_validator(respond(200, {"balance": 42.123}, requests))

        result = await validator.validate_api_key(VSEGPT_KEY)

        assert result.is_valid
        assert result.balance == 42.123
        assert result.message == "42.12"
        assert result.provider == "vsegpt"
        assert str(requests[0].url) == "https://api.vsegpt.ru/v1/balance"

    @pytest.mark.asyncio
    async def test_bare_host_base_url(self):
        requests = []
        validator = make_validator(
            respond(200, {"credits": 1}, requests), vsegpt_base_url="https://api.vsegpt.ru"
        )

        await validator.validate_api_key(VSEGPT_KEY)

        assert str(requests[0].url) == "https://api.vsegpt.ru/v1/balance"

    @pytest.mark.asyncio
    async def test_unknown_shape_accepted(self):
        """Test a 200 with no balance field is accepted with zero balance."""
        validator = make_validator(respond(200, {"status": "ok"}))

        result = await validator.validate_api_key(VSEGPT_KEY)

        assert result.is_valid
        assert result.balance == 0.0
        assert result.message == "Valid VSEGPT API key"

    @pytest.mark.asyncio
    async def test_negative_balance(self):
        validator = make_validator(respond(200, {"data": {"total_credits": 1, "total_usage": 4}}))

        result = await validator.validate_api_key(VSEGPT_KEY)

        assert not result.is_valid
        assert result.balance == -3.0
        assert result.message == "VSEGPT API key has negative balance"

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        validator = make_validator(respond(200, "not json"))

        result = await validator.validate_api_key(VSEGPT_KEY)

        assert not result.is_valid
        assert result.message.startswith("Invalid response format from VSEGPT API:")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        ['{"balance": NaN}', '{"balance": Infinity}', '{"balance": -Infinity}', '{"balance": 1e999}'],
    )
    async def test_non_finite_balance_rejected(self, body):
        """Test bodies with non-finite numbers are treated as malformed."""
        validator = make_validator(respond(200, body))

        result = await validator.validate_api_key(VSEGPT_KEY)

        assert not result.is_valid
        assert result.balance == 0.0
        assert result.message.startswith("Invalid response format from VSEGPT API:")

    @pytest.mark.asyncio
    async def test_not_found_includes_url(self):
        validator = make_validator(respond(404, "missing"))

        result = await validator.validate_api_key(VSEGPT_KEY)

        assert result.message == (
            "Failed to validate VSEGPT key: HTTP 404. Tried URL: https://api.vsegpt.ru/v1/balance"
        )

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        validator = make_validator(respond(401, {"error": "bad key"}))

        result = await validator.validate_api_key(VSEGPT_KEY)

        assert result.message == "Invalid VSEGPT API key"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("base_url", [None, "", "   "])
    async def test_unconfigured(self, base_url):
        """Test VSEGPT keys fail without a request when no base URL is set."""
        requests = []
        validator = make_validator(respond(200, {"balance": 1}, requests), vsegpt_base_url=base_url)

        result = await validator.validate_api_key(VSEGPT_KEY)

        assert not result.is_valid
        assert result.message == "VSEGPT base URL is not configured"
        assert requests == []

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        result = await make_validator(handler).validate_api_key(VSEGPT_KEY)

        assert result.message == "Request timeout while validating VSEGPT key: slow"


@pytest.mark.unit
class TestValidatorLifecycle:
    """Test format rejection and client ownership."""

    @pytest.mark.asyncio
    async def test_unknown_format_makes_no_request(self):
        requests = []
        validator = make_validator(respond(200, {}, requests))

        result = await validator.validate_api_key("sk-ant-123")

        assert not result.is_valid
        assert result.provider == "unknown"
        assert result.message == INVALID_FORMAT_MESSAGE
        assert requests == []

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(respond(200, {})))
        async with CredentialValidator(client=client):
            pass

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        validator = CredentialValidator()
        await validator.aclose()

        assert validator._client.is_closed
