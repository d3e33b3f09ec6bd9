"""API key validation against provider balance endpoints."""

import logging
import math
from typing import Any, Optional

import httpx

from aichat.models.database import Provider
from aichat.models.schemas import ValidationResult

logger = logging.getLogger(__name__)

DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_TIMEOUT = 10.0
VSEGPT_BALANCE_PATH = "/v1/balance"

# Key prefixes, checked in order
PROVIDER_PREFIXES = [
    ("sk-or-vv-", Provider.VSEGPT),
    ("sk-or-v1-", Provider.OPENROUTER),
]

PROVIDER_DISPLAY_NAMES = {
    Provider.OPENROUTER: "OpenRouter",
    Provider.VSEGPT: "VSEGPT",
}

INVALID_FORMAT_MESSAGE = (
    "Invalid API key format. Key must start with sk-or-vv- (VSEGPT) or sk-or-v1- (OpenRouter)"
)


def detect_provider(api_key: str) -> Optional[Provider]:
    """Detect the provider from the key prefix; None if the format is unrecognized."""
    trimmed = api_key.strip()
    for prefix, provider in PROVIDER_PREFIXES:
        if trimmed.startswith(prefix):
            return provider
    return None


def resolve_vsegpt_balance_url(base_url: str) -> httpx.URL:
    """
    Build the VSEGPT balance URL from a configured base URL.

    Any existing path (``https://api.vsegpt.ru/v1/chat``) is replaced and a bare host
    (``https://api.vsegpt.ru``) gets the path appended; both give ``.../v1/balance``.
    """
    base = httpx.URL(base_url.strip())
    return base.join(VSEGPT_BALANCE_PATH)


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _reject_constant(name: str) -> float:
    raise ValueError(f"Non-finite number {name} in response body")


def _parse_finite_float(text: str) -> float:
    number = float(text)
    if not math.isfinite(number):
        raise ValueError(f"Number out of range in response body: {text}")
    return number


def _parse_json(response: httpx.Response) -> Any:
    """Decode a JSON body, rejecting NaN, Infinity and overflowing numbers."""
    return response.json(parse_constant=_reject_constant, parse_float=_parse_finite_float)


def _as_dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


def extract_vsegpt_balance(payload: Any) -> Optional[float]:
    """
    Pull a balance out of a VSEGPT response body.

    Shapes are tried in order:
        1. ``{"data": {"total_credits": X, "total_usage": Y}}`` -> X - Y
        2. ``{"balance": X}``
        3. ``{"credits": X}``
        4. ``{"account": {"balance": X}}`` or ``{"account": {"credits": X}}``
        5. ``{"result": {"balance": X}}``

    Returns:
        Balance, or None if no known shape matched
    """
    body = _as_dict(payload)
    if body is None:
        return None

    data = _as_dict(body.get("data"))
    if data is not None:
        total_credits = _as_float(data.get("total_credits"))
        if total_credits is not None:
            return total_credits - (_as_float(data.get("total_usage")) or 0.0)

    for field in ("balance", "credits"):
        value = _as_float(body.get(field))
        if value is not None:
            return value

    account = _as_dict(body.get("account"))
    if account is not None:
        for field in ("balance", "credits"):
            value = _as_float(account.get(field))
            if value is not None:
                return value

    result = _as_dict(body.get("result"))
    if result is not None:
        return _as_float(result.get("balance"))

    return None


class CredentialValidator:
    """
    Validates API keys by querying the provider's balance endpoint.

    No retries are performed. Network failures, timeouts and malformed responses are
    reported as an invalid :class:`ValidationResult`, never raised.
    """

    def __init__(
        self,
        openrouter_base_url: str = DEFAULT_OPENROUTER_BASE_URL,
        vsegpt_base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the validator.

        Args:
            openrouter_base_url: OpenRouter API base (``/credits`` is appended)
            vsegpt_base_url: VSEGPT API base; VSEGPT keys fail validation when unset
            timeout: Per-request timeout in seconds
            client: Optional HTTP client. An injected client is not closed by :meth:`aclose`.
        """
        self.openrouter_base_url = openrouter_base_url.rstrip("/")
        self.vsegpt_base_url = vsegpt_base_url or None
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "CredentialValidator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this validator created it."""
        if self._owns_client:
            await self._client.aclose()

    async def validate_api_key(self, api_key: str) -> ValidationResult:
        """
        Validate a key and fetch its balance.

        Args:
            api_key: Raw API key

        Returns:
            ValidationResult with validity, numeric balance and a displayable message
        """
        provider = detect_provider(api_key)
        if provider is None:
            return ValidationResult(
                is_valid=False, balance=0.0, message=INVALID_FORMAT_MESSAGE, provider="unknown"
            )

        api_key = api_key.strip()
        name = PROVIDER_DISPLAY_NAMES[provider]
        try:
            if provider is Provider.VSEGPT:
                result = await self._validate_vsegpt_key(api_key)
            else:
                result = await self._validate_openrouter_key(api_key)
        except httpx.TimeoutException as e:
            result = self._failure(provider, f"Request timeout while validating {name} key: {e}")
        except httpx.RequestError as e:
            result = self._failure(provider, f"Network error while validating {name} key: {e}")
        except Exception as e:
            result = self._failure(provider, f"Error validating {name} key: {e}")

        if result.is_valid:
            logger.info("%s key validated, balance %.2f", name, result.balance)
        else:
            logger.warning("%s key validation failed: %s", name, result.message)
        return result

    async def _validate_openrouter_key(self, api_key: str) -> ValidationResult:
        response = await self._get(f"{self.openrouter_base_url}/credits", api_key)

        if response.status_code == 200:
            body = _as_dict(_parse_json(response))
            data = _as_dict(body.get("data")) if body is not None else None
            if data is not None:
                total_credits = _as_float(data.get("total_credits")) or 0.0
                total_usage = _as_float(data.get("total_usage")) or 0.0
                balance = total_credits - total_usage
                return ValidationResult(
                    is_valid=balance >= 0,
                    balance=balance,
                    message=f"{balance:.2f}",
                    provider=Provider.OPENROUTER.value,
                )

        return self._status_failure(
            Provider.OPENROUTER,
            response.status_code,
            f"Failed to validate OpenRouter key: HTTP {response.status_code}",
        )

    async def _validate_vsegpt_key(self, api_key: str) -> ValidationResult:
        if not self.vsegpt_base_url or not self.vsegpt_base_url.strip():
            return self._failure(Provider.VSEGPT, "VSEGPT base URL is not configured")

        url = resolve_vsegpt_balance_url(self.vsegpt_base_url)
        response = await self._get(url, api_key)

        if response.status_code != 200:
            return self._status_failure(
                Provider.VSEGPT,
                response.status_code,
                f"Failed to validate VSEGPT key: HTTP {response.status_code}. Tried URL: {url}",
            )

        try:
            payload = _parse_json(response)
        except ValueError as e:
            return self._failure(Provider.VSEGPT, f"Invalid response format from VSEGPT API: {e}")

        balance = extract_vsegpt_balance(payload)
        if balance is None:
            # Unknown body shape on HTTP 200: accepted with zero balance for compatibility
            logger.warning("VSEGPT balance response had no recognizable balance field")
            return ValidationResult(
                is_valid=True, balance=0.0, message="Valid VSEGPT API key", provider=Provider.VSEGPT.value
            )

        if balance < 0:
            return ValidationResult(
                is_valid=False,
                balance=balance,
                message="VSEGPT API key has negative balance",
                provider=Provider.VSEGPT.value,
            )

        return ValidationResult(
            is_valid=True, balance=balance, message=f"{balance:.2f}", provider=Provider.VSEGPT.value
        )

    async def _get(self, url, api_key: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        return await self._client.get(url, headers=headers, timeout=self.timeout)

    @staticmethod
    def _failure(provider: Provider, message: str) -> ValidationResult:
        return ValidationResult(is_valid=False, balance=0.0, message=message, provider=provider.value)

    @classmethod
    def _status_failure(cls, provider: Provider, status_code: int, fallback: str) -> ValidationResult:
        name = PROVIDER_DISPLAY_NAMES[provider]
        if status_code == 401:
            message = f"Invalid {name} API key"
        elif status_code == 403:
            message = f"Insufficient permissions to check {name} balance"
        elif status_code == 429:
            message = "Rate limit exceeded. Please try again later"
        elif 500 <= status_code < 600:
            message = f"{name} server error (HTTP {status_code}). Please try again later"
        else:
            message = fallback
        return cls._failure(provider, message)
