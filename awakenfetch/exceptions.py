"""
Custom exception hierarchy for awakenfetch.

Each exception maps to a specific CLI exit code and JSON error_code field.
cli.py catches all AwakenFetchError subclasses and formats them as JSON output.

Exit code mapping:
  1 — AwakenFetchError (generic CLI error)
  2 — APIError (provider rejected the request, or retries exhausted)
  3 — NetworkError (timeout, connection refused, DNS)
  4 — ValidationError (invalid address, unsupported chain)
  5 — ConfigurationError (missing/malformed config, missing API key)

Retry policy is decided by class: anything under TransientProviderError is
retried by awakenfetch.http; everything else fails on first sight.
"""


class AwakenFetchError(Exception):
    """Base exception for all awakenfetch errors."""

    exit_code: int = 1
    error_code: str = "unknown_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class APIError(AwakenFetchError):
    """Upstream API returned an error response."""

    exit_code = 2
    error_code = "api_error"


class ProviderClientError(APIError):
    """Provider answered 4xx (other than 429). Never retried."""

    error_code = "provider_client_error"

    def __init__(self, message: str, status_code: int = 400, details: dict | None = None) -> None:
        super().__init__(message, details={"status_code": status_code, **(details or {})})
        self.status_code = status_code


class InvalidAPIKeyError(ProviderClientError):
    """API key was rejected by the provider (401/403)."""

    error_code = "invalid_api_key"


class TransientProviderError(APIError):
    """Retryable failure: 429, 5xx or transport error. Raised once retries run out."""

    error_code = "transient_provider_error"


class RateLimitError(TransientProviderError):
    """API rate limit exceeded."""

    error_code = "rate_limited"

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, details={"retry_after_seconds": retry_after})
        self.retry_after = retry_after


class ServerError(TransientProviderError):
    """Provider answered 5xx."""

    error_code = "server_error"

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code


class NetworkError(TransientProviderError):
    """Network connectivity issue — timeout or connection failure."""

    exit_code = 3
    error_code = "network_error"


class NetworkTimeoutError(NetworkError):
    """Request timed out."""

    error_code = "network_timeout"


class ConnectionFailedError(NetworkError):
    """Could not connect to API endpoint."""

    error_code = "connection_failed"


class ValidationError(AwakenFetchError):
    """Caller input rejected before any network access."""

    exit_code = 4
    error_code = "validation_error"


class InvalidAddressError(ValidationError):
    """Address format is invalid for the given chain."""

    error_code = "invalid_address"


class UnsupportedChainError(ValidationError):
    """No adapter is registered under the requested chain id."""

    error_code = "unsupported_chain"


class ConfigurationError(AwakenFetchError):
    """Config file or required credential is missing or malformed."""

    exit_code = 5
    error_code = "config_error"


class ConfigMissingError(ConfigurationError):
    """Config file does not exist; user should run `awakenfetch config init`."""

    error_code = "config_missing"


class ConfigInvalidError(ConfigurationError):
    """Config file exists but contains invalid TOML or invalid values."""

    error_code = "config_invalid"


class MissingCredentialError(ConfigurationError):
    """A provider API key is required but was not configured."""

    error_code = "missing_credential"
