from __future__ import annotations


class TikTokShopError(RuntimeError):
    """Base class for every failure surfaced by the OAuth and API clients."""


class ConfigurationError(TikTokShopError):
    pass


class InvalidStateError(TikTokShopError):
    """State token was never issued, already consumed, or evicted."""


class ExpiredStateError(TikTokShopError):
    """State token was issued but is older than the TTL."""


class NotAuthorizedError(TikTokShopError):
    """No credential is stored; the merchant has to authorize first."""


class TokenExchangeError(TikTokShopError):
    def __init__(self, detail: str, code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code


class TokenRefreshError(TikTokShopError):
    def __init__(self, detail: str, code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code


class ApiError(TikTokShopError):
    def __init__(self, code: int, message: str, request_id: str | None = None) -> None:
        super().__init__(f"API error (code {code}): {message}")
        self.code = code
        self.message = message
        self.request_id = request_id


class TransportError(TikTokShopError):
    """Network failure or timeout; safe for the caller to retry."""


class MalformedResponseError(TikTokShopError):
    pass


class CorruptStateError(TikTokShopError):
    """Persisted credential exists but does not match the expected schema."""


class CredentialStorageError(TikTokShopError):
    """Durable credential write or delete failed."""


__all__ = [
    "ApiError",
    "ConfigurationError",
    "CorruptStateError",
    "CredentialStorageError",
    "ExpiredStateError",
    "InvalidStateError",
    "MalformedResponseError",
    "NotAuthorizedError",
    "TikTokShopError",
    "TokenExchangeError",
    "TokenRefreshError",
    "TransportError",
]
