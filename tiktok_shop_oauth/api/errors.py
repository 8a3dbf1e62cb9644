from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from tiktok_shop_oauth.core.errors import (
    ApiError,
    ConfigurationError,
    CorruptStateError,
    CredentialStorageError,
    ExpiredStateError,
    InvalidStateError,
    MalformedResponseError,
    NotAuthorizedError,
    TikTokShopError,
    TokenExchangeError,
    TokenRefreshError,
    TransportError,
)


@dataclass(frozen=True)
class ErrorResponse:
    status_code: int
    kind: str
    hint: str


ERROR_RESPONSES: dict[type[TikTokShopError], ErrorResponse] = {
    InvalidStateError: ErrorResponse(400, "csrf_invalid", "授权请求无效，请重新发起授权"),
    ExpiredStateError: ErrorResponse(400, "csrf_expired", "授权已超时，请重新发起授权"),
    NotAuthorizedError: ErrorResponse(404, "not_authorized", "尚未授权，请先完成授权"),
    TokenExchangeError: ErrorResponse(400, "token_exchange_failed", "授权码无效或已过期，请重新授权"),
    TokenRefreshError: ErrorResponse(400, "token_refresh_failed", "登录凭证已失效，请重新授权"),
    ApiError: ErrorResponse(400, "api_error", "TikTok Shop 接口返回错误"),
    TransportError: ErrorResponse(502, "transport_error", "无法连接 TikTok Shop，请稍后重试"),
    MalformedResponseError: ErrorResponse(502, "malformed_response", "TikTok Shop 响应格式异常"),
    CorruptStateError: ErrorResponse(500, "corrupt_state", "本地凭证已损坏，请清除后重新授权"),
    CredentialStorageError: ErrorResponse(500, "storage_error", "凭证保存失败，请检查存储配置"),
    ConfigurationError: ErrorResponse(500, "configuration_error", "应用配置不完整"),
}


def resolve_error(exc: TikTokShopError) -> ErrorResponse:
    for cls in type(exc).__mro__:
        entry = ERROR_RESPONSES.get(cls)  # type: ignore[arg-type]
        if entry is not None:
            return entry
    return ErrorResponse(500, "internal_error", "内部错误")


def error_body(exc: TikTokShopError) -> dict[str, object]:
    entry = resolve_error(exc)
    body: dict[str, object] = {
        "error": entry.kind,
        "detail": str(exc),
        "hint": entry.hint,
    }
    code = getattr(exc, "code", None)
    if code is not None:
        body["code"] = code
    return body


async def _handle_tiktok_error(request: Request, exc: TikTokShopError) -> JSONResponse:
    entry = resolve_error(exc)
    logger.warning(
        "{} {} -> {} {}: {}",
        request.method,
        request.url.path,
        entry.status_code,
        type(exc).__name__,
        exc,
    )
    return JSONResponse(status_code=entry.status_code, content=error_body(exc))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TikTokShopError, _handle_tiktok_error)  # type: ignore[arg-type]


__all__ = ["ERROR_RESPONSES", "ErrorResponse", "error_body", "install_error_handlers", "resolve_error"]
