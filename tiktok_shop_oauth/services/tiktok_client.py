from __future__ import annotations

import json
import time
from typing import Any, Callable, Mapping, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from tiktok_shop_oauth.core.config import AppConfig, ConfigManager
from tiktok_shop_oauth.core.errors import (
    ApiError,
    ConfigurationError,
    MalformedResponseError,
    TransportError,
)
from tiktok_shop_oauth.services.signer import (
    SIGN_PARAM,
    RequestSigner,
    SignaturePayload,
    SignedRequest,
)

ACCESS_TOKEN_HEADER = "x-tts-access-token"
RESERVED_PARAMS = frozenset(
    {"app_key", "timestamp", "access_token", "shop_cipher", SIGN_PARAM}
)


def read_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        snippet = response.text[:200]
        raise MalformedResponseError(
            f"响应不是 JSON（HTTP {response.status_code}）：{snippet}"
        ) from exc


def decode_envelope(response: httpx.Response) -> dict[str, Any]:
    """Parse ``{code, message, data}``; only structural problems raise here."""
    payload = read_json(response)
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"响应信封应为 JSON 对象：{type(payload).__name__}")
    code = payload.get("code")
    if isinstance(code, bool) or not isinstance(code, int):
        raise MalformedResponseError(
            f"响应信封缺少整数 code（HTTP {response.status_code}）：{payload!r:.200}"
        )
    return payload


def serialize_body(body: Mapping[str, Any] | BaseModel | None) -> Optional[str]:
    if body is None:
        return None
    if isinstance(body, BaseModel):
        body = body.model_dump(mode="json", exclude_none=True)
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


class TikTokShopClient:
    def __init__(
        self,
        config: AppConfig | None = None,
        signer: RequestSigner | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or ConfigManager.get().config
        self._signer = signer
        self._client = http_client or httpx.AsyncClient(
            timeout=self._config.http_timeout_seconds
        )
        self._base_url = self._config.api_base_url.rstrip("/")
        self._clock = clock

    @property
    def signer(self) -> RequestSigner:
        if self._signer is None:
            app_key = self._config.app_key.strip()
            app_secret = self._config.app_secret.strip()
            if not app_key:
                raise ConfigurationError("app_key 未配置")
            if not app_secret:
                raise ConfigurationError("app_secret 未配置")
            self._signer = RequestSigner(app_key, app_secret)
        return self._signer

    def build_signed_query(
        self,
        path: str,
        access_token: Optional[str] = None,
        shop_cipher: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
        body: Optional[str] = None,
        timestamp: Optional[int] = None,
    ) -> tuple[dict[str, str], SignedRequest]:
        extra = dict(params or {})
        reserved = RESERVED_PARAMS.intersection(extra)
        if reserved:
            raise ValueError(f"参数名与公共参数冲突: {sorted(reserved)}")
        payload = SignaturePayload(
            path=path,
            timestamp=int(self._clock()) if timestamp is None else timestamp,
            access_token=access_token,
            shop_cipher=shop_cipher,
            extra_params=extra,
            body=body,
        )
        signed = self.signer.sign(payload)

        query: dict[str, str] = {
            "app_key": self.signer.app_key,
            "timestamp": str(payload.timestamp),
        }
        if access_token:
            query["access_token"] = access_token
        if shop_cipher:
            query["shop_cipher"] = shop_cipher
        query.update(extra)
        query[SIGN_PARAM] = signed.sign
        return query, signed

    async def get(
        self,
        path: str,
        access_token: Optional[str] = None,
        shop_cipher: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
        *,
        model: type[BaseModel] | None = None,
    ) -> Any:
        return await self.request(
            "GET", path, access_token, shop_cipher, params=params, model=model
        )

    async def post(
        self,
        path: str,
        access_token: Optional[str] = None,
        shop_cipher: Optional[str] = None,
        body: Mapping[str, Any] | BaseModel | None = None,
        params: Optional[Mapping[str, str]] = None,
        *,
        model: type[BaseModel] | None = None,
    ) -> Any:
        return await self.request(
            "POST",
            path,
            access_token,
            shop_cipher,
            params=params,
            body=body if body is not None else {},
            model=model,
        )

    async def request(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        shop_cipher: Optional[str] = None,
        *,
        params: Optional[Mapping[str, str]] = None,
        body: Mapping[str, Any] | BaseModel | None = None,
        model: type[BaseModel] | None = None,
    ) -> Any:
        body_json = serialize_body(body)
        query, _signed = self.build_signed_query(
            path, access_token, shop_cipher, params, body_json
        )
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers[ACCESS_TOKEN_HEADER] = access_token

        kwargs: dict[str, Any] = {"params": query, "headers": headers}
        if body_json is not None:
            kwargs["content"] = body_json.encode("utf-8")

        url = f"{self._base_url}{path}"
        logger.debug("{} {}", method, url)
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"请求超时：{method} {path}") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"请求失败：{method} {path}: {exc}") from exc

        payload = decode_envelope(response)
        code = payload["code"]
        if code != 0:
            message = str(payload.get("message") or payload.get("msg") or "")
            logger.warning(
                "接口返回错误 {} {} -> HTTP {} code={} {}",
                method,
                path,
                response.status_code,
                code,
                message,
            )
            raise ApiError(code, message, payload.get("request_id"))

        data = payload.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise MalformedResponseError(f"data 字段应为对象：{type(data).__name__}")
        if model is None:
            return data
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise MalformedResponseError(f"{path} 响应结构不符合预期：{exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()
