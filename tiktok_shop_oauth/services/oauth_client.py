from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional, Sequence
from urllib.parse import urlencode

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tiktok_shop_oauth.core.config import AppConfig, ConfigManager
from tiktok_shop_oauth.core.credential_store import Credential, CredentialStore, ShopGrant
from tiktok_shop_oauth.core.errors import (
    ConfigurationError,
    CredentialStorageError,
    ExpiredStateError,
    InvalidStateError,
    MalformedResponseError,
    NotAuthorizedError,
    TokenExchangeError,
    TokenRefreshError,
    TransportError,
)
from tiktok_shop_oauth.core.logging import mask_secret
from tiktok_shop_oauth.services.state_store import CsrfStateStore, StateValidation
from tiktok_shop_oauth.services.tiktok_client import TikTokShopClient, decode_envelope


class ShopRecord(BaseModel):
    id: str
    name: str
    region: str
    cipher: str

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    def to_grant(self) -> ShopGrant:
        return ShopGrant(
            shop_id=self.id, shop_name=self.name, region=self.region, cipher=self.cipher
        )


class ShopList(BaseModel):
    shops: Optional[list[ShopRecord]] = None

    model_config = ConfigDict(extra="ignore")


class TokenGrant(BaseModel):
    access_token: str = Field(min_length=1)
    access_token_expire_in: int
    refresh_token: str = Field(min_length=1)
    refresh_token_expire_in: int
    seller_name: Optional[str] = None
    seller_base_region: Optional[str] = None
    granted_scopes: Optional[list[str]] = None
    # refresh 响应里若带了店铺列表则以其为准
    shops: Optional[list[ShopRecord]] = None

    model_config = ConfigDict(extra="ignore")


class OAuthClient:
    """Authorization handshake and credential lifecycle against the TikTok Shop auth host.

    No call here is retried: authorization codes are single-use and refresh
    tokens rotate on use, so a failed exchange is terminal for that code/token.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        state_store: CsrfStateStore | None = None,
        credential_store: CredentialStore | None = None,
        api_client: TikTokShopClient | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or ConfigManager.get().config
        self._clock = clock
        self._state_store = state_store or CsrfStateStore(
            ttl_seconds=self._config.state_ttl_seconds, clock=clock
        )
        self._credential_store = credential_store
        self._http_client = http_client or httpx.AsyncClient(
            timeout=self._config.http_timeout_seconds
        )
        self._api_client = api_client or TikTokShopClient(
            config=self._config, http_client=self._http_client, clock=clock
        )
        # 每个凭证同一时刻只允许一个 refresh 在途
        self._refresh_lock = asyncio.Lock()

    @property
    def state_store(self) -> CsrfStateStore:
        return self._state_store

    @property
    def credential_store(self) -> Optional[CredentialStore]:
        return self._credential_store

    @staticmethod
    def _require_config(value: str, label: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ConfigurationError(f"{label} 未配置")
        return cleaned

    def authorization_url(self, redirect_uri: str | None = None) -> tuple[str, str]:
        authorize_url = self._require_config(self._config.authorize_url, "authorize_url")
        app_key = self._require_config(self._config.app_key, "app_key")
        redirect = self._require_config(
            redirect_uri or self._config.redirect_uri, "redirect_uri"
        )
        state = self._state_store.issue()
        params = {
            "app_key": app_key,
            "state": state,
            "redirect_uri": redirect,
        }
        url = f"{authorize_url}?{urlencode(params)}"
        logger.info("授权 URL 已生成，state={}", mask_secret(state))
        return url, state

    async def complete_authorization(self, code: str, state: str) -> Credential:
        result = self._state_store.verify(state)
        if result is StateValidation.expired:
            logger.warning("回调 state 已过期: {}", mask_secret(state))
            raise ExpiredStateError("state 已过期，请重新发起授权")
        if result is not StateValidation.valid:
            logger.warning("回调 state 无效，可能是伪造请求: {}", mask_secret(state))
            raise InvalidStateError("state 无效或已使用")

        credential = await self.exchange_code(code)
        if self._credential_store is not None:
            self._credential_store.put(credential)
        return credential

    async def exchange_code(self, code: str) -> Credential:
        if not code or not code.strip():
            raise TokenExchangeError("授权码为空")
        app_key = self._require_config(self._config.app_key, "app_key")
        app_secret = self._require_config(self._config.app_secret, "app_secret")
        token_url = self._require_config(self._config.token_url, "token_url")
        params = {
            "app_key": app_key,
            "app_secret": app_secret,
            "auth_code": code,
            "grant_type": "authorized_code",
        }
        logger.info("使用授权码换取 access_token: {}", mask_secret(code))
        grant = await self._request_token(token_url, params, TokenExchangeError)
        issued_at = int(self._clock())
        shops = await self.authorized_shops(grant.access_token)
        logger.info("授权成功，获取到 {} 个店铺", len(shops))
        return self._build_credential(grant, issued_at, shops)

    async def refresh(
        self, refresh_token: str, previous: Credential | None = None
    ) -> Credential:
        async with self._refresh_lock:
            return await self._refresh_locked(refresh_token, previous)

    async def authorized_shops(self, access_token: str) -> list[ShopGrant]:
        shop_list = await self._api_client.get(
            self._config.shops_path, access_token=access_token, model=ShopList
        )
        return [record.to_grant() for record in shop_list.shops or []]

    async def get_valid_credential(self, leeway_seconds: int | None = None) -> Credential:
        store = self._require_store()
        leeway = (
            self._config.refresh_leeway_seconds
            if leeway_seconds is None
            else leeway_seconds
        )
        credential = store.get()
        if credential is None:
            raise NotAuthorizedError("尚未授权，请先完成 TikTok Shop 授权")
        if credential.access_valid_at(self._clock() + leeway):
            return credential

        async with self._refresh_lock:
            current = store.get()
            if current is None:
                raise NotAuthorizedError("尚未授权，请先完成 TikTok Shop 授权")
            # 等锁期间其他调用方可能已完成刷新
            if current.refresh_token != credential.refresh_token or current.access_valid_at(
                self._clock() + leeway
            ):
                return current
            if not current.refresh_valid_at(self._clock()):
                logger.warning("refresh_token 已过期，清除本地凭证")
                store.clear()
                raise NotAuthorizedError("refresh_token 已过期，请重新授权")
            try:
                refreshed = await self._refresh_locked(current.refresh_token, current)
            except TokenRefreshError:
                logger.warning("refresh_token 被拒绝，清除本地凭证")
                try:
                    store.clear()
                except CredentialStorageError as clear_exc:
                    logger.error("清除本地凭证失败: {}", clear_exc)
                raise
            store.put(refreshed)
            return refreshed

    async def close(self) -> None:
        await self._api_client.close()
        await self._http_client.aclose()

    async def _refresh_locked(
        self, refresh_token: str, previous: Credential | None
    ) -> Credential:
        if not refresh_token:
            raise TokenRefreshError("refresh_token 不可用，请重新授权")
        app_key = self._require_config(self._config.app_key, "app_key")
        app_secret = self._require_config(self._config.app_secret, "app_secret")
        refresh_url = self._require_config(self._config.refresh_url, "refresh_url")
        params = {
            "app_key": app_key,
            "app_secret": app_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        logger.info("刷新 access_token: {}", mask_secret(refresh_token))
        grant = await self._request_token(refresh_url, params, TokenRefreshError)
        issued_at = int(self._clock())
        if grant.shops is not None:
            shops: Sequence[ShopGrant] = [record.to_grant() for record in grant.shops]
        elif previous is not None:
            shops = previous.shops
        else:
            shops = ()
        return self._build_credential(grant, issued_at, shops, previous)

    async def _request_token(
        self,
        url: str,
        params: dict[str, str],
        error_cls: type[TokenExchangeError] | type[TokenRefreshError],
    ) -> TokenGrant:
        try:
            response = await self._http_client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Token 请求超时：{url}") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"Token 请求失败：{exc}") from exc

        if not response.is_success:
            detail, code = self._format_http_error(response)
            raise error_cls(detail, code)

        payload = decode_envelope(response)
        code = payload["code"]
        if code != 0:
            message = payload.get("message") or payload.get("msg") or "Token 接口返回错误"
            raise error_cls(f"{message} (code={code})", code)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise MalformedResponseError("Token 响应缺少 data 对象")
        self._log_token_response(data)
        try:
            return TokenGrant.model_validate(data)
        except ValidationError as exc:
            raise MalformedResponseError(f"Token 响应字段不完整：{exc}") from exc

    def _build_credential(
        self,
        grant: TokenGrant,
        issued_at: int,
        shops: Sequence[ShopGrant],
        previous: Credential | None = None,
    ) -> Credential:
        credential = Credential(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            access_expires_at=issued_at + grant.access_token_expire_in,
            refresh_expires_at=issued_at + grant.refresh_token_expire_in,
            shops=tuple(shops),
            seller_name=grant.seller_name
            or (previous.seller_name if previous else None),
            seller_base_region=grant.seller_base_region
            or (previous.seller_base_region if previous else None),
            granted_scopes=tuple(grant.granted_scopes)
            if grant.granted_scopes is not None
            else (previous.granted_scopes if previous else ()),
        )
        if credential.access_expires_at >= credential.refresh_expires_at:
            logger.warning(
                "access_token 过期时间 {} 不早于 refresh_token 过期时间 {}",
                credential.access_expires_at,
                credential.refresh_expires_at,
            )
        return credential

    @staticmethod
    def _log_token_response(data: dict[str, object]) -> None:
        """记录 token 响应的键和值类型（脱敏），方便排查端点变化。"""
        sanitized: dict[str, str] = {}
        for key, value in data.items():
            if isinstance(value, str) and len(value) > 8:
                sanitized[key] = f"str({len(value)}): {mask_secret(value)}"
            else:
                sanitized[key] = repr(value)
        logger.debug("Token 响应结构（脱敏）: {}", sanitized)

    @staticmethod
    def _format_http_error(response: httpx.Response) -> tuple[str, int | None]:
        message = f"Token 请求失败（HTTP {response.status_code}）"
        try:
            payload = response.json()
        except ValueError:
            body = response.text.strip()[:200]
            return (f"{message}：{body}" if body else message), None

        code: int | None = None
        if isinstance(payload, dict):
            raw_code = payload.get("code")
            if isinstance(raw_code, int) and not isinstance(raw_code, bool):
                code = raw_code
            msg = payload.get("message") or payload.get("msg")
            detail_parts: list[str] = []
            if msg:
                detail_parts.append(str(msg))
            if code is not None:
                detail_parts.append(f"code={code}")
            if detail_parts:
                return f"{message}：{' '.join(detail_parts)}", code
        return f"{message}：{payload}", code

    def _require_store(self) -> CredentialStore:
        if self._credential_store is None:
            raise ConfigurationError("OAuthClient 未绑定 CredentialStore")
        return self._credential_store
