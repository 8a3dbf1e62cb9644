from __future__ import annotations

import time
import traceback
import uuid
from typing import Callable

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from tiktok_shop_oauth.api import auth_router, install_error_handlers, orders_router
from tiktok_shop_oauth.core.config import AppConfig, ConfigManager
from tiktok_shop_oauth.core.credential_store import CredentialStore, build_credential_backend
from tiktok_shop_oauth.core.logging import init_logging
from tiktok_shop_oauth.services import (
    CsrfStateStore,
    OAuthClient,
    OrderService,
    TikTokShopClient,
)


def create_app(
    config: AppConfig | None = None,
    credential_store: CredentialStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], float] = time.time,
    configure_logging: bool = False,
) -> FastAPI:
    """Composition root: every store and client is created here and shared by reference."""
    config = config or ConfigManager.get().config
    store = credential_store or CredentialStore(build_credential_backend(config), clock=clock)
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=config.http_timeout_seconds)
    api_client = TikTokShopClient(config=config, http_client=client, clock=clock)
    oauth_client = OAuthClient(
        config=config,
        state_store=CsrfStateStore(ttl_seconds=config.state_ttl_seconds, clock=clock),
        credential_store=store,
        api_client=api_client,
        http_client=client,
        clock=clock,
    )

    app = FastAPI(title="TikTok Shop OAuth")
    app.state.config = config
    app.state.credential_store = store
    app.state.oauth_client = oauth_client
    app.state.order_service = OrderService(client=api_client)

    install_error_handlers(app)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
        error_id = uuid.uuid4().hex[:12]
        logger.error(
            "未处理异常 id={} {} {}: {}",
            error_id,
            request.method,
            request.url.path,
            exc,
        )
        logger.debug("Traceback:\n{}", "".join(tb))
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal Server Error",
                "error_id": error_id,
                "path": str(request.url.path),
            },
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000
        logger.info(
            "{} {} -> {} ({:.1f} ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    app.include_router(auth_router)
    app.include_router(orders_router)

    @app.on_event("startup")
    async def startup_event() -> None:
        if configure_logging:
            init_logging()
        credential = store.get()
        if credential is None:
            logger.info("未找到已保存的凭证，请访问 /auth/tiktok 完成授权")
        else:
            logger.info(
                "已加载凭证，access 过期时间 {}，店铺数 {}",
                credential.access_expires_at,
                len(credential.shops),
            )
            for shop in credential.shops:
                logger.info("  - {} ({})", shop.shop_name, shop.region)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        # 外部传入的 http_client 由调用方负责关闭
        if owns_client:
            await oauth_client.close()

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        return {"status": "ok"}

    return app


def run() -> None:
    import uvicorn

    config = ConfigManager.get().config
    uvicorn.run(create_app(config, configure_logging=True), host=config.host, port=config.port)


if __name__ == "__main__":
    run()
