from __future__ import annotations

import time

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from loguru import logger

from tiktok_shop_oauth.core.credential_store import Credential, CredentialStore
from tiktok_shop_oauth.core.errors import NotAuthorizedError
from tiktok_shop_oauth.core.logging import mask_secret
from tiktok_shop_oauth.services import OAuthClient

from .deps import get_credential_store, get_oauth_client

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/tiktok")
async def login(oauth: OAuthClient = Depends(get_oauth_client)):
    url, _state = oauth.authorization_url()
    return RedirectResponse(url)


@router.get("/callback")
async def callback(
    code: str = Query(...),
    state: str = Query(...),
    oauth: OAuthClient = Depends(get_oauth_client),
):
    credential = await oauth.complete_authorization(code, state)
    logger.info("授权回调完成，店铺数 {}", len(credential.shops))
    return _credential_summary(credential)


@router.get("/refresh")
async def refresh(
    oauth: OAuthClient = Depends(get_oauth_client),
    store: CredentialStore = Depends(get_credential_store),
):
    current = store.get()
    if current is None:
        raise NotAuthorizedError("尚未授权，请先完成 TikTok Shop 授权")
    if store.is_access_valid():
        return {
            "message": "access_token 仍然有效",
            "access_expires_at": current.access_expires_at,
        }
    refreshed = await oauth.get_valid_credential(leeway_seconds=0)
    return {
        "message": "access_token 已刷新",
        "access_expires_at": refreshed.access_expires_at,
    }


@router.get("/status")
async def status(store: CredentialStore = Depends(get_credential_store)):
    credential = store.get()
    if credential is None:
        return {"authorized": False, "message": "尚未授权，请先访问 /auth/tiktok"}
    return _credential_summary(credential)


@router.post("/logout")
async def logout(store: CredentialStore = Depends(get_credential_store)):
    store.clear()
    return {"authorized": False}


def _credential_summary(credential: Credential) -> dict[str, object]:
    now = time.time()
    return {
        "authorized": True,
        "access_token": mask_secret(credential.access_token),
        "access_expires_at": credential.access_expires_at,
        "refresh_expires_at": credential.refresh_expires_at,
        "access_token_expired": not credential.access_valid_at(now),
        "refresh_token_expired": not credential.refresh_valid_at(now),
        "seller_name": credential.seller_name,
        "shops": [shop.model_dump() for shop in credential.shops],
    }
