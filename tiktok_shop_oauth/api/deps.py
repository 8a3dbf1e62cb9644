from __future__ import annotations

from fastapi import Request

from tiktok_shop_oauth.core.credential_store import CredentialStore
from tiktok_shop_oauth.services import OAuthClient, OrderService


def get_oauth_client(request: Request) -> OAuthClient:
    return request.app.state.oauth_client


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credential_store


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service
