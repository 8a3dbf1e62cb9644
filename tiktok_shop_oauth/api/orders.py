from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from tiktok_shop_oauth.services import OAuthClient, OrderSearchQuery, OrderService

from .deps import get_oauth_client, get_order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("")
async def list_orders(
    shop_cipher: Optional[str] = Query(default=None),
    status: Optional[int] = Query(default=None),
    page_size: int = Query(default=10),
    page_token: Optional[str] = Query(default=None),
    oauth: OAuthClient = Depends(get_oauth_client),
    orders: OrderService = Depends(get_order_service),
):
    try:
        query = OrderSearchQuery(status=status, page_size=page_size, page_token=page_token)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc

    credential = await oauth.get_valid_credential()
    cipher = shop_cipher
    if cipher is None:
        if not credential.shops:
            raise HTTPException(status_code=400, detail="没有已授权的店铺")
        cipher = credential.shops[0].cipher

    result = await orders.search_orders(credential.access_token, cipher, query)
    return result.model_dump(mode="json")
