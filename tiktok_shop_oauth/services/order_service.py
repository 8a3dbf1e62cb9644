from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tiktok_shop_oauth.services.tiktok_client import TikTokShopClient

ORDER_SEARCH_PATH = "/api/orders/search"


class OrderStatus(int, Enum):
    unpaid = 100
    awaiting_shipment = 111
    awaiting_collection = 112
    partially_shipped = 114
    in_transit = 121
    delivered = 122
    completed = 130
    cancelled = 140


class SortOrder(str, Enum):
    ascending = "ASC"
    descending = "DESC"


class TimeRange(BaseModel):
    start: int
    end: int

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_order(self) -> "TimeRange":
        if self.start >= self.end:
            raise ValueError("时间范围起点必须早于终点")
        return self


class OrderSort(BaseModel):
    field: str = "create_time"
    order: SortOrder = SortOrder.descending

    model_config = ConfigDict(frozen=True, extra="forbid")


class OrderSearchQuery(BaseModel):
    """Immutable order search options, validated once at construction."""

    status: Optional[OrderStatus] = None
    page_size: int = Field(default=10, ge=1, le=50)
    create_time_range: Optional[TimeRange] = None
    sort: Optional[OrderSort] = None
    page_token: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"page_size": self.page_size}
        if self.status is not None:
            body["order_status"] = self.status.value
        if self.create_time_range is not None:
            body["create_time_ge"] = self.create_time_range.start
            body["create_time_lt"] = self.create_time_range.end
        if self.page_token:
            body["page_token"] = self.page_token
        if self.sort is not None:
            body["sort_field"] = self.sort.field
            body["sort_order"] = self.sort.order.value
        return body


class PaymentInfo(BaseModel):
    currency: str
    total_amount: str
    sub_total: Optional[str] = None
    shipping_fee: Optional[str] = None
    tax: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class OrderItem(BaseModel):
    id: str
    product_id: str
    product_name: str
    sku_id: str
    quantity: int = 1
    sale_price: Optional[str] = None
    seller_sku: Optional[str] = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class Order(BaseModel):
    id: str
    status: int
    create_time: int
    update_time: int
    payment: Optional[PaymentInfo] = None
    item_list: list[OrderItem] = Field(default_factory=list)
    buyer_message: Optional[str] = None
    seller_note: Optional[str] = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class OrderList(BaseModel):
    orders: list[Order] = Field(default_factory=list)
    total: int = 0
    next_page_token: Optional[str] = None
    more: bool = False

    model_config = ConfigDict(extra="ignore")


class OrderService:
    def __init__(self, client: TikTokShopClient | None = None) -> None:
        self._client = client or TikTokShopClient()

    async def search_orders(
        self,
        access_token: str,
        shop_cipher: Optional[str] = None,
        query: OrderSearchQuery | None = None,
    ) -> OrderList:
        query = query or OrderSearchQuery()
        return await self._client.post(
            ORDER_SEARCH_PATH,
            access_token=access_token,
            shop_cipher=shop_cipher,
            body=query.to_body(),
            model=OrderList,
        )
