from .oauth_client import OAuthClient, ShopRecord, TokenGrant
from .order_service import OrderList, OrderSearchQuery, OrderService, OrderStatus
from .signer import RequestSigner, SignaturePayload, SignedRequest
from .state_store import CsrfStateStore, StateValidation
from .tiktok_client import TikTokShopClient

__all__ = [
    "CsrfStateStore",
    "OAuthClient",
    "OrderList",
    "OrderSearchQuery",
    "OrderService",
    "OrderStatus",
    "RequestSigner",
    "ShopRecord",
    "SignaturePayload",
    "SignedRequest",
    "StateValidation",
    "TikTokShopClient",
    "TokenGrant",
]
