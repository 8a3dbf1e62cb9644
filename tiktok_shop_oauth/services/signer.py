"""TikTok Shop request signing.

Canonical string (field order is part of the contract)::

    app_key + timestamp + access_token + shop_cipher + path
        + key1 + value1 + key2 + value2 ...   (params sorted by key, byte order)
        + body                                  (POST only, exact bytes sent)

Absent optional fields contribute an empty string. ``sign`` is never part of
the canonical string. The signature is the lower-case hex HMAC-SHA256 of the
UTF-8 canonical string keyed with the app secret.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Mapping, Optional

from loguru import logger

from tiktok_shop_oauth.core.logging import mask_secret

SIGN_PARAM = "sign"


@dataclass(frozen=True)
class SignaturePayload:
    path: str
    timestamp: int
    access_token: Optional[str] = None
    shop_cipher: Optional[str] = None
    extra_params: Mapping[str, str] = field(default_factory=dict)
    body: Optional[str] = None


@dataclass(frozen=True)
class SignedRequest:
    canonical: str
    sign: str


def _sorted_params(params: Mapping[str, str]) -> list[tuple[str, str]]:
    # 按 UTF-8 字节序排序，与 Python 默认的码点排序在 BMP 外可能不同
    return sorted(
        ((key, value) for key, value in params.items() if key != SIGN_PARAM),
        key=lambda item: item[0].encode("utf-8"),
    )


def canonical_string(app_key: str, payload: SignaturePayload) -> str:
    parts = [
        app_key,
        str(payload.timestamp),
        payload.access_token or "",
        payload.shop_cipher or "",
        payload.path,
    ]
    for key, value in _sorted_params(payload.extra_params):
        parts.append(key)
        parts.append(value)
    if payload.body is not None:
        parts.append(payload.body)
    return "".join(parts)


def hmac_hex(canonical: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"), canonical.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def sign_payload(app_key: str, app_secret: str, payload: SignaturePayload) -> str:
    return hmac_hex(canonical_string(app_key, payload), app_secret)


class RequestSigner:
    def __init__(self, app_key: str, app_secret: str) -> None:
        self._app_key = app_key
        self._app_secret = app_secret

    @property
    def app_key(self) -> str:
        return self._app_key

    def canonical(self, payload: SignaturePayload) -> str:
        return canonical_string(self._app_key, payload)

    def sign(self, payload: SignaturePayload) -> SignedRequest:
        canonical = self.canonical(payload)
        signature = hmac_hex(canonical, self._app_secret)
        if payload.access_token:
            preview = canonical.replace(
                payload.access_token, mask_secret(payload.access_token)
            )
        else:
            preview = canonical
        logger.debug("签名原文（脱敏）: {} -> {}", preview, signature)
        return SignedRequest(canonical=canonical, sign=signature)


__all__ = [
    "RequestSigner",
    "SIGN_PARAM",
    "SignaturePayload",
    "SignedRequest",
    "canonical_string",
    "hmac_hex",
    "sign_payload",
]
