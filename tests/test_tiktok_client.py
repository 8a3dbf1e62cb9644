import hashlib
import hmac
import json

import httpx
import pytest
from pydantic import BaseModel

from tiktok_shop_oauth.core.config import AppConfig
from tiktok_shop_oauth.core.errors import (
    ApiError,
    ConfigurationError,
    MalformedResponseError,
    TransportError,
)
from tiktok_shop_oauth.services.tiktok_client import TikTokShopClient

NOW = 1_700_000_000


class FakeHttpClient:
    def __init__(
        self,
        responses: list[httpx.Response] | None = None,
        exc: Exception | None = None,
    ) -> None:
        self._responses = responses or []
        self._exc = exc
        self.requests: list[tuple[str, str, dict]] = []

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        self.requests.append((method, url, kwargs))
        if self._exc:
            raise self._exc
        return self._responses.pop(0)

    async def aclose(self) -> None:
        return None


def _response(payload: object, status_code: int = 200) -> httpx.Response:
    request = httpx.Request("GET", "https://open-api.tiktokglobalshop.com/mock")
    return httpx.Response(status_code=status_code, json=payload, request=request)


def _config(**overrides) -> AppConfig:
    fields = {"app_key": "app-key", "app_secret": "app-secret"}
    fields.update(overrides)
    return AppConfig(**fields)


def _client(http_client: FakeHttpClient, **overrides) -> TikTokShopClient:
    return TikTokShopClient(
        config=_config(**overrides), http_client=http_client, clock=lambda: NOW + 0.75
    )


def _expected_sign(canonical: str) -> str:
    return hmac.new(b"app-secret", canonical.encode("utf-8"), hashlib.sha256).hexdigest()


@pytest.mark.asyncio
async def test_get_signs_fixed_vector() -> None:
    http = FakeHttpClient([_response({"code": 0, "message": "Success", "data": {"ok": True}})])
    client = _client(http)

    data = await client.get(
        "/api/orders/search", "TTP_token", "GCP_cipher", {"page_size": "10"}
    )

    assert data == {"ok": True}
    method, url, kwargs = http.requests[0]
    assert method == "GET"
    assert url == "https://open-api.tiktokglobalshop.com/api/orders/search"
    canonical = "app-key" + str(NOW) + "TTP_token" + "GCP_cipher" + "/api/orders/search" + "page_size10"
    assert kwargs["params"] == {
        "app_key": "app-key",
        "timestamp": str(NOW),
        "access_token": "TTP_token",
        "shop_cipher": "GCP_cipher",
        "page_size": "10",
        "sign": _expected_sign(canonical),
    }
    assert kwargs["headers"]["x-tts-access-token"] == "TTP_token"
    assert "content" not in kwargs


def test_build_signed_query_exposes_canonical_string() -> None:
    client = _client(FakeHttpClient())
    query, signed = client.build_signed_query("/api/products", params={"b": "2", "a": "1"})
    assert signed.canonical == f"app-key{NOW}/api/productsa1b2"
    assert query["sign"] == signed.sign
    assert "access_token" not in query
    assert "shop_cipher" not in query


@pytest.mark.asyncio
async def test_post_signs_exact_body_bytes() -> None:
    http = FakeHttpClient([_response({"code": 0, "data": {"orders": []}})])
    client = _client(http)

    await client.post(
        "/api/orders/search",
        "TTP_token",
        None,
        body={"page_size": 20, "order_status": 111},
        params={"version": "202309"},
    )

    method, _url, kwargs = http.requests[0]
    body = '{"page_size":20,"order_status":111}'
    assert method == "POST"
    assert kwargs["content"] == body.encode("utf-8")
    canonical = "app-key" + str(NOW) + "TTP_token" + "/api/orders/search" + "version202309" + body
    assert kwargs["params"]["sign"] == _expected_sign(canonical)
    assert kwargs["headers"]["Content-Type"] == "application/json"


@pytest.mark.asyncio
async def test_nonzero_code_raises_api_error_even_on_http_200() -> None:
    http = FakeHttpClient(
        [_response({"code": 106001, "message": "Invalid sign", "request_id": "req-1"})]
    )
    client = _client(http)

    with pytest.raises(ApiError) as excinfo:
        await client.get("/api/orders/search", "TTP_token")

    assert excinfo.value.code == 106001
    assert excinfo.value.message == "Invalid sign"
    assert excinfo.value.request_id == "req-1"


@pytest.mark.asyncio
async def test_envelope_code_decides_over_http_status() -> None:
    http = FakeHttpClient(
        [_response({"code": 36009004, "message": "access token expired"}, status_code=401)]
    )
    with pytest.raises(ApiError) as excinfo:
        await _client(http).get("/api/orders/search", "TTP_token")
    assert excinfo.value.code == 36009004


@pytest.mark.asyncio
async def test_missing_data_returns_empty_mapping() -> None:
    http = FakeHttpClient([_response({"code": 0, "message": "Success"})])
    assert await _client(http).post("/api/orders/ack", "TTP_token") == {}
    assert http.requests[0][2]["content"] == b"{}"


@pytest.mark.asyncio
async def test_request_error_becomes_transport_error() -> None:
    request = httpx.Request("GET", "https://open-api.tiktokglobalshop.com/mock")
    http = FakeHttpClient(exc=httpx.ConnectError("refused", request=request))
    with pytest.raises(TransportError):
        await _client(http).get("/api/orders/search")


@pytest.mark.asyncio
async def test_timeout_becomes_transport_error() -> None:
    request = httpx.Request("GET", "https://open-api.tiktokglobalshop.com/mock")
    http = FakeHttpClient(exc=httpx.ReadTimeout("timed out", request=request))
    with pytest.raises(TransportError, match="超时"):
        await _client(http).get("/api/orders/search")


@pytest.mark.asyncio
async def test_non_json_response_is_malformed() -> None:
    request = httpx.Request("GET", "https://open-api.tiktokglobalshop.com/mock")
    http = FakeHttpClient([httpx.Response(502, content=b"<html>bad gateway</html>", request=request)])
    with pytest.raises(MalformedResponseError):
        await _client(http).get("/api/orders/search")


@pytest.mark.asyncio
async def test_envelope_without_code_is_malformed() -> None:
    http = FakeHttpClient([_response({"message": "??", "data": {}})])
    with pytest.raises(MalformedResponseError):
        await _client(http).get("/api/orders/search")


@pytest.mark.asyncio
async def test_model_validation_failure_is_malformed() -> None:
    class Payload(BaseModel):
        total: int

    http = FakeHttpClient([_response({"code": 0, "data": {"total": "many"}})])
    with pytest.raises(MalformedResponseError):
        await _client(http).get("/api/orders/search", model=Payload)


@pytest.mark.asyncio
async def test_reserved_param_names_rejected() -> None:
    http = FakeHttpClient()
    with pytest.raises(ValueError):
        await _client(http).get("/api/orders/search", params={"sign": "x"})
    assert http.requests == []


@pytest.mark.asyncio
async def test_missing_secret_is_configuration_error() -> None:
    http = FakeHttpClient()
    with pytest.raises(ConfigurationError):
        await _client(http, app_secret="").get("/api/orders/search")


def test_body_serialization_is_compact_and_keeps_unicode() -> None:
    client = _client(FakeHttpClient())
    body = json.dumps({"note": "店铺"}, separators=(",", ":"), ensure_ascii=False)
    _query, signed = client.build_signed_query("/p", body=body)
    assert signed.canonical.endswith('{"note":"店铺"}')
