import hashlib
import hmac

from tiktok_shop_oauth.services.signer import (
    RequestSigner,
    SignaturePayload,
    canonical_string,
    sign_payload,
)

APP_KEY = "6abc123"
APP_SECRET = "secret-xyz"


def _payload(**overrides) -> SignaturePayload:
    fields = {
        "path": "/api/orders/search",
        "timestamp": 1700000000,
        "access_token": "TTP_token",
        "shop_cipher": "GCP_cipher",
        "extra_params": {"page_size": "10", "sort_order": "DESC"},
    }
    fields.update(overrides)
    return SignaturePayload(**fields)


def test_canonical_string_field_order() -> None:
    canonical = canonical_string(APP_KEY, _payload())
    assert canonical == (
        "6abc123" "1700000000" "TTP_token" "GCP_cipher" "/api/orders/search"
        "page_size10" "sort_orderDESC"
    )


def test_absent_optional_fields_contribute_empty_string() -> None:
    canonical = canonical_string(
        APP_KEY, _payload(access_token=None, shop_cipher=None, extra_params={})
    )
    assert canonical == "6abc1231700000000/api/orders/search"


def test_params_sorted_by_key_regardless_of_insertion_order() -> None:
    first = _payload(extra_params={"b": "2", "a": "1", "c": "3"})
    second = _payload(extra_params={"c": "3", "a": "1", "b": "2"})
    assert canonical_string(APP_KEY, first).endswith("a1b2c3")
    assert sign_payload(APP_KEY, APP_SECRET, first) == sign_payload(
        APP_KEY, APP_SECRET, second
    )


def test_params_sorted_by_byte_order() -> None:
    payload = _payload(extra_params={"b": "1", "B": "2", "_": "3"})
    # "B"(0x42) < "_"(0x5f) < "b"(0x62)
    assert canonical_string(APP_KEY, payload).endswith("B2_3b1")


def test_sign_param_is_never_signed() -> None:
    with_sign = _payload(extra_params={"page_size": "10", "sign": "deadbeef"})
    without_sign = _payload(extra_params={"page_size": "10"})
    assert canonical_string(APP_KEY, with_sign) == canonical_string(APP_KEY, without_sign)


def test_body_appended_after_params() -> None:
    payload = _payload(extra_params={"page_size": "10"}, body='{"order_status":111}')
    assert canonical_string(APP_KEY, payload).endswith('page_size10{"order_status":111}')


def test_signature_is_lowercase_hex_hmac_sha256() -> None:
    payload = _payload()
    expected = hmac.new(
        APP_SECRET.encode("utf-8"),
        canonical_string(APP_KEY, payload).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    signed = RequestSigner(APP_KEY, APP_SECRET).sign(payload)
    assert signed.sign == expected
    assert signed.sign == signed.sign.lower()
    assert len(signed.sign) == 64


def test_signing_is_deterministic() -> None:
    signer = RequestSigner(APP_KEY, APP_SECRET)
    assert signer.sign(_payload()) == signer.sign(_payload())


def test_changing_any_single_field_changes_signature() -> None:
    base = sign_payload(APP_KEY, APP_SECRET, _payload())
    variants = [
        _payload(path="/api/orders/detail"),
        _payload(timestamp=1700000001),
        _payload(access_token="TTP_token2"),
        _payload(access_token=None),
        _payload(shop_cipher="GCP_other"),
        _payload(shop_cipher=None),
        _payload(extra_params={"page_size": "11", "sort_order": "DESC"}),
        _payload(extra_params={"page_size": "10"}),
        _payload(body="{}"),
    ]
    signatures = {sign_payload(APP_KEY, APP_SECRET, variant) for variant in variants}
    assert base not in signatures
    assert len(signatures) == len(variants)
    assert sign_payload(APP_KEY, "other-secret", _payload()) != base
    assert sign_payload("other-key", APP_SECRET, _payload()) != base


def test_boundary_shift_between_adjacent_fields_collides() -> None:
    # 字段之间没有分隔符，相邻字段边界平移后拼接结果相同
    left = _payload(access_token="ab", shop_cipher="c")
    right = _payload(access_token="a", shop_cipher="bc")
    assert canonical_string(APP_KEY, left) == canonical_string(APP_KEY, right)
    assert sign_payload(APP_KEY, APP_SECRET, left) == sign_payload(APP_KEY, APP_SECRET, right)


def test_non_ascii_values_are_utf8_encoded() -> None:
    payload = _payload(extra_params={"keyword": "店铺"})
    expected = hmac.new(
        APP_SECRET.encode("utf-8"),
        canonical_string(APP_KEY, payload).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    assert sign_payload(APP_KEY, APP_SECRET, payload) == expected
