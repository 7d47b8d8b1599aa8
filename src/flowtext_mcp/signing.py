"""Request signing for Tencent Cloud.

Two independent schemes:

* ``cos_authorization``: the COS object-storage signature (HMAC-SHA1 over a
  time-windowed key and a canonical HTTP description).
* ``tc3_authorization``: the cloud API v3 signature (TC3-HMAC-SHA256 with a
  date/service/terminator key derivation chain).

Both are pure: the clock is always passed in.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Mapping
from urllib.parse import quote

COS_ALGORITHM = "sha1"
TC3_ALGORITHM = "TC3-HMAC-SHA256"
TC3_TERMINATOR = "tc3_request"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def _sha1_hex(data: str) -> str:
    return hashlib.sha1(data.encode("utf-8")).hexdigest()


def _sha256_hex(data: str | bytes) -> str:
    raw = data.encode("utf-8") if isinstance(data, str) else data
    return hashlib.sha256(raw).hexdigest()


def _hmac_sha256(key: bytes, data: str) -> bytes:
    return hmac.new(key, data.encode("utf-8"), hashlib.sha256).digest()


def cos_encode(value: str) -> str:
    # Only A-Z a-z 0-9 - _ . ~ survive; the rest become upper-case %XX.
    return quote(value, safe="")


def cos_key_time(start: int, duration_seconds: int = 3600) -> str:
    return f"{start};{start + duration_seconds}"


def cos_header_string(headers: Mapping[str, str]) -> str:
    pairs = sorted(f"{key.lower()}={cos_encode(value)}" for key, value in headers.items())
    return "&".join(pairs)


def cos_header_list(headers: Mapping[str, str]) -> str:
    return ";".join(sorted(key.lower() for key in headers))


def cos_http_string(method: str, uri_path: str, headers: Mapping[str, str]) -> str:
    return f"{method.lower()}\n{uri_path}\n\n{cos_header_string(headers)}\n"


def cos_authorization(
    *,
    secret_id: str,
    secret_key: str,
    method: str,
    uri_path: str,
    headers: Mapping[str, str],
    start: int,
    duration_seconds: int = 3600,
) -> str:
    key_time = cos_key_time(start, duration_seconds)
    sign_key = hmac.new(secret_key.encode("utf-8"), key_time.encode("utf-8"), hashlib.sha1).hexdigest()

    http_string = cos_http_string(method, uri_path, headers)
    string_to_sign = f"{COS_ALGORITHM}\n{key_time}\n{_sha1_hex(http_string)}\n"
    signature = hmac.new(sign_key.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1).hexdigest()

    return (
        f"q-sign-algorithm={COS_ALGORITHM}"
        f"&q-ak={secret_id}"
        f"&q-sign-time={key_time}"
        f"&q-key-time={key_time}"
        f"&q-header-list={cos_header_list(headers)}"
        f"&q-url-param-list="
        f"&q-signature={signature}"
    )


def tc3_date(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")


def tc3_credential_scope(timestamp: int, service: str) -> str:
    return f"{tc3_date(timestamp)}/{service}/{TC3_TERMINATOR}"


def tc3_canonical_request(
    *,
    payload: str,
    host: str,
    extra_headers: Mapping[str, str] | None = None,
) -> tuple[str, str]:
    """Return (canonical_request, signed_headers)."""
    headers = {"content-type": JSON_CONTENT_TYPE, "host": host}
    for key, value in (extra_headers or {}).items():
        headers[key.lower()] = value
    names = sorted(headers)
    canonical_headers = "".join(f"{name}:{headers[name].strip().lower()}\n" for name in names)
    signed_headers = ";".join(names)
    canonical_request = "\n".join(
        ["POST", "/", "", canonical_headers, signed_headers, _sha256_hex(payload)]
    )
    return canonical_request, signed_headers


def tc3_signing_key(secret_key: str, date: str, service: str) -> bytes:
    secret_date = _hmac_sha256(f"TC3{secret_key}".encode("utf-8"), date)
    secret_service = _hmac_sha256(secret_date, service)
    return _hmac_sha256(secret_service, TC3_TERMINATOR)


def tc3_authorization(
    *,
    secret_id: str,
    secret_key: str,
    payload: str,
    host: str,
    service: str,
    timestamp: int,
    extra_headers: Mapping[str, str] | None = None,
) -> str:
    canonical_request, signed_headers = tc3_canonical_request(
        payload=payload,
        host=host,
        extra_headers=extra_headers,
    )
    credential_scope = tc3_credential_scope(timestamp, service)
    string_to_sign = (
        f"{TC3_ALGORITHM}\n{timestamp}\n{credential_scope}\n{_sha256_hex(canonical_request)}"
    )
    signing_key = tc3_signing_key(secret_key, tc3_date(timestamp), service)
    signature = hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    return (
        f"{TC3_ALGORITHM} Credential={secret_id}/{credential_scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
