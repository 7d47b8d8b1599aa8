import httpx
import pytest

from flowtext_mcp.errors import ConfigurationError, RecognitionError, RetryExhaustedError
from flowtext_mcp.services.object_storage import CosConfig, CosUploader

CONFIG = CosConfig(secret_id="AKID", secret_key="key", bucket="media-1250000000", region="ap-guangzhou")


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _uploader(handler, config: CosConfig = CONFIG, sleep: RecordingSleep | None = None) -> CosUploader:
    return CosUploader(
        config,
        transport=httpx.MockTransport(handler),
        sleep=sleep or RecordingSleep(),
        clock=lambda: 1700000000.0,
    )


def test_config_requires_bucket_and_region() -> None:
    assert CosConfig.from_credentials({"secretId": "a", "secretKey": "b"}) is None
    assert CosConfig.from_credentials({"secretId": "a", "secretKey": "b", "cosBucket": "x", "cosRegion": " "}) is None

    config = CosConfig.from_credentials(
        {"secretId": "a", "secretKey": "b", "cosBucket": "x-1", "cosRegion": "ap-beijing", "cosDomain": ""}
    )
    assert config is not None
    assert config.host == "x-1.cos.ap-beijing.myqcloud.com"
    assert config.domain is None


@pytest.mark.asyncio
async def test_upload_puts_signed_object_and_returns_url() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    url = await _uploader(handler).upload(b"audio-bytes", "clip.wav")

    request = seen[0]
    assert request.method == "PUT"
    assert request.content == b"audio-bytes"
    assert request.url.host == "media-1250000000.cos.ap-guangzhou.myqcloud.com"
    assert request.url.path.startswith("/audio/")
    assert request.url.path.endswith("/clip.wav")
    assert request.headers["Date"] == "Tue, 14 Nov 2023 22:13:20 GMT"
    assert request.headers["Authorization"].startswith("q-sign-algorithm=sha1&q-ak=AKID&q-sign-time=1700000000;1700003600")
    assert "q-header-list=content-type;date;host" in request.headers["Authorization"]
    assert url == str(request.url)


@pytest.mark.asyncio
async def test_custom_domain_is_used_for_the_returned_url() -> None:
    config = CosConfig(secret_id="a", secret_key="b", bucket="x-1", region="ap-beijing", domain="cdn.example.com")

    url = await _uploader(lambda _: httpx.Response(200), config=config).upload(b"x", "a.wav")

    assert url.startswith("https://cdn.example.com/audio/")
    assert url.endswith("/a.wav")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 404])
async def test_permission_and_missing_bucket_are_configuration_errors(status: int) -> None:
    with pytest.raises(ConfigurationError) as info:
        await _uploader(lambda _: httpx.Response(status, text="<Error/>")).upload(b"x", "a.wav")

    assert "media-1250000000" in str(info.value)


@pytest.mark.asyncio
async def test_server_errors_are_recognition_errors() -> None:
    with pytest.raises(RecognitionError):
        await _uploader(lambda _: httpx.Response(500, text="oops")).upload(b"x", "a.wav")


@pytest.mark.asyncio
async def test_timeouts_are_retried_then_exhausted() -> None:
    attempts = 0
    sleep = RecordingSleep()

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(RetryExhaustedError):
        await _uploader(handler, sleep=sleep).upload(b"x", "a.wav")

    assert attempts == 3
    assert sleep.delays == [1.0, 2.0]
