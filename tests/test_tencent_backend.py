import base64
import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from flowtext_mcp.backends.base import RecognitionRequest
from flowtext_mcp.backends.tencent import (
    TencentBackend,
    engine_model_for,
    parse_task_result,
)
from flowtext_mcp.cancellation import CancelToken, cancel_channel
from flowtext_mcp.errors import (
    CredentialsError,
    CueParseError,
    PayloadTooLargeError,
    RecognitionCancelled,
    RecognitionTimeoutError,
    RemoteTaskError,
)
from flowtext_mcp.services.object_storage import CosConfig

CREDENTIALS = {"secretId": "AKIDexample", "secretKey": "secret"}
CLOCK = 1700000000.0
LIMIT = 5 * 1024 * 1024


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeUploader:
    def __init__(self, log: list[str]) -> None:
        self.log = log
        self.sizes: list[int] = []

    async def upload(self, data: bytes, file_name: str, *, content_type: str = "audio/wav", cancel: Any = None) -> str:
        self.log.append("upload")
        self.sizes.append(len(data))
        return f"https://bucket.cos.ap-beijing.myqcloud.com/audio/{file_name}"


class FakeAsr:
    """Answers CreateRecTask once and DescribeTaskStatus with a scripted status list."""

    def __init__(self, statuses: list[str], log: list[str] | None = None, success_data: dict | None = None) -> None:
        self.statuses = list(statuses)
        self.log = log if log is not None else []
        self.create_bodies: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.success_data = success_data or {
            "ResultDetail": [
                {"FinalSentence": "hello there", "StartMs": 0, "EndMs": 1500},
                {"FinalSentence": "general", "StartMs": 1500, "EndMs": 2400},
            ]
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        action = request.headers["X-TC-Action"]
        self.log.append(action)
        if action == "CreateRecTask":
            self.create_bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"Response": {"Data": {"TaskId": 42}, "RequestId": "r1"}})

        status = self.statuses.pop(0)
        data: dict[str, Any] = {"TaskId": 42, "StatusStr": status}
        if status == "success":
            data.update(self.success_data)
        if status == "failed":
            data["ErrorMsg"] = "audio decode error"
        return httpx.Response(200, json={"Response": {"Data": data, "RequestId": "r2"}})


def _audio(tmp_path: Path, size: int) -> str:
    path = tmp_path / "audio.wav"
    path.write_bytes(b"\x01" * size)
    return str(path)


def _backend(handler: Any, sleep: RecordingSleep, **kwargs: Any) -> TencentBackend:
    return TencentBackend(
        transport=httpx.MockTransport(handler),
        sleep=sleep,
        clock=lambda: CLOCK,
        **kwargs,
    )


def _request(audio_path: str, credentials: dict[str, str] | None = None) -> RecognitionRequest:
    return RecognitionRequest(audio_path=audio_path, language="zh", credentials=dict(credentials or CREDENTIALS))


def _token() -> CancelToken:
    return cancel_channel()[1]


@pytest.mark.asyncio
async def test_three_megabyte_audio_succeeds_on_third_poll(tmp_path: Path) -> None:
    asr = FakeAsr(["waiting", "doing", "success"])
    sleep = RecordingSleep()
    progress: list[float] = []
    size = 3 * 1024 * 1024

    cues = await _backend(asr, sleep).recognize(_request(_audio(tmp_path, size)), progress.append, _token())

    assert [cue.text for cue in cues] == ["hello there", "general"]
    assert cues[0].end_time == 1.5
    assert asr.log == ["CreateRecTask", "DescribeTaskStatus", "DescribeTaskStatus", "DescribeTaskStatus"]
    assert sleep.delays == [5.0, 5.0]
    assert progress == sorted(progress)
    assert all(0.0 <= value <= 1.0 for value in progress)

    body = asr.create_bodies[0]
    assert body["SourceType"] == 1
    assert body["DataLen"] == size
    assert len(base64.b64decode(body["Data"])) == size
    assert body["EngineModelType"] == "16k_zh"


@pytest.mark.asyncio
async def test_requests_are_tc3_signed(tmp_path: Path) -> None:
    asr = FakeAsr(["success"])

    await _backend(asr, RecordingSleep()).recognize(_request(_audio(tmp_path, 10)), lambda _: None, _token())

    request = asr.requests[0]
    assert request.url == httpx.URL("https://asr.tencentcloudapi.com/")
    assert request.headers["X-TC-Version"] == "2019-06-14"
    assert request.headers["X-TC-Region"] == "ap-beijing"
    assert request.headers["X-TC-Timestamp"] == "1700000000"
    assert request.headers["Authorization"].startswith(
        "TC3-HMAC-SHA256 Credential=AKIDexample/2023-11-14/asr/tc3_request, "
        "SignedHeaders=content-type;host;x-tc-action, Signature="
    )


@pytest.mark.asyncio
async def test_under_threshold_never_uploads(tmp_path: Path) -> None:
    log: list[str] = []
    uploader = FakeUploader(log)
    asr = FakeAsr(["success"], log)
    credentials = {**CREDENTIALS, "cosBucket": "bucket-125", "cosRegion": "ap-beijing"}

    await _backend(asr, RecordingSleep(), uploader_factory=lambda _: uploader).recognize(
        _request(_audio(tmp_path, LIMIT - 1), credentials), lambda _: None, _token()
    )

    assert "upload" not in log


@pytest.mark.asyncio
async def test_at_threshold_uploads_exactly_once_before_submission(tmp_path: Path) -> None:
    log: list[str] = []
    uploader = FakeUploader(log)
    configs: list[CosConfig] = []

    def factory(config: CosConfig) -> FakeUploader:
        configs.append(config)
        return uploader

    asr = FakeAsr(["success"], log)
    credentials = {**CREDENTIALS, "cosBucket": "bucket-125", "cosRegion": "ap-beijing"}

    await _backend(asr, RecordingSleep(), uploader_factory=factory).recognize(
        _request(_audio(tmp_path, LIMIT), credentials), lambda _: None, _token()
    )

    assert log[:2] == ["upload", "CreateRecTask"]
    assert log.count("upload") == 1
    assert uploader.sizes == [LIMIT]
    assert configs[0].bucket == "bucket-125"
    body = asr.create_bodies[0]
    assert body["SourceType"] == 0
    assert body["Url"].startswith("https://bucket.cos.ap-beijing.myqcloud.com/audio/")
    assert "Data" not in body


@pytest.mark.asyncio
async def test_oversized_audio_without_object_storage_is_rejected(tmp_path: Path) -> None:
    asr = FakeAsr([])

    with pytest.raises(PayloadTooLargeError) as info:
        await _backend(asr, RecordingSleep()).recognize(_request(_audio(tmp_path, LIMIT)), lambda _: None, _token())

    assert "whisper" in str(info.value)
    assert asr.requests == []


@pytest.mark.asyncio
async def test_remote_failure_status(tmp_path: Path) -> None:
    asr = FakeAsr(["running", "failed"])

    with pytest.raises(RemoteTaskError) as info:
        await _backend(asr, RecordingSleep()).recognize(_request(_audio(tmp_path, 10)), lambda _: None, _token())

    assert "audio decode error" in str(info.value)


@pytest.mark.asyncio
async def test_poll_cap_raises_timeout(tmp_path: Path) -> None:
    asr = FakeAsr(["waiting"] * 3)
    sleep = RecordingSleep()

    with pytest.raises(RecognitionTimeoutError):
        await _backend(asr, sleep, poll_max_attempts=3, poll_interval_seconds=2.0).recognize(
            _request(_audio(tmp_path, 10)), lambda _: None, _token()
        )

    assert asr.log.count("DescribeTaskStatus") == 3
    assert sleep.delays == [2.0, 2.0]


@pytest.mark.asyncio
async def test_api_error_envelope_maps_to_remote_error(tmp_path: Path) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"Response": {"Error": {"Code": "AuthFailure.SignatureFailure", "Message": "bad signature"}}},
        )

    with pytest.raises(RemoteTaskError) as info:
        await _backend(handler, RecordingSleep()).recognize(_request(_audio(tmp_path, 10)), lambda _: None, _token())

    assert info.value.code == "AuthFailure.SignatureFailure"


@pytest.mark.asyncio
async def test_size_error_code_maps_to_payload_too_large(tmp_path: Path) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"Response": {"Error": {"Code": "RequestSizeLimitExceeded", "Message": "too big"}}},
        )

    with pytest.raises(PayloadTooLargeError):
        await _backend(handler, RecordingSleep()).recognize(_request(_audio(tmp_path, 10)), lambda _: None, _token())


@pytest.mark.asyncio
async def test_missing_credentials_fail_fast(tmp_path: Path) -> None:
    asr = FakeAsr([])

    with pytest.raises(CredentialsError):
        await _backend(asr, RecordingSleep()).recognize(
            _request(_audio(tmp_path, 10), {"secretId": "only"}), lambda _: None, _token()
        )

    assert asr.requests == []


@pytest.mark.asyncio
async def test_cancel_before_reading_audio(tmp_path: Path) -> None:
    asr = FakeAsr([])
    handle, token = cancel_channel()
    handle.send()

    with pytest.raises(RecognitionCancelled) as info:
        await _backend(asr, RecordingSleep()).recognize(_request(_audio(tmp_path, 10)), lambda _: None, token)

    assert info.value.checkpoint == "before_read"
    assert asr.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("cancel_at", "checkpoint", "expected_log"),
    [
        (0.1, "before_read", []),
        (0.3, "before_upload", []),
        (0.45, "before_submit", ["upload"]),
        (0.5, "before_poll", ["upload", "CreateRecTask"]),
    ],
)
async def test_each_checkpoint_stops_the_upload_path(
    tmp_path: Path, cancel_at: float, checkpoint: str, expected_log: list[str]
) -> None:
    log: list[str] = []
    asr = FakeAsr(["success"], log=log)
    uploader = FakeUploader(log)
    handle, token = cancel_channel()
    credentials = {**CREDENTIALS, "cosBucket": "bucket-125", "cosRegion": "ap-beijing"}

    def progress(value: float) -> None:
        if value == cancel_at:
            handle.send()

    backend = _backend(asr, RecordingSleep(), local_upload_limit_bytes=8, uploader_factory=lambda _: uploader)
    with pytest.raises(RecognitionCancelled) as info:
        await backend.recognize(_request(_audio(tmp_path, 10), credentials), progress, token)

    assert info.value.checkpoint == checkpoint
    assert checkpoint in TencentBackend.CHECKPOINTS
    assert log == expected_log


def test_result_text_fallback_parses_timed_lines() -> None:
    cues = parse_task_result({"Result": "[0:0.020,0:2.380]  first line\n[0:2.380,1:03.500]  second\n"})

    assert [(cue.start_time, cue.end_time, cue.text) for cue in cues] == [
        (pytest.approx(0.02), pytest.approx(2.38), "first line"),
        (pytest.approx(2.38), pytest.approx(63.5), "second"),
    ]


def test_untimed_result_is_split_into_sentences() -> None:
    cues = parse_task_result({"Result": "第一句。第二句！"})

    assert [cue.text for cue in cues] == ["第一句", "第二句"]
    assert cues[1].start_time == 3.0
    assert cues[1].end_time == 6.0


def test_empty_result_is_a_parse_error() -> None:
    with pytest.raises(CueParseError):
        parse_task_result({"Result": ""})


def test_engine_model_mapping() -> None:
    assert engine_model_for("en-US") == "16k_en"
    assert engine_model_for("") == "16k_zh"
    assert engine_model_for("fr") == "16k_zh"
