"""Tencent Cloud recording-file recognition (CreateRecTask + DescribeTaskStatus).

Audio under the local upload limit is embedded as base64. Larger audio is
uploaded to COS first and referenced by URL. The remote job is then polled
until it succeeds, fails, or the attempt cap is reached.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
import time
from typing import Any, Callable, Protocol

import httpx

from flowtext_mcp.backends.base import ProgressSink, RecognitionRequest, read_audio
from flowtext_mcp.cancellation import CancelToken
from flowtext_mcp.engines import Engine, missing_credentials
from flowtext_mcp.errors import (
    CredentialsError,
    CueParseError,
    PayloadTooLargeError,
    RecognitionError,
    RecognitionTimeoutError,
    RemoteTaskError,
)
from flowtext_mcp.retry import Sleep, call_with_retry
from flowtext_mcp.services.object_storage import CosConfig, CosUploader
from flowtext_mcp.signing import JSON_CONTENT_TYPE, tc3_authorization
from flowtext_mcp.types import Cue

logger = logging.getLogger(__name__)

ASR_HOST = "asr.tencentcloudapi.com"
ASR_SERVICE = "asr"
ASR_VERSION = "2019-06-14"
ASR_REGION = "ap-beijing"
PROVIDER = "Tencent ASR"

_SIZE_ERROR_CODES = {"RequestSizeLimitExceeded", "AudioTooLarge"}
_PENDING_STATES = {"waiting", "doing", "running"}
_RESULT_LINE_RE = re.compile(r"^\[(?P<start>[\d:.]+),(?P<end>[\d:.]+)\]\s*(?P<text>.*)$")
_SENTENCE_SPLIT_RE = re.compile(r"[。！？.!?]")
_ENGINE_MODELS = {"zh": "16k_zh", "en": "16k_en", "ja": "16k_ja", "ko": "16k_ko"}


class Uploader(Protocol):
    async def upload(
        self,
        data: bytes,
        file_name: str,
        *,
        content_type: str = ...,
        cancel: CancelToken | None = ...,
    ) -> str: ...


def _megabytes(size: int) -> float:
    return size / (1024 * 1024)


def oversized_audio_message(size: int, limit: int) -> str:
    return (
        f"Audio is {_megabytes(size):.1f} MB, over the {_megabytes(limit):.0f} MB limit for "
        "inline upload to Tencent ASR.\n\n"
        "Limits: inline audio <= 5 MB, URL audio <= 1 GB (via COS), request body <= 10 MB.\n\n"
        "Options:\n"
        "1. Use the local whisper engine, which has no size limit and works offline.\n"
        "2. Configure a COS bucket (cosBucket / cosRegion) so the audio can be uploaded "
        "and referenced by URL.\n"
        "3. Split the video into segments of five minutes or less and recognize each one."
    )


def engine_model_for(language: str) -> str:
    primary = (language or "").strip().lower().split("-")[0]
    return _ENGINE_MODELS.get(primary, "16k_zh")


def _timestamp_to_seconds(value: str) -> float:
    seconds = 0.0
    for part in value.split(":"):
        seconds = seconds * 60.0 + float(part)
    return seconds


def _ms(value: object) -> float:
    try:
        return float(str(value)) / 1000.0 if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def parse_task_result(data: dict[str, Any]) -> list[Cue]:
    """Convert a successful DescribeTaskStatus payload into cues."""
    cues: list[Cue] = []

    detail = data.get("ResultDetail")
    if isinstance(detail, list) and detail:
        for item in detail:
            if not isinstance(item, dict):
                continue
            text = str(item.get("FinalSentence") or "").strip()
            if not text:
                continue
            start = _ms(item.get("StartMs"))
            end = max(_ms(item.get("EndMs")), start)
            cues.append(Cue(id=str(len(cues) + 1), start_time=start, end_time=end, text=text))
    else:
        raw = str(data.get("Result") or "")
        for line in raw.splitlines():
            match = _RESULT_LINE_RE.match(line.strip())
            if match is None:
                continue
            text = match.group("text").strip()
            if not text:
                continue
            try:
                start = _timestamp_to_seconds(match.group("start"))
                end = _timestamp_to_seconds(match.group("end"))
            except ValueError:
                raise CueParseError(f"Malformed result line: {line!r}") from None
            cues.append(Cue(id=str(len(cues) + 1), start_time=start, end_time=max(end, start), text=text))

        if not cues and raw.strip():
            # No timing information at all: roughly three seconds per sentence.
            sentences = [part.strip() for part in _SENTENCE_SPLIT_RE.split(raw) if part.strip()]
            for index, sentence in enumerate(sentences):
                cues.append(
                    Cue(id=str(index + 1), start_time=index * 3.0, end_time=index * 3.0 + 3.0, text=sentence)
                )

    if not cues:
        raise CueParseError("Tencent ASR returned no usable recognition result")
    return cues


class TencentBackend:
    CHECKPOINTS = ("before_read", "before_upload", "before_submit", "before_poll")

    def __init__(
        self,
        *,
        local_upload_limit_bytes: int = 5 * 1024 * 1024,
        poll_interval_seconds: float = 5.0,
        poll_max_attempts: int = 60,
        timeout_seconds: float = 60.0,
        retry_attempts: int = 3,
        retry_base_delay_seconds: float = 1.0,
        region: str = ASR_REGION,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        uploader_factory: Callable[[CosConfig], Uploader] | None = None,
    ) -> None:
        self.local_upload_limit_bytes = local_upload_limit_bytes
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_max_attempts = poll_max_attempts
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.retry_base_delay_seconds = retry_base_delay_seconds
        self.region = region
        self.transport = transport
        self.sleep = sleep
        self.clock = clock
        self.uploader_factory = uploader_factory or self._default_uploader

    def _default_uploader(self, config: CosConfig) -> Uploader:
        return CosUploader(
            config,
            timeout_seconds=self.timeout_seconds,
            max_attempts=self.retry_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            transport=self.transport,
            sleep=self.sleep,
            clock=self.clock,
        )

    async def recognize(
        self,
        request: RecognitionRequest,
        progress: ProgressSink,
        cancel: CancelToken,
    ) -> list[Cue]:
        credentials = request.credentials
        missing = missing_credentials(Engine.TENCENT, credentials)
        if missing:
            raise CredentialsError(Engine.TENCENT.value, missing)

        progress(0.1)
        cancel.raise_if_cancelled("before_read")
        audio = read_audio(request.audio_path)
        logger.info("Tencent ASR: audio is %.1f MB", _megabytes(len(audio)))
        progress(0.3)

        params: dict[str, Any] = {
            "EngineModelType": engine_model_for(request.language),
            "ChannelNum": 1,
            "ResTextFormat": 2,
            "FilterDirty": 0,
            "FilterModal": 0,
            "FilterPunc": 0,
            "ConvertNumMode": 1,
            "SpeakerDiarization": 0,
        }

        if len(audio) >= self.local_upload_limit_bytes:
            cos_config = CosConfig.from_credentials(credentials)
            if cos_config is None:
                raise PayloadTooLargeError(oversized_audio_message(len(audio), self.local_upload_limit_bytes))

            cancel.raise_if_cancelled("before_upload")
            progress(0.35)
            uploader = self.uploader_factory(cos_config)
            audio_url = await uploader.upload(
                audio,
                f"audio_{int(self.clock())}.wav",
                content_type="audio/wav",
                cancel=cancel,
            )
            logger.info("Audio uploaded to COS for Tencent ASR")
            progress(0.45)
            params.update({"SourceType": 0, "Url": audio_url})
        else:
            params.update(
                {
                    "SourceType": 1,
                    "Data": base64.b64encode(audio).decode("ascii"),
                    "DataLen": len(audio),
                }
            )

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            cancel.raise_if_cancelled("before_submit")
            created = await self._call(client, "CreateRecTask", params, credentials, cancel, audio_size=len(audio))
            remote_task_id = created.get("TaskId")
            if remote_task_id is None:
                raise CueParseError("Tencent ASR response is missing Data.TaskId")
            logger.info("Tencent ASR task created: %s", remote_task_id)
            progress(0.5)

            cues = await self._poll(client, remote_task_id, credentials, progress, cancel)

        logger.info("Tencent ASR produced %s cues", len(cues))
        return cues

    async def _poll(
        self,
        client: httpx.AsyncClient,
        remote_task_id: object,
        credentials: dict[str, str],
        progress: ProgressSink,
        cancel: CancelToken,
    ) -> list[Cue]:
        for attempt in range(1, self.poll_max_attempts + 1):
            cancel.raise_if_cancelled("before_poll")
            data = await self._call(client, "DescribeTaskStatus", {"TaskId": remote_task_id}, credentials, cancel)
            status = str(data.get("StatusStr") or "").lower()
            logger.debug("Tencent ASR task %s status %s (%s/%s)", remote_task_id, status, attempt, self.poll_max_attempts)

            if status == "success":
                return parse_task_result(data)
            if status == "failed":
                message = str(data.get("ErrorMsg") or "recognition failed")
                raise RemoteTaskError("TaskFailed", message, provider=PROVIDER)
            if status not in _PENDING_STATES:
                logger.warning("Tencent ASR task %s reported unknown status %r", remote_task_id, status)

            progress(0.5 + 0.4 * attempt / self.poll_max_attempts)
            if attempt < self.poll_max_attempts:
                await self.sleep(self.poll_interval_seconds)

        raise RecognitionTimeoutError(
            f"Tencent ASR task {remote_task_id} did not finish after {self.poll_max_attempts} "
            f"status checks ({self.poll_max_attempts * self.poll_interval_seconds:.0f}s); try again later"
        )

    async def _call(
        self,
        client: httpx.AsyncClient,
        action: str,
        params: dict[str, Any],
        credentials: dict[str, str],
        cancel: CancelToken,
        *,
        audio_size: int | None = None,
    ) -> dict[str, Any]:
        payload = json.dumps(params)

        async def _post() -> httpx.Response:
            timestamp = int(self.clock())
            authorization = tc3_authorization(
                secret_id=credentials["secretId"],
                secret_key=credentials["secretKey"],
                payload=payload,
                host=ASR_HOST,
                service=ASR_SERVICE,
                timestamp=timestamp,
                extra_headers={"x-tc-action": action},
            )
            headers = {
                "Authorization": authorization,
                "Content-Type": JSON_CONTENT_TYPE,
                "Host": ASR_HOST,
                "X-TC-Action": action,
                "X-TC-Timestamp": str(timestamp),
                "X-TC-Version": ASR_VERSION,
                "X-TC-Region": self.region,
            }
            return await client.post(f"https://{ASR_HOST}/", headers=headers, content=payload.encode("utf-8"))

        response = await call_with_retry(
            _post,
            description=f"Tencent ASR {action}",
            max_attempts=self.retry_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            sleep=self.sleep,
            cancel=cancel,
        )
        if response.status_code >= 400:
            raise RecognitionError(
                f"Tencent ASR {action} failed ({response.status_code}): {response.text[:400]}"
            )

        try:
            body = response.json()
        except ValueError:
            raise CueParseError(f"Tencent ASR {action} returned invalid JSON: {response.text[:200]}") from None

        envelope = body.get("Response") if isinstance(body, dict) else None
        if not isinstance(envelope, dict):
            raise CueParseError(f"Tencent ASR {action} response is missing the Response field")

        error = envelope.get("Error")
        if isinstance(error, dict):
            code = str(error.get("Code") or "Unknown")
            message = str(error.get("Message") or "Unknown error")
            if code in _SIZE_ERROR_CODES and audio_size is not None:
                raise PayloadTooLargeError(
                    f"Tencent ASR rejected the request as too large ({code}: {message}).\n\n"
                    f"Audio: {_megabytes(audio_size):.1f} MB, about "
                    f"{_megabytes(audio_size) * 4 / 3:.1f} MB once base64 encoded; "
                    "the request body limit is 10 MB.\n\n"
                    "Options:\n"
                    "1. Use the local whisper engine (no size limit).\n"
                    "2. Configure a COS bucket so the audio is uploaded and referenced by URL.\n"
                    "3. Re-extract the audio at 16 kHz mono or split it into shorter parts."
                )
            raise RemoteTaskError(code, message, provider=PROVIDER)

        data = envelope.get("Data")
        return data if isinstance(data, dict) else {}
