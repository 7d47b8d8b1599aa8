from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

import httpx

from flowtext_mcp.backends.base import ProgressSink, RecognitionRequest, estimate_duration_seconds, read_audio
from flowtext_mcp.cancellation import CancelToken
from flowtext_mcp.engines import Engine, missing_credentials
from flowtext_mcp.errors import CredentialsError, CueParseError, PayloadTooLargeError, RecognitionError, RemoteTaskError
from flowtext_mcp.retry import Sleep, call_with_retry
from flowtext_mcp.types import Cue

logger = logging.getLogger(__name__)

RECOGNIZE_URL = "https://speech.googleapis.com/v1/speech:recognize"
PROVIDER = "Google Speech"
INLINE_LIMIT_BYTES = 10 * 1024 * 1024

_DEFAULT_REGIONS = {"zh": "zh-CN", "en": "en-US", "ja": "ja-JP", "ko": "ko-KR", "fr": "fr-FR", "de": "de-DE"}


def language_code_for(language: str) -> str:
    value = (language or "").strip().replace("_", "-")
    if not value:
        return "zh-CN"
    if "-" in value:
        return value
    return _DEFAULT_REGIONS.get(value.lower(), value)


def _duration_seconds(value: object) -> float | None:
    # Durations arrive as strings like "1.500s".
    if value is None:
        return None
    text = str(value).strip()
    if text.endswith("s"):
        text = text[:-1]
    try:
        return float(text)
    except ValueError:
        return None


def parse_results(payload: dict[str, Any], fallback_duration: float) -> list[Cue]:
    cues: list[Cue] = []
    previous_end = 0.0
    results = payload.get("results") or []
    if not isinstance(results, list):
        raise CueParseError(f"Google Speech results must be a list, got {type(results).__name__}")
    for result in results:
        if not isinstance(result, dict):
            raise CueParseError(f"Malformed Google Speech result: {result!r}")
        alternatives = result.get("alternatives") or []
        if not alternatives:
            continue
        if not isinstance(alternatives, list) or not isinstance(alternatives[0], dict):
            raise CueParseError(f"Malformed Google Speech alternatives: {alternatives!r}")
        text = str(alternatives[0].get("transcript") or "").strip()
        end = _duration_seconds(result.get("resultEndTime"))
        if end is None:
            end = max(previous_end, fallback_duration)
        end = max(end, previous_end)
        if text:
            cues.append(Cue(id=str(len(cues) + 1), start_time=previous_end, end_time=end, text=text))
        previous_end = end
    return cues


class GoogleBackend:
    CHECKPOINTS = ("before_recognize",)

    def __init__(
        self,
        *,
        timeout_seconds: float = 60.0,
        retry_attempts: int = 3,
        retry_base_delay_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.retry_base_delay_seconds = retry_base_delay_seconds
        self.transport = transport
        self.sleep = sleep

    async def recognize(
        self,
        request: RecognitionRequest,
        progress: ProgressSink,
        cancel: CancelToken,
    ) -> list[Cue]:
        credentials = request.credentials
        missing = missing_credentials(Engine.GOOGLE, credentials)
        if missing:
            raise CredentialsError(Engine.GOOGLE.value, missing)

        audio = read_audio(request.audio_path)
        if len(audio) > INLINE_LIMIT_BYTES:
            raise PayloadTooLargeError(
                f"Audio is {len(audio) / (1024 * 1024):.1f} MB; Google Speech accepts at most 10 MB inline. "
                "Use the local whisper engine or split the audio into shorter parts."
            )
        progress(0.2)

        body = {
            "config": {
                "encoding": "LINEAR16",
                "sampleRateHertz": 16000,
                "languageCode": language_code_for(request.language),
                "enableAutomaticPunctuation": True,
            },
            "audio": {"content": base64.b64encode(audio).decode("ascii")},
        }

        cancel.raise_if_cancelled("before_recognize")
        progress(0.4)
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:

            async def _post() -> httpx.Response:
                return await client.post(RECOGNIZE_URL, params={"key": credentials["api_key"]}, json=body)

            response = await call_with_retry(
                _post,
                description="Google Speech recognize",
                max_attempts=self.retry_attempts,
                base_delay_seconds=self.retry_base_delay_seconds,
                sleep=self.sleep,
                cancel=cancel,
            )
        progress(0.8)

        try:
            payload = response.json()
        except ValueError:
            raise CueParseError(f"Google Speech returned invalid JSON: {response.text[:200]}") from None

        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            code = str(error.get("status") or error.get("code") or response.status_code)
            raise RemoteTaskError(code, str(error.get("message") or "Unknown error"), provider=PROVIDER)
        if response.status_code >= 400:
            raise RecognitionError(f"Google Speech failed ({response.status_code}): {response.text[:400]}")
        if not isinstance(payload, dict):
            raise CueParseError(f"Google Speech returned an unexpected payload: {response.text[:200]}")

        cues = parse_results(payload, estimate_duration_seconds(len(audio)))
        logger.info("Google Speech produced %s cues", len(cues))
        return cues
