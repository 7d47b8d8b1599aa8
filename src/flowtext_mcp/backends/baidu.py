from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

import httpx

from flowtext_mcp.backends.base import ProgressSink, RecognitionRequest, estimate_duration_seconds, read_audio
from flowtext_mcp.cancellation import CancelToken
from flowtext_mcp.engines import Engine, missing_credentials
from flowtext_mcp.errors import CredentialsError, CueParseError, RecognitionError, RemoteTaskError
from flowtext_mcp.retry import Sleep, call_with_retry
from flowtext_mcp.types import Cue

logger = logging.getLogger(__name__)

TOKEN_URL = "https://aip.baidubce.com/oauth/2.0/token"
RECOGNIZE_URL = "https://vop.baidu.com/server_api"
CLIENT_ID = "flow-text-app"
PROVIDER = "Baidu ASR"

MANDARIN_DEV_PID = 1537
ENGLISH_DEV_PID = 1737


def dev_pid_for(language: str) -> int:
    primary = (language or "").strip().lower().replace("_", "-").split("-")[0]
    if primary == "en":
        return ENGLISH_DEV_PID
    return MANDARIN_DEV_PID


class BaiduBackend:
    """Token exchange followed by one synchronous recognition call."""

    CHECKPOINTS = ("before_token", "before_recognize")

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
        missing = missing_credentials(Engine.BAIDU, credentials)
        if missing:
            raise CredentialsError(Engine.BAIDU.value, missing)

        audio = read_audio(request.audio_path)
        progress(0.1)

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            cancel.raise_if_cancelled("before_token")
            token = await self._access_token(client, credentials, cancel)
            progress(0.3)

            cancel.raise_if_cancelled("before_recognize")
            body = {
                "format": "wav",
                "rate": 16000,
                "channel": 1,
                "cuid": CLIENT_ID,
                "token": token,
                "speech": base64.b64encode(audio).decode("ascii"),
                "len": len(audio),
                "dev_pid": dev_pid_for(request.language),
            }
            progress(0.5)
            payload = await self._post_json(client, RECOGNIZE_URL, cancel, json=body, description="Baidu recognition")

        progress(0.8)
        err_no = payload.get("err_no", 0)
        if err_no not in (0, None):
            raise RemoteTaskError(str(err_no), str(payload.get("err_msg") or "Unknown error"), provider=PROVIDER)

        results = payload.get("result") or []
        text = str(results[0]).strip() if isinstance(results, list) and results else ""
        progress(0.9)
        if not text:
            logger.info("Baidu ASR returned an empty transcript")
            return []

        return [Cue(id="1", start_time=0.0, end_time=estimate_duration_seconds(len(audio)), text=text)]

    async def _access_token(
        self,
        client: httpx.AsyncClient,
        credentials: dict[str, str],
        cancel: CancelToken,
    ) -> str:
        params = {
            "grant_type": "client_credentials",
            "client_id": credentials["api_key"],
            "client_secret": credentials["secret_key"],
        }
        payload = await self._post_json(client, TOKEN_URL, cancel, params=params, description="Baidu token exchange")
        token = payload.get("access_token")
        if isinstance(token, str) and token:
            return token
        error = str(payload.get("error") or "invalid_client")
        description = str(payload.get("error_description") or "no access token in response")
        raise RemoteTaskError(error, description, provider=PROVIDER)

    async def _post_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        cancel: CancelToken,
        *,
        description: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        async def _post() -> httpx.Response:
            return await client.post(url, params=params, json=json)

        response = await call_with_retry(
            _post,
            description=description,
            max_attempts=self.retry_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            sleep=self.sleep,
            cancel=cancel,
        )
        try:
            payload = response.json()
        except ValueError:
            if response.status_code >= 400:
                raise RecognitionError(
                    f"{description} failed ({response.status_code}): {response.text[:400]}"
                ) from None
            raise CueParseError(f"{description} returned invalid JSON: {response.text[:200]}") from None
        if not isinstance(payload, dict):
            raise CueParseError(f"{description} returned an unexpected payload")
        # Token errors come back as 401 with a JSON body worth surfacing.
        if response.status_code >= 400 and "error" not in payload and "err_no" not in payload:
            raise RecognitionError(f"{description} failed ({response.status_code}): {response.text[:400]}")
        return payload
