from __future__ import annotations

import asyncio

import httpx

from flowtext_mcp.backends.baidu import BaiduBackend
from flowtext_mcp.backends.base import RecognitionBackend
from flowtext_mcp.backends.google import GoogleBackend
from flowtext_mcp.backends.tencent import TencentBackend
from flowtext_mcp.backends.unavailable import UnavailableBackend
from flowtext_mcp.backends.whisper import WhisperBackend
from flowtext_mcp.config import Settings
from flowtext_mcp.engines import Engine
from flowtext_mcp.retry import Sleep


def build_backend(
    engine: Engine,
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Sleep = asyncio.sleep,
) -> RecognitionBackend:
    match engine:
        case Engine.WHISPER:
            return WhisperBackend(
                binary=settings.whisper_binary,
                python=settings.whisper_python,
                model=settings.whisper_model,
                timeout_seconds=settings.whisper_timeout_seconds,
            )
        case Engine.TENCENT:
            return TencentBackend(
                local_upload_limit_bytes=settings.local_upload_limit_bytes,
                poll_interval_seconds=settings.poll_interval_seconds,
                poll_max_attempts=settings.poll_max_attempts,
                timeout_seconds=settings.http_timeout_seconds,
                retry_attempts=settings.retry_attempts,
                retry_base_delay_seconds=settings.retry_base_delay_seconds,
                transport=transport,
                sleep=sleep,
            )
        case Engine.BAIDU:
            return BaiduBackend(
                timeout_seconds=settings.http_timeout_seconds,
                retry_attempts=settings.retry_attempts,
                retry_base_delay_seconds=settings.retry_base_delay_seconds,
                transport=transport,
                sleep=sleep,
            )
        case Engine.GOOGLE:
            return GoogleBackend(
                timeout_seconds=settings.http_timeout_seconds,
                retry_attempts=settings.retry_attempts,
                retry_base_delay_seconds=settings.retry_base_delay_seconds,
                transport=transport,
                sleep=sleep,
            )
        case Engine.ALIYUN:
            return UnavailableBackend(Engine.ALIYUN)


def build_backends(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: Sleep = asyncio.sleep,
) -> dict[Engine, RecognitionBackend]:
    return {engine: build_backend(engine, settings, transport=transport, sleep=sleep) for engine in Engine}
