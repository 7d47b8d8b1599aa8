from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from email.utils import formatdate
from typing import Callable

import httpx

from flowtext_mcp.cancellation import CancelToken
from flowtext_mcp.errors import ConfigurationError, RecognitionError
from flowtext_mcp.retry import Sleep, call_with_retry
from flowtext_mcp.signing import cos_authorization

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CosConfig:
    secret_id: str
    secret_key: str
    bucket: str
    region: str
    domain: str | None = None

    @property
    def host(self) -> str:
        return f"{self.bucket}.cos.{self.region}.myqcloud.com"

    @classmethod
    def from_credentials(cls, credentials: dict[str, str]) -> CosConfig | None:
        bucket = (credentials.get("cosBucket") or "").strip()
        region = (credentials.get("cosRegion") or "").strip()
        if not bucket or not region:
            return None
        return cls(
            secret_id=credentials["secretId"],
            secret_key=credentials["secretKey"],
            bucket=bucket,
            region=region,
            domain=(credentials.get("cosDomain") or "").strip() or None,
        )


class CosUploader:
    """PUTs an audio payload into a COS bucket and returns its URL."""

    def __init__(
        self,
        config: CosConfig,
        *,
        timeout_seconds: float = 60.0,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.transport = transport
        self.sleep = sleep
        self.clock = clock

    async def upload(
        self,
        data: bytes,
        file_name: str,
        *,
        content_type: str = "audio/wav",
        cancel: CancelToken | None = None,
    ) -> str:
        object_key = f"audio/{uuid.uuid4()}/{file_name}"
        url = f"https://{self.config.host}/{object_key}"

        async def _put() -> httpx.Response:
            now = int(self.clock())
            headers = {
                "Host": self.config.host,
                "Date": formatdate(now, usegmt=True),
                "Content-Type": content_type,
            }
            authorization = cos_authorization(
                secret_id=self.config.secret_id,
                secret_key=self.config.secret_key,
                method="PUT",
                uri_path=f"/{object_key}",
                headers=headers,
                start=now,
            )
            headers["Authorization"] = authorization
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                return await client.put(url, headers=headers, content=data)

        logger.info("Uploading %.1f MB to COS bucket %s", len(data) / (1024 * 1024), self.config.bucket)
        response = await call_with_retry(
            _put,
            description="COS upload",
            max_attempts=self.max_attempts,
            base_delay_seconds=self.base_delay_seconds,
            sleep=self.sleep,
            cancel=cancel,
        )

        if response.status_code == 403:
            raise ConfigurationError(
                "COS upload was denied (HTTP 403). Check that the bucket allows "
                "public read / private write, that the key has COS permissions, and "
                f"that bucket {self.config.bucket!r} in region {self.config.region!r} exists. "
                f"Response: {response.text[:400]}"
            )
        if response.status_code == 404:
            raise ConfigurationError(
                f"COS bucket {self.config.bucket!r} was not found in region "
                f"{self.config.region!r} (HTTP 404). Response: {response.text[:400]}"
            )
        if response.status_code >= 400:
            raise RecognitionError(f"COS upload failed ({response.status_code}): {response.text[:400]}")

        if self.config.domain:
            return f"https://{self.config.domain}/{object_key}"
        return url
