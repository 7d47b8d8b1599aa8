from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Engine -> credential field -> environment variable.
_CREDENTIAL_ENV: dict[str, dict[str, str]] = {
    "tencent": {
        "secretId": "TENCENT_SECRET_ID",
        "secretKey": "TENCENT_SECRET_KEY",
        "cosBucket": "TENCENT_COS_BUCKET",
        "cosRegion": "TENCENT_COS_REGION",
        "cosDomain": "TENCENT_COS_DOMAIN",
    },
    "baidu": {
        "api_key": "BAIDU_API_KEY",
        "secret_key": "BAIDU_SECRET_KEY",
    },
    "google": {
        "api_key": "GOOGLE_API_KEY",
    },
    "aliyun": {
        "accessKeyId": "ALIYUN_ACCESS_KEY_ID",
        "accessKeySecret": "ALIYUN_ACCESS_KEY_SECRET",
    },
}


@dataclass(slots=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    mcp_path: str = "/mcp"
    health_path: str = "/healthz"
    data_dir: Path = Path("data")
    log_level: str = "INFO"
    task_retention_seconds: float = 1800.0
    poll_interval_seconds: float = 5.0
    poll_max_attempts: int = 60
    http_timeout_seconds: float = 60.0
    retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    local_upload_limit_bytes: int = 5 * 1024 * 1024
    whisper_binary: str = "whisper"
    whisper_python: str = "python3"
    whisper_model: str = "base"
    whisper_timeout_seconds: float = 3600.0
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    default_credentials: dict[str, dict[str, str]] = field(default_factory=dict)

    def credentials_for(self, engine: str) -> dict[str, str]:
        return dict(self.default_credentials.get(engine, {}))


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    return int(raw)


def _as_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    return float(raw)


def _normalized_path(path: str) -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def _load_default_credentials() -> dict[str, dict[str, str]]:
    credentials: dict[str, dict[str, str]] = {}
    for engine, fields in _CREDENTIAL_ENV.items():
        values = {
            key: os.environ[env_name].strip()
            for key, env_name in fields.items()
            if os.getenv(env_name, "").strip()
        }
        if values:
            credentials[engine] = values
    return credentials


def load_settings() -> Settings:
    load_dotenv()
    data_dir = Path(os.getenv("DATA_DIR", "data")).resolve()

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_as_int("PORT", 3000),
        mcp_path=_normalized_path(os.getenv("MCP_PATH", "/mcp")),
        health_path=_normalized_path(os.getenv("HEALTH_PATH", "/healthz")),
        data_dir=data_dir,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        task_retention_seconds=_as_float("TASK_RETENTION_SECONDS", 1800.0),
        poll_interval_seconds=_as_float("POLL_INTERVAL_SECONDS", 5.0),
        poll_max_attempts=_as_int("POLL_MAX_ATTEMPTS", 60),
        http_timeout_seconds=_as_float("HTTP_TIMEOUT_SECONDS", 60.0),
        retry_attempts=_as_int("RETRY_ATTEMPTS", 3),
        retry_base_delay_seconds=_as_float("RETRY_BASE_DELAY_SECONDS", 1.0),
        local_upload_limit_bytes=_as_int("LOCAL_UPLOAD_LIMIT_BYTES", 5 * 1024 * 1024),
        whisper_binary=os.getenv("WHISPER_BINARY", "whisper"),
        whisper_python=os.getenv("WHISPER_PYTHON", "python3"),
        whisper_model=os.getenv("WHISPER_MODEL", "base"),
        whisper_timeout_seconds=_as_float("WHISPER_TIMEOUT_SECONDS", 3600.0),
        ffmpeg_binary=os.getenv("FFMPEG_BINARY", "ffmpeg"),
        ffprobe_binary=os.getenv("FFPROBE_BINARY", "ffprobe"),
        default_credentials=_load_default_credentials(),
    )
