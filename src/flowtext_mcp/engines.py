from __future__ import annotations

from enum import Enum
from typing import Mapping

from flowtext_mcp.errors import CredentialsError, UnsupportedEngineError
from flowtext_mcp.types import Language


class Engine(str, Enum):
    WHISPER = "whisper"
    TENCENT = "tencent"
    ALIYUN = "aliyun"
    BAIDU = "baidu"
    GOOGLE = "google"

    @classmethod
    def parse(cls, value: str | Engine) -> Engine:
        if isinstance(value, Engine):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedEngineError(str(value)) from None


_EAST_ASIAN = (
    Language("zh", "Chinese"),
    Language("en", "English"),
    Language("ja", "Japanese"),
    Language("ko", "Korean"),
)

LANGUAGE_CATALOG: dict[Engine, tuple[Language, ...]] = {
    Engine.WHISPER: _EAST_ASIAN
    + (
        Language("fr", "French"),
        Language("de", "German"),
        Language("es", "Spanish"),
        Language("ru", "Russian"),
    ),
    Engine.TENCENT: _EAST_ASIAN,
    Engine.ALIYUN: _EAST_ASIAN,
    Engine.BAIDU: (
        Language("zh", "Chinese"),
        Language("en", "English"),
        Language("jp", "Japanese"),
        Language("kor", "Korean"),
    ),
    Engine.GOOGLE: (
        Language("zh-CN", "Chinese (Simplified)"),
        Language("zh-TW", "Chinese (Traditional)"),
        Language("en-US", "English (US)"),
        Language("en-GB", "English (UK)"),
        Language("ja-JP", "Japanese"),
        Language("ko-KR", "Korean"),
        Language("fr-FR", "French"),
        Language("de-DE", "German"),
    ),
}

REQUIRED_CREDENTIALS: dict[Engine, tuple[str, ...]] = {
    Engine.WHISPER: (),
    Engine.TENCENT: ("secretId", "secretKey"),
    Engine.ALIYUN: ("accessKeyId", "accessKeySecret"),
    Engine.BAIDU: ("api_key", "secret_key"),
    Engine.GOOGLE: ("api_key",),
}


def supported_languages(engine: str | Engine) -> list[Language]:
    return list(LANGUAGE_CATALOG[Engine.parse(engine)])


def missing_credentials(engine: Engine, credentials: Mapping[str, object] | None) -> list[str]:
    values = credentials or {}
    missing: list[str] = []
    for name in REQUIRED_CREDENTIALS[engine]:
        value = values.get(name)
        if not isinstance(value, str) or not value.strip():
            missing.append(name)
    return missing


def validate_credentials(engine: str | Engine, credentials: Mapping[str, object] | None) -> bool:
    """Structural check only: every required field is a non-empty string."""
    resolved = Engine.parse(engine)
    missing = missing_credentials(resolved, credentials)
    if missing:
        raise CredentialsError(resolved.value, missing)
    return True
