from __future__ import annotations

from flowtext_mcp.backends.base import ProgressSink, RecognitionRequest
from flowtext_mcp.cancellation import CancelToken
from flowtext_mcp.engines import Engine, missing_credentials
from flowtext_mcp.errors import ConfigurationError, CredentialsError
from flowtext_mcp.types import Cue

WORKING_ENGINES = (Engine.WHISPER, Engine.TENCENT, Engine.BAIDU, Engine.GOOGLE)


class UnavailableBackend:
    """Engine with a language catalog and credential check but no recognition client."""

    CHECKPOINTS: tuple[str, ...] = ()

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    async def recognize(
        self,
        request: RecognitionRequest,
        progress: ProgressSink,
        cancel: CancelToken,
    ) -> list[Cue]:
        missing = missing_credentials(self.engine, request.credentials)
        if missing:
            raise CredentialsError(self.engine.value, missing)
        names = ", ".join(engine.value for engine in WORKING_ENGINES)
        raise ConfigurationError(
            f"{self.engine.value} recognition is not available in this build. Use one of: {names}"
        )
