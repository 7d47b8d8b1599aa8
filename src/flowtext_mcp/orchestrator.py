from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Mapping

from flowtext_mcp.backends.base import RecognitionBackend, RecognitionRequest
from flowtext_mcp.cancellation import CancelToken, cancel_channel
from flowtext_mcp.config import Settings
from flowtext_mcp.cues import installation_guide_cues
from flowtext_mcp.engines import Engine, supported_languages, validate_credentials
from flowtext_mcp.errors import (
    AlreadyCancelledError,
    ConfigurationError,
    RecognitionCancelled,
    RecognitionError,
    ToolNotInstalledError,
    UnsupportedEngineError,
)
from flowtext_mcp.registry import TaskRecord, TaskRegistry
from flowtext_mcp.retry import Sleep
from flowtext_mcp.types import Language, RecognitionStatus

logger = logging.getLogger(__name__)

Spawner = Callable[[Coroutine[Any, Any, None]], object]

UNEXPECTED_FAILURE_MESSAGE = "Recognition failed with an unexpected internal error; see server logs for details"


class _ProgressTracker:
    """Progress sink handed to a backend: clamped to [0, 1], never moves backwards."""

    def __init__(self, registry: TaskRegistry, task_id: str) -> None:
        self.registry = registry
        self.task_id = task_id
        self.value = 0.0

    def __call__(self, value: float) -> None:
        clamped = min(max(float(value), 0.0), 1.0)
        if clamped < self.value:
            return
        self.value = clamped
        self.registry.update(self.task_id, "processing", clamped)


class RecognitionOrchestrator:
    def __init__(
        self,
        *,
        registry: TaskRegistry,
        backends: Mapping[Engine, RecognitionBackend],
        settings: Settings | None = None,
        spawn: Spawner | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.backends = dict(backends)
        self.settings = settings or Settings()
        self.sleep = sleep
        self._background: set[asyncio.Task[None]] = set()
        self.spawn = spawn or self._spawn_task

    def _spawn_task(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def start_recognition(
        self,
        task_id: str,
        audio_path: str,
        engine: str | Engine,
        language: str,
        credentials: Mapping[str, str] | None = None,
    ) -> None:
        """Register the task and launch it in the background. Returns immediately."""
        resolved = Engine.parse(engine)
        if resolved not in self.backends:
            raise UnsupportedEngineError(resolved.value)

        handle, token = cancel_channel()
        self.registry.insert(
            TaskRecord(
                task_id=task_id,
                audio_path=audio_path,
                engine=resolved,
                language=language,
                cancel_handle=handle,
            )
        )

        resolved_credentials = (
            dict(credentials) if credentials is not None else self.settings.credentials_for(resolved.value)
        )
        request = RecognitionRequest(audio_path=audio_path, language=language, credentials=resolved_credentials)
        logger.info("Starting task %s with engine %s (language=%s)", task_id, resolved.value, language or "-")
        self.spawn(self._run(task_id, resolved, request, token))

    def get_recognition_status(self, task_id: str) -> RecognitionStatus:
        return self.registry.get(task_id)

    def cancel_recognition(self, task_id: str) -> bool:
        handle = self.registry.take_cancel_handle(task_id)
        sent = handle.send()
        logger.info("Cancellation requested for task %s", task_id)
        return sent

    def get_supported_languages(self, engine: str | Engine) -> list[Language]:
        return supported_languages(engine)

    def validate_credentials(self, engine: str | Engine, credentials: Mapping[str, object] | None) -> bool:
        return validate_credentials(engine, credentials)

    async def _run(
        self,
        task_id: str,
        engine: Engine,
        request: RecognitionRequest,
        cancel: CancelToken,
    ) -> None:
        backend = self.backends[engine]
        progress = _ProgressTracker(self.registry, task_id)
        self.registry.update(task_id, "processing", 0.0)

        try:
            cues = await backend.recognize(request, progress, cancel)
        except ToolNotInstalledError as exc:
            logger.warning("Task %s: %s; returning installation guidance", task_id, exc)
            self.registry.update(task_id, "completed", 1.0, result=installation_guide_cues(request.audio_path))
        except RecognitionCancelled as exc:
            logger.info("Task %s cancelled (%s)", task_id, exc.checkpoint or "no checkpoint")
            self.registry.update(task_id, "cancelled", progress.value)
        except (RecognitionError, ConfigurationError) as exc:
            logger.info("Task %s failed: %s", task_id, exc)
            self.registry.update(task_id, "failed", progress.value, error=str(exc))
        except asyncio.CancelledError:
            logger.info("Task %s interrupted by shutdown", task_id)
            self.registry.update(task_id, "cancelled", progress.value)
            raise
        except Exception:  # pylint: disable=broad-except
            logger.exception("Task %s failed unexpectedly", task_id)
            self.registry.update(task_id, "failed", progress.value, error=UNEXPECTED_FAILURE_MESSAGE)
        else:
            logger.info("Task %s completed with %s cues", task_id, len(cues))
            self.registry.update(task_id, "completed", 1.0, result=cues)

        self.spawn(self._remove_after_retention(task_id))

    async def _remove_after_retention(self, task_id: str) -> None:
        await self.sleep(self.settings.task_retention_seconds)
        self.registry.remove(task_id)

    async def shutdown(self) -> None:
        """Cancel background work and leave every live task in a terminal status."""
        pending = list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Stopped %s background task(s)", len(pending))

        # Tasks cancelled before their first step never reach the handler in _run.
        for task_id in self.registry.active_task_ids():
            try:
                self.registry.take_cancel_handle(task_id).send()
            except AlreadyCancelledError:
                pass
            self.registry.update(task_id, "cancelled", self.registry.get(task_id).progress)
            logger.info("Task %s cancelled by shutdown", task_id)
