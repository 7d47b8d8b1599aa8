"""Exception hierarchy for flowtext-mcp."""

from __future__ import annotations


class FlowTextError(Exception):
    """Base exception for all flowtext-mcp errors."""


class DuplicateTaskError(FlowTextError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task already exists: {task_id}")
        self.task_id = task_id


class TaskNotFoundError(FlowTextError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class AlreadyCancelledError(FlowTextError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task cancellation already requested: {task_id}")
        self.task_id = task_id


class ConfigurationError(FlowTextError):
    """Invalid or missing configuration. Never retried."""


class UnsupportedEngineError(ConfigurationError):
    def __init__(self, engine: str) -> None:
        super().__init__(f"Unsupported recognition engine: {engine}")
        self.engine = engine


class CredentialsError(ConfigurationError):
    def __init__(self, engine: str, missing: list[str]) -> None:
        fields = ", ".join(missing)
        super().__init__(f"{engine} requires credential field(s): {fields}")
        self.engine = engine
        self.missing = missing


class UnsupportedFormatError(ConfigurationError):
    def __init__(self, fmt: str, supported: tuple[str, ...]) -> None:
        super().__init__(f"Unsupported subtitle format: {fmt} (supported: {', '.join(supported)})")
        self.format = fmt
        self.supported = supported


class RecognitionError(FlowTextError):
    """Failure raised by a recognition backend."""


class RecognitionCancelled(RecognitionError):
    def __init__(self, checkpoint: str | None = None) -> None:
        message = "Recognition cancelled"
        if checkpoint:
            message += f" at {checkpoint}"
        super().__init__(message)
        self.checkpoint = checkpoint


class ToolNotInstalledError(RecognitionError):
    """The local recognition tool is not available on this machine."""


class TransientNetworkError(RecognitionError):
    """Connect or timeout failure. Eligible for retry."""


class RetryExhaustedError(RecognitionError):
    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}\n\n"
            "Likely causes:\n"
            "- the network connection is unstable or offline\n"
            "- the provider endpoint is temporarily unavailable\n"
            "- a firewall, proxy or DNS setting blocks the connection\n\n"
            "Try again later, or switch to the local whisper engine which needs no network."
        )
        self.operation = operation
        self.attempts = attempts


class RemoteTaskError(RecognitionError):
    def __init__(self, code: str, message: str, *, provider: str = "provider") -> None:
        super().__init__(f"{provider} error {code}: {message}")
        self.code = code
        self.remote_message = message


class PayloadTooLargeError(RecognitionError):
    """Audio exceeds what the provider accepts inline."""


class RecognitionTimeoutError(RecognitionError):
    """A remote job did not finish within the poll attempt cap."""


class CueParseError(RecognitionError):
    """Malformed cue text or provider result."""


class MediaToolError(FlowTextError):
    """ffprobe/ffmpeg failure."""
