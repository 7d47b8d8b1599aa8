"""Recognition backend contract shared by every engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

from flowtext_mcp.cancellation import CancelToken
from flowtext_mcp.errors import RecognitionError
from flowtext_mcp.types import Cue

ProgressSink = Callable[[float], None]

# 16 kHz, mono, 16-bit PCM.
PCM_BYTES_PER_SECOND = 16000 * 2


@dataclass(slots=True)
class RecognitionRequest:
    audio_path: str
    language: str
    credentials: dict[str, str] = field(default_factory=dict)


class RecognitionBackend(Protocol):
    CHECKPOINTS: tuple[str, ...]

    async def recognize(
        self,
        request: RecognitionRequest,
        progress: ProgressSink,
        cancel: CancelToken,
    ) -> list[Cue]:
        """Recognize speech in ``request.audio_path`` and return ordered cues."""
        ...


def read_audio(audio_path: str) -> bytes:
    path = Path(audio_path)
    if not path.exists():
        raise RecognitionError(f"Audio file not found: {audio_path}")
    try:
        return path.read_bytes()
    except OSError as exc:
        raise RecognitionError(f"Failed to read audio file {audio_path}: {exc}") from exc


def estimate_duration_seconds(size_bytes: int) -> float:
    return max(size_bytes / PCM_BYTES_PER_SECOND, 1.0)
