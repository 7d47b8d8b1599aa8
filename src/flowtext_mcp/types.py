from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

TaskState = Literal["pending", "processing", "completed", "failed", "cancelled"]
SubtitleFormat = Literal["srt", "vtt", "ass", "txt", "json"]

TERMINAL_STATES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


@dataclass(frozen=True, slots=True)
class Cue:
    id: str
    start_time: float
    end_time: float
    text: str

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> Cue:
        return cls(
            id=str(payload.get("id", "")),
            start_time=float(str(payload.get("start_time", 0.0))),
            end_time=float(str(payload.get("end_time", 0.0))),
            text=str(payload.get("text", "")),
        )


@dataclass(frozen=True, slots=True)
class Language:
    code: str
    name: str


@dataclass(slots=True)
class RecognitionStatus:
    status: TaskState
    progress: float = 0.0
    result: list[Cue] | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "progress": self.progress,
            "result": [cue.to_dict() for cue in self.result] if self.result is not None else None,
            "error": self.error,
        }


@dataclass(slots=True)
class AudioTrack:
    id: int
    codec: str
    channels: int
    sample_rate: int
    language: str | None = None


@dataclass(slots=True)
class VideoInfo:
    file_path: str
    duration: float
    width: int
    height: int
    audio_tracks: list[AudioTrack] = field(default_factory=list)
