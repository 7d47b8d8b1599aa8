from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations

from flowtext_mcp.errors import (
    AlreadyCancelledError,
    CredentialsError,
    CueParseError,
    DuplicateTaskError,
    MediaToolError,
    TaskNotFoundError,
    UnsupportedEngineError,
    UnsupportedFormatError,
)
from flowtext_mcp.orchestrator import RecognitionOrchestrator
from flowtext_mcp.services.media import MediaToolkit
from flowtext_mcp.services.storage import SubtitleStore
from flowtext_mcp.types import Cue


class ToolRegistry:
    def __init__(
        self,
        orchestrator: RecognitionOrchestrator,
        media: MediaToolkit,
        store: SubtitleStore,
    ) -> None:
        self.orchestrator = orchestrator
        self.media = media
        self.store = store

    def register(self, mcp: FastMCP) -> None:
        _ro = ToolAnnotations(readOnlyHint=True)

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=False))
        async def start_recognition(
            task_id: str,
            audio_path: str,
            engine: str = "whisper",
            language: str = "zh",
            credentials: dict[str, str] | None = None,
        ) -> dict[str, Any]:
            """Start recognizing speech in an audio file. Returns immediately.

            Args:
                task_id: Caller-chosen unique id, used to poll and cancel
                audio_path: Path to a 16 kHz mono WAV file (see extract_audio)
                engine: whisper, tencent, baidu, google or aliyun (default: whisper)
                language: Language code from supported_languages (default: "zh")
                credentials: Engine credentials; configured defaults are used when omitted

            Returns:
                The task id and its initial status. Poll recognition_status for progress.
            """
            try:
                self.orchestrator.start_recognition(task_id, audio_path, engine, language, credentials)
            except DuplicateTaskError as exc:
                return {"error": "duplicate_task", "message": str(exc), "task_id": task_id}
            except UnsupportedEngineError as exc:
                return {"error": "unsupported_engine", "message": str(exc), "engine": engine}
            return {"task_id": task_id, "status": "pending"}

        @mcp.tool(annotations=_ro)
        def recognition_status(task_id: str) -> dict[str, Any]:
            try:
                status = self.orchestrator.get_recognition_status(task_id)
            except TaskNotFoundError as exc:
                return {"error": "task_not_found", "message": str(exc), "task_id": task_id}
            return {"task_id": task_id, **status.to_dict()}

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=True))
        def cancel_recognition(task_id: str) -> dict[str, Any]:
            """Request cancellation. The task stops at its next check-point."""
            try:
                sent = self.orchestrator.cancel_recognition(task_id)
            except TaskNotFoundError as exc:
                return {"error": "task_not_found", "message": str(exc), "task_id": task_id}
            except AlreadyCancelledError as exc:
                return {"error": "already_cancelled", "message": str(exc), "task_id": task_id}
            return {"task_id": task_id, "cancel_requested": sent}

        @mcp.tool(annotations=_ro)
        def supported_languages(engine: str) -> dict[str, Any]:
            try:
                languages = self.orchestrator.get_supported_languages(engine)
            except UnsupportedEngineError as exc:
                return {"error": "unsupported_engine", "message": str(exc), "engine": engine}
            return {"engine": engine, "languages": [asdict(language) for language in languages]}

        @mcp.tool(annotations=_ro)
        def validate_credentials(engine: str, credentials: dict[str, str] | None = None) -> dict[str, Any]:
            """Check that every credential field the engine needs is present. No network call."""
            try:
                self.orchestrator.validate_credentials(engine, credentials)
            except UnsupportedEngineError as exc:
                return {"error": "unsupported_engine", "message": str(exc), "engine": engine}
            except CredentialsError as exc:
                return {"error": "credentials_missing", "message": str(exc), "missing": exc.missing}
            return {"engine": engine, "valid": True}

        @mcp.tool(annotations=_ro)
        def video_info(file_path: str) -> dict[str, Any]:
            try:
                info = self.media.get_video_info(file_path)
            except MediaToolError as exc:
                return {"error": "probe_failed", "message": str(exc)}
            return asdict(info)

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=True))
        def extract_audio(video_path: str, track_id: int = 0) -> dict[str, Any]:
            """Extract one audio track as 16 kHz mono PCM WAV.

            Args:
                video_path: Path to the source video
                track_id: Stream index from video_info (default: 0)

            Returns:
                The path of the extracted WAV file.
            """
            try:
                audio_path = self.media.extract_audio(video_path, track_id)
            except MediaToolError as exc:
                return {"error": "extract_failed", "message": str(exc)}
            return {"video_path": video_path, "track_id": track_id, "audio_path": str(audio_path)}

        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=False, idempotentHint=True))
        def export_subtitles(
            cues: list[dict[str, Any]],
            format: str = "srt",
            file_name: str = "subtitles",
        ) -> dict[str, Any]:
            try:
                path = self.store.export([Cue.from_dict(cue) for cue in cues], format, file_name)
            except UnsupportedFormatError as exc:
                return {
                    "error": "unsupported_format",
                    "message": str(exc),
                    "supported_formats": list(exc.supported),
                }
            except (TypeError, ValueError) as exc:
                return {"error": "invalid_cues", "message": str(exc)}
            return {"format": format, "path": str(path), "count": len(cues)}

        @mcp.tool(annotations=_ro)
        def import_subtitles(file_path: str) -> dict[str, Any]:
            try:
                cues = self.store.import_file(file_path)
            except UnsupportedFormatError as exc:
                return {
                    "error": "unsupported_format",
                    "message": str(exc),
                    "supported_formats": list(exc.supported),
                }
            except CueParseError as exc:
                return {"error": "parse_failed", "message": str(exc)}
            except OSError as exc:
                return {"error": "read_failed", "message": str(exc)}
            return {"file_path": file_path, "count": len(cues), "cues": [cue.to_dict() for cue in cues]}
