from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Callable

from flowtext_mcp.errors import MediaToolError
from flowtext_mcp.types import AudioTrack, VideoInfo

logger = logging.getLogger(__name__)

Runner = Callable[[list[str], int], subprocess.CompletedProcess[str]]


def _run_process(cmd: list[str], timeout: int) -> subprocess.CompletedProcess[str]:
    return subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=timeout)


def _safe_int(value: object, default: int) -> int:
    try:
        return int(str(value)) if value is not None else default
    except (TypeError, ValueError):
        return default


def _safe_float(value: object, default: float) -> float:
    try:
        return float(str(value)) if value is not None else default
    except (TypeError, ValueError):
        return default


def parse_probe_output(file_path: str, probe: dict[str, Any]) -> VideoInfo:
    fmt = probe.get("format")
    streams = probe.get("streams")
    if not isinstance(fmt, dict):
        raise MediaToolError("ffprobe output has no format section")
    if not isinstance(streams, list):
        raise MediaToolError("ffprobe output has no streams section")

    width = 0
    height = 0
    tracks: list[AudioTrack] = []
    for index, stream in enumerate(streams):
        codec_type = stream.get("codec_type")
        if codec_type == "video" and width == 0 and height == 0:
            width = _safe_int(stream.get("width"), 0)
            height = _safe_int(stream.get("height"), 0)
        elif codec_type == "audio":
            tags = stream.get("tags") or {}
            tracks.append(
                AudioTrack(
                    id=index,
                    codec=str(stream.get("codec_name") or "unknown"),
                    channels=_safe_int(stream.get("channels"), 2),
                    sample_rate=_safe_int(stream.get("sample_rate"), 44100),
                    language=tags.get("language"),
                )
            )

    if not tracks:
        tracks.append(AudioTrack(id=0, codec="unknown", channels=2, sample_rate=44100, language="und"))

    return VideoInfo(
        file_path=file_path,
        duration=_safe_float(fmt.get("duration"), 0.0),
        width=width,
        height=height,
        audio_tracks=tracks,
    )


class MediaToolkit:
    """ffprobe/ffmpeg wrapper for video inspection and audio extraction."""

    def __init__(
        self,
        work_dir: Path,
        *,
        ffprobe_binary: str = "ffprobe",
        ffmpeg_binary: str = "ffmpeg",
        runner: Runner = _run_process,
    ) -> None:
        self.work_dir = work_dir
        self.ffprobe_binary = ffprobe_binary
        self.ffmpeg_binary = ffmpeg_binary
        self.runner = runner

    def _run(self, cmd: list[str], *, timeout: int) -> subprocess.CompletedProcess[str]:
        try:
            completed = self.runner(cmd, timeout)
        except FileNotFoundError as exc:
            raise MediaToolError(f"{cmd[0]} is not installed or not on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise MediaToolError(f"{cmd[0]} timed out after {timeout}s") from exc
        if completed.returncode != 0:
            stderr = completed.stderr.strip() or f"{cmd[0]} failed"
            raise MediaToolError(stderr)
        return completed

    def get_video_info(self, file_path: str) -> VideoInfo:
        cmd = [
            self.ffprobe_binary,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            file_path,
        ]
        completed = self._run(cmd, timeout=60)
        try:
            probe = json.loads(completed.stdout)
        except json.JSONDecodeError as exc:
            raise MediaToolError(f"Could not parse ffprobe output: {exc}") from exc
        return parse_probe_output(file_path, probe)

    def extract_audio(self, video_path: str, track_id: int) -> Path:
        source = Path(video_path)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.work_dir / f"{source.stem}_audio_{track_id}.wav"
        cmd = [
            self.ffmpeg_binary,
            "-y",
            "-i",
            str(source),
            "-map",
            f"0:{track_id}",
            "-vn",
            "-acodec",
            "pcm_s16le",
            "-ar",
            "16000",
            "-ac",
            "1",
            str(output_path),
        ]
        logger.info("Extracting audio track %s from %s", track_id, source.name)
        self._run(cmd, timeout=3600)
        return output_path
