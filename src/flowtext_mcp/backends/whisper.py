"""Local whisper recognition through the CLI or a scripted Python fallback."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable

from flowtext_mcp.backends.base import ProgressSink, RecognitionRequest
from flowtext_mcp.cancellation import CancelToken
from flowtext_mcp.cues import parse_srt_content
from flowtext_mcp.errors import RecognitionError, RecognitionTimeoutError, ToolNotInstalledError
from flowtext_mcp.types import Cue

logger = logging.getLogger(__name__)

Runner = Callable[[list[str], float], subprocess.CompletedProcess[str]]

PROBE_TIMEOUT_SECONDS = 60.0

SIMPLIFIED_CHINESE_PROMPT = "以下是简体中文语音："

_PASSTHROUGH_LANGUAGES = {"zh", "en", "ja", "ko", "fr", "de", "es", "ru"}

# argv: audio_path language model initial_prompt
_PYTHON_SCRIPT = r"""
import sys

import whisper

audio_path, language, model_name, prompt = sys.argv[1:5]

converter = None
if language == "zh":
    try:
        import opencc
        converter = opencc.OpenCC("t2s")
    except ImportError:
        print("opencc not available, skipping t2s conversion", file=sys.stderr)


def stamp(value):
    hours = int(value // 3600)
    minutes = int((value % 3600) // 60)
    return "{:02d}:{:02d}:{:06.3f}".format(hours, minutes, value % 60)


try:
    model = whisper.load_model(model_name)
    result = model.transcribe(audio_path, language=language, initial_prompt=prompt or None)
    for index, segment in enumerate(result["segments"], start=1):
        text = segment["text"].strip()
        if converter is not None and text:
            text = converter.convert(text)
        print(index)
        print("{} --> {}".format(stamp(segment["start"]), stamp(segment["end"])))
        print(text)
        print()
except Exception as exc:
    print("Error: {}".format(exc), file=sys.stderr)
    sys.exit(1)
"""


def whisper_language(language: str) -> str:
    primary = (language or "").strip().lower().replace("_", "-").split("-")[0]
    if primary in _PASSTHROUGH_LANGUAGES:
        return primary
    return "zh"


def _run_process(cmd: list[str], timeout: float) -> subprocess.CompletedProcess[str]:
    return subprocess.run(cmd, capture_output=True, text=True, check=False, timeout=timeout)


class WhisperBackend:
    CHECKPOINTS = ("before_probe", "before_transcribe", "before_parse")

    def __init__(
        self,
        *,
        binary: str = "whisper",
        python: str = "python3",
        model: str = "base",
        timeout_seconds: float = 3600.0,
        runner: Runner = _run_process,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.binary = binary
        self.python = python
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.runner = runner
        self.which = which

    async def recognize(
        self,
        request: RecognitionRequest,
        progress: ProgressSink,
        cancel: CancelToken,
    ) -> list[Cue]:
        audio_path = Path(request.audio_path)
        if not audio_path.exists():
            raise RecognitionError(f"Audio file not found: {audio_path}")

        progress(0.1)
        cancel.raise_if_cancelled("before_probe")
        language = whisper_language(request.language)

        if self.which(self.binary):
            logger.info("Using whisper CLI for %s", audio_path.name)
            return await self._recognize_cli(audio_path, language, progress, cancel)

        logger.info("whisper CLI not found, trying Python whisper module")
        return await self._recognize_python(audio_path, language, progress, cancel)

    async def _recognize_cli(
        self,
        audio_path: Path,
        language: str,
        progress: ProgressSink,
        cancel: CancelToken,
    ) -> list[Cue]:
        with tempfile.TemporaryDirectory(prefix="flowtext-whisper-") as output_dir:
            cmd = [
                self.binary,
                str(audio_path),
                "--model",
                self.model,
                "--output_format",
                "srt",
                "--output_dir",
                output_dir,
                "--verbose",
                "False",
                "--task",
                "transcribe",
                "--language",
                language,
            ]
            if language == "zh":
                cmd.extend(["--initial_prompt", SIMPLIFIED_CHINESE_PROMPT])

            progress(0.3)
            cancel.raise_if_cancelled("before_transcribe")
            progress(0.5)
            completed = await self._run(cmd, timeout=self.timeout_seconds)
            if completed.returncode != 0:
                stderr = completed.stderr.strip() or "whisper exited with an error"
                raise RecognitionError(f"whisper failed: {stderr}")

            progress(0.8)
            cancel.raise_if_cancelled("before_parse")
            srt_path = Path(output_dir) / f"{audio_path.stem}.srt"
            if not srt_path.exists():
                raise RecognitionError("whisper did not produce an SRT file")
            cues = parse_srt_content(srt_path.read_text(encoding="utf-8"))

        logger.info("whisper CLI produced %s cues", len(cues))
        return cues

    async def _recognize_python(
        self,
        audio_path: Path,
        language: str,
        progress: ProgressSink,
        cancel: CancelToken,
    ) -> list[Cue]:
        probe = await self._run([self.python, "-c", "import whisper"], timeout=PROBE_TIMEOUT_SECONDS)
        if probe.returncode != 0:
            raise ToolNotInstalledError(
                "whisper is not installed. Install it with: pip install openai-whisper"
            )

        prompt = SIMPLIFIED_CHINESE_PROMPT if language == "zh" else ""
        cmd = [self.python, "-c", _PYTHON_SCRIPT, str(audio_path), language, self.model, prompt]

        progress(0.3)
        cancel.raise_if_cancelled("before_transcribe")
        progress(0.5)
        completed = await self._run(cmd, timeout=self.timeout_seconds)
        if completed.returncode != 0:
            stderr = completed.stderr.strip() or "Python whisper exited with an error"
            raise RecognitionError(f"Python whisper failed: {stderr}")

        progress(0.8)
        cancel.raise_if_cancelled("before_parse")
        cues = parse_srt_content(completed.stdout)
        logger.info("Python whisper produced %s cues", len(cues))
        return cues

    async def _run(self, cmd: list[str], *, timeout: float) -> subprocess.CompletedProcess[str]:
        try:
            return await asyncio.to_thread(self.runner, cmd, timeout)
        except subprocess.TimeoutExpired as exc:
            raise RecognitionTimeoutError(f"{cmd[0]} did not finish within {timeout:g}s") from exc
        except FileNotFoundError as exc:
            raise ToolNotInstalledError(
                f"{cmd[0]} is not available. Install whisper with: pip install openai-whisper"
            ) from exc
