"""Time-coded subtitle block text: parsing, formatting and synthetic cues."""

from __future__ import annotations

import re
from pathlib import Path

from flowtext_mcp.errors import CueParseError
from flowtext_mcp.types import Cue

NOT_A_TRANSCRIPTION = "[Not a transcription]"

_BLANK_LINE_RE = re.compile(r"\n[ \t]*\n")
_ARROW = "-->"


def parse_srt_time(value: str) -> float:
    normalized = value.strip().replace(",", ".")
    parts = normalized.split(":")
    if len(parts) != 3:
        raise CueParseError(f"Invalid time field: {value!r}")
    try:
        hours = float(parts[0])
        minutes = float(parts[1])
        seconds = float(parts[2])
    except ValueError:
        raise CueParseError(f"Invalid time field: {value!r}") from None
    if hours < 0 or minutes < 0 or seconds < 0:
        raise CueParseError(f"Negative time field: {value!r}")
    return hours * 3600.0 + minutes * 60.0 + seconds


def format_srt_time(seconds: float, separator: str = ",") -> str:
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{millis:03d}"


def parse_srt_content(content: str) -> list[Cue]:
    """Parse block text into cues.

    Blocks shorter than three lines, or without a time range, are skipped.
    Raises CueParseError when nothing usable is found.
    """
    text = content.replace("\r\n", "\n").replace("\r", "\n")
    cues: list[Cue] = []
    for block in _BLANK_LINE_RE.split(text):
        lines = block.strip().split("\n")
        if len(lines) < 3:
            continue

        time_line = lines[1]
        if _ARROW not in time_line:
            continue
        start_raw, end_raw = time_line.split(_ARROW, 1)
        start = parse_srt_time(start_raw)
        end = parse_srt_time(end_raw)

        body = "\n".join(lines[2:]).strip()
        if not body:
            continue
        cues.append(Cue(id=lines[0].strip(), start_time=start, end_time=max(end, start), text=body))

    if not cues:
        raise CueParseError("No subtitle content could be parsed from the recognizer output")
    return cues


def to_srt(cues: list[Cue]) -> str:
    blocks = [
        f"{cue.id}\n{format_srt_time(cue.start_time)} --> {format_srt_time(cue.end_time)}\n{cue.text}"
        for cue in cues
    ]
    return "\n\n".join(blocks) + "\n"


def renumber(cues: list[Cue]) -> list[Cue]:
    return [
        Cue(id=str(index), start_time=cue.start_time, end_time=cue.end_time, text=cue.text)
        for index, cue in enumerate(cues, start=1)
    ]


def installation_guide_cues(audio_path: str) -> list[Cue]:
    """Guidance shown in place of a transcript when whisper is not installed."""
    name = Path(audio_path).stem or "unknown"
    lines = [
        f"Processing {name}: whisper is not installed",
        "Install it with: pip install openai-whisper",
        "Or with Homebrew: brew install openai-whisper",
        "Once installed, recognition will produce a real transcript",
        "These entries are setup guidance, not recognized speech",
    ]
    return [
        Cue(
            id=str(index),
            start_time=(index - 1) * 6.0,
            end_time=index * 6.0,
            text=f"{NOT_A_TRANSCRIPTION} {line}",
        )
        for index, line in enumerate(lines, start=1)
    ]
