from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from flowtext_mcp.cues import format_srt_time, parse_srt_content, parse_srt_time, renumber, to_srt
from flowtext_mcp.errors import CueParseError, UnsupportedFormatError
from flowtext_mcp.types import Cue

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("srt", "vtt", "ass", "txt", "json")
IMPORT_FORMATS = ("srt", "vtt")

_ASS_HEADER = """[Script Info]
Title: FlowText Generated Subtitles
ScriptType: v4.00+
WrapStyle: 0
ScaledBorderAndShadow: yes
YCbCr Matrix: TV.601

[V4+ Styles]
Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding
Style: Default,Arial,20,&H00FFFFFF,&H000000FF,&H00000000,&H80000000,0,0,0,0,100,100,0,0,1,2,2,2,10,10,10,1

[Events]
Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text
"""


def _sanitize_path_component(value: str, fallback: str) -> str:
    clean = re.sub(r"[^\w.-]+", "_", value.strip())
    clean = clean.strip("._")
    return clean or fallback


def format_ass_time(seconds: float) -> str:
    total_cs = int(round(max(seconds, 0.0) * 100))
    hours, rem = divmod(total_cs, 360_000)
    minutes, rem = divmod(rem, 6_000)
    secs, centis = divmod(rem, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{centis:02d}"


def to_vtt(cues: list[Cue]) -> str:
    blocks = [
        f"{index}\n{format_srt_time(cue.start_time, '.')} --> {format_srt_time(cue.end_time, '.')}\n{cue.text}"
        for index, cue in enumerate(cues, start=1)
    ]
    return "WEBVTT\n\n" + "\n\n".join(blocks) + ("\n" if blocks else "")


def to_ass(cues: list[Cue]) -> str:
    lines = [
        f"Dialogue: 0,{format_ass_time(cue.start_time)},{format_ass_time(cue.end_time)},Default,,0,0,0,,"
        + cue.text.replace("\n", "\\N")
        for cue in cues
    ]
    return _ASS_HEADER + "\n".join(lines) + ("\n" if lines else "")


def to_txt(cues: list[Cue]) -> str:
    blocks = [
        f"[{format_srt_time(cue.start_time)}] - [{format_srt_time(cue.end_time)}]\n{cue.text}" for cue in cues
    ]
    return "\n\n".join(blocks) + ("\n" if blocks else "")


def to_json(cues: list[Cue]) -> str:
    return json.dumps([cue.to_dict() for cue in cues], indent=2, ensure_ascii=False)


def _parse_vtt_time(value: str) -> float:
    # Hours are optional in WebVTT.
    raw = value.strip()
    if raw.count(":") == 1:
        raw = f"0:{raw}"
    return parse_srt_time(raw)


def parse_vtt_content(content: str) -> list[Cue]:
    lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if not lines or not lines[0].strip().startswith("WEBVTT"):
        raise CueParseError("Invalid WebVTT file: missing WEBVTT header")

    cues: list[Cue] = []
    cue_id: str | None = None
    times: tuple[float, float] | None = None
    text_lines: list[str] = []
    skipping_note = False

    def flush() -> None:
        nonlocal cue_id, times, text_lines
        body = "\n".join(text_lines).strip()
        if times is not None and body:
            start, end = times
            cues.append(Cue(id=cue_id or str(len(cues) + 1), start_time=start, end_time=max(end, start), text=body))
        cue_id, times, text_lines = None, None, []

    for raw in lines[1:]:
        line = raw.strip()
        if not line:
            flush()
            skipping_note = False
            continue
        if skipping_note:
            continue
        if times is None:
            if line.startswith(("NOTE", "STYLE", "REGION")):
                skipping_note = True
                continue
            if "-->" in line:
                start_raw, end_raw = line.split("-->", 1)
                end_token = end_raw.strip().split(" ")[0]
                times = (_parse_vtt_time(start_raw), _parse_vtt_time(end_token))
            else:
                cue_id = line
            continue
        text_lines.append(line)
    flush()
    return cues


class SubtitleStore:
    """Writes cue lists to subtitle files and reads them back."""

    def __init__(self, export_dir: Path) -> None:
        self.export_dir = export_dir

    def export(self, cues: list[Cue], fmt: str, file_name: str, export_dir: Path | None = None) -> Path:
        normalized = fmt.strip().lower()
        renderers = {
            "srt": lambda items: to_srt(renumber(items)),
            "vtt": to_vtt,
            "ass": to_ass,
            "txt": to_txt,
            "json": to_json,
        }
        render = renderers.get(normalized)
        if render is None:
            raise UnsupportedFormatError(fmt, EXPORT_FORMATS)

        target_dir = export_dir or self.export_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        stem = _sanitize_path_component(Path(file_name).stem if Path(file_name).suffix else file_name, "subtitles")
        path = target_dir / f"{stem}.{normalized}"
        path.write_text(render(cues), encoding="utf-8")
        logger.info("Exported %s cues to %s", len(cues), path)
        return path

    def import_file(self, path: str | Path) -> list[Cue]:
        source = Path(path)
        extension = source.suffix.lstrip(".").lower()
        if extension not in IMPORT_FORMATS:
            raise UnsupportedFormatError(extension or source.name, IMPORT_FORMATS)

        content = source.read_text(encoding="utf-8-sig")
        if extension == "srt":
            cues = parse_srt_content(content)
        else:
            cues = parse_vtt_content(content)
        logger.info("Imported %s cues from %s", len(cues), source)
        return cues
