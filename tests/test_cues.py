import pytest

from flowtext_mcp.cues import (
    NOT_A_TRANSCRIPTION,
    format_srt_time,
    installation_guide_cues,
    parse_srt_content,
    parse_srt_time,
    to_srt,
)
from flowtext_mcp.errors import CueParseError
from flowtext_mcp.types import Cue

SAMPLE = "1\r\n00:00:00,000 --> 00:00:02,500\r\nhello\r\n\r\n2\r\n00:00:02.500 --> 00:00:05,000\r\nsecond\r\nline\r\n"


def test_parse_srt_time_accepts_comma_and_dot() -> None:
    assert parse_srt_time("01:02:03,500") == pytest.approx(3723.5)
    assert parse_srt_time("00:00:01.250") == pytest.approx(1.25)


@pytest.mark.parametrize("value", ["00:01", "aa:00:00,000", "1:2:x"])
def test_parse_srt_time_rejects_malformed(value: str) -> None:
    with pytest.raises(CueParseError):
        parse_srt_time(value)


def test_format_srt_time() -> None:
    assert format_srt_time(3723.5) == "01:02:03,500"
    assert format_srt_time(1.0, ".") == "00:00:01.000"
    assert format_srt_time(-2) == "00:00:00,000"


def test_parse_normalizes_line_endings_and_joins_text() -> None:
    cues = parse_srt_content(SAMPLE)

    assert [cue.id for cue in cues] == ["1", "2"]
    assert cues[0].start_time == 0.0
    assert cues[0].end_time == pytest.approx(2.5)
    assert cues[1].text == "second\nline"


def test_short_blocks_and_blocks_without_arrow_are_skipped() -> None:
    content = "1\n00:00:00,000 --> 00:00:01,000\n\n2\nnot a time line\ntext\n\n3\n00:00:01,000 --> 00:00:02,000\nkept\n"

    cues = parse_srt_content(content)

    assert [cue.text for cue in cues] == ["kept"]


def test_malformed_time_in_block_is_an_error() -> None:
    with pytest.raises(CueParseError):
        parse_srt_content("1\n00:00:xx,000 --> 00:00:01,000\ntext\n")


def test_zero_cues_is_an_error() -> None:
    with pytest.raises(CueParseError):
        parse_srt_content("\n\n")


def test_round_trip_through_srt() -> None:
    cues = [
        Cue(id="1", start_time=0.0, end_time=1.5, text="one"),
        Cue(id="2", start_time=1.5, end_time=3.25, text="two\nlines"),
    ]

    assert parse_srt_content(to_srt(cues)) == cues


def test_installation_guide_is_labelled_and_contiguous() -> None:
    cues = installation_guide_cues("/videos/My Clip.wav")

    assert len(cues) == 5
    assert all(cue.text.startswith(NOT_A_TRANSCRIPTION) for cue in cues)
    assert "My Clip" in cues[0].text
    for previous, current in zip(cues, cues[1:]):
        assert current.start_time == previous.end_time
    assert cues[-1].end_time == 30.0
