"""Tests for the crash-safe line-delimited stream writer and reader."""

import io
import json
import os
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

from consoledoc.ansi import RESET
from consoledoc.config import CodecConfig
from consoledoc.exceptions import DocumentNotFoundError, MalformedContainerError, WriterStateError
from consoledoc.formats.sniffer import load_document, open_document, read_info
from consoledoc.formats.streaming import (
    StreamedDocument,
    StreamingDocumentReader,
    StreamingDocumentWriter,
    dumps_stream,
)
from consoledoc.models import DocumentFormat, RenderSettings, SubtitleEntryData, SubtitleTrackData

from conftest import RED

ROOT = Path(__file__).resolve().parents[1]


def _lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def _moving_dot(count: int, width: int = 30) -> list[str]:
    return [
        "." * (i % width) + f"{RED}#{RESET}" + "." * (width - i % width - 1)
        for i in range(count)
    ]


class TestWriter:
    """Tests for StreamingDocumentWriter."""

    def test_layout(self, tmp_path):
        path = tmp_path / "clip.ndjson"
        with StreamingDocumentWriter(path, "Braille", RenderSettings(loop_count=3), "clip.gif") as writer:
            writer.write_header()
            writer.write_frame("ab\ncd", 40)
            writer.write_frame("ef\ngh", -5)
            assert writer.frame_count == 2
            assert writer.total_duration_ms == 40

        header, first, second, footer = _lines(path)
        assert header['@type'] == "ConsoleImageDocumentHeader"
        assert header['renderMode'] == "Braille"
        assert header['settings']['loopCount'] == 3
        assert header['sourceFile'] == "clip.gif"
        assert first == {'@type': "Frame", 'index': 0, 'content': "ab\ncd", 'delayMs': 40, 'width': 2, 'height': 2}
        assert second['delayMs'] == 0
        assert footer['@type'] == "ConsoleImageDocumentFooter"
        assert footer['frameCount'] == 2
        assert footer['totalDurationMs'] == 40
        assert footer['isComplete'] is True

    def test_frame_before_header(self, tmp_path):
        with StreamingDocumentWriter(tmp_path / "a.ndjson") as writer:
            with pytest.raises(WriterStateError):
                writer.write_frame("x", 10)

    def test_header_twice(self, tmp_path):
        with StreamingDocumentWriter(tmp_path / "a.ndjson") as writer:
            writer.write_header()
            with pytest.raises(WriterStateError):
                writer.write_header()

    def test_write_after_finalize(self, tmp_path):
        writer = StreamingDocumentWriter(tmp_path / "a.ndjson")
        writer.write_header()
        writer.finalize()
        with pytest.raises(WriterStateError):
            writer.write_frame("x", 10)
        writer.close()

    def test_finalize_is_idempotent(self, tmp_path):
        path = tmp_path / "a.ndjson"
        with StreamingDocumentWriter(path) as writer:
            writer.write_header()
            writer.finalize()
            writer.finalize()
            assert writer.is_finalized
        types = [line['@type'] for line in _lines(path)]
        assert types == ["ConsoleImageDocumentHeader", "ConsoleImageDocumentFooter"]

    def test_finalize_writes_missing_header(self, tmp_path):
        path = tmp_path / "a.ndjson"
        with StreamingDocumentWriter(path):
            pass
        assert [line['@type'] for line in _lines(path)] == [
            "ConsoleImageDocumentHeader", "ConsoleImageDocumentFooter",
        ]
        assert load_document(path).frame_count == 0

    def test_exception_marks_incomplete(self, tmp_path):
        path = tmp_path / "a.ndjson"
        with pytest.raises(ValueError):
            with StreamingDocumentWriter(path) as writer:
                writer.write_header()
                writer.write_frame("one", 10)
                raise ValueError("producer failed")

        assert _lines(path)[-1]['isComplete'] is False
        doc = load_document(path)
        assert doc.frame_count == 1
        assert doc.load_report.footer_seen
        assert not doc.load_report.declared_complete
        assert doc.load_report.recovered

    def test_subtitles_must_precede_header(self, tmp_path):
        track = SubtitleTrackData(entries=[SubtitleEntryData(start_ms=0, end_ms=10, text="hi")])
        path = tmp_path / "a.ndjson"
        with StreamingDocumentWriter(path) as writer:
            writer.set_subtitles(track)
            writer.set_subtitle_metadata(source="srt", language="de", file="a.srt")
            writer.write_header()
            with pytest.raises(WriterStateError):
                writer.set_subtitles(track)
            with pytest.raises(WriterStateError):
                writer.set_subtitle_metadata(language="en")

        doc = load_document(path)
        assert doc.subtitles.entries[0].text == "hi"
        assert doc.settings.subtitles_enabled
        assert doc.settings.subtitle_language == "de"

    def test_text_stream_target_is_not_closed(self):
        buffer = io.StringIO()
        with StreamingDocumentWriter(buffer) as writer:
            writer.write_header()
            writer.write_frame("x", 1)
        assert not buffer.closed
        assert buffer.getvalue().count("\n") == 3

    def test_optimized_keyframe_then_deltas(self, tmp_path):
        path = tmp_path / "a.ndjson"
        config = CodecConfig(DELTA_KEYFRAME_RATIO=1.0)
        with StreamingDocumentWriter(path, optimized=True, config=config) as writer:
            writer.write_header()
            for content in ("AAA", "AAB", "ABB"):
                writer.write_frame(content, 100)

        header, first, second, third, _ = _lines(path)
        assert header['optimized'] is True
        assert header['version'] == "3.1"
        assert first['isKeyframe'] is True
        assert first['characters'] == "AAA"
        assert 'content' not in first
        assert second['isKeyframe'] is False
        assert second['delta'] == "2:B,0"
        assert third['delta'] == "1:B,0"

        assert [f.content for f in load_document(path).frames] == ["AAA", "AAB", "ABB"]

    def test_palette_additions_travel_with_frames(self, tmp_path):
        path = tmp_path / "a.ndjson"
        with StreamingDocumentWriter(path, optimized=True) as writer:
            writer.write_header()
            writer.write_frame(f"{RED}a{RESET}", 10)
            writer.write_frame(f"{RED}a{RESET}b", 10)
            writer.write_frame("\033[38;5;3mc" + RESET, 10)

        _, first, second, third, _ = _lines(path)
        assert first['paletteStart'] == 1
        assert first['paletteAdditions'] == ["FF0000"]
        assert 'paletteAdditions' not in second
        assert third['paletteStart'] == 2
        assert third['paletteAdditions'] == ["@3"]

    def test_hand_written_styles_stored_as_content(self, tmp_path):
        path = tmp_path / "a.ndjson"
        contents = [
            f"{RED}ab{RESET}",
            "\033[31mab\033[0m",
            f"{RED}ab{RESET}",
            "\033[1;38;2;255;0;0mab\033[0m",
            "ab\033[0m",
            f"{RED}ab",
            f"{RED}xb{RESET}",
        ]
        config = CodecConfig(DELTA_KEYFRAME_RATIO=1.0)
        with StreamingDocumentWriter(path, optimized=True, config=config) as writer:
            writer.write_header()
            for content in contents:
                writer.write_frame(content, 10)

        records = _lines(path)[1:-1]
        assert [r.get('content') for r in records] == [
            None, contents[1], None, contents[3], contents[4], contents[5], None,
        ]
        assert records[2]['isKeyframe'] is False
        assert [f.content for f in load_document(path).frames] == contents

    @pytest.mark.parametrize("optimized", [False, True])
    def test_frame_subtitle_text(self, tmp_path, optimized):
        path = tmp_path / "a.ndjson"
        with StreamingDocumentWriter(path, optimized=optimized) as writer:
            writer.write_header()
            writer.write_frame("one", 10, subtitle_text="hello")
            writer.write_frame("two", 10)

        frames = load_document(path).frames
        assert [f.subtitle_text for f in frames] == ["hello", None]


class TestReader:
    """Tests for StreamingDocumentReader."""

    @pytest.mark.parametrize("optimized", [False, True])
    def test_round_trip(self, tmp_path, styled_document, optimized):
        path = tmp_path / "a.ndjson"
        path.write_text(dumps_stream(styled_document, optimized=optimized), encoding="utf-8")

        doc = StreamingDocumentReader(path).load()
        assert [f.content for f in doc.frames] == [f.content for f in styled_document.frames]
        assert doc.settings == styled_document.settings
        assert doc.source_file == "clip.gif"
        assert not doc.load_report.recovered

    def test_missing_file(self, tmp_path):
        with pytest.raises(DocumentNotFoundError):
            StreamingDocumentReader(tmp_path / "missing.ndjson")

    def test_requires_exactly_one_source(self, tmp_path):
        with pytest.raises(ValueError):
            StreamingDocumentReader()

    def test_missing_header(self):
        reader = StreamingDocumentReader.from_text('{"@type":"Frame","content":"x"}\n')
        with pytest.raises(MalformedContainerError):
            reader.read_header()

    def test_garbage_header(self):
        reader = StreamingDocumentReader.from_text("hello\n")
        with pytest.raises(MalformedContainerError):
            reader.read_header()

    def test_no_footer_is_complete(self, tmp_path):
        path = tmp_path / "a.ndjson"
        writer = StreamingDocumentWriter(path)
        writer.write_header()
        writer.write_frame("one", 10)
        writer.write_frame("two", 10)
        writer.close()

        doc = load_document(path)
        assert [f.content for f in doc.frames] == ["one", "two"]
        assert not doc.load_report.footer_seen
        assert doc.load_report.recovered

    def test_truncated_last_line(self, tmp_path):
        path = tmp_path / "a.ndjson"
        writer = StreamingDocumentWriter(path)
        writer.write_header()
        writer.write_frame("one", 10)
        writer.write_frame("two", 10)
        writer.close()
        with open(path, "ab") as f:
            f.write('{"@type":"Frame","index":2,"content":"tw█'.encode("utf-8")[:-1])

        doc = load_document(path)
        assert [f.content for f in doc.frames] == ["one", "two"]
        assert [s.reason for s in doc.load_report.skipped] == ["truncated record"]
        assert doc.load_report.skipped[0].line == 4

    def test_malformed_middle_line(self, tmp_path):
        path = tmp_path / "a.ndjson"
        path.write_text(
            '{"@type":"ConsoleImageDocumentHeader"}\n'
            '{"@type":"Frame","content":"one","delayMs":10}\n'
            'this is not json\n'
            '{"@type":"Mystery"}\n'
            '{"@type":"Frame","content":"two","delayMs":10}\n',
            encoding="utf-8",
        )
        doc = load_document(path)
        assert [f.content for f in doc.frames] == ["one", "two"]
        assert [s.line for s in doc.load_report.skipped] == [3, 4]

    def test_lost_record_drops_deltas_until_keyframe(self, tmp_path):
        contents = _moving_dot(8)
        config = CodecConfig(KEYFRAME_INTERVAL=4)
        path = tmp_path / "a.ndjson"
        with StreamingDocumentWriter(path, optimized=True, config=config) as writer:
            writer.write_header()
            for content in contents:
                writer.write_frame(content, 25)

        lines = path.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[2])['isKeyframe'] is False
        lines[2] = "{corrupted"
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        doc = load_document(path, config)
        assert [f.content for f in doc.frames] == [contents[i] for i in (0, 4, 5, 6, 7)]
        assert len(doc.load_report.skipped) == 3

        info = read_info(path, config)
        assert info.frame_count == 8  # footer totals are trusted when present

    def test_info_without_footer_counts_decodable_frames(self, tmp_path):
        contents = _moving_dot(6)
        path = tmp_path / "a.ndjson"
        writer = StreamingDocumentWriter(path, optimized=True, config=CodecConfig(KEYFRAME_INTERVAL=3))
        writer.write_header()
        for content in contents:
            writer.write_frame(content, 25)
        writer.close()

        lines = path.read_text(encoding="utf-8").splitlines()
        lines[2] = "garbage"
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        info = read_info(path)
        assert info.frame_count == 4
        assert info.total_duration_ms == 100
        assert info.format == DocumentFormat.STREAM
        assert info.is_complete

    def test_info_from_footer(self, tmp_path, styled_document):
        path = tmp_path / "a.ndjson"
        path.write_text(dumps_stream(styled_document), encoding="utf-8")
        info = StreamingDocumentReader(path).read_info()
        assert info.frame_count == 5
        assert info.total_duration_ms == 360
        assert info.version == "2.0"


class TestCrashSafety:
    """A writer killed mid-stream leaves a loadable file."""

    def test_killed_writer(self, tmp_path):
        path = tmp_path / "killed.ndjson"
        script = textwrap.dedent(f"""
            import os
            from consoledoc.formats.streaming import StreamingDocumentWriter
            writer = StreamingDocumentWriter({str(path)!r}, source_file="clip.gif")
            writer.write_header()
            for i in range(500):
                writer.write_frame("frame %03d" % i, 40)
                if i == 246:
                    os._exit(1)
        """)
        env = {**os.environ, "PYTHONPATH": str(ROOT)}
        result = subprocess.run([sys.executable, "-c", script], env=env, timeout=120)
        assert result.returncode == 1

        doc = load_document(path)
        assert doc.frame_count == 247
        assert doc.is_animated
        assert doc.frames[-1].content == "frame 246"
        assert not doc.load_report.footer_seen

        info = read_info(path)
        assert info.frame_count == 247
        assert info.total_duration_ms == 247 * 40


class TestStreamedDocument:
    """Tests for lazy stream playback sources."""

    def test_iteration_restarts(self, tmp_path, styled_document):
        path = tmp_path / "a.ndjson"
        path.write_text(dumps_stream(styled_document, optimized=True), encoding="utf-8")

        opened = open_document(path)
        assert isinstance(opened, StreamedDocument)
        assert opened.render_mode == "ASCII"
        assert opened.source_file == "clip.gif"
        assert opened.subtitles is None

        expected = [f.content for f in styled_document.frames]
        assert [f.content for f in opened] == expected
        assert [f.content for f in opened] == expected
        assert opened.load_report.footer_seen

    def test_frames_are_produced_lazily(self, tmp_path):
        path = tmp_path / "a.ndjson"
        writer = StreamingDocumentWriter(path)
        writer.write_header()
        writer.write_frame("first", 10)

        opened = open_document(path)
        frames = iter(opened)
        assert next(frames).content == "first"
        writer.write_frame("second", 10)
        writer.finalize()
        writer.close()
        assert next(frames).content == "second"

    def test_info_and_load(self, tmp_path, styled_document):
        path = tmp_path / "a.ndjson"
        path.write_text(dumps_stream(styled_document), encoding="utf-8")
        opened = open_document(path)
        assert opened.info().frame_count == 5
        assert opened.load().frame_count == 5
