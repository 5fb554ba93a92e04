"""Tests for the document data model and stream records."""

import json

import pytest
from pydantic import ValidationError

from consoledoc.ansi import RESET
from consoledoc.exceptions import MalformedRecordError
from consoledoc.models import (
    Document,
    DocumentFormat,
    DocumentFrame,
    DocumentInfo,
    EncodedFrame,
    FooterRecord,
    FrameRecord,
    HeaderRecord,
    LoadReport,
    OptimizedDocument,
    RenderSettings,
    content_dimensions,
    dump_record,
    parse_record,
)

from conftest import RED


class TestDocument:
    """Tests for Document serialization."""

    def test_camel_case_output(self, styled_document):
        data = styled_document.to_dict()
        assert data['@context'] == "https://schema.org/"
        assert data['@type'] == "ConsoleImageDocument"
        assert data['version'] == "2.0"
        assert data['sourceFile'] == "clip.gif"
        assert data['renderMode'] == "ASCII"
        assert data['settings']['loopCount'] == 2
        assert data['settings']['characterAspectRatio'] == 0.5
        assert data['frames'][0]['delayMs'] == 100
        assert 'loadReport' not in data

    def test_pascal_case_input(self):
        doc = Document.from_dict({
            'Version': "2.0",
            'SourceFile': "old.gif",
            'RenderMode': "Braille",
            'Settings': {'MaxWidth': 80, 'LoopCount': 3, 'UseColor': False},
            'Frames': [{'Content': "x", 'DelayMs': 50, 'Width': 1, 'Height': 1}],
        })
        assert doc.source_file == "old.gif"
        assert doc.render_mode == "Braille"
        assert doc.settings.max_width == 80
        assert doc.settings.loop_count == 3
        assert doc.settings.use_color is False
        assert doc.frames[0].content == "x"
        assert doc.frames[0].delay_ms == 50

    def test_unknown_fields_ignored(self):
        doc = Document.from_dict({
            'frames': [{'content': "a", 'delayMs': 10, 'somethingNew': 1}],
            'futureField': {'x': 1},
        })
        assert doc.frame_count == 1

    def test_unknown_render_mode_is_kept(self):
        doc = Document.from_dict({'renderMode': "Sixel", 'frames': []})
        assert doc.render_mode == "Sixel"

    def test_bare_string_frames_are_migrated(self):
        doc = Document.from_dict({'frames': ["one", "two"]})
        assert [f.content for f in doc.frames] == ["one", "two"]
        assert doc.version == "2.0"

    def test_negative_delay_clamped(self):
        doc = Document.from_dict({'frames': [{'content': "a", 'delayMs': -40}]})
        assert doc.frames[0].delay_ms == 0
        assert DocumentFrame.from_content("a", -5).delay_ms == 0

    def test_totals(self, styled_document):
        assert styled_document.frame_count == 5
        assert styled_document.is_animated
        assert styled_document.total_duration_ms == 360

    def test_round_trip_through_json(self, styled_document):
        text = json.dumps(styled_document.to_dict())
        loaded = Document.from_dict(json.loads(text))
        assert [f.content for f in loaded.frames] == [f.content for f in styled_document.frames]
        assert loaded.settings == styled_document.settings
        assert loaded.created == styled_document.created


class TestDocumentFrame:
    """Tests for frame helpers."""

    def test_dimensions_from_content(self):
        frame = DocumentFrame.from_content(f"{RED}ab{RESET}c\nxyz\n123", 10)
        assert (frame.width, frame.height) == (3, 3)

    def test_explicit_dimensions_win(self):
        frame = DocumentFrame.from_content("abc", 10, width=80, height=24)
        assert (frame.width, frame.height) == (80, 24)

    def test_content_dimensions_empty(self):
        assert content_dimensions("") == (0, 0)

    def test_plain_text(self):
        assert DocumentFrame(content=f"{RED}hi{RESET}").plain_text == "hi"


class TestRenderSettings:
    """Tests for immutable render settings."""

    def test_frozen(self):
        settings = RenderSettings(loop_count=2)
        with pytest.raises(ValidationError):
            settings.loop_count = 5

    def test_subtitle_metadata_copy(self):
        settings = RenderSettings()
        updated = settings.with_subtitle_metadata(source="whisper", language="en", file="clip.vtt")
        assert updated.subtitles_enabled
        assert updated.subtitle_language == "en"
        assert not settings.subtitles_enabled


class TestOptimizedDocument:
    """Tests for converting between decoded and optimized documents."""

    def test_round_trip(self, styled_document):
        optimized = OptimizedDocument.from_document(styled_document)
        assert optimized.palette[0] == ""
        assert optimized.frame_count == 5
        assert optimized.total_duration_ms == styled_document.total_duration_ms

        restored = optimized.to_document()
        assert [f.content for f in restored.frames] == [f.content for f in styled_document.frames]
        assert [f.delay_ms for f in restored.frames] == [f.delay_ms for f in styled_document.frames]
        assert restored.source_file == "clip.gif"

    def test_loop_count_override(self, styled_document):
        restored = OptimizedDocument.from_document(styled_document).to_document(loop_count=7)
        assert restored.settings.loop_count == 7
        assert styled_document.settings.loop_count == 2

    def test_ref_frame(self):
        optimized = OptimizedDocument(frames=[
            EncodedFrame(characters="ab", color_indices="0,2", delay_ms=10),
            EncodedFrame(is_keyframe=False, ref_frame=0, delay_ms=20),
        ])
        restored = optimized.to_document()
        assert [f.content for f in restored.frames] == ["ab", "ab"]
        assert [f.delay_ms for f in restored.frames] == [10, 20]

    def test_leading_delta_is_skipped(self):
        optimized = OptimizedDocument(frames=[
            EncodedFrame(is_keyframe=False, delta="0:x,0"),
            EncodedFrame(characters="ok", color_indices="0,2"),
        ])
        assert [f.content for f in optimized.to_document().frames] == ["ok"]

    def test_to_dict_omits_empty_fields(self, styled_document):
        data = OptimizedDocument.from_document(styled_document).to_dict()
        assert data['@type'] == "OptimizedConsoleImageDocument"
        assert data['version'] == "3.1"
        assert 'delta' not in data['frames'][0]
        assert 'subtitles' not in data


class TestStreamRecords:
    """Tests for line-delimited record parsing."""

    def test_parse_each_type(self):
        header = parse_record(dump_record(HeaderRecord(source_file="a.gif")))
        frame = parse_record(dump_record(FrameRecord(index=3, content="x", delay_ms=5)))
        footer = parse_record(dump_record(FooterRecord(frame_count=4, total_duration_ms=20)))
        assert isinstance(header, HeaderRecord)
        assert header.source_file == "a.gif"
        assert isinstance(frame, FrameRecord)
        assert frame.index == 3
        assert isinstance(footer, FooterRecord)
        assert footer.is_complete

    def test_parse_bytes(self):
        record = parse_record(b'{"@type":"Frame","index":1,"content":"\xc3\xa9"}\n')
        assert record.content == "é"

    def test_unknown_type(self):
        with pytest.raises(MalformedRecordError):
            parse_record('{"@type":"Mystery"}')

    def test_invalid_json(self):
        with pytest.raises(MalformedRecordError):
            parse_record('{"@type":"Frame","content":"abc')

    def test_encoded_record_omits_content(self):
        record = FrameRecord.from_encoded(0, EncodedFrame(characters="ab", color_indices="0,2"), 1, [])
        line = dump_record(record)
        assert '"content"' not in line
        assert '"paletteAdditions"' not in line
        assert record.is_encoded

    def test_missing_keyframe_flag_inferred_from_delta(self):
        record = FrameRecord(delta="0:x,0")
        assert record.to_encoded().is_keyframe is False
        assert FrameRecord(characters="x").to_encoded().is_keyframe is True


class TestLoadReport:
    """Tests for load diagnostics."""

    def test_clean_report(self):
        assert not LoadReport().recovered

    def test_recovered_states(self):
        assert LoadReport(footer_seen=False).recovered
        assert LoadReport(declared_complete=False).recovered
        report = LoadReport()
        report.skip(4, "truncated record")
        assert report.recovered
        assert report.skipped[0].line == 4

    def test_info_is_animated(self):
        info = DocumentInfo(
            frame_count=1, total_duration_ms=0, render_mode="ASCII",
            settings=RenderSettings(), format=DocumentFormat.JSON,
        )
        assert not info.is_animated
