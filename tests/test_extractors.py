"""
Tests for the format classifier and per-format extractors
"""
import io
import json
import struct
import subprocess
import threading
import zipfile
from concurrent.futures import ThreadPoolExecutor

import pytest
from PIL import Image

import extractors
from errors import ClassificationMiss, DecodeTimeout
from extractors import (ArchiveExtractor, DocumentExtractor, FormatKind, ImageExtractor,
                        MediaExtractor, TextExtractor, classify, estimate_color_depth,
                        has_alpha_channel)
from models import ByteSampler, Dimensions, FileHandle, Resolution


def run(extractor, data, name, mime_type=''):
    handle = FileHandle(data, name, mime_type)
    return extractor.extract(handle, ByteSampler(handle))


class TestClassifier:
    @pytest.mark.parametrize('mime_type, name, expected', [
        ('image/png', 'a.png', FormatKind.IMAGE),
        ('image/jpeg', 'photo.pdf', FormatKind.IMAGE),
        ('audio/mpeg', 'song.mp3', FormatKind.MEDIA),
        ('video/mp4', 'clip.mp4', FormatKind.MEDIA),
        ('application/pdf', 'doc', FormatKind.DOCUMENT),
        ('', 'paper.PDF', FormatKind.DOCUMENT),
        ('text/csv', 'data.csv', FormatKind.TEXT),
        ('', 'README.md', FormatKind.TEXT),
        ('application/zip', 'bundle', FormatKind.ARCHIVE),
        ('application/x-zip-compressed', 'a.bin', FormatKind.ARCHIVE),
        ('', 'backup.rar', FormatKind.ARCHIVE),
    ])
    def test_dispatch(self, mime_type, name, expected):
        assert classify(mime_type, name) is expected

    def test_pdf_takes_priority_over_text(self):
        assert classify('application/pdf', 'notes.txt') is FormatKind.DOCUMENT

    def test_unknown_format(self):
        with pytest.raises(ClassificationMiss):
            classify('application/octet-stream', 'program.exe')


class TestImageExtractor:
    def test_png_dimensions_and_alpha(self, config, png_rgba_bytes):
        fields = run(ImageExtractor(config), png_rgba_bytes, 'a.png', 'image/png')
        assert fields['dimensions'] == Dimensions(200, 100)
        assert fields['aspect_ratio'] == '2:1'
        assert fields['has_alpha'] is True
        assert fields['color_depth'] in (1, 4, 8, 16)
        assert 'exif_data' not in fields

    def test_jpeg_tags(self, config, jpeg_with_exif_bytes):
        fields = run(ImageExtractor(config), jpeg_with_exif_bytes, 'b.jpg', 'image/jpeg')
        assert fields['dimensions'] == Dimensions(1920, 1080)
        assert fields['aspect_ratio'] == '16:9'
        assert fields['has_alpha'] is False
        assert fields['creator'] == 'Jane Photographer'
        assert fields['subject'] == 'Harbour at dawn'
        assert fields['keywords'] == ['PhotoTool 2.1']
        assert fields['dpi'] == Resolution(300.0, 300.0)
        assert fields['exif_data']['Artist'] == 'Jane Photographer'

    def test_embedded_metadata_flag(self, config, jpeg_with_exif_bytes, png_rgba_bytes):
        extractor = ImageExtractor(config)
        handle = FileHandle(jpeg_with_exif_bytes, 'b.jpg', 'image/jpeg')
        sampler = ByteSampler(handle)
        assert extractor.has_embedded_metadata(handle, sampler, extractor.extract(handle, sampler)) is True
        handle = FileHandle(png_rgba_bytes, 'a.png', 'image/png')
        sampler = ByteSampler(handle)
        assert extractor.has_embedded_metadata(handle, sampler, extractor.extract(handle, sampler)) is False

    def test_corrupt_image(self, config):
        fields = run(ImageExtractor(config), b'this is not an image at all', 'x.png', 'image/png')
        assert 'dimensions' not in fields
        assert 'aspect_ratio' not in fields
        assert 'color_depth' not in fields

    def test_decode_timeout(self, config, png_rgba_bytes, monkeypatch):
        config.decode_timeout_seconds = 0.05
        release = threading.Event()
        with ThreadPoolExecutor(max_workers=1) as executor:
            extractor = ImageExtractor(config, decode_executor=executor)
            monkeypatch.setattr(extractor, 'decode_pixels', lambda data: release.wait(5))
            with pytest.raises(DecodeTimeout):
                extractor.run_bounded(extractor.decode_pixels, png_rgba_bytes)
            fields = run(extractor, png_rgba_bytes, 'a.png', 'image/png')
            release.set()
        assert 'dimensions' not in fields

    def test_tag_read_timeout_keeps_pixel_fields(self, config, jpeg_with_exif_bytes, monkeypatch):
        config.decode_timeout_seconds = 1.0
        release = threading.Event()
        with ThreadPoolExecutor(max_workers=2) as executor:
            extractor = ImageExtractor(config, decode_executor=executor)
            monkeypatch.setattr(extractor, 'read_tags', lambda data: release.wait(5))
            fields = run(extractor, jpeg_with_exif_bytes, 'b.jpg', 'image/jpeg')
            release.set()
        assert fields['dimensions'] == Dimensions(1920, 1080)
        assert 'exif_data' not in fields
        assert 'creator' not in fields

    def test_two_tone_image_is_one_bit(self, config):
        size = 400
        pixels = bytes(255 if (x + y) % 2 else 0 for y in range(size) for x in range(size))
        buf = io.BytesIO()
        Image.frombytes('L', (size, size), pixels).save(buf, format='PNG')
        fields = run(ImageExtractor(config), buf.getvalue(), 'checker.png', 'image/png')
        assert fields['color_depth'] == 1
        assert fields['has_alpha'] is False


class TestPixelHeuristics:
    def rgba(self, colors, alpha=255):
        return b''.join(bytes(color) + bytes([alpha]) for color in colors)

    @pytest.mark.parametrize('count, depth', [(1, 1), (2, 1), (3, 4), (16, 4), (17, 8), (256, 8), (257, 16)])
    def test_color_depth_thresholds(self, count, depth):
        colors = [(i % 256, i // 256, 0) for i in range(count)]
        assert estimate_color_depth(self.rgba(colors)) == depth

    def test_opaque_has_no_alpha(self):
        assert has_alpha_channel(self.rgba([(1, 2, 3)] * 4)) is False

    def test_translucent_pixel(self):
        assert has_alpha_channel(self.rgba([(1, 2, 3)]) + bytes([4, 5, 6, 254])) is True


class TestMediaExtractor:
    @pytest.fixture(autouse=True)
    def no_exiftool(self, monkeypatch):
        monkeypatch.setattr(extractors, 'EXIFTOOL_AVAILABLE', False)

    def test_wav_duration_and_bitrate(self, config, wav_bytes):
        fields = run(MediaExtractor(config), wav_bytes, 'tone.wav', 'audio/wav')
        assert fields['duration'] == pytest.approx(1.0)
        assert fields['bitrate'] == round(len(wav_bytes) * 8 / fields['duration'])
        assert fields['sample_rate'] == 8000
        assert fields['channels'] == 1
        assert 'dimensions' not in fields

    def test_undecodable_media(self, config):
        fields = run(MediaExtractor(config), b'\x00garbage\x00' * 10, 'clip.mp4', 'video/mp4')
        assert fields == {}

    def test_timeout_leaves_fields_absent(self, config, wav_bytes, monkeypatch):
        config.decode_timeout_seconds = 0.05
        release = threading.Event()
        with ThreadPoolExecutor(max_workers=1) as executor:
            extractor = MediaExtractor(config, decode_executor=executor)
            monkeypatch.setattr(extractor, 'probe', lambda *args: release.wait(5))
            fields = run(extractor, wav_bytes, 'tone.wav', 'audio/wav')
            release.set()
        assert fields == {}

    def test_video_dimensions_from_probe(self, config, monkeypatch):
        extractor = MediaExtractor(config)
        monkeypatch.setattr(extractor, 'probe', lambda *args: {
            'duration': 10.0, 'width': 1280, 'height': 720, 'codec': 'avc1'})
        fields = run(extractor, b'\x00' * 1000, 'clip.mp4', 'video/mp4')
        assert fields['dimensions'] == Dimensions(1280, 720)
        assert fields['aspect_ratio'] == '16:9'
        assert fields['bitrate'] == 800
        assert fields['codec'] == 'avc1'

    def test_zero_duration_has_no_bitrate(self, config, monkeypatch):
        extractor = MediaExtractor(config)
        monkeypatch.setattr(extractor, 'probe', lambda *args: {'duration': 0.0})
        fields = run(extractor, b'\x00' * 10, 'a.mp3', 'audio/mpeg')
        assert fields['duration'] == 0.0
        assert 'bitrate' not in fields


class TestMediaExiftool:
    @pytest.fixture(autouse=True)
    def with_exiftool(self, monkeypatch):
        monkeypatch.setattr(extractors, 'EXIFTOOL_AVAILABLE', True)

    def fake_run(self, monkeypatch, stdout=b'', returncode=0, error=None):
        calls = []

        def run_exiftool(cmd, **kwargs):
            calls.append(cmd)
            if error is not None:
                raise error
            return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=b'boom')

        monkeypatch.setattr(extractors.subprocess, 'run', run_exiftool)
        return calls

    def test_video_dimensions_and_duration(self, config, monkeypatch):
        calls = self.fake_run(monkeypatch, json.dumps(
            [{'Duration': 12.5, 'ImageWidth': 1280, 'ImageHeight': 720}]).encode())
        fields = run(MediaExtractor(config), b'\x00garbage\x00' * 10, 'clip.mp4', 'video/mp4')
        assert calls == [['exiftool', '-j', '-n', '-']]
        assert fields['dimensions'] == Dimensions(1280, 720)
        assert fields['aspect_ratio'] == '16:9'
        assert fields['duration'] == 12.5
        assert fields['bitrate'] == 64

    def test_non_numeric_values_are_ignored(self, config, monkeypatch):
        self.fake_run(monkeypatch, json.dumps(
            [{'Duration': '0:00:12', 'ImageWidth': '1280', 'ImageHeight': 720}]).encode())
        fields = run(MediaExtractor(config), b'\x00garbage\x00' * 10, 'clip.mp4', 'video/mp4')
        assert fields == {}

    def test_exiftool_error_leaves_fields_absent(self, config, monkeypatch):
        self.fake_run(monkeypatch, returncode=1)
        fields = run(MediaExtractor(config), b'\x00garbage\x00' * 10, 'clip.mp4', 'video/mp4')
        assert fields == {}

    def test_exiftool_timeout(self, config, monkeypatch):
        self.fake_run(monkeypatch, error=subprocess.TimeoutExpired(['exiftool'], 5))
        fields = run(MediaExtractor(config), b'\x00garbage\x00' * 10, 'clip.mp4', 'video/mp4')
        assert fields == {}

    def test_audio_with_duration_skips_exiftool(self, config, wav_bytes, monkeypatch):
        calls = self.fake_run(monkeypatch)
        fields = run(MediaExtractor(config), wav_bytes, 'tone.wav', 'audio/wav')
        assert calls == []
        assert fields['duration'] == pytest.approx(1.0)


class TestDocumentExtractor:
    def test_info_pages_and_words(self, config, pdf_bytes):
        fields = run(DocumentExtractor(config), pdf_bytes, 'report.pdf', 'application/pdf')
        assert fields['subject'] == 'Quarterly Report'
        assert fields['creator'] == 'A. Writer'
        assert fields['keywords'] == ['finance', 'q3', 'report']
        assert fields['page_count'] == 2
        assert fields['word_count'] > 0
        assert fields['character_count'] > 0

    def test_indirect_info_reference(self, config):
        data = (b'%PDF-1.7\n5 0 obj\n<< /Author (Someone) /Title (Indirect) >>\nendobj\n'
                b'trailer\n<< /Size 6 /Info 5 0 R >>\n%%EOF')
        fields = run(DocumentExtractor(config), data, 'a.pdf', 'application/pdf')
        assert fields['creator'] == 'Someone'
        assert fields['subject'] == 'Indirect'
        assert 'page_count' not in fields

    @pytest.mark.parametrize('data, pages', [
        (b'%PDF-1.4\n<< /Type /Page', 1),
        (b'<< /Type /Page/Type /Page >>', 2),
        (b'<< /Type /Pages /Kids [] >>', None),
    ])
    def test_page_markers(self, config, data, pages):
        fields = run(DocumentExtractor(config), data, 'a.pdf', 'application/pdf')
        assert fields.get('page_count') == pages

    def test_binary_noise_is_tolerated(self, config):
        data = b'%PDF-1.5\n' + bytes(range(256)) * 4
        fields = run(DocumentExtractor(config), data, 'a.pdf', 'application/pdf')
        assert 'subject' not in fields
        assert 'page_count' not in fields
        assert fields['word_count'] >= 1

    def test_word_counts_strip_non_printable(self, config):
        fields = run(DocumentExtractor(config), b'one\x00two\x01\x02three', 'a.pdf')
        assert fields['word_count'] == 3
        assert fields['character_count'] == len('one two three')

    def test_embedded_metadata_probe(self, config, pdf_bytes):
        extractor = DocumentExtractor(config)
        handle = FileHandle(pdf_bytes, 'r.pdf', 'application/pdf')
        assert extractor.has_embedded_metadata(handle, ByteSampler(handle), {}) is True
        late = FileHandle(b'%PDF-1.4\n' + b' ' * 4096 + b'/Info', 'r.pdf')
        assert extractor.has_embedded_metadata(late, ByteSampler(late), {}) is False


class TestTextExtractor:
    def test_counts(self, config):
        fields = run(TextExtractor(config), b'first line\nsecond  line\n', 'a.txt', 'text/plain')
        assert fields['word_count'] == 4
        assert fields['character_count'] == 24
        assert fields['line_count'] == 3
        assert fields['encoding'] == 'ASCII'
        assert fields['language'] == 'Unknown'

    def test_utf8_and_language(self, config):
        text = 'The café and the bar of the town with the people. ' * 5
        fields = run(TextExtractor(config), text.encode('utf-8'), 'a.md')
        assert fields['encoding'] == 'UTF-8'
        assert fields['language'] == 'English'

    def test_invalid_utf8(self, config):
        fields = run(TextExtractor(config), b'abc\xff\xfedef', 'a.txt', 'text/plain')
        assert fields['encoding'] == 'Binary/Unknown'


class TestArchiveExtractor:
    def test_compression_ratio(self, config, zip_bytes):
        fields = run(ArchiveExtractor(config), zip_bytes, 'a.zip', 'application/zip')
        assert fields['entry_count'] == 2
        assert fields['compression_ratio'] == round(len(zip_bytes) / 15000, 2)

    def test_not_a_zip(self, config):
        assert run(ArchiveExtractor(config), b'Rar!\x1a\x07\x00rest', 'a.rar') == {}

    def test_truncated_archive(self, config, zip_bytes):
        fields = run(ArchiveExtractor(config), zip_bytes[:20], 'a.zip', 'application/zip')
        assert 'compression_ratio' not in fields

    def test_empty_members(self, config):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, 'w') as zf:
            zf.writestr('empty.txt', '')
        fields = run(ArchiveExtractor(config), buf.getvalue(), 'a.zip')
        assert fields == {'entry_count': 1}

    def test_walk_stops_at_bad_magic(self):
        header = b'PK\x03\x04' + b'\x00' * 14 + struct.pack('<IIHH', 3, 100, 1, 0) + b'a' + b'xyz'
        entries, uncompressed = ArchiveExtractor.walk_local_headers(header + b'JUNKJUNK' * 10)
        assert (entries, uncompressed) == (1, 100)
