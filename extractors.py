#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Format-Specific Extractors
Classifies a file by declared MIME type / extension and extracts structural
metadata from:
- Images (dimensions, EXIF tags, alpha channel, color depth)
- Audio/video (duration, stream properties, derived bitrate)
- PDF documents (info dictionary, page count, word counts)
- Plain text (counts, encoding, language)
- ZIP archives (compression ratio from local file headers)
"""
import io
import json
import logging
import math
import re
import shutil
import struct
import subprocess
from concurrent.futures import Executor, TimeoutError as FuturesTimeoutError
from enum import Enum
from fractions import Fraction
from numbers import Rational
from typing import Any, Callable, Dict, Optional

import exifread
from mutagen import File as MutagenFile, MutagenError
from PIL import Image
from PIL.ExifTags import TAGS

from config import Config
from errors import ClassificationMiss, DecodeFailure, DecodeTimeout, StructuralParseFailure
from models import ByteSampler, Dimensions, FileHandle, Resolution
from utils import aspect_ratio, count_words, detect_encoding, detect_language

EXIFTOOL_AVAILABLE = bool(shutil.which('exiftool'))

ZIP_LOCAL_HEADER = b'PK\x03\x04'
ZIP_LOCAL_HEADER_SIZE = 30


class FormatKind(Enum):
    IMAGE = 'image'
    MEDIA = 'media'
    DOCUMENT = 'document'
    TEXT = 'text'
    ARCHIVE = 'archive'


def classify(mime_type: str, name: str) -> FormatKind:
    """Pick the extractor for a file. Raises ClassificationMiss when none applies."""
    mime_type = (mime_type or '').lower()
    name = (name or '').lower()
    if mime_type.startswith('image/'):
        return FormatKind.IMAGE
    if mime_type.startswith(('audio/', 'video/')):
        return FormatKind.MEDIA
    if mime_type == 'application/pdf' or name.endswith('.pdf'):
        return FormatKind.DOCUMENT
    if 'text/' in mime_type or name.endswith(('.txt', '.md')):
        return FormatKind.TEXT
    if 'zip' in mime_type or 'archive' in mime_type or name.endswith(('.zip', '.rar')):
        return FormatKind.ARCHIVE
    raise ClassificationMiss(f"No format extractor for {name!r} ({mime_type or 'no MIME type'})")


class FormatExtractor:
    """Base class for per-format extractors.

    extract() returns a dict of MetadataRecord field names to values and only
    contains fields it actually determined.
    """
    kind: FormatKind

    def __init__(self, config: Config = None, logger: logging.Logger = None,
                 decode_executor: Optional[Executor] = None):
        self.config = config or Config()
        self.logger = logger or logging.getLogger('filelens')
        self.decode_executor = decode_executor

    def extract(self, handle: FileHandle, sampler: ByteSampler) -> Dict[str, Any]:
        raise NotImplementedError

    def has_embedded_metadata(self, handle: FileHandle, sampler: ByteSampler,
                              extracted: Dict[str, Any]) -> bool:
        return False

    def run_bounded(self, func: Callable, *args):
        """Run a decode on the decode executor, giving up after the configured deadline."""
        if self.decode_executor is None:
            return func(*args)
        future = self.decode_executor.submit(func, *args)
        try:
            return future.result(timeout=self.config.decode_timeout_seconds)
        except FuturesTimeoutError:
            future.cancel()
            raise DecodeTimeout(f"{self.kind.value} decode exceeded "
                                f"{self.config.decode_timeout_seconds}s") from None


def has_alpha_channel(rgba: bytes) -> bool:
    return any(alpha < 255 for alpha in rgba[3::4])


def estimate_color_depth(rgba: bytes) -> int:
    """Estimate bits per pixel from the number of distinct RGB colors in an RGBA buffer."""
    unique_colors = set()
    for i in range(0, len(rgba) - 3, 4):
        unique_colors.add(rgba[i:i + 3])
        if len(unique_colors) > 65536:
            return 24
    count = len(unique_colors)
    if count <= 2:
        return 1
    if count <= 16:
        return 4
    if count <= 256:
        return 8
    if count <= 65536:
        return 16
    return 24


def _readable_tag(value):
    if isinstance(value, (str, int, float)):
        return value.strip('\x00 ') if isinstance(value, str) else value
    if isinstance(value, Rational):
        try:
            return float(value)
        except ZeroDivisionError:
            return str(value)
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='ignore').strip('\x00 ')
    return str(value)[:200]


def _to_number(value) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if text.startswith('[') and text.endswith(']'):
        text = text[1:-1].split(',')[0].strip()
    return float(Fraction(text))


class ImageExtractor(FormatExtractor):
    kind = FormatKind.IMAGE

    def extract(self, handle: FileHandle, sampler: ByteSampler) -> Dict[str, Any]:
        data = sampler.full_bytes()
        fields: Dict[str, Any] = {}
        try:
            width, height, rgba = self.run_bounded(self.decode_pixels, data)
        except (DecodeTimeout, DecodeFailure) as e:
            self.logger.warning(f"Image decode failed for {handle.name}: {e}")
        else:
            fields['dimensions'] = Dimensions(width, height)
            fields['aspect_ratio'] = aspect_ratio(width, height)
            if rgba:
                fields['has_alpha'] = has_alpha_channel(rgba)
                fields['color_depth'] = estimate_color_depth(rgba)
        try:
            tags = self.run_bounded(self.read_tags, data)
        except (DecodeTimeout, DecodeFailure) as e:
            self.logger.warning(f"EXIF extraction failed for {handle.name}: {e}")
        else:
            fields.update(self.map_tags(tags))
        return fields

    def decode_pixels(self, data: bytes):
        """Decode the image; return (width, height, RGBA bytes downscaled to the sample size)."""
        limit = self.config.pixel_sample_size
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                width, height = img.size
                sample = img.convert('RGBA').resize((min(width, limit), min(height, limit)),
                                                     Image.Resampling.NEAREST)
                return width, height, sample.tobytes()
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
            raise DecodeFailure(f"Cannot decode image: {e}") from e

    def read_tags(self, data: bytes) -> Dict[str, Any]:
        """Read EXIF tags with Pillow, falling back to exifread."""
        tags: Dict[str, Any] = {}
        try:
            with Image.open(io.BytesIO(data)) as img:
                for tag_id, value in img.getexif().items():
                    tags[str(TAGS.get(tag_id, tag_id))] = _readable_tag(value)
        except (OSError, SyntaxError, ValueError) as e:
            self.logger.debug(f"Pillow EXIF read failed: {e}")
        if tags:
            return tags
        try:
            exif_tags = exifread.process_file(io.BytesIO(data), details=False)
        except Exception as e:
            raise DecodeFailure(f"exifread error: {e}") from e
        for key, value in exif_tags.items():
            if key in ('JPEGThumbnail', 'TIFFThumbnail', 'Filename'):
                continue
            # IFD0 tags carry the "Image " group prefix in exifread
            name = key[len('Image '):] if key.startswith('Image ') else key
            tags[name] = str(value).strip('\x00 ')[:500]
        return tags

    def map_tags(self, tags: Dict[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if not tags:
            return fields
        fields['exif_data'] = tags
        if tags.get('Artist'):
            fields['creator'] = str(tags['Artist'])
        if tags.get('ImageDescription'):
            fields['subject'] = str(tags['ImageDescription'])
        if tags.get('Software'):
            fields['keywords'] = [str(tags['Software'])]
        if tags.get('XResolution') is not None and tags.get('YResolution') is not None:
            try:
                fields['dpi'] = Resolution(_to_number(tags['XResolution']),
                                           _to_number(tags['YResolution']))
            except (ValueError, ZeroDivisionError) as e:
                self.logger.debug(f"Unparseable resolution tags: {e}")
        return fields

    def has_embedded_metadata(self, handle, sampler, extracted) -> bool:
        return bool(extracted.get('exif_data'))


class MediaExtractor(FormatExtractor):
    kind = FormatKind.MEDIA

    def extract(self, handle: FileHandle, sampler: ByteSampler) -> Dict[str, Any]:
        is_video = (handle.mime_type or '').lower().startswith('video/')
        try:
            probe = self.run_bounded(self.probe, sampler.full_bytes(), handle.name, is_video)
        except (DecodeTimeout, DecodeFailure) as e:
            self.logger.warning(f"Media decode failed for {handle.name}: {e}")
            return {}
        fields: Dict[str, Any] = {}
        duration = probe.get('duration')
        if duration is not None and math.isfinite(duration) and duration >= 0:
            fields['duration'] = duration
            if duration > 0:
                fields['bitrate'] = int(math.floor(handle.size * 8 / duration + 0.5))
        for key in ('sample_rate', 'channels', 'codec'):
            if probe.get(key):
                fields[key] = probe[key]
        width, height = probe.get('width'), probe.get('height')
        if is_video and width and height:
            fields['dimensions'] = Dimensions(width, height)
            fields['aspect_ratio'] = aspect_ratio(width, height)
        return fields

    def probe(self, data: bytes, name: str, is_video: bool) -> Dict[str, Any]:
        """Read stream properties with mutagen, and exiftool when it is installed."""
        result: Dict[str, Any] = {}
        fileobj = io.BytesIO(data)
        fileobj.name = name
        try:
            media_file = MutagenFile(fileobj)
        except MutagenError as e:
            self.logger.debug(f"mutagen could not parse {name}: {e}")
            media_file = None
        if media_file is not None and getattr(media_file, 'info', None) is not None:
            info = media_file.info
            result['duration'] = getattr(info, 'length', None)
            result['sample_rate'] = getattr(info, 'sample_rate', None)
            result['channels'] = getattr(info, 'channels', None)
            result['codec'] = getattr(info, 'codec', None) or (media_file.mime[0] if media_file.mime else None)
        if EXIFTOOL_AVAILABLE and (is_video or result.get('duration') is None):
            exif = self.probe_with_exiftool(data)
            if result.get('duration') is None and isinstance(exif.get('Duration'), (int, float)):
                result['duration'] = float(exif['Duration'])
            if isinstance(exif.get('ImageWidth'), int) and isinstance(exif.get('ImageHeight'), int):
                result['width'] = exif['ImageWidth']
                result['height'] = exif['ImageHeight']
        if not any(value is not None for value in result.values()):
            raise DecodeFailure(f"Unrecognized media format: {name}")
        return result

    def probe_with_exiftool(self, data: bytes) -> Dict[str, Any]:
        cmd = ['exiftool', '-j', '-n', '-']
        try:
            proc = subprocess.run(cmd, input=data, capture_output=True,
                                  timeout=self.config.decode_timeout_seconds)
        except subprocess.TimeoutExpired:
            raise DecodeTimeout('ExifTool timeout') from None
        if proc.returncode != 0:
            self.logger.debug(f"ExifTool error: {proc.stderr.decode('utf-8', errors='ignore')}")
            return {}
        try:
            return json.loads(proc.stdout)[0]
        except (json.JSONDecodeError, IndexError, KeyError) as e:
            self.logger.debug(f"ExifTool JSON parse error: {e}")
            return {}


class DocumentExtractor(FormatExtractor):
    """Heuristic PDF scan over the raw bytes; compressed object streams are not inflated."""
    kind = FormatKind.DOCUMENT

    INFO_INLINE = re.compile(r'/Info\s*<<([^>]*)>>')
    INFO_REFERENCE = re.compile(r'/Info\s+(\d+)\s+(\d+)\s+R')
    PAGE_MARKER = re.compile(r'/Type\s*/Page(?!s)')

    def extract(self, handle: FileHandle, sampler: ByteSampler) -> Dict[str, Any]:
        text = sampler.full_bytes().decode('latin-1')
        if not text.startswith('%PDF'):
            self.logger.debug(f"{handle.name} has no %PDF header, scanning anyway")
        fields: Dict[str, Any] = {}
        info = self.find_info(text)
        if info:
            fields.update(self.parse_info(info))
        pages = len(self.PAGE_MARKER.findall(text))
        if pages:
            fields['page_count'] = pages
        printable = re.sub(r'\s+', ' ', re.sub(r'[^\x20-\x7e]', ' ', text))
        fields['word_count'] = count_words(printable)
        fields['character_count'] = len(printable)
        return fields

    def find_info(self, text: str) -> Optional[str]:
        match = self.INFO_INLINE.search(text)
        if match:
            return match.group(1)
        ref = self.INFO_REFERENCE.search(text)
        if ref:
            obj = re.search(rf'\b{ref.group(1)}\s+{ref.group(2)}\s+obj\s*<<(.*?)>>', text, re.S)
            if obj:
                return obj.group(1)
        return None

    @staticmethod
    def parse_info(info: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        title = re.search(r'/Title\s*\(([^)]*)\)', info)
        if title and title.group(1):
            fields['subject'] = title.group(1)
        author = re.search(r'/Author\s*\(([^)]*)\)', info)
        if author and author.group(1):
            fields['creator'] = author.group(1)
        keywords = re.search(r'/Keywords\s*\(([^)]*)\)', info)
        if keywords:
            words = [word.strip() for word in keywords.group(1).split(',') if word.strip()]
            if words:
                fields['keywords'] = words
        return fields

    def has_embedded_metadata(self, handle, sampler, extracted) -> bool:
        head = sampler.prefix(self.config.metadata_probe_bytes).decode('latin-1')
        return '/Info' in head or '/Metadata' in head


class TextExtractor(FormatExtractor):
    kind = FormatKind.TEXT

    def extract(self, handle: FileHandle, sampler: ByteSampler) -> Dict[str, Any]:
        text = sampler.full_bytes().decode('utf-8', errors='replace')
        return {
            'word_count': count_words(text),
            'character_count': len(text),
            'line_count': text.count('\n') + 1,
            'encoding': detect_encoding(text),
            'language': detect_language(text, self.config.language_sample_chars,
                                        self.config.language_match_threshold),
        }


class ArchiveExtractor(FormatExtractor):
    kind = FormatKind.ARCHIVE

    def extract(self, handle: FileHandle, sampler: ByteSampler) -> Dict[str, Any]:
        data = sampler.full_bytes()
        if not data.startswith(ZIP_LOCAL_HEADER):
            self.logger.debug(f"{handle.name} is not a ZIP archive, skipping header walk")
            return {}
        try:
            entries, uncompressed = self.walk_local_headers(data)
        except struct.error as e:
            raise StructuralParseFailure(f"Truncated ZIP header: {e}") from e
        fields: Dict[str, Any] = {}
        if entries:
            fields['entry_count'] = entries
        if uncompressed > 0:
            fields['compression_ratio'] = round(len(data) / uncompressed, 2)
        return fields

    @staticmethod
    def walk_local_headers(data: bytes):
        """Sum uncompressed sizes over consecutive local file headers."""
        entries = 0
        uncompressed = 0
        offset = 0
        while offset + ZIP_LOCAL_HEADER_SIZE <= len(data) and data.startswith(ZIP_LOCAL_HEADER, offset):
            compressed_size, uncompressed_size, name_length, extra_length = struct.unpack_from(
                '<IIHH', data, offset + 18)
            uncompressed += uncompressed_size
            entries += 1
            offset += ZIP_LOCAL_HEADER_SIZE + name_length + extra_length + compressed_size
        return entries, uncompressed


EXTRACTORS = {
    FormatKind.IMAGE: ImageExtractor,
    FormatKind.MEDIA: MediaExtractor,
    FormatKind.DOCUMENT: DocumentExtractor,
    FormatKind.TEXT: TextExtractor,
    FormatKind.ARCHIVE: ArchiveExtractor,
}
