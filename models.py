#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Data Model for Metadata Extraction
FileHandle wraps one submitted file, ByteSampler bounds reads from it and
MetadataRecord collects the optional fields produced by the extraction run.
"""
import mimetypes
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from errors import UnreadableInput


@dataclass(frozen=True)
class FileHandle:
    """Immutable reference to a submitted file's bytes and declared attributes."""
    data: bytes
    name: str
    mime_type: str = ''
    last_modified: Optional[float] = None

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    @property
    def extension(self) -> str:
        if '.' not in self.name:
            return ''
        return self.name.rsplit('.', 1)[-1].lower()

    @classmethod
    def from_path(cls, filepath: Union[str, Path], mime_type: Optional[str] = None) -> 'FileHandle':
        """Read a file from disk. Raises UnreadableInput if it cannot be read."""
        filepath = Path(filepath)
        try:
            stat = filepath.stat()
            data = filepath.read_bytes()
        except OSError as e:
            raise UnreadableInput(f"Cannot read {filepath}: {e}") from e
        if mime_type is None:
            mime_type = mimetypes.guess_type(filepath.name)[0] or ''
        return cls(data=data, name=filepath.name, mime_type=mime_type,
                   last_modified=stat.st_mtime)


class ByteSampler:
    """Bounded reads over a FileHandle's buffer."""
    def __init__(self, handle: FileHandle):
        self.handle = handle

    def full_bytes(self) -> bytes:
        data = self.handle.data
        if isinstance(data, bytes):
            return data
        if isinstance(data, (bytearray, memoryview)):
            return bytes(data)
        raise UnreadableInput(f"No readable byte buffer for {self.handle.name!r}")

    def prefix(self, n: int) -> bytes:
        data = self.full_bytes()
        return data[:max(0, min(n, len(data)))]


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int


@dataclass(frozen=True)
class Resolution:
    x: float
    y: float


def _group(name: str):
    return field(default=None, metadata={'group': name})


@dataclass
class MetadataRecord:
    """Metadata for one file. A field left as None was not applicable or failed."""
    # identity
    name: Optional[str] = _group('identity')
    mime_type: Optional[str] = _group('identity')
    size: Optional[int] = _group('identity')
    extension: Optional[str] = _group('identity')
    last_modified: Optional[float] = _group('identity')
    # technical
    file_signature: Optional[str] = _group('technical')
    entropy: Optional[float] = _group('technical')
    encoding: Optional[str] = _group('technical')
    is_executable: Optional[bool] = _group('technical')
    is_encrypted: Optional[bool] = _group('technical')
    has_metadata: Optional[bool] = _group('technical')
    processing_time_ms: Optional[float] = _group('technical')
    # security
    sha256: Optional[str] = _group('security')
    md5: Optional[str] = _group('security')
    # media
    dimensions: Optional[Dimensions] = _group('media')
    aspect_ratio: Optional[str] = _group('media')
    duration: Optional[float] = _group('media')
    bitrate: Optional[int] = _group('media')
    sample_rate: Optional[int] = _group('media')
    channels: Optional[int] = _group('media')
    codec: Optional[str] = _group('media')
    color_depth: Optional[int] = _group('media')
    has_alpha: Optional[bool] = _group('media')
    dpi: Optional[Resolution] = _group('media')
    # content
    word_count: Optional[int] = _group('content')
    character_count: Optional[int] = _group('content')
    line_count: Optional[int] = _group('content')
    page_count: Optional[int] = _group('content')
    entry_count: Optional[int] = _group('content')
    language: Optional[str] = _group('content')
    compression_ratio: Optional[float] = _group('content')
    # authorship
    creator: Optional[str] = _group('authorship')
    subject: Optional[str] = _group('authorship')
    keywords: Optional[List[str]] = _group('authorship')
    # format-native tags
    exif_data: Optional[Dict[str, Any]] = _group('tags')

    def update(self, values: Dict[str, Any]) -> None:
        """Merge a partial result. Unknown field names raise KeyError."""
        known = {f.name for f in fields(self)}
        for key, value in values.items():
            if key not in known:
                raise KeyError(f"Unknown metadata field: {key}")
            setattr(self, key, value)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    def grouped(self) -> Dict[str, Dict[str, Any]]:
        """Present fields as {group: {field: value}}, skipping empty groups."""
        return group_fields(self.to_dict())


RECORD_GROUPS = ['identity', 'technical', 'security', 'media', 'content', 'authorship', 'tags']
FIELD_GROUPS = {f.name: f.metadata['group'] for f in fields(MetadataRecord)}


def group_fields(flat: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Regroup a flat record dict, as produced by MetadataRecord.to_dict(), by record group."""
    grouped: Dict[str, Dict[str, Any]] = {}
    for key, value in flat.items():
        grouped.setdefault(FIELD_GROUPS[key], {})[key] = value
    return {group: grouped[group] for group in RECORD_GROUPS if group in grouped}
