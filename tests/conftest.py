"""
Pytest configuration and fixtures
"""
import io
import struct
import sys
import wave
import zipfile
from pathlib import Path

import pytest
from PIL import Image

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Modules live at the project root
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import Config  # noqa: E402
from metadata_extractor import MetadataExtractor  # noqa: E402


@pytest.fixture
def config():
    """Default configuration"""
    return Config()


@pytest.fixture
def extractor(config):
    """MetadataExtractor that is closed after the test"""
    with MetadataExtractor(config) as metadata_extractor:
        yield metadata_extractor


@pytest.fixture(scope="session")
def png_rgba_bytes():
    """200x100 PNG with a transparent half"""
    img = Image.new('RGBA', (200, 100), (255, 0, 0, 255))
    for x in range(100, 200):
        for y in range(100):
            img.putpixel((x, y), (0, 0, 255, 0))
    buf = io.BytesIO()
    img.save(buf, 'PNG')
    return buf.getvalue()


@pytest.fixture(scope="session")
def jpeg_with_exif_bytes():
    """1920x1080 JPEG carrying Artist, ImageDescription, Software and resolution tags"""
    img = Image.new('RGB', (1920, 1080), (10, 120, 200))
    exif = Image.Exif()
    exif[0x013B] = 'Jane Photographer'  # Artist
    exif[0x010E] = 'Harbour at dawn'  # ImageDescription
    exif[0x0131] = 'PhotoTool 2.1'  # Software
    exif[0x011A] = 300  # XResolution
    exif[0x011B] = 300  # YResolution
    buf = io.BytesIO()
    img.save(buf, 'JPEG', exif=exif.tobytes())
    return buf.getvalue()


@pytest.fixture(scope="session")
def zip_bytes():
    """Deflated ZIP with two highly compressible members"""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr('a.txt', 'a' * 10000)
        zf.writestr('b.txt', 'b' * 5000)
    return buf.getvalue()


@pytest.fixture(scope="session")
def wav_bytes():
    """One second of 8 kHz mono 16-bit silence"""
    buf = io.BytesIO()
    with wave.open(buf, 'wb') as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(8000)
        wav.writeframes(struct.pack('<h', 0) * 8000)
    return buf.getvalue()


@pytest.fixture(scope="session")
def pdf_bytes():
    """Minimal two-page PDF with an inline /Info dictionary"""
    return (
        b'%PDF-1.4\n'
        b'1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n'
        b'2 0 obj << /Type /Pages /Kids [3 0 R 4 0 R] /Count 2 >> endobj\n'
        b'3 0 obj << /Type /Page /Parent 2 0 R >> endobj\n'
        b'4 0 obj << /Type /Page /Parent 2 0 R >> endobj\n'
        b'trailer << /Root 1 0 R /Info << /Title (Quarterly Report) '
        b'/Author (A. Writer) /Keywords (finance, q3 ,report) >> >>\n'
        b'%%EOF\n'
    )
