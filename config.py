#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration Module for Metadata Extraction
Defines the Config class holding the fixed analysis thresholds and a helper
to apply command-line overrides.
"""
from typing import List, Tuple


class Config:
    """Configuration class to hold analysis parameters."""
    def __init__(self):
        self.entropy_sample_bytes: int = 1024 * 1024  # Entropy is computed over this prefix (1 MiB)
        self.signature_length: int = 16  # Leading bytes rendered as the file signature
        self.encryption_probe_bytes: int = 1024  # Header window checked for container magic
        self.entropy_encryption_threshold: float = 7.5  # Bits/byte above which data looks encrypted
        self.decode_timeout_seconds: float = 5  # Deadline for image/media decoding
        self.pixel_sample_size: int = 100  # Images are downscaled to at most N x N for pixel checks
        self.language_sample_chars: int = 1000  # Text prefix scored for stop words
        self.language_match_threshold: int = 3  # Stop-word hits needed to name a language
        self.metadata_probe_bytes: int = 2048  # PDF prefix searched for /Info or /Metadata
        self.max_workers: int = 4  # Threads for batch extraction and decoding
        self.executable_extensions: List[str] = [
            'exe', 'msi', 'app', 'deb', 'rpm', 'dmg', 'pkg', 'run',
            'bin', 'com', 'bat', 'cmd', 'sh',
        ]
        # Containers that commonly wrap encrypted payloads
        self.encrypted_signatures: List[Tuple[bytes, str]] = [
            (b'PK\x03\x04', 'ZIP archive'),
            (b'7z\xbc\xaf', '7-Zip archive'),
            (b'Rar!', 'RAR archive'),
        ]


def create_config_from_args(args) -> Config:
    """Create Config object from command-line arguments."""
    config = Config()
    if getattr(args, 'workers', None):
        config.max_workers = max(1, args.workers)
    return config
