#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility Functions for Metadata Extraction
Provides helper functions for signatures, entropy, hashing, encryption
heuristics, aspect ratios, file size formatting and text statistics.
"""
import hashlib
import math
import re
from math import gcd
from typing import Dict, Iterable, Tuple

# Stop-word patterns, scored in this order; ties keep the earlier language.
LANGUAGE_PATTERNS = {
    'English': re.compile(r'\b(the|and|or|but|in|on|at|to|for|of|with|by|this|that|have|has|will|would|could|should)\b'),
    'French': re.compile(r'\b(le|la|les|de|du|des|et|ou|mais|dans|sur|pour|avec|ce|cette|avoir|être|sera|serait)\b'),
    'German': re.compile(r'\b(der|die|das|und|oder|aber|in|auf|zu|für|mit|von|haben|sein|wird|würde|könnte|sollte)\b'),
    'Spanish': re.compile(r'\b(el|la|los|las|de|del|y|o|pero|en|sobre|para|con|este|esta|tener|ser|será|sería)\b'),
    'Italian': re.compile(r'\b(il|la|lo|gli|le|di|del|e|o|ma|in|su|per|con|questo|questa|avere|essere|sarà)\b'),
}


def file_signature(data: bytes, length: int = 16) -> str:
    """Render the leading bytes as space-separated uppercase hex."""
    return ' '.join(f'{b:02X}' for b in data[:length])


def calculate_data_entropy(data: bytes) -> float:
    """Calculate Shannon entropy (bits/byte) for a data chunk, rounded to 2 decimals.
    Forensic relevance: High entropy may indicate encrypted or compressed data."""
    if not data:
        return 0.0
    byte_counts = [0] * 256
    for byte in data:
        byte_counts[byte] += 1
    length = len(data)
    entropy = 0.0
    for count in byte_counts:
        if count > 0:
            probability = count / length
            entropy -= probability * math.log2(probability)
    return round(entropy, 2)


def calculate_hashes(data: bytes) -> Dict[str, str]:
    """Calculate SHA-256 and MD5 digests of the full buffer."""
    return {
        'sha256': hashlib.sha256(data).hexdigest(),
        'md5': hashlib.md5(data).hexdigest(),
    }


def detect_encryption(header: bytes, entropy: float,
                      signatures: Iterable[Tuple[bytes, str]], threshold: float = 7.5) -> bool:
    """Guess whether data is encrypted.

    This is a heuristic, not proof: archive containers that can carry
    encrypted members are flagged on their magic bytes alone, and any sample
    whose entropy exceeds the threshold is flagged, which also catches plain
    compressed data.
    """
    for magic, _description in signatures:
        if header.startswith(magic):
            return True
    return entropy > threshold


def aspect_ratio(width: int, height: int) -> str:
    """Reduce width:height by their greatest common divisor."""
    divisor = gcd(width, height)
    if divisor == 0:
        raise ValueError(f"Cannot compute aspect ratio of {width}x{height}")
    return f"{width // divisor}:{height // divisor}"


def human_readable_size(size_bytes: int) -> str:
    """Convert bytes to human readable format."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


def count_words(text: str) -> int:
    return len(text.split())


def detect_encoding(text: str) -> str:
    """Classify decoded text as ASCII, UTF-8 or Binary/Unknown."""
    if '\ufffd' in text:
        return 'Binary/Unknown'
    if any(ord(char) > 0x7f for char in text):
        return 'UTF-8'
    return 'ASCII'


def detect_language(text: str, sample_chars: int = 1000, threshold: int = 3) -> str:
    """Score stop-word matches over the sample; the best language needs more than `threshold` hits."""
    sample = text[:sample_chars].lower()
    max_matches = 0
    detected = 'Unknown'
    for language, pattern in LANGUAGE_PATTERNS.items():
        matches = len(pattern.findall(sample))
        if matches > max_matches:
            max_matches = matches
            detected = language
    return detected if max_matches > threshold else 'Unknown'
