#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Error types raised during metadata extraction.

Only UnreadableInput escapes MetadataExtractor.extract(); everything else is
caught at the stage that raised it and turns into missing fields.
"""


class ExtractionError(Exception):
    """Base class for extraction errors."""


class UnreadableInput(ExtractionError):
    """The file's bytes could not be read at all."""


class DecodeTimeout(ExtractionError):
    """An image or media decode did not finish before its deadline."""


class DecodeFailure(ExtractionError):
    """A decoder rejected the data (corrupt or unsupported format)."""


class StructuralParseFailure(ExtractionError):
    """A structural scan of a container could not make sense of the bytes."""


class ClassificationMiss(ExtractionError):
    """No format-specific extractor applies to the file."""
