#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Core Metadata Extraction Module
Runs the extraction pipeline for one file and assembles a MetadataRecord:
- Identity fields from the submitted file handle
- File signature, entropy and encryption heuristic
- SHA-256 and MD5 digests
- Format-specific metadata (images, audio/video, PDF, text, ZIP)
- Executable and embedded-metadata flags, processing time
Each stage is fault tolerant: a failing stage is logged and its fields are
left unset. Only a file whose bytes cannot be read fails the whole run.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from config import Config
from errors import (ClassificationMiss, DecodeFailure, DecodeTimeout,
                    StructuralParseFailure, UnreadableInput)
from extractors import EXTRACTORS, FormatExtractor, classify
from models import ByteSampler, FileHandle, MetadataRecord
from utils import calculate_data_entropy, calculate_hashes, detect_encryption, file_signature


class MetadataExtractor:
    def __init__(self, config: Config = None, logger: logging.Logger = None):
        self.config = config or Config()
        self.logger = logger or logging.getLogger('filelens')
        self.decode_executor = ThreadPoolExecutor(max_workers=self.config.max_workers,
                                                  thread_name_prefix='decode')
        self.extractors = {
            kind: extractor_cls(self.config, self.logger, self.decode_executor)
            for kind, extractor_cls in EXTRACTORS.items()
        }

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        # Timed-out decodes may still be running; don't wait for them.
        self.decode_executor.shutdown(wait=False)

    def extract(self, handle: FileHandle) -> MetadataRecord:
        """Extract metadata from one file. Raises UnreadableInput if its bytes can't be read."""
        start = time.perf_counter()
        sampler = ByteSampler(handle)
        data = sampler.full_bytes()
        self.logger.info(f"Extracting metadata: {handle.name} ({handle.size} bytes)")
        record = MetadataRecord()
        record.update(self.extract_identity(handle))
        self._run_stage('signature', handle, record,
                        lambda: {'file_signature': file_signature(data, self.config.signature_length)})
        extractor = self.select_extractor(handle)
        format_fields: Dict[str, Any] = {}
        if extractor is not None:
            self.logger.debug(f"Performing {extractor.kind.value} metadata extraction")
            format_fields = self._run_stage(extractor.kind.value, handle, record,
                                            lambda: extractor.extract(handle, sampler))
        self._run_stage('hashes', handle, record, lambda: calculate_hashes(data))
        self._run_stage('entropy', handle, record, lambda: {
            'entropy': calculate_data_entropy(sampler.prefix(self.config.entropy_sample_bytes))
        })
        self._run_stage('executable', handle, record,
                        lambda: {'is_executable': self.is_executable(handle.name)})
        self._run_stage('encryption', handle, record,
                        lambda: {'is_encrypted': self.detect_encryption(sampler, record.entropy)})
        self._run_stage('embedded metadata', handle, record, lambda: {
            'has_metadata': (extractor.has_embedded_metadata(handle, sampler, format_fields)
                             if extractor is not None else False)
        })
        record.processing_time_ms = round((time.perf_counter() - start) * 1000, 2)
        self.logger.info(f"Extraction completed for {handle.name} in {record.processing_time_ms} ms")
        return record

    def extract_identity(self, handle: FileHandle) -> Dict[str, Any]:
        return {
            'name': handle.name,
            'mime_type': handle.mime_type,
            'size': handle.size,
            'extension': handle.extension,
            'last_modified': handle.last_modified,
        }

    def select_extractor(self, handle: FileHandle) -> Optional[FormatExtractor]:
        try:
            kind = classify(handle.mime_type, handle.name)
        except ClassificationMiss as e:
            self.logger.debug(str(e))
            return None
        return self.extractors[kind]

    def is_executable(self, name: str) -> bool:
        extension = name.rsplit('.', 1)[-1].lower() if '.' in name else ''
        return extension in self.config.executable_extensions

    def detect_encryption(self, sampler: ByteSampler, entropy: Optional[float]) -> bool:
        if entropy is None:
            entropy = calculate_data_entropy(sampler.prefix(self.config.entropy_sample_bytes))
        return detect_encryption(sampler.prefix(self.config.encryption_probe_bytes), entropy,
                                 self.config.encrypted_signatures,
                                 self.config.entropy_encryption_threshold)

    def _run_stage(self, stage: str, handle: FileHandle, record: MetadataRecord,
                   func: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """Run one pipeline stage and merge its fields; failures leave the fields unset."""
        try:
            fields = func()
        except (DecodeTimeout, DecodeFailure, StructuralParseFailure) as e:
            self.logger.warning(f"{stage} stage skipped for {handle.name}: {e}")
            return {}
        except Exception as e:
            self.logger.error(f"Error in {stage} stage for {handle.name}: {e}")
            return {}
        record.update(fields)
        return fields

    def analyze_file(self, filepath: Union[str, Path]) -> MetadataRecord:
        """Read a file from disk and extract its metadata."""
        return self.extract(FileHandle.from_path(filepath))

    def extract_many(self, handles: List[FileHandle],
                     progress_callback=None) -> List[Union[MetadataRecord, UnreadableInput]]:
        """Extract independent files on a worker pool.

        Results come back in the order of `handles`; a file whose bytes can't
        be read is reported by its UnreadableInput instead of a record.
        """
        results: List[Union[MetadataRecord, UnreadableInput, None]] = [None] * len(handles)
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            future_to_index = {
                executor.submit(self.extract, handle): index
                for index, handle in enumerate(handles)
            }
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    results[index] = future.result()
                except UnreadableInput as e:
                    self.logger.error(f"Cannot read {handles[index].name}: {e}")
                    results[index] = e
                if progress_callback:
                    progress_callback()
        return results

    def analyze_multiple_files(self, filepaths: List[Union[str, Path]],
                               progress_callback=None) -> Dict[str, Dict[str, Any]]:
        """Analyze multiple files with threading support."""
        results: Dict[str, Dict[str, Any]] = {}
        readable = []
        for path in filepaths:
            try:
                readable.append((path, FileHandle.from_path(path)))
            except UnreadableInput as e:
                self.logger.error(f"Cannot read {path}: {e}")
                results[str(path)] = {'error': str(e)}
                if progress_callback:
                    progress_callback()
        records = self.extract_many([handle for _, handle in readable], progress_callback)
        for (path, _), record in zip(readable, records):
            if isinstance(record, UnreadableInput):
                results[str(path)] = {'error': str(record)}
            else:
                results[str(path)] = record.to_dict()
        return results


class ExtractionSession:
    """Runs extractions in the background on behalf of one consumer.

    Submitting a new file supersedes any extraction still in flight: its
    result is discarded when it completes and never reaches the callbacks.
    """
    def __init__(self, extractor: MetadataExtractor,
                 on_result: Callable[[FileHandle, MetadataRecord], None],
                 on_error: Callable[[FileHandle, Exception], None] = None):
        self.extractor = extractor
        self.on_result = on_result
        self.on_error = on_error
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='extract')
        self._lock = threading.RLock()
        self._generation = 0
        self._current: Optional[Future] = None

    def submit(self, handle: FileHandle) -> Future:
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._current is not None:
                self._current.cancel()
            future = self._executor.submit(self.extractor.extract, handle)
            self._current = future
        future.add_done_callback(lambda f: self._deliver(generation, handle, f))
        return future

    def _deliver(self, generation: int, handle: FileHandle, future: Future):
        with self._lock:
            if generation != self._generation or future.cancelled():
                self.extractor.logger.debug(f"Discarding superseded result for {handle.name}")
                return
            error = future.exception()
            if error is None:
                self.on_result(handle, future.result())
            elif self.on_error is not None:
                self.on_error(handle, error)
            else:
                self.extractor.logger.error(f"Extraction failed for {handle.name}: {error}")

    def close(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
