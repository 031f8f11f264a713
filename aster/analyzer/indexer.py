"""Index builder: parallel per-file extraction, deterministic merge.

Extraction of one file never depends on another, so files are scanned by
a bounded thread pool. Results are merged only after every task finished,
in sorted path order, so the same inputs always yield the same index
regardless of which worker finished first.
"""
import os
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from aster.analyzer.cache import compute_fingerprint
from aster.analyzer.extractor import ExtractorRegistry
from aster.analyzer.models import FileRecord, Index, Occurrence, RawOccurrence
from aster.analyzer.normalizer import normalize
from aster.errors import Diagnostic, Diagnostics, ExtractionError, NormalizationError


@dataclass(frozen=True)
class ScanInput:
    """One candidate file handed over by discovery."""
    path: str
    kind: str  # 'resource', 'resource-file', 'manifest' or 'source'
    tag: str  # extractor tag


@dataclass
class FileScan:
    """Extraction result for a single file."""
    record: Optional[FileRecord]
    occurrences: List[Occurrence] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


def occurrence_sort_key(occurrence: Occurrence):
    return (occurrence.line, occurrence.column, occurrence.start, occurrence.end,
            occurrence.kind.value, occurrence.identifier)


def normalize_occurrences(raw: Iterable[RawOccurrence], file_path: str,
                          diagnostics: Diagnostics) -> List[Occurrence]:
    """Normalize raw occurrences; unclassifiable ones are recorded and dropped."""
    occurrences = []
    for item in raw:
        try:
            identifier = normalize(item.raw_type, item.raw_name)
        except NormalizationError as e:
            diagnostics.add(Diagnostic(type(e).__name__, file_path, str(e), item.line))
            continue
        occurrences.append(Occurrence(
            identifier=identifier,
            kind=item.kind,
            file_path=file_path,
            line=item.line,
            column=item.column,
            start=item.start,
            end=item.end,
            whole_file=item.whole_file,
        ))
    occurrences.sort(key=occurrence_sort_key)
    return occurrences


def stat_record(scan_input: ScanInput, absolute: Path, relative: str) -> FileRecord:
    stat = absolute.stat()
    return FileRecord(
        path=relative,
        kind=scan_input.kind,
        language=scan_input.tag,
        mtime=stat.st_mtime,
        size=stat.st_size,
    )


class Indexer:
    """Build an Index from a list of scan inputs."""

    def __init__(self, scan_root: str | Path, language: str = 'all', workers: Optional[int] = None):
        """Initialize indexer.

        Args:
            scan_root: Directory the index belongs to; stored paths are relative to it
            language: Source language tag the index was built for
            workers: Maximum number of extraction threads
        """
        self.scan_root = Path(scan_root).resolve()
        self.language = language
        self.workers = workers or min(32, (os.cpu_count() or 1) + 4)

    def relative(self, path: str | Path) -> str:
        """Path as stored in the index: POSIX, relative to the scan root when inside it."""
        absolute = Path(path).resolve()
        try:
            return absolute.relative_to(self.scan_root).as_posix()
        except ValueError:
            return str(absolute)

    def scan_file(self, scan_input: ScanInput) -> FileScan:
        """Extract and normalize one file. Never raises for bad content.

        Args:
            scan_input: File to scan

        Returns:
            FileScan with the file's record, occurrences and diagnostics
        """
        absolute = self.scan_root / scan_input.path
        relative = self.relative(absolute)
        diagnostics = Diagnostics()

        try:
            record = stat_record(scan_input, absolute, relative)
        except OSError as e:
            diagnostics.record(ExtractionError(relative, f"missing: {e.strerror or e}"))
            return FileScan(None, [], list(diagnostics))

        try:
            content = absolute.read_bytes()
        except OSError as e:
            # Keep the record: the file exists, it just contributes nothing.
            diagnostics.record(ExtractionError(relative, f"unreadable: {e.strerror or e}"))
            return FileScan(record, [], list(diagnostics))

        try:
            extractor = ExtractorRegistry.for_tag(scan_input.tag)
            raw = list(extractor.extract(relative, content))
        except ExtractionError as e:
            diagnostics.record(e)
            return FileScan(record, [], list(diagnostics))

        occurrences = normalize_occurrences(raw, relative, diagnostics)
        return FileScan(record, occurrences, list(diagnostics))

    def build(self, inputs: Iterable[ScanInput], previous: Optional[Index] = None,
              progress: Optional[Callable[[str], None]] = None) -> Index:
        """Scan every input and build the index.

        Files whose mtime and size match ``previous`` reuse its occurrences
        instead of being extracted again; the result is the same as a full
        rebuild. A KeyboardInterrupt cancels the pending work and propagates.

        Args:
            inputs: Files to scan
            previous: Earlier index of the same scan root, if any
            progress: Called with each file path as it completes

        Returns:
            The built Index
        """
        ordered = sorted(set(inputs), key=lambda item: item.path)
        scans: Dict[str, FileScan] = {}

        reusable = self._reusable_scans(previous)
        pending = []
        for scan_input in ordered:
            relative = self.relative(self.scan_root / scan_input.path)
            cached = reusable.get(relative)
            if cached is not None and self._unchanged(cached.record, scan_input):
                scans[scan_input.path] = cached
                if progress:
                    progress(scan_input.path)
            else:
                pending.append(scan_input)

        scans.update(self._scan_parallel(pending, progress))
        return self._merge(ordered, scans)

    def _scan_parallel(self, pending: List[ScanInput],
                       progress: Optional[Callable[[str], None]]) -> Dict[str, FileScan]:
        results: Dict[str, FileScan] = {}
        if not pending:
            return results

        executor = ThreadPoolExecutor(max_workers=self.workers)
        try:
            futures = {executor.submit(self.scan_file, item): item for item in pending}
            for future in as_completed(futures):
                item = futures[future]
                results[item.path] = future.result()
                if progress:
                    progress(item.path)
        except BaseException:
            # Partial results are dropped with the pool; nothing was persisted.
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown()
        return results

    def _merge(self, ordered: List[ScanInput], scans: Dict[str, FileScan]) -> Index:
        index = Index(scan_root=str(self.scan_root), language=self.language, built_at=time.time())
        for scan_input in ordered:
            scan = scans[scan_input.path]
            if scan.record is not None:
                index.files[scan.record.path] = scan.record
            for occurrence in scan.occurrences:
                index.entry(occurrence.identifier).add(occurrence)
            index.diagnostics.extend(scan.diagnostics)

        index.fingerprint = compute_fingerprint(index.files.values())
        return index

    def _reusable_scans(self, previous: Optional[Index]) -> Dict[str, FileScan]:
        if previous is None or previous.stale or Path(previous.scan_root) != self.scan_root:
            return {}

        occurrences = defaultdict(list)
        for occurrence in previous.occurrences():
            occurrences[occurrence.file_path].append(occurrence)
        diagnostics = defaultdict(list)
        for diagnostic in previous.diagnostics:
            diagnostics[diagnostic.path].append(diagnostic)

        return {
            path: FileScan(record, sorted(occurrences[path], key=occurrence_sort_key), diagnostics[path])
            for path, record in previous.files.items()
        }

    def _unchanged(self, record: FileRecord, scan_input: ScanInput) -> bool:
        if record.language != scan_input.tag or record.kind != scan_input.kind:
            return False
        try:
            stat = (self.scan_root / scan_input.path).stat()
        except OSError:
            return False
        return stat.st_mtime == record.mtime and stat.st_size == record.size


def build_index(scan_root: str | Path, inputs: Iterable[ScanInput], language: str = 'all',
                workers: Optional[int] = None, previous: Optional[Index] = None) -> Index:
    """Convenience wrapper used by tests and the CLI."""
    return Indexer(scan_root, language, workers).build(inputs, previous=previous)
