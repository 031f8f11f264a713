"""Remove resource declarations and references from the files that hold them.

Every file is handled as one transaction: the spans to cut are computed up
front as an immutable plan, checked against a fresh parse of the file,
applied in descending offset order on an in-memory copy, and the result
replaces the file atomically after a backup went to the trash.
"""
import bisect
import os
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from aster.analyzer.cache import IndexStore, compute_fingerprint
from aster.analyzer.extractor import ExtractorRegistry
from aster.analyzer.indexer import ScanInput, normalize_occurrences, occurrence_sort_key, stat_record
from aster.analyzer.models import FileRecord, Index, Occurrence, OccurrenceKind, ResourceIdentifier
from aster.analyzer.query import QueryEngine
from aster.errors import (
    Diagnostic, Diagnostics, ExtractionError, InUseError, MutationIOError, StaleIndexError,
)
from aster.reaper.atomic import atomic_write_bytes
from aster.reaper.safe_delete import SafeDeleter


@dataclass(frozen=True)
class FilePlan:
    """Occurrences to remove from one file."""
    path: str
    occurrences: Tuple[Occurrence, ...]

    @property
    def removes_file(self) -> bool:
        return any(o.whole_file and o.kind == OccurrenceKind.DEFINITION for o in self.occurrences)

    @property
    def identifiers(self) -> List[str]:
        return sorted({str(o.identifier) for o in self.occurrences})


@dataclass
class FileOutcome:
    """What happened to one file. ``fresh`` replaces the file's occurrences in the index."""
    path: str
    action: str  # 'edited', 'deleted' or 'skipped'
    applied: List[Occurrence] = field(default_factory=list)
    fresh: List[Occurrence] = field(default_factory=list)
    record: Optional[FileRecord] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)
    stale: bool = False


@dataclass
class RemovalReport:
    run_id: Optional[str]
    files_modified: int = 0
    files_deleted: int = 0
    identifiers_removed: List[ResourceIdentifier] = field(default_factory=list)
    skipped_stale: int = 0
    skipped_files: List[str] = field(default_factory=list)
    planned_files: List[str] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def backup_ids(self) -> List[str]:
        """Ids to pass to restore() to undo this run."""
        return [self.run_id] if self.run_id and (self.files_modified or self.files_deleted) else []


def merge_spans(spans: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Union of overlapping byte ranges, sorted ascending."""
    merged: List[Tuple[int, int]] = []
    for start, end in sorted(spans):
        if merged and start < merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def apply_spans(content: bytes, spans: Iterable[Tuple[int, int]]) -> bytes:
    """Cut the spans out of content, last first so earlier offsets stay valid."""
    modified = bytearray(content)
    for start, end in sorted(merge_spans(spans), reverse=True):
        del modified[start:end]
    return bytes(modified)


def covering(plan: FilePlan, occurrence: Occurrence) -> List[Occurrence]:
    """Planned occurrences whose removal also removes ``occurrence``."""
    if plan.removes_file:
        return [o for o in plan.occurrences if o.whole_file and o.kind == OccurrenceKind.DEFINITION]
    if occurrence.whole_file:
        return []
    return [
        o for o in plan.occurrences
        if o.start < o.end and o.start <= occurrence.start and occurrence.end <= o.end
    ]


class ResourceRemover:
    """Deletes the occurrences of selected identifiers and keeps the index in step."""

    def __init__(self, index: Index, store: Optional[IndexStore] = None,
                 safe_deleter: Optional[SafeDeleter] = None, workers: Optional[int] = None,
                 ignore: Iterable[str] = ()):
        """Initialize remover.

        Args:
            index: Index loaded read-write; updated in place
            store: Where to re-persist the index after edits (None: do not persist)
            safe_deleter: Trash for backups and removed files (None: no backups)
            workers: Maximum number of files edited concurrently
            ignore: Name substrings never selected for removal
        """
        self.index = index
        self.store = store
        self.safe_deleter = safe_deleter
        self.workers = workers or min(32, (os.cpu_count() or 1) + 4)
        self.query = QueryEngine(index, ignore=ignore)
        self.scan_root = Path(index.scan_root)
        self._sites: Dict[str, List[Occurrence]] = {}

    def select_unused(self, prefix: Optional[str] = None, resource_type: Optional[str] = None,
                      protected_types: Sequence[str] = ()) -> List[ResourceIdentifier]:
        """Unused identifiers to remove; protected types only when asked for by name."""
        return [
            identifier for identifier in self.query.list_unused(prefix, resource_type)
            if identifier.type == resource_type or identifier.type not in protected_types
        ]

    def plan(self, targets: Iterable[ResourceIdentifier]) -> Dict[str, FilePlan]:
        """Group every occurrence of the targets by file."""
        by_file: Dict[str, List[Occurrence]] = defaultdict(list)
        for identifier in sorted(set(targets)):
            entry = self.query.resolve(identifier)
            if entry is None:
                continue
            for occurrence in entry.definitions + entry.usages:
                by_file[occurrence.file_path].append(occurrence)

        return {
            path: FilePlan(path, tuple(sorted(occurrences, key=occurrence_sort_key)))
            for path, occurrences in sorted(by_file.items())
        }

    def hold_back(self, targets: Iterable[ResourceIdentifier]
                  ) -> Tuple[List[ResourceIdentifier], List[Diagnostic]]:
        """Drop targets whose removal would take a used resource's declaration along.

        One span can declare several identifiers: ``<attr name="x" format=..>``
        inside ``<declare-styleable name="Outer">`` declares ``styleable/Outer_x``
        and ``attr/x``, and the Outer element encloses every inner ``<attr>``.
        A resource is protected when every one of its declarations would be
        cut while a usage outside the cuts remains.

        Returns:
            (targets safe to remove, one InUseError diagnostic per held target)
        """
        wanted = sorted(set(targets))
        wanted_set = set(wanted)
        sites = self.index.occurrences_by_file()

        cut: Set[Occurrence] = set()
        culprits: Dict[ResourceIdentifier, Set[ResourceIdentifier]] = defaultdict(set)
        for path, plan in self.plan(wanted).items():
            spans = merge_spans((o.start, o.end) for o in plan.occurrences if o.start < o.end)
            starts = [start for start, _ in spans]
            for other in sites.get(path, ()):
                if other.identifier in wanted_set:
                    continue
                if not plan.removes_file:
                    slot = bisect.bisect_right(starts, other.start) - 1
                    if slot < 0 or other.end > spans[slot][1]:
                        continue
                cutters = covering(plan, other)
                if cutters:
                    cut.add(other)
                    culprits[other.identifier].update(o.identifier for o in cutters)

        held: Dict[ResourceIdentifier, Tuple[ResourceIdentifier, Occurrence]] = {}
        for identifier in sorted(culprits):
            entry = self.index.entries[identifier]
            if not entry.definitions or not all(d in cut for d in entry.definitions):
                continue
            if all(u in cut for u in entry.usages):
                continue
            for culprit in sorted(culprits[identifier]):
                held.setdefault(culprit, (identifier, entry.definitions[0]))

        diagnostics = [
            Diagnostic.from_error(InUseError(
                site.file_path,
                f"{culprit} kept: removing it would also remove {identifier}, which is still used",
                site.line,
            ))
            for culprit, (identifier, site) in sorted(held.items())
        ]
        return [t for t in wanted if t not in held], diagnostics

    def remove_unused(self, prefix: Optional[str] = None, resource_type: Optional[str] = None,
                      protected_types: Sequence[str] = (), dry_run: bool = False) -> RemovalReport:
        targets = self.select_unused(prefix, resource_type, protected_types)
        return self.remove(targets, dry_run=dry_run)

    def remove(self, targets: Iterable[ResourceIdentifier], dry_run: bool = False) -> RemovalReport:
        """Remove all definitions and usages of the targets.

        Args:
            targets: Identifiers to remove
            dry_run: Only compute the plan; touch nothing

        Returns:
            RemovalReport with per-run totals and diagnostics
        """
        targets, held = self.hold_back(targets)
        plans = self.plan(targets)
        if dry_run:
            report = RemovalReport(run_id=None, planned_files=list(plans))
            report.identifiers_removed = sorted({o.identifier for p in plans.values() for o in p.occurrences})
            report.diagnostics.extend(held)
            return report

        run_id = self.safe_deleter.new_run() if self.safe_deleter else None
        report = RemovalReport(run_id=run_id)
        report.diagnostics.extend(held)
        if not plans:
            return report

        self._sites = self.index.occurrences_by_file()
        outcomes = self._apply_parallel(list(plans.values()), run_id)
        self._update_index(outcomes)
        self._summarize(outcomes, report)

        if (report.files_modified or report.files_deleted) and self.store is not None:
            try:
                self.store.save(self.index)
            except OSError:
                self.store.mark_stale()
                raise
        return report

    # --- Per-file transaction ---------------------------------------------

    def _apply_parallel(self, plans: List[FilePlan], run_id: Optional[str]) -> List[FileOutcome]:
        # One task per file: no two workers ever touch the same file.
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            return list(executor.map(lambda p: self.apply_plan(p, run_id), plans))

    def apply_plan(self, plan: FilePlan, run_id: Optional[str] = None) -> FileOutcome:
        """Apply one file's plan. Problems are reported in the outcome, not raised."""
        record = self.index.files.get(plan.path)
        absolute = self.scan_root / plan.path

        try:
            self._check_unchanged(plan.path, absolute, record)
        except StaleIndexError as e:
            return FileOutcome(plan.path, 'skipped', diagnostics=[Diagnostic.from_error(e, plan.path)], stale=True)

        if plan.removes_file:
            return self._remove_file(plan, absolute, run_id)

        try:
            content = absolute.read_bytes()
        except OSError as e:
            error = MutationIOError(f"{plan.path}: cannot read: {e.strerror or e}")
            return FileOutcome(plan.path, 'skipped', diagnostics=[Diagnostic.from_error(error, plan.path)])

        try:
            current = self._extract(plan.path, record, content)
            self._check_spans(plan, current)
        except ExtractionError as e:
            return FileOutcome(plan.path, 'skipped', diagnostics=[Diagnostic.from_error(e, plan.path)])
        except StaleIndexError as e:
            return FileOutcome(plan.path, 'skipped', diagnostics=[Diagnostic.from_error(e, plan.path)], stale=True)

        modified = apply_spans(content, [(o.start, o.end) for o in plan.occurrences])
        diagnostics = Diagnostics()
        try:
            fresh = normalize_occurrences(
                ExtractorRegistry.for_tag(record.language).extract(plan.path, modified),
                plan.path, diagnostics,
            )
        except ExtractionError as e:
            # The cut would leave the file unparseable: keep the original.
            error = ExtractionError(plan.path, f"removal would corrupt the file: {e}")
            return FileOutcome(plan.path, 'skipped', diagnostics=[Diagnostic.from_error(error, plan.path)])

        try:
            if self.safe_deleter is not None:
                self.safe_deleter.backup(absolute, run_id, plan.identifiers)
            atomic_write_bytes(absolute, modified)
            new_record = stat_record(ScanInput(plan.path, record.kind, record.language), absolute, plan.path)
        except OSError as e:
            error = MutationIOError(f"{plan.path}: cannot write: {e.strerror or e}")
            return FileOutcome(plan.path, 'skipped', diagnostics=[Diagnostic.from_error(error, plan.path)])

        return FileOutcome(plan.path, 'edited', applied=list(plan.occurrences), fresh=fresh,
                           record=new_record, diagnostics=list(diagnostics))

    def _remove_file(self, plan: FilePlan, absolute: Path, run_id: Optional[str]) -> FileOutcome:
        try:
            if self.safe_deleter is not None:
                self.safe_deleter.delete(absolute, run_id, plan.identifiers)
            else:
                absolute.unlink()
        except OSError as e:
            error = MutationIOError(f"{plan.path}: cannot remove: {e.strerror or e}")
            return FileOutcome(plan.path, 'skipped', diagnostics=[Diagnostic.from_error(error, plan.path)])

        # Everything the file declared or referenced leaves with it.
        applied = list(self._sites.get(plan.path, ()))
        return FileOutcome(plan.path, 'deleted', applied=applied)

    def _check_unchanged(self, path: str, absolute: Path, record: Optional[FileRecord]):
        if record is None:
            raise StaleIndexError(f"{path}: not in the index")
        try:
            stat = absolute.stat()
        except OSError:
            raise StaleIndexError(f"{path}: missing since the index was built") from None
        if stat.st_mtime != record.mtime or stat.st_size != record.size:
            raise StaleIndexError(f"{path}: changed since the index was built")

    def _extract(self, path: str, record: FileRecord, content: bytes) -> List[Occurrence]:
        extractor = ExtractorRegistry.for_tag(record.language)
        return normalize_occurrences(extractor.extract(path, content), path, Diagnostics())

    @staticmethod
    def _check_spans(plan: FilePlan, current: List[Occurrence]):
        """Every planned span must still hold the same reference."""
        present = {(o.identifier, o.kind, o.start, o.end) for o in current}
        for occurrence in plan.occurrences:
            if (occurrence.identifier, occurrence.kind, occurrence.start, occurrence.end) not in present:
                raise StaleIndexError(
                    f"{plan.path}: {occurrence.identifier} no longer at line {occurrence.line}"
                )

    # --- Index bookkeeping --------------------------------------------------

    def _update_index(self, outcomes: List[FileOutcome]):
        touched = set()
        changed = set()
        for outcome in outcomes:
            if outcome.action not in ('edited', 'deleted'):
                continue

            # Offsets of the file's other occurrences moved, so the file's
            # occurrences are swapped for the ones parsed from the new bytes.
            old = self._sites.get(outcome.path, [])
            self.index.prune(old)
            for occurrence in outcome.fresh:
                self.index.entry(occurrence.identifier).add(occurrence)
            touched.update(o.identifier for o in old + outcome.fresh)

            changed.add(outcome.path)
            if outcome.action == 'deleted':
                self.index.files.pop(outcome.path, None)
            else:
                self.index.files[outcome.path] = outcome.record

        # Each changed file's diagnostics come from its latest extraction.
        self.index.diagnostics = [d for d in self.index.diagnostics if d.path not in changed]
        for outcome in outcomes:
            if outcome.path in changed:
                self.index.diagnostics.extend(outcome.diagnostics)

        def by_site(occurrence: Occurrence):
            return (occurrence.file_path, occurrence_sort_key(occurrence))

        for identifier in touched:
            entry = self.index.entries.get(identifier)
            if entry is not None:
                entry.definitions.sort(key=by_site)
                entry.usages.sort(key=by_site)

        self.index.fingerprint = compute_fingerprint(self.index.files.values())

    def _summarize(self, outcomes: List[FileOutcome], report: RemovalReport):
        removed = set()
        for outcome in outcomes:
            if outcome.action == 'edited':
                report.files_modified += 1
            elif outcome.action == 'deleted':
                report.files_deleted += 1
            else:
                report.skipped_files.append(outcome.path)
                if outcome.stale:
                    report.skipped_stale += 1
            report.diagnostics.extend(
                d for d in outcome.diagnostics if outcome.action == 'skipped'
            )
            removed.update(o.identifier for o in outcome.applied)

        # An identifier counts as removed once none of its occurrences remain.
        report.identifiers_removed = sorted(i for i in removed if i not in self.index.entries)


def restore(backup_ids: Iterable[str], safe_deleter: SafeDeleter,
            store: Optional[IndexStore] = None) -> List[str]:
    """Undo removal runs from the trash.

    The restored files no longer match the index, so the persisted index is
    marked stale and the next command rebuilds it.

    Returns:
        Original paths that were restored

    Raises:
        ValueError: If a run id is unknown
        IOError: If some files could not be restored
    """
    restored = []
    try:
        for backup_id in backup_ids:
            restored.extend(safe_deleter.restore_run(backup_id))
    finally:
        if restored and store is not None:
            store.mark_stale()
    return restored
