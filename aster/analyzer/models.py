"""Core data model: identifiers, occurrences, entries and the index."""
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from aster.errors import Diagnostic


class OccurrenceKind(str, Enum):
    DEFINITION = "definition"
    USAGE = "usage"


class EntryState(str, Enum):
    USED = "used"
    UNUSED = "unused"
    UNDECLARED = "undeclared"


@dataclass(frozen=True, order=True)
class ResourceIdentifier:
    """Canonical resource key, e.g. ``string/app_name``."""
    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}/{self.name}"

    @classmethod
    def parse(cls, text: str) -> "ResourceIdentifier":
        resource_type, _, name = text.partition("/")
        return cls(resource_type, name)


@dataclass(frozen=True)
class RawOccurrence:
    """An occurrence as reported by an extractor, before normalization."""
    raw_type: str
    raw_name: str
    kind: OccurrenceKind
    line: int
    column: int
    start: int
    end: int
    whole_file: bool = False


@dataclass(frozen=True)
class Occurrence:
    """One mention of a resource in one file.

    ``start``/``end`` is the minimal removable byte span (end exclusive).
    ``whole_file`` marks definitions whose removal means removing the file.
    """
    identifier: ResourceIdentifier
    kind: OccurrenceKind
    file_path: str
    line: int
    column: int
    start: int
    end: int
    whole_file: bool = False

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.line}:{self.column}"


@dataclass
class ResourceEntry:
    """All definitions and usages of one identifier."""
    identifier: ResourceIdentifier
    definitions: List[Occurrence] = field(default_factory=list)
    usages: List[Occurrence] = field(default_factory=list)

    @property
    def state(self) -> Optional[EntryState]:
        if self.definitions and self.usages:
            return EntryState.USED
        if self.definitions:
            return EntryState.UNUSED
        if self.usages:
            return EntryState.UNDECLARED
        return None

    def add(self, occurrence: Occurrence):
        if occurrence.kind == OccurrenceKind.DEFINITION:
            self.definitions.append(occurrence)
        else:
            self.usages.append(occurrence)

    def discard(self, occurrence: Occurrence) -> bool:
        bucket = self.definitions if occurrence.kind == OccurrenceKind.DEFINITION else self.usages
        try:
            bucket.remove(occurrence)
        except ValueError:
            return False
        return True

    def is_empty(self) -> bool:
        return not self.definitions and not self.usages

    def same_sites(self, other: "ResourceEntry") -> bool:
        """Compare occurrence multisets, ignoring order."""
        return (
            self.identifier == other.identifier
            and Counter(self.definitions) == Counter(other.definitions)
            and Counter(self.usages) == Counter(other.usages)
        )


@dataclass(frozen=True)
class FileRecord:
    """A scanned input file and the stat signal used for staleness checks."""
    path: str
    kind: str  # 'resource', 'resource-file', 'manifest' or 'source'
    language: str  # extractor tag
    mtime: float
    size: int

    @property
    def cache_key(self) -> str:
        return f"{self.mtime}:{self.size}"


@dataclass
class Index:
    """Mapping from identifier to entry plus scan metadata."""
    scan_root: str
    language: str
    built_at: float
    fingerprint: str = ""
    entries: Dict[ResourceIdentifier, ResourceEntry] = field(default_factory=dict)
    files: Dict[str, FileRecord] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    stale: bool = False

    def entry(self, identifier: ResourceIdentifier) -> ResourceEntry:
        entry = self.entries.get(identifier)
        if entry is None:
            entry = ResourceEntry(identifier)
            self.entries[identifier] = entry
        return entry

    def occurrences(self):
        """Yield every occurrence, grouped by identifier in sorted order."""
        for identifier in sorted(self.entries):
            entry = self.entries[identifier]
            yield from entry.definitions
            yield from entry.usages

    def occurrences_by_file(self) -> Dict[str, List[Occurrence]]:
        """Every occurrence grouped by file, in one pass over the index."""
        sites: Dict[str, List[Occurrence]] = defaultdict(list)
        for occurrence in self.occurrences():
            sites[occurrence.file_path].append(occurrence)
        return dict(sites)

    def prune(self, occurrences) -> int:
        """Remove exactly the given occurrences; drop entries left empty."""
        removed = 0
        for occurrence in occurrences:
            entry = self.entries.get(occurrence.identifier)
            if entry is not None and entry.discard(occurrence):
                removed += 1
                if entry.is_empty():
                    del self.entries[occurrence.identifier]
        return removed

    def equivalent(self, other: "Index") -> bool:
        """Equality up to occurrence order inside each entry."""
        if set(self.entries) != set(other.entries):
            return False
        return all(self.entries[k].same_sites(other.entries[k]) for k in self.entries)
