"""Read-only queries over a loaded index."""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from aster.analyzer.models import EntryState, Index, ResourceEntry, ResourceIdentifier


@dataclass(frozen=True)
class Counts:
    defined: int
    used: int
    unused: int
    undeclared: int


class QueryEngine:
    """Counts, unused listings and lookups. Never mutates the index."""

    def __init__(self, index: Index, ignore: Iterable[str] = ()):
        """Initialize query engine.

        Args:
            index: Loaded index
            ignore: Name substrings excluded from unused listings and counts
        """
        self.index = index
        self.ignore = tuple(s for s in ignore if s)

    def counts(self) -> Counts:
        """Distinct identifiers per state; each identifier is counted once."""
        defined = used = unused = undeclared = 0
        for entry in self.index.entries.values():
            if entry.definitions:
                defined += 1
            if entry.usages:
                used += 1
            if entry.state == EntryState.UNUSED and not self._ignored(entry.identifier):
                unused += 1
            elif entry.state == EntryState.UNDECLARED:
                undeclared += 1
        return Counts(defined, used, unused, undeclared)

    def list_unused(self, prefix: Optional[str] = None,
                    resource_type: Optional[str] = None) -> List[ResourceIdentifier]:
        """Identifiers with definitions and no usages, sorted by (type, name).

        Args:
            prefix: Keep only names starting with this prefix
            resource_type: Keep only this resource type (e.g. 'string')
        """
        return [entry.identifier for entry in self.list_unused_with_sites(prefix, resource_type)]

    def list_unused_with_sites(self, prefix: Optional[str] = None,
                               resource_type: Optional[str] = None) -> List[ResourceEntry]:
        """Same as list_unused but returns the entries with their definition sites."""
        return self._select(EntryState.UNUSED, prefix, resource_type)

    def list_undeclared(self, prefix: Optional[str] = None,
                        resource_type: Optional[str] = None) -> List[ResourceEntry]:
        """Identifiers used but never defined in the scanned files.

        These are anomalies (typos, library or deleted resources), distinct
        from both used and unused resources.
        """
        return self._select(EntryState.UNDECLARED, prefix, resource_type, apply_ignore=False)

    def resolve(self, identifier: ResourceIdentifier) -> Optional[ResourceEntry]:
        return self.index.entries.get(identifier)

    def _select(self, state: EntryState, prefix: Optional[str], resource_type: Optional[str],
                apply_ignore: bool = True) -> List[ResourceEntry]:
        selected = []
        for identifier in sorted(self.index.entries):
            entry = self.index.entries[identifier]
            if entry.state != state:
                continue
            if prefix and not identifier.name.startswith(prefix):
                continue
            if resource_type and identifier.type != resource_type:
                continue
            if apply_ignore and self._ignored(identifier):
                continue
            selected.append(entry)
        return selected

    def _ignored(self, identifier: ResourceIdentifier) -> bool:
        return any(pattern in identifier.name for pattern in self.ignore)
