"""Error kinds and the diagnostics aggregator.

Per-file and per-occurrence failures never abort a run. They are raised at
the point of failure, caught by the component driving the run, converted
into a Diagnostic and surfaced once at the end by the CLI.
"""
from dataclasses import dataclass
from typing import Iterator, List, Optional


class AsterError(Exception):
    """Base class for all Aster errors."""


class ExtractionError(AsterError):
    """Malformed file content. The file contributes zero occurrences."""

    def __init__(self, path: str, message: str, line: Optional[int] = None):
        self.path = path
        self.line = line
        location = f"{path}:{line}" if line else path
        super().__init__(f"{location}: {message}")


class NormalizationError(AsterError):
    """A raw token could not be classified into a known resource type."""

    def __init__(self, raw_type: str, raw_name: str, reason: str = "unknown resource type"):
        self.raw_type = raw_type
        self.raw_name = raw_name
        super().__init__(f"{reason}: {raw_type}/{raw_name}")


class IndexVersionError(AsterError):
    """The persisted index was written by an incompatible schema version."""


class IndexCorruptError(IndexVersionError):
    """The persisted index is partial, truncated or unreadable."""


class StaleIndexError(AsterError):
    """Files on disk changed since the index was built."""


class MutationIOError(AsterError):
    """A file could not be read or written while applying removals."""


class InUseError(AsterError):
    """A removal would also cut the declaration of a resource that is still used."""

    def __init__(self, path: str, message: str, line: Optional[int] = None):
        self.path = path
        self.line = line
        super().__init__(message)


class TrashError(AsterError):
    """The trash manifest is unreadable or was written by another version."""


@dataclass(frozen=True)
class Diagnostic:
    """One non-fatal problem recorded during a run."""
    category: str  # exception class name, e.g. 'ExtractionError'
    path: str
    message: str
    line: Optional[int] = None

    @classmethod
    def from_error(cls, error: Exception, path: str = "") -> "Diagnostic":
        return cls(
            category=type(error).__name__,
            path=getattr(error, "path", None) or path,
            message=str(error),
            line=getattr(error, "line", None),
        )


class Diagnostics:
    """Collects diagnostics so they can be reported once, in a stable order."""

    def __init__(self, items: Optional[List[Diagnostic]] = None):
        self._items: List[Diagnostic] = list(items or [])

    def record(self, error: Exception, path: str = "") -> Diagnostic:
        diagnostic = Diagnostic.from_error(error, path)
        self._items.append(diagnostic)
        return diagnostic

    def add(self, diagnostic: Diagnostic):
        self._items.append(diagnostic)

    def extend(self, diagnostics):
        for diagnostic in diagnostics:
            self.add(diagnostic)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)
