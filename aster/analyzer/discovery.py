"""File-system walk: which files the index is built from.

Resource files live in ``<res>/<type>[-qualifiers]/``: ``values*``
directories hold XML value declarations, the file-based type directories
(layout, drawable, ...) hold one resource per file. Sources are picked by
extension for the configured language. Manifests are scanned like resource
XML for their references.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Set

from aster.analyzer.indexer import ScanInput
from aster.analyzer.normalizer import FILE_BASED_TYPES
from aster.analyzer.parser import LanguageParser


MANIFEST_NAME = 'AndroidManifest.xml'

EXCLUDED_DIRS = {
    'build', 'out', 'bin', 'gen', 'intermediates', 'generated',
    '.gradle', '.idea', '.git', '.svn', '.cxx', '.externalNativeBuild',
    'node_modules', 'vendor', 'third_party',
    '.aster_cache', '.aster_trash',
}


@dataclass(frozen=True)
class ProjectLayout:
    """Roots given on the command line, resolved."""
    source_root: Path
    res_root: Path
    manifest: Optional[Path] = None

    @property
    def scan_root(self) -> Path:
        """Deepest directory containing every root; index paths are relative to it."""
        roots = [self.source_root, self.res_root]
        if self.manifest is not None:
            roots.append(self.manifest if self.manifest.is_dir() else self.manifest.parent)
        return Path(os.path.commonpath([str(r) for r in roots]))

    @classmethod
    def resolve(cls, source_root: str | Path, res_root: Optional[str | Path] = None,
                manifest: Optional[str | Path] = None) -> "ProjectLayout":
        source = Path(source_root).resolve()
        res = Path(res_root).resolve() if res_root else source
        return cls(source, res, Path(manifest).resolve() if manifest else None)


def resource_kind(path: Path, res_root: Path) -> Optional[ScanInput]:
    """Classify a file under the res root, or None when it is not a resource."""
    directory = path.parent
    # <res>/<type>/file: the type directory sits directly in a res directory
    if directory.parent != res_root and directory.parent.name != 'res':
        return None

    resource_type = directory.name.split('-', 1)[0]
    if resource_type == 'values':
        if path.suffix.lower() != '.xml':
            return None
        return ScanInput(str(path), 'resource', 'xml')
    if resource_type in FILE_BASED_TYPES:
        return ScanInput(str(path), 'resource-file', 'resource-file')
    return None


def _walk(root: Path, excluded: Set[str]) -> Iterable[Path]:
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in excluded)
        for name in sorted(files):
            if not name.startswith('.'):
                yield Path(current) / name


def discover_inputs(layout: ProjectLayout, language: str = 'all',
                    extra_excluded: Iterable[str] = ()) -> List[ScanInput]:
    """Collect the files to index, with paths relative to the scan root.

    Args:
        layout: Project roots
        language: 'java', 'kotlin' or 'all'
        extra_excluded: Additional directory names to skip (cache/trash dirs)

    Returns:
        Scan inputs sorted by path, each file at most once
    """
    excluded = EXCLUDED_DIRS | set(extra_excluded)
    scan_root = layout.scan_root
    found = {}

    def add(scan_input: ScanInput):
        relative = Path(scan_input.path).relative_to(scan_root).as_posix()
        found.setdefault(relative, ScanInput(relative, scan_input.kind, scan_input.tag))

    if layout.res_root.is_dir():
        for path in _walk(layout.res_root, excluded):
            scan_input = resource_kind(path, layout.res_root)
            if scan_input is not None:
                add(scan_input)

    extensions = LanguageParser.extensions_for(language)
    if layout.source_root.is_dir():
        for path in _walk(layout.source_root, excluded):
            if path.suffix in extensions:
                add(ScanInput(str(path), 'source', LanguageParser.SUPPORTED_LANGUAGES[path.suffix]))
            elif path.name == MANIFEST_NAME and layout.manifest is None:
                add(ScanInput(str(path), 'manifest', 'xml'))

    if layout.manifest is not None:
        if layout.manifest.is_dir():
            for path in _walk(layout.manifest, excluded):
                if path.name == MANIFEST_NAME:
                    add(ScanInput(str(path), 'manifest', 'xml'))
        elif layout.manifest.is_file():
            add(ScanInput(str(layout.manifest), 'manifest', 'xml'))

    return [found[path] for path in sorted(found)]
