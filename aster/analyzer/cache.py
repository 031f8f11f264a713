"""Persisted index.

Storage Strategy:
- One SQLite database per scan root: .aster_cache/index.db
- Schema version in PRAGMA user_version; a mismatch means "rebuild"
- Scan metadata (root, language, build time, fingerprint) in a meta table
- One row per scanned file with mtime + size as its cache key
- One row per occurrence, in index order, so a load reproduces the
  exact entry ordering of the build
- Saves go to a temporary database that atomically replaces the live
  one; the 'complete' meta row is written last, so a reader never
  mistakes a partial write for a valid index
"""

import hashlib
import os
import sqlite3
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from aster.analyzer.models import (
    FileRecord, Index, Occurrence, OccurrenceKind, ResourceEntry, ResourceIdentifier,
)
from aster.errors import Diagnostic, IndexCorruptError, IndexVersionError


SCHEMA_VERSION = 3
CACHE_DIR_NAME = '.aster_cache'
INDEX_FILE_NAME = 'index.db'


def compute_fingerprint(records: Iterable[FileRecord]) -> str:
    """Hash of the scanned file set: sorted path:mtime:size triples."""
    states = sorted(f"{r.path}:{r.mtime}:{r.size}" for r in records)
    return hashlib.sha256("|".join(states).encode()).hexdigest()


def current_fingerprint(scan_root: str | Path, paths: Iterable[str]) -> str:
    """Fingerprint of the given files as they are on disk right now.

    Missing files are left out, so a deleted file changes the fingerprint.
    """
    root = Path(scan_root)
    states = []
    for path in set(paths):
        try:
            stat = (root / path).stat()
        except (OSError, FileNotFoundError):
            continue
        states.append(f"{path}:{stat.st_mtime}:{stat.st_size}")
    return hashlib.sha256("|".join(sorted(states)).encode()).hexdigest()


def changed_files(index: Index) -> List[str]:
    """Indexed files whose mtime or size no longer match, or that are gone."""
    root = Path(index.scan_root)
    changed = []
    for path, record in sorted(index.files.items()):
        try:
            stat = (root / path).stat()
        except (OSError, FileNotFoundError):
            changed.append(path)
            continue
        if stat.st_mtime != record.mtime or stat.st_size != record.size:
            changed.append(path)
    return changed


class IndexStore:
    """Load and save an Index as a versioned SQLite artifact."""

    def __init__(self, scan_root: str | Path, cache_dir: Optional[str | Path] = None):
        """Initialize store.

        Args:
            scan_root: Root directory of the scanned project
            cache_dir: Directory holding the database (default: <scan_root>/.aster_cache)
        """
        self.scan_root = Path(scan_root).resolve()
        self.cache_dir = Path(cache_dir) if cache_dir else self.scan_root / CACHE_DIR_NAME
        self.index_file = self.cache_dir / INDEX_FILE_NAME

    def exists(self) -> bool:
        return self.index_file.exists()

    # --- Writing -----------------------------------------------------------

    def save(self, index: Index):
        """Persist the index atomically.

        Raises:
            OSError: If the cache directory cannot be written (disk full etc.)
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        temp_file = self.index_file.with_name(f"{INDEX_FILE_NAME}.{os.getpid()}.tmp")
        if temp_file.exists():
            temp_file.unlink()

        try:
            conn = sqlite3.connect(str(temp_file))
            try:
                self._create_tables(conn)
                self._write(conn, index)
                conn.commit()
            finally:
                conn.close()
            os.replace(temp_file, self.index_file)
        except BaseException:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def _create_tables(self, conn: sqlite3.Connection):
        cursor = conn.cursor()
        cursor.execute(f'PRAGMA user_version = {SCHEMA_VERSION}')

        cursor.execute('''
            CREATE TABLE meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE files (
                path TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                language TEXT NOT NULL,
                mtime REAL NOT NULL,
                size INTEGER NOT NULL,
                cache_key TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE occurrences (
                seq INTEGER PRIMARY KEY,
                res_type TEXT NOT NULL,
                name TEXT NOT NULL,
                kind TEXT NOT NULL,
                file_path TEXT NOT NULL,
                line INTEGER NOT NULL,
                col INTEGER NOT NULL,
                start_offset INTEGER NOT NULL,
                end_offset INTEGER NOT NULL,
                whole_file INTEGER NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE diagnostics (
                seq INTEGER PRIMARY KEY,
                category TEXT NOT NULL,
                path TEXT NOT NULL,
                message TEXT NOT NULL,
                line INTEGER
            )
        ''')

        # Lookups by identifier for resolve()
        cursor.execute('''
            CREATE INDEX idx_occurrence_identifier
            ON occurrences(res_type, name)
        ''')

    def _write(self, conn: sqlite3.Connection, index: Index):
        cursor = conn.cursor()

        cursor.executemany(
            'INSERT INTO files (path, kind, language, mtime, size, cache_key) VALUES (?, ?, ?, ?, ?, ?)',
            [(r.path, r.kind, r.language, r.mtime, r.size, r.cache_key) for r in index.files.values()]
        )

        cursor.executemany(
            '''INSERT INTO occurrences
               (seq, res_type, name, kind, file_path, line, col, start_offset, end_offset, whole_file)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
            [
                (seq, o.identifier.type, o.identifier.name, o.kind.value, o.file_path,
                 o.line, o.column, o.start, o.end, 1 if o.whole_file else 0)
                for seq, o in enumerate(index.occurrences())
            ]
        )

        cursor.executemany(
            'INSERT INTO diagnostics (seq, category, path, message, line) VALUES (?, ?, ?, ?, ?)',
            [(seq, d.category, d.path, d.message, d.line) for seq, d in enumerate(index.diagnostics)]
        )

        meta = {
            'scan_root': index.scan_root,
            'language': index.language,
            'built_at': repr(index.built_at),
            'fingerprint': index.fingerprint,
            'stale': '1' if index.stale else '0',
        }
        cursor.executemany('INSERT INTO meta (key, value) VALUES (?, ?)', sorted(meta.items()))
        # Written last: its presence means the rows above are all there.
        cursor.execute("INSERT INTO meta (key, value) VALUES ('complete', '1')")

    def mark_stale(self):
        """Flag the persisted index so the next command rebuilds it."""
        if not self.exists():
            return
        conn = sqlite3.connect(str(self.index_file))
        try:
            conn.execute("INSERT OR REPLACE INTO meta (key, value) VALUES ('stale', '1')")
            conn.commit()
        finally:
            conn.close()

    def clear(self) -> bool:
        """Delete the persisted index. Returns True if there was one."""
        if not self.exists():
            return False
        self.index_file.unlink()
        return True

    # --- Reading -----------------------------------------------------------

    def load(self) -> Index:
        """Load the persisted index.

        Raises:
            FileNotFoundError: If no index has been built yet
            IndexVersionError: If it was written by another schema version
            IndexCorruptError: If it is partial or unreadable
        """
        if not self.exists():
            raise FileNotFoundError(f"No index at {self.index_file}")

        try:
            conn = sqlite3.connect(f"file:{self.index_file.as_posix()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise IndexCorruptError(f"Cannot open index {self.index_file}: {e}") from e

        try:
            version = conn.execute('PRAGMA user_version').fetchone()[0]
            if version != SCHEMA_VERSION:
                raise IndexVersionError(
                    f"Index schema version {version} is not supported (expected {SCHEMA_VERSION})"
                )
            return self._read(conn)
        except sqlite3.DatabaseError as e:
            raise IndexCorruptError(f"Index {self.index_file} is unreadable: {e}") from e
        finally:
            conn.close()

    def _read(self, conn: sqlite3.Connection) -> Index:
        meta: Dict[str, str] = dict(conn.execute('SELECT key, value FROM meta').fetchall())
        if meta.get('complete') != '1':
            raise IndexCorruptError(f"Index {self.index_file} was not completely written")

        index = Index(
            scan_root=meta['scan_root'],
            language=meta['language'],
            built_at=float(meta['built_at']),
            fingerprint=meta['fingerprint'],
            stale=meta.get('stale') == '1',
        )

        for path, kind, language, mtime, size in conn.execute(
            'SELECT path, kind, language, mtime, size FROM files ORDER BY path'
        ):
            index.files[path] = FileRecord(path, kind, language, mtime, size)

        entries: Dict[ResourceIdentifier, ResourceEntry] = {}
        for res_type, name, kind, file_path, line, col, start, end, whole_file in conn.execute(
            '''SELECT res_type, name, kind, file_path, line, col, start_offset, end_offset, whole_file
               FROM occurrences ORDER BY seq'''
        ):
            identifier = ResourceIdentifier(res_type, name)
            entry = entries.get(identifier)
            if entry is None:
                entry = entries[identifier] = ResourceEntry(identifier)
            entry.add(Occurrence(identifier, OccurrenceKind(kind), file_path, line, col,
                                 start, end, bool(whole_file)))
        index.entries = entries

        index.diagnostics = [
            Diagnostic(category, path, message, line)
            for category, path, message, line in conn.execute(
                'SELECT category, path, message, line FROM diagnostics ORDER BY seq'
            )
        ]
        return index

    def stats(self) -> Dict[str, int]:
        """Row counts of the persisted index (zeros when there is none)."""
        stats = {
            'schema_version': SCHEMA_VERSION,
            'files': 0,
            'definitions': 0,
            'usages': 0,
            'identifiers': 0,
            'diagnostics': 0,
        }
        if not self.exists():
            return stats

        conn = sqlite3.connect(f"file:{self.index_file.as_posix()}?mode=ro", uri=True)
        try:
            stats['schema_version'] = conn.execute('PRAGMA user_version').fetchone()[0]
            stats['files'] = conn.execute('SELECT COUNT(*) FROM files').fetchone()[0]
            stats['definitions'] = conn.execute(
                "SELECT COUNT(*) FROM occurrences WHERE kind = 'definition'").fetchone()[0]
            stats['usages'] = conn.execute(
                "SELECT COUNT(*) FROM occurrences WHERE kind = 'usage'").fetchone()[0]
            stats['identifiers'] = conn.execute(
                'SELECT COUNT(*) FROM (SELECT DISTINCT res_type, name FROM occurrences)').fetchone()[0]
            stats['diagnostics'] = conn.execute('SELECT COUNT(*) FROM diagnostics').fetchone()[0]
        finally:
            conn.close()
        return stats

    def is_stale(self, index: Index, paths: Optional[Iterable[str]] = None) -> bool:
        """True if files on disk differ from the ones the index was built from.

        Args:
            index: Loaded index
            paths: Current candidate files (relative to the scan root). When
                given, added or removed files also count as changes.
        """
        if index.stale:
            return True
        if paths is None:
            paths = index.files.keys()
        return current_fingerprint(index.scan_root, paths) != index.fingerprint
