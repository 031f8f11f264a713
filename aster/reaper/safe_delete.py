"""Trash-backed file removal and backups with run-level restoration."""
import secrets
import shutil
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List

from aster.reaper.manifest import Manifest


class SafeDeleter:
    """Keeps a copy of every file a removal run touches so the run can be undone."""

    def __init__(self, trash_dir: str | Path = ".aster_trash"):
        """Initialize safe deleter.

        Args:
            trash_dir: Path to trash directory (default: .aster_trash)
        """
        self.trash_dir = Path(trash_dir)
        self.trash_dir.mkdir(parents=True, exist_ok=True)
        self.manifest = Manifest(self.trash_dir)
        # Manifest updates are read-modify-write; removals run on worker threads.
        self._lock = threading.Lock()

    def new_run(self) -> str:
        """Start a removal run and return its id."""
        return self._generate_id()

    def delete(self, file_path: str | Path, run_id: str, identifiers: Iterable[str] = ()) -> str:
        """Move a file to the trash (whole-file resources such as layouts).

        NEVER uses os.remove() - the bytes stay restorable.

        Returns:
            Trash entry id

        Raises:
            FileNotFoundError: If file doesn't exist
            IOError: If the move fails
        """
        return self._trash(Path(file_path), run_id, identifiers, move=True)

    def backup(self, file_path: str | Path, run_id: str, identifiers: Iterable[str] = ()) -> str:
        """Copy a file to the trash before it is edited in place.

        Returns:
            Trash entry id

        Raises:
            FileNotFoundError: If file doesn't exist
            IOError: If the copy fails
        """
        return self._trash(Path(file_path), run_id, identifiers, move=False)

    def _trash(self, file_path: Path, run_id: str, identifiers: Iterable[str], move: bool) -> str:
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        entry_id = self._generate_id()
        entry_dir = self.trash_dir / run_id / entry_id
        entry_dir.mkdir(parents=True, exist_ok=True)

        file_hash = self.manifest.calculate_file_hash(file_path)
        trash_path = entry_dir / file_path.name
        original_path = file_path.resolve()

        if move:
            shutil.move(str(file_path), str(trash_path))
        else:
            shutil.copy2(str(file_path), str(trash_path))

        with self._lock:
            self.manifest.add_entry(
                entry_id=entry_id,
                run_id=run_id,
                action="moved" if move else "copied",
                original_path=str(original_path),
                trash_path=str(trash_path),
                file_hash=file_hash,
                identifiers=list(identifiers),
            )
        return entry_id

    def restore(self, entry_id: str):
        """Put one trashed file back where it came from.

        Raises:
            ValueError: If the entry id is unknown
            IOError: If the trashed copy is missing or no longer matches its hash
        """
        entry = self.manifest.get_entry(entry_id)
        if not entry:
            raise ValueError(f"Trash entry not found: {entry_id}")

        # Already restored: nothing to do (restore may be retried after an error)
        if entry.get("restored", False):
            return

        trash_path = Path(entry["trash_path"])
        original_path = Path(entry["original_path"])
        if not trash_path.exists():
            raise IOError(f"File not found in trash: {trash_path}")
        if self.manifest.calculate_file_hash(trash_path) != entry["file_hash"]:
            raise IOError(f"Trashed copy was modified, refusing to restore: {trash_path}")

        original_path.parent.mkdir(parents=True, exist_ok=True)
        # Copies stay in the trash after an edit backup is restored; moved files go back.
        if entry["action"] == "moved":
            shutil.move(str(trash_path), str(original_path))
        else:
            shutil.copy2(str(trash_path), str(original_path))

        self.manifest.mark_restored(entry_id)

    def restore_run(self, run_id: str) -> List[str]:
        """Restore every file of a removal run.

        Returns:
            Original paths that were restored

        Raises:
            ValueError: If the run id is unknown
            IOError: If any restoration fails (all are attempted)
        """
        entries = self.manifest.get_run(run_id)
        if not entries:
            raise ValueError(f"Removal run not found: {run_id}")

        restored = []
        errors = []
        for entry in reversed(entries):
            try:
                self.restore(entry["id"])
                restored.append(entry["original_path"])
            except (ValueError, IOError) as e:
                errors.append(f"{entry['id']}: {e}")

        if errors:
            raise IOError("Failed to restore some files:\n" + "\n".join(errors))
        return restored

    def _generate_id(self) -> str:
        """Id in format: YYYYMMDD_HHMMSS_randomhex."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        random_suffix = secrets.token_hex(3)
        return f"{timestamp}_{random_suffix}"
