"""Trash manifest: what each removal run moved or backed up, for restoration."""
import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from aster.errors import TrashError
from aster.reaper.atomic import atomic_write_text


MANIFEST_VERSION = "2.0"


class Manifest:
    """JSON manifest of trashed files, grouped by removal run."""

    def __init__(self, trash_dir: str | Path):
        """Initialize manifest.

        Args:
            trash_dir: Path to trash directory

        Raises:
            TrashError: If an existing manifest is corrupt or from another version
        """
        self.trash_dir = Path(trash_dir)
        self.manifest_path = self.trash_dir / "manifest.json"
        self._ensure_manifest_exists()
        self._read_manifest()

    def _ensure_manifest_exists(self):
        self.trash_dir.mkdir(parents=True, exist_ok=True)
        if not self.manifest_path.exists():
            self._write_manifest({"version": MANIFEST_VERSION, "entries": []})

    def _read_manifest(self) -> Dict:
        try:
            with open(self.manifest_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TrashError(f"Trash manifest {self.manifest_path} is corrupt: {e}") from e
        if not isinstance(data, dict):
            raise TrashError(f"Trash manifest {self.manifest_path} is not a JSON object")
        if data.get("version") != MANIFEST_VERSION:
            raise TrashError(
                f"Trash manifest {self.manifest_path} has version {data.get('version')!r},"
                f" expected {MANIFEST_VERSION}"
            )
        if not isinstance(data.get("entries"), list):
            raise TrashError(f"Trash manifest {self.manifest_path} has no entry list")
        return data

    def _write_manifest(self, data: Dict):
        atomic_write_text(self.manifest_path, json.dumps(data, indent=2, ensure_ascii=False))

    def add_entry(self, entry_id: str, run_id: str, action: str, original_path: str,
                  trash_path: str, file_hash: str, identifiers: List[str]):
        """Record one trashed file.

        Args:
            entry_id: Unique id of this trash entry
            run_id: Removal run the entry belongs to
            action: 'moved' (file removed) or 'copied' (backup before an edit)
            original_path: Absolute path the file came from
            trash_path: Where the bytes are kept
            file_hash: SHA256 of the original bytes
            identifiers: Resource identifiers removed from this file
        """
        manifest = self._read_manifest()
        manifest["entries"].append({
            "id": entry_id,
            "run_id": run_id,
            "action": action,
            "original_path": str(original_path),
            "trash_path": str(trash_path),
            "trashed_at": datetime.now().isoformat(),
            "file_hash": file_hash,
            "identifiers": sorted(identifiers),
            "restored": False,
        })
        self._write_manifest(manifest)

    def get_entry(self, entry_id: str) -> Optional[Dict]:
        for entry in self._read_manifest()["entries"]:
            if entry["id"] == entry_id:
                return entry
        return None

    def get_run(self, run_id: str) -> List[Dict]:
        """All entries of one removal run, in the order they were recorded."""
        return [e for e in self._read_manifest()["entries"] if e["run_id"] == run_id]

    def mark_restored(self, entry_id: str):
        manifest = self._read_manifest()
        for entry in manifest["entries"]:
            if entry["id"] == entry_id:
                entry["restored"] = True
                break
        self._write_manifest(manifest)

    @staticmethod
    def calculate_file_hash(file_path: str | Path) -> str:
        """Calculate SHA256 hash of file.

        Args:
            file_path: Path to file

        Returns:
            SHA256 hash as hex string
        """
        sha256_hash = hashlib.sha256()

        with open(file_path, "rb") as f:
            for byte_block in iter(lambda: f.read(4096), b""):
                sha256_hash.update(byte_block)

        return sha256_hash.hexdigest()
