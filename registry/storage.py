"""
SFT Ledger - Snapshot Storage Backend

This module persists the ledger state as a single JSON snapshot with
file locking, atomic replacement, checksum verification and rotating backups.
"""

import fcntl
import gzip
import hashlib
import json
import logging
import os
import shutil
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Union


logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class StorageError(Exception):
    """Base storage exception."""
    pass


class LockTimeoutError(StorageError):
    """Lock acquisition timeout exception."""
    pass


class IntegrityError(StorageError):
    """Snapshot checksum or format failure."""
    pass


def canonical_json(data: Any) -> bytes:
    """Deterministic JSON encoding used for checksums and hashing."""
    return json.dumps(data, sort_keys=True, separators=(',', ':')).encode('utf-8')


class FileLock:
    """Advisory lock on a sidecar ``.lock`` file, shared across processes."""

    def __init__(self, file_path: Union[str, Path], timeout: float = 30.0):
        self.file_path = Path(file_path)
        self.lock_file_path = self.file_path.with_suffix(self.file_path.suffix + '.lock')
        self.timeout = timeout
        self.lock_fd: Optional[int] = None
        self._thread_lock = RLock()

    def acquire(self) -> None:
        with self._thread_lock:
            if self.lock_fd is not None:
                return

            fd = os.open(str(self.lock_file_path), os.O_CREAT | os.O_RDWR, 0o644)
            deadline = time.monotonic() + self.timeout
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    self.lock_fd = fd
                    return
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        os.close(fd)
                        raise LockTimeoutError(
                            f"Failed to acquire lock on {self.file_path} within {self.timeout} seconds"
                        )
                    time.sleep(0.05)

    def release(self) -> None:
        with self._thread_lock:
            if self.lock_fd is None:
                return
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                os.close(self.lock_fd)
            except OSError as e:
                logger.warning(f"Failed to release lock on {self.file_path}: {e}")
            finally:
                self.lock_fd = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class LedgerStorage:
    """
    Snapshot store for the whole ledger.

    The snapshot file holds an envelope ``{"version", "checksum", "data"}``
    where ``checksum`` is the SHA-256 of the canonical encoding of ``data``.
    Writes go to a temporary file that is renamed over the snapshot, so a
    reader never observes a partial write.
    """

    SNAPSHOT_NAME = "ledger.json"

    def __init__(
        self,
        storage_dir: Union[str, Path] = "ledger_data",
        compressed: bool = False,
        backup_count: int = 5,
        lock_timeout: float = 30.0,
    ):
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.file_path = self.storage_dir / self.SNAPSHOT_NAME
        self.backup_dir = self.storage_dir / 'backups'
        self.compressed = compressed
        self.backup_count = backup_count
        self.lock_timeout = lock_timeout

    @contextmanager
    def _locked(self):
        with FileLock(self.file_path, timeout=self.lock_timeout):
            yield

    def _read_bytes(self, path: Path) -> bytes:
        opener = gzip.open if self.compressed else open
        with opener(path, 'rb') as f:
            return f.read()

    def _write_bytes(self, path: Path, payload: bytes) -> None:
        temp_file = path.with_suffix(path.suffix + '.tmp')
        opener = gzip.open if self.compressed else open
        try:
            with opener(temp_file, 'wb') as f:
                f.write(payload)
                f.flush()
            os.replace(temp_file, path)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise StorageError(f"Failed to write {path}: {e}")

    def _decode(self, raw: bytes) -> Dict[str, Any]:
        try:
            envelope = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IntegrityError(f"Invalid snapshot JSON: {e}")

        if not isinstance(envelope, dict) or 'data' not in envelope:
            raise IntegrityError("Snapshot envelope is malformed")
        if envelope.get('version') != SNAPSHOT_VERSION:
            raise IntegrityError(f"Unsupported snapshot version: {envelope.get('version')}")

        checksum = hashlib.sha256(canonical_json(envelope['data'])).hexdigest()
        if checksum != envelope.get('checksum'):
            raise IntegrityError("Snapshot checksum mismatch")
        return envelope['data']

    def exists(self) -> bool:
        return self.file_path.exists()

    def load(self) -> Optional[Dict[str, Any]]:
        """Read and verify the snapshot; None when nothing was saved yet."""
        if not self.exists():
            return None
        with self._locked():
            try:
                raw = self._read_bytes(self.file_path)
            except OSError as e:
                raise StorageError(f"Failed to read snapshot: {e}")
        return self._decode(raw)

    def save(self, data: Dict[str, Any], create_backup: bool = True) -> str:
        """
        Write a snapshot atomically.

        Args:
            data: JSON-compatible ledger state
            create_backup: Copy the previous snapshot into the backup directory first

        Returns:
            SHA-256 checksum of the saved data
        """
        checksum = hashlib.sha256(canonical_json(data)).hexdigest()
        envelope = {'version': SNAPSHOT_VERSION, 'checksum': checksum, 'data': data}
        payload = json.dumps(envelope, indent=2, sort_keys=True).encode('utf-8')

        with self._locked():
            if create_backup:
                self._create_backup()
            self._write_bytes(self.file_path, payload)

        logger.debug(f"Saved ledger snapshot {checksum[:12]} to {self.file_path}")
        return checksum

    def _create_backup(self) -> None:
        if not self.file_path.exists() or self.backup_count <= 0:
            return

        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S_%f')
        backup_path = self.backup_dir / f"{self.file_path.stem}_{timestamp}{self.file_path.suffix}"
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(self.file_path, backup_path)
        except OSError as e:
            raise StorageError(f"Failed to create backup: {e}")

        for stale in self.list_backups()[self.backup_count:]:
            try:
                stale.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove old backup {stale}: {e}")

    def list_backups(self) -> List[Path]:
        """Backup files, newest first."""
        if not self.backup_dir.exists():
            return []
        pattern = f"{self.file_path.stem}_*{self.file_path.suffix}"
        return sorted(self.backup_dir.glob(pattern), reverse=True)

    def restore_backup(self, backup: Union[str, Path]) -> bool:
        """Replace the snapshot with a verified backup."""
        backup_path = Path(backup)
        if not backup_path.is_absolute():
            backup_path = self.backup_dir / backup_path
        if not backup_path.exists():
            return False

        self._decode(self._read_bytes(backup_path))
        with self._locked():
            self._create_backup()
            shutil.copy2(backup_path, self.file_path)
        logger.info(f"Restored ledger snapshot from {backup_path.name}")
        return True

    def get_storage_info(self) -> Dict[str, Any]:
        return {
            'file_path': str(self.file_path),
            'compressed': self.compressed,
            'size_bytes': self.file_path.stat().st_size if self.exists() else 0,
            'exists': self.exists(),
            'backup_count': len(self.list_backups()),
        }
