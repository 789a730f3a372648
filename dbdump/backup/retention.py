"""
Retention policy enforcement for backups.

Works on what is on disk under <root>/backups, not on the files made by
the current run, so it also cleans up after earlier runs. Backup files are
recognised by name:

    <db>-<YYYYMMDD>.sql[<compression extension>]

Files that do not match are left alone. The fixed-width date makes name
order the same as date order.
"""

import os
import re
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional


logger = logging.getLogger(__name__)


def backup_file_pattern(extensions: Iterable[str]) -> re.Pattern:
    """
    Build the regex matching dump and archive file names.

    Args:
        extensions: Known compression extensions (e.g. '.gz', '.zip')

    Returns:
        Compiled pattern with a 'db' group
    """
    alternatives = '|'.join(
        re.escape(ext) for ext in sorted(set(extensions), key=len, reverse=True) if ext
    )
    suffix = f'(?:{alternatives})?' if alternatives else ''
    return re.compile(rf'^(?P<db>.+)-(?P<date>\d+)\.sql{suffix}$')


class RetentionManager:
    """
    Keeps the most recent backups of each database.

    Removes zero-byte backup files (unless told to keep them), then deletes
    the oldest files of each database beyond the retention count.
    """

    def __init__(self, root: str, retain: int, keep_zero: bool = False, extensions: Optional[Iterable[str]] = None):
        """
        Initialize retention manager.

        Args:
            root: Backup root (the directory holding backups/)
            retain: Number of files to keep per database (0 disables cleanup)
            keep_zero: Keep zero-byte files instead of deleting them
            extensions: Known compression extensions
        """
        self.root = Path(root)
        self.retain = retain
        self.keep_zero = keep_zero
        self.pattern = backup_file_pattern(extensions or [])

    def enforce(self) -> Dict[str, int]:
        """
        Enforce the retention policy.

        Returns:
            Dict with counts:
            {
                'databases': int,
                'zero_deleted': int,
                'deleted': int,
                'errors': int
            }
        """
        summary = {
            'databases': 0,
            'zero_deleted': 0,
            'deleted': 0,
            'errors': 0
        }

        if not self.retain or self.retain <= 0:
            logger.debug("Retention not configured, skipping cleanup")
            return summary

        groups: Dict[str, List[Path]] = {}
        for path, db in self._scan():
            if not self.keep_zero and self._is_empty(path):
                if self._delete(path, summary):
                    summary['zero_deleted'] += 1
                    logger.info(f"Removed empty backup file: {self._relative(path)}")
                continue
            groups.setdefault(db, []).append(path)

        summary['databases'] = len(groups)

        for db in sorted(groups):
            for path in self.expired(groups[db]):
                if self._delete(path, summary):
                    summary['deleted'] += 1
                    logger.info(f"Removed old backup of {db}: {self._relative(path)}")

        logger.info(
            f"Retention enforcement complete. "
            f"Databases: {summary['databases']}, "
            f"Empty removed: {summary['zero_deleted']}, "
            f"Old removed: {summary['deleted']}, "
            f"Errors: {summary['errors']}"
        )
        return summary

    def expired(self, files: List[Path]) -> List[Path]:
        """
        Select the files of one database that fall outside the retention count.

        Files are ordered oldest first by name; everything except the newest
        `retain` files is returned.
        """
        ordered = sorted(files, key=lambda p: p.name)
        if len(ordered) <= self.retain:
            return []
        return ordered[:len(ordered) - self.retain]

    def _scan(self):
        """Yield (path, db) for every backup file under <root>/backups."""
        backup_dir = self.root / 'backups'
        if not backup_dir.is_dir():
            return

        for dirpath, _, filenames in os.walk(backup_dir):
            for filename in sorted(filenames):
                match = self.pattern.match(filename)
                if match:
                    yield Path(dirpath) / filename, match.group('db')

    def _is_empty(self, path: Path) -> bool:
        try:
            return path.stat().st_size == 0
        except OSError:
            return False

    def _delete(self, path: Path, summary: Dict[str, int]) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete {self._relative(path)}: {e}")
            summary['errors'] += 1
            return False

    def _relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)
