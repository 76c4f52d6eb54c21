"""
Retention policy enforcement for backups.

Removes old encrypted backups from the local backup root and from the remote
backup set based on the configured age thresholds. Retention is housekeeping:
every failure is logged and counted, none is raised.
"""

import os
import time
import logging
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict, List, Optional

from gpgbackup.exceptions import BackupError, RetentionFailure
from gpgbackup.models import RetentionPolicy

logger = logging.getLogger(__name__)

LOCAL_ARTIFACT_PATTERN = '*.gpg'

SECONDS_PER_DAY = 24 * 60 * 60


class RetentionManager:
    """
    Enforces local and remote retention for one backup set.
    """

    def __init__(self, storage=None, now: Optional[float] = None):
        """
        Initialize retention manager.

        Args:
            storage: Remote storage handler (None disables remote pruning)
            now: Reference time as a POSIX timestamp (default: time.time())
        """
        self.storage = storage
        self.now = now
        self.errors: List[str] = []

    def _now(self) -> float:
        return self.now if self.now is not None else time.time()

    def enforce(
        self,
        local_root: Path,
        remote_base: str,
        local_policy: RetentionPolicy,
        remote_policy: RetentionPolicy
    ) -> Dict[str, Any]:
        """
        Enforce both policies.

        Returns:
            Dict with summary of cleanup operations:
            {
                'local_deleted': int,
                'remote_pruned': bool,
                'errors': List[str]
            }
        """
        summary = {
            'local_deleted': self.prune_local(local_root, local_policy),
            'remote_pruned': self.prune_remote(remote_base, remote_policy),
            'errors': list(self.errors)
        }

        if summary['errors']:
            logger.warning(f"Retention finished with {len(summary['errors'])} error(s)")
        return summary

    def prune_local(self, root: Path, policy: RetentionPolicy) -> int:
        """
        Delete local encrypted artifacts older than the policy threshold.

        Only files matching LOCAL_ARTIFACT_PATTERN are considered; a file is
        deleted when its age is strictly greater than max_age_days.

        Returns:
            Number of files deleted
        """
        if not policy.enabled:
            logger.info("Local retention skipped (--no-retain).")
            return 0
        if policy.max_age_days <= 0:
            logger.info("Local retention disabled (0d).")
            return 0

        root = Path(root)
        logger.info(f"Deleting {LOCAL_ARTIFACT_PATTERN} older than {policy.max_age_days}d under {root}")

        if not root.is_dir():
            logger.info(f"Local backup root does not exist: {root}")
            return 0

        cutoff = self._now() - policy.max_age_days * SECONDS_PER_DAY
        deleted_count = 0

        for dirpath, _dirnames, filenames in os.walk(root):
            for filename in filenames:
                if not fnmatch(filename, LOCAL_ARTIFACT_PATTERN):
                    continue

                file_path = Path(dirpath) / filename
                try:
                    if not file_path.is_file():
                        continue
                    if file_path.stat().st_mtime >= cutoff:
                        continue
                    file_path.unlink()
                    deleted_count += 1
                    logger.info(f"Deleted local file: {file_path}")
                except OSError as e:
                    self._failure(RetentionFailure(f"Failed to delete local file {file_path}: {e}"))

        logger.info(f"Local retention complete ({deleted_count} deleted).")
        return deleted_count

    def prune_remote(self, base: str, policy: RetentionPolicy) -> bool:
        """
        Delete remote objects older than the policy threshold under ``base``,
        then remove empty directories.

        Returns:
            True if pruning ran without error
        """
        if not policy.enabled:
            logger.info("Remote retention skipped (--no-retain).")
            return False
        if policy.max_age_days <= 0:
            logger.info("Remote retention disabled (0d).")
            return False
        if self.storage is None:
            logger.info("Remote retention skipped (no remote storage).")
            return False

        logger.info(f"Pruning files older than {policy.max_age_days}d in {self.storage.location(base)}")

        try:
            self.storage.delete_older_than(base, policy.max_age_days)
        except (BackupError, OSError) as e:
            self._failure(RetentionFailure(f"Remote pruning failed: {e}"))
            return False

        try:
            self.storage.remove_empty_dirs(base)
        except (BackupError, OSError) as e:
            # Best effort
            logger.warning(f"Could not remove empty remote directories: {e}")

        logger.info("Remote retention complete.")
        return True

    def _failure(self, error: RetentionFailure):
        logger.warning(str(error))
        self.errors.append(str(error))
