"""
Backup pipeline for gpg-cloud-backup.

This module handles the core backup functionality including:
- Item classification (directories vs. single files)
- Compression
- GPG encryption
- Remote storage (rclone and S3)
- Execution orchestration
- Retention policy enforcement
"""

from .executor import BackupExecutor
from .items import classify, resolve_items
from .compression import Archiver
from .encryption import GpgClient, RecipientResolver
from .storage import RcloneStorage, S3Storage
from .retention import RetentionManager

__all__ = [
    'BackupExecutor',
    'classify',
    'resolve_items',
    'Archiver',
    'GpgClient',
    'RecipientResolver',
    'RcloneStorage',
    'S3Storage',
    'RetentionManager'
]
