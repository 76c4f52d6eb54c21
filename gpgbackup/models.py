"""
Data model for a backup run.

Plain dataclasses replace the database rows of a long-running service: a run
lives for one process invocation and persists nothing but files on disk.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .config import Config

DAY_FORMAT = '%Y-%m-%d'
STAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'


class ItemMode(enum.Enum):
    """How a backup target is processed."""

    ARCHIVE_NEEDED = 'archive-needed'
    PASS_THROUGH = 'pass-through'


class PathKind(enum.Enum):
    """What a configured path turned out to be on disk."""

    DIRECTORY = 'directory'
    FILE = 'file'
    MISSING = 'missing'
    OTHER = 'other'


@dataclass(frozen=True)
class BackupTarget:
    """A configured filesystem path, resolved at run start."""

    path: Path
    kind: PathKind

    @property
    def exists(self) -> bool:
        return self.kind is not PathKind.MISSING


@dataclass
class ProcessingItem:
    """
    Classified unit of work.

    ``source`` is the user's original and is never deleted. ``archive_path``
    is set only when the run generated a plaintext archive for this item;
    that file is owned by the run and may be removed after encryption.
    """

    source: Path
    mode: ItemMode
    name: str
    archive_path: Optional[Path] = None

    @property
    def plaintext_path(self) -> Path:
        """File handed to the encryption stage."""
        return self.archive_path if self.archive_path is not None else self.source

    @property
    def owns_plaintext(self) -> bool:
        return self.archive_path is not None


@dataclass(frozen=True)
class ArchiveArtifact:
    path: Path
    codec: str
    size: int


@dataclass(frozen=True)
class EncryptedArtifact:
    path: Path
    source: Path
    recipient: str


@dataclass(frozen=True)
class RemoteObject:
    """An uploaded object as addressed by the storage collaborator."""

    location: str
    size: int = 0

    def __str__(self) -> str:
        return self.location


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Age threshold for one scope (local or remote).

    A disabled flag or a threshold of zero or less means keep forever.
    """

    enabled: bool
    max_age_days: int

    @property
    def active(self) -> bool:
        return self.enabled and self.max_age_days > 0


@dataclass(frozen=True)
class RunContext:
    """
    Process-wide state for one invocation.

    Built once after configuration loads. The resolved recipient is filled in
    with ``dataclasses.replace`` once the keyring has been checked.
    """

    config: 'Config'
    started_at: datetime
    work_dir: Path
    log_file: Path
    dry_run: bool = False
    retain: bool = True
    verbose: bool = False
    recipient: Optional[str] = None

    @property
    def stamp(self) -> str:
        return self.started_at.strftime(STAMP_FORMAT)

    @property
    def day(self) -> str:
        return self.started_at.strftime(DAY_FORMAT)


@dataclass
class ItemResult:
    """What happened to one item during a run."""

    source: Path
    mode: ItemMode
    archive: Optional[ArchiveArtifact] = None
    encrypted: Optional[EncryptedArtifact] = None
    remote: Optional[RemoteObject] = None


@dataclass
class RunSummary:
    """Outcome of a completed run."""

    items: List[ItemResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    local_deleted: int = 0
    remote_pruned: bool = False
    retention_errors: List[str] = field(default_factory=list)
