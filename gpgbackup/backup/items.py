"""
Item classification for backup targets.

Each configured path becomes exactly one ProcessingItem:
- directory                      -> archive-needed (tar + compress, then encrypt)
- already-compressed file        -> pass-through (encrypt as-is)
- any other regular file         -> pass-through (encrypt as-is)
- missing path or special file   -> skipped with a warning
"""

import errno
import logging
import os
import stat
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from gpgbackup.exceptions import NoValidTargets
from gpgbackup.models import BackupTarget, ItemMode, PathKind, ProcessingItem

logger = logging.getLogger(__name__)


# Multi-part extensions must come before their single-part tails.
COMPRESSED_EXTENSIONS = (
    # tar + compression
    '.tar.gz', '.tar.bz2', '.tar.xz', '.tar.zst', '.tar.lz4', '.tar.lzma', '.tar.lz', '.tar.z',
    '.tgz', '.tbz', '.tbz2', '.txz', '.tzst', '.tlz',
    # raw compressed streams
    '.gz', '.bz2', '.xz', '.zst', '.zstd', '.lz4', '.lzma', '.lz', '.z', '.br', '.sz',
    # archive containers
    '.zip', '.7z', '.rar', '.jar', '.war', '.apk', '.cab', '.arj', '.lzh',
)


def compressed_extension(filename: str) -> Optional[str]:
    """
    Return the known compression extension of ``filename``, if any.

    Matching is case-insensitive and works on the name only.
    """
    lowered = filename.lower()
    for extension in COMPRESSED_EXTENSIONS:
        if lowered.endswith(extension) and len(lowered) > len(extension):
            return extension
    return None


def is_compressed_name(filename: str) -> bool:
    return compressed_extension(filename) is not None


def classify(kind: PathKind) -> Optional[ItemMode]:
    """
    Decide the processing mode for a path of the given kind.

    Pure function: no filesystem access.

    Returns:
        The ItemMode, or None if the path must be skipped
    """
    if kind is PathKind.DIRECTORY:
        return ItemMode.ARCHIVE_NEEDED
    if kind is PathKind.FILE:
        # Compressed or not, single files are encrypted directly.
        return ItemMode.PASS_THROUGH
    return None


def inspect_path(path: Path) -> PathKind:
    """Stat ``path`` (following symlinks) and report what it is."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return PathKind.MISSING
    except OSError as e:
        if e.errno == errno.ELOOP:
            logger.debug(f"Symlink loop: {path}")
        return PathKind.OTHER if os.path.lexists(path) else PathKind.MISSING

    if stat.S_ISDIR(st.st_mode):
        return PathKind.DIRECTORY
    if stat.S_ISREG(st.st_mode):
        return PathKind.FILE
    return PathKind.OTHER


def resolve_target(path: str) -> BackupTarget:
    resolved = Path(os.path.abspath(os.path.expanduser(path)))
    return BackupTarget(path=resolved, kind=inspect_path(resolved))


def classify_path(path: Path) -> Optional[ItemMode]:
    """Classify an on-disk path."""
    return classify(inspect_path(Path(path)))


def safe_filename_component(name: str) -> str:
    """Make a path component safe for use in generated filenames."""
    safe = "".join(
        c if c.isalnum() or c in ('-', '_', '.') else '_'
        for c in name
    ).strip('.')
    return safe or 'root'


def _unique(name: str, taken: set) -> str:
    candidate = name
    counter = 2
    while candidate in taken:
        candidate = f"{name}-{counter}"
        counter += 1
    taken.add(candidate)
    return candidate


def resolve_items(paths: Sequence[str]) -> Tuple[List[ProcessingItem], List[str]]:
    """
    Turn configured paths into processing items.

    Args:
        paths: Configured backup paths

    Returns:
        (items, skipped) where skipped lists the paths that were dropped

    Raises:
        NoValidTargets: If no path survives filtering
    """
    items = []
    skipped = []
    taken = set()

    for raw_path in paths:
        target = resolve_target(raw_path)
        mode = classify(target.kind)

        if mode is None:
            if target.kind is PathKind.MISSING:
                logger.warning(f"Skipping: {raw_path} (does not exist)")
            else:
                logger.warning(f"Skipping: {raw_path} (unsupported file type)")
            skipped.append(raw_path)
            continue

        if mode is ItemMode.PASS_THROUGH and is_compressed_name(target.path.name):
            logger.info(f"Already compressed, encrypting as-is: {target.path}")
        elif mode is ItemMode.PASS_THROUGH:
            logger.info(f"Single file, encrypting as-is: {target.path}")
        else:
            logger.info(f"Directory, will archive: {target.path}")

        name = _unique(safe_filename_component(target.path.name), taken)
        items.append(ProcessingItem(source=target.path, mode=mode, name=name))

    if not items:
        raise NoValidTargets(
            "No valid backup_items after filtering.",
            hint="Fix the paths in backup_items in your config file."
        )

    return items, skipped
