"""
Archive creation for directory items.

Supported codecs:
- zstd: tar piped through ``zstd -19``
- gz:   tar piped through ``pigz -9`` when both tar and pigz are installed,
        otherwise an in-process gzip tar writer

Symlinked sources are resolved first. Members are stored under their full
real path (leading slash stripped, as tar does), so an archive restores with
``tar -xf ARCHIVE -C /`` independent of the directory the backup ran from.
"""

import os
import logging
import tarfile
from pathlib import Path
from typing import Dict, List, Sequence

from gpgbackup.exceptions import StageFailure
from gpgbackup.models import ArchiveArtifact
from gpgbackup.utils.commands import is_installed, run_command
from .items import safe_filename_component

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = '.part'
PREVIEW_LIMIT = 10


class CompressionError(StageFailure):
    """Raised when archive creation fails."""
    pass


CODEC_EXTENSIONS: Dict[str, str] = {
    'zstd': 'tar.zst',
    'gz': 'tar.gz',
}

# Codec -> binaries that must all be present
CODEC_REQUIREMENTS: Dict[str, List[str]] = {
    'zstd': ['tar', 'zstd'],
    'gz': [],
}


def codec_extension(codec: str) -> str:
    try:
        return CODEC_EXTENSIONS[codec]
    except KeyError:
        raise ValueError(
            f"Invalid compression codec: {codec}. "
            f"Valid options: {list(CODEC_EXTENSIONS.keys())}"
        )


def generate_archive_filename(label: str, item_name: str, stamp: str, codec: str) -> str:
    """
    Generate a standardized archive filename.

    Format: {label}_{item_name}_{stamp}.{ext}
    """
    return f"{safe_filename_component(label)}_{item_name}_{stamp}.{codec_extension(codec)}"


def resolve_source(path: Path) -> Path:
    """Return the real path of ``path`` with every symlink resolved."""
    real = Path(os.path.realpath(path))
    if real != Path(path).absolute():
        logger.info(f"Following symlink: {path} -> {real}")
    return real


def _member_names(source_paths: Sequence[Path]) -> List[str]:
    return [str(Path(p).absolute()).lstrip('/') or '.' for p in source_paths]


class Archiver:
    """
    Builds one compressed archive from a list of source paths.

    Any failure removes the partial output and raises CompressionError.
    """

    def build(self, output_path: Path, codec: str, source_paths: Sequence[Path]) -> ArchiveArtifact:
        """
        Create a compressed archive.

        Args:
            output_path: Final archive path
            codec: 'zstd' or 'gz'
            source_paths: Files/directories to include

        Returns:
            ArchiveArtifact describing the finished archive

        Raises:
            CompressionError: If archive creation fails
            ValueError: If codec is invalid
        """
        if not source_paths:
            raise CompressionError("No source paths provided")

        codec_extension(codec)
        output_path = Path(output_path)
        partial_path = output_path.with_name(output_path.name + PARTIAL_SUFFIX)

        for source in source_paths:
            if not Path(source).exists():
                raise CompressionError(f"Path does not exist: {source}")

        # Neither writer follows a top-level symlink, so archive its target
        source_paths = [resolve_source(p) for p in source_paths]

        logger.info(f"Items to include: {len(source_paths)}")

        try:
            if codec == 'zstd':
                self._create_with_tar(partial_path, 'zstd -19', source_paths)
            elif is_installed('pigz') and is_installed('tar'):
                self._create_with_tar(partial_path, 'pigz -9', source_paths)
            else:
                logger.debug("pigz or tar not found, using in-process gzip")
                self._create_tar(partial_path, source_paths)
            os.replace(partial_path, output_path)
        except BaseException:
            # Clean up partial archive on failure
            if partial_path.exists():
                try:
                    partial_path.unlink()
                except OSError as e:
                    logger.warning(f"Failed to remove partial archive {partial_path}: {e}")
            raise

        artifact = ArchiveArtifact(path=output_path, codec=codec, size=get_archive_size(str(output_path)))
        logger.info(f"Archive ready: {output_path}")
        return artifact

    def _create_with_tar(self, archive_path: Path, compressor: str, source_paths: Sequence[Path]):
        """Create the archive with the tar binary and an external compressor."""
        args = ['tar', '-I', compressor, '-cf', str(archive_path), '-C', '/']
        args.extend(_member_names(source_paths))
        run_command(args, CompressionError, "Archive creation")

    def _create_tar(self, archive_path: Path, source_paths: Sequence[Path]):
        """Create a gzip compressed tar archive in-process."""
        try:
            with tarfile.open(archive_path, 'w:gz', compresslevel=9) as tar:
                for source_path, arcname in zip(source_paths, _member_names(source_paths)):
                    tar.add(str(Path(source_path).absolute()), arcname=arcname, recursive=True)
        except (OSError, tarfile.TarError) as e:
            raise CompressionError(f"Failed to create archive: {e}")


def preview_archive(archive_path: Path, codec: str, limit: int = PREVIEW_LIMIT) -> List[str]:
    """
    List the first ``limit`` member names of an archive.

    Best effort: returns an empty list and logs a warning on failure.
    """
    try:
        if codec == 'gz':
            names = []
            with tarfile.open(archive_path, 'r:gz') as tar:
                for member in tar:
                    names.append(member.name)
                    if len(names) >= limit:
                        break
            return names

        result = run_command(
            ['tar', '-I', 'zstd', '-tf', str(archive_path)],
            CompressionError,
            "Archive listing"
        )
        return result.stdout.splitlines()[:limit]
    except (OSError, tarfile.TarError, CompressionError) as e:
        logger.warning(f"Archive quick test failed for {archive_path}: {e}")
        return []


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
