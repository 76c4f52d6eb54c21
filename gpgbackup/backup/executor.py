"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Check dependencies (gpg, tar/zstd, rclone) and the configured codec
2. Resolve the GPG recipient once
3. Verify the remote exists (skipped in dry-run)
4. Classify backup items, dropping missing paths
5. Per item: archive directories, encrypt, upload, clean up
6. Enforce local and remote retention (skipped in dry-run)

Any failure before retention aborts the run; retention only logs.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

from gpgbackup import PROJECT_NAME, __version__
from gpgbackup.config import SUPPORTED_CODECS, Config
from gpgbackup.exceptions import BackupError, ConfigError, DependencyMissing
from gpgbackup.models import ItemMode, ItemResult, ProcessingItem, RunContext, RunSummary
from gpgbackup.utils.commands import is_installed, missing_binaries
from .compression import CODEC_REQUIREMENTS, Archiver, generate_archive_filename, preview_archive
from .encryption import GpgClient, RecipientResolver, encrypt_file, generate_encrypted_filename
from .items import resolve_items
from .retention import RetentionManager
from .storage import create_storage, remote_base_path, remote_destination

logger = logging.getLogger(__name__)

INSTALL_HINT = (
    "Install on Debian/Ubuntu:\n"
    "  sudo apt update && sudo apt install -y tar gnupg rclone zstd pigz"
)


def banner(title: str):
    logger.info(f"--- {title} ---")


def log_error(error: BackupError):
    """Log an error and its remediation hint."""
    logger.error(error.message)
    if error.hint:
        logger.error(error.hint)


def check_dependencies(config: Config):
    """
    Verify the configured codec and every external tool the run needs.

    Raises:
        ConfigError: If the codec is not supported
        DependencyMissing: If any required binary is missing (all are listed)
    """
    if config.compression not in SUPPORTED_CODECS:
        raise ConfigError(
            f"Unsupported compression={config.compression} (use {'|'.join(SUPPORTED_CODECS)})"
        )

    required = ['gpg'] + CODEC_REQUIREMENTS[config.compression]
    if config.remote_backend == 'rclone':
        required.append('rclone')

    missing = missing_binaries(list(dict.fromkeys(required)))
    for binary in missing:
        logger.error(f"Missing dependency: {binary}")

    if config.compression == 'gz' and not (is_installed('pigz') and is_installed('tar')):
        logger.info("pigz or tar not found, gzip archives will be written in-process")

    if missing:
        raise DependencyMissing(
            f"Missing dependencies: {', '.join(missing)}",
            hint=INSTALL_HINT
        )

    logger.info("Dependencies OK.")


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for one run.

    Collaborators (gpg, storage, archiver) can be injected; by default they
    are built from the run configuration.
    """

    def __init__(self, context: RunContext, gpg: Optional[GpgClient] = None, storage=None,
                 archiver: Optional[Archiver] = None):
        """
        Initialize backup executor.

        Args:
            context: RunContext for this invocation
            gpg: GpgClient (default: one using config.gpg_homedir)
            storage: Remote storage handler (default: from config.remote_backend)
            archiver: Archiver (default: Archiver())
        """
        self.context = context
        self.config = context.config
        self.gpg = gpg or GpgClient(homedir=self.config.gpg_homedir)
        self.archiver = archiver or Archiver()
        self._storage = storage
        self.summary = RunSummary()

    @property
    def storage(self):
        if self._storage is None:
            self._storage = create_storage(self.config, verbose=self.context.verbose)
        return self._storage

    # ================================================================================
    # Check-only mode
    # ================================================================================

    def check(self) -> bool:
        """
        Validate dependencies, config, remote and recipient without touching data.

        Returns:
            True if every check passed
        """
        ok = True

        banner("Checking dependencies")
        try:
            check_dependencies(self.config)
        except BackupError as e:
            log_error(e)
            ok = False

        banner("Config sanity check")
        if not self.config.backup_items:
            logger.error("backup_items is empty.")
            ok = False

        try:
            if self.storage.has_remote():
                logger.info(f"Remote '{self.config.remote_name}' found.")
            else:
                logger.warning(f"Remote '{self.config.remote_name}' NOT found. {self.storage.remote_hint()}")
                ok = False
        except BackupError as e:
            log_error(e)
            ok = False

        banner("GPG setup")
        try:
            RecipientResolver(self.gpg).resolve(
                self.config.gpg_recipient_fpr,
                self.config.gpg_import_key_file
            )
        except BackupError as e:
            log_error(e)
            ok = False

        if ok:
            logger.info("Check finished.")
        else:
            logger.error("Check finished with problems.")
        return ok

    # ================================================================================
    # Backup run
    # ================================================================================

    def run(self) -> RunSummary:
        """
        Execute the backup.

        Returns:
            RunSummary

        Raises:
            BackupError: On any fatal error; remaining items are not processed
        """
        banner("Checking dependencies")
        check_dependencies(self.config)

        if not self.config.backup_items:
            raise ConfigError(
                "backup_items is empty.",
                hint="Add the paths to back up to backup_items in your config file."
            )

        banner("GPG setup")
        recipient = RecipientResolver(self.gpg).resolve(
            self.config.gpg_recipient_fpr,
            self.config.gpg_import_key_file
        )
        self.context = replace(self.context, recipient=recipient)

        if not self.context.dry_run:
            self._require_remote()

        items, skipped = resolve_items(self.config.backup_items)
        self.summary.skipped = skipped
        logger.info(f"Items to back up: {len(items)} (skipped: {len(skipped)})")

        self.context.work_dir.mkdir(parents=True, exist_ok=True)

        for item in items:
            self.summary.items.append(self._process_item(item))

        if self.context.dry_run:
            banner("Dry-run: upload skipped")
            logger.info("Retention skipped (dry-run).")
        else:
            self._enforce_retention()

        self._log_summary()
        return self.summary

    def _require_remote(self):
        banner("Checking remote")
        if not self.storage.has_remote():
            raise ConfigError(
                f"Remote '{self.config.remote_name}' not found.",
                hint=self.storage.remote_hint()
            )
        logger.info(f"Remote '{self.config.remote_name}' found.")

    def _process_item(self, item: ProcessingItem) -> ItemResult:
        """Archive (if needed), encrypt and upload one item."""
        result = ItemResult(source=item.source, mode=item.mode)
        output_path = None

        try:
            if item.mode is ItemMode.ARCHIVE_NEEDED:
                banner(f"Creating archive: {item.source}")
                archive_path = self.context.work_dir / generate_archive_filename(
                    self.config.label, item.name, self.context.stamp, self.config.compression
                )
                result.archive = self.archiver.build(archive_path, self.config.compression, [item.source])
                item.archive_path = result.archive.path
                self._quick_test(result)
            else:
                output_path = self.context.work_dir / generate_encrypted_filename(
                    self.config.label, item.name, self.context.stamp
                )

            banner(f"Encrypting: {item.plaintext_path}")
            result.encrypted = encrypt_file(
                self.gpg, item.plaintext_path, self.context.recipient, output_path
            )
        finally:
            if item.owns_plaintext and not self.config.keep_plaintext_archive:
                logger.info(f"Removing plaintext archive: {item.archive_path}")
                self._remove(item.archive_path)

        if self.context.dry_run:
            logger.info(f"Dry-run: keeping {result.encrypted.path}")
            return result

        banner("Uploading to cloud")
        dest = remote_destination(
            self.config.remote_dir, self.config.label, self.config.host_tag, self.context.day
        )
        logger.info(f"Remote path: {self.storage.location(dest)}")
        self.storage.ensure_dir(dest)
        result.remote = self.storage.upload(str(result.encrypted.path), dest)
        logger.info(f"Upload done: {result.remote}")

        if self.config.delete_encrypted_after_upload:
            logger.info(f"Removing local encrypted file after upload: {result.encrypted.path}")
            self._remove(result.encrypted.path)

        return result

    def _quick_test(self, result: ItemResult):
        archive = result.archive
        logger.info(f"Archive size: {archive.size / 1024 / 1024:.2f} MB")
        for name in preview_archive(archive.path, archive.codec):
            logger.info(f"  {name}")

    def _remove(self, path: Path):
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")

    def _enforce_retention(self):
        banner("Retention")
        manager = RetentionManager(storage=self.storage)
        result = manager.enforce(
            self.config.backup_root_path,
            remote_base_path(self.config.remote_dir, self.config.label, self.config.host_tag),
            self.config.local_retention(enabled=self.context.retain),
            self.config.remote_retention(enabled=self.context.retain)
        )
        self.summary.local_deleted = result['local_deleted']
        self.summary.remote_pruned = result['remote_pruned']
        self.summary.retention_errors = result['errors']

    def _log_summary(self):
        banner("Backup finished")
        logger.info("Summary:")
        logger.info(f"  Project  : {PROJECT_NAME} {__version__}")
        logger.info(f"  Host     : {self.config.host_tag}")
        logger.info(f"  Items    : {len(self.summary.items)}")
        for result in self.summary.items:
            if result.archive:
                logger.info(f"  Archive  : {result.archive.path}")
            logger.info(f"  Encrypted: {result.encrypted.path if result.encrypted else '<skipped>'}")
            if result.remote:
                logger.info(f"  Remote   : {result.remote}")
        logger.info(f"  Log      : {self.context.log_file}")
