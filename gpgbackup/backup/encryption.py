"""
Public-key encryption of backup artifacts with GnuPG.

The recipient is validated against the keyring once per run (RecipientResolver)
and then trusted unconditionally for every item: ``gpg --trust-model always``
skips GnuPG's web-of-trust check. This is a security-relevant deviation from
gpg's default trust validation; it is only safe because the fingerprint was
matched exactly against the keyring beforehand.
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

from gpgbackup.exceptions import ConfigError, RecipientNotFound, StageFailure
from gpgbackup.models import EncryptedArtifact
from gpgbackup.utils.commands import run_command
from .items import safe_filename_component

logger = logging.getLogger(__name__)

ENCRYPTED_SUFFIX = '.gpg'
PARTIAL_SUFFIX = '.part'

# Bounded so a pinentry/agent prompt cannot hang the run
LIST_KEYS_TIMEOUT = 8

KEY_EXPORT_HINT = (
    "Tip:\n"
    "  gpg --export -a 'you@example.com' > public.asc\n"
    "  gpg --import /path/to/public.asc"
)


class EncryptionError(StageFailure):
    """Raised when a gpg operation fails."""
    pass


def normalize_fingerprint(value: str) -> str:
    return "".join(value.split()).upper()


class GpgClient:
    """
    Thin wrapper around the gpg binary.

    Every call runs with ``--batch`` so gpg never prompts.
    """

    def __init__(self, binary: str = 'gpg', homedir: Optional[str] = None):
        self.binary = binary
        self.homedir = homedir or None

    def _base_args(self) -> List[str]:
        args = [self.binary, '--batch']
        if self.homedir:
            args.extend(['--homedir', str(self.homedir)])
        return args

    def list_fingerprints(self, timeout: float = LIST_KEYS_TIMEOUT) -> List[str]:
        """
        List full fingerprints of all public keys in the keyring.

        Failures and timeouts are logged and yield an empty list; the caller
        reports the recipient as not found.
        """
        try:
            result = run_command(
                self._base_args() + ['--list-keys', '--with-colons'],
                EncryptionError,
                "Listing GPG keys",
                timeout=timeout
            )
        except EncryptionError as e:
            logger.warning(str(e))
            return []

        fingerprints = []
        for line in result.stdout.splitlines():
            fields = line.split(':')
            # fpr records carry the fingerprint in field 10
            if fields[0] == 'fpr' and len(fields) > 9 and fields[9]:
                fingerprints.append(fields[9])
        return fingerprints

    def import_key(self, key_file: Path):
        """
        Import key material into the keyring.

        Importing a key that is already present succeeds without changes.

        Raises:
            EncryptionError: If gpg rejects the import
        """
        run_command(
            self._base_args() + ['--import', str(key_file)],
            EncryptionError,
            f"Importing GPG key {key_file}"
        )

    def encrypt(self, input_path: Path, output_path: Path, recipient: str):
        """
        Encrypt ``input_path`` for ``recipient`` into ``output_path``.

        Raises:
            EncryptionError: If gpg exits non-zero
        """
        run_command(
            self._base_args() + [
                '--yes', '--trust-model', 'always',
                '--encrypt', '-r', recipient,
                '-o', str(output_path), str(input_path)
            ],
            EncryptionError,
            f"Encrypting {input_path}"
        )


class RecipientResolver:
    """
    Validates the configured recipient against the keyring.
    """

    def __init__(self, gpg: GpgClient):
        self.gpg = gpg

    def resolve(self, identity: str, key_file: Optional[str] = None) -> str:
        """
        Resolve the recipient fingerprint for this run.

        Args:
            identity: Configured full fingerprint
            key_file: Optional public key file to import first

        Returns:
            The validated fingerprint

        Raises:
            ConfigError: If identity is empty
            EncryptionError: If the key import fails
            RecipientNotFound: If no key in the keyring has that fingerprint
        """
        if key_file:
            if os.path.isfile(key_file):
                logger.info(f"Importing public key: {key_file}")
                self.gpg.import_key(Path(key_file))
            else:
                logger.warning(f"gpg_import_key_file not found, skipping import: {key_file}")

        if not identity or not identity.strip():
            raise ConfigError(
                "gpg_recipient_fpr is empty.",
                hint="Set gpg_recipient_fpr in the config file to the full fingerprint of the recipient key."
            )

        wanted = normalize_fingerprint(identity)
        known = self.gpg.list_fingerprints()

        if not any(normalize_fingerprint(fpr) == wanted for fpr in known):
            raise RecipientNotFound(
                f"Fingerprint not found in keyring: {identity}",
                hint=KEY_EXPORT_HINT
            )

        logger.info(f"Using GPG fingerprint: {wanted}")
        return wanted


def encrypted_path_for(plain_path: Path) -> Path:
    return Path(str(plain_path) + ENCRYPTED_SUFFIX)


def generate_encrypted_filename(label: str, item_name: str, stamp: str) -> str:
    """Name for a file encrypted without an archive: {label}_{stamp}_{item_name}.gpg"""
    return f"{safe_filename_component(label)}_{stamp}_{item_name}{ENCRYPTED_SUFFIX}"


def encrypt_file(
    gpg: GpgClient,
    plain_path: Path,
    recipient: str,
    output_path: Optional[Path] = None
) -> EncryptedArtifact:
    """
    Encrypt one plaintext file.

    Ciphertext is written to ``<output>.part`` and renamed when gpg succeeds,
    so an interrupted run never leaves a truncated ``.gpg`` behind.

    Args:
        gpg: GpgClient
        plain_path: File to encrypt
        recipient: Resolved fingerprint
        output_path: Destination (default: plain_path + '.gpg')

    Returns:
        EncryptedArtifact

    Raises:
        EncryptionError: If encryption fails
    """
    plain_path = Path(plain_path)
    output_path = Path(output_path) if output_path else encrypted_path_for(plain_path)
    partial_path = output_path.with_name(output_path.name + PARTIAL_SUFFIX)

    logger.info(f"Recipient: {recipient}")

    try:
        gpg.encrypt(plain_path, partial_path, recipient)
        os.replace(partial_path, output_path)
    except BaseException:
        if partial_path.exists():
            try:
                partial_path.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove partial ciphertext {partial_path}: {e}")
        raise

    logger.info(f"Encrypted: {output_path}")
    return EncryptedArtifact(path=output_path, source=plain_path, recipient=recipient)
