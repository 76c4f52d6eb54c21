"""
Shared pytest fixtures for gpg-cloud-backup tests.

This module provides fixtures for:
- Config and RunContext factories rooted in a temp directory
- In-process fakes for the gpg, archive and remote storage collaborators
- Temporary file fixtures (directories, plain files, compressed files)
- Mock fixtures for external services (S3)
"""

import os
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest
import boto3
from moto import mock_aws

from gpgbackup.config import Config
from gpgbackup.models import ArchiveArtifact, RemoteObject, RunContext
from gpgbackup.backup.encryption import EncryptionError
from gpgbackup.backup.storage import StorageError


TEST_FINGERPRINT = 'A1B2C3D4E5F60718293A4B5C6D7E8F9012345678'
TEST_STARTED_AT = datetime(2024, 1, 15, 12, 0, 0)


class FakeGpg:
    """In-process stand-in for GpgClient."""

    def __init__(self, fingerprints=None, fail_encrypt=False):
        self.fingerprints = list(fingerprints if fingerprints is not None else [TEST_FINGERPRINT])
        self.fail_encrypt = fail_encrypt
        self.imported = []
        self.encrypted = []

    def list_fingerprints(self, timeout=8):
        return list(self.fingerprints)

    def import_key(self, key_file):
        self.imported.append(Path(key_file))

    def encrypt(self, input_path, output_path, recipient):
        if self.fail_encrypt:
            raise EncryptionError(f"Encrypting {input_path} failed (exit 2): no public key")
        data = Path(input_path).read_bytes()
        Path(output_path).write_bytes(b'ENC[' + recipient.encode() + b']' + data)
        self.encrypted.append((Path(input_path), Path(output_path), recipient))


class FakeArchiver:
    """In-process stand-in for Archiver; writes a small placeholder archive."""

    def __init__(self, fail=False):
        self.fail = fail
        self.builds = []

    def build(self, output_path, codec, source_paths):
        from gpgbackup.backup.compression import CompressionError

        if self.fail:
            raise CompressionError("Archive creation failed (exit 2): tar: Cannot open")
        output_path = Path(output_path)
        output_path.write_bytes(b'archive of ' + str(source_paths[0]).encode())
        self.builds.append((output_path, codec, [Path(p) for p in source_paths]))
        return ArchiveArtifact(path=output_path, codec=codec, size=output_path.stat().st_size)


class FakeStorage:
    """In-process stand-in for RcloneStorage/S3Storage."""

    def __init__(self, remote_name='testremote', remotes=None, fail_upload=False, fail_prune=False):
        self.remote_name = remote_name
        self.remotes = list(remotes if remotes is not None else [remote_name])
        self.fail_upload = fail_upload
        self.fail_prune = fail_prune
        self.calls = []
        self.uploads = []

    def location(self, path):
        return f"{self.remote_name}:{path}"

    def list_remotes(self):
        self.calls.append(('list_remotes',))
        return list(self.remotes)

    def has_remote(self):
        return self.remote_name in self.list_remotes()

    def remote_hint(self):
        return "Run: rclone config"

    def ensure_dir(self, path):
        self.calls.append(('ensure_dir', path))

    def upload(self, local_path, dest_dir):
        self.calls.append(('upload', local_path, dest_dir))
        if self.fail_upload:
            raise StorageError(f"Upload to {self.location(dest_dir)} failed (exit 1): network down")
        self.uploads.append((Path(local_path), dest_dir))
        return RemoteObject(location=self.location(dest_dir + os.path.basename(local_path)))

    def delete_older_than(self, base, max_age_days):
        self.calls.append(('delete_older_than', base, max_age_days))
        if self.fail_prune:
            raise StorageError(f"Pruning {self.location(base)} failed (exit 1)")

    def remove_empty_dirs(self, base):
        self.calls.append(('remove_empty_dirs', base))


@pytest.fixture
def make_config(tmp_path):
    """
    Factory for Config instances rooted in tmp_path.

    Defaults: label 'test', host 'testhost', gz codec, rclone remote 'testremote'.
    """
    def _make(**overrides):
        values = {
            'backup_items': (),
            'backup_root': str(tmp_path / 'cloud-backup'),
            'label': 'test',
            'host_tag': 'testhost',
            'compression': 'gz',
            'gpg_recipient_fpr': TEST_FINGERPRINT,
            'remote_name': 'testremote',
            'remote_dir': 'Backups',
        }
        values.update(overrides)
        if 'backup_items' in overrides:
            values['backup_items'] = tuple(str(p) for p in overrides['backup_items'])
        return Config(**values)

    return _make


@pytest.fixture
def make_context():
    """Factory for RunContext with a fixed start time (2024-01-15 12:00:00)."""
    def _make(config, dry_run=False, retain=True, verbose=False):
        work_dir = config.backup_root_path / '2024-01-15'
        return RunContext(
            config=config,
            started_at=TEST_STARTED_AT,
            work_dir=work_dir,
            log_file=work_dir / 'test_cloud_backup_2024-01-15_12-00-00.log',
            dry_run=dry_run,
            retain=retain,
            verbose=verbose
        )

    return _make


@pytest.fixture
def fake_gpg():
    return FakeGpg()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_archiver():
    return FakeArchiver()


@pytest.fixture
def deps_ok():
    """Pretend every external binary is installed."""
    with patch('gpgbackup.backup.executor.missing_binaries', return_value=[]), \
            patch('gpgbackup.backup.executor.is_installed', return_value=True):
        yield


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary backup sources.

    Creates:
    - data/ (directory with a nested file)
    - notes.txt (plain file)
    - dump.sql.gz (already compressed file)
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()
    (data_dir / 'file1.txt').write_text('Content 1')
    nested_dir = data_dir / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'file2.txt').write_text('Nested content')

    (tmp_path / 'notes.txt').write_text('Plain notes')
    (tmp_path / 'dump.sql.gz').write_bytes(b'\x1f\x8b compressed')

    return tmp_path


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with patch.dict(os.environ, {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1',
    }):
        with mock_aws():
            s3 = boto3.resource('s3', region_name='us-east-1')
            s3.create_bucket(Bucket='test-bucket')
            yield s3
