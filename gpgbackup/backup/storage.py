"""
Remote storage handlers for encrypted backups.

Supports:
- RcloneStorage: any rclone remote (OneDrive, Google Drive, S3, ...)
- S3Storage: AWS S3 or an S3-compatible endpoint through boto3

Remote layout (label before host):
    {remote_dir}/{label}/{host_tag}/{YYYY-MM-DD}/{filename}

Remote retention prunes everything under {remote_dir}/{label}/{host_tag}.
"""

import os
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from gpgbackup.exceptions import StageFailure
from gpgbackup.models import RemoteObject
from gpgbackup.utils.commands import run_command

logger = logging.getLogger(__name__)

RCLONE_LIST_TIMEOUT = 30

# Use multipart upload for files larger than 100MB
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024
DELETE_BATCH_SIZE = 1000


class StorageError(StageFailure):
    """Raised when a storage operation fails."""
    pass


def remote_base_path(remote_dir: str, label: str, host_tag: str) -> str:
    """Path that scopes one backup set: {remote_dir}/{label}/{host_tag}."""
    parts = [p.strip('/') for p in (remote_dir, label, host_tag) if p and p.strip('/')]
    return '/'.join(parts)


def remote_destination(remote_dir: str, label: str, host_tag: str, day: str) -> str:
    """Directory for one day's uploads: {base}/{YYYY-MM-DD}/."""
    return f"{remote_base_path(remote_dir, label, host_tag)}/{day}/"


class RcloneStorage:
    """
    Handler for uploading backups through rclone.

    Attributes:
        remote_name: rclone remote alias (without the trailing colon)
        verbose: Show transfer progress on the terminal
    """

    def __init__(self, remote_name: str, verbose: bool = False, binary: str = 'rclone'):
        self.remote_name = remote_name
        self.verbose = verbose
        self.binary = binary

    def location(self, path: str) -> str:
        return f"{self.remote_name}:{path}"

    def list_remotes(self) -> List[str]:
        """
        List configured rclone remotes.

        Raises:
            StorageError: If rclone listremotes fails
        """
        result = run_command(
            [self.binary, 'listremotes'],
            StorageError,
            "Listing rclone remotes",
            timeout=RCLONE_LIST_TIMEOUT
        )
        # Each line is "remotename:"
        return [
            line.strip().rstrip(':')
            for line in result.stdout.splitlines()
            if line.strip()
        ]

    def has_remote(self) -> bool:
        return self.remote_name in self.list_remotes()

    def remote_hint(self) -> str:
        return "Run: rclone config"

    def ensure_dir(self, path: str):
        run_command(
            [self.binary, 'mkdir', self.location(path)],
            StorageError,
            f"Creating remote directory {self.location(path)}"
        )

    def upload(self, local_path: str, dest_dir: str) -> RemoteObject:
        """
        Copy a file into a remote directory (the local file is left in place).

        Args:
            local_path: Path to local file
            dest_dir: Remote directory path (without remote prefix)

        Returns:
            RemoteObject for the uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        dest = self.location(dest_dir)
        args = [self.binary, 'copy', str(local_path), dest]
        if self.verbose:
            args.extend(['--progress', '--stats-one-line-date', '--human-readable'])
        else:
            args.extend(['-q', '--stats', '0'])

        run_command(args, StorageError, f"Upload to {dest}", capture_output=not self.verbose)

        return RemoteObject(
            location=self.location(dest_dir.rstrip('/') + '/' + os.path.basename(local_path)),
            size=os.path.getsize(local_path)
        )

    def delete_older_than(self, base: str, max_age_days: int):
        run_command(
            [self.binary, 'delete', self.location(base), '--min-age', f"{max_age_days}d"],
            StorageError,
            f"Pruning {self.location(base)}"
        )

    def remove_empty_dirs(self, base: str):
        run_command(
            [self.binary, 'rmdirs', self.location(base), '--leave-root'],
            StorageError,
            f"Removing empty directories under {self.location(base)}"
        )


def _s3_error(action: str, error: Exception) -> StorageError:
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', 'Unknown')
        return StorageError(f"S3 {action} failed ({code}): {error}")
    return StorageError(f"S3 {action} failed: {error}")


class S3Storage:
    """
    Handler for uploading backups to AWS S3.

    The remote name is the bucket; directories map to key prefixes.
    Credentials come from the standard boto3 chain (environment,
    ~/.aws/credentials, instance profile).
    """

    def __init__(self, bucket_name: str, region: Optional[str] = None, endpoint_url: Optional[str] = None):
        self.bucket_name = bucket_name
        self.region = region or None

        try:
            self.s3_client = boto3.client('s3', region_name=self.region, endpoint_url=endpoint_url or None)
        except (BotoCoreError, ValueError) as e:
            raise _s3_error("client setup", e)

    def location(self, key: str) -> str:
        return f"s3://{self.bucket_name}/{key}"

    def list_remotes(self) -> List[str]:
        try:
            buckets = self.s3_client.list_buckets().get('Buckets', [])
        except (ClientError, BotoCoreError) as e:
            raise _s3_error("bucket listing", e)
        return [bucket['Name'] for bucket in buckets]

    def has_remote(self) -> bool:
        return self.bucket_name in self.list_remotes()

    def remote_hint(self) -> str:
        return f"Create the bucket '{self.bucket_name}' or check your AWS credentials"

    def ensure_dir(self, path: str):
        # Prefixes exist implicitly in S3
        logger.debug(f"S3 prefix {self.location(path)} needs no creation")

    def upload(self, local_path: str, dest_dir: str) -> RemoteObject:
        """
        Upload ``local_path`` to ``{dest_dir}/{basename}``.

        Files above MULTIPART_THRESHOLD go up in parts; a failed multipart
        upload is aborted before the error is raised.
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        key = dest_dir.rstrip('/') + '/' + os.path.basename(local_path)
        size = os.path.getsize(local_path)

        try:
            with open(local_path, 'rb') as f:
                if size > MULTIPART_THRESHOLD:
                    self._upload_in_parts(f, key)
                else:
                    self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=f)
        except (ClientError, BotoCoreError, OSError) as e:
            raise _s3_error("upload", e)

        return RemoteObject(location=self.location(key), size=size)

    def _upload_in_parts(self, f, key: str):
        target = {'Bucket': self.bucket_name, 'Key': key}
        upload_id = self.s3_client.create_multipart_upload(**target)['UploadId']

        try:
            parts = []
            chunks = iter(lambda: f.read(MULTIPART_CHUNK_SIZE), b'')
            for number, chunk in enumerate(chunks, start=1):
                etag = self.s3_client.upload_part(
                    PartNumber=number, UploadId=upload_id, Body=chunk, **target
                )['ETag']
                parts.append({'PartNumber': number, 'ETag': etag})

            self.s3_client.complete_multipart_upload(
                UploadId=upload_id, MultipartUpload={'Parts': parts}, **target
            )
        except (ClientError, BotoCoreError, OSError):
            try:
                self.s3_client.abort_multipart_upload(UploadId=upload_id, **target)
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def list_objects(self, prefix: str) -> List[Dict[str, Any]]:
        """Objects under ``prefix`` as dicts with Key, LastModified and Size."""
        try:
            pages = self.s3_client.get_paginator('list_objects_v2').paginate(
                Bucket=self.bucket_name, Prefix=prefix
            )
            return [
                {'Key': obj['Key'], 'LastModified': obj['LastModified'], 'Size': obj['Size']}
                for page in pages
                for obj in page.get('Contents', [])
            ]
        except (ClientError, BotoCoreError) as e:
            raise _s3_error("listing", e)

    def delete_older_than(self, base: str, max_age_days: int, now: Optional[datetime] = None) -> int:
        """
        Delete objects under ``base`` last modified more than ``max_age_days`` ago.

        Returns:
            Number of objects deleted
        """
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=max_age_days)
        keys = [
            obj['Key'] for obj in self.list_objects(base.rstrip('/') + '/')
            if obj['LastModified'] < cutoff
        ]

        # delete_objects takes at most 1000 keys per request
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': True}
                )
            except (ClientError, BotoCoreError) as e:
                raise _s3_error("delete", e)

            failed = response.get('Errors', [])
            if failed:
                first = failed[0]
                raise StorageError(
                    f"S3 delete failed for {len(failed)} object(s), "
                    f"first {first.get('Key')}: {first.get('Code')}"
                )
            for key in batch:
                logger.info(f"Deleted S3 object: {key}")

        return len(keys)

    def remove_empty_dirs(self, base: str):
        # S3 has no directories to remove
        pass


def create_storage(config, verbose: bool = False):
    """
    Factory function to create the configured storage handler.

    Returns:
        RcloneStorage or S3Storage instance

    Raises:
        ValueError: If remote_backend is invalid
    """
    if config.remote_backend == 'rclone':
        return RcloneStorage(config.remote_name, verbose=verbose)
    elif config.remote_backend == 's3':
        return S3Storage(
            bucket_name=config.remote_name,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint_url
        )
    else:
        raise ValueError(f"Invalid remote backend: {config.remote_backend}")
