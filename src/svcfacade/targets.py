"""Deployment targets for service metadata (S3 buckets)."""

from __future__ import annotations

import json
import logging
import posixpath
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from botocore.exceptions import BotoCoreError, ClientError
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from svcfacade.fetcher import _sanitize_error, make_client

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000


class DeployError(Exception):
    """Raised when metadata cannot be deployed to a target."""


@dataclass
class FileToDeploy:
    local_path: Path
    remote_rel_path: str


def _strip_comment_keys(obj: Any) -> Any:
    """Drop pseudo-comment keys (prefixed with ``//``) at every depth."""
    if isinstance(obj, dict):
        return {k: _strip_comment_keys(v) for k, v in obj.items() if not str(k).startswith("//")}
    if isinstance(obj, list):
        return [_strip_comment_keys(item) for item in obj]
    return obj


def to_json(obj: Any) -> str:
    return json.dumps(_strip_comment_keys(obj), indent="\t")


def to_yaml(obj: Any) -> str:
    return yaml.safe_dump(_strip_comment_keys(obj), default_flow_style=False, sort_keys=False)


class S3BucketTarget:
    """Publishes files and documents under a root path of an S3 bucket.

    Args:
        bucket: Destination bucket.
        root_path: Key prefix all remote paths are resolved against.
        aws_region: Region used when no client is supplied.
        clean_first: Delete everything under *root_path* during :meth:`prepare`.
        name: Label used in log output.
        s3_client: Optional pre-built boto3 S3 client.
        max_workers: Concurrency for :meth:`deploy_files`.
    """

    type_name = "AwsS3Bucket"

    def __init__(
        self,
        bucket: str,
        root_path: str = "/",
        aws_region: str = "us-east-1",
        clean_first: bool = False,
        name: str | None = None,
        s3_client: S3Client | None = None,
        profile: str | None = None,
        max_workers: int = 8,
    ) -> None:
        if not bucket:
            raise DeployError("An AwsS3Bucket target requires a 'bucket'")
        self.bucket = bucket
        self.root_path = root_path or "/"
        self.aws_region = aws_region
        self.clean_first = clean_first
        self.name = name or self.type_name
        self.s3 = s3_client or make_client("s3", profile, aws_region)
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, cfg: dict[str, Any], **kwargs: Any) -> S3BucketTarget:
        """Build a target from a ``DeployTargets`` entry."""
        return cls(
            bucket=cfg.get("bucket", ""),
            root_path=cfg.get("rootPath", "/"),
            aws_region=cfg.get("awsRegion", "us-east-1"),
            clean_first=bool(cfg.get("cleanFirst", False)),
            name=cfg.get("name"),
            **kwargs,
        )

    def resolve_remote_abs(self, remote_rel_path: str) -> str:
        """Return the object key for *remote_rel_path* (never starts with ``/``).

        A trailing slash on *remote_rel_path* is kept so directory prefixes do
        not match sibling keys.
        """
        joined = posixpath.join("/", self.root_path, remote_rel_path.lstrip("/"))
        key = posixpath.normpath(joined).lstrip("/")
        if key and (not remote_rel_path or remote_rel_path.endswith("/")):
            key += "/"
        return key

    def resolve_remote_abs_full(self, remote_rel_path: str) -> str:
        return f"s3://{self.bucket}/{self.resolve_remote_abs(remote_rel_path)}"

    def prepare(self) -> None:
        """Get the target ready for deployment (cleaning the root if configured)."""
        if self.clean_first:
            logger.info("[%s] Cleaning (deleting all objects at) the destination root path ...", self.name)
            self.delete_remote_path("/")

    def put_object(self, remote_rel_path: str, body: bytes | str) -> dict[str, Any]:
        key = self.resolve_remote_abs(remote_rel_path)
        data = body.encode("utf-8") if isinstance(body, str) else body
        logger.info("[%s] ... Putting 's3://%s/%s' (%d bytes)", self.name, self.bucket, key, len(data))
        try:
            return self.s3.put_object(Bucket=self.bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as exc:
            raise DeployError(f"S3 PutObject failed for {key!r}: {_sanitize_error(str(exc))}") from exc

    def put_object_as_json(self, remote_rel_path: str, obj: Any) -> dict[str, Any]:
        return self.put_object(remote_rel_path, to_json(obj))

    def put_object_as_yaml(self, remote_rel_path: str, obj: Any) -> dict[str, Any]:
        return self.put_object(remote_rel_path, to_yaml(obj))

    def deploy_file(self, local_path: str | Path, remote_rel_path: str) -> dict[str, Any]:
        local_path = Path(local_path)
        logger.info("[%s] Deploying '%s' to '/%s' ...", self.name, local_path, remote_rel_path.lstrip("/"))
        try:
            data = local_path.read_bytes()
        except OSError as exc:
            raise DeployError(f"Could not read {str(local_path)!r}: {exc.strerror}") from exc
        return self.put_object(remote_rel_path, data)

    def deploy_files(self, files: list[FileToDeploy]) -> list[dict[str, Any]]:
        """Upload *files* concurrently; the first failure is raised."""
        if not files:
            return []

        console = Console(stderr=True)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Uploading to {self.name}…", total=len(files))

            def _upload(item: FileToDeploy) -> dict[str, Any]:
                result = self.deploy_file(item.local_path, item.remote_rel_path)
                progress.advance(task)
                return result

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                return list(executor.map(_upload, files))

    def list_keys(self, key_prefix: str) -> list[str]:
        """List up to 1,000 object keys starting with *key_prefix*."""
        try:
            response = self.s3.list_objects_v2(
                Bucket=self.bucket, Prefix=key_prefix, MaxKeys=DELETE_BATCH_SIZE
            )
        except (ClientError, BotoCoreError) as exc:
            raise DeployError(f"S3 ListObjectsV2 failed: {_sanitize_error(str(exc))}") from exc
        return [item["Key"] for item in response.get("Contents", [])]

    def delete_remote_path(self, remote_rel_path: str) -> int:
        """Delete every object under *remote_rel_path*, 1,000 keys at a time.

        Returns:
            The number of objects deleted.
        """
        key_prefix = self.resolve_remote_abs(remote_rel_path)
        logger.info("[%s] ... Deleting objects with path: '%s'", self.name, key_prefix)
        deleted = 0
        while True:
            keys = self.list_keys(key_prefix)
            if not keys:
                break
            try:
                self.s3.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in keys]},
                )
            except (ClientError, BotoCoreError) as exc:
                raise DeployError(f"S3 DeleteObjects failed: {_sanitize_error(str(exc))}") from exc
            deleted += len(keys)
            if len(keys) < DELETE_BATCH_SIZE:
                break
        logger.info("[%s] ... All objects at path were removed: '%s'", self.name, key_prefix)
        return deleted


TARGET_TYPES: dict[str, type[S3BucketTarget]] = {
    S3BucketTarget.type_name: S3BucketTarget,
}
