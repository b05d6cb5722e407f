"""Fetch per-service metadata documents from the S3 source bucket."""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from svcfacade.models import ServiceBundle

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

_ARN_RE = re.compile(r"arn:aws[a-zA-Z-]*:[a-zA-Z0-9-]+:\S+")
_ACCOUNT_RE = re.compile(r"\b\d{12}\b")
_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}

SERVICE_FILES = ("package.json", "serverless.json", "openapi.json")
MAX_KEYS = 1000


class FetchError(Exception):
    """Raised when reading from S3 or Lambda fails."""


def _sanitize_error(msg: str) -> str:
    """Strip ARNs and AWS account IDs from error messages."""
    msg = _ARN_RE.sub("arn:***", msg)
    msg = _ACCOUNT_RE.sub("***", msg)
    return msg


_RETRY_CONFIG = Config(retries={"max_attempts": 5, "mode": "adaptive"})


def make_client(service: str, profile: str | None = None, region: str | None = None) -> Any:
    """Create a boto3 client for *service* with adaptive retries."""
    session = boto3.Session(profile_name=profile, region_name=region)
    return session.client(service, config=_RETRY_CONFIG)


class ServiceMetadataFetcher:
    """Reads ``<prefix><service>/latest/*.json`` documents from one bucket.

    Args:
        s3_client: A boto3 S3 client.
        bucket: Source bucket name.
        prefix: Key prefix holding one "directory" per service (e.g. ``"services/"``).
        max_workers: Number of services fetched concurrently.
    """

    def __init__(
        self,
        s3_client: S3Client,
        bucket: str,
        prefix: str = "",
        max_workers: int = 8,
    ) -> None:
        self.s3 = s3_client
        self.bucket = bucket
        self.prefix = prefix
        self.max_workers = max_workers

    def list_service_names(self) -> list[str]:
        """List the service "directories" directly under the prefix.

        Like ``ListObjectsV2`` itself this returns at most 1,000 entries.

        Raises:
            FetchError: If the listing fails.
        """
        logger.info("Fetching the service list from s3://%s/%s ...", self.bucket, self.prefix)
        try:
            response = self.s3.list_objects_v2(
                Bucket=self.bucket,
                Prefix=self.prefix,
                Delimiter="/",
                MaxKeys=MAX_KEYS,
            )
        except (ClientError, BotoCoreError) as exc:
            sanitized = _sanitize_error(str(exc))
            raise FetchError(f"S3 ListObjectsV2 failed: {sanitized}") from exc

        names: list[str] = []
        for item in response.get("CommonPrefixes", []):
            relative = item["Prefix"]
            if relative.startswith(self.prefix):
                relative = relative[len(self.prefix) :]
            names.append(relative.rstrip("/"))
        if response.get("IsTruncated"):
            logger.warning(
                "Service list under s3://%s/%s was truncated at %d entries",
                self.bucket, self.prefix, MAX_KEYS,
            )
        return names

    def get_object(self, key: str) -> bytes | None:
        """Download one object, returning ``None`` when it does not exist."""
        logger.debug("... Downloading 's3://%s/%s' ...", self.bucket, key)
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            if exc.response["Error"]["Code"] in _NOT_FOUND_CODES:
                logger.warning("Download of 's3://%s/%s' failed, file not found!", self.bucket, key)
                return None
            sanitized = _sanitize_error(str(exc))
            raise FetchError(f"S3 GetObject failed for {key!r}: {sanitized}") from exc
        except BotoCoreError as exc:
            sanitized = _sanitize_error(str(exc))
            raise FetchError(f"S3 GetObject failed for {key!r}: {sanitized}") from exc

    def get_latest_json(self, service_name: str, filename: str) -> Any:
        """Return the parsed ``latest/<filename>`` document for a service, or ``None``.

        Raises:
            FetchError: If the file exists but is not valid JSON.
        """
        key = f"{self.prefix}{service_name}/latest/{filename}"
        body = self.get_object(key)
        if body is None:
            return None
        try:
            return json.loads(body)
        except ValueError as exc:
            raise FetchError(f"Invalid JSON in s3://{self.bucket}/{key}: {exc}") from exc

    def fetch_service_bundle(self, service_name: str) -> ServiceBundle:
        """Fetch the package, serverless and OpenAPI documents for one service."""
        logger.info("Downloading metadata for service '%s' ...", service_name)
        package, serverless, open_api = (
            self.get_latest_json(service_name, filename) for filename in SERVICE_FILES
        )
        return ServiceBundle(
            name=service_name,
            package=package,
            serverless=serverless,
            open_api=open_api,
        )

    def fetch_all(self) -> list[ServiceBundle]:
        """Fetch the bundles of every service under the prefix, concurrently.

        Results keep the order of :meth:`list_service_names`.
        """
        names = self.list_service_names()
        logger.info("Fetching the metadata for %d service(s) ...", len(names))
        if not names:
            return []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(self.fetch_service_bundle, names))
