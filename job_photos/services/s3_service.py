"""S3 service for storing job photo objects."""

import configparser
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from mypy_boto3_s3 import S3Client

from job_photos.services.errors import UploadError

# Transient failures are retried inside botocore, not by the pipeline
CLIENT_CONFIG = Config(retries={"max_attempts": 3, "mode": "standard"})

# DeleteObjects accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000


def get_available_profiles() -> list[str]:
    """Get list of available AWS profiles from ~/.aws/config and ~/.aws/credentials."""
    profiles: set[str] = set()

    credentials_path = Path.home() / ".aws" / "credentials"
    if credentials_path.exists():
        config = configparser.ConfigParser()
        config.read(credentials_path)
        profiles.update(config.sections())

    config_path = Path.home() / ".aws" / "config"
    if config_path.exists():
        config = configparser.ConfigParser()
        config.read(config_path)
        for section in config.sections():
            # Config file uses "profile name" format
            profiles.add(section.removeprefix("profile "))

    profiles.add("default")

    return sorted(profiles)


def create_s3_client(
    profile: str,
    region: str = "eu-west-2",
    endpoint_url: str | None = None,
) -> S3Client:
    """Create an S3 client using the specified AWS profile.

    Args:
        profile: AWS profile name from ~/.aws/credentials or ~/.aws/config
        region: AWS region
        endpoint_url: Optional endpoint for S3-compatible stores

    Returns:
        Configured S3 client

    Raises:
        NoCredentialsError: If credentials are not found
    """
    session = boto3.Session(profile_name=profile or None, region_name=region)
    client: S3Client = session.client("s3", endpoint_url=endpoint_url, config=CLIENT_CONFIG)
    return client


@dataclass(frozen=True)
class ObjectInfo:
    """One listed object."""

    key: str
    size: int = 0
    last_modified: str = ""


def list_objects(client: S3Client, bucket: str, prefix: str) -> list[ObjectInfo]:
    """List every object under a prefix, following pagination.

    Raises:
        ClientError: If the listing fails
    """
    objects: list[ObjectInfo] = []
    paginator = client.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
        for obj in page.get("Contents", []):
            key = obj.get("Key", "")
            # Skip folder placeholder objects
            if not key or key.endswith("/"):
                continue
            last_mod = obj.get("LastModified")
            objects.append(
                ObjectInfo(
                    key=key,
                    size=obj.get("Size", 0),
                    last_modified=last_mod.isoformat() if last_mod else "",
                )
            )
    return objects


def validate_bucket_access(client: S3Client, bucket: str) -> dict[str, Any]:
    """Validate that we can access the specified S3 bucket.

    Args:
        client: S3 client
        bucket: S3 bucket name

    Returns:
        Dictionary with validation result
    """
    try:
        client.head_bucket(Bucket=bucket)
        return {
            "success": True,
            "bucket": bucket,
            "error": None,
        }
    except ClientError as e:
        error_code = e.response["Error"]["Code"]
        if error_code == "404":
            error_msg = f"Bucket '{bucket}' does not exist"
        elif error_code == "403":
            error_msg = f"Access denied to bucket '{bucket}'"
        else:
            error_msg = str(e)
        return {
            "success": False,
            "bucket": bucket,
            "error": error_msg,
        }
    except NoCredentialsError:
        return {
            "success": False,
            "bucket": bucket,
            "error": "AWS credentials not found",
        }


class S3ObjectStore:
    """Object store backed by a single S3 bucket."""

    def __init__(self, client: S3Client, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def put(self, key: str, data: bytes, content_type: str, upsert: bool = True) -> None:
        """Write an object.

        S3 always overwrites by key. With ``upsert=False`` the write is made
        conditional so an existing object is left untouched.

        Raises:
            UploadError: If the write fails
        """
        kwargs: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type or "application/octet-stream",
        }
        if not upsert:
            kwargs["IfNoneMatch"] = "*"
        try:
            self.client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise UploadError(key, str(e)) from e

    def list(self, prefix: str) -> list[ObjectInfo]:
        return list_objects(self.client, self.bucket, prefix)

    def get_signed_read_url(self, key: str, ttl: int = 3600) -> str:
        """Presigned GET URL valid for ``ttl`` seconds."""
        url: str = self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl,
        )
        return url

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def delete_many(self, keys: Sequence[str]) -> dict[str, str]:
        """Delete several objects with batched DeleteObjects calls.

        Returns:
            Error message per key that could not be deleted
        """
        errors: dict[str, str] = {}
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            chunk = keys[start : start + DELETE_BATCH_SIZE]
            response = self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": key} for key in chunk], "Quiet": True},
            )
            for error in response.get("Errors", []):
                errors[error.get("Key", "")] = error.get("Message") or error.get("Code", "")
        return errors


def create_object_store(settings: Any) -> S3ObjectStore:
    """Build the object store configured in settings."""
    client = create_s3_client(settings.aws_profile, settings.aws_region, settings.s3_endpoint_url)
    return S3ObjectStore(client, settings.s3_bucket)
