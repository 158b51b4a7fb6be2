"""
Storage Backends - remote object store for cloud backups

The backup engines consume the small contract defined by RemoteStore:
files live in one dedicated folder, are addressed by id for download and
delete, and uploads upsert by name. S3RemoteStore implements it on any
S3-compatible service (AWS S3, Cloudflare R2, MinIO).
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .errors import DentalFlowError

logger = logging.getLogger(__name__)


class StorageError(DentalFlowError):
    """Remote storage operation failed"""
    code = "STORAGE_ERROR"


class StorageAuthError(StorageError):
    """Remote storage rejected the credentials"""
    code = "STORAGE_AUTH_FAILED"


class StorageConnectionError(StorageError):
    """Remote storage could not be reached"""
    code = "STORAGE_CONNECTION_FAILED"


@dataclass
class RemoteFile:
    """A file in the remote backup folder"""
    id: str
    name: str
    size: int
    created_at: Optional[datetime] = None
    description: Optional[str] = None

    @property
    def description_json(self) -> Dict[str, Any]:
        """Parsed description; empty when missing or not JSON."""
        if not self.description:
            return {}
        try:
            data = json.loads(self.description)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "description": self.description,
        }


class RemoteStore(ABC):
    """
    Abstract remote backup folder.

    All methods raise StorageError (or a subclass) on failure; nothing is
    retried.
    """

    @abstractmethod
    def is_authenticated(self) -> bool:
        """True if the store is reachable with the configured credentials."""

    @abstractmethod
    def upload_file(self, local_path: Path, name: str, mime_type: str,
                    description: Optional[str] = None) -> RemoteFile:
        """
        Upload ``local_path`` as ``name``, replacing any file of that name.

        Args:
            local_path: File to upload
            name: Remote file name inside the backup folder
            mime_type: Content type
            description: Small JSON blob, e.g. '{"encrypted": true}'
        """

    @abstractmethod
    def find_file(self, name: str) -> Optional[RemoteFile]:
        """Newest file called ``name``, or None."""

    @abstractmethod
    def download_file(self, file_id: str, dest_path: Path) -> Path:
        """Download a file. Raises KeyError if it does not exist."""

    @abstractmethod
    def list_files(self, limit: int = 50) -> List[RemoteFile]:
        """Files in the backup folder, newest first."""

    @abstractmethod
    def delete_file(self, file_id: str) -> bool:
        """Delete a file. Returns False if it did not exist."""

    @abstractmethod
    def get_file_metadata(self, file_id: str) -> Optional[RemoteFile]:
        """Metadata of one file without downloading it, or None."""


_AUTH_CODES = {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "403"}
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class S3RemoteStore(RemoteStore):
    """
    S3 / Cloudflare R2 backup folder

    The folder is a key prefix in the bucket and a file id is its full
    object key. The description is stored as object metadata.

    Authentication via:
    - Explicit credentials (access_key, secret_key)
    - Environment variables (AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY)
    - IAM roles (when running on AWS)
    """

    DEFAULT_FOLDER = "dental-flow-backups"

    def __init__(
        self,
        bucket: str,
        prefix: str = DEFAULT_FOLDER,
        endpoint: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = "auto",
        client: Any = None,
    ):
        """
        Args:
            bucket: S3 bucket name
            prefix: Folder for backup files inside the bucket
            endpoint: S3-compatible endpoint URL (for R2, MinIO, etc.)
            access_key: Access key ID (default: AWS_ACCESS_KEY_ID env var)
            secret_key: Secret access key (default: AWS_SECRET_ACCESS_KEY env var)
            region: Region (default: "auto" for R2)
            client: Pre-built boto3 client
        """
        if not bucket:
            raise ValueError("bucket is required")
        self.bucket = bucket
        self.prefix = prefix.strip("/") + "/" if prefix else ""
        self.endpoint = endpoint
        self.region = region
        self.access_key = access_key or os.getenv("AWS_ACCESS_KEY_ID")
        self.secret_key = secret_key or os.getenv("AWS_SECRET_ACCESS_KEY")
        self._client = client or self._create_client()

    def _create_client(self) -> Any:
        """Create and configure S3 client"""
        client_kwargs = {
            "service_name": "s3",
            "region_name": self.region,
        }
        if self.endpoint:
            client_kwargs["endpoint_url"] = self.endpoint
        if self.access_key and self.secret_key:
            client_kwargs["aws_access_key_id"] = self.access_key
            client_kwargs["aws_secret_access_key"] = self.secret_key

        try:
            return boto3.client(**client_kwargs)
        except NoCredentialsError as e:
            raise StorageAuthError(
                "No credentials found. Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY "
                "or configure remote.access_key and remote.secret_key."
            ) from e
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to create S3 client: {e}") from e

    def _make_key(self, name: str) -> str:
        return self.prefix + name.lstrip("/")

    def _name_of(self, key: str) -> str:
        return key[len(self.prefix):] if key.startswith(self.prefix) else key

    def _translate(self, e: ClientError, action: str) -> StorageError:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        if error_code == "NoSuchBucket":
            return StorageError(f"Bucket '{self.bucket}' does not exist")
        if error_code in _AUTH_CODES:
            return StorageAuthError(f"Access denied while trying to {action}: {e}")
        return StorageError(f"Failed to {action}: {e}")

    @staticmethod
    def _is_missing(e: ClientError) -> bool:
        return e.response.get("Error", {}).get("Code") in _MISSING_CODES

    def is_authenticated(self) -> bool:
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Remote store not available: {e}")
            return False

    def upload_file(self, local_path: Path, name: str, mime_type: str,
                    description: Optional[str] = None) -> RemoteFile:
        local_path = Path(local_path)
        if not local_path.exists():
            raise FileNotFoundError(f"Local file not found: {local_path}")

        key = self._make_key(name)
        extra_args: Dict[str, Any] = {"ContentType": mime_type}
        if description:
            extra_args["Metadata"] = {"description": description}

        try:
            self._client.upload_file(str(local_path), self.bucket, key, ExtraArgs=extra_args)
        except ClientError as e:
            raise self._translate(e, f"upload {name}") from e
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to upload {name}: {e}") from e

        logger.info(f"Uploaded {local_path.name} to s3://{self.bucket}/{key}")
        return RemoteFile(
            id=key,
            name=name,
            size=local_path.stat().st_size,
            created_at=datetime.now(),
            description=description,
        )

    def get_file_metadata(self, file_id: str) -> Optional[RemoteFile]:
        try:
            response = self._client.head_object(Bucket=self.bucket, Key=file_id)
        except ClientError as e:
            if self._is_missing(e):
                return None
            raise self._translate(e, f"read metadata of {file_id}") from e
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to read metadata of {file_id}: {e}") from e

        return RemoteFile(
            id=file_id,
            name=self._name_of(file_id),
            size=response.get("ContentLength", 0),
            created_at=response.get("LastModified"),
            description=(response.get("Metadata") or {}).get("description"),
        )

    def find_file(self, name: str) -> Optional[RemoteFile]:
        # One object per key, so the newest file of a name is the only one
        return self.get_file_metadata(self._make_key(name))

    def download_file(self, file_id: str, dest_path: Path) -> Path:
        dest_path = Path(dest_path)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._client.download_file(self.bucket, file_id, str(dest_path))
        except ClientError as e:
            if self._is_missing(e):
                raise KeyError(f"Remote file not found: {file_id}") from e
            raise self._translate(e, f"download {file_id}") from e
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to download {file_id}: {e}") from e
        return dest_path

    def list_files(self, limit: int = 50) -> List[RemoteFile]:
        files: List[RemoteFile] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for item in page.get("Contents", []):
                    files.append(RemoteFile(
                        id=item["Key"],
                        name=self._name_of(item["Key"]),
                        size=item.get("Size", 0),
                        created_at=item.get("LastModified"),
                    ))
        except ClientError as e:
            raise self._translate(e, "list backups") from e
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to list backups: {e}") from e

        files.sort(key=lambda f: f.created_at.timestamp() if f.created_at else 0.0, reverse=True)
        return files[:limit]

    def delete_file(self, file_id: str) -> bool:
        if self.get_file_metadata(file_id) is None:
            return False
        try:
            self._client.delete_object(Bucket=self.bucket, Key=file_id)
        except ClientError as e:
            raise self._translate(e, f"delete {file_id}") from e
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to delete {file_id}: {e}") from e
        logger.info(f"Deleted remote backup {file_id}")
        return True


def create_remote_store_from_config(config: Dict[str, Any]) -> Optional[RemoteStore]:
    """
    Build the remote store described by the ``remote`` config section.

    Returns None when no remote is configured.

    Raises:
        ValueError: Unknown remote type
    """
    remote = config.get("remote") or {}
    if not remote.get("bucket"):
        return None

    store_type = remote.get("type", "s3").lower()
    if store_type not in ("s3", "r2"):
        raise ValueError(f"Unsupported remote type: {store_type}")

    return S3RemoteStore(
        bucket=remote["bucket"],
        prefix=remote.get("prefix", S3RemoteStore.DEFAULT_FOLDER),
        endpoint=remote.get("endpoint"),
        access_key=remote.get("access_key"),
        secret_key=remote.get("secret_key"),
        region=remote.get("region", "auto"),
    )
