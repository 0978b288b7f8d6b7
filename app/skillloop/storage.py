"""
File storage for training completion proofs.

`STORAGE_BACKEND=local` writes under STORAGE_ROOT (default ./storage);
`STORAGE_BACKEND=s3` targets any S3-compatible bucket (DigitalOcean Spaces, MinIO, AWS).
"""
from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from datetime import date
from functools import cached_property
from pathlib import Path
from typing import BinaryIO

import boto3
from botocore.exceptions import ClientError
from werkzeug.utils import secure_filename


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    sha256: str
    size_bytes: int


def proof_key(assignment_id: int, filename: str, upload_date: date | None = None) -> str:
    """proofs/<assignment>/<YYYY-MM-DD>/<secure filename>; the same upload on the same day maps to the same key."""
    upload_date = upload_date or date.today()
    return f"proofs/{assignment_id}/{upload_date.isoformat()}/{secure_filename(filename) or 'proof.bin'}"


class Storage:
    def _write(self, key: str, data: bytes, content_type: str | None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def save(self, key: str, data: bytes, *, content_type: str | None = None) -> StoredObject:
        if not data:
            raise StorageError("Refusing to store an empty file.")
        self._write(key, data, content_type)
        return StoredObject(key=key, sha256=hashlib.sha256(data).hexdigest(), size_bytes=len(data))


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        parts = [p for p in key.replace("\\", "/").split("/") if p]
        if not parts or ".." in parts:
            raise StorageError(f"Invalid storage key: {key}")
        return self.root.joinpath(*parts)

    def _write(self, key: str, data: bytes, content_type: str | None) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        path = self._path(key)
        if not path.is_file():
            raise StorageError(f"Stored file not found: {key}")
        return path.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    @cached_property
    def client(self):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def check_bucket(self) -> None:
        """Raises botocore errors when the bucket is unreachable or the credentials are wrong."""
        self.client.head_bucket(Bucket=self.bucket)

    def _write(self, key: str, data: bytes, content_type: str | None) -> None:
        extra = {"ContentType": content_type} if content_type else {}
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)

    def open(self, key: str) -> BinaryIO:
        try:
            return self.client.get_object(Bucket=self.bucket, Key=key)["Body"]
        except ClientError as e:
            raise StorageError(f"Stored file not found: {key}") from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError:
            return False
        return True

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)


def storage_from_config(config: dict) -> Storage:
    if (config.get("STORAGE_BACKEND") or "local").strip().lower() == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    return LocalStorage(root=Path(config.get("STORAGE_ROOT") or Path(os.getcwd()) / "storage"))
