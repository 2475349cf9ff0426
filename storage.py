"""
Object storage for page illustrations and exported PDFs.
Supports local file system and cloud storage (AWS S3, Google Cloud Storage).
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger("storage")

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "application/pdf": "pdf",
}


@dataclass
class UploadResult:
    success: bool
    storage_url: Optional[str] = None
    public_url: Optional[str] = None
    error: Optional[str] = None


def extension_for(mime_type: str) -> str:
    return MIME_EXTENSIONS.get(mime_type, "bin")


def page_image_path(story_id: str, page_id: str, mime_type: str = "image/png") -> str:
    """Storage path for a generated page illustration."""
    return f"stories/{story_id}/pages/{page_id}/illustration.{extension_for(mime_type)}"


def page_upload_path(story_id: str, page_id: str, mime_type: str) -> str:
    """Storage path for a user-supplied page illustration."""
    return f"stories/{story_id}/pages/{page_id}/upload.{extension_for(mime_type)}"


def pdf_export_path(story_id: str, job_id: str) -> str:
    return f"stories/{story_id}/exports/{job_id}.pdf"


class ObjectStorage:
    """Uploads, reads and deletes blobs on the configured backend."""

    def __init__(self, storage_type: str = "local", base_dir: str = "outputs",
                 public_base_url: str = "http://localhost:5000", s3_bucket: str = "", gcs_bucket: str = ""):
        self.storage_type = storage_type
        self.base_dir = os.path.abspath(base_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.s3_bucket = s3_bucket
        self.gcs_bucket = gcs_bucket
        self._s3_client = None
        self._gcs_bucket = None

    @classmethod
    def from_config(cls, config) -> "ObjectStorage":
        return cls(
            storage_type=config.storage_type,
            base_dir=config.storage_dir,
            public_base_url=config.public_base_url,
            s3_bucket=config.aws_s3_bucket,
            gcs_bucket=config.gcs_bucket,
        )

    # -------------------------------------------------------------------------
    # Backend handles
    # -------------------------------------------------------------------------

    def _s3(self):
        if self._s3_client is None:
            import boto3
            # Credentials come from the standard AWS environment/credential chain
            self._s3_client = boto3.client("s3")
        return self._s3_client

    def _gcs(self):
        if self._gcs_bucket is None:
            from google.cloud import storage as gcs
            self._gcs_bucket = gcs.Client().bucket(self.gcs_bucket)
        return self._gcs_bucket

    def local_path(self, path: str) -> str:
        """Absolute path for a local object, refusing paths that escape base_dir."""
        full_path = os.path.abspath(os.path.join(self.base_dir, path))
        if os.path.commonpath([full_path, self.base_dir]) != self.base_dir:
            raise ValueError(f"Invalid storage path: {path}")
        return full_path

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def public_url(self, path: str) -> str:
        if self.storage_type == "local":
            return f"{self.public_base_url}/files/{path}"
        elif self.storage_type == "s3":
            return f"https://{self.s3_bucket}.s3.amazonaws.com/{path}"
        elif self.storage_type == "gcs":
            return f"https://storage.googleapis.com/{self.gcs_bucket}/{path}"
        raise ValueError(f"Unknown storage type: {self.storage_type}")

    def storage_url(self, path: str) -> str:
        if self.storage_type == "local":
            return f"file://{self.local_path(path)}"
        elif self.storage_type == "s3":
            return f"s3://{self.s3_bucket}/{path}"
        elif self.storage_type == "gcs":
            return f"gs://{self.gcs_bucket}/{path}"
        raise ValueError(f"Unknown storage type: {self.storage_type}")

    def upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        """
        Save bytes at ``path`` and make them publicly readable.

        Returns:
            UploadResult; on failure ``success`` is False and ``error`` is set
        """
        try:
            if self.storage_type == "local":
                full_path = self.local_path(path)
                os.makedirs(os.path.dirname(full_path), exist_ok=True)
                with open(full_path, "wb") as f:
                    f.write(data)
            elif self.storage_type == "s3":
                self._s3().put_object(Bucket=self.s3_bucket, Key=path, Body=data, ContentType=content_type)
            elif self.storage_type == "gcs":
                blob = self._gcs().blob(path)
                blob.upload_from_string(data, content_type=content_type)
                blob.make_public()
            else:
                raise ValueError(f"Unknown storage type: {self.storage_type}")
        except Exception as e:
            logger.error(f"[storage] Failed to upload {path}: {e}")
            return UploadResult(success=False, error=f"Upload failed: {e}")

        logger.info(f"[storage] Saved {path} ({len(data)} bytes, {self.storage_type})")
        return UploadResult(success=True, storage_url=self.storage_url(path), public_url=self.public_url(path))

    def read(self, path: str) -> Optional[bytes]:
        """Read an object back, or None if it cannot be found."""
        try:
            if self.storage_type == "local":
                full_path = self.local_path(path)
                if not os.path.exists(full_path):
                    logger.error(f"[storage] File not found: {full_path}")
                    return None
                with open(full_path, "rb") as f:
                    return f.read()
            elif self.storage_type == "s3":
                response = self._s3().get_object(Bucket=self.s3_bucket, Key=path)
                return response["Body"].read()
            elif self.storage_type == "gcs":
                return self._gcs().blob(path).download_as_bytes()
            raise ValueError(f"Unknown storage type: {self.storage_type}")
        except Exception as e:
            logger.error(f"[storage] Failed to read {path}: {e}")
            return None

    def delete(self, path: str) -> bool:
        try:
            if self.storage_type == "local":
                full_path = self.local_path(path)
                if not os.path.exists(full_path):
                    logger.warning(f"[storage] File not found for deletion: {full_path}")
                    return False
                os.remove(full_path)
            elif self.storage_type == "s3":
                self._s3().delete_object(Bucket=self.s3_bucket, Key=path)
            elif self.storage_type == "gcs":
                self._gcs().blob(path).delete()
            else:
                raise ValueError(f"Unknown storage type: {self.storage_type}")
        except Exception as e:
            logger.error(f"[storage] Failed to delete {path}: {e}")
            return False

        logger.info(f"[storage] Deleted {path}")
        return True
