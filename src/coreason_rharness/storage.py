# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rharness

import mimetypes
from pathlib import Path

import anyio
import boto3
from botocore.exceptions import ClientError
from loguru import logger

from coreason_rharness.config import HarnessConfig

DOCUMENT_URL_TTL = 3600


class S3Storage:
    """Publishes interactive documents to an S3 bucket behind presigned URLs.

    Objects are keyed ``<prefix><session_id>/<file name>`` so one bucket can
    serve several deployments.
    """

    def __init__(
        self,
        bucket: str,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        endpoint_url: str | None = None,
        prefix: str = "rharness/",
        expires_in: int = DOCUMENT_URL_TTL,
    ):
        self.bucket = bucket
        self.prefix = prefix
        self.expires_in = expires_in
        self.client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            endpoint_url=endpoint_url,
        )

    @classmethod
    def from_config(cls, config: HarnessConfig) -> "S3Storage | None":
        """Builds the store from harness settings, or None when no bucket is configured."""
        if not config.s3_bucket:
            return None
        return cls(
            bucket=config.s3_bucket,
            region=config.s3_region,
            access_key=config.s3_access_key,
            secret_key=config.s3_secret_key,
            endpoint_url=config.s3_endpoint_url,
        )

    @staticmethod
    def content_type(file_path: Path) -> str:
        guessed, _ = mimetypes.guess_type(file_path.name)
        return guessed or "application/octet-stream"

    def _put_and_presign(self, file_path: Path, key: str) -> str:
        self.client.upload_file(
            str(file_path),
            self.bucket,
            key,
            ExtraArgs={"ContentType": self.content_type(file_path)},
        )
        url: str = self.client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.expires_in,
        )
        return url

    async def upload_file(self, file_path: Path, object_name: str) -> str:
        """Uploads a rendered document and returns a presigned URL for it.

        Args:
            file_path: The local document file.
            object_name: Key relative to the store prefix, ``<session_id>/<file name>``.

        Raises:
            FileNotFoundError: If the document was never written.
            ClientError: If S3 rejects the upload.
        """
        if not file_path.is_file():
            raise FileNotFoundError(f"Document not found: {file_path}")

        key = f"{self.prefix}{object_name}"
        logger.info(f"Publishing {file_path.name} to s3://{self.bucket}/{key}")
        try:
            return await anyio.to_thread.run_sync(self._put_and_presign, file_path, key)
        except ClientError as e:
            logger.error(f"Failed to publish document to S3: {e}")
            raise
