"""
Storage Gateway
Object storage on AWS S3 for scene artifacts and final renders
"""

import asyncio
import os
import mimetypes
from pathlib import Path
from typing import Optional, Callable

from ..utils.exceptions import StorageError
from ..utils.logger import get_logger
from ..config import Settings

logger = get_logger()

MULTIPART_THRESHOLD = 5 * 1024 * 1024


class StorageGateway:
    """Async wrapper around a boto3 S3 client. Uploads overwrite existing keys."""

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self.default_bucket = settings.s3_bucket_name
        self._client = client

    @property
    def client(self):
        """Lazy initialize S3 client"""
        if self._client is None:
            import boto3
            from botocore.config import Config

            config = Config(
                retries={'max_attempts': 3, 'mode': 'adaptive'},
                max_pool_connections=10
            )
            self._client = boto3.client(
                's3',
                aws_access_key_id=self.settings.aws_access_key_id or None,
                aws_secret_access_key=self.settings.aws_secret_access_key or None,
                region_name=self.settings.aws_region,
                config=config
            )
            logger.info(f"S3 client initialized for bucket: {self.default_bucket}")
        return self._client

    def url_for(self, bucket: str, key: str) -> str:
        return f"https://{bucket}.s3.{self.settings.aws_region}.amazonaws.com/{key}"

    async def upload(
        self,
        local_path: str,
        bucket: str,
        key: str,
        progress_callback: Optional[Callable[[float, str], None]] = None
    ) -> str:
        """
        Upload a file and return its URL

        Raises:
            StorageError: missing file or S3 failure
        """
        if not os.path.exists(local_path):
            raise StorageError(f"File not found: {local_path}", bucket=bucket, key=key)

        file_size = os.path.getsize(local_path)
        content_type, _ = mimetypes.guess_type(local_path)
        content_type = content_type or 'application/octet-stream'
        logger.info(f"Uploading to S3: {key} ({file_size / 1024 / 1024:.1f} MB)")

        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                self._do_upload,
                local_path,
                bucket,
                key,
                content_type,
                file_size,
                progress_callback
            )
        except Exception as e:
            raise StorageError(f"S3 upload failed: {e}", bucket=bucket, key=key) from e

        return self.url_for(bucket, key)

    def _do_upload(
        self,
        local_path: str,
        bucket: str,
        key: str,
        content_type: str,
        file_size: int,
        progress_callback: Optional[Callable[[float, str], None]]
    ):
        """Perform the actual upload (blocking)"""
        uploaded_bytes = 0

        def upload_progress(bytes_amount):
            nonlocal uploaded_bytes
            uploaded_bytes += bytes_amount
            if progress_callback:
                percent = (uploaded_bytes / file_size) * 100
                progress_callback(percent, f"Uploading: {percent:.0f}%")

        if file_size > MULTIPART_THRESHOLD:
            from boto3.s3.transfer import TransferConfig

            config = TransferConfig(
                multipart_threshold=MULTIPART_THRESHOLD,
                multipart_chunksize=MULTIPART_THRESHOLD,
                max_concurrency=4,
                use_threads=True
            )
            self.client.upload_file(
                local_path,
                bucket,
                key,
                ExtraArgs={'ContentType': content_type},
                Config=config,
                Callback=upload_progress
            )
        else:
            with open(local_path, 'rb') as f:
                self.client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=f,
                    ContentType=content_type
                )

    async def download(self, bucket: str, key: str, local_path: str) -> str:
        """
        Download an object to local_path

        Raises:
            StorageError: S3 failure (including a missing key)
        """
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self.client.download_file(bucket, key, local_path)
            )
        except Exception as e:
            raise StorageError(f"S3 download failed: {e}", bucket=bucket, key=key) from e

        logger.debug(f"Downloaded s3://{bucket}/{key} -> {local_path}")
        return local_path

    async def find_by_extension(self, bucket: str, prefix: str, ext: str) -> Optional[str]:
        """First key under prefix ending with ext, or None"""
        loop = asyncio.get_event_loop()

        def _scan() -> Optional[str]:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    if obj["Key"].endswith(ext):
                        return obj["Key"]
            return None

        try:
            return await loop.run_in_executor(None, _scan)
        except Exception as e:
            raise StorageError(f"S3 listing failed: {e}", bucket=bucket, key=prefix) from e
