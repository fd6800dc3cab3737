"""S3 URL helpers for presentation assets handed to workers."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from app.config.settings import S3Config, settings
from app.services.aws import create_boto3_client


class StorageError(RuntimeError):
    """Raised when an asset URL cannot be produced."""


def _object_url(bucket: str, key: str, region: str) -> str:
    if region == "us-east-1":
        return f"https://{bucket}.s3.amazonaws.com/{key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def _split_location(path: str, default_bucket: str) -> tuple[str, str]:
    """Return (bucket, key) for ``s3://bucket/key`` or a bare object key."""

    if path.startswith("s3://"):
        bucket, _, key = path[len("s3://"):].partition("/")
        return bucket, key
    return default_bucket, path.lstrip("/")


class AssetUrlResolver:
    """Turn stored file paths into URLs a worker can download from."""

    def __init__(self, config: Optional[S3Config] = None, client: Any = None) -> None:
        self._config = config or settings.s3
        self._client = client

    def _s3(self) -> Any:
        if self._client is None:
            self._client = create_boto3_client("s3", region_name=self._config.region)
        return self._client

    async def resolve(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        if path.startswith(("http://", "https://")):
            return path

        bucket, key = _split_location(path, self._config.bucket_name)
        if not bucket:
            raise StorageError("S3 bucket name is not configured.")

        if not self._config.presign_urls:
            return _object_url(bucket, key, self._config.region)

        try:
            return await run_in_threadpool(
                self._s3().generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=self._config.presign_expiration_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to presign {path}: {exc}") from exc

    async def resolve_many(self, paths: Iterable[str]) -> list[str]:
        urls = []
        for path in paths:
            url = await self.resolve(path)
            if url:
                urls.append(url)
        return urls


__all__ = ["AssetUrlResolver", "StorageError"]
