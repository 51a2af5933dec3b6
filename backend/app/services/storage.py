"""S3 service for avatar image storage."""

import secrets

import boto3
from botocore.exceptions import ClientError

from app.config import get_settings

settings = get_settings()

ALLOWED_AVATAR_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


class StorageError(Exception):
    """Object storage rejected or failed an operation."""


class AvatarStorage:
    """Public-read avatar bucket on S3 or any S3-compatible store."""

    def __init__(self):
        """Initialize S3 client with credentials from settings."""
        client_kwargs = {
            "aws_access_key_id": settings.aws_access_key_id,
            "aws_secret_access_key": settings.aws_secret_access_key,
            "region_name": settings.aws_s3_region,
        }
        # Support MinIO / LocalStack by pointing to a custom endpoint
        if settings.aws_s3_endpoint_url:
            client_kwargs["endpoint_url"] = settings.aws_s3_endpoint_url

        self.s3_client = boto3.client("s3", **client_kwargs)
        self.bucket = settings.aws_s3_bucket

    @staticmethod
    def generate_key(user_id, content_type: str) -> str:
        """Random per-upload key so browsers never serve a stale avatar."""
        ext = ALLOWED_AVATAR_TYPES[content_type]
        return f"avatars/{user_id}-{secrets.token_hex(8)}.{ext}"

    def public_url(self, key: str) -> str:
        if settings.avatar_public_base_url:
            return f"{settings.avatar_public_base_url.rstrip('/')}/{key}"
        if settings.aws_s3_endpoint_url:
            return f"{settings.aws_s3_endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{settings.aws_s3_region}.amazonaws.com/{key}"

    async def upload_avatar(self, key: str, data: bytes, content_type: str) -> str:
        """
        Upload an avatar and return its public URL.

        Args:
            key: Object key from generate_key()
            data: Raw image bytes
            content_type: MIME type, one of ALLOWED_AVATAR_TYPES

        Raises:
            StorageError: If the S3 operation fails
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=31536000, immutable",
            )
        except ClientError as e:
            raise StorageError(f"Failed to upload avatar: {str(e)}") from e
        return self.public_url(key)

    async def delete_avatar(self, key: str) -> None:
        """Delete an avatar object. Missing keys are not an error on S3."""
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise StorageError(f"Failed to delete avatar: {str(e)}") from e

    def key_from_url(self, url: str | None) -> str | None:
        """Recover the object key of an avatar URL we issued, else None."""
        if not url:
            return None
        marker = "avatars/"
        index = url.find(marker)
        return url[index:] if index != -1 else None


# Singleton instance
avatar_storage = AvatarStorage()
