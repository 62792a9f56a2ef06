"""Avatar object storage: a Supabase Storage bucket or S3."""
import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError
from supabase import Client

from cotask.config import settings

logger = logging.getLogger(__name__)


class AvatarStorage:
    def upload_file(self, file_content: bytes, key: str, content_type: str) -> str:
        """Store the object and return its public URL"""
        raise NotImplementedError

    def delete_file(self, key: str) -> bool:
        raise NotImplementedError

    @staticmethod
    def key_from_url(url: Optional[str]) -> Optional[str]:
        """Object keys are flat, so the key is the last URL path segment."""
        if not url:
            return None
        key = url.split("?", 1)[0].rstrip("/").split("/")[-1]
        return key or None


class SupabaseAvatarStorage(AvatarStorage):
    def __init__(self, supabase: Client, bucket_name: Optional[str] = None):
        self.supabase = supabase
        self.bucket_name = bucket_name or settings.avatar_bucket

    def upload_file(self, file_content: bytes, key: str, content_type: str) -> str:
        bucket = self.supabase.storage.from_(self.bucket_name)
        bucket.upload(key, file_content, {
            "content-type": content_type,
            "cache-control": "3600",
            "upsert": "false",
        })
        return bucket.get_public_url(key)

    def delete_file(self, key: str) -> bool:
        try:
            self.supabase.storage.from_(self.bucket_name).remove([key])
            return True
        except Exception as e:
            logger.warning(f"Failed to delete avatar {key} from storage: {e}")
            return False


class S3AvatarStorage(AvatarStorage):
    def __init__(self):
        if not all([settings.aws_access_key_id, settings.aws_secret_access_key, settings.s3_bucket_name]):
            raise ValueError("AWS S3 credentials and bucket name must be configured")

        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region
        )
        self.bucket_name = settings.s3_bucket_name
        self.public_base_url = (
            settings.s3_public_base_url
            or f"https://{self.bucket_name}.s3.{settings.aws_region}.amazonaws.com"
        ).rstrip("/")

    def upload_file(self, file_content: bytes, key: str, content_type: str) -> str:
        """Upload file to S3 and return its public URL"""
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=file_content,
                ContentType=content_type,
                CacheControl="max-age=3600"
            )
            return f"{self.public_base_url}/{key}"
        except ClientError as e:
            logger.error(f"Failed to upload avatar to S3: {str(e)}")
            raise

    def delete_file(self, key: str) -> bool:
        """Delete file from S3"""
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            logger.error(f"Failed to delete avatar from S3: {str(e)}")
            return False


def get_avatar_storage(supabase: Client) -> AvatarStorage:
    if settings.avatar_storage_backend == "s3":
        return S3AvatarStorage()
    return SupabaseAvatarStorage(supabase)
