"""S3 storage service for photo bytes."""
from abc import ABC, abstractmethod
from typing import Dict, Optional
import logging

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError, BotoCoreError

from src.app.config import settings
from src.models.enums import AnalysisErrorCode
from src.services.analysis.errors import AnalysisError, classify_exception

logger = logging.getLogger(__name__)


class S3ServiceError(AnalysisError):
    """Custom exception for S3 service errors."""


class ObjectStorage(ABC):
    """Key/value access to stored photo objects."""

    @abstractmethod
    def download_file(self, s3_key: str) -> bytes:
        """Raw bytes stored under ``s3_key``."""

    @abstractmethod
    def upload_file(
        self,
        file_data: bytes,
        s3_key: str,
        content_type: str = 'application/octet-stream',
        metadata: Optional[Dict[str, str]] = None
    ) -> bool:
        """Store ``file_data`` under ``s3_key``."""


class S3Service(ObjectStorage):
    """Service for S3 operations with comprehensive error handling."""

    def __init__(self, s3_client=None, bucket_name: Optional[str] = None):
        """Initialize S3 client with configuration."""
        self.bucket_name = bucket_name or settings.S3_BUCKET_NAME
        if s3_client is not None:
            self.s3_client = s3_client
            return

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=settings.S3_REGION,
                config=Config(
                    signature_version='s3v4',
                    s3={'addressing_style': 'virtual'},
                    connect_timeout=settings.AWS_CONNECT_TIMEOUT_SECONDS,
                    read_timeout=settings.AWS_READ_TIMEOUT_SECONDS,
                    retries={'max_attempts': settings.AWS_MAX_ATTEMPTS, 'mode': 'standard'},
                )
            )
            logger.info(f"S3 Service initialized for bucket: {self.bucket_name}")
        except Exception as e:
            logger.error(f"Failed to initialize S3 client: {e}")
            raise S3ServiceError(f"S3 initialization failed: {str(e)}", AnalysisErrorCode.API_ERROR, original=e)

    def download_file(self, s3_key: str) -> bytes:
        """
        Download file from S3 and return raw bytes.

        Args:
            s3_key: S3 object key

        Returns:
            File content as bytes

        Raises:
            S3ServiceError: IMAGE_ERROR when the object is missing, otherwise
                the classified transport error
        """
        try:
            response = self.s3_client.get_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
            file_bytes = response['Body'].read()
            logger.debug(f"Downloaded {len(file_bytes)} bytes from: {s3_key}")
            return file_bytes

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code in ('NoSuchKey', '404'):
                raise S3ServiceError(f"Object not found: {s3_key}", AnalysisErrorCode.IMAGE_ERROR, original=e)
            logger.error(f"Error downloading file: {e}")
            raise S3ServiceError(f"Failed to download file: {str(e)}", classify_exception(e), original=e)
        except BotoCoreError as e:
            logger.error(f"Error downloading file: {e}")
            raise S3ServiceError(f"Failed to download file: {str(e)}", classify_exception(e), original=e)

    def upload_file(
        self,
        file_data: bytes,
        s3_key: str,
        content_type: str = 'application/octet-stream',
        metadata: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Upload file bytes directly to S3.

        Raises:
            S3ServiceError: If upload fails
        """
        params = {
            'Bucket': self.bucket_name,
            'Key': s3_key,
            'Body': file_data,
            'ContentType': content_type
        }
        if metadata:
            params['Metadata'] = metadata

        try:
            self.s3_client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading file: {e}")
            raise S3ServiceError(f"Failed to upload file: {str(e)}", classify_exception(e), original=e)

        logger.info(f"Uploaded {len(file_data)} bytes to: {s3_key}")
        return True
