import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from orderdesk.core.exceptions import ExternalServiceError
from orderdesk.utils.datetime_helpers import get_ist_now
from orderdesk.logging.utils import get_app_logger

logger = get_app_logger('boto3_service')

from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()


class Boto3Service:
    """
    Service class for handling AWS S3 operations, specifically invoice upload and download.
    """

    def __init__(self):
        """
        Initialize S3 service with AWS credentials from environment variables.
        """

        self.aws_access_key_id = configs.AWS_ACCESS_KEY_ID
        self.aws_secret_access_key = configs.AWS_SECRET_ACCESS_KEY
        self.aws_region = configs.AWS_S3_REGION_NAME
        self.bucket_name = configs.AWS_STORAGE_BUCKET_NAME
        self.prefix = configs.S3_INVOICE_PREFIX.strip("/")
        self.expiry_seconds = configs.S3_PRESIGNED_URL_EXPIRY_SECONDS

        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=self.aws_access_key_id or None,
            aws_secret_access_key=self.aws_secret_access_key or None,
            region_name=self.aws_region
        )

        logger.info(f"Boto3Service initialized for bucket: {self.bucket_name}")

    def build_invoice_key(self, order_id: str, file_name: str) -> str:
        stamp = get_ist_now().strftime("%Y%m%d%H%M%S")
        safe_name = (file_name or "invoice").replace("/", "_").replace(" ", "_")
        return f"{self.prefix}/{order_id}/{stamp}_{safe_name}"

    def upload_invoice(self, order_id: str, file_name: str, content: bytes, content_type: str) -> str:
        """
        Store an invoice file and return its S3 key.
        """
        s3_key = self.build_invoice_key(order_id, file_name)
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=content,
                ContentType=content_type,
                Metadata={"order_id": order_id},
            )
            logger.info(f"invoice_uploaded | order_id={order_id} key={s3_key} size={len(content)}")
            return s3_key
        except NoCredentialsError:
            logger.error("AWS credentials not found")
            raise ExternalServiceError("invoice storage", "AWS credentials not configured properly")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"invoice_upload_failed | order_id={order_id} key={s3_key} error={e}")
            raise ExternalServiceError("invoice storage", f"upload failed: {e}")

    def get_presigned_url(self, s3_key: str) -> str:
        """
        Generate a presigned URL for downloading a file from S3.
        """
        try:
            # First check if the object exists
            self.s3_client.head_object(Bucket=self.bucket_name, Key=s3_key)

            presigned_url = self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': s3_key},
                ExpiresIn=self.expiry_seconds
            )

            logger.info(f"Generated presigned URL for key: {s3_key}")
            return presigned_url

        except ClientError as e:
            error_code = e.response['Error']['Code']
            if error_code in ('404', 'NoSuchKey'):
                logger.error(f"S3 object not found: {s3_key}")
                raise ExternalServiceError("invoice storage", f"invoice file not found: {s3_key}")
            logger.error(f"AWS S3 error: {str(e)}")
            raise ExternalServiceError("invoice storage", f"failed to generate presigned URL: {e}")
        except NoCredentialsError:
            logger.error("AWS credentials not found")
            raise ExternalServiceError("invoice storage", "AWS credentials not configured properly")
        except BotoCoreError as e:
            logger.error(f"Unexpected error generating presigned URL: {str(e)}")
            raise ExternalServiceError("invoice storage", f"failed to generate presigned URL: {e}")
