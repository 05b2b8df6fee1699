"""Archive of client-rendered submission PDFs in Google Cloud Storage."""
import logging
from functools import lru_cache
from uuid import uuid4

from google.cloud import storage
from werkzeug.utils import secure_filename

from formsapi.config import config
from formsapi.errors import InfrastructureError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED = {"pdf"}


@lru_cache()
def get_client() -> storage.Client:
    if config.GCS_CREDENTIALS:
        return storage.Client.from_service_account_json(config.GCS_CREDENTIALS)
    return storage.Client()


class PdfArchive:
    def __init__(self, client, bucket_name: str, prefix: str):
        self.client = client
        self.bucket_name = bucket_name
        self.prefix = prefix.strip("/")

    def object_name(self, submission_id: int, filename: str) -> str:
        if not filename or "." not in filename:
            raise ValidationError("No file provided")
        ext = filename.rsplit(".", 1)[-1].lower()
        if ext not in ALLOWED:
            raise ValidationError("File type not allowed")
        return f"{self.prefix}/{submission_id}/{uuid4().hex}_{secure_filename(filename)}"

    def upload(self, submission_id: int, filename: str, content: bytes, content_type: str = "application/pdf") -> str:
        blob_path = self.object_name(submission_id, filename)
        if not content:
            raise ValidationError("Uploaded file is empty")
        try:
            bucket = self.client.bucket(self.bucket_name)
            blob = bucket.blob(blob_path)
            blob.upload_from_string(content, content_type=content_type)
        except Exception as e:
            logger.error(f"GCS upload failed for {blob_path}: {e}")
            raise InfrastructureError("Failed to upload file to storage") from e

        logger.info(f"Archived PDF for submission {submission_id} at {blob_path}")
        return f"gs://{self.bucket_name}/{blob_path}"


def get_archive() -> PdfArchive:
    if not config.GCS_BUCKET:
        raise InfrastructureError("PDF archive is not configured")
    try:
        client = get_client()
    except Exception as e:
        logger.error(f"Could not create storage client: {e}")
        raise InfrastructureError("PDF archive is unavailable") from e
    return PdfArchive(client, config.GCS_BUCKET, config.GCS_PREFIX)
