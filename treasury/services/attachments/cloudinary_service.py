"""
Attachment Storage using Cloudinary

DESIGN DECISION: We use Cloudinary because:
1. The club already stores payment screenshots and bills there
2. Size-limiting transformations are applied on upload
3. Simple API
4. Free tier sufficient for a club

This service handles:
1. Checking the file is a decodable image (or a PDF bill) within limits
2. Uploading to the right folder
3. Returning the secure URL

CRITICAL: We never upload something we cannot open. A corrupt or
oversized file is rejected before any network call.
"""

import hashlib
from io import BytesIO
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from PIL import Image, UnidentifiedImageError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from treasury.config import get_settings
from treasury.config.settings import AppSettings, CloudinarySettings
from treasury.models.payloads import FileUpload
from treasury.services.attachments.interface import (
    AttachmentRejectedError,
    AttachmentStorageInterface,
    AttachmentUploadError,
)

PDF_MAGIC = b"%PDF-"

# Pillow format name -> extensions accepted in settings
PIL_FORMATS = {
    "JPEG": {"jpg", "jpeg"},
    "PNG": {"png"},
    "WEBP": {"webp"},
}

# Folders that accept PDF bills as well as images
PDF_FOLDERS = {"reimbursement-bills"}


class CloudinaryAttachmentService(AttachmentStorageInterface):
    """
    Upload proofs and bills to Cloudinary.

    Flow:
    1. Receive raw bytes
    2. Check size and type (Pillow for images, magic header for PDFs)
    3. Upload with a size-limiting transformation
    4. Return the secure URL
    """

    def __init__(
        self,
        settings: Optional[CloudinarySettings] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        self._settings = settings or get_settings().cloudinary
        self._app_settings = app_settings or get_settings().app
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _public_id(self, upload: FileUpload) -> str:
        """
        Content-addressed public ID.

        Format: {sha256[:16]} so re-uploading the same screenshot after a
        flaky response lands on the same object.
        """
        return hashlib.sha256(upload.content).hexdigest()[:16]

    def check_attachment(self, upload: FileUpload, folder: str) -> str:
        """
        Validate an attachment before upload.

        Returns:
            Detected format ('jpeg', 'png', 'webp' or 'pdf')

        Raises:
            AttachmentRejectedError: With a message suitable for the member
        """
        size = len(upload.content)
        if size > self._app_settings.max_upload_size_bytes:
            raise AttachmentRejectedError(
                f"File is {size / (1024 * 1024):.1f} MB; "
                f"limit is {self._app_settings.max_upload_size_mb} MB"
            )

        if upload.content.startswith(PDF_MAGIC):
            if folder not in PDF_FOLDERS:
                raise AttachmentRejectedError("Only image files are allowed here")
            return "pdf"

        try:
            with Image.open(BytesIO(upload.content)) as img:
                img.verify()
                detected = img.format
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise AttachmentRejectedError(f"File is not a readable image: {e}")

        allowed = set(self._app_settings.supported_formats_list)
        if not PIL_FORMATS.get(detected, set()) & allowed:
            raise AttachmentRejectedError(
                f"Unsupported image format {detected}. "
                f"Allowed: {', '.join(sorted(allowed))}"
            )
        return detected.lower()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(AttachmentUploadError),
        reraise=True,
    )
    async def upload(self, upload: FileUpload, folder: str) -> str:
        """
        Upload an attachment and return its secure URL.

        Raises:
            AttachmentRejectedError: Failed the pre-upload check (not retried)
            AttachmentUploadError: Cloudinary failed after retries
        """
        self.check_attachment(upload, folder)
        self._configure()

        try:
            result = cloudinary.uploader.upload(
                upload.content,
                public_id=self._public_id(upload),
                folder=f"{self._settings.folder}/{folder}",
                resource_type="auto",
                overwrite=False,
                transformation=[
                    {"width": 1200, "height": 1600, "crop": "limit"},
                ],
            )
        except cloudinary.exceptions.Error as e:
            raise AttachmentUploadError(f"Cloudinary error: {e}")

        url = result.get("secure_url") or result.get("url")
        if not url:
            raise AttachmentUploadError("No URL returned from Cloudinary")
        return url
