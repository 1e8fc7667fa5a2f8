"""
Abstract Attachment Storage Interface

The workflows never keep file bytes. They hand an upload to the object
store and keep only the URL string it returns.
"""

from abc import ABC, abstractmethod

from treasury.models.payloads import FileUpload


class AttachmentStorageInterface(ABC):
    """Object storage for payment screenshots, bills and payout proofs."""

    @abstractmethod
    async def upload(self, upload: FileUpload, folder: str) -> str:
        """
        Store an attachment.

        Args:
            upload: The file bytes and metadata
            folder: Logical folder (e.g. 'payment-proofs')

        Returns:
            Public URL of the stored file

        Raises:
            AttachmentRejectedError: File is not an acceptable attachment
            AttachmentUploadError: Object store failed
        """
        pass


class AttachmentError(Exception):
    """Base exception for attachment handling."""
    pass


class AttachmentRejectedError(AttachmentError):
    """File failed type/size/decoding checks."""
    pass


class AttachmentUploadError(AttachmentError):
    """Failed to upload to object storage."""
    pass
