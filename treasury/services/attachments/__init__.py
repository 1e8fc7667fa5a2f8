"""Attachment storage services package."""

from treasury.services.attachments.interface import (
    AttachmentError,
    AttachmentRejectedError,
    AttachmentStorageInterface,
    AttachmentUploadError,
)
from treasury.services.attachments.cloudinary_service import CloudinaryAttachmentService

__all__ = [
    "AttachmentError",
    "AttachmentRejectedError",
    "AttachmentStorageInterface",
    "AttachmentUploadError",
    "CloudinaryAttachmentService",
]
