"""Services package."""

from treasury.services.attachments import (
    AttachmentError,
    AttachmentRejectedError,
    AttachmentStorageInterface,
    AttachmentUploadError,
    CloudinaryAttachmentService,
)
from treasury.services.club_settings import (
    ClubSettingsInterface,
    SettingsClubProvider,
    TreasurerNotConfiguredError,
)
from treasury.services.credentials import (
    CredentialStoreInterface,
    InMemoryCredentialStore,
)
from treasury.services.members import (
    InMemoryMemberDirectory,
    MemberDirectoryInterface,
    UnknownMemberError,
)
from treasury.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    DuplicateOpenRequestError,
    DuplicateReferenceError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryAuditStorage,
    InMemoryRequestStore,
    NotFoundError,
    RequestStoreInterface,
    StorageError,
    VersionConflictError,
)

__all__ = [
    # Attachment services
    "AttachmentError",
    "AttachmentRejectedError",
    "AttachmentStorageInterface",
    "AttachmentUploadError",
    "CloudinaryAttachmentService",
    # Collaborators
    "ClubSettingsInterface",
    "CredentialStoreInterface",
    "InMemoryCredentialStore",
    "InMemoryMemberDirectory",
    "MemberDirectoryInterface",
    "SettingsClubProvider",
    "TreasurerNotConfiguredError",
    "UnknownMemberError",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "DuplicateOpenRequestError",
    "DuplicateReferenceError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "InMemoryAuditStorage",
    "InMemoryRequestStore",
    "NotFoundError",
    "RequestStoreInterface",
    "StorageError",
    "VersionConflictError",
]
