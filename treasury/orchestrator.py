"""
Main Orchestrator for Aurora Treasury

This module ties together all the components:
1. Storage (request store, activity-log mirror)
2. Collaborators (club settings, member directory, object storage,
   identity service)
3. Workflows (payments, reimbursements, credential resets)
4. The treasurer's reconciliation view

DESIGN DECISION: Every workflow shares ONE request store, ONE reference
generator and ONE audit logger. Sharing the generator is what makes the
per-(owner, kind) lock effective across all QR requests.
"""

from datetime import datetime
from typing import Callable, Optional

import structlog

from treasury.audit import AuditLogger, AuditTrail
from treasury.config import get_settings
from treasury.config.settings import Settings, TreasurySettings
from treasury.models.request import utc_now
from treasury.reconciliation import ReconciliationAdvisor
from treasury.references import ReferenceCodeGenerator
from treasury.services.attachments import AttachmentStorageInterface, CloudinaryAttachmentService
from treasury.services.club_settings import ClubSettingsInterface, SettingsClubProvider
from treasury.services.credentials import CredentialStoreInterface, InMemoryCredentialStore
from treasury.services.members import InMemoryMemberDirectory, MemberDirectoryInterface
from treasury.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryRequestStore,
    RequestStoreInterface,
)
from treasury.workflows import CredentialResetWorkflow, PaymentWorkflow, ReimbursementWorkflow

logger = structlog.get_logger("treasury.orchestrator")


class AppComponents:
    """Everything a transport layer needs, already wired."""

    def __init__(
        self,
        store: RequestStoreInterface,
        audit_logger: AuditLogger,
        generator: ReferenceCodeGenerator,
        payments: PaymentWorkflow,
        reimbursements: ReimbursementWorkflow,
        credential_resets: CredentialResetWorkflow,
        reconciliation: ReconciliationAdvisor,
        sheets_client: Optional[GoogleSheetsClient] = None,
    ):
        self.store = store
        self.audit_logger = audit_logger
        self.generator = generator
        self.payments = payments
        self.reimbursements = reimbursements
        self.credential_resets = credential_resets
        self.reconciliation = reconciliation
        self.sheets_client = sheets_client


def create_app_components(
    use_storage: bool = True,
    settings: Optional[Settings] = None,
    treasury_settings: Optional[TreasurySettings] = None,
    store: Optional[RequestStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    attachments: Optional[AttachmentStorageInterface] = None,
    club_settings: Optional[ClubSettingsInterface] = None,
    member_directory: Optional[MemberDirectoryInterface] = None,
    credential_store: Optional[CredentialStoreInterface] = None,
    clock: Callable[[], datetime] = utc_now,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to mirror the activity log to Google Sheets
                    and upload files to Cloudinary. Set to False for
                    testing without external services.
        settings: Settings to use instead of get_settings()
        treasury_settings: Club rules to use instead of settings.treasury
        store, audit_storage, attachments, club_settings,
        member_directory, credential_store:
                    Collaborators to use instead of the defaults
        clock: Time source (tests pass a fixed clock)

    Returns:
        AppComponents
    """
    settings = settings or get_settings()
    treasury_settings = treasury_settings or settings.treasury
    sheets_client = None

    if use_storage and audit_storage is None:
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue with local logging only
            logger.warning("audit_storage_unavailable", error=str(e))
            sheets_client = None
            audit_storage = None

    if use_storage and attachments is None:
        try:
            attachments = CloudinaryAttachmentService(settings.cloudinary, settings.app)
        except Exception as e:
            logger.warning("attachment_storage_unavailable", error=str(e))
            attachments = None

    store = store or InMemoryRequestStore()
    audit_logger = AuditLogger(audit_storage)
    trail = AuditTrail()
    club_settings = club_settings or SettingsClubProvider(treasury_settings)
    credential_store = credential_store or InMemoryCredentialStore()
    if member_directory is None:
        # Every QR request fails until membership records are loaded
        logger.warning("member_directory_empty")
        member_directory = InMemoryMemberDirectory()

    generator = ReferenceCodeGenerator(
        store,
        kind_code=treasury_settings.fund_kind_code,
        max_attempts=treasury_settings.reference_max_attempts,
        clock=clock,
        audit_logger=audit_logger,
    )

    payments = PaymentWorkflow(
        store,
        club_settings,
        member_directory,
        generator,
        treasury_settings,
        attachments=attachments,
        audit_logger=audit_logger,
        trail=trail,
        clock=clock,
    )
    reimbursements = ReimbursementWorkflow(
        store,
        treasury_settings,
        attachments=attachments,
        audit_logger=audit_logger,
        trail=trail,
        clock=clock,
    )
    credential_resets = CredentialResetWorkflow(
        store,
        credential_store,
        audit_logger=audit_logger,
        trail=trail,
        clock=clock,
    )

    return AppComponents(
        store=store,
        audit_logger=audit_logger,
        generator=generator,
        payments=payments,
        reimbursements=reimbursements,
        credential_resets=credential_resets,
        reconciliation=ReconciliationAdvisor(payments, filler=treasury_settings.reference_filler),
        sheets_client=sheets_client,
    )
