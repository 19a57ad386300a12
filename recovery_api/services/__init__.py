# Business Logic Services
from recovery_api.core.masking import mask_phone
from recovery_api.services.audit_service import AuditEvent, AuditService
from recovery_api.services.main_api import MainApiClient, UserRecord
from recovery_api.services.messaging import BaseMessageSender, get_message_sender
from recovery_api.services.recovery import RecoveryWorkflow

__all__ = [
    "AuditEvent",
    "AuditService",
    "BaseMessageSender",
    "MainApiClient",
    "RecoveryWorkflow",
    "UserRecord",
    "get_message_sender",
    "mask_phone",
]
