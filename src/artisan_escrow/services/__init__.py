"""Application services — use case orchestration."""

from artisan_escrow.services.escrow_service import EscrowService
from artisan_escrow.services.notification_service import NotificationService

__all__ = ["EscrowService", "NotificationService"]
