from .audit import AuditLog
from .credential import AccessCredential
from .error_log import ErrorLog
from .purchase import PURCHASE_COMPLETED, PURCHASE_FAILED, PURCHASE_PENDING, PurchaseRecord
from .security_log import SecurityLog

__all__ = [
    "AccessCredential",
    "AuditLog",
    "ErrorLog",
    "PURCHASE_COMPLETED",
    "PURCHASE_FAILED",
    "PURCHASE_PENDING",
    "PurchaseRecord",
    "SecurityLog",
]
