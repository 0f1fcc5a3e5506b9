# Database models
from hostpanel.models.user import User
from hostpanel.models.plan import Plan
from hostpanel.models.order import ServerOrder, OrderStatus, PaymentStatus
from hostpanel.models.payment import Payment, PaymentGateway, PaymentRecordStatus
from hostpanel.models.audit_log import AuditLog

__all__ = [
    "User",
    "Plan",
    "ServerOrder",
    "OrderStatus",
    "PaymentStatus",
    "Payment",
    "PaymentGateway",
    "PaymentRecordStatus",
    "AuditLog",
]
