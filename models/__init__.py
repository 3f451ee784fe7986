# models/__init__.py
from .base import Base
from .user import User
from .order import Order, OrderItem
from .store import Store, StoreIncident, IncidentType
from .ledger import TransactionRecord, VendorBalance, PlatformRevenueRecord, TransactionLock
from .risk import StoreRiskState, RiskEvent, RiskLevel, RiskSeverity, FreezeSource
from .trust import StoreTrustState, TrustEvent, TrustTier
from .job import JobRunState
from .webhook import WebhookError, Notification
from .rate_limit import RateLimitHit

__all__ = [
     "Base",
     "User",
     "Order",
     "OrderItem",
     "Store",
     "StoreIncident",
     "IncidentType",
     "TransactionRecord",
     "VendorBalance",
     "PlatformRevenueRecord",
     "TransactionLock",
     "StoreRiskState",
     "RiskEvent",
     "RiskLevel",
     "RiskSeverity",
     "FreezeSource",
     "StoreTrustState",
     "TrustEvent",
     "TrustTier",
     "JobRunState",
     "WebhookError",
     "Notification",
     "RateLimitHit",
]
