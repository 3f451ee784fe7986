# schemas/__init__.py
from .webhook import (
     EVENT_PAYMENT_SUCCESS,
     WebhookEnvelope,
     PaymentSuccessData,
     WebhookAck,
)
from .risk import (
     RiskLevelUpdate,
     FreezeRequest,
     UnfreezeRequest,
     RiskFlagRequest,
     EvaluateRequest,
)

__all__ = [
     "EVENT_PAYMENT_SUCCESS",
     "WebhookEnvelope",
     "PaymentSuccessData",
     "WebhookAck",
     "RiskLevelUpdate",
     "FreezeRequest",
     "UnfreezeRequest",
     "RiskFlagRequest",
     "EvaluateRequest",
]
