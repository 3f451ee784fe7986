# services/__init__.py
from .settlement_service import (
     settle_payment,
     compute_vendor_splits,
     verify_order_settlement,
     SettlementResult,
     VendorSplit,
)
from .webhook_service import handle_webhook, replay_webhook_error
from .risk_engine import evaluate_store_risk, set_risk_level, freeze_store, unfreeze_store
from .trust_engine import recompute_store_trust, TRUST_BENEFITS

__all__ = [
     "settle_payment",
     "compute_vendor_splits",
     "verify_order_settlement",
     "SettlementResult",
     "VendorSplit",
     "handle_webhook",
     "replay_webhook_error",
     "evaluate_store_risk",
     "set_risk_level",
     "freeze_store",
     "unfreeze_store",
     "recompute_store_trust",
     "TRUST_BENEFITS",
]
