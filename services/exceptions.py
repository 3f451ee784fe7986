# services/exceptions.py
"""Domain errors raised by the settlement and governance services."""


class SettlementError(Exception):
     """Base class for errors that must end up in the webhook error log."""


class OrderNotFound(SettlementError):
     def __init__(self, order_id: str):
          super().__init__(f"Order not found: {order_id}")
          self.order_id = order_id


class AmountMismatch(SettlementError):
     def __init__(self, order_id: str, expected, received):
          super().__init__(f"Amount mismatch for order {order_id}: expected {expected}, got {received}")
          self.order_id = order_id
          self.expected = expected
          self.received = received


class InvalidCommissionRate(ValueError):
     pass


class GovernanceError(Exception):
     """Base class for rejected governance actions."""


class StoreNotFound(GovernanceError):
     def __init__(self, store_id: str):
          super().__init__(f"Store not found: {store_id}")
          self.store_id = store_id


class InvalidReason(GovernanceError):
     pass


class InvalidRiskAction(GovernanceError):
     pass


class SuperAdminRequired(GovernanceError):
     pass


class InvalidSignature(Exception):
     """Webhook signature missing, unknown provider or HMAC mismatch."""


class WebhookErrorNotFound(Exception):
     def __init__(self, error_id: int):
          super().__init__(f"Webhook error not found: {error_id}")
          self.error_id = error_id
