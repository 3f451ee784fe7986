# schemas/webhook.py
"""
Pydantic schemas for payment-provider webhooks.

The envelope is validated before any business logic runs; the `data`
payload is validated per event type.
"""
from decimal import Decimal
from typing import Any, Optional, Union
from pydantic import BaseModel, Field, ConfigDict

import config

EVENT_PAYMENT_SUCCESS = "payment.success"


class WebhookEnvelope(BaseModel):
     """Outer webhook body: {type, data}."""
     type: str = Field(..., min_length=1, max_length=100, description="Event type, e.g. payment.success")
     data: dict[str, Any] = Field(default_factory=dict, description="Event payload")


class PaymentSuccessData(BaseModel):
     """Payload of a payment.success event."""
     order_id: str = Field(..., alias="orderId", min_length=1, max_length=64)
     transaction_id: str = Field(..., alias="transactionId", min_length=1, max_length=128)
     amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2, description="Amount paid")
     currency: str = Field(default=config.DEFAULT_CURRENCY, min_length=3, max_length=8)
     payer: Optional[Union[str, dict[str, Any]]] = Field(None, description="Payer reference from the provider")

     model_config = ConfigDict(
          populate_by_name=True,
          json_schema_extra={
               "example": {
                    "orderId": "O1",
                    "transactionId": "MC-889211",
                    "amount": 3000.00,
                    "currency": "HTG",
                    "payer": "50937000000",
               }
          }
     )


class WebhookAck(BaseModel):
     """Response for POST /webhooks/{provider}; deliveries are always acknowledged once authenticated."""
     received: bool = True
     error: Optional[str] = None
