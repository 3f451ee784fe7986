# schemas/risk.py
"""
Pydantic schemas for the admin risk API.
"""
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from models import RiskLevel


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
     if value is not None and value.tzinfo is not None:
          return value.astimezone(timezone.utc).replace(tzinfo=None)
     return value


class RiskActionBase(BaseModel):
     """Every state-changing admin call carries an auditable reason."""
     reason: str = Field(..., min_length=5, max_length=500, description="Why the action is taken")
     note: Optional[str] = Field(None, max_length=2000, description="Internal note")


class RiskLevelUpdate(RiskActionBase):
     """Request body for PATCH /admin/stores/{id}/risk-level."""
     risk_level: RiskLevel = Field(..., alias="riskLevel")
     payouts_frozen: Optional[bool] = Field(None, alias="payoutsFrozen", description="Force payouts frozen or released")
     expires_at: Optional[datetime] = Field(None, alias="expiresAt", description="When a forced freeze lapses")

     model_config = ConfigDict(
          populate_by_name=True,
          json_schema_extra={
               "example": {
                    "riskLevel": "HIGH",
                    "reason": "Chargeback cluster under investigation",
                    "payoutsFrozen": True,
               }
          }
     )

     @field_validator("expires_at")
     @classmethod
     def expires_as_naive_utc(cls, value):
          return _naive_utc(value)


class FreezeRequest(RiskActionBase):
     """Request body for POST /admin/stores/{id}/freeze."""
     level: RiskLevel = Field(default=RiskLevel.FROZEN, description="HIGH or FROZEN")
     expires_at: Optional[datetime] = Field(None, alias="expiresAt")

     model_config = ConfigDict(populate_by_name=True)

     @field_validator("expires_at")
     @classmethod
     def expires_as_naive_utc(cls, value):
          return _naive_utc(value)


class UnfreezeRequest(RiskActionBase):
     """Request body for POST /admin/stores/{id}/unfreeze."""


class RiskFlagRequest(RiskActionBase):
     """Request body for POST /admin/stores/{id}/risk-flag."""
     flagged: bool = Field(default=True)


class EvaluateRequest(BaseModel):
     """Optional body for risk-evaluate / trust-recompute; reason required unless dry run."""
     reason: Optional[str] = Field(None, max_length=500)
