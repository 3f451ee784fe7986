# models/webhook.py
from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, func
from .base import Base


WEBHOOK_ERROR_PROCESSING = "PROCESSING"
WEBHOOK_ERROR_MALFORMED = "MALFORMED"


class WebhookError(Base):
     """
     Failed or quarantined webhook delivery kept for manual reconciliation.
     The raw payload is stored verbatim so the event can be replayed.
     """
     __tablename__ = "webhook_errors"

     id = Column(Integer, primary_key=True, autoincrement=True)
     provider = Column(String(50), nullable=False, index=True)
     kind = Column(String(32), nullable=False)
     event_type = Column(String(100), nullable=True)
     error_message = Column(Text, nullable=False)
     stack = Column(Text, nullable=True)
     payload = Column(Text, nullable=False)
     resolved = Column(Boolean, default=False, nullable=False, index=True)
     resolved_at = Column(DateTime, nullable=True)
     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     def __repr__(self):
          return f"<WebhookError(id={self.id}, provider='{self.provider}', kind='{self.kind}', resolved={self.resolved})>"


class Notification(Base):
     __tablename__ = "notifications"

     id = Column(Integer, primary_key=True, autoincrement=True)
     user_id = Column(String(64), nullable=False, index=True)
     type = Column(String(50), nullable=False)
     title = Column(String(255), nullable=False)
     message = Column(Text, nullable=False)
     order_id = Column(String(64), nullable=True)
     read = Column(Boolean, default=False, nullable=False)
     created_at = Column(DateTime, server_default=func.now(), nullable=False)
