# models/order.py
"""
Order and OrderItem - owned by the checkout subsystem.

The settlement core only reads orders and moves `status` to "paid".
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, JSON, func
from sqlalchemy.orm import relationship
from .base import Base


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PAID = "paid"


class Order(Base):
     __tablename__ = "orders"

     id = Column(String(64), primary_key=True)
     user_id = Column(String(64), nullable=False, index=True)
     status = Column(String(32), nullable=False, default=ORDER_STATUS_PENDING, index=True)
     total = Column(Numeric(14, 2), nullable=True)  # Checkout may leave this empty
     currency = Column(String(8), nullable=True)

     # Payment snapshot written on settlement
     transaction_id = Column(String(128), nullable=True, index=True)
     payment_method = Column(String(50), nullable=True)
     paid_at = Column(DateTime, nullable=True)
     payment_details = Column(JSON, nullable=True)

     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     items = relationship(
          "OrderItem",
          back_populates="order",
          cascade="all, delete-orphan",
          order_by="OrderItem.id",
     )

     def __repr__(self):
          return f"<Order(id='{self.id}', status='{self.status}', total={self.total})>"

     @property
     def is_paid(self) -> bool:
          return self.status == ORDER_STATUS_PAID


class OrderItem(Base):
     __tablename__ = "order_items"

     id = Column(Integer, primary_key=True, autoincrement=True)
     order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
     vendor_id = Column(String(64), nullable=False, index=True)
     product_id = Column(String(64), nullable=True)
     price = Column(Numeric(14, 2), nullable=False)
     quantity = Column(Integer, nullable=False, default=1)

     order = relationship("Order", back_populates="items")

     def __repr__(self):
          return f"<OrderItem(order_id='{self.order_id}', vendor_id='{self.vendor_id}', price={self.price}, qty={self.quantity})>"
