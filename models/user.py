# models/user.py
from sqlalchemy import Column, String, DateTime, func
from .base import Base


class User(Base):
     """
     User model - marketplace account (buyers, vendors, admins).
     Read by the settlement core to notify buyers.
     """
     __tablename__ = "users"

     id = Column(String(64), primary_key=True)
     email = Column(String(255), unique=True, nullable=True, index=True)
     phone_number = Column(String(50), nullable=True)
     first_name = Column(String(100), nullable=True)
     role = Column(String(50), nullable=False, default="buyer")  # buyer, vendor, admin, super_admin
     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     def __repr__(self):
          return f"<User(id='{self.id}', email='{self.email}', role='{self.role}')>"
