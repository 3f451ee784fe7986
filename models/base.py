# models/base.py
from datetime import datetime
from decimal import Decimal

from sqlalchemy import inspect
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
     """
     Base class for all SQLAlchemy models.
     Provides a JSON-friendly column dump used by the admin API.
     """

     def to_dict(self) -> dict:
          """
          Serialize mapped columns to plain Python values.

          Decimals become floats and datetimes ISO strings so the result can
          be returned directly from a route or stored in a JSON column.
          """
          data = {}
          for attr in inspect(self).mapper.column_attrs:
               value = getattr(self, attr.key)
               if isinstance(value, Decimal):
                    value = float(value)
               elif isinstance(value, datetime):
                    value = value.isoformat()
               elif hasattr(value, "value"):
                    value = value.value
               data[attr.key] = value
          return data
