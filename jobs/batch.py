# jobs/batch.py
"""
Paging and bounded fan-out shared by the daily batch jobs.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from database import get_session_context
from models import Store

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def iter_store_pages(
     session_factory: Optional[sessionmaker],
     batch_size: int,
     recency_column
) -> Iterator[list[tuple]]:
     """
     Yield pages of (store_id, last_processed_at) for active stores, ordered
     by id. `recency_column` is the state column holding the last run time,
     e.g. StoreRiskState.last_risk_evaluated.
     """
     state_model = recency_column.class_
     cursor = None
     while True:
          with get_session_context(session_factory) as db:
               stmt = (
                    select(Store.id, recency_column)
                    .outerjoin(state_model, state_model.store_id == Store.id)
                    .where(Store.is_active.is_(True))
                    .order_by(Store.id)
                    .limit(batch_size)
               )
               if cursor is not None:
                    stmt = stmt.where(Store.id > cursor)
               page = [tuple(row) for row in db.execute(stmt).all()]
          if not page:
               return
          cursor = page[-1][0]
          yield page
          if len(page) < batch_size:
               return


def map_with_concurrency(items: list[T], limit: int, fn: Callable[[T], R]) -> list[R]:
     """
     Apply `fn` to every item with at most `limit` calls in flight.
     `fn` is expected to handle its own errors.
     """
     if limit <= 1 or len(items) <= 1:
          return [fn(item) for item in items]
     with ThreadPoolExecutor(max_workers=min(limit, len(items))) as pool:
          return list(pool.map(fn, items))
