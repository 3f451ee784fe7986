# dependencies.py
"""
Shared FastAPI dependencies: bearer-token auth, admin role checks and
per-admin rate limiting.
"""
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session

import config
from database import get_session
from services.rate_limit import check_rate_limit


# Token Auth Dependency
def verify_token(request: Request) -> dict:
     auth = request.headers.get("Authorization")
     if not auth or not auth.startswith("Bearer "):
          raise HTTPException(status_code=401, detail="Missing token")
     token = auth.split(" ")[1]
     try:
          payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
          return payload
     except JWTError:
          raise HTTPException(status_code=403, detail="Invalid token")


def require_admin(token: dict = Depends(verify_token)) -> dict:
     if token.get("role") not in config.ADMIN_ROLES:
          raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
     return token


def is_super_admin(token: dict) -> bool:
     return token.get("role") == "super_admin" or (
          bool(token.get("email")) and token.get("email") in config.SUPER_ADMIN_EMAILS
     )


def actor_id(token: dict) -> str:
     return str(token.get("id") or token.get("sub") or "unknown")


def rate_limited(action: str) -> Callable:
     """Dependency factory: 429 once the admin exceeds the action's window."""
     def dependency(
          token: dict = Depends(require_admin),
          db: Session = Depends(get_session),
     ) -> dict:
          result = check_rate_limit(db, actor_id(token), action)
          if not result.allowed:
               raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=f"Too many {action} requests, retry after {result.reset_at.isoformat()}",
               )
          return token
     return dependency
