# app/services/admin_auth_service.py
import hmac
from typing import Optional

from fastapi import Header, HTTPException

from app.config import get_settings


def require_admin_key(x_admin_key: Optional[str] = Header(None)) -> None:
    """
    FastAPI dependency guarding the operator endpoints.
    Refuses everything when ADMIN_API_KEY is not configured.
    """
    expected = get_settings().ADMIN_API_KEY
    if not expected:
        raise HTTPException(status_code=403, detail="Admin API is disabled (ADMIN_API_KEY not set)")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid admin key")
